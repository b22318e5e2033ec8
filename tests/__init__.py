"""Test package for the messenger core and its aiohttp bridge."""

import logging

logging.getLogger("asyncio").setLevel(logging.ERROR)
