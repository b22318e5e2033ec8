from __future__ import annotations

import asyncio
import logging

from .container import StateContainer
from .identity import IdentityManager

logger = logging.getLogger(__name__)

WATCH_INTERVAL_S = 3.0


class RevocationWatch:
    """Polls the durable store and signs this device out once its session is gone.

    Each tick re-reads the store independently of the in-memory state, so a
    revocation written by another process sharing the same slot is noticed
    within one interval. Ticks never overlap; the loop ends on its own after
    a forced logout and must be cancelled on explicit logout or teardown.
    """

    def __init__(
        self,
        container: StateContainer,
        identity: IdentityManager,
        interval_s: float = WATCH_INTERVAL_S,
    ) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self._container = container
        self._identity = identity
        self.interval_s = interval_s
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def check(self) -> bool:
        """Run one tick; return True when it forced a logout."""

        if not self._identity.is_authenticated:
            return False
        session_id = self._identity.current_session_id
        durable = self._container.load_durable()
        if self._identity.session_is_live(durable):
            return False
        logger.info("session %s no longer present in durable state, signing out", session_id)
        self._identity.force_logout(durable)
        return True

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._watch())

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _watch(self) -> None:
        try:
            while self._identity.is_authenticated:
                await asyncio.sleep(self.interval_s)
                if self.check():
                    return
        except asyncio.CancelledError:
            return
