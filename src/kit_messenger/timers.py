from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

SIMULATED_ACTION_S = 2.0


class DeferredAction:
    """Single-shot, cancellable timer for simulated actions.

    The context (for example the active conversation) is captured when the
    timer is scheduled and compared again when it fires; the effect only runs
    if the context is unchanged.
    """

    def __init__(self, context_func: Callable[[], Any], delay_s: float = SIMULATED_ACTION_S) -> None:
        if delay_s < 0:
            raise ValueError("delay_s must be non-negative")
        self._context = context_func
        self.delay_s = delay_s
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self, effect: Callable[[Any], None]) -> None:
        self.cancel()
        context = self._context()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay_s, self._fire, context, effect)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, context: Any, effect: Callable[[Any], None]) -> None:
        self._handle = None
        if context is None or self._context() != context:
            logger.debug("dropping deferred action, context changed")
            return
        effect(context)
