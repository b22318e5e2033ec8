"""Process-scoped owner of the application state."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from .errors import Forbidden
from .events import SESSION_REVOKED, STATE_CHANGED, EventHub, MessengerEvent
from .state import AppState


def holds_session(state: AppState, user_id: Optional[str], session_id: Optional[str]) -> bool:
    if user_id is None or session_id is None:
        return False
    return any(s.id == session_id and s.user_id == user_id for s in state.sessions)


class StateContainer:
    """Holds the single AppState and funnels every change through a commit.

    A transaction starts from the durable slot rather than the in-memory copy,
    so writes made by another process sharing the slot are kept. Only the
    current user/session pointers belong to this process. A commit persists
    the whole new state before it becomes visible; a transaction that raises
    leaves both the held state and the slot untouched.
    """

    def __init__(self, store, hub: EventHub | None = None, initial: Optional[AppState] = None) -> None:
        self.store = store
        self.hub = hub or EventHub()
        self._lock = threading.RLock()
        self._state = initial if initial is not None else store.load()

    @property
    def state(self) -> AppState:
        return self._state

    def load_durable(self) -> AppState:
        """Read the durable slot, bypassing the in-memory state."""

        return self.store.load()

    @contextmanager
    def transaction(self, *, require_session: bool = True) -> Iterator[AppState]:
        """Yield a draft based on the durable slot and commit it on exit.

        With ``require_session`` a draft is refused once this process's
        session has been revoked elsewhere: the process is signed out and
        the command fails with :class:`Forbidden`.
        """

        with self._lock:
            user_id = self._state.current_user_id
            session_id = self._state.current_session_id
            draft = self.store.load()
            if require_session and session_id is not None and not holds_session(draft, user_id, session_id):
                self.sign_out(draft, session_id)
                raise Forbidden("session was revoked")
            draft.current_user_id = user_id
            draft.current_session_id = session_id
            yield draft
            self.replace(draft)

    def replace(self, new_state: AppState, *, persist: bool = True) -> None:
        with self._lock:
            if persist:
                self.store.save(new_state)
            self._state = new_state
            self.hub.publish(MessengerEvent(STATE_CHANGED))

    def sign_out(self, durable: AppState, session_id: str) -> None:
        """Adopt ``durable`` with this process signed out of ``session_id``.

        Nothing is written back: the slot already reflects the revocation,
        and overwriting it would resurrect stale data.
        """

        with self._lock:
            durable.current_session_id = None
            durable.current_user_id = None
            self.replace(durable, persist=False)
        self.hub.publish(MessengerEvent(SESSION_REVOKED, {"session_id": session_id}))
