"""Accounts, login lockout and multi-device session bookkeeping."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from .container import StateContainer, holds_session
from .errors import AccountLocked, DuplicateName, Forbidden, InvalidInput, InvalidTarget, UserNotFound, WrongPassword
from .state import AppState, Session, User
from .store import _now_ms, new_id
from .throttle import AttemptThrottle, password_subject

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_LABEL = "Unknown device"


def find_user_by_name(state: AppState, name: str) -> Optional[User]:
    wanted = name.strip().lower()
    for user in state.users:
        if user.name.lower() == wanted:
            return user
    return None


def require_current_user(state: AppState) -> User:
    user = state.current_user
    if user is None or state.current_session_id is None:
        raise Forbidden("not signed in")
    return user


class IdentityManager:
    """Unauthenticated <-> Authenticated(session) transitions for this device."""

    def __init__(
        self,
        container: StateContainer,
        *,
        throttle: AttemptThrottle | None = None,
        device_label: str = DEFAULT_DEVICE_LABEL,
        now_func: Callable[[], int] = _now_ms,
    ) -> None:
        self._container = container
        self.throttle = throttle or AttemptThrottle()
        self.device_label = device_label
        self._now = now_func

    @property
    def current_user(self) -> Optional[User]:
        return self._container.state.current_user

    @property
    def current_session_id(self) -> Optional[str]:
        return self._container.state.current_session_id

    @property
    def current_session(self) -> Optional[Session]:
        state = self._container.state
        return state.session(state.current_session_id)

    @property
    def is_authenticated(self) -> bool:
        state = self._container.state
        return state.current_user is not None and state.current_session_id is not None

    def _open_session(self, draft: AppState, user: User) -> Session:
        now_ms = self._now()
        session = Session(
            id=new_id(),
            user_id=user.id,
            device_label=self.device_label,
            created_at_ms=now_ms,
            last_active_ms=now_ms,
        )
        draft.sessions.append(session)
        draft.current_user_id = user.id
        draft.current_session_id = session.id
        return session

    def register(self, name: str, password: str, avatar: Optional[str] = None) -> User:
        clean_name = name.strip()
        if not clean_name or not password.strip():
            raise InvalidInput("name and password required")
        with self._container.transaction(require_session=False) as draft:
            if find_user_by_name(draft, clean_name) is not None:
                raise DuplicateName(f"name {clean_name!r} is taken")
            user = User(id=new_id(), name=clean_name, password=password, avatar=avatar)
            draft.users.append(user)
            self._open_session(draft, user)
        return user

    def login(self, name: str, password: str) -> Session:
        now_ms = self._now()
        state = self._container.state
        user = find_user_by_name(state, name)
        if user is None:
            raise UserNotFound("no such user")

        minutes = self.throttle.locked_minutes(state.login_attempts, user.id, now_ms)
        if minutes is not None:
            raise AccountLocked(minutes)

        if user.password != password:
            with self._container.transaction(require_session=False) as draft:
                locked = self.throttle.record_failure(draft.login_attempts, user.id, now_ms)
            if locked:
                logger.info("login locked for user %s", user.id)
                raise AccountLocked(self.throttle.lockout_minutes)
            raise WrongPassword("wrong password")

        with self._container.transaction(require_session=False) as draft:
            session = self._open_session(draft, user)
            self.throttle.reset(draft.login_attempts, user.id)
        return session

    def logout(self) -> None:
        with self._container.transaction(require_session=False) as draft:
            session_id = draft.current_session_id
            if session_id is not None:
                draft.sessions = [s for s in draft.sessions if s.id != session_id]
            draft.current_session_id = None
            draft.current_user_id = None

    def change_password(self, old_password: str, new_password: str) -> None:
        now_ms = self._now()
        state = self._container.state
        user = require_current_user(state)
        subject = password_subject(user.id)

        minutes = self.throttle.locked_minutes(state.login_attempts, subject, now_ms)
        if minutes is not None:
            raise AccountLocked(minutes)

        if user.password != old_password:
            with self._container.transaction() as draft:
                locked = self.throttle.record_failure(draft.login_attempts, subject, now_ms)
            if locked:
                logger.info("password change locked for user %s", user.id)
                raise AccountLocked(self.throttle.lockout_minutes)
            raise WrongPassword("wrong password")

        if not new_password.strip():
            raise InvalidInput("new password required")

        with self._container.transaction() as draft:
            target = draft.user(user.id)
            if target is not None:
                target.password = new_password
            self.throttle.reset(draft.login_attempts, subject)

    def update_profile(self, name: Optional[str] = None, avatar: Optional[str] = None) -> User:
        """Rename and/or change the avatar, mirroring the change into chat headers."""

        with self._container.transaction() as draft:
            user = require_current_user(draft)
            if name is not None:
                clean_name = name.strip()
                if not clean_name:
                    raise InvalidInput("name required")
                existing = find_user_by_name(draft, clean_name)
                if existing is not None and existing.id != user.id:
                    raise DuplicateName(f"name {clean_name!r} is taken")
                user.name = clean_name
            if avatar is not None:
                user.avatar = avatar
            for chat in draft.chats:
                if chat.peer_user_id == user.id:
                    chat.peer_name = user.name
                    chat.peer_avatar = user.avatar
        return user

    def list_sessions(self, user_id: str) -> List[Session]:
        sessions = [s for s in self._container.state.sessions if s.user_id == user_id]
        return sorted(sessions, key=lambda s: s.created_at_ms)

    def revoke_session(self, session_id: str) -> None:
        """Remove a session by id, whichever device holds it."""

        with self._container.transaction() as draft:
            require_current_user(draft)
            session = draft.session(session_id)
            if session is None:
                raise InvalidTarget("unknown session")
            draft.sessions = [s for s in draft.sessions if s.id != session_id]
            if session_id == draft.current_session_id:
                draft.current_session_id = None
                draft.current_user_id = None
        logger.info("revoked session %s", session_id)

    def touch(self, draft: AppState) -> None:
        session = draft.session(draft.current_session_id)
        if session is not None:
            session.last_active_ms = self._now()

    def session_is_live(self, durable: AppState) -> bool:
        """Whether ``durable`` still holds this device's session for its user."""

        state = self._container.state
        return holds_session(durable, state.current_user_id, state.current_session_id)

    def force_logout(self, durable: AppState) -> None:
        """Sign this device out, adopting ``durable`` and announcing the revocation."""

        session_id = self.current_session_id
        if session_id is not None:
            self._container.sign_out(durable, session_id)
