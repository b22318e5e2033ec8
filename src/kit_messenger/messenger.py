"""Collaborator facade used by the presentation layer.

Every command returns a :class:`~kit_messenger.errors.Result`; expected
failures (lockout, duplicate name, forbidden action, ...) are result values,
never exceptions.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterable, List, Optional, Tuple

from .config import MessengerConfig
from .container import StateContainer
from .conversations import ConversationDirectory
from .errors import InvalidInput, InvalidTarget, MessengerError, Result
from .events import CALL_FINISHED, SESSION_REVOKED, EventHub, MessengerEvent, Subscription
from .identity import IdentityManager, require_current_user
from .routing import Conversation, MessageRouter, resolve_target
from .state import SUPPORTED_LANGS, AppState, DirectChat, GroupChat, GroupTarget, Message, Session, Target, User
from .store import _now_ms, open_store
from .throttle import AttemptThrottle
from .timers import DeferredAction
from .watchdog import RevocationWatch

logger = logging.getLogger(__name__)

VOICE_PLACEHOLDER = "\U0001f3a4 0:03"


class Messenger:
    def __init__(
        self,
        config: MessengerConfig | None = None,
        *,
        store=None,
        now_func: Callable[[], int] = _now_ms,
    ) -> None:
        self.config = config or MessengerConfig()
        self.store = store if store is not None else open_store(self.config.state_path, self.config.default_lang)
        self.hub = EventHub()
        self.container = StateContainer(self.store, self.hub)
        self.identity = IdentityManager(
            self.container,
            throttle=AttemptThrottle(self.config.max_attempts, self.config.lockout_ms),
            device_label=self.config.device_label,
            now_func=now_func,
        )
        self.conversations = ConversationDirectory(self.container)
        self.router = MessageRouter(self.container, now_func=now_func, on_send=self.identity.touch)
        self.watch = RevocationWatch(self.container, self.identity, self.config.watch_interval_s)
        self._active: Optional[Target] = None
        self._voice = DeferredAction(self._action_context, self.config.simulated_action_s)
        self._call = DeferredAction(self._action_context, self.config.simulated_action_s)
        self.hub.subscribe(SESSION_REVOKED, self._on_revoked)

    def _run(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Result:
        try:
            return Result.success(func(*args, **kwargs))
        except MessengerError as exc:
            return Result.failure(exc)

    def _me(self) -> User:
        return require_current_user(self.container.state)

    def _action_context(self) -> Optional[Tuple[Optional[str], Target]]:
        if self._active is None:
            return None
        return (self.identity.current_session_id, self._active)

    def _start_watch(self) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        self.watch.start()

    def _leave(self) -> None:
        self._active = None
        self._voice.cancel()
        self._call.cancel()

    def _on_revoked(self, _: MessengerEvent) -> None:
        self._leave()

    def subscribe(self, kind: str, callback: Callable[[MessengerEvent], None]) -> Subscription:
        return self.hub.subscribe(kind, callback)

    def unsubscribe(self, subscription: Subscription) -> None:
        self.hub.unsubscribe(subscription)

    async def start(self) -> None:
        if self.identity.is_authenticated:
            self.watch.start()

    async def close(self) -> None:
        self._leave()
        await self.watch.stop()
        self.store.close()

    @property
    def state(self) -> AppState:
        return self.container.state

    @property
    def current_user(self) -> Optional[User]:
        return self.identity.current_user

    @property
    def current_session(self) -> Optional[Session]:
        return self.identity.current_session

    @property
    def active_target(self) -> Optional[Target]:
        return self._active

    @property
    def is_recording(self) -> bool:
        return self._voice.pending

    @property
    def in_call(self) -> bool:
        return self._call.pending

    def list_sessions(self) -> List[Session]:
        user = self.current_user
        if user is None:
            return []
        return self.identity.list_sessions(user.id)

    def list_chats(self) -> List[DirectChat]:
        user = self.current_user
        if user is None:
            return []
        return self.conversations.list_chats(user.id)

    def list_groups(self) -> List[GroupChat]:
        user = self.current_user
        if user is None:
            return []
        return self.conversations.list_groups(user.id)

    def history(self, target: Optional[Target] = None) -> List[Message]:
        user = self.current_user
        target = target if target is not None else self._active
        if user is None or target is None:
            return []
        return self.router.history(user.id, target)

    def register(self, name: str, password: str, avatar: Optional[str] = None) -> Result[User]:
        result = self._run(self.identity.register, name, password, avatar)
        if result.ok:
            self._start_watch()
        return result

    def login(self, name: str, password: str) -> Result[Session]:
        result = self._run(self.identity.login, name, password)
        if result.ok:
            self._leave()
            self._start_watch()
        return result

    def logout(self) -> Result[None]:
        self._leave()
        self.watch.cancel()
        return self._run(self.identity.logout)

    def change_password(self, old_password: str, new_password: str) -> Result[None]:
        return self._run(self.identity.change_password, old_password, new_password)

    def update_profile(self, name: Optional[str] = None, avatar: Optional[str] = None) -> Result[User]:
        return self._run(self.identity.update_profile, name, avatar)

    def revoke_session(self, session_id: str) -> Result[None]:
        own = session_id == self.identity.current_session_id
        result = self._run(self.identity.revoke_session, session_id)
        if result.ok and own:
            self._leave()
            self.watch.cancel()
        return result

    def find_user_by_exact_name(self, query: str) -> Result[Optional[User]]:
        def _find() -> Optional[User]:
            return self.conversations.find_user_by_exact_name(query, self._me().id)

        return self._run(_find)

    def find_or_create_direct_chat(self, peer_user_id: str) -> Result[DirectChat]:
        return self._run(lambda: self.conversations.find_or_create_direct_chat(self._me().id, peer_user_id))

    def create_group(
        self, name: str, member_ids: Iterable[str] = (), avatar: Optional[str] = None
    ) -> Result[GroupChat]:
        return self._run(lambda: self.conversations.create_group(self._me().id, name, avatar, list(member_ids)))

    def set_admin(self, group_id: str, user_id: str, is_admin: bool) -> Result[GroupChat]:
        return self._run(lambda: self.conversations.set_admin(self._me().id, group_id, user_id, is_admin))

    def remove_member(self, group_id: str, user_id: str) -> Result[GroupChat]:
        return self._run(lambda: self.conversations.remove_member(self._me().id, group_id, user_id))

    def add_members(self, group_id: str, user_ids: Iterable[str]) -> Result[GroupChat]:
        return self._run(lambda: self.conversations.add_members(self._me().id, group_id, list(user_ids)))

    def open_conversation(self, conversation: Conversation) -> Result[Target]:
        def _open() -> Target:
            self._me()
            target = resolve_target(conversation)
            state = self.container.state
            if isinstance(target, GroupTarget):
                if state.group(target.id) is None:
                    raise InvalidTarget("unknown group")
            elif state.user(target.id) is None:
                raise InvalidTarget("unknown user")
            if target != self._active:
                self._leave()
            self._active = target
            return target

        return self._run(_open)

    def close_conversation(self) -> None:
        self._leave()

    def send(self, text: str, kind: str = "text", target: Optional[Target] = None) -> Result[Optional[Message]]:
        target = target if target is not None else self._active
        return self._run(lambda: self.router.send(self._me().id, target, text, kind))

    def send_emoji(self, emoji: str) -> Result[Optional[Message]]:
        return self.send(emoji, "emoji")

    def delete_message(self, message_id: str) -> Result[None]:
        return self._run(lambda: self.router.delete_message(self._me().id, message_id))

    def start_voice_recording(self) -> Result[None]:
        def _start() -> None:
            self._me()
            if self._active is None:
                raise InvalidTarget("no conversation open")
            self._voice.schedule(self._deliver_voice)

        return self._run(_start)

    def _deliver_voice(self, context: Tuple[Optional[str], Target]) -> None:
        _, target = context
        user = self.current_user
        if user is None:
            return
        result = self._run(self.router.send, user.id, target, VOICE_PLACEHOLDER, "voice")
        if not result.ok:
            logger.info("voice message dropped: %s", result.code)

    def start_call(self) -> Result[None]:
        def _start() -> None:
            self._me()
            if self._active is None:
                raise InvalidTarget("no conversation open")
            self._call.schedule(self._finish_call)

        return self._run(_start)

    def end_call(self) -> None:
        self._call.cancel()

    def _finish_call(self, context: Tuple[Optional[str], Target]) -> None:
        _, target = context
        kind = "group" if isinstance(target, GroupTarget) else "direct"
        self.hub.publish(MessengerEvent(CALL_FINISHED, {"kind": kind, "id": target.id}))

    def set_language(self, lang: str) -> Result[str]:
        def _set() -> str:
            if lang not in SUPPORTED_LANGS:
                raise InvalidInput(f"unsupported language {lang!r}")
            with self.container.transaction() as draft:
                draft.lang = lang
            return lang

        return self._run(_set)

    def set_dark_mode(self, enabled: bool) -> Result[bool]:
        def _set() -> bool:
            with self.container.transaction() as draft:
                draft.dark_mode = bool(enabled)
            return bool(enabled)

        return self._run(_set)

