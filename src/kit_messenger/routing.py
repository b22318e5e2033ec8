from __future__ import annotations

from typing import Callable, List, Optional, Union

from .container import StateContainer
from .conversations import ensure_direct_chat
from .errors import Forbidden, InvalidInput, InvalidTarget
from .state import MESSAGE_KINDS, AppState, DirectChat, DirectTarget, GroupChat, GroupTarget, Message, Target
from .store import _now_ms, new_id

VOICE_SUMMARY = "\U0001f3a4 Voice message"

Conversation = Union[DirectChat, GroupChat, DirectTarget, GroupTarget]


def resolve_target(conversation: Conversation) -> Target:
    """Map an open conversation to the key its messages are stored under."""

    if isinstance(conversation, (DirectTarget, GroupTarget)):
        return conversation
    if isinstance(conversation, DirectChat):
        return DirectTarget(conversation.peer_user_id)
    if isinstance(conversation, GroupChat):
        return GroupTarget(conversation.id)
    raise TypeError(f"not a conversation: {conversation!r}")


def summary_for(text: str, kind: str) -> str:
    return VOICE_SUMMARY if kind == "voice" else text


class MessageRouter:
    """Appends messages under their target and keeps conversation summaries current."""

    def __init__(
        self,
        container: StateContainer,
        *,
        now_func: Callable[[], int] = _now_ms,
        on_send: Callable[[AppState], None] | None = None,
    ) -> None:
        self._container = container
        self._now = now_func
        self._on_send = on_send

    def send(self, sender_id: str, target: Optional[Target], text: str, kind: str = "text") -> Optional[Message]:
        """Store a message; blank text or a missing target is a silent no-op."""

        if target is None or not text.strip():
            return None
        if kind not in MESSAGE_KINDS:
            raise InvalidInput(f"unsupported message kind {kind!r}")

        with self._container.transaction() as draft:
            message = Message(
                id=new_id(),
                from_user_id=sender_id,
                to_target=target,
                text=text,
                kind=kind,
                timestamp_ms=self._now(),
            )
            summary = summary_for(text, kind)
            if isinstance(target, GroupTarget):
                self._summarise_group(draft, message, summary)
            else:
                self._summarise_direct(draft, message, summary)
            draft.messages.append(message)
            if self._on_send is not None:
                self._on_send(draft)
        return message

    def _summarise_direct(self, draft: AppState, message: Message, summary: str) -> None:
        sender = draft.user(message.from_user_id)
        peer = draft.user(message.to_target.id)
        if sender is None or peer is None or sender.id == peer.id:
            raise InvalidTarget("unknown recipient")
        for chat in (ensure_direct_chat(draft, sender.id, peer), ensure_direct_chat(draft, peer.id, sender)):
            chat.last_message = summary
            chat.last_time_ms = message.timestamp_ms

    def _summarise_group(self, draft: AppState, message: Message, summary: str) -> None:
        group = draft.group(message.to_target.id)
        if group is None:
            raise InvalidTarget("unknown group")
        if not group.is_member(message.from_user_id):
            raise Forbidden("not a member of this group")
        group.last_message = summary
        group.last_time_ms = message.timestamp_ms

    def history(self, self_user_id: str, target: Target) -> List[Message]:
        messages = self._container.state.messages
        if isinstance(target, GroupTarget):
            selected = [m for m in messages if isinstance(m.to_target, GroupTarget) and m.to_target.id == target.id]
        else:
            selected = [
                m
                for m in messages
                if isinstance(m.to_target, DirectTarget)
                and (
                    (m.from_user_id == self_user_id and m.to_target.id == target.id)
                    or (m.from_user_id == target.id and m.to_target.id == self_user_id)
                )
            ]
        return sorted(selected, key=lambda m: m.timestamp_ms)

    def delete_message(self, actor_id: str, message_id: str) -> None:
        # Conversation summaries are left as they are, even when the newest
        # message goes away.
        with self._container.transaction() as draft:
            message = next((m for m in draft.messages if m.id == message_id), None)
            if message is None:
                raise InvalidTarget("unknown message")
            allowed = message.from_user_id == actor_id
            if not allowed and isinstance(message.to_target, GroupTarget):
                group = draft.group(message.to_target.id)
                allowed = group is not None and group.is_privileged(actor_id)
            if not allowed:
                raise Forbidden("forbidden")
            draft.messages = [m for m in draft.messages if m.id != message_id]
