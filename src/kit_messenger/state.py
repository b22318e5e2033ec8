"""Records making up the single persisted application state."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

DEFAULT_LANG = "ru"
SUPPORTED_LANGS = ("ru", "en", "es")
MESSAGE_KINDS = ("text", "voice", "emoji")


@dataclass
class User:
    id: str
    name: str
    password: str
    avatar: Optional[str] = None


@dataclass
class Session:
    id: str
    user_id: str
    device_label: str
    created_at_ms: int
    last_active_ms: int


@dataclass
class LoginAttempts:
    count: int = 0
    locked_until_ms: Optional[int] = None


@dataclass
class DirectChat:
    owner_user_id: str
    peer_user_id: str
    peer_name: str
    peer_avatar: Optional[str] = None
    last_message: Optional[str] = None
    last_time_ms: Optional[int] = None


@dataclass
class GroupChat:
    id: str
    name: str
    creator_id: str
    avatar: Optional[str] = None
    admin_ids: List[str] = field(default_factory=list)
    member_ids: List[str] = field(default_factory=list)
    last_message: Optional[str] = None
    last_time_ms: Optional[int] = None

    def is_privileged(self, user_id: str) -> bool:
        return user_id == self.creator_id or user_id in self.admin_ids

    def is_member(self, user_id: str) -> bool:
        return user_id == self.creator_id or user_id in self.member_ids


@dataclass(frozen=True)
class DirectTarget:
    user_id: str

    @property
    def id(self) -> str:
        return self.user_id


@dataclass(frozen=True)
class GroupTarget:
    group_id: str

    @property
    def id(self) -> str:
        return self.group_id


Target = Union[DirectTarget, GroupTarget]


@dataclass
class Message:
    id: str
    from_user_id: str
    to_target: Target
    text: str
    kind: str
    timestamp_ms: int


@dataclass
class AppState:
    current_user_id: Optional[str] = None
    current_session_id: Optional[str] = None
    users: List[User] = field(default_factory=list)
    chats: List[DirectChat] = field(default_factory=list)
    group_chats: List[GroupChat] = field(default_factory=list)
    messages: List[Message] = field(default_factory=list)
    sessions: List[Session] = field(default_factory=list)
    login_attempts: Dict[str, LoginAttempts] = field(default_factory=dict)
    lang: str = DEFAULT_LANG
    dark_mode: bool = False

    def user(self, user_id: Optional[str]) -> Optional[User]:
        if user_id is None:
            return None
        for user in self.users:
            if user.id == user_id:
                return user
        return None

    def group(self, group_id: str) -> Optional[GroupChat]:
        for group in self.group_chats:
            if group.id == group_id:
                return group
        return None

    def session(self, session_id: Optional[str]) -> Optional[Session]:
        if session_id is None:
            return None
        for session in self.sessions:
            if session.id == session_id:
                return session
        return None

    @property
    def current_user(self) -> Optional[User]:
        return self.user(self.current_user_id)


def default_state(lang: str = DEFAULT_LANG) -> AppState:
    return AppState(lang=lang)


# Serialisation. The layout is versionless; every field falls back to its
# default instead of rejecting the whole blob.


def _str(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


def _opt_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _opt_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    # NaN and Infinity are valid JSON to the decoder but not timestamps.
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return int(value)


def _int(value: Any, default: int = 0) -> int:
    parsed = _opt_int(value)
    return default if parsed is None else parsed


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def _dicts(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def user_to_dict(user: User) -> Dict[str, Any]:
    return {"id": user.id, "name": user.name, "password": user.password, "avatar": user.avatar}


def user_from_dict(data: Dict[str, Any]) -> Optional[User]:
    user_id = _opt_str(data.get("id"))
    if not user_id:
        return None
    return User(
        id=user_id,
        name=_str(data.get("name")),
        password=_str(data.get("password")),
        avatar=_opt_str(data.get("avatar")),
    )


def session_to_dict(session: Session) -> Dict[str, Any]:
    return {
        "id": session.id,
        "userId": session.user_id,
        "deviceLabel": session.device_label,
        "createdAt": session.created_at_ms,
        "lastActive": session.last_active_ms,
    }


def session_from_dict(data: Dict[str, Any]) -> Optional[Session]:
    session_id = _opt_str(data.get("id"))
    user_id = _opt_str(data.get("userId"))
    if not session_id or not user_id:
        return None
    created_at = _int(data.get("createdAt"))
    return Session(
        id=session_id,
        user_id=user_id,
        device_label=_str(data.get("deviceLabel")),
        created_at_ms=created_at,
        last_active_ms=_int(data.get("lastActive"), created_at),
    )


def chat_to_dict(chat: DirectChat) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "ownerUserId": chat.owner_user_id,
        "peerUserId": chat.peer_user_id,
        "peerName": chat.peer_name,
        "peerAvatar": chat.peer_avatar,
    }
    if chat.last_message is not None:
        payload["lastMessage"] = chat.last_message
    if chat.last_time_ms is not None:
        payload["lastTime"] = chat.last_time_ms
    return payload


def chat_from_dict(data: Dict[str, Any], fallback_owner: Optional[str]) -> Optional[DirectChat]:
    peer_user_id = _opt_str(data.get("peerUserId")) or _opt_str(data.get("userId"))
    if not peer_user_id:
        return None
    owner = _opt_str(data.get("ownerUserId")) or fallback_owner
    if not owner:
        return None
    peer_name = data.get("peerName", data.get("userName"))
    peer_avatar = data.get("peerAvatar", data.get("userAvatar"))
    return DirectChat(
        owner_user_id=owner,
        peer_user_id=peer_user_id,
        peer_name=_str(peer_name),
        peer_avatar=_opt_str(peer_avatar),
        last_message=_opt_str(data.get("lastMessage")),
        last_time_ms=_opt_int(data.get("lastTime")),
    )


def group_to_dict(group: GroupChat) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": group.id,
        "name": group.name,
        "avatar": group.avatar,
        "creatorId": group.creator_id,
        "adminIds": list(group.admin_ids),
        "memberIds": list(group.member_ids),
    }
    if group.last_message is not None:
        payload["lastMessage"] = group.last_message
    if group.last_time_ms is not None:
        payload["lastTime"] = group.last_time_ms
    return payload


def group_from_dict(data: Dict[str, Any]) -> Optional[GroupChat]:
    group_id = _opt_str(data.get("id"))
    creator_id = _opt_str(data.get("creatorId"))
    if not group_id or not creator_id:
        return None
    member_ids = _str_list(data.get("memberIds"))
    if creator_id not in member_ids:
        member_ids.insert(0, creator_id)
    admin_ids = [admin for admin in _str_list(data.get("adminIds")) if admin in member_ids]
    return GroupChat(
        id=group_id,
        name=_str(data.get("name")),
        creator_id=creator_id,
        avatar=_opt_str(data.get("avatar")),
        admin_ids=admin_ids,
        member_ids=member_ids,
        last_message=_opt_str(data.get("lastMessage")),
        last_time_ms=_opt_int(data.get("lastTime")),
    )


def target_to_dict(target: Target) -> Dict[str, str]:
    if isinstance(target, GroupTarget):
        return {"toKind": "group", "toTarget": target.group_id}
    return {"toKind": "direct", "toTarget": target.user_id}


def message_to_dict(message: Message) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": message.id,
        "fromUserId": message.from_user_id,
        "text": message.text,
        "kind": message.kind,
        "timestamp": message.timestamp_ms,
    }
    payload.update(target_to_dict(message.to_target))
    return payload


def message_from_dict(data: Dict[str, Any], group_ids: set[str]) -> Optional[Message]:
    message_id = _opt_str(data.get("id"))
    sender = _opt_str(data.get("fromUserId")) or _opt_str(data.get("from"))
    to_id = _opt_str(data.get("toTarget")) or _opt_str(data.get("to"))
    if not message_id or not sender or not to_id:
        return None
    to_kind = data.get("toKind")
    if to_kind not in ("direct", "group"):
        to_kind = "group" if to_id in group_ids else "direct"
    target: Target = GroupTarget(to_id) if to_kind == "group" else DirectTarget(to_id)
    kind = data.get("kind", data.get("type"))
    if kind not in MESSAGE_KINDS:
        kind = "text"
    return Message(
        id=message_id,
        from_user_id=sender,
        to_target=target,
        text=_str(data.get("text")),
        kind=kind,
        timestamp_ms=_int(data.get("timestamp")),
    )


def state_to_dict(state: AppState) -> Dict[str, Any]:
    current_user = state.current_user
    return {
        "currentUser": user_to_dict(current_user) if current_user else None,
        "currentSessionId": state.current_session_id,
        "users": [user_to_dict(user) for user in state.users],
        "chats": [chat_to_dict(chat) for chat in state.chats],
        "groupChats": [group_to_dict(group) for group in state.group_chats],
        "messages": [message_to_dict(message) for message in state.messages],
        "sessions": [session_to_dict(session) for session in state.sessions],
        "loginAttempts": {
            subject: {"count": attempts.count, "lockedUntil": attempts.locked_until_ms}
            for subject, attempts in state.login_attempts.items()
        },
        "lang": state.lang,
        "darkMode": state.dark_mode,
    }


def state_from_dict(data: Dict[str, Any], default_lang: str = DEFAULT_LANG) -> AppState:
    """Build an AppState from a decoded blob, defaulting field by field."""

    users = [user for user in map(user_from_dict, _dicts(data.get("users"))) if user is not None]

    current_user_id: Optional[str] = None
    raw_current = data.get("currentUser")
    if isinstance(raw_current, dict):
        current_user_id = _opt_str(raw_current.get("id"))
    elif isinstance(raw_current, str):
        current_user_id = raw_current
    if current_user_id is not None and not any(user.id == current_user_id for user in users):
        current_user_id = None

    groups = [group for group in map(group_from_dict, _dicts(data.get("groupChats"))) if group is not None]
    group_ids = {group.id for group in groups}

    chats = []
    for raw_chat in _dicts(data.get("chats")):
        chat = chat_from_dict(raw_chat, current_user_id)
        if chat is not None:
            chats.append(chat)

    messages = []
    for raw_message in _dicts(data.get("messages")):
        message = message_from_dict(raw_message, group_ids)
        if message is not None:
            messages.append(message)

    sessions = [s for s in map(session_from_dict, _dicts(data.get("sessions"))) if s is not None]

    login_attempts: Dict[str, LoginAttempts] = {}
    raw_attempts = data.get("loginAttempts")
    if isinstance(raw_attempts, dict):
        for subject, record in raw_attempts.items():
            if not isinstance(subject, str) or not isinstance(record, dict):
                continue
            login_attempts[subject] = LoginAttempts(
                count=max(_int(record.get("count")), 0),
                locked_until_ms=_opt_int(record.get("lockedUntil")),
            )

    lang = data.get("lang")
    if lang not in SUPPORTED_LANGS:
        lang = default_lang
    dark_mode = data.get("darkMode")

    return AppState(
        current_user_id=current_user_id,
        current_session_id=_opt_str(data.get("currentSessionId")),
        users=users,
        chats=chats,
        group_chats=groups,
        messages=messages,
        sessions=sessions,
        login_attempts=login_attempts,
        lang=lang,
        dark_mode=dark_mode if isinstance(dark_mode, bool) else False,
    )
