from __future__ import annotations

from typing import Iterable, List, Optional

from .container import StateContainer
from .errors import Forbidden, InvalidInput, InvalidTarget
from .state import AppState, DirectChat, GroupChat, User
from .store import new_id


def is_privileged(group: GroupChat, user_id: str) -> bool:
    return group.is_privileged(user_id)


def find_direct_chat(state: AppState, owner_user_id: str, peer_user_id: str) -> Optional[DirectChat]:
    for chat in state.chats:
        if chat.owner_user_id == owner_user_id and chat.peer_user_id == peer_user_id:
            return chat
    return None


def ensure_direct_chat(state: AppState, owner_user_id: str, peer: User) -> DirectChat:
    chat = find_direct_chat(state, owner_user_id, peer.id)
    if chat is None:
        chat = DirectChat(
            owner_user_id=owner_user_id,
            peer_user_id=peer.id,
            peer_name=peer.name,
            peer_avatar=peer.avatar,
        )
        state.chats.append(chat)
    return chat


def _recent_first(item) -> tuple[int, int]:
    if item.last_time_ms is None:
        return (1, 0)
    return (0, -item.last_time_ms)


class ConversationDirectory:
    """Direct chats, groups and the membership/role rules of groups."""

    def __init__(self, container: StateContainer) -> None:
        self._container = container

    def find_user_by_exact_name(self, query: str, excluding_user_id: Optional[str]) -> Optional[User]:
        wanted = query.strip().lower()
        if not wanted:
            return None
        for user in self._container.state.users:
            if user.name.lower() == wanted and user.id != excluding_user_id:
                return user
        return None

    def find_or_create_direct_chat(self, self_user_id: str, peer_user_id: str) -> DirectChat:
        existing = find_direct_chat(self._container.state, self_user_id, peer_user_id)
        if existing is not None:
            return existing
        with self._container.transaction() as draft:
            peer = draft.user(peer_user_id)
            if peer is None or peer_user_id == self_user_id:
                raise InvalidTarget("unknown peer")
            chat = ensure_direct_chat(draft, self_user_id, peer)
        return chat

    def create_group(
        self,
        creator_id: str,
        name: str,
        avatar: Optional[str] = None,
        initial_member_ids: Iterable[str] = (),
    ) -> GroupChat:
        clean_name = name.strip()
        if not clean_name:
            raise InvalidInput("group name required")
        with self._container.transaction() as draft:
            if draft.user(creator_id) is None:
                raise InvalidTarget("unknown creator")
            member_ids = [creator_id]
            for user_id in initial_member_ids:
                if draft.user(user_id) is None:
                    raise InvalidTarget(f"unknown user {user_id}")
                if user_id not in member_ids:
                    member_ids.append(user_id)
            group = GroupChat(
                id=new_id(),
                name=clean_name,
                creator_id=creator_id,
                avatar=avatar,
                admin_ids=[creator_id],
                member_ids=member_ids,
            )
            draft.group_chats.append(group)
        return group

    def set_admin(self, actor_id: str, group_id: str, target_user_id: str, is_admin: bool) -> GroupChat:
        with self._container.transaction() as draft:
            group = self._require_group(draft, group_id)
            self._require_privileged(group, actor_id)
            if target_user_id == group.creator_id:
                raise InvalidTarget("creator role cannot change")
            if target_user_id not in group.member_ids:
                raise InvalidTarget("not a member")
            if is_admin and target_user_id not in group.admin_ids:
                group.admin_ids.append(target_user_id)
            elif not is_admin and target_user_id in group.admin_ids:
                group.admin_ids.remove(target_user_id)
        return group

    def remove_member(self, actor_id: str, group_id: str, target_user_id: str) -> GroupChat:
        with self._container.transaction() as draft:
            group = self._require_group(draft, group_id)
            self._require_privileged(group, actor_id)
            if target_user_id == group.creator_id:
                raise InvalidTarget("creator cannot be removed")
            if target_user_id not in group.member_ids:
                raise InvalidTarget("not a member")
            group.member_ids.remove(target_user_id)
            if target_user_id in group.admin_ids:
                group.admin_ids.remove(target_user_id)
        return group

    def add_members(self, actor_id: str, group_id: str, user_ids: Iterable[str]) -> GroupChat:
        wanted = list(dict.fromkeys(user_ids))
        if not wanted:
            raise InvalidInput("no users to add")
        with self._container.transaction() as draft:
            group = self._require_group(draft, group_id)
            self._require_privileged(group, actor_id)
            for user_id in wanted:
                if user_id in group.member_ids:
                    raise InvalidTarget(f"{user_id} is already a member")
                if draft.user(user_id) is None:
                    raise InvalidTarget(f"unknown user {user_id}")
            group.member_ids.extend(wanted)
        return group

    def list_chats(self, owner_user_id: str) -> List[DirectChat]:
        chats = [chat for chat in self._container.state.chats if chat.owner_user_id == owner_user_id]
        return sorted(chats, key=_recent_first)

    def list_groups(self, user_id: str) -> List[GroupChat]:
        groups = [group for group in self._container.state.group_chats if group.is_member(user_id)]
        return sorted(groups, key=_recent_first)

    @staticmethod
    def _require_group(state: AppState, group_id: str) -> GroupChat:
        group = state.group(group_id)
        if group is None:
            raise InvalidTarget("unknown group")
        return group

    @staticmethod
    def _require_privileged(group: GroupChat, actor_id: str) -> None:
        if not is_privileged(group, actor_id):
            raise Forbidden("forbidden")
