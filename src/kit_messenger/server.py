"""aiohttp bridge between a presentation layer and the messenger core."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import os
import sys
from typing import Any, Dict, Optional

from aiohttp import WSMsgType, web

from .config import MessengerConfig, load_config_from_env
from .errors import Result
from .events import EventHub, MessengerEvent
from .messenger import Messenger
from .state import (
    DirectChat,
    DirectTarget,
    GroupChat,
    GroupTarget,
    Message,
    Session,
    Target,
    User,
    chat_to_dict,
    group_to_dict,
    message_to_dict,
    session_to_dict,
)

logger = logging.getLogger(__name__)

MESSENGER_KEY = web.AppKey("messenger", Messenger)

STATUS_BY_CODE = {
    "duplicate_name": 409,
    "user_not_found": 404,
    "wrong_password": 401,
    "account_locked": 429,
    "forbidden": 403,
    "invalid_target": 400,
    "invalid_input": 400,
}


def _public_user(user: Optional[User]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {"id": user.id, "name": user.name, "avatar": user.avatar}


def _invalid_request(message: str) -> web.Response:
    return web.json_response({"code": "invalid_request", "message": message}, status=400)


def _respond(result: Result, **payload: Any) -> web.Response:
    error = result.error
    if error is not None:
        return web.json_response(error.to_dict(), status=STATUS_BY_CODE.get(error.code, 400))
    body: Dict[str, Any] = {"status": "ok"}
    body.update(payload)
    return web.json_response(body)


def _serialize(value: Any) -> Any:
    if isinstance(value, User):
        return _public_user(value)
    if isinstance(value, Session):
        return session_to_dict(value)
    if isinstance(value, DirectChat):
        return chat_to_dict(value)
    if isinstance(value, GroupChat):
        return group_to_dict(value)
    if isinstance(value, Message):
        return message_to_dict(value)
    if isinstance(value, (DirectTarget, GroupTarget)):
        return _target_dict(value)
    return value


def _target_dict(target: Target) -> Dict[str, str]:
    return {"kind": "group" if isinstance(target, GroupTarget) else "direct", "id": target.id}


def _parse_target(kind: Any, target_id: Any) -> Optional[Target]:
    if not isinstance(target_id, str) or not target_id:
        return None
    if kind == "direct":
        return DirectTarget(target_id)
    if kind == "group":
        return GroupTarget(target_id)
    return None


async def _json_body(request: web.Request) -> Optional[Dict[str, Any]]:
    try:
        body = await request.json()
    except Exception:
        return None
    if not isinstance(body, dict):
        return None
    return body


def _str_field(body: Dict[str, Any], name: str) -> Optional[str]:
    value = body.get(name)
    return value if isinstance(value, str) else None


async def handle_health(_: web.Request) -> web.Response:
    return web.Response(text="ok")


async def handle_register(request: web.Request) -> web.Response:
    messenger = request.app[MESSENGER_KEY]
    body = await _json_body(request)
    if body is None:
        return _invalid_request("malformed json")
    name = _str_field(body, "name")
    password = _str_field(body, "password")
    if name is None or password is None:
        return _invalid_request("name and password required")
    result = messenger.register(name, password, _str_field(body, "avatar"))
    return _respond(result, user=_serialize(result.value))


async def handle_login(request: web.Request) -> web.Response:
    messenger = request.app[MESSENGER_KEY]
    body = await _json_body(request)
    if body is None:
        return _invalid_request("malformed json")
    name = _str_field(body, "name")
    password = _str_field(body, "password")
    if name is None or password is None:
        return _invalid_request("name and password required")
    result = messenger.login(name, password)
    return _respond(result, session=_serialize(result.value))


async def handle_logout(request: web.Request) -> web.Response:
    return _respond(request.app[MESSENGER_KEY].logout())


async def handle_me(request: web.Request) -> web.Response:
    messenger = request.app[MESSENGER_KEY]
    state = messenger.state
    session = messenger.current_session
    return web.json_response(
        {
            "user": _public_user(messenger.current_user),
            "session": session_to_dict(session) if session else None,
            "lang": state.lang,
            "dark_mode": state.dark_mode,
        }
    )


async def handle_change_password(request: web.Request) -> web.Response:
    messenger = request.app[MESSENGER_KEY]
    body = await _json_body(request)
    if body is None:
        return _invalid_request("malformed json")
    old_password = _str_field(body, "old_password")
    new_password = _str_field(body, "new_password")
    if old_password is None or new_password is None:
        return _invalid_request("old_password and new_password required")
    return _respond(messenger.change_password(old_password, new_password))


async def handle_update_profile(request: web.Request) -> web.Response:
    messenger = request.app[MESSENGER_KEY]
    body = await _json_body(request)
    if body is None:
        return _invalid_request("malformed json")
    result = messenger.update_profile(_str_field(body, "name"), _str_field(body, "avatar"))
    return _respond(result, user=_serialize(result.value))


async def handle_sessions(request: web.Request) -> web.Response:
    messenger = request.app[MESSENGER_KEY]
    return web.json_response({"sessions": [session_to_dict(s) for s in messenger.list_sessions()]})


async def handle_revoke_session(request: web.Request) -> web.Response:
    messenger = request.app[MESSENGER_KEY]
    body = await _json_body(request)
    if body is None:
        return _invalid_request("malformed json")
    session_id = _str_field(body, "session_id")
    if not session_id:
        return _invalid_request("session_id required")
    return _respond(messenger.revoke_session(session_id))


async def handle_search(request: web.Request) -> web.Response:
    messenger = request.app[MESSENGER_KEY]
    result = messenger.find_user_by_exact_name(request.query.get("name", ""))
    return _respond(result, user=_serialize(result.value))


async def handle_chats(request: web.Request) -> web.Response:
    messenger = request.app[MESSENGER_KEY]
    return web.json_response(
        {
            "chats": [chat_to_dict(chat) for chat in messenger.list_chats()],
            "groups": [group_to_dict(group) for group in messenger.list_groups()],
        }
    )


async def handle_direct_chat(request: web.Request) -> web.Response:
    messenger = request.app[MESSENGER_KEY]
    body = await _json_body(request)
    if body is None:
        return _invalid_request("malformed json")
    peer_user_id = _str_field(body, "peer_user_id")
    if not peer_user_id:
        return _invalid_request("peer_user_id required")
    result = messenger.find_or_create_direct_chat(peer_user_id)
    return _respond(result, chat=_serialize(result.value))


async def handle_group_create(request: web.Request) -> web.Response:
    messenger = request.app[MESSENGER_KEY]
    body = await _json_body(request)
    if body is None:
        return _invalid_request("malformed json")
    name = _str_field(body, "name")
    member_ids = body.get("member_ids", [])
    if name is None or not isinstance(member_ids, list) or any(not isinstance(m, str) for m in member_ids):
        return _invalid_request("name and member_ids required")
    result = messenger.create_group(name, member_ids, _str_field(body, "avatar"))
    return _respond(result, group=_serialize(result.value))


async def handle_group_admin(request: web.Request) -> web.Response:
    messenger = request.app[MESSENGER_KEY]
    body = await _json_body(request)
    if body is None:
        return _invalid_request("malformed json")
    group_id = _str_field(body, "group_id")
    user_id = _str_field(body, "user_id")
    is_admin = body.get("is_admin")
    if not group_id or not user_id or not isinstance(is_admin, bool):
        return _invalid_request("group_id, user_id and is_admin required")
    result = messenger.set_admin(group_id, user_id, is_admin)
    return _respond(result, group=_serialize(result.value))


async def handle_group_remove(request: web.Request) -> web.Response:
    messenger = request.app[MESSENGER_KEY]
    body = await _json_body(request)
    if body is None:
        return _invalid_request("malformed json")
    group_id = _str_field(body, "group_id")
    user_id = _str_field(body, "user_id")
    if not group_id or not user_id:
        return _invalid_request("group_id and user_id required")
    result = messenger.remove_member(group_id, user_id)
    return _respond(result, group=_serialize(result.value))


async def handle_group_add(request: web.Request) -> web.Response:
    messenger = request.app[MESSENGER_KEY]
    body = await _json_body(request)
    if body is None:
        return _invalid_request("malformed json")
    group_id = _str_field(body, "group_id")
    user_ids = body.get("user_ids")
    if not group_id or not isinstance(user_ids, list) or any(not isinstance(u, str) for u in user_ids):
        return _invalid_request("group_id and user_ids required")
    result = messenger.add_members(group_id, user_ids)
    return _respond(result, group=_serialize(result.value))


async def handle_open_conversation(request: web.Request) -> web.Response:
    messenger = request.app[MESSENGER_KEY]
    body = await _json_body(request)
    if body is None:
        return _invalid_request("malformed json")
    target = _parse_target(body.get("kind"), body.get("id"))
    if target is None:
        return _invalid_request("kind (direct|group) and id required")
    result = messenger.open_conversation(target)
    return _respond(result, target=_serialize(result.value))


async def handle_close_conversation(request: web.Request) -> web.Response:
    request.app[MESSENGER_KEY].close_conversation()
    return web.json_response({"status": "ok"})


async def handle_send(request: web.Request) -> web.Response:
    messenger = request.app[MESSENGER_KEY]
    body = await _json_body(request)
    if body is None:
        return _invalid_request("malformed json")
    text = _str_field(body, "text")
    kind = body.get("kind", "text")
    if text is None or not isinstance(kind, str):
        return _invalid_request("text required")
    result = messenger.send(text, kind)
    return _respond(result, message=_serialize(result.value))


async def handle_history(request: web.Request) -> web.Response:
    messenger = request.app[MESSENGER_KEY]
    target = _parse_target(request.query.get("kind"), request.query.get("id"))
    if target is None and (request.query.get("kind") or request.query.get("id")):
        return _invalid_request("kind (direct|group) and id required")
    messages = messenger.history(target)
    return web.json_response({"messages": [message_to_dict(m) for m in messages]})


async def handle_delete_message(request: web.Request) -> web.Response:
    messenger = request.app[MESSENGER_KEY]
    body = await _json_body(request)
    if body is None:
        return _invalid_request("malformed json")
    message_id = _str_field(body, "message_id")
    if not message_id:
        return _invalid_request("message_id required")
    return _respond(messenger.delete_message(message_id))


async def handle_settings(request: web.Request) -> web.Response:
    messenger = request.app[MESSENGER_KEY]
    body = await _json_body(request)
    if body is None:
        return _invalid_request("malformed json")
    lang = body.get("lang")
    dark_mode = body.get("dark_mode")
    if lang is not None:
        if not isinstance(lang, str):
            return _invalid_request("lang must be a string")
        result = messenger.set_language(lang)
        if not result.ok:
            return _respond(result)
    if dark_mode is not None:
        if not isinstance(dark_mode, bool):
            return _invalid_request("dark_mode must be a boolean")
        messenger.set_dark_mode(dark_mode)
    state = messenger.state
    return web.json_response({"status": "ok", "lang": state.lang, "dark_mode": state.dark_mode})


async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
    messenger = request.app[MESSENGER_KEY]
    ws = web.WebSocketResponse()
    await ws.prepare(request)

    outbound: asyncio.Queue[MessengerEvent] = asyncio.Queue(maxsize=1000)

    def enqueue_event(event: MessengerEvent) -> None:
        try:
            outbound.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("dropping event %s for slow websocket client", event.kind)

    async def writer() -> None:
        try:
            while True:
                event = await outbound.get()
                await ws.send_json(event.to_frame())
        except asyncio.CancelledError:
            return

    subscription = messenger.subscribe(EventHub.ANY, enqueue_event)
    writer_task = asyncio.create_task(writer())
    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT and msg.data == "ping":
                await ws.send_str("pong")
            elif msg.type == WSMsgType.ERROR:
                break
    finally:
        messenger.unsubscribe(subscription)
        writer_task.cancel()
        try:
            await writer_task
        except asyncio.CancelledError:
            pass
    return ws


def create_app(
    messenger: Messenger | None = None,
    *,
    config: MessengerConfig | None = None,
    start_watch: bool = True,
) -> web.Application:
    messenger = messenger or Messenger(config)
    app = web.Application()
    app[MESSENGER_KEY] = messenger
    app.router.add_get("/healthz", handle_health)
    app.router.add_post("/v1/account/register", handle_register)
    app.router.add_post("/v1/account/login", handle_login)
    app.router.add_post("/v1/account/logout", handle_logout)
    app.router.add_get("/v1/account/me", handle_me)
    app.router.add_post("/v1/account/password", handle_change_password)
    app.router.add_post("/v1/account/profile", handle_update_profile)
    app.router.add_get("/v1/sessions", handle_sessions)
    app.router.add_post("/v1/sessions/revoke", handle_revoke_session)
    app.router.add_get("/v1/users/search", handle_search)
    app.router.add_get("/v1/chats", handle_chats)
    app.router.add_post("/v1/chats/direct", handle_direct_chat)
    app.router.add_post("/v1/groups/create", handle_group_create)
    app.router.add_post("/v1/groups/admin", handle_group_admin)
    app.router.add_post("/v1/groups/remove", handle_group_remove)
    app.router.add_post("/v1/groups/add", handle_group_add)
    app.router.add_post("/v1/conversation/open", handle_open_conversation)
    app.router.add_post("/v1/conversation/close", handle_close_conversation)
    app.router.add_post("/v1/messages/send", handle_send)
    app.router.add_get("/v1/messages/history", handle_history)
    app.router.add_post("/v1/messages/delete", handle_delete_message)
    app.router.add_post("/v1/settings", handle_settings)
    app.router.add_get("/v1/ws", websocket_handler)

    async def start_messenger(_: web.Application) -> None:
        if start_watch:
            await messenger.start()

    async def close_messenger(_: web.Application) -> None:
        await messenger.close()

    app.on_startup.append(start_messenger)
    app.on_cleanup.append(close_messenger)
    return app


def configure_logging(level: str | None = None) -> None:
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    logging.basicConfig(level=level.upper(), format="%(levelname)s %(name)s: %(message)s")


def main(argv: list[str] | None = None) -> int:
    """Entry point for the ``kit-messenger`` command."""

    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Kit messenger local core")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Serve the presentation bridge over HTTP")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port to bind")
    serve_parser.add_argument("--state", default=None, help="State file (.json) or database (.db)")
    serve_parser.add_argument("--device-label", default=None, help="Label recorded on new sessions")
    serve_parser.add_argument("--log-level", default=None, help="Logging level, defaults to LOG_LEVEL or INFO")

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    config = load_config_from_env()
    overrides: Dict[str, Any] = {}
    if args.state is not None:
        overrides["state_path"] = args.state
    if args.device_label is not None:
        overrides["device_label"] = args.device_label
    if overrides:
        config = dataclasses.replace(config, **overrides)

    web.run_app(create_app(config=config), host=args.host, port=args.port)
    return 0


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
