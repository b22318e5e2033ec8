import unittest

from aiohttp.test_utils import TestClient, TestServer

from kit_messenger.config import MessengerConfig
from kit_messenger.messenger import Messenger
from kit_messenger.server import MESSENGER_KEY, create_app
from kit_messenger.store import InMemoryStateStore


class ServerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.store = InMemoryStateStore()
        self.messenger = Messenger(MessengerConfig(watch_interval_s=10), store=self.store)
        self.app = create_app(self.messenger)
        self.client = TestClient(TestServer(self.app))
        await self.client.start_server()

    async def asyncTearDown(self):
        await self.client.close()

    async def _post(self, path: str, payload):
        response = await self.client.post(path, json=payload)
        return response.status, await response.json()

    async def _register(self, name: str, password: str = "pw") -> dict:
        status, body = await self._post("/v1/account/register", {"name": name, "password": password})
        self.assertEqual(status, 200, body)
        return body["user"]

    async def test_health(self):
        response = await self.client.get("/healthz")
        self.assertEqual(response.status, 200)
        self.assertEqual(await response.text(), "ok")

    async def test_app_exposes_its_messenger(self):
        self.assertIs(self.app[MESSENGER_KEY], self.messenger)

    async def test_register_hides_password_and_rejects_duplicates(self):
        user = await self._register("alice", "secret")
        self.assertEqual(set(user), {"id", "name", "avatar"})

        status, body = await self._post("/v1/account/register", {"name": "Alice", "password": "x"})
        self.assertEqual(status, 409)
        self.assertEqual(body["code"], "duplicate_name")

    async def test_malformed_requests(self):
        response = await self.client.post("/v1/account/login", data="{nope")
        self.assertEqual(response.status, 400)
        self.assertEqual((await response.json())["code"], "invalid_request")

        status, body = await self._post("/v1/account/login", {"name": "alice"})
        self.assertEqual((status, body["code"]), (400, "invalid_request"))

        status, body = await self._post("/v1/account/register", ["alice", "pw"])
        self.assertEqual((status, body["code"]), (400, "invalid_request"))

    async def test_login_failures_map_to_status_codes(self):
        await self._register("alice")
        await self._post("/v1/account/logout", {})

        status, body = await self._post("/v1/account/login", {"name": "bob", "password": "pw"})
        self.assertEqual((status, body["code"]), (404, "user_not_found"))

        for _ in range(4):
            status, body = await self._post("/v1/account/login", {"name": "alice", "password": "bad"})
            self.assertEqual((status, body["code"]), (401, "wrong_password"))

        status, body = await self._post("/v1/account/login", {"name": "alice", "password": "bad"})
        self.assertEqual(status, 429)
        self.assertEqual(body["code"], "account_locked")
        self.assertEqual(body["minutes"], 5)

    async def test_me_and_sessions(self):
        user = await self._register("alice")

        response = await self.client.get("/v1/account/me")
        body = await response.json()
        self.assertEqual(body["user"]["id"], user["id"])
        self.assertEqual(body["session"]["userId"], user["id"])
        self.assertEqual((body["lang"], body["dark_mode"]), ("ru", False))

        response = await self.client.get("/v1/sessions")
        sessions = (await response.json())["sessions"]
        self.assertEqual([s["id"] for s in sessions], [body["session"]["id"]])

        status, _ = await self._post("/v1/sessions/revoke", {"session_id": body["session"]["id"]})
        self.assertEqual(status, 200)
        response = await self.client.get("/v1/account/me")
        self.assertIsNone((await response.json())["user"])

    async def test_direct_conversation_flow(self):
        bob = await self._register("bob")
        await self._register("alice")

        response = await self.client.get("/v1/users/search", params={"name": "BOB"})
        self.assertEqual((await response.json())["user"]["id"], bob["id"])

        status, body = await self._post("/v1/chats/direct", {"peer_user_id": bob["id"]})
        self.assertEqual(status, 200)
        self.assertEqual(body["chat"]["peerName"], "bob")

        status, body = await self._post("/v1/conversation/open", {"kind": "direct", "id": bob["id"]})
        self.assertEqual(body["target"], {"kind": "direct", "id": bob["id"]})

        status, body = await self._post("/v1/messages/send", {"text": "hi"})
        self.assertEqual(status, 200)
        self.assertEqual(body["message"]["toTarget"], bob["id"])
        message_id = body["message"]["id"]

        status, body = await self._post("/v1/messages/send", {"text": "   "})
        self.assertEqual(status, 200)
        self.assertIsNone(body["message"])

        response = await self.client.get("/v1/messages/history")
        self.assertEqual([m["text"] for m in (await response.json())["messages"]], ["hi"])

        response = await self.client.get("/v1/chats")
        chats = (await response.json())["chats"]
        self.assertEqual([c["lastMessage"] for c in chats], ["hi"])

        status, _ = await self._post("/v1/messages/delete", {"message_id": message_id})
        self.assertEqual(status, 200)
        response = await self.client.get("/v1/messages/history", params={"kind": "direct", "id": bob["id"]})
        self.assertEqual((await response.json())["messages"], [])

    async def test_group_roles_over_http(self):
        bob = await self._register("bob")
        carol = await self._register("carol")
        await self._register("alice")

        status, body = await self._post("/v1/groups/create", {"name": "Team", "member_ids": [bob["id"]]})
        self.assertEqual(status, 200)
        group_id = body["group"]["id"]

        status, body = await self._post("/v1/groups/add", {"group_id": group_id, "user_ids": [carol["id"]]})
        self.assertEqual(body["group"]["memberIds"][-1], carol["id"])

        await self._post("/v1/account/logout", {})
        await self._post("/v1/account/login", {"name": "bob", "password": "pw"})
        status, body = await self._post("/v1/groups/remove", {"group_id": group_id, "user_id": carol["id"]})
        self.assertEqual((status, body["code"]), (403, "forbidden"))

        status, body = await self._post(
            "/v1/groups/admin", {"group_id": group_id, "user_id": carol["id"], "is_admin": "yes"}
        )
        self.assertEqual((status, body["code"]), (400, "invalid_request"))

        status, body = await self._post("/v1/groups/remove", {"group_id": "missing", "user_id": carol["id"]})
        self.assertEqual((status, body["code"]), (400, "invalid_target"))

    async def test_settings(self):
        status, body = await self._post("/v1/settings", {"lang": "en", "dark_mode": True})
        self.assertEqual(status, 200)
        self.assertEqual((body["lang"], body["dark_mode"]), ("en", True))

        status, body = await self._post("/v1/settings", {"lang": "de"})
        self.assertEqual((status, body["code"]), (400, "invalid_input"))
        self.assertEqual(self.store.load().lang, "en")

    async def test_websocket_pushes_state_changes(self):
        ws = await self.client.ws_connect("/v1/ws")
        try:
            await ws.send_str("ping")
            self.assertEqual(await ws.receive_str(timeout=1), "pong")

            await self._post("/v1/settings", {"dark_mode": True})
            frame = await ws.receive_json(timeout=1)
            self.assertEqual(frame, {"v": 1, "t": "state.changed", "body": {}})
        finally:
            await ws.close()


if __name__ == "__main__":
    unittest.main()
