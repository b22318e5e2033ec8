import asyncio
import unittest

from kit_messenger.config import MessengerConfig
from kit_messenger.events import SESSION_REVOKED
from kit_messenger.messenger import Messenger
from kit_messenger.state import DirectTarget
from kit_messenger.store import InMemoryStateStore
from kit_messenger.watchdog import RevocationWatch

CONFIG = MessengerConfig(watch_interval_s=0.05, device_label="Phone")


class RevocationWatchTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.store = InMemoryStateStore()
        self.phone = Messenger(CONFIG, store=self.store)
        self.revoked = []
        self.phone.subscribe(SESSION_REVOKED, self.revoked.append)

    async def asyncTearDown(self) -> None:
        await self.phone.close()

    async def _wait_for_revocation(self, timeout: float = 1.0) -> None:
        async def _poll() -> None:
            while not self.revoked:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_poll(), timeout)

    async def test_revocation_from_another_device_signs_this_one_out(self):
        self.assertTrue(self.phone.register("alice", "pw").ok)
        phone_session = self.phone.current_session.id
        self.assertTrue(self.phone.watch.running)

        laptop = Messenger(MessengerConfig(watch_interval_s=0.05, device_label="Laptop"), store=self.store)
        try:
            self.assertTrue(laptop.login("alice", "pw").ok)
            self.assertEqual([s.device_label for s in laptop.list_sessions()], ["Phone", "Laptop"])
            self.assertTrue(laptop.revoke_session(phone_session).ok)

            await self._wait_for_revocation()
        finally:
            await laptop.close()

        self.assertIsNone(self.phone.current_user)
        self.assertIsNone(self.phone.current_session)
        self.assertEqual(len(self.revoked), 1)
        self.assertEqual(self.revoked[0].body, {"session_id": phone_session})
        await asyncio.sleep(0.15)
        self.assertEqual(len(self.revoked), 1)
        self.assertFalse(self.phone.watch.running)

    async def test_forced_logout_does_not_write_back(self):
        self.phone.register("alice", "pw")
        phone_session = self.phone.current_session.id
        durable = self.store.load()
        durable.sessions = []
        self.store.save(durable)

        await self._wait_for_revocation()

        self.assertEqual(self.store.load().sessions, [])
        self.assertIsNone(self.phone.state.session(phone_session))

    async def test_live_session_is_left_alone(self):
        self.phone.register("alice", "pw")
        await asyncio.sleep(0.2)

        self.assertEqual(self.revoked, [])
        self.assertIsNotNone(self.phone.current_user)
        self.assertTrue(self.phone.watch.running)

    async def test_logout_cancels_the_watch(self):
        self.phone.register("alice", "pw")
        self.assertTrue(self.phone.watch.running)

        self.phone.logout()
        self.assertFalse(self.phone.watch.running)
        await asyncio.sleep(0.15)
        self.assertEqual(self.revoked, [])

    async def test_revoking_own_session_stops_without_an_event(self):
        self.phone.register("alice", "pw")
        self.assertTrue(self.phone.revoke_session(self.phone.current_session.id).ok)

        self.assertFalse(self.phone.watch.running)
        await asyncio.sleep(0.15)
        self.assertEqual(self.revoked, [])

    async def test_start_resumes_watch_for_a_restored_session(self):
        self.phone.register("alice", "pw")
        self.phone.watch.cancel()

        restored = Messenger(CONFIG, store=self.store)
        try:
            self.assertFalse(restored.watch.running)
            await restored.start()
            self.assertTrue(restored.watch.running)
        finally:
            await restored.close()


class CheckTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryStateStore()
        self.messenger = Messenger(store=self.store)
        self.watch = RevocationWatch(self.messenger.container, self.messenger.identity, 0.05)

    def test_check_is_a_no_op_when_signed_out(self):
        self.assertFalse(self.watch.check())

    def test_check_detects_a_missing_session(self):
        self.messenger.register("alice", "pw")
        self.assertFalse(self.watch.check())

        durable = self.store.load()
        durable.sessions = []
        self.store.save(durable)

        self.assertTrue(self.watch.check())
        self.assertIsNone(self.messenger.current_user)
        self.assertFalse(self.watch.check())

    def test_check_requires_the_session_to_belong_to_the_user(self):
        alice = self.messenger.register("alice", "pw").value
        durable = self.store.load()
        durable.sessions[0].user_id = "someone-else"
        self.store.save(durable)

        self.assertTrue(self.watch.check())
        self.assertNotEqual(self.messenger.state.sessions[0].user_id, alice.id)

    def test_interval_must_be_positive(self):
        with self.assertRaises(ValueError):
            RevocationWatch(self.messenger.container, self.messenger.identity, 0)


class SharedSlotTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryStateStore()
        self.phone = Messenger(MessengerConfig(device_label="Phone"), store=self.store)
        self.bob = self.phone.register("bob", "pw").value
        self.alice = self.phone.register("alice", "pw").value
        self.phone_session = self.phone.current_session.id
        self.laptop = Messenger(MessengerConfig(device_label="Laptop"), store=self.store)
        self.revoked = []
        self.phone.subscribe(SESSION_REVOKED, self.revoked.append)

    def test_write_after_remote_revocation_does_not_restore_the_session(self):
        self.assertTrue(self.laptop.login("alice", "pw").ok)
        self.assertTrue(self.laptop.revoke_session(self.phone_session).ok)

        self.assertTrue(self.phone.open_conversation(DirectTarget(self.bob.id)).ok)
        self.assertEqual(self.phone.send("hi").code, "forbidden")

        self.assertIsNone(self.store.load().session(self.phone_session))
        self.assertEqual(self.store.load().messages, [])
        self.assertIsNone(self.phone.current_user)
        self.assertIsNone(self.phone.active_target)
        self.assertEqual([event.body for event in self.revoked], [{"session_id": self.phone_session}])

        self.assertFalse(RevocationWatch(self.phone.container, self.phone.identity).check())
        self.assertEqual(self.phone.set_dark_mode(True).value, True)
        self.assertIsNone(self.store.load().session(self.phone_session))
        self.assertEqual(len(self.revoked), 1)

    def test_commit_keeps_writes_from_other_devices(self):
        carol = self.laptop.register("carol", "pw").value
        self.assertIsNone(self.phone.state.user(carol.id))

        group = self.phone.create_group("Team", [carol.id])
        self.assertTrue(group.ok, group.error)

        durable = self.store.load()
        self.assertEqual({user.name for user in durable.users}, {"alice", "bob", "carol"})
        self.assertEqual(durable.group(group.value.id).member_ids, [self.alice.id, carol.id])
        self.assertEqual(durable.current_session_id, self.phone_session)
        self.assertIsNotNone(durable.session(self.laptop.current_session.id))


if __name__ == "__main__":
    unittest.main()
