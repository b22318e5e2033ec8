import os
import unittest
from unittest import mock

from kit_messenger.config import MessengerConfig, load_config_from_env


class ConfigTests(unittest.TestCase):
    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            config = load_config_from_env()
        self.assertEqual(config, MessengerConfig())
        self.assertEqual(config.lockout_ms, 300_000)
        self.assertEqual(config.watch_interval_s, 3.0)
        self.assertIsNone(config.state_path)

    def test_values_from_environment(self):
        env = {
            "KIT_MESSENGER_MAX_ATTEMPTS": "3",
            "KIT_MESSENGER_LOCKOUT_S": "60",
            "KIT_MESSENGER_WATCH_INTERVAL_S": "0.5",
            "KIT_MESSENGER_ACTION_DELAY_S": "1.5",
            "KIT_MESSENGER_DEVICE_LABEL": "Desk",
            "KIT_MESSENGER_LANG": "es",
            "KIT_MESSENGER_STATE_PATH": "/tmp/kit.db",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            config = load_config_from_env()
        self.assertEqual(config.max_attempts, 3)
        self.assertEqual(config.lockout_ms, 60_000)
        self.assertEqual(config.watch_interval_s, 0.5)
        self.assertEqual(config.simulated_action_s, 1.5)
        self.assertEqual(config.device_label, "Desk")
        self.assertEqual(config.default_lang, "es")
        self.assertEqual(config.state_path, "/tmp/kit.db")

    def test_invalid_values_name_the_variable(self):
        for name, value in (
            ("KIT_MESSENGER_MAX_ATTEMPTS", "many"),
            ("KIT_MESSENGER_LOCKOUT_S", "0"),
            ("KIT_MESSENGER_WATCH_INTERVAL_S", "-1"),
            ("KIT_MESSENGER_LANG", "de"),
        ):
            with self.subTest(name=name):
                with mock.patch.dict(os.environ, {name: value}, clear=True):
                    with self.assertRaisesRegex(ValueError, name):
                        load_config_from_env()


if __name__ == "__main__":
    unittest.main()
