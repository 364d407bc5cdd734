import os
import unittest

from pydantic import ValidationError

from policy_agent.config import AgentConfig


class TestConfig(unittest.TestCase):
    def test_settings_defaults(self):
        previous = os.environ.pop("AM_AGENT_SERVER_URL", None)
        try:
            s = AgentConfig()
            self.assertEqual(s.server_url, "http://openam.example.com:8080/openam")
            self.assertEqual(s.realm, "/")
            self.assertEqual(s.notification_path, "/agent/notifications")
            self.assertEqual(s.cdsso_path, "/agent/cdsso")
            self.assertEqual(s.request_timeout_seconds, 5.0)
            self.assertEqual(s.reauth_attempts, 5)
            self.assertFalse(s.notifications_enabled)
            self.assertFalse(s.let_client_handle_errors)
        finally:
            if previous is not None:
                os.environ["AM_AGENT_SERVER_URL"] = previous

    def test_settings_env_override(self):
        previous = os.environ.get("AM_AGENT_SERVER_URL")
        try:
            os.environ["AM_AGENT_SERVER_URL"] = "https://am.example.com/am/"
            s = AgentConfig()
            self.assertEqual(s.server_url, "https://am.example.com/am")
        finally:
            if previous is None:
                os.environ.pop("AM_AGENT_SERVER_URL", None)
            else:
                os.environ["AM_AGENT_SERVER_URL"] = previous

    def test_bool_override(self):
        previous = os.environ.get("AM_AGENT_NOTIFICATIONS_ENABLED")
        try:
            os.environ["AM_AGENT_NOTIFICATIONS_ENABLED"] = "true"
            self.assertTrue(AgentConfig().notifications_enabled)
        finally:
            if previous is None:
                os.environ.pop("AM_AGENT_NOTIFICATIONS_ENABLED", None)
            else:
                os.environ["AM_AGENT_NOTIFICATIONS_ENABLED"] = previous

    def test_paths_get_leading_slash(self):
        s = AgentConfig(notification_path="hooks/am", cdsso_path="/sso")
        self.assertEqual(s.notification_path, "/hooks/am")
        self.assertEqual(s.cdsso_path, "/sso")

    def test_config_is_frozen(self):
        s = AgentConfig()
        with self.assertRaises(ValidationError):
            s.realm = "/other"


if __name__ == "__main__":
    unittest.main()
