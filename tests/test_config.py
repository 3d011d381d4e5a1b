import os
import unittest
from unittest.mock import patch

from rtc_loadtest.config import TEMPLATES_DIR, Settings


class TestSettings(unittest.TestCase):
    
    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings()
        self.assertEqual(settings.poll_interval_seconds, 1.0)
        self.assertEqual(settings.ssh_port, 22)
        self.assertEqual(settings.template_dir, str(TEMPLATES_DIR))
        self.assertEqual(settings.recording_port, 4444)
        self.assertFalse(settings.collect_stats)
    
    def test_environment_overrides(self):
        env = {"LOADTEST_POLL_INTERVAL_SECONDS": "0.5", "LOADTEST_SSH_USER": "admin"}
        with patch.dict(os.environ, env, clear=True):
            settings = Settings()
        self.assertEqual(settings.poll_interval_seconds, 0.5)
        self.assertEqual(settings.ssh_user, "admin")


if __name__ == '__main__':
    unittest.main()
