import os
import unittest
from pathlib import Path
from unittest.mock import patch

from src.config.settings import SyncSettings, load_settings
from tests.utils.tempdir import managed_temp_dir


class LoadSettingsTests(unittest.TestCase):
    def test_defaults_without_environment(self):
        with patch.dict(os.environ, {}, clear=True), patch("src.config.settings.load_dotenv"):
            settings = load_settings()
        self.assertEqual(settings, SyncSettings())
        self.assertEqual(settings.point_budget, 300_000)
        self.assertEqual(settings.window_seconds, 300.0)

    def test_environment_values_are_coerced(self):
        env = {
            "WIKISYNC_PAGE_BATCH_SIZE": "25",
            "WIKISYNC_REQUESTS_PER_SECOND": "2.5",
            "WIKISYNC_INCREMENTAL_UPDATE": "off",
            "WIKISYNC_DATA_DIR": "/srv/wikisync",
            "WIKISYNC_BASE_URL": "http://example.wikidot.com",
            "WIKISYNC_MAX_RETRIES": "  ",
        }
        with patch.dict(os.environ, env, clear=True), patch("src.config.settings.load_dotenv"):
            settings = load_settings()
        self.assertEqual(settings.page_batch_size, 25)
        self.assertEqual(settings.requests_per_second, 2.5)
        self.assertFalse(settings.incremental_update)
        self.assertEqual(settings.data_dir, Path("/srv/wikisync"))
        self.assertEqual(settings.base_url, "http://example.wikidot.com")
        self.assertEqual(settings.max_retries, 15)

    def test_overrides_win_over_environment(self):
        with patch.dict(os.environ, {"WIKISYNC_VOTE_BATCH_SIZE": "50"}, clear=True), patch(
            "src.config.settings.load_dotenv"
        ):
            settings = load_settings(vote_batch_size=20, show_progress=None)
        self.assertEqual(settings.vote_batch_size, 20)
        self.assertTrue(settings.show_progress)

    def test_invalid_values_raise(self):
        cases = {
            "WIKISYNC_PAGE_BATCH_SIZE": "ten",
            "WIKISYNC_SHOW_PROGRESS": "maybe",
            "WIKISYNC_RETRY_BACKOFF_SECONDS": "-1",
        }
        for name, raw in cases.items():
            with self.subTest(name=name):
                with patch.dict(os.environ, {name: raw}, clear=True), patch("src.config.settings.load_dotenv"):
                    with self.assertRaises(ValueError) as ctx:
                        load_settings()
                self.assertIn(name, str(ctx.exception))

    def test_reads_env_file(self):
        with managed_temp_dir("settings_env") as tmp:
            env_file = tmp / ".env"
            env_file.write_text("WIKISYNC_CHECKPOINT_KEEP=5\nWIKISYNC_VOTE_RETENTION_DAYS=0\n", encoding="utf-8")
            with patch.dict(os.environ, {}, clear=True):
                settings = load_settings(env_file)
        self.assertEqual(settings.checkpoint_keep, 5)
        self.assertEqual(settings.vote_retention_days, 0)
