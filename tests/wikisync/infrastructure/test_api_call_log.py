import json
import unittest

from src.wikisync.infrastructure.api_call_log import ApiCallLog
from tests.utils.tempdir import managed_temp_dir


class ApiCallLogTests(unittest.IsolatedAsyncioTestCase):
    async def test_appends_one_line_per_call_with_run_id(self):
        with managed_temp_dir("api_call_log") as tmp:
            log = ApiCallLog(tmp / "raw", run_id="run-9")
            await log.write_event({"operation": "fetch_pages", "outcome": "success"})
            await log.write_event({"run_id": None, "operation": "fetch_votes", "outcome": "transient", "page_url": "頁面"})
            log.close()

            lines = log.file_path.read_text(encoding="utf-8").splitlines()
            self.assertEqual(log.file_path.name, "api_calls_run-9.jsonl")
            self.assertEqual(len(lines), 2)
            self.assertEqual(log.events_written, 2)
            self.assertEqual(log.outcomes[("fetch_votes", "transient")], 1)
            second = json.loads(lines[1])
            self.assertEqual(second["run_id"], "run-9")
            self.assertEqual(second["page_url"], "頁面")

    async def test_no_file_until_first_call(self):
        with managed_temp_dir("api_call_log_empty") as tmp:
            log = ApiCallLog(tmp / "raw", run_id="run-idle")
            log.close()
            self.assertFalse(log.file_path.exists())
            self.assertEqual(log.events_written, 0)

    async def test_write_after_close_raises(self):
        with managed_temp_dir("api_call_log_closed") as tmp:
            log = ApiCallLog(tmp, run_id="run-closed")
            await log.write_event({"operation": "fetch_first_voter", "outcome": "success"})
            log.close()
            log.close()
            with self.assertRaises(RuntimeError):
                await log.write_event({"operation": "fetch_pages"})
