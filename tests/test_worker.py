import unittest
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import httpx

from docdesk_worker.api_client import ApiClient
from docdesk_worker.config import Settings
from docdesk_worker.scheduler import get_timezone, next_run_at, seconds_until_next_run

IST = ZoneInfo("Asia/Kolkata")


def _settings(**overrides):
    values = dict(
        redis_url="redis://localhost:6379/0",
        api_base="http://api.internal/",
        ingest_token="worker-secret",
        api_timeout_seconds=5.0,
        reminder_hour=9,
        reminder_timezone="Asia/Kolkata",
    )
    values.update(overrides)
    return Settings(**values)


class SchedulerTests(unittest.TestCase):
    def test_runs_later_the_same_day(self):
        now = datetime(2025, 3, 1, 2, 0, tzinfo=timezone.utc)  # 07:30 IST
        run = next_run_at(now, 9, IST)
        self.assertEqual(run, datetime(2025, 3, 1, 9, 0, tzinfo=IST))
        self.assertEqual(seconds_until_next_run(now, 9, IST), 90 * 60)

    def test_rolls_over_to_next_day(self):
        at_nine = datetime(2025, 3, 1, 3, 30, tzinfo=timezone.utc)
        self.assertEqual(next_run_at(at_nine, 9, IST), datetime(2025, 3, 2, 9, 0, tzinfo=IST))
        late = datetime(2025, 3, 1, 20, 0, tzinfo=timezone.utc)  # 01:30 IST on the 2nd
        self.assertEqual(next_run_at(late, 9, IST), datetime(2025, 3, 2, 9, 0, tzinfo=IST))

    def test_unknown_timezone_falls_back(self):
        self.assertEqual(get_timezone("Mars/Olympus"), ZoneInfo("Asia/Kolkata"))


class ApiClientTests(unittest.TestCase):
    def test_run_reminders_posts_with_worker_token(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"sent": 2, "errors": 0, "skipped": 1})

        client = ApiClient(_settings(), client=httpx.Client(transport=httpx.MockTransport(handler)))
        self.assertEqual(client.run_reminders(), {"sent": 2, "errors": 0, "skipped": 1})
        self.assertEqual(str(seen[0].url), "http://api.internal/api/internal/reminders/run")
        self.assertEqual(seen[0].headers["Authorization"], "Bearer worker-secret")

    def test_missing_configuration_skips_call(self):
        client = ApiClient(_settings(api_base=None))
        self.assertIsNone(client.run_reminders())
        client.close()

    def test_http_errors_propagate(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(403, json={"detail": "Invalid worker authorization"}))
        client = ApiClient(_settings(), client=httpx.Client(transport=transport))
        with self.assertRaises(httpx.HTTPStatusError):
            client.run_reminders()


if __name__ == "__main__":
    unittest.main()
