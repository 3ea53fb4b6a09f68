from __future__ import annotations

import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient

from reminder_engine.main import app


class HealthEndpointTests(unittest.TestCase):
    def test_health_reports_scheduler_schema_guard_and_push(self) -> None:
        client = TestClient(app)

        response = client.get("/health")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "ok")
        self.assertIn("ok", body["schema_guard"])
        self.assertIn("running", body["scheduler"])
        self.assertIn("last_runs", body["scheduler"])
        self.assertIn("enabled", body["push"])
        self.assertIn("X-Request-Id", response.headers)

    def test_list_jobs_includes_cadences(self) -> None:
        client = TestClient(app)

        response = client.get("/jobs")

        self.assertEqual(response.status_code, 200)
        jobs = {item["name"]: item for item in response.json()["jobs"]}
        self.assertEqual(len(jobs), 7)
        self.assertEqual(jobs["tickets:send-reminders"]["cadence"], "every 10 minutes")

    def test_unknown_job_returns_error_envelope(self) -> None:
        client = TestClient(app)

        response = client.get("/jobs/payroll:send-reminders", headers={"X-Request-Id": "req-1"})

        self.assertEqual(response.status_code, 404)
        error = response.json()["error"]
        self.assertEqual(error["code"], "UNKNOWN_REMINDER_JOB")
        self.assertEqual(error["request_id"], "req-1")

    def test_job_detail_shows_cadence_and_last_run(self) -> None:
        last_runs = {"meetings:send-reminders": {"ok": True, "sent": 4}}
        with patch("reminder_engine.main.get_scheduler_status", return_value={"running": True, "last_runs": last_runs}):
            client = TestClient(app)
            response = client.get("/jobs/meetings:send-reminders")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["name"], "meetings:send-reminders")
        self.assertEqual(body["cadence"], "every 5 minutes")
        self.assertEqual(body["last_run"]["sent"], 4)

    def test_jobs_cannot_be_triggered_over_http(self) -> None:
        client = TestClient(app)

        response = client.post("/jobs/meetings:send-reminders/run")

        self.assertIn(response.status_code, {404, 405})


if __name__ == "__main__":
    unittest.main()
