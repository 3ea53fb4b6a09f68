from __future__ import annotations

import unittest
from datetime import timedelta
from unittest.mock import patch

from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from reminder_engine.scheduler import (
    build_job_triggers,
    get_last_runs,
    get_scheduler_status,
    run_scheduled_job,
    start_scheduler,
    stop_scheduler,
)
from reminder_engine.services.dispatch import ReminderRunSummary
from reminder_engine.services.reminder_jobs import REMINDER_JOBS
from reminder_engine.settings import Settings


class SchedulerTests(unittest.TestCase):
    def tearDown(self) -> None:
        stop_scheduler()

    def test_every_job_has_a_trigger(self) -> None:
        triggers = build_job_triggers(Settings())

        self.assertEqual(set(triggers), set(REMINDER_JOBS))
        meetings = triggers["meetings:send-reminders"]
        self.assertIsInstance(meetings, IntervalTrigger)
        self.assertEqual(meetings.interval, timedelta(minutes=5))
        self.assertIsInstance(triggers["expenses:send-reminders"], CronTrigger)
        self.assertIsInstance(triggers["services:send-expiry-reminders"], CronTrigger)

    def test_failed_tick_is_logged_and_recorded(self) -> None:
        with patch(
            "reminder_engine.scheduler.run_reminder_job_by_name",
            side_effect=RuntimeError("boom"),
        ):
            run_scheduled_job("tickets:send-reminders")

        last = get_last_runs()["tickets:send-reminders"]
        self.assertFalse(last["ok"])
        self.assertEqual(last["error"], "RuntimeError")

    def test_successful_tick_records_summary(self) -> None:
        summary = ReminderRunSummary(job_name="attendance:send-checkout-reminders", sent=2)
        with patch("reminder_engine.scheduler.run_reminder_job_by_name", return_value=summary):
            run_scheduled_job("attendance:send-checkout-reminders")

        last = get_last_runs()["attendance:send-checkout-reminders"]
        self.assertTrue(last["ok"])
        self.assertEqual(last["sent"], 2)

    def test_start_registers_jobs_without_overlap(self) -> None:
        scheduler = start_scheduler()
        assert scheduler is not None
        self.assertIs(start_scheduler(), scheduler)

        jobs = scheduler.get_jobs()
        self.assertEqual(len(jobs), len(REMINDER_JOBS))
        self.assertTrue(all(job.max_instances == 1 and job.coalesce for job in jobs))
        self.assertTrue(get_scheduler_status()["running"])

        stop_scheduler()
        self.assertFalse(get_scheduler_status()["running"])


if __name__ == "__main__":
    unittest.main()
