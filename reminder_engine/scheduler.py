from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from reminder_engine.logging_utils import bind_job
from reminder_engine.services import (
    attendance_reminders,
    expense_reminders,
    meeting_reminders,
    request_reminders,
    service_expiry_reminders,
    support_calendar_reminders,
    ticket_reminders,
)
from reminder_engine.services.reminder_jobs import REMINDER_JOBS, run_reminder_job_by_name
from reminder_engine.settings import Settings, get_reminder_timezone, get_settings, parse_daily_time

logger = logging.getLogger("reminder_engine.scheduler")

_scheduler: BackgroundScheduler | None = None
_scheduler_lock = threading.Lock()
_last_runs: dict[str, dict[str, Any]] = {}
_last_runs_lock = threading.Lock()


def build_job_triggers(settings: Settings | None = None) -> dict[str, BaseTrigger]:
    active_settings = settings or get_settings()
    tz = get_reminder_timezone()
    services_hour, services_minute = parse_daily_time(active_settings.services_daily_time)
    support_hour, support_minute = parse_daily_time(active_settings.support_calendar_daily_time)
    return {
        meeting_reminders.JOB_NAME: IntervalTrigger(minutes=active_settings.meetings_interval_minutes, timezone=tz),
        ticket_reminders.JOB_NAME: IntervalTrigger(minutes=active_settings.tickets_interval_minutes, timezone=tz),
        attendance_reminders.JOB_NAME: IntervalTrigger(
            minutes=active_settings.attendance_interval_minutes,
            timezone=tz,
        ),
        expense_reminders.JOB_NAME: CronTrigger(minute=active_settings.expenses_cron_minute, timezone=tz),
        request_reminders.JOB_NAME: CronTrigger(minute=active_settings.requests_cron_minute, timezone=tz),
        service_expiry_reminders.JOB_NAME: CronTrigger(hour=services_hour, minute=services_minute, timezone=tz),
        support_calendar_reminders.JOB_NAME: CronTrigger(hour=support_hour, minute=support_minute, timezone=tz),
    }


def describe_cadences(settings: Settings | None = None) -> dict[str, str]:
    active_settings = settings or get_settings()
    tz_name = str(get_reminder_timezone())
    return {
        meeting_reminders.JOB_NAME: f"every {active_settings.meetings_interval_minutes} minutes",
        ticket_reminders.JOB_NAME: f"every {active_settings.tickets_interval_minutes} minutes",
        attendance_reminders.JOB_NAME: f"every {active_settings.attendance_interval_minutes} minutes",
        expense_reminders.JOB_NAME: f"hourly at :{active_settings.expenses_cron_minute:02d}",
        request_reminders.JOB_NAME: f"hourly at :{active_settings.requests_cron_minute:02d}",
        service_expiry_reminders.JOB_NAME: f"daily at {active_settings.services_daily_time} {tz_name}",
        support_calendar_reminders.JOB_NAME: f"daily at {active_settings.support_calendar_daily_time} {tz_name}",
    }


def _record_last_run(job_name: str, payload: dict[str, Any]) -> None:
    with _last_runs_lock:
        _last_runs[job_name] = payload


def get_last_runs() -> dict[str, dict[str, Any]]:
    with _last_runs_lock:
        return {name: dict(payload) for name, payload in _last_runs.items()}


def run_scheduled_job(job_name: str) -> None:
    started_at = datetime.now(timezone.utc)
    with bind_job(job_name):
        try:
            summary = run_reminder_job_by_name(job_name, started_at)
        except Exception as exc:
            logger.exception("reminder_job_failed", extra={"job_name": job_name})
            _record_last_run(
                job_name,
                {
                    "ok": False,
                    "started_at_utc": started_at.isoformat(),
                    "error": exc.__class__.__name__,
                },
            )
            return

    _record_last_run(
        job_name,
        {
            "ok": True,
            "started_at_utc": started_at.isoformat(),
            **summary.to_dict(),
        },
    )


def start_scheduler() -> BackgroundScheduler | None:
    global _scheduler

    with _scheduler_lock:
        if _scheduler is not None:
            logger.info("reminder_scheduler_already_running")
            return _scheduler

        scheduler = BackgroundScheduler(timezone=get_reminder_timezone())
        for job_name, trigger in build_job_triggers().items():
            scheduler.add_job(
                run_scheduled_job,
                trigger=trigger,
                args=[job_name],
                id=job_name,
                name=job_name,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        scheduler.start()
        _scheduler = scheduler

    logger.info("reminder_scheduler_started", extra={"jobs": sorted(REMINDER_JOBS)})
    return scheduler


def stop_scheduler() -> None:
    global _scheduler

    with _scheduler_lock:
        scheduler = _scheduler
        _scheduler = None
    if scheduler is None:
        return
    scheduler.shutdown(wait=False)
    logger.info("reminder_scheduler_stopped")


def get_scheduler_status() -> dict[str, Any]:
    scheduler = _scheduler
    jobs: list[dict[str, Any]] = []
    if scheduler is not None:
        for job in scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append(
                {
                    "id": job.id,
                    "next_run_time": next_run.isoformat() if next_run is not None else None,
                }
            )
    return {
        "running": bool(scheduler is not None and scheduler.running),
        "jobs": jobs,
        "last_runs": get_last_runs(),
    }
