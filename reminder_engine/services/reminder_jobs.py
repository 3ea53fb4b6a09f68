from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from reminder_engine.errors import UnknownReminderJobError
from reminder_engine.services import (
    attendance_reminders,
    expense_reminders,
    meeting_reminders,
    request_reminders,
    service_expiry_reminders,
    support_calendar_reminders,
    ticket_reminders,
)
from reminder_engine.services.dispatch import ReminderRunSummary
from reminder_engine.services.push_notifications import PushGateway


@dataclass(frozen=True, slots=True)
class ReminderJob:
    name: str
    runner: Callable[..., ReminderRunSummary]
    description: str
    sent_label: str

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description}


REMINDER_JOBS: dict[str, ReminderJob] = {
    job.name: job
    for job in (
        ReminderJob(
            name=attendance_reminders.JOB_NAME,
            runner=attendance_reminders.send_attendance_checkout_reminders,
            description="Check-out reminders for check-ins left open for 9 hours",
            sent_label="recordatorios de salida",
        ),
        ReminderJob(
            name=expense_reminders.JOB_NAME,
            runner=expense_reminders.send_expense_reminders,
            description="Expenses pending approval for more than 24 hours",
            sent_label="recordatorios de gastos",
        ),
        ReminderJob(
            name=request_reminders.JOB_NAME,
            runner=request_reminders.send_request_reminders,
            description="Requests pending approval for more than 24 hours",
            sent_label="recordatorios de solicitudes",
        ),
        ReminderJob(
            name=ticket_reminders.JOB_NAME,
            runner=ticket_reminders.send_ticket_reminders,
            description="Tickets with an SLA overdue or due within 60 minutes",
            sent_label="recordatorios de tickets",
        ),
        ReminderJob(
            name=service_expiry_reminders.JOB_NAME,
            runner=service_expiry_reminders.send_service_expiry_reminders,
            description="Client services expiring in the configured number of days",
            sent_label="recordatorios de servicios",
        ),
        ReminderJob(
            name=meeting_reminders.JOB_NAME,
            runner=meeting_reminders.send_meeting_reminders,
            description="Meetings starting in 1 day, 1 hour or 15 minutes",
            sent_label="recordatorios de reuniones",
        ),
        ReminderJob(
            name=support_calendar_reminders.JOB_NAME,
            runner=support_calendar_reminders.send_support_calendar_reminders,
            description="Support duty assignments for tomorrow",
            sent_label="recordatorios de soporte",
        ),
    )
}


def get_reminder_job(job_name: str) -> ReminderJob:
    job = REMINDER_JOBS.get(job_name)
    if job is None:
        raise UnknownReminderJobError(job_name)
    return job


def run_reminder_job_by_name(
    job_name: str,
    now_utc: datetime,
    db: Session | None = None,
    *,
    gateway: PushGateway | None = None,
    **options: Any,
) -> ReminderRunSummary:
    job = get_reminder_job(job_name)
    return job.runner(now_utc, db, gateway=gateway, **options)
