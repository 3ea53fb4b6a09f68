from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from typing import Any

from reminder_engine.settings import get_reminder_timezone

PRIORITY_NORMAL = "normal"
PRIORITY_HIGH = "high"
PRIORITY_URGENT = "urgent"

AUDIENCE_PRIMARY = "primary"
AUDIENCE_BROADCAST_ADMIN = "broadcast_admin"

ENTITY_ATTENDANCE = "attendance"
ENTITY_EXPENSE = "expense"
ENTITY_REQUEST = "request"
ENTITY_TICKET = "ticket"
ENTITY_CLIENT_SERVICE = "client_service"
ENTITY_MEETING = "meeting"
ENTITY_SUPPORT_DUTY = "support_duty"

NOTIFICATION_TYPE_BY_ENTITY: dict[str, str] = {
    ENTITY_ATTENDANCE: "attendance",
    ENTITY_EXPENSE: "expense",
    ENTITY_REQUEST: "requests",
    ENTITY_TICKET: "ticket",
    ENTITY_CLIENT_SERVICE: "service",
    ENTITY_MEETING: "meeting",
    ENTITY_SUPPORT_DUTY: "support_calendar",
}

ENTITY_ID_FIELD_BY_ENTITY: dict[str, str] = {
    ENTITY_ATTENDANCE: "attendance_id",
    ENTITY_EXPENSE: "expense_id",
    ENTITY_REQUEST: "request_id",
    ENTITY_TICKET: "ticket_id",
    ENTITY_CLIENT_SERVICE: "client_service_id",
    ENTITY_MEETING: "meeting_id",
    ENTITY_SUPPORT_DUTY: "assignment_id",
}

ATTENDANCE_COOLDOWN = timedelta(hours=6)
EXPENSE_COOLDOWN = timedelta(hours=23)
REQUEST_COOLDOWN = timedelta(hours=23)
TICKET_COOLDOWN = timedelta(minutes=55)
SERVICE_EXPIRY_COOLDOWN = timedelta(hours=20)
MEETING_COOLDOWN = timedelta(minutes=25)
SUPPORT_DUTY_COOLDOWN = timedelta(hours=20)


@dataclass(frozen=True, slots=True)
class ReminderIntent:
    entity_type: str
    entity_id: int
    reminder_key: str
    title: str
    message: str
    action_url: str | None
    priority: str = PRIORITY_NORMAL
    payload: dict[str, Any] = field(default_factory=dict)
    audience: str = AUDIENCE_PRIMARY

    @property
    def notification_type(self) -> str:
        return NOTIFICATION_TYPE_BY_ENTITY[self.entity_type]

    def notification_data(self) -> dict[str, Any]:
        data: dict[str, Any] = {ENTITY_ID_FIELD_BY_ENTITY[self.entity_type]: self.entity_id}
        data.update(self.payload)
        data["reminder"] = self.reminder_key
        data["audience"] = self.audience
        return data

    def for_admins(
        self,
        *,
        title: str | None = None,
        message: str | None = None,
        priority: str | None = None,
    ) -> ReminderIntent:
        return replace(
            self,
            audience=AUDIENCE_BROADCAST_ADMIN,
            title=title if title is not None else self.title,
            message=message if message is not None else self.message,
            priority=priority if priority is not None else self.priority,
        )


def normalize_ts(ts_utc: datetime) -> datetime:
    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)
    return ts_utc.astimezone(timezone.utc)


def local_today(now_utc: datetime) -> date:
    return normalize_ts(now_utc).astimezone(get_reminder_timezone()).date()


def format_local(ts_utc: datetime, fmt: str = "%d/%m/%Y %H:%M") -> str:
    return normalize_ts(ts_utc).astimezone(get_reminder_timezone()).strftime(fmt)
