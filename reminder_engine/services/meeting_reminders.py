from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from reminder_engine.models import Meeting
from reminder_engine.services.dispatch import (
    PlannedDelivery,
    ReminderRunSummary,
    plan_deliveries,
    run_reminder_job,
)
from reminder_engine.services.push_notifications import PushGateway
from reminder_engine.services.reminder_intents import (
    ENTITY_MEETING,
    MEETING_COOLDOWN,
    PRIORITY_HIGH,
    PRIORITY_URGENT,
    ReminderIntent,
    format_local,
    normalize_ts,
)

JOB_NAME = "meetings:send-reminders"
SCAN_LIMIT = 300


@dataclass(frozen=True, slots=True)
class MeetingWindow:
    reminder_key: str
    label: str
    lead: timedelta
    tolerance: timedelta
    priority: str

    def bounds(self, now_utc: datetime) -> tuple[datetime, datetime]:
        center = normalize_ts(now_utc) + self.lead
        return center - self.tolerance, center + self.tolerance


MEETING_WINDOWS: tuple[MeetingWindow, ...] = (
    MeetingWindow("starts_in_1d", "1 día", timedelta(days=1), timedelta(minutes=10), PRIORITY_HIGH),
    MeetingWindow("starts_in_1h", "1 hora", timedelta(hours=1), timedelta(minutes=5), PRIORITY_URGENT),
    MeetingWindow("starts_in_15m", "15 minutos", timedelta(minutes=15), timedelta(minutes=5), PRIORITY_URGENT),
)


def matching_window(start_time: datetime, now_utc: datetime) -> MeetingWindow | None:
    start_utc = normalize_ts(start_time)
    for window in MEETING_WINDOWS:
        lower, upper = window.bounds(now_utc)
        if lower <= start_utc <= upper:
            return window
    return None


def meeting_participant_ids(meeting: Meeting) -> list[int]:
    participant_ids: list[int] = []
    for value in [*(meeting.attendees or []), meeting.organizer_id]:
        try:
            user_id = int(value)
        except (TypeError, ValueError):
            continue
        if user_id not in participant_ids:
            participant_ids.append(user_id)
    return participant_ids


def evaluate_meeting(meeting: Meeting, now_utc: datetime) -> ReminderIntent | None:
    window = matching_window(meeting.start_time, now_utc)
    if window is None:
        return None

    message = (
        f"Recordatorio: La reunión '{meeting.title}' está programada en {window.label} "
        f"({format_local(meeting.start_time)})"
    )
    if meeting.location:
        message += f" en {meeting.location}"
    if meeting.meeting_link:
        message += f". Enlace: {meeting.meeting_link}"

    action_url = f"/meetings/{meeting.id}"
    return ReminderIntent(
        entity_type=ENTITY_MEETING,
        entity_id=meeting.id,
        reminder_key=window.reminder_key,
        title=f"Recordatorio: {meeting.title}",
        message=message,
        action_url=action_url,
        priority=window.priority,
        payload={"reminder_time": window.label, "url": action_url},
    )


def plan_meeting_reminders(db: Session, now_utc: datetime) -> tuple[int, list[PlannedDelivery]]:
    window_clauses = []
    for window in MEETING_WINDOWS:
        lower, upper = window.bounds(now_utc)
        window_clauses.append(and_(Meeting.start_time >= lower, Meeting.start_time <= upper))

    meetings = db.scalars(
        select(Meeting)
        .where(
            Meeting.status == "scheduled",
            Meeting.send_reminders.is_(True),
            Meeting.deleted_at.is_(None),
            or_(*window_clauses),
        )
        .order_by(Meeting.start_time.asc(), Meeting.id.asc())
        .limit(SCAN_LIMIT)
    ).all()

    planned: list[PlannedDelivery] = []
    for meeting in meetings:
        intent = evaluate_meeting(meeting, now_utc)
        if intent is None:
            continue
        planned.extend(plan_deliveries(db, intent, candidate_user_ids=meeting_participant_ids(meeting)))
    return len(meetings), planned


def send_meeting_reminders(
    now_utc: datetime,
    db: Session | None = None,
    *,
    gateway: PushGateway | None = None,
) -> ReminderRunSummary:
    return run_reminder_job(
        JOB_NAME,
        planner=plan_meeting_reminders,
        cooldown=MEETING_COOLDOWN,
        now_utc=now_utc,
        db=db,
        gateway=gateway,
    )
