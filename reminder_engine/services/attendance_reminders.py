from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import and_, exists, or_, select
from sqlalchemy.orm import Session, aliased, selectinload

from reminder_engine.models import Attendance, AttendanceRecord, AttendanceRecordType, User
from reminder_engine.services.dispatch import (
    PlannedDelivery,
    ReminderRunSummary,
    plan_deliveries,
    run_reminder_job,
)
from reminder_engine.services.push_notifications import PushGateway
from reminder_engine.services.reminder_intents import (
    ATTENDANCE_COOLDOWN,
    ENTITY_ATTENDANCE,
    PRIORITY_NORMAL,
    ReminderIntent,
    format_local,
    local_today,
    normalize_ts,
)

JOB_NAME = "attendance:send-checkout-reminders"
REMINDER_KEY = "missing_checkout"
OPEN_SHIFT_THRESHOLD = timedelta(minutes=540)


def _last_record(attendance: Attendance) -> AttendanceRecord | None:
    records = [item for item in attendance.records if item.deleted_at is None]
    if not records:
        return None
    return max(records, key=lambda item: (normalize_ts(item.timestamp), item.id))


def evaluate_attendance(attendance: Attendance, now_utc: datetime) -> ReminderIntent | None:
    last = _last_record(attendance)
    if last is None or last.type != AttendanceRecordType.CHECK_IN.value:
        return None
    if normalize_ts(now_utc) - normalize_ts(last.timestamp) < OPEN_SHIFT_THRESHOLD:
        return None

    message = (
        "Parece que tienes una entrada registrada sin salida.\n"
        f"Fecha: {attendance.date.isoformat()}\n"
        f"Última entrada: {format_local(last.timestamp)}\n"
        "Por favor marca tu salida si ya terminaste tu jornada."
    )
    return ReminderIntent(
        entity_type=ENTITY_ATTENDANCE,
        entity_id=attendance.id,
        reminder_key=REMINDER_KEY,
        title="Recordatorio: marcar salida",
        message=message,
        action_url="/attendance",
        priority=PRIORITY_NORMAL,
        payload={"record_id": last.id, "user_id": attendance.user_id},
    )


def _open_check_in_clause(cutoff_utc: datetime):
    check_in = aliased(AttendanceRecord)
    later = aliased(AttendanceRecord)
    newer_record = exists().where(
        later.attendance_id == check_in.attendance_id,
        later.deleted_at.is_(None),
        or_(
            later.timestamp > check_in.timestamp,
            and_(later.timestamp == check_in.timestamp, later.id > check_in.id),
        ),
    )
    return exists().where(
        check_in.attendance_id == Attendance.id,
        check_in.deleted_at.is_(None),
        check_in.type == AttendanceRecordType.CHECK_IN.value,
        check_in.timestamp <= cutoff_utc,
        ~newer_record,
    )


def plan_attendance_reminders(db: Session, now_utc: datetime) -> tuple[int, list[PlannedDelivery]]:
    # Bounded by the local date; only shifts already past the threshold are loaded.
    cutoff_utc = normalize_ts(now_utc) - OPEN_SHIFT_THRESHOLD
    attendances = db.scalars(
        select(Attendance)
        .join(User, User.id == Attendance.user_id)
        .options(selectinload(Attendance.records))
        .where(
            Attendance.date == local_today(now_utc),
            Attendance.deleted_at.is_(None),
            User.is_active.is_(True),
            _open_check_in_clause(cutoff_utc),
        )
        .order_by(Attendance.id.asc())
    ).all()

    planned: list[PlannedDelivery] = []
    for attendance in attendances:
        intent = evaluate_attendance(attendance, now_utc)
        if intent is None:
            continue
        planned.extend(plan_deliveries(db, intent, candidate_user_ids=[attendance.user_id]))
    return len(attendances), planned


def send_attendance_checkout_reminders(
    now_utc: datetime,
    db: Session | None = None,
    *,
    gateway: PushGateway | None = None,
) -> ReminderRunSummary:
    return run_reminder_job(
        JOB_NAME,
        planner=plan_attendance_reminders,
        cooldown=ATTENDANCE_COOLDOWN,
        now_utc=now_utc,
        db=db,
        gateway=gateway,
    )
