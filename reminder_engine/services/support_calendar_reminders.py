from __future__ import annotations

from datetime import date, datetime, timedelta
from functools import partial

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from reminder_engine.models import SupportDutyAssignment
from reminder_engine.services.dispatch import (
    PlannedDelivery,
    ReminderRunSummary,
    plan_deliveries,
    run_reminder_job,
)
from reminder_engine.services.push_notifications import PushGateway
from reminder_engine.services.reminder_intents import (
    ENTITY_SUPPORT_DUTY,
    PRIORITY_HIGH,
    PRIORITY_NORMAL,
    SUPPORT_DUTY_COOLDOWN,
    ReminderIntent,
    local_today,
)

JOB_NAME = "support-calendar:send-reminders"
REMINDER_KEY = "duty_tomorrow"
SCAN_LIMIT = 50


def parse_reference_date(raw: str) -> date:
    return date.fromisoformat(raw.strip())


def evaluate_assignment(assignment: SupportDutyAssignment, now_utc: datetime) -> ReminderIntent | None:
    if not assignment.user_id:
        return None

    duty_date = assignment.duty_date.isoformat()
    return ReminderIntent(
        entity_type=ENTITY_SUPPORT_DUTY,
        entity_id=assignment.id,
        reminder_key=REMINDER_KEY,
        title="Recordatorio: soporte mañana",
        message=f"Mañana ({duty_date}) te toca soporte (sábado). Revisa el calendario para detalles.",
        action_url="/dashboard",
        priority=PRIORITY_HIGH,
        payload={"duty_date": duty_date, "user_id": assignment.user_id},
    )


def plan_support_calendar_reminders(
    db: Session,
    now_utc: datetime,
    *,
    reference_date: date | None = None,
) -> tuple[int, list[PlannedDelivery]]:
    target_date = (reference_date or local_today(now_utc)) + timedelta(days=1)
    assignments = db.scalars(
        select(SupportDutyAssignment)
        .options(selectinload(SupportDutyAssignment.user))
        .where(SupportDutyAssignment.duty_date == target_date)
        .order_by(SupportDutyAssignment.id.asc())
        .limit(SCAN_LIMIT)
    ).all()

    planned: list[PlannedDelivery] = []
    for assignment in assignments:
        intent = evaluate_assignment(assignment, now_utc)
        if intent is None:
            continue
        assignee_name = assignment.user.name if assignment.user is not None else "Usuario"
        planned.extend(
            plan_deliveries(
                db,
                intent,
                candidate_user_ids=[assignment.user_id],
                admin_title="Turno de soporte (mañana)",
                admin_message=f"{assignee_name} tiene soporte mañana ({target_date.isoformat()}).",
                admin_priority=PRIORITY_NORMAL,
            )
        )
    return len(assignments), planned


def send_support_calendar_reminders(
    now_utc: datetime,
    db: Session | None = None,
    *,
    gateway: PushGateway | None = None,
    reference_date: date | None = None,
) -> ReminderRunSummary:
    return run_reminder_job(
        JOB_NAME,
        planner=partial(plan_support_calendar_reminders, reference_date=reference_date),
        cooldown=SUPPORT_DUTY_COOLDOWN,
        now_utc=now_utc,
        db=db,
        gateway=gateway,
    )
