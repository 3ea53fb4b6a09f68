from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from reminder_engine.models import ServiceRequest
from reminder_engine.services.dispatch import (
    PlannedDelivery,
    ReminderRunSummary,
    plan_deliveries,
    run_reminder_job,
)
from reminder_engine.services.push_notifications import PushGateway
from reminder_engine.services.reminder_intents import (
    ENTITY_REQUEST,
    PRIORITY_HIGH,
    REQUEST_COOLDOWN,
    ReminderIntent,
    format_local,
)

JOB_NAME = "requests:send-reminders"
REMINDER_KEY = "pending_over_24h"
PENDING_AGE = timedelta(hours=24)
SCAN_LIMIT = 200


def evaluate_request(request_row: ServiceRequest, now_utc: datetime) -> ReminderIntent | None:
    if not request_row.area_id:
        return None

    staff_name = request_row.user.name if request_row.user is not None else "Usuario"
    message = (
        "Hay una solicitud pendiente hace más de 24 horas.\n"
        f"Personal: {staff_name}\n"
        f"Título: {request_row.title}\n"
        f"Tipo: {request_row.type}\n"
        f"Registrada: {format_local(request_row.created_at)}"
    )
    return ReminderIntent(
        entity_type=ENTITY_REQUEST,
        entity_id=request_row.id,
        reminder_key=REMINDER_KEY,
        title="Solicitud pendiente por aprobar",
        message=message,
        action_url=f"/requests/{request_row.id}",
        priority=PRIORITY_HIGH,
        payload={
            "area_id": request_row.area_id,
            "status": request_row.status,
            "type": request_row.type,
        },
    )


def plan_request_reminders(db: Session, now_utc: datetime) -> tuple[int, list[PlannedDelivery]]:
    rows = db.scalars(
        select(ServiceRequest)
        .options(selectinload(ServiceRequest.user))
        .where(
            ServiceRequest.status == "pending",
            ServiceRequest.area_id.is_not(None),
            ServiceRequest.deleted_at.is_(None),
            ServiceRequest.created_at <= now_utc - PENDING_AGE,
        )
        .order_by(ServiceRequest.created_at.asc(), ServiceRequest.id.asc())
        .limit(SCAN_LIMIT)
    ).all()

    planned: list[PlannedDelivery] = []
    for row in rows:
        intent = evaluate_request(row, now_utc)
        if intent is None:
            continue
        planned.extend(plan_deliveries(db, intent, area_id=row.area_id))
    return len(rows), planned


def send_request_reminders(
    now_utc: datetime,
    db: Session | None = None,
    *,
    gateway: PushGateway | None = None,
) -> ReminderRunSummary:
    return run_reminder_job(
        JOB_NAME,
        planner=plan_request_reminders,
        cooldown=REQUEST_COOLDOWN,
        now_utc=now_utc,
        db=db,
        gateway=gateway,
    )
