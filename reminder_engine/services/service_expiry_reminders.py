from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta
from functools import partial

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from reminder_engine.models import Client, ClientService
from reminder_engine.services.dispatch import (
    PlannedDelivery,
    ReminderRunSummary,
    plan_deliveries,
    run_reminder_job,
)
from reminder_engine.services.push_notifications import PushGateway
from reminder_engine.services.reminder_intents import (
    ENTITY_CLIENT_SERVICE,
    PRIORITY_HIGH,
    SERVICE_EXPIRY_COOLDOWN,
    ReminderIntent,
    local_today,
)

JOB_NAME = "services:send-expiry-reminders"
DEFAULT_DAYS: tuple[int, ...] = (7, 1)
MAX_DAYS_BEFORE = 90
SCAN_LIMIT = 300


def parse_days_option(raw: str | None) -> list[int]:
    days: list[int] = []
    for chunk in (raw or "").split(","):
        value = chunk.strip()
        if not value.isdecimal():
            continue
        days_before = int(value)
        if days_before > MAX_DAYS_BEFORE or days_before in days:
            continue
        days.append(days_before)
    return days or list(DEFAULT_DAYS)


def reminder_key_for(days_before: int) -> str:
    if days_before == 0:
        return "expires_today"
    return f"expires_in_{days_before}d"


def evaluate_client_service(
    client_service: ClientService,
    now_utc: datetime,
    *,
    days_before: int,
) -> ReminderIntent | None:
    if not client_service.client_id or client_service.end_date is None:
        return None

    client_name = client_service.client.display_name if client_service.client is not None else "Cliente"
    service_name = client_service.service.name if client_service.service is not None else "Servicio"
    if days_before == 0:
        title = f"Servicio vencido hoy: {service_name}"
    else:
        title = f"Servicio por vencer en {days_before} día(s): {service_name}"
    action_url = f"/clients/{client_service.client_id}?tab=kardex"
    message = (
        f"Cliente: {client_name}\n"
        f"Servicio: {service_name}\n"
        f"Vence: {client_service.end_date.strftime('%d/%m/%Y')}"
    )
    return ReminderIntent(
        entity_type=ENTITY_CLIENT_SERVICE,
        entity_id=client_service.id,
        reminder_key=reminder_key_for(days_before),
        title=title,
        message=message,
        action_url=action_url,
        priority=PRIORITY_HIGH,
        payload={
            "service_id": client_service.service_id,
            "client_id": client_service.client_id,
            "assigned_to": client_service.assigned_to,
            "end_date": client_service.end_date.isoformat(),
            "url": action_url,
        },
    )


def plan_service_expiry_reminders(
    db: Session,
    now_utc: datetime,
    *,
    days: Sequence[int] = DEFAULT_DAYS,
) -> tuple[int, list[PlannedDelivery]]:
    today = local_today(now_utc)
    scanned = 0
    planned: list[PlannedDelivery] = []
    for days_before in days:
        target_date = today + timedelta(days=days_before)
        rows = db.scalars(
            select(ClientService)
            .options(
                selectinload(ClientService.client),
                selectinload(ClientService.service),
            )
            .where(
                ClientService.end_date == target_date,
                ClientService.deleted_at.is_(None),
                ClientService.client_id.is_not(None),
            )
            .order_by(ClientService.id.asc())
            .limit(SCAN_LIMIT)
        ).all()
        scanned += len(rows)

        for row in rows:
            intent = evaluate_client_service(row, now_utc, days_before=days_before)
            if intent is None:
                continue
            client: Client | None = row.client
            planned.extend(
                plan_deliveries(
                    db,
                    intent,
                    candidate_user_ids=[row.assigned_to, client.assigned_to if client is not None else None],
                )
            )
    return scanned, planned


def send_service_expiry_reminders(
    now_utc: datetime,
    db: Session | None = None,
    *,
    gateway: PushGateway | None = None,
    days: Sequence[int] | None = None,
) -> ReminderRunSummary:
    return run_reminder_job(
        JOB_NAME,
        planner=partial(plan_service_expiry_reminders, days=tuple(days or DEFAULT_DAYS)),
        cooldown=SERVICE_EXPIRY_COOLDOWN,
        now_utc=now_utc,
        db=db,
        gateway=gateway,
    )
