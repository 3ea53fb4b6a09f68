from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from reminder_engine.models import Expense
from reminder_engine.services.dispatch import (
    PlannedDelivery,
    ReminderRunSummary,
    plan_deliveries,
    run_reminder_job,
)
from reminder_engine.services.push_notifications import PushGateway
from reminder_engine.services.reminder_intents import (
    ENTITY_EXPENSE,
    EXPENSE_COOLDOWN,
    PRIORITY_HIGH,
    ReminderIntent,
    format_local,
)

JOB_NAME = "expenses:send-reminders"
REMINDER_KEY = "pending_over_24h"
PENDING_AGE = timedelta(hours=24)
SCAN_LIMIT = 200


def evaluate_expense(expense: Expense, now_utc: datetime) -> ReminderIntent | None:
    if not expense.area_id:
        return None

    area_name = expense.area.name if expense.area is not None else "Área"
    creator_name = expense.creator.name if expense.creator is not None else "Usuario"
    message = (
        "Hay un gasto pendiente hace más de 24 horas.\n"
        f"Área: {area_name}\n"
        f"Monto: {expense.amount}\n"
        f"Proveedor: {expense.supplier_name or '-'}\n"
        f"Registrado por: {creator_name}\n"
        f"Registrado: {format_local(expense.created_at)}"
    )
    return ReminderIntent(
        entity_type=ENTITY_EXPENSE,
        entity_id=expense.id,
        reminder_key=REMINDER_KEY,
        title="Gasto pendiente de aprobación",
        message=message,
        action_url=f"/expenses/{expense.id}",
        priority=PRIORITY_HIGH,
        payload={
            "area_id": expense.area_id,
            "status": expense.status,
            "amount": str(expense.amount),
        },
    )


def plan_expense_reminders(db: Session, now_utc: datetime) -> tuple[int, list[PlannedDelivery]]:
    expenses = db.scalars(
        select(Expense)
        .options(selectinload(Expense.area), selectinload(Expense.creator))
        .where(
            Expense.status == "pending",
            Expense.area_id.is_not(None),
            Expense.deleted_at.is_(None),
            Expense.created_at <= now_utc - PENDING_AGE,
        )
        .order_by(Expense.created_at.asc(), Expense.id.asc())
        .limit(SCAN_LIMIT)
    ).all()

    planned: list[PlannedDelivery] = []
    for expense in expenses:
        intent = evaluate_expense(expense, now_utc)
        if intent is None:
            continue
        planned.extend(plan_deliveries(db, intent, area_id=expense.area_id))
    return len(expenses), planned


def send_expense_reminders(
    now_utc: datetime,
    db: Session | None = None,
    *,
    gateway: PushGateway | None = None,
) -> ReminderRunSummary:
    return run_reminder_job(
        JOB_NAME,
        planner=plan_expense_reminders,
        cooldown=EXPENSE_COOLDOWN,
        now_utc=now_utc,
        db=db,
        gateway=gateway,
    )
