from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from reminder_engine.models import Ticket
from reminder_engine.services.dispatch import (
    PlannedDelivery,
    ReminderRunSummary,
    plan_deliveries,
    run_reminder_job,
)
from reminder_engine.services.push_notifications import PushGateway
from reminder_engine.services.reminder_intents import (
    ENTITY_TICKET,
    PRIORITY_HIGH,
    PRIORITY_URGENT,
    TICKET_COOLDOWN,
    ReminderIntent,
    format_local,
    normalize_ts,
)

JOB_NAME = "tickets:send-reminders"
KEY_OVERDUE = "sla_overdue"
KEY_DUE_SOON = "sla_due_soon"
OPEN_STATUSES = ("open", "assigned", "in_progress")
DUE_SOON_WINDOW = timedelta(minutes=60)
SCAN_LIMIT = 200


def evaluate_ticket(ticket: Ticket, now_utc: datetime) -> ReminderIntent | None:
    if not ticket.assigned_to or ticket.sla_due_at is None:
        return None

    due_utc = normalize_ts(ticket.sla_due_at)
    is_overdue = due_utc < normalize_ts(now_utc)
    client_name = ticket.client.display_name if ticket.client is not None else "Cliente"
    action_url = f"/tickets/{ticket.id}"
    message = (
        ("SLA vencido.\n" if is_overdue else "SLA por vencer.\n")
        + f"Cliente: {client_name}\n"
        + f"Título: {ticket.title}\n"
        + f"Prioridad: {ticket.priority}\n"
        + f"Vence: {format_local(due_utc)}"
    )
    return ReminderIntent(
        entity_type=ENTITY_TICKET,
        entity_id=ticket.id,
        reminder_key=KEY_OVERDUE if is_overdue else KEY_DUE_SOON,
        title=(
            f"Ticket vencido: {ticket.ticket_number}"
            if is_overdue
            else f"Ticket por vencer: {ticket.ticket_number}"
        ),
        message=message,
        action_url=action_url,
        priority=PRIORITY_URGENT if is_overdue else PRIORITY_HIGH,
        payload={
            "ticket_number": ticket.ticket_number,
            "client_id": ticket.client_id,
            "assigned_to": ticket.assigned_to,
            "status": ticket.status,
            "priority": ticket.priority,
            "url": action_url,
        },
    )


def plan_ticket_reminders(db: Session, now_utc: datetime) -> tuple[int, list[PlannedDelivery]]:
    tickets = db.scalars(
        select(Ticket)
        .options(selectinload(Ticket.client))
        .where(
            Ticket.assigned_to.is_not(None),
            Ticket.status.in_(OPEN_STATUSES),
            Ticket.sla_due_at.is_not(None),
            Ticket.sla_due_at <= now_utc + DUE_SOON_WINDOW,
            Ticket.deleted_at.is_(None),
        )
        .order_by(Ticket.sla_due_at.asc(), Ticket.id.asc())
        .limit(SCAN_LIMIT)
    ).all()

    planned: list[PlannedDelivery] = []
    for ticket in tickets:
        intent = evaluate_ticket(ticket, now_utc)
        if intent is None:
            continue
        planned.extend(plan_deliveries(db, intent, candidate_user_ids=[ticket.assigned_to]))
    return len(tickets), planned


def send_ticket_reminders(
    now_utc: datetime,
    db: Session | None = None,
    *,
    gateway: PushGateway | None = None,
) -> ReminderRunSummary:
    return run_reminder_job(
        JOB_NAME,
        planner=plan_ticket_reminders,
        cooldown=TICKET_COOLDOWN,
        now_utc=now_utc,
        db=db,
        gateway=gateway,
    )
