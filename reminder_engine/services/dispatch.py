from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from reminder_engine.audit import log_job_audit
from reminder_engine.db import SessionLocal
from reminder_engine.errors import is_store_unavailable
from reminder_engine.logging_utils import bind_job
from reminder_engine.models import Notification
from reminder_engine.services.push_notifications import PushGateway, WebPushGateway
from reminder_engine.services.recipients import (
    Authorizer,
    resolve_broadcast_recipients,
    resolve_recipients,
)
from reminder_engine.services.reminder_intents import ReminderIntent, normalize_ts
from reminder_engine.services.reminder_ledger import already_sent, record_notification_once

logger = logging.getLogger("reminder_engine.dispatch")

@dataclass(slots=True)
class DispatchResult:
    sent: int = 0
    suppressed: int = 0
    notification_ids: list[int] = field(default_factory=list)
    push_failures: list[dict[str, Any]] = field(default_factory=list)
    delivery_failures: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class PlannedDelivery:
    intent: ReminderIntent
    user_ids: tuple[int, ...]


@dataclass(slots=True)
class ReminderRunSummary:
    job_name: str
    entities_scanned: int = 0
    intents: int = 0
    sent: int = 0
    suppressed: int = 0
    push_failures: list[dict[str, Any]] = field(default_factory=list)
    delivery_failures: list[dict[str, Any]] = field(default_factory=list)

    def add(self, result: DispatchResult) -> None:
        self.sent += result.sent
        self.suppressed += result.suppressed
        self.push_failures.extend(result.push_failures)
        self.delivery_failures.extend(result.delivery_failures)

    def warnings(self) -> list[str]:
        messages = [
            f"push failed for user {item.get('user_id')}: {item.get('error')}"
            for item in self.push_failures
        ]
        messages.extend(
            f"reminder not stored for user {item.get('user_id')} ({item.get('notification_type')} "
            f"{item.get('entity_id')}): {item.get('error')}"
            for item in self.delivery_failures
        )
        return messages

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_name": self.job_name,
            "entities_scanned": self.entities_scanned,
            "intents": self.intents,
            "sent": self.sent,
            "suppressed": self.suppressed,
            "push_failed": len(self.push_failures),
            "delivery_failed": len(self.delivery_failures),
        }
def plan_deliveries(
    db: Session,
    intent: ReminderIntent,
    *,
    candidate_user_ids: Iterable[int | None] = (),
    area_id: int | None = None,
    admin_title: str | None = None,
    admin_message: str | None = None,
    admin_priority: str | None = None,
    authorizer: Authorizer | None = None,
) -> list[PlannedDelivery]:
    try:
        primary_ids = resolve_recipients(
            db,
            intent,
            candidate_user_ids=candidate_user_ids,
            area_id=area_id,
            authorizer=authorizer,
        )
        admin_ids = resolve_broadcast_recipients(db, exclude_user_ids=primary_ids)
    except SQLAlchemyError as exc:
        if is_store_unavailable(exc):
            raise
        db.rollback()
        logger.warning(
            "reminder_entity_skipped",
            extra={
                "notification_type": intent.notification_type,
                "entity_id": intent.entity_id,
                "reminder_key": intent.reminder_key,
                "error": exc.__class__.__name__,
            },
        )
        return []

    planned: list[PlannedDelivery] = []
    if primary_ids:
        planned.append(PlannedDelivery(intent=intent, user_ids=tuple(primary_ids)))
    if admin_ids:
        admin_intent = intent.for_admins(
            title=admin_title,
            message=admin_message,
            priority=admin_priority,
        )
        planned.append(PlannedDelivery(intent=admin_intent, user_ids=tuple(admin_ids)))
    return planned


def _push_tag(intent: ReminderIntent) -> str:
    return f"{intent.notification_type}-{intent.entity_id}-{intent.reminder_key}"


def _push_to_user(
    db: Session,
    *,
    gateway: PushGateway,
    intent: ReminderIntent,
    user_id: int,
    data: dict[str, Any],
) -> list[dict[str, Any]]:
    try:
        summary = gateway.send_push(
            db,
            user_ids=[user_id],
            title=intent.title,
            body=intent.message,
            action_url=intent.action_url,
            data=data,
            tag=_push_tag(intent),
        )
    except Exception as exc:
        if is_store_unavailable(exc):
            raise
        db.rollback()
        logger.warning(
            "reminder_push_failed",
            extra={
                "user_id": user_id,
                "notification_type": intent.notification_type,
                "entity_id": intent.entity_id,
                "reminder_key": intent.reminder_key,
                "error": str(exc),
            },
        )
        return [{"user_id": user_id, "status_code": None, "error": str(exc)}]

    failures: list[dict[str, Any]] = []
    for item in summary.get("failures") or []:
        logger.warning(
            "reminder_push_failed",
            extra={
                "user_id": user_id,
                "notification_type": intent.notification_type,
                "entity_id": intent.entity_id,
                "reminder_key": intent.reminder_key,
                "status_code": item.get("status_code"),
                "error": item.get("error"),
            },
        )
        failures.append(
            {
                "user_id": user_id,
                "status_code": item.get("status_code"),
                "error": item.get("error"),
            }
        )
    return failures


def _store_for_user(
    db: Session,
    intent: ReminderIntent,
    user_id: int,
    *,
    cooldown: timedelta,
    now_utc: datetime,
) -> Notification | None:
    if already_sent(
        db,
        user_id=user_id,
        notification_type=intent.notification_type,
        entity_id=intent.entity_id,
        reminder_key=intent.reminder_key,
        audience=intent.audience,
        cooldown=cooldown,
        now_utc=now_utc,
    ):
        return None
    return record_notification_once(
        db,
        intent=intent,
        user_id=user_id,
        cooldown=cooldown,
        now_utc=now_utc,
    )


def dispatch(
    db: Session,
    intent: ReminderIntent,
    user_ids: Iterable[int],
    *,
    cooldown: timedelta,
    now_utc: datetime,
    gateway: PushGateway,
) -> DispatchResult:
    result = DispatchResult()
    for user_id in user_ids:
        try:
            row = _store_for_user(db, intent, user_id, cooldown=cooldown, now_utc=now_utc)
        except SQLAlchemyError as exc:
            if is_store_unavailable(exc):
                raise
            db.rollback()
            logger.error(
                "reminder_delivery_failed",
                extra={
                    "user_id": user_id,
                    "notification_type": intent.notification_type,
                    "entity_id": intent.entity_id,
                    "reminder_key": intent.reminder_key,
                    "audience": intent.audience,
                    "error": exc.__class__.__name__,
                },
            )
            result.delivery_failures.append(
                {
                    "user_id": user_id,
                    "notification_type": intent.notification_type,
                    "entity_id": intent.entity_id,
                    "error": exc.__class__.__name__,
                }
            )
            continue

        if row is None:
            result.suppressed += 1
            continue

        result.sent += 1
        result.notification_ids.append(row.id)
        result.push_failures.extend(
            _push_to_user(
                db,
                gateway=gateway,
                intent=intent,
                user_id=user_id,
                data=intent.notification_data(),
            )
        )
    return result


def dispatch_planned(
    db: Session,
    planned: Iterable[PlannedDelivery],
    *,
    cooldown: timedelta,
    now_utc: datetime,
    gateway: PushGateway,
    summary: ReminderRunSummary,
) -> ReminderRunSummary:
    for item in planned:
        summary.add(
            dispatch(
                db,
                item.intent,
                item.user_ids,
                cooldown=cooldown,
                now_utc=now_utc,
                gateway=gateway,
            )
        )
    return summary


Planner = Callable[[Session, datetime], tuple[int, list[PlannedDelivery]]]


def run_reminder_job(
    job_name: str,
    *,
    planner: Planner,
    cooldown: timedelta,
    now_utc: datetime,
    db: Session | None = None,
    gateway: PushGateway | None = None,
) -> ReminderRunSummary:
    if db is None:
        with SessionLocal() as managed_db:
            return run_reminder_job(
                job_name,
                planner=planner,
                cooldown=cooldown,
                now_utc=now_utc,
                db=managed_db,
                gateway=gateway,
            )

    reference_utc = normalize_ts(now_utc)
    active_gateway = gateway if gateway is not None else WebPushGateway()
    summary = ReminderRunSummary(job_name=job_name)
    with bind_job(job_name):
        scanned, planned = planner(db, reference_utc)
        summary.entities_scanned = scanned
        summary.intents = len(planned)
        dispatch_planned(
            db,
            planned,
            cooldown=cooldown,
            now_utc=reference_utc,
            gateway=active_gateway,
            summary=summary,
        )
        log_job_audit(db, job_name=job_name, success=True, details=summary.to_dict(), ts_utc=reference_utc)
        logger.info("reminder_job_completed", extra=summary.to_dict())
    return summary
