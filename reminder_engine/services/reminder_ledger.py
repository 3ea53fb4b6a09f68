from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from reminder_engine.models import Notification
from reminder_engine.services.reminder_intents import ReminderIntent, normalize_ts

logger = logging.getLogger("reminder_engine.reminder_ledger")

TITLE_MAX_LENGTH = Notification.__table__.c.title.type.length


def clip_title(title: str) -> str:
    if len(title) <= TITLE_MAX_LENGTH:
        return title
    return title[: TITLE_MAX_LENGTH - 3].rstrip() + "..."


def dedup_bucket(now_utc: datetime, cooldown: timedelta) -> int:
    cooldown_seconds = max(1, int(cooldown.total_seconds()))
    return int(normalize_ts(now_utc).timestamp()) // cooldown_seconds


def already_sent(
    db: Session,
    *,
    user_id: int,
    notification_type: str,
    entity_id: int,
    reminder_key: str,
    audience: str,
    cooldown: timedelta,
    now_utc: datetime,
) -> bool:
    since_utc = normalize_ts(now_utc) - cooldown
    row_id = db.scalar(
        select(Notification.id)
        .where(
            Notification.user_id == user_id,
            Notification.type == notification_type,
            Notification.entity_id == entity_id,
            Notification.reminder_key == reminder_key,
            Notification.audience == audience,
            Notification.created_at >= since_utc,
        )
        .limit(1)
    )
    return row_id is not None


def record_notification_once(
    db: Session,
    *,
    intent: ReminderIntent,
    user_id: int,
    cooldown: timedelta,
    now_utc: datetime,
) -> Notification | None:
    created_at = normalize_ts(now_utc)
    row = Notification(
        user_id=user_id,
        type=intent.notification_type,
        title=clip_title(intent.title),
        message=intent.message,
        action_url=intent.action_url,
        priority=intent.priority,
        data=intent.notification_data(),
        is_read=False,
        entity_id=intent.entity_id,
        reminder_key=intent.reminder_key,
        audience=intent.audience,
        dedup_bucket=dedup_bucket(created_at, cooldown),
        created_at=created_at,
        updated_at=created_at,
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(
            "reminder_ledger_conflict",
            extra={
                "user_id": user_id,
                "notification_type": intent.notification_type,
                "entity_id": intent.entity_id,
                "reminder_key": intent.reminder_key,
                "audience": intent.audience,
            },
        )
        return None
    return row
