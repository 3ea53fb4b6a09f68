from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from reminder_engine.models import AuditActorType, AuditLog

logger = logging.getLogger("reminder_engine.audit")


def log_job_audit(
    db: Session,
    *,
    job_name: str,
    success: bool,
    details: dict[str, Any] | None = None,
    ts_utc: datetime | None = None,
) -> None:
    audit = AuditLog(
        ts_utc=ts_utc or datetime.now(timezone.utc),
        actor_type=AuditActorType.SYSTEM.value,
        actor_id=job_name,
        action="REMINDER_JOB_RUN",
        entity_type="reminder_job",
        entity_id=job_name,
        success=success,
        details=details or {},
    )
    db.add(audit)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={"job_name": job_name, "success": success},
        )
        return

    logger.info(
        "audit_event",
        extra={
            "action": "REMINDER_JOB_RUN",
            "actor_type": AuditActorType.SYSTEM.value,
            "actor_id": job_name,
            "success": success,
            "details": details or {},
        },
    )
