from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Protocol

from pywebpush import WebPushException, webpush
from sqlalchemy import select
from sqlalchemy.orm import Session

from reminder_engine.models import PushSubscription, User
from reminder_engine.settings import get_push_vapid_subject, get_settings, is_push_enabled


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_push_config_status() -> dict[str, Any]:
    settings = get_settings()
    enabled = is_push_enabled()
    return {
        "enabled": enabled,
        "vapid_subject": get_push_vapid_subject() if enabled else None,
        "ttl_seconds": settings.push_ttl_seconds,
        "timeout_seconds": settings.push_timeout_seconds,
    }


class PushGateway(Protocol):
    def send_push(
        self,
        db: Session,
        *,
        user_ids: list[int],
        title: str,
        body: str,
        action_url: str | None = None,
        data: dict[str, Any] | None = None,
        tag: str | None = None,
    ) -> dict[str, Any]: ...


def list_active_push_subscriptions(db: Session, *, user_ids: list[int]) -> list[PushSubscription]:
    if not user_ids:
        return []
    stmt = (
        select(PushSubscription)
        .join(User, User.id == PushSubscription.user_id)
        .where(
            PushSubscription.user_id.in_(user_ids),
            PushSubscription.is_active.is_(True),
            User.is_active.is_(True),
        )
        .order_by(PushSubscription.id.asc())
    )
    return list(db.scalars(stmt).all())


def build_push_payload(
    *,
    title: str,
    body: str,
    action_url: str | None,
    data: dict[str, Any] | None,
    tag: str | None,
) -> dict[str, Any]:
    merged = dict(data or {})
    merged["url"] = action_url or "/dashboard"
    payload: dict[str, Any] = {
        "title": title,
        "body": body,
        "data": merged,
        "ts_utc": _utcnow().isoformat(),
    }
    if tag:
        payload["tag"] = tag
    return payload


class WebPushGateway:
    def _send_to_subscription_row(
        self,
        row: PushSubscription,
        *,
        payload: dict[str, Any],
    ) -> tuple[bool, str | None, int | None]:
        settings = get_settings()
        try:
            webpush(
                subscription_info={
                    "endpoint": row.endpoint,
                    "keys": {
                        "p256dh": row.public_key,
                        "auth": row.auth_token,
                    },
                },
                data=json.dumps(payload, ensure_ascii=False),
                vapid_private_key=settings.push_vapid_private_key,
                vapid_claims={"sub": get_push_vapid_subject()},
                content_encoding=row.content_encoding or "aes128gcm",
                ttl=settings.push_ttl_seconds,
                timeout=settings.push_timeout_seconds,
            )
            return True, None, None
        except WebPushException as exc:
            status_code: int | None = None
            if exc.response is not None:
                status_code = exc.response.status_code
            return False, str(exc), status_code
        except Exception as exc:
            return False, str(exc), None

    def send_push(
        self,
        db: Session,
        *,
        user_ids: list[int],
        title: str,
        body: str,
        action_url: str | None = None,
        data: dict[str, Any] | None = None,
        tag: str | None = None,
    ) -> dict[str, Any]:
        if not is_push_enabled():
            return {
                "mode": "disabled",
                "total_targets": 0,
                "sent": 0,
                "failed": 0,
                "deactivated": 0,
                "failures": [],
            }

        subscriptions = list_active_push_subscriptions(db, user_ids=user_ids)
        payload = build_push_payload(title=title, body=body, action_url=action_url, data=data, tag=tag)
        sent = 0
        failed = 0
        deactivated = 0
        failures: list[dict[str, Any]] = []
        now_utc = _utcnow()

        for row in subscriptions:
            ok, error_text, status_code = self._send_to_subscription_row(row, payload=payload)
            row.last_seen_at = now_utc
            if ok:
                sent += 1
                row.last_error = None
                continue

            failed += 1
            row.last_error = error_text
            if status_code in {404, 410}:
                if row.is_active:
                    row.is_active = False
                    deactivated += 1
            failures.append(
                {
                    "subscription_id": row.id,
                    "user_id": row.user_id,
                    "status_code": status_code,
                    "error": error_text,
                }
            )

        db.commit()
        return {
            "mode": "webpush",
            "total_targets": len(subscriptions),
            "sent": sent,
            "failed": failed,
            "deactivated": deactivated,
            "failures": failures,
        }
