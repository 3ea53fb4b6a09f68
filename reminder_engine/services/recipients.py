from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from reminder_engine.models import ROLE_AREA_MANAGER, ROLE_SUPER_ADMIN, Area, Role, User
from reminder_engine.services.reminder_intents import ReminderIntent

REQUIRED_PERMISSION_BY_TYPE: dict[str, str] = {
    "service": "services.expiry-reminders",
}


class Authorizer:
    def __init__(self, required_permissions: dict[str, str] | None = None) -> None:
        self.required_permissions = dict(
            REQUIRED_PERMISSION_BY_TYPE if required_permissions is None else required_permissions
        )

    def can_receive(self, user: User | None, notification_type: str) -> bool:
        if user is None or not user.is_active or user.deleted_at is not None:
            return False
        if user.is_super_admin():
            return True
        permission_name = self.required_permissions.get(notification_type)
        if permission_name is None:
            return True
        return user.has_permission(permission_name)


def _unique_ids(values: Iterable[int | None]) -> list[int]:
    seen: set[int] = set()
    ordered: list[int] = []
    for value in values:
        if value is None:
            continue
        try:
            user_id = int(value)
        except (TypeError, ValueError):
            continue
        if user_id in seen:
            continue
        seen.add(user_id)
        ordered.append(user_id)
    return ordered


def _load_users(db: Session, user_ids: list[int]) -> dict[int, User]:
    if not user_ids:
        return {}
    rows = db.scalars(
        select(User)
        .options(selectinload(User.roles).selectinload(Role.permissions))
        .where(User.id.in_(user_ids))
    ).all()
    return {row.id: row for row in rows}


def area_manager_ids(db: Session, area_id: int) -> list[int]:
    role_holders = db.scalars(
        select(User.id)
        .join(User.roles)
        .where(
            Role.name == ROLE_AREA_MANAGER,
            User.area_id == area_id,
            User.is_active.is_(True),
            User.deleted_at.is_(None),
        )
        .order_by(User.id.asc())
    ).all()
    area_manager = db.scalar(select(Area.manager_id).where(Area.id == area_id))
    return _unique_ids([*role_holders, area_manager])


def super_admin_ids(db: Session) -> list[int]:
    rows = db.scalars(
        select(User.id)
        .join(User.roles)
        .where(
            Role.name == ROLE_SUPER_ADMIN,
            User.is_active.is_(True),
            User.deleted_at.is_(None),
        )
        .order_by(User.id.asc())
    ).all()
    return _unique_ids(rows)


def resolve_recipients(
    db: Session,
    intent: ReminderIntent,
    *,
    candidate_user_ids: Iterable[int | None] = (),
    area_id: int | None = None,
    authorizer: Authorizer | None = None,
) -> list[int]:
    candidates = list(candidate_user_ids)
    if area_id is not None:
        candidates.extend(area_manager_ids(db, area_id))

    ordered_ids = _unique_ids(candidates)
    users_by_id = _load_users(db, ordered_ids)
    active_authorizer = authorizer or Authorizer()
    return [
        user_id
        for user_id in ordered_ids
        if active_authorizer.can_receive(users_by_id.get(user_id), intent.notification_type)
    ]


def resolve_broadcast_recipients(
    db: Session,
    *,
    exclude_user_ids: Iterable[int] = (),
) -> list[int]:
    excluded = set(exclude_user_ids)
    return [user_id for user_id in super_admin_ids(db) if user_id not in excluded]
