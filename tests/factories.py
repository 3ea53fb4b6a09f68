from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from reminder_engine import models  # noqa: F401
from reminder_engine.db import Base
from reminder_engine.models import Area, Permission, Role, User


def make_engine() -> Engine:
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


def make_session() -> Session:
    return sessionmaker(bind=make_engine(), autoflush=False, expire_on_commit=False)()


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0, second: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)


def ensure_role(db: Session, name: str, permissions: Iterable[str] = ()) -> Role:
    role = db.scalar(select(Role).where(Role.name == name))
    if role is None:
        role = Role(name=name, display_name=name)
        db.add(role)
    for permission_name in permissions:
        permission = db.scalar(select(Permission).where(Permission.name == permission_name))
        if permission is None:
            permission = Permission(name=permission_name, module=permission_name.split(".", 1)[0])
            db.add(permission)
        if permission not in role.permissions:
            role.permissions.append(permission)
    db.flush()
    return role


def add_area(db: Session, name: str = "Operaciones", *, manager_id: int | None = None) -> Area:
    area = Area(name=name, manager_id=manager_id, is_active=True)
    db.add(area)
    db.flush()
    return area


def add_user(
    db: Session,
    name: str,
    *,
    roles: Iterable[str] = (),
    area_id: int | None = None,
    is_active: bool = True,
    permissions: Iterable[str] = (),
) -> User:
    user = User(name=name, email=f"{name.lower().replace(' ', '.')}@example.com", is_active=is_active, area_id=area_id)
    for role_name in roles:
        user.roles.append(ensure_role(db, role_name))
    extra_permissions = list(permissions)
    if extra_permissions:
        user.roles.append(ensure_role(db, f"{name.lower()}_grants", extra_permissions))
    db.add(user)
    db.flush()
    return user


def add(db: Session, row: Any) -> Any:
    db.add(row)
    db.commit()
    return row


class FakePushGateway:
    def __init__(
        self,
        *,
        raise_for: Iterable[int] = (),
        fail_for: Iterable[int] = (),
    ) -> None:
        self.raise_for = set(raise_for)
        self.fail_for = set(fail_for)
        self.calls: list[dict[str, Any]] = []

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
        self.calls.append(
            {
                "user_ids": list(user_ids),
                "title": title,
                "body": body,
                "action_url": action_url,
                "data": dict(data or {}),
                "tag": tag,
            }
        )
        if self.raise_for.intersection(user_ids):
            raise RuntimeError("push transport unavailable")

        failures = [
            {"subscription_id": user_id, "user_id": user_id, "status_code": 410, "error": "gone"}
            for user_id in user_ids
            if user_id in self.fail_for
        ]
        return {
            "mode": "fake",
            "total_targets": len(user_ids),
            "sent": len(user_ids) - len(failures),
            "failed": len(failures),
            "deactivated": len(failures),
            "failures": failures,
        }

    def pushed_user_ids(self) -> list[int]:
        return [user_id for call in self.calls for user_id in call["user_ids"]]
