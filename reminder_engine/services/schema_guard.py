from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "notifications": {
        "id",
        "user_id",
        "type",
        "data",
        "created_at",
        "entity_id",
        "reminder_key",
        "audience",
        "dedup_bucket",
    },
    "push_subscriptions": {"id", "user_id", "endpoint", "public_key", "auth_token", "is_active"},
    "audit_logs": {"id", "ts_utc", "actor_type", "actor_id", "action", "success", "details"},
    "users": {"id", "is_active", "area_id"},
}

REQUIRED_UNIQUE_CONSTRAINTS: dict[str, str] = {
    "notifications": "uq_notifications_reminder_dedup",
}

LEDGER_KEY_COLUMNS = ["user_id", "type", "entity_id", "reminder_key", "audience", "dedup_bucket"]


def _has_ledger_unique_key(inspector: Any, table_name: str, constraint_name: str) -> bool:
    for item in inspector.get_unique_constraints(table_name):
        if item.get("name") == constraint_name:
            return True
        if list(item.get("column_names") or []) == LEDGER_KEY_COLUMNS:
            return True
    for item in inspector.get_indexes(table_name):
        if item.get("unique") and list(item.get("column_names") or []) == LEDGER_KEY_COLUMNS:
            return True
    return False


def verify_runtime_schema(engine: Engine, *, check_alembic_version: bool = True) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except Exception as exc:
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue
        if not column_names:
            issues.append(f"TABLE_MISSING:{table_name}")
            continue

        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

    for table_name, constraint_name in REQUIRED_UNIQUE_CONSTRAINTS.items():
        try:
            present = _has_ledger_unique_key(inspector, table_name, constraint_name)
        except Exception as exc:
            warnings.append(f"CONSTRAINT_INSPECTION_FAILED:{table_name}:{exc.__class__.__name__}")
            continue
        if not present:
            issues.append(f"MISSING_UNIQUE_CONSTRAINT:{table_name}:{constraint_name}")

    if check_alembic_version:
        try:
            with engine.connect() as connection:
                row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
                version = str(row).strip() if row is not None else ""
                if not version:
                    issues.append("ALEMBIC_VERSION_EMPTY")
        except Exception as exc:
            issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
