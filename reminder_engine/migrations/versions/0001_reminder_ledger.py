"""Add reminder ledger columns, push subscriptions and audit logs

Revision ID: 0001_reminder_ledger
Revises:
Create Date: 2026-10-19 09:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0001_reminder_ledger"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
LEDGER_KEY_COLUMNS = ["user_id", "type", "entity_id", "reminder_key", "audience", "dedup_bucket"]


def _table_names() -> set[str]:
    return set(sa.inspect(op.get_bind()).get_table_names())


def upgrade() -> None:
    tables = _table_names()

    if "notifications" in tables:
        op.add_column("notifications", sa.Column("entity_id", sa.Integer(), nullable=True))
        op.add_column("notifications", sa.Column("reminder_key", sa.String(length=50), nullable=True))
        op.add_column("notifications", sa.Column("audience", sa.String(length=30), nullable=True))
        op.add_column("notifications", sa.Column("dedup_bucket", sa.Integer(), nullable=True))
    else:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("type", sa.String(length=50), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("action_url", sa.String(length=255), nullable=True),
            sa.Column("priority", sa.String(length=20), nullable=False, server_default=sa.text("'normal'")),
            sa.Column("data", JSON_TYPE, nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            sa.Column("reminder_key", sa.String(length=50), nullable=True),
            sa.Column("audience", sa.String(length=30), nullable=True),
            sa.Column("dedup_bucket", sa.Integer(), nullable=True),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.text("CURRENT_TIMESTAMP"),
            ),
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.text("CURRENT_TIMESTAMP"),
            ),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_user_id", "notifications", ["user_id"], unique=False)
        op.create_index("ix_notifications_created_at", "notifications", ["created_at"], unique=False)

    op.create_unique_constraint(
        "uq_notifications_reminder_dedup",
        "notifications",
        LEDGER_KEY_COLUMNS,
    )
    op.create_index(
        "ix_notifications_reminder_lookup",
        "notifications",
        ["user_id", "type", "entity_id", "reminder_key", "audience", "created_at"],
        unique=False,
    )

    if "push_subscriptions" not in tables:
        op.create_table(
            "push_subscriptions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("endpoint", sa.Text(), nullable=False),
            sa.Column("public_key", sa.Text(), nullable=False),
            sa.Column("auth_token", sa.Text(), nullable=False),
            sa.Column("content_encoding", sa.String(length=30), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("endpoint", name="uq_push_subscriptions_endpoint"),
        )
        op.create_index("ix_push_subscriptions_user_id", "push_subscriptions", ["user_id"], unique=False)
    else:
        op.add_column("push_subscriptions", sa.Column("last_error", sa.Text(), nullable=True))
        op.add_column(
            "push_subscriptions",
            sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_type", sa.String(length=20), nullable=False),
        sa.Column("actor_id", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", sa.String(length=100), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("details", JSON_TYPE, nullable=False, server_default=sa.text("'{}'")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_notifications_reminder_lookup", table_name="notifications")
    op.drop_constraint("uq_notifications_reminder_dedup", "notifications", type_="unique")
    op.drop_column("notifications", "dedup_bucket")
    op.drop_column("notifications", "audience")
    op.drop_column("notifications", "reminder_key")
    op.drop_column("notifications", "entity_id")
