"""Initial schema: classes, reservations, payment ledger, notifications and push.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Users table (owned by the auth collaborator)
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("username", sa.String(100), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "clubs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_clubs_id", "clubs", ["id"])

    op.create_table(
        "fencing_classes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("price", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'open'")),
        sa.Column("coach_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("club_id", sa.Integer(), sa.ForeignKey("clubs.id"), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("price >= 0", name="check_class_price_non_negative"),
        sa.CheckConstraint("status IN ('open', 'closed', 'cancelled')", name="check_class_status"),
    )
    op.create_index("ix_fencing_classes_id", "fencing_classes", ["id"])
    op.create_index("ix_fencing_classes_club_id", "fencing_classes", ["club_id"])

    # One reservation per (class, user); re-checkout reuses the row
    op.create_table(
        "class_reservations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("class_id", sa.Integer(), sa.ForeignKey("fencing_classes.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'requested'")),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("payment_amount", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("payment_order_id", sa.String(64), nullable=True),
        sa.Column("payment_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("class_id", "user_id", name="uq_class_user_reservation"),
        sa.UniqueConstraint("payment_order_id", name="uq_class_reservations_payment_order_id"),
        sa.CheckConstraint("payment_amount >= 0", name="check_reservation_amount_non_negative"),
        sa.CheckConstraint("status IN ('requested', 'confirmed', 'cancelled')", name="check_reservation_status"),
        sa.CheckConstraint(
            "payment_status IN ('pending', 'paid', 'failed', 'cancelled')",
            name="check_reservation_payment_status",
        ),
    )
    op.create_index("ix_class_reservations_id", "class_reservations", ["id"])
    op.create_index("ix_class_reservations_class_id", "class_reservations", ["class_id"])
    op.create_index("ix_class_reservations_user_id", "class_reservations", ["user_id"])

    # Reconciliation ledger: one row per gateway order id
    op.create_table(
        "payment_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("provider", sa.String(20), nullable=False, server_default=sa.text("'toss'")),
        sa.Column("order_id", sa.String(64), nullable=False),
        sa.Column("reservation_id", sa.Integer(), sa.ForeignKey("class_reservations.id"), nullable=True),
        sa.Column("class_id", sa.Integer(), sa.ForeignKey("fencing_classes.id"), nullable=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'ready'")),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'KRW'")),
        sa.Column("fee_rate", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("platform_fee", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("payment_key", sa.String(200), nullable=True),
        sa.Column("method", sa.String(50), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_code", sa.String(120), nullable=True),
        sa.Column("failure_message", sa.String(500), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="check_payment_amount_non_negative"),
        sa.CheckConstraint(
            "status IN ('ready', 'paid', 'failed', 'cancelled', 'webhook_received')",
            name="check_payment_status",
        ),
    )
    op.create_index("ix_payment_logs_id", "payment_logs", ["id"])
    op.create_index("ix_payment_logs_order_id", "payment_logs", ["order_id"], unique=True)
    op.create_index("ix_payment_logs_reservation_id", "payment_logs", ["reservation_id"])
    op.create_index("ix_payment_logs_user_id", "payment_logs", ["user_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("actor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("body", sa.String(1000), nullable=True),
        sa.Column("link", sa.String(500), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.CheckConstraint(
            "type IN ('chat', 'comment', 'reservation', 'order', 'review', 'system')",
            name="check_notification_type",
        ),
    )
    op.create_index("ix_notifications_id", "notifications", ["id"])
    # Inbox query: a user's notifications newest first
    op.create_index("ix_notifications_user_created", "notifications", ["user_id", "created_at"])

    op.create_table(
        "push_devices",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("device_token", sa.String(512), nullable=False),
        sa.Column("provider", sa.String(20), nullable=False),
        sa.Column("platform", sa.String(20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.UniqueConstraint("device_token", name="uq_push_devices_device_token"),
    )
    op.create_index("ix_push_devices_id", "push_devices", ["id"])
    op.create_index("ix_push_devices_user_id", "push_devices", ["user_id"])
    op.create_index("ix_push_devices_user_active", "push_devices", ["user_id", "is_active"])

    op.create_table(
        "push_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("provider", sa.String(20), nullable=False),
        sa.Column("platform", sa.String(20), nullable=False),
        sa.Column("device_token", sa.String(512), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("body", sa.String(1000), nullable=False, server_default=sa.text("''")),
        sa.Column("path", sa.String(500), nullable=False, server_default=sa.text("'/'")),
        sa.Column("dedupe_key", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("error_message", sa.String(1000), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_push_logs_id", "push_logs", ["id"])
    op.create_index("ix_push_logs_user_id", "push_logs", ["user_id"])
    # PARTIAL UNIQUE INDEX: the idempotency boundary for push delivery.
    # Rows without a dedupe key are unconstrained.
    op.create_index(
        "uq_push_logs_dedupe_key",
        "push_logs",
        ["dedupe_key"],
        unique=True,
        postgresql_where=sa.text("dedupe_key IS NOT NULL"),
    )

    op.create_table(
        "platform_settings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("class_fee_rate", sa.Float(), nullable=False, server_default=sa.text("0.1")),
        sa.Column("lesson_fee_rate", sa.Float(), nullable=False, server_default=sa.text("0.1")),
        sa.Column("market_fee_rate", sa.Float(), nullable=False, server_default=sa.text("0.05")),
        *_timestamps(),
        sa.UniqueConstraint("code", name="uq_platform_settings_code"),
    )
    op.create_index("ix_platform_settings_id", "platform_settings", ["id"])


def downgrade() -> None:
    op.drop_table("platform_settings")
    op.drop_table("push_logs")
    op.drop_table("push_devices")
    op.drop_table("notifications")
    op.drop_table("payment_logs")
    op.drop_table("class_reservations")
    op.drop_table("fencing_classes")
    op.drop_table("clubs")
    op.drop_table("users")
