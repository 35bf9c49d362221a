"""Create users, push subscriptions, notifications and recipients

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


_ENUMS = {
    "userrole": ("user", "admin"),
    "notificationtype": ("SLOT_PROPOSAL", "SLOT_AVAILABLE", "SLOT_CANCELLED"),
    "notificationstatus": ("UNREAD", "READ", "ACCEPTED", "REFUSED"),
    "recipientaction": ("ACCEPTED", "REFUSED"),
}


def _enum(bind, name: str):
    values = _ENUMS[name]
    if bind.dialect.name == "postgresql":
        enum_type = postgresql.ENUM(*values, name=name, create_type=False)
        enum_type.create(bind, checkfirst=True)
        return enum_type
    return sa.Enum(*values, name=name)


def upgrade() -> None:
    bind = op.get_bind()

    user_role_enum = _enum(bind, "userrole")
    notification_type_enum = _enum(bind, "notificationtype")
    notification_status_enum = _enum(bind, "notificationstatus")
    recipient_action_enum = _enum(bind, "recipientaction")

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", user_role_enum, nullable=False, server_default="user"),
        sa.Column("availability_alerts_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "push_subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("endpoint", sa.Text(), nullable=False),
        sa.Column("p256dh_key", sa.Text(), nullable=False),
        sa.Column("auth_key", sa.Text(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("last_used_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("endpoint", name="uq_push_subscriptions_endpoint"),
    )
    op.create_index("ix_push_subscriptions_id", "push_subscriptions", ["id"])
    op.create_index("ix_push_subscriptions_user_id", "push_subscriptions", ["user_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("type", notification_type_enum, nullable=False),
        sa.Column("status", notification_status_enum, nullable=False, server_default="UNREAD"),
        sa.Column("slot_date", sa.Date(), nullable=False),
        sa.Column("slot_time_start", sa.Time(), nullable=False),
        sa.Column("slot_time_end", sa.Time(), nullable=False),
        sa.Column("slot_location", sa.String(length=255), nullable=False),
        sa.Column("slot_description", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("sent_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_notifications_id", "notifications", ["id"])
    op.create_index("ix_notifications_type", "notifications", ["type"])
    op.create_index("ix_notifications_slot_date", "notifications", ["slot_date"])
    op.create_index("ix_notifications_sent_at", "notifications", ["sent_at"])
    op.create_index("ix_notifications_sent_by", "notifications", ["sent_by"])

    op.create_table(
        "notification_recipients",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "notification_id",
            sa.Integer(),
            sa.ForeignKey("notifications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("received", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("clicked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("clicked_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("action", recipient_action_enum, nullable=True),
        sa.Column("action_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("notification_id", "user_id", name="uq_notification_recipient"),
    )
    op.create_index("ix_notification_recipients_id", "notification_recipients", ["id"])
    op.create_index("ix_notification_recipients_notification_id", "notification_recipients", ["notification_id"])
    op.create_index("ix_notification_recipients_user_id", "notification_recipients", ["user_id"])
    op.create_index("ix_notification_recipients_action", "notification_recipients", ["action"])


def downgrade() -> None:
    op.drop_table("notification_recipients")
    op.drop_table("notifications")
    op.drop_table("push_subscriptions")
    op.drop_table("users")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name in reversed(list(_ENUMS)):
            postgresql.ENUM(name=name).drop(bind, checkfirst=True)
