"""Support center schema."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20241001_000001"
down_revision = None
branch_labels = None
depends_on = None


def _ticket_fk() -> sa.Column:
    return sa.Column(
        "ticket_uuid",
        sa.String(length=36),
        sa.ForeignKey("support_tickets.uuid", ondelete="CASCADE"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "support_tickets",
        sa.Column("uuid", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("priority", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("captured_url", sa.Text(), nullable=True),
        sa.Column("apps", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("user_uuid", sa.String(length=36), nullable=True),
        sa.Column("user_email", sa.String(length=255), nullable=True),
        sa.Column("user_name", sa.String(length=255), nullable=True),
        sa.Column("guest", sa.JSON(), nullable=True),
        sa.Column("access_key", sa.String(length=128), nullable=True),
        sa.Column("time_opened", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("time_closed", sa.TIMESTAMP(timezone=True), nullable=True),
    )
    op.create_index("ix_support_tickets_status", "support_tickets", ["status"])
    op.create_index("ix_support_tickets_priority", "support_tickets", ["priority"])
    op.create_index("ix_support_tickets_category", "support_tickets", ["category"])
    op.create_index("ix_support_tickets_user_uuid", "support_tickets", ["user_uuid"])
    op.create_index("ix_support_tickets_time_opened", "support_tickets", ["time_opened"])

    op.create_table(
        "support_ticket_assignees",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _ticket_fk(),
        sa.Column("user_uuid", sa.String(length=36), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default=sa.text("0")),
    )
    op.create_index("ix_support_ticket_assignees_ticket_uuid", "support_ticket_assignees", ["ticket_uuid"])
    op.create_index("ix_support_ticket_assignees_user_uuid", "support_ticket_assignees", ["user_uuid"])

    op.create_table(
        "support_ticket_feed",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _ticket_fk(),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("blame", sa.String(length=255), nullable=False),
        sa.Column("date", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_support_ticket_feed_ticket_uuid", "support_ticket_feed", ["ticket_uuid"])

    op.create_table(
        "support_ticket_attachments",
        sa.Column("uuid", sa.String(length=36), primary_key=True, nullable=False),
        _ticket_fk(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("uploaded_by", sa.String(length=255), nullable=False),
        sa.Column("uploaded_date", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_support_ticket_attachments_ticket_uuid", "support_ticket_attachments", ["ticket_uuid"])

    op.create_table(
        "support_ticket_messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(length=36), nullable=False, unique=True),
        _ticket_fk(),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("attachments", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("sender_uuid", sa.String(length=36), nullable=True),
        sa.Column("sender_email", sa.String(length=255), nullable=True),
        sa.Column("sender_is_staff", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("time_sent", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_support_ticket_messages_ticket_uuid", "support_ticket_messages", ["ticket_uuid"])


def downgrade() -> None:
    op.drop_table("support_ticket_messages")
    op.drop_table("support_ticket_attachments")
    op.drop_table("support_ticket_feed")
    op.drop_table("support_ticket_assignees")
    op.drop_table("support_tickets")
