"""SQLModel table definitions for the Conductor support center."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


class SupportTicketTable(SQLModel, table=True):
    """Support tickets submitted by users or guests."""

    __tablename__ = "support_tickets"

    uuid: str = Field(primary_key=True, index=True)
    title: str = Field(sa_column=Column(String(255), nullable=False))
    description: str = Field(sa_column=Column(Text, nullable=False))
    category: str = Field(sa_column=Column(String(100), nullable=False, index=True))
    priority: str = Field(sa_column=Column(String(20), nullable=False, index=True))
    status: str = Field(sa_column=Column(String(20), nullable=False, index=True))
    captured_url: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    apps: list[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    user_uuid: str | None = Field(default=None, sa_column=Column(String(36), nullable=True, index=True))
    user_email: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    user_name: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    guest: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    access_key: str | None = Field(default=None, sa_column=Column(String(128), nullable=True))
    time_opened: datetime = Field(
        default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False, index=True)
    )
    time_closed: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))


class SupportTicketAssigneeTable(SQLModel, table=True):
    """Staff members assigned to a ticket, in assignment order."""

    __tablename__ = "support_ticket_assignees"

    id: int | None = Field(default=None, primary_key=True)
    ticket_uuid: str = Field(
        sa_column=Column(
            String(36), ForeignKey("support_tickets.uuid", ondelete="CASCADE"), nullable=False, index=True
        )
    )
    user_uuid: str = Field(sa_column=Column(String(36), nullable=False, index=True))
    position: int = Field(default=0, sa_column=Column(Integer, nullable=False))


class SupportTicketFeedTable(SQLModel, table=True):
    """Append-only audit feed; the integer key doubles as the append sequence."""

    __tablename__ = "support_ticket_feed"

    id: int | None = Field(default=None, primary_key=True)
    ticket_uuid: str = Field(
        sa_column=Column(
            String(36), ForeignKey("support_tickets.uuid", ondelete="CASCADE"), nullable=False, index=True
        )
    )
    action: str = Field(sa_column=Column(Text, nullable=False))
    blame: str = Field(sa_column=Column(String(255), nullable=False))
    date: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class SupportTicketAttachmentTable(SQLModel, table=True):
    """Attachment metadata; file contents live in the object store."""

    __tablename__ = "support_ticket_attachments"

    uuid: str = Field(primary_key=True, index=True)
    ticket_uuid: str = Field(
        sa_column=Column(
            String(36), ForeignKey("support_tickets.uuid", ondelete="CASCADE"), nullable=False, index=True
        )
    )
    name: str = Field(sa_column=Column(String(255), nullable=False))
    uploaded_by: str = Field(sa_column=Column(String(255), nullable=False))
    uploaded_date: datetime = Field(
        default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )


class SupportTicketMessageTable(SQLModel, table=True):
    """Messages exchanged on a ticket; ``id`` is the monotonically increasing sequence."""

    __tablename__ = "support_ticket_messages"

    id: int | None = Field(default=None, primary_key=True)
    uuid: str = Field(sa_column=Column(String(36), nullable=False, unique=True, index=True))
    ticket_uuid: str = Field(
        sa_column=Column(
            String(36), ForeignKey("support_tickets.uuid", ondelete="CASCADE"), nullable=False, index=True
        )
    )
    message: str = Field(sa_column=Column(Text, nullable=False))
    attachments: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    sender_uuid: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    sender_email: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    sender_is_staff: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    type: str = Field(sa_column=Column(String(20), nullable=False))
    time_sent: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
