from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

from .enums import ACTIVE_STATUSES, TicketMessageType, TicketPriority, TicketSort, TicketStatus


@dataclass(frozen=True, slots=True)
class Actor:
    """Identity performing an operation: a signed-in user, a staff member or a guest."""

    uuid: str | None = None
    email: str | None = None
    name: str = ""
    is_staff: bool = False

    @classmethod
    def guest(cls, email: str, name: str = "") -> "Actor":
        return cls(email=email, name=name)

    @property
    def is_authenticated(self) -> bool:
        return self.uuid is not None

    @property
    def label(self) -> str:
        return self.name or self.email or self.uuid or "Guest"


@dataclass(frozen=True, slots=True)
class TicketGuest:
    """Contact record for an unauthenticated requester."""

    first_name: str
    last_name: str
    email: str
    organization: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True, slots=True)
class TicketUser:
    """Reference to the signed-in user who opened a ticket."""

    uuid: str
    email: str | None = None
    name: str | None = None


@dataclass(frozen=True, slots=True)
class TicketFeedEntry:
    """Immutable audit line appended on every state-changing operation."""

    action: str
    blame: str
    date: datetime


@dataclass(frozen=True, slots=True)
class TicketAttachment:
    uuid: str
    name: str
    ticket_uuid: str
    uploaded_by: str
    uploaded_date: datetime


@dataclass(slots=True)
class Ticket:
    """Aggregate representing a support ticket with its feed and attachments."""

    uuid: str
    title: str
    description: str
    category: str
    priority: TicketPriority
    status: TicketStatus
    time_opened: datetime
    apps: list[int] = field(default_factory=list)
    assigned_uuids: list[str] = field(default_factory=list)
    captured_url: str | None = None
    user: TicketUser | None = None
    guest: TicketGuest | None = None
    access_key: str | None = None
    time_closed: datetime | None = None
    feed: list[TicketFeedEntry] = field(default_factory=list)
    attachments: list[TicketAttachment] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def requester_email(self) -> str | None:
        if self.guest is not None:
            return self.guest.email
        if self.user is not None:
            return self.user.email
        return None

    @property
    def requester_name(self) -> str:
        if self.guest is not None:
            return self.guest.full_name
        if self.user is not None:
            return self.user.name or self.user.email or self.user.uuid
        return "Unknown"

    def is_owned_by(self, actor: Actor | None) -> bool:
        return (
            actor is not None
            and actor.uuid is not None
            and self.user is not None
            and self.user.uuid == actor.uuid
        )


@dataclass(frozen=True, slots=True)
class TicketMessage:
    """Message posted on a ticket thread."""

    uuid: str
    ticket_uuid: str
    message: str
    type: TicketMessageType
    sender_is_staff: bool
    time_sent: datetime
    sequence: int
    attachments: Sequence[str] = ()
    sender_uuid: str | None = None
    sender_email: str | None = None


@dataclass(frozen=True, slots=True)
class TicketQuery:
    """Store query: status partition, equality filters, sort and page window."""

    statuses: tuple[TicketStatus, ...] = ACTIVE_STATUSES
    assignee: str | None = None
    priority: TicketPriority | None = None
    category: str | None = None
    sort: TicketSort = TicketSort.OPENED
    page: int = 1
    limit: int = 10

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(slots=True)
class TicketPage:
    items: list[Ticket]
    total: int


@dataclass(frozen=True, slots=True)
class SupportMetrics:
    """Dashboard counters computed over the whole ticket store."""

    total_open_tickets: int
    last_seven_ticket_count: int
    avg_mins_to_close: float
