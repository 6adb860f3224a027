"""Enumerations shared by validation models, persistence and the state machine."""

from __future__ import annotations

from enum import Enum


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


class TicketPriority(str, Enum):
    """Ticket urgency as chosen by the requester or staff."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


class TicketMessageType(str, Enum):
    """Visibility of a ticket message; internal messages are staff only."""

    INTERNAL = "internal"
    GENERAL = "general"


class TicketSort(str, Enum):
    """Sort keys offered by the staff dashboard."""

    OPENED = "opened"
    PRIORITY = "priority"
    STATUS = "status"
    CATEGORY = "category"


_PRIORITY_RANK = {
    TicketPriority.LOW: 0,
    TicketPriority.MEDIUM: 1,
    TicketPriority.HIGH: 2,
}

STATUS_ORDER: dict[TicketStatus, int] = {
    TicketStatus.OPEN: 0,
    TicketStatus.IN_PROGRESS: 1,
    TicketStatus.CLOSED: 2,
}

ACTIVE_STATUSES: tuple[TicketStatus, ...] = (TicketStatus.OPEN, TicketStatus.IN_PROGRESS)
CLOSED_STATUSES: tuple[TicketStatus, ...] = (TicketStatus.CLOSED,)
