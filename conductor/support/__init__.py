"""Support center domain models and services."""

from .enums import TicketMessageType, TicketPriority, TicketSort, TicketStatus
from .errors import (
    ConflictError,
    ForbiddenError,
    InvalidQueryError,
    InvalidStateError,
    InvalidTransitionError,
    SupportError,
    TicketNotFoundError,
    UnauthorizedError,
    UpstreamError,
    ValidationError,
)
from .messaging import TicketMessagingService
from .metrics import SupportMetricsAggregator
from .models import Actor, Ticket, TicketFeedEntry, TicketGuest, TicketMessage, TicketUser
from .service import TicketService
from .state import TicketStateMachine

__all__ = [
    "Actor",
    "ConflictError",
    "ForbiddenError",
    "InvalidQueryError",
    "InvalidStateError",
    "InvalidTransitionError",
    "SupportError",
    "SupportMetricsAggregator",
    "Ticket",
    "TicketFeedEntry",
    "TicketGuest",
    "TicketMessage",
    "TicketMessageType",
    "TicketMessagingService",
    "TicketNotFoundError",
    "TicketPriority",
    "TicketService",
    "TicketSort",
    "TicketStateMachine",
    "TicketStatus",
    "TicketUser",
    "UnauthorizedError",
    "UpstreamError",
    "ValidationError",
]
