from __future__ import annotations

from .enums import TicketStatus
from .errors import InvalidTransitionError


class TicketStateMachine:
    """Validate ticket lifecycle transitions."""

    _TRANSITIONS: dict[TicketStatus, set[TicketStatus]] = {
        TicketStatus.OPEN: {TicketStatus.IN_PROGRESS, TicketStatus.CLOSED},
        TicketStatus.IN_PROGRESS: {TicketStatus.CLOSED},
        TicketStatus.CLOSED: {TicketStatus.IN_PROGRESS},
    }

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.OPEN

    @classmethod
    def can_transition(cls, current: TicketStatus, new: TicketStatus) -> bool:
        return new in cls._TRANSITIONS.get(current, set())

    @classmethod
    def assert_transition(cls, current: TicketStatus, new: TicketStatus) -> None:
        if not cls.can_transition(current, new):
            raise InvalidTransitionError(
                f"Invalid ticket status transition: {current.value} -> {new.value}"
            )
