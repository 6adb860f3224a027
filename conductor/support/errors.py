"""Error taxonomy for the support center.

Every error carries a stable machine-readable ``code`` and the HTTP status the
API layer renders it with, so handlers never have to inspect messages.
"""

from __future__ import annotations


class SupportError(RuntimeError):
    """Base error for support center issues."""

    code = "support_error"
    status_code = 500

    def __init__(self, message: str = "") -> None:
        message = message or (self.__doc__ or self.code).strip()
        super().__init__(message)
        self.message = message


class ValidationError(SupportError):
    """Malformed input rejected before reaching the lifecycle engine."""

    code = "validation_error"
    status_code = 400


class InvalidQueryError(ValidationError):
    """Sort or filter values outside the enumerated set."""

    code = "invalid_query"


class UnauthorizedError(SupportError):
    """Authentication or guest access key missing or invalid."""

    code = "unauthorized"
    status_code = 401


class ForbiddenError(SupportError):
    """Role or ownership check failed."""

    code = "forbidden"
    status_code = 403


class TicketNotFoundError(SupportError):
    """Raised when a ticket could not be located."""

    code = "not_found"
    status_code = 404


class InvalidTransitionError(SupportError):
    """Requested status is not reachable from the current status."""

    code = "invalid_transition"
    status_code = 409


class InvalidStateError(SupportError):
    """Operation not permitted in the ticket's current status."""

    code = "invalid_state"
    status_code = 409


class ConflictError(InvalidTransitionError):
    """A concurrent transition changed the ticket first."""

    code = "conflict"
    status_code = 409


class UpstreamError(SupportError):
    """The store or a notification collaborator is unavailable."""

    code = "upstream_error"
    status_code = 502
