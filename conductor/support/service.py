from __future__ import annotations

import logging
import secrets
import uuid
from datetime import datetime, timezone
from typing import Callable, Sequence

from .enums import TicketPriority, TicketStatus
from .errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    TicketNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from .models import (
    Actor,
    Ticket,
    TicketAttachment,
    TicketFeedEntry,
    TicketGuest,
    TicketPage,
    TicketQuery,
    TicketUser,
)
from .notifications import RecipientDirectory, TicketNotifications
from .repository import TicketRepository
from .state import TicketStateMachine

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 500
MIN_SEARCH_LENGTH = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def require_staff(actor: Actor | None) -> Actor:
    if actor is None or not actor.is_authenticated:
        raise UnauthorizedError("Authentication is required for this action")
    if not actor.is_staff:
        raise ForbiddenError("Only support staff may perform this action")
    return actor


def authorize_ticket_access(ticket: Ticket, actor: Actor | None, access_key: str | None = None) -> None:
    """Allow staff, the owning user, or a guest presenting the ticket's access key."""

    if actor is not None and actor.is_staff:
        return
    if ticket.is_owned_by(actor):
        return
    if (
        ticket.guest is not None
        and ticket.access_key
        and access_key
        and secrets.compare_digest(access_key, ticket.access_key)
    ):
        return
    if actor is None or not actor.is_authenticated:
        raise UnauthorizedError("A valid access key or login is required to view this ticket")
    raise ForbiddenError("You do not have access to this ticket")


class TicketService:
    """High level orchestration for the ticket lifecycle: creation, transitions, assignment, deletion."""

    def __init__(
        self,
        repository: TicketRepository,
        *,
        notifications: TicketNotifications | None = None,
        directory: RecipientDirectory | None = None,
        state_machine: type[TicketStateMachine] = TicketStateMachine,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._notifications = notifications
        self._directory = directory
        self._state_machine = state_machine
        self._clock = clock

    async def ensure_schema(self) -> None:
        await self._repository.ensure_schema()

    async def create_ticket(
        self,
        *,
        title: str,
        description: str,
        priority: TicketPriority,
        category: str,
        apps: Sequence[int],
        captured_url: str | None = None,
        attachments: Sequence[str] = (),
        guest: TicketGuest | None = None,
        user: TicketUser | None = None,
    ) -> Ticket:
        if (guest is None) == (user is None):
            raise ValidationError("Exactly one of guest or user must be provided")
        if not title.strip():
            raise ValidationError("Ticket title must not be empty")
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(f"Ticket description must be at most {MAX_DESCRIPTION_LENGTH} characters")
        if not apps:
            raise ValidationError("At least one application must be selected")

        now = self._clock()
        ticket_uuid = str(uuid.uuid4())
        uploader = guest.email if guest is not None else user.uuid  # type: ignore[union-attr]
        ticket = Ticket(
            uuid=ticket_uuid,
            title=title.strip(),
            description=description,
            category=category,
            priority=priority,
            status=self._state_machine.initial_state(),
            time_opened=now,
            apps=list(apps),
            captured_url=captured_url,
            user=user,
            guest=guest,
            access_key=secrets.token_hex(32) if guest is not None else None,
            attachments=[
                TicketAttachment(
                    uuid=str(uuid.uuid4()),
                    name=name,
                    ticket_uuid=ticket_uuid,
                    uploaded_by=uploader,
                    uploaded_date=now,
                )
                for name in attachments
            ],
        )
        await self._repository.create_ticket(ticket)
        logger.info("Support ticket %s created (priority=%s)", ticket.uuid, ticket.priority.value)
        if self._notifications is not None:
            self._notifications.ticket_created(ticket)
        return ticket

    async def get_ticket(
        self, ticket_uuid: str, actor: Actor | None = None, *, access_key: str | None = None
    ) -> Ticket:
        ticket = await self._require_ticket(ticket_uuid)
        authorize_ticket_access(ticket, actor, access_key)
        return ticket

    async def list_tickets(self, query: TicketQuery, actor: Actor | None) -> TicketPage:
        require_staff(actor)
        return await self._repository.query_tickets(query)

    async def search_tickets(self, text: str, actor: Actor | None) -> list[Ticket]:
        require_staff(actor)
        cleaned = text.strip()
        if len(cleaned) < MIN_SEARCH_LENGTH:
            raise ValidationError(f"Search query must be at least {MIN_SEARCH_LENGTH} characters")
        return await self._repository.search_tickets(cleaned)

    async def list_user_tickets(self, user_uuid: str, actor: Actor | None) -> list[Ticket]:
        if actor is None or not actor.is_authenticated:
            raise UnauthorizedError("Authentication is required for this action")
        if actor.uuid != user_uuid and not actor.is_staff:
            raise ForbiddenError("You may only list your own tickets")
        return await self._repository.list_user_tickets(user_uuid)

    async def update_ticket(
        self,
        ticket_uuid: str,
        actor: Actor | None,
        *,
        priority: TicketPriority | None = None,
        status: TicketStatus | None = None,
    ) -> Ticket:
        staff = require_staff(actor)
        if priority is None and status is None:
            raise ValidationError("No fields provided for update")

        ticket = await self._require_ticket(ticket_uuid)
        if priority is ticket.priority:
            priority = None
        priority_entry = (
            self._feed_entry(f"Changed priority to {priority.value.title()}", staff) if priority is not None else None
        )
        if status is not None:
            return await self._apply_transition(
                ticket, status, staff, priority=priority, priority_entry=priority_entry
            )
        if priority_entry is not None and not await self._repository.update_priority(
            ticket_uuid, priority, priority_entry
        ):
            raise TicketNotFoundError(f"Ticket {ticket_uuid} not found")
        return await self._require_ticket(ticket_uuid)

    async def change_status(self, ticket_uuid: str, *, new_status: TicketStatus, actor: Actor | None) -> Ticket:
        staff = require_staff(actor)
        ticket = await self._require_ticket(ticket_uuid)
        return await self._apply_transition(ticket, new_status, staff)

    async def _apply_transition(
        self,
        ticket: Ticket,
        new_status: TicketStatus,
        staff: Actor,
        *,
        priority: TicketPriority | None = None,
        priority_entry: TicketFeedEntry | None = None,
    ) -> Ticket:
        ticket_uuid = ticket.uuid
        self._state_machine.assert_transition(ticket.status, new_status)

        if new_status is TicketStatus.CLOSED:
            action = "Closed ticket"
        elif ticket.status is TicketStatus.CLOSED:
            action = "Re-opened ticket"
        else:
            action = f"Changed status to {new_status.label}"

        changed = await self._repository.transition_status(
            ticket_uuid,
            expected=ticket.status,
            new=new_status,
            time_closed=self._clock() if new_status is TicketStatus.CLOSED else None,
            feed_entry=self._feed_entry(action, staff),
            priority=priority,
            priority_entry=priority_entry,
        )
        if not changed:
            await self._raise_lost_race(ticket_uuid, ticket.status)

        updated = await self._require_ticket(ticket_uuid)
        logger.info("Support ticket %s moved %s -> %s by %s", ticket_uuid, ticket.status.value, new_status.value, staff.label)
        if new_status is TicketStatus.CLOSED and self._notifications is not None:
            self._notifications.ticket_closed(updated)
        return updated

    async def assign(self, ticket_uuid: str, assignee_uuids: Sequence[str], actor: Actor | None) -> Ticket:
        """Replace the assignee list; a non-empty assignment moves an open ticket to in progress."""

        staff = require_staff(actor)
        assignees = list(dict.fromkeys(assignee_uuids))
        ticket = await self._require_ticket(ticket_uuid)

        if assignees:
            action = f"Assigned ticket to {', '.join(self._display_name(uuid) for uuid in assignees)}"
        else:
            action = "Removed all assignees"
        entry = self._feed_entry(action, staff)

        if assignees and ticket.status is TicketStatus.OPEN:
            changed = await self._repository.transition_status(
                ticket_uuid,
                expected=TicketStatus.OPEN,
                new=TicketStatus.IN_PROGRESS,
                time_closed=None,
                feed_entry=entry,
                assignees=assignees,
            )
            if not changed:
                await self._raise_lost_race(ticket_uuid, TicketStatus.OPEN)
        elif not await self._repository.set_assignees(ticket_uuid, assignees, entry):
            raise TicketNotFoundError(f"Ticket {ticket_uuid} not found")

        updated = await self._require_ticket(ticket_uuid)
        added = [uuid for uuid in assignees if uuid not in ticket.assigned_uuids]
        if added and self._notifications is not None:
            self._notifications.ticket_assigned(updated, added)
        return updated

    async def add_attachments(
        self,
        ticket_uuid: str,
        names: Sequence[str],
        actor: Actor | None,
        *,
        access_key: str | None = None,
    ) -> Ticket:
        ticket = await self._require_ticket(ticket_uuid)
        authorize_ticket_access(ticket, actor, access_key)
        cleaned = [name.strip() for name in names if name.strip()]
        if not cleaned:
            raise ValidationError("No attachments provided")

        now = self._clock()
        uploader = self._uploader(ticket, actor)
        attachments = [
            TicketAttachment(
                uuid=str(uuid.uuid4()),
                name=name,
                ticket_uuid=ticket_uuid,
                uploaded_by=uploader,
                uploaded_date=now,
            )
            for name in cleaned
        ]
        entry = TicketFeedEntry(action=f"Added {len(attachments)} attachment(s)", blame=uploader, date=now)
        if not await self._repository.add_attachments(ticket_uuid, attachments, entry):
            raise TicketNotFoundError(f"Ticket {ticket_uuid} not found")
        return await self._require_ticket(ticket_uuid)

    async def delete_ticket(self, ticket_uuid: str, actor: Actor | None) -> None:
        staff = require_staff(actor)
        ticket = await self._require_ticket(ticket_uuid)
        if ticket.status is not TicketStatus.OPEN:
            raise InvalidStateError(f"Only open tickets can be deleted (ticket is {ticket.status.value})")
        if not await self._repository.delete_ticket(ticket_uuid, only_status=TicketStatus.OPEN):
            if await self._repository.get_ticket(ticket_uuid) is None:
                raise TicketNotFoundError(f"Ticket {ticket_uuid} not found")
            raise InvalidStateError("Ticket is no longer open and cannot be deleted")
        logger.info("Support ticket %s deleted by %s", ticket_uuid, staff.label)

    async def _require_ticket(self, ticket_uuid: str) -> Ticket:
        ticket = await self._repository.get_ticket(ticket_uuid)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_uuid} not found")
        return ticket

    async def _raise_lost_race(self, ticket_uuid: str, expected: TicketStatus) -> None:
        current = await self._repository.get_ticket(ticket_uuid)
        if current is None:
            raise TicketNotFoundError(f"Ticket {ticket_uuid} not found")
        raise ConflictError(
            f"Ticket {ticket_uuid} changed from {expected.value} to {current.status.value} concurrently"
        )

    def _feed_entry(self, action: str, actor: Actor) -> TicketFeedEntry:
        return TicketFeedEntry(action=action, blame=actor.label, date=self._clock())

    def _display_name(self, user_uuid: str) -> str:
        if self._directory is not None:
            recipient = self._directory.lookup(user_uuid)
            if recipient is not None and recipient.name:
                return recipient.name
        return user_uuid

    @staticmethod
    def _uploader(ticket: Ticket, actor: Actor | None) -> str:
        if actor is not None and (actor.uuid or actor.email):
            return actor.uuid or actor.email  # type: ignore[return-value]
        if ticket.guest is not None:
            return ticket.guest.email
        return "Guest"
