from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Sequence

from .enums import TicketMessageType
from .errors import ForbiddenError, TicketNotFoundError, UnauthorizedError, ValidationError
from .models import Actor, Ticket, TicketMessage
from .notifications import TicketNotifications
from .repository import TicketRepository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketMessagingService:
    """Append-only ticket threads with staff-only internal messages."""

    def __init__(
        self,
        repository: TicketRepository,
        *,
        notifications: TicketNotifications | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._notifications = notifications
        self._clock = clock

    async def post_message(
        self,
        ticket_uuid: str,
        sender: Actor,
        body: str,
        *,
        attachments: Sequence[str] = (),
        message_type: TicketMessageType = TicketMessageType.GENERAL,
    ) -> TicketMessage:
        """Post a message; never changes the ticket's status.

        Staff may post either kind of message. Signed-in requesters must own the
        ticket, and guests must write from the email the ticket was opened with.
        """

        if not body.strip():
            raise ValidationError("Message must not be empty")
        ticket = await self._require_ticket(ticket_uuid)

        if message_type is TicketMessageType.INTERNAL and not sender.is_staff:
            raise ForbiddenError("Only support staff may post internal messages")

        if sender.is_staff:
            sender_uuid, sender_email = sender.uuid, None
        elif sender.is_authenticated:
            if not ticket.is_owned_by(sender):
                raise ForbiddenError("You may only message on your own tickets")
            sender_uuid, sender_email = sender.uuid, None
        else:
            self._check_guest_sender(ticket, sender)
            sender_uuid, sender_email = None, sender.email

        message = await self._repository.add_message(
            TicketMessage(
                uuid=str(uuid.uuid4()),
                ticket_uuid=ticket_uuid,
                message=body,
                type=message_type,
                sender_is_staff=sender.is_staff,
                time_sent=self._clock(),
                sequence=0,
                attachments=tuple(attachments),
                sender_uuid=sender_uuid,
                sender_email=sender_email,
            )
        )
        logger.debug("Message %s posted on ticket %s (%s)", message.uuid, ticket_uuid, message_type.value)
        if self._notifications is not None:
            self._notifications.new_message(ticket, message)
        return message

    async def list_messages(
        self,
        ticket_uuid: str,
        requester_is_staff: bool,
        *,
        message_type: TicketMessageType | None = None,
    ) -> list[TicketMessage]:
        await self._require_ticket(ticket_uuid)
        if requester_is_staff:
            types = [message_type] if message_type is not None else list(TicketMessageType)
        elif message_type is TicketMessageType.INTERNAL:
            return []
        else:
            types = [TicketMessageType.GENERAL]
        messages = await self._repository.list_messages(ticket_uuid, types=types)
        return sorted(messages, key=lambda message: (message.time_sent, message.sequence))

    @staticmethod
    def _check_guest_sender(ticket: Ticket, sender: Actor) -> None:
        if not sender.email:
            raise UnauthorizedError("Guest senders must identify themselves by email")
        if ticket.guest is None or ticket.guest.email.casefold() != sender.email.casefold():
            raise ForbiddenError("Sender email does not match the ticket's guest email")

    async def _require_ticket(self, ticket_uuid: str) -> Ticket:
        ticket = await self._repository.get_ticket(ticket_uuid)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_uuid} not found")
        return ticket
