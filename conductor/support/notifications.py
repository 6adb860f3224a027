"""Outbound support notifications.

Mail delivery is best-effort: ticket mutations are committed before any
notification is scheduled, and delivery failures are logged rather than
surfaced to the caller.
"""

from __future__ import annotations

import asyncio
import html
import logging
from dataclasses import dataclass
from typing import Protocol, Sequence
from urllib.parse import urlencode

import httpx

from .enums import TicketMessageType
from .errors import UpstreamError
from .models import Ticket, TicketMessage

logger = logging.getLogger(__name__)

_AUTO_GEN_NOTICE_TEXT = (
    " This message was auto-generated by the Conductor platform. Replies to this address are not monitored."
)
_AUTO_GEN_NOTICE_HTML = (
    "<br><p><em>This message was auto-generated by the Conductor platform. "
    "Replies to this address are not monitored.</em></p>"
)


@dataclass(frozen=True, slots=True)
class Notification:
    recipients: tuple[str, ...]
    subject: str
    text: str
    html: str


@dataclass(frozen=True, slots=True)
class Recipient:
    uuid: str
    email: str
    name: str = ""


class Notifier(Protocol):
    async def send(self, notification: Notification) -> None:
        ...


class RecipientDirectory(Protocol):
    def lookup(self, uuid: str) -> Recipient | None:
        ...


class LoggingNotifier:
    """Notifier used when mail delivery is disabled; records what would be sent."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    async def send(self, notification: Notification) -> None:
        self.sent.append(notification)
        logger.info(
            "Notification suppressed: %s -> %s", notification.subject, ", ".join(notification.recipients)
        )


class MailgunNotifier:
    """Deliver notifications through the Mailgun messages API."""

    def __init__(
        self,
        *,
        api_key: str,
        domain: str,
        sender: str,
        base_url: str = "https://api.mailgun.net/v3",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._domain = domain
        self._sender = sender
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def send(self, notification: Notification) -> None:
        url = f"{self._base_url}/{self._domain}/messages"
        data = {
            "from": self._sender,
            "to": list(notification.recipients),
            "subject": notification.subject,
            "text": notification.text,
            "html": notification.html,
        }
        try:
            response = await self._client.post(url, auth=("api", self._api_key), data=data)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Mail provider request failed: {exc}") from exc
        if response.status_code >= 400:
            raise UpstreamError(f"Mail provider rejected message [{response.status_code}]: {response.text}")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class NotificationDispatcher:
    """Schedule notifications in the background so responses never wait on delivery."""

    def __init__(self, notifier: Notifier) -> None:
        self._notifier = notifier
        self._pending: set[asyncio.Task[None]] = set()

    def dispatch(self, notification: Notification) -> None:
        if not notification.recipients:
            return
        task = asyncio.get_running_loop().create_task(self._deliver(notification))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for every scheduled notification to finish."""

        while self._pending:
            pending = list(self._pending)
            await asyncio.gather(*pending)
            self._pending.difference_update(pending)

    async def _deliver(self, notification: Notification) -> None:
        try:
            await self._notifier.send(notification)
        except UpstreamError as exc:
            logger.warning("Notification '%s' not delivered: %s", notification.subject, exc)
        except Exception:  # pragma: no cover - delivery is best effort
            logger.exception("Unexpected failure delivering notification '%s'", notification.subject)


class TicketNotifications:
    """Compose ticket notifications and hand them to the dispatcher."""

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        *,
        directory: RecipientDirectory,
        client_url: str,
        team_emails: Sequence[str] = (),
    ) -> None:
        self._dispatcher = dispatcher
        self._directory = directory
        self._client_url = client_url.rstrip("/")
        self._team_emails = tuple(team_emails)

    def ticket_created(self, ticket: Ticket) -> None:
        staff_link = self.ticket_link(ticket, include_access_key=False)
        self._send(
            self._team_emails,
            f"New Support Ticket: {ticket.title}",
            f"A new support ticket was opened by {ticket.requester_name} "
            f"(priority: {ticket.priority.value}, category: {ticket.category}). View it at {staff_link}.",
        )
        requester = ticket.requester_email
        if requester:
            self._send(
                (requester,),
                f"Support Ticket Created ({ticket.uuid[-7:]})",
                f"Hi {ticket.requester_name}, we received your support request \"{ticket.title}\". "
                f"You can follow its progress at {self.ticket_link(ticket)}.",
            )

    def ticket_assigned(self, ticket: Ticket, assignee_uuids: Sequence[str]) -> None:
        self._send(
            self._emails_for(assignee_uuids),
            f"Support Ticket Assigned to You ({ticket.uuid[-7:]})",
            f"You have been assigned to the support ticket \"{ticket.title}\". "
            f"View it at {self.ticket_link(ticket, include_access_key=False)}.",
        )

    def ticket_closed(self, ticket: Ticket) -> None:
        requester = ticket.requester_email
        if not requester:
            return
        self._send(
            (requester,),
            f"Support Ticket Closed ({ticket.uuid[-7:]})",
            f"Hi {ticket.requester_name}, your support ticket \"{ticket.title}\" has been resolved and closed. "
            f"You can review it at {self.ticket_link(ticket)}.",
        )

    def new_message(self, ticket: Ticket, message: TicketMessage) -> None:
        if message.type is TicketMessageType.INTERNAL or not message.sender_is_staff:
            recipients = self._emails_for(
                [uuid for uuid in ticket.assigned_uuids if uuid != message.sender_uuid]
            )
            if not recipients and message.type is TicketMessageType.GENERAL:
                recipients = self._team_emails
            link = self.ticket_link(ticket, include_access_key=False)
        else:
            requester = ticket.requester_email
            recipients = (requester,) if requester else ()
            link = self.ticket_link(ticket)
        self._send(
            recipients,
            f"New Message on Support Ticket ({ticket.uuid[-7:]})",
            f"A new message was posted on \"{ticket.title}\": {message.message} View the ticket at {link}.",
        )

    def ticket_link(self, ticket: Ticket, *, include_access_key: bool = True) -> str:
        link = f"{self._client_url}/support/ticket/{ticket.uuid}"
        if include_access_key and ticket.guest is not None and ticket.access_key:
            link = f"{link}?{urlencode({'accessKey': ticket.access_key})}"
        return link

    def _emails_for(self, uuids: Sequence[str]) -> tuple[str, ...]:
        emails: list[str] = []
        for uuid in uuids:
            recipient = self._directory.lookup(uuid)
            if recipient is not None and recipient.email not in emails:
                emails.append(recipient.email)
        return tuple(emails)

    def _send(self, recipients: Sequence[str], subject: str, body: str) -> None:
        self._dispatcher.dispatch(
            Notification(
                recipients=tuple(recipients),
                subject=subject,
                text=body + _AUTO_GEN_NOTICE_TEXT,
                html=f"<p>{html.escape(body)}</p>" + _AUTO_GEN_NOTICE_HTML,
            )
        )
