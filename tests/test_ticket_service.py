from __future__ import annotations

import pytest

from conductor.dependencies.auth import StaticUserDirectory
from conductor.support.enums import TicketPriority, TicketStatus
from conductor.support.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    InvalidTransitionError,
    TicketNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from conductor.support.models import Actor, TicketFeedEntry, TicketUser
from conductor.support.notifications import LoggingNotifier, NotificationDispatcher, TicketNotifications
from conductor.support.service import TicketService

from conftest import STAFF_UUID, USER_UUID


@pytest.fixture
def notifier() -> LoggingNotifier:
    return LoggingNotifier()


@pytest.fixture
def dispatcher(notifier) -> NotificationDispatcher:
    return NotificationDispatcher(notifier)


@pytest.fixture
def service(repository, dispatcher, clock) -> TicketService:
    directory = StaticUserDirectory()
    notifications = TicketNotifications(
        dispatcher,
        directory=directory,
        client_url="https://commons.example.org",
        team_emails=("team@example.org",),
    )
    return TicketService(repository, notifications=notifications, directory=directory, clock=clock)


async def _user_ticket(service: TicketService, **overrides):
    payload = dict(
        title="Cannot log in",
        description="The login page spins forever",
        priority=TicketPriority.MEDIUM,
        category="technical",
        apps=[1],
        user=TicketUser(uuid=USER_UUID, email="instructor@example.edu", name="Ivy"),
    )
    payload.update(overrides)
    return await service.create_ticket(**payload)


@pytest.mark.asyncio
async def test_guest_ticket_is_created_open_with_access_key(service, guest_contact, dispatcher, notifier):
    ticket = await service.create_ticket(
        title="Billing question",
        description="Charged twice",
        priority=TicketPriority.HIGH,
        category="billing",
        apps=[3],
        attachments=["invoice.pdf"],
        guest=guest_contact,
    )
    await dispatcher.drain()

    assert ticket.status is TicketStatus.OPEN
    assert ticket.feed == []
    assert ticket.assigned_uuids == []
    assert ticket.time_closed is None
    assert ticket.access_key and len(ticket.access_key) == 64
    assert ticket.attachments[0].uploaded_by == "a@b.com"
    recipients = {recipient for sent in notifier.sent for recipient in sent.recipients}
    assert recipients == {"team@example.org", "a@b.com"}
    assert any(ticket.access_key in sent.text for sent in notifier.sent if "a@b.com" in sent.recipients)


@pytest.mark.asyncio
async def test_create_ticket_validates_input(service, guest_contact):
    with pytest.raises(ValidationError):
        await _user_ticket(service, description="x" * 501)
    with pytest.raises(ValidationError):
        await _user_ticket(service, apps=[])
    with pytest.raises(ValidationError):
        await _user_ticket(service, guest=guest_contact)


@pytest.mark.asyncio
async def test_assign_moves_open_ticket_to_in_progress(service, staff, dispatcher, notifier):
    ticket = await _user_ticket(service)

    updated = await service.assign(ticket.uuid, [STAFF_UUID, STAFF_UUID], staff)
    await dispatcher.drain()

    assert updated.status is TicketStatus.IN_PROGRESS
    assert updated.assigned_uuids == [STAFF_UUID]
    assert [entry.action for entry in updated.feed] == ["Assigned ticket to Sam"]
    assert updated.feed[0].blame == "Sam"
    assert any("support@libretexts.org" in sent.recipients for sent in notifier.sent)


@pytest.mark.asyncio
async def test_assign_keeps_status_of_in_progress_and_closed_tickets(service, staff):
    ticket = await _user_ticket(service)
    await service.change_status(ticket.uuid, new_status=TicketStatus.CLOSED, actor=staff)

    closed = await service.assign(ticket.uuid, [STAFF_UUID], staff)
    assert closed.status is TicketStatus.CLOSED

    other = await _user_ticket(service)
    await service.assign(other.uuid, [STAFF_UUID], staff)
    reassigned = await service.assign(other.uuid, ["someone-else"], staff)
    assert reassigned.status is TicketStatus.IN_PROGRESS
    assert reassigned.assigned_uuids == ["someone-else"]


@pytest.mark.asyncio
async def test_assigning_empty_list_leaves_open_ticket_open(service, staff):
    ticket = await _user_ticket(service)

    updated = await service.assign(ticket.uuid, [], staff)

    assert updated.status is TicketStatus.OPEN
    assert [entry.action for entry in updated.feed] == ["Removed all assignees"]


@pytest.mark.asyncio
async def test_closing_sets_time_closed_and_reopen_clears_it(service, staff, clock):
    ticket = await _user_ticket(service)
    clock.advance(minutes=90)

    closed = await service.change_status(ticket.uuid, new_status=TicketStatus.CLOSED, actor=staff)
    assert closed.status is TicketStatus.CLOSED
    assert closed.time_closed == clock.now

    reopened = await service.change_status(ticket.uuid, new_status=TicketStatus.IN_PROGRESS, actor=staff)
    assert reopened.time_closed is None
    assert [entry.action for entry in reopened.feed] == ["Closed ticket", "Re-opened ticket"]


@pytest.mark.asyncio
async def test_closed_ticket_cannot_return_to_open(service, staff):
    ticket = await _user_ticket(service)
    await service.change_status(ticket.uuid, new_status=TicketStatus.CLOSED, actor=staff)

    with pytest.raises(InvalidTransitionError):
        await service.change_status(ticket.uuid, new_status=TicketStatus.OPEN, actor=staff)

    stored = await service.get_ticket(ticket.uuid, staff)
    assert stored.status is TicketStatus.CLOSED


@pytest.mark.asyncio
async def test_lost_race_raises_conflict(service, repository, staff, clock, monkeypatch):
    ticket = await _user_ticket(service)
    original = repository.transition_status

    async def racing_transition(ticket_uuid, **kwargs):
        await original(
            ticket_uuid,
            expected=TicketStatus.OPEN,
            new=TicketStatus.CLOSED,
            time_closed=clock(),
            feed_entry=kwargs["feed_entry"],
        )
        return await original(ticket_uuid, **kwargs)

    monkeypatch.setattr(repository, "transition_status", racing_transition)

    with pytest.raises(ConflictError) as exc:
        await service.change_status(ticket.uuid, new_status=TicketStatus.IN_PROGRESS, actor=staff)

    assert isinstance(exc.value, InvalidTransitionError)
    assert exc.value.status_code == 409
    stored = await repository.get_ticket(ticket.uuid)
    assert stored.status is TicketStatus.CLOSED


@pytest.mark.asyncio
async def test_update_ticket_changes_priority_and_status(service, staff):
    ticket = await _user_ticket(service)

    updated = await service.update_ticket(
        ticket.uuid, staff, priority=TicketPriority.HIGH, status=TicketStatus.CLOSED
    )

    assert updated.priority is TicketPriority.HIGH
    assert updated.status is TicketStatus.CLOSED
    assert [entry.action for entry in updated.feed] == ["Changed priority to High", "Closed ticket"]


@pytest.mark.asyncio
async def test_delete_only_allowed_while_open(service, staff):
    ticket = await _user_ticket(service)
    await service.assign(ticket.uuid, [STAFF_UUID], staff)

    with pytest.raises(InvalidStateError):
        await service.delete_ticket(ticket.uuid, staff)

    fresh = await _user_ticket(service)
    await service.delete_ticket(fresh.uuid, staff)
    with pytest.raises(TicketNotFoundError):
        await service.get_ticket(fresh.uuid, staff)


@pytest.mark.asyncio
async def test_staff_operations_reject_other_callers(service, owner):
    ticket = await _user_ticket(service)

    with pytest.raises(UnauthorizedError):
        await service.assign(ticket.uuid, [STAFF_UUID], None)
    with pytest.raises(ForbiddenError):
        await service.change_status(ticket.uuid, new_status=TicketStatus.CLOSED, actor=owner)


@pytest.mark.asyncio
async def test_ticket_access_rules(service, guest_contact, owner):
    user_ticket = await _user_ticket(service)
    guest_ticket = await service.create_ticket(
        title="Guest",
        description="",
        priority=TicketPriority.LOW,
        category="general",
        apps=[2],
        guest=guest_contact,
    )
    stranger = Actor(uuid="someone", email="x@example.org")

    assert (await service.get_ticket(user_ticket.uuid, owner)).uuid == user_ticket.uuid
    assert (await service.get_ticket(guest_ticket.uuid, None, access_key=guest_ticket.access_key)).uuid
    with pytest.raises(UnauthorizedError):
        await service.get_ticket(guest_ticket.uuid, None, access_key="wrong")
    with pytest.raises(ForbiddenError):
        await service.get_ticket(user_ticket.uuid, stranger)


@pytest.mark.asyncio
async def test_search_and_user_listing(service, staff, owner):
    await _user_ticket(service, title="Printer jam")

    with pytest.raises(ValidationError):
        await service.search_tickets("pr", staff)
    assert [ticket.title for ticket in await service.search_tickets("printer", staff)] == ["Printer jam"]
    assert len(await service.list_user_tickets(USER_UUID, owner)) == 1
    with pytest.raises(ForbiddenError):
        await service.list_user_tickets("another-user", owner)


@pytest.mark.asyncio
async def test_guest_can_add_attachments_with_access_key(service, guest_contact):
    ticket = await service.create_ticket(
        title="Guest",
        description="",
        priority=TicketPriority.LOW,
        category="general",
        apps=[2],
        guest=guest_contact,
    )

    updated = await service.add_attachments(ticket.uuid, ["screen.png"], None, access_key=ticket.access_key)

    assert [attachment.name for attachment in updated.attachments] == ["screen.png"]
    assert updated.feed[-1].blame == "a@b.com"


@pytest.mark.asyncio
async def test_update_rejects_same_status_without_touching_priority(service, staff):
    ticket = await _user_ticket(service)

    with pytest.raises(InvalidTransitionError):
        await service.update_ticket(ticket.uuid, staff, priority=TicketPriority.HIGH, status=TicketStatus.OPEN)

    stored = await service.get_ticket(ticket.uuid, staff)
    assert stored.priority is TicketPriority.MEDIUM
    assert stored.feed == []


@pytest.mark.asyncio
async def test_update_losing_status_race_leaves_priority_unchanged(service, repository, staff, clock, monkeypatch):
    ticket = await _user_ticket(service)
    original = repository.transition_status

    async def racing_transition(ticket_uuid, **kwargs):
        await original(
            ticket_uuid,
            expected=TicketStatus.OPEN,
            new=TicketStatus.IN_PROGRESS,
            time_closed=None,
            feed_entry=TicketFeedEntry(action="Changed status to In Progress", blame="Other", date=clock()),
        )
        return await original(ticket_uuid, **kwargs)

    monkeypatch.setattr(repository, "transition_status", racing_transition)

    with pytest.raises(ConflictError):
        await service.update_ticket(ticket.uuid, staff, priority=TicketPriority.HIGH, status=TicketStatus.CLOSED)

    stored = await repository.get_ticket(ticket.uuid)
    assert stored.status is TicketStatus.IN_PROGRESS
    assert stored.priority is TicketPriority.MEDIUM
    assert [entry.action for entry in stored.feed] == ["Changed status to In Progress"]
