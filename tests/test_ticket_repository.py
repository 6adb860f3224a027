from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from conductor.support.enums import ACTIVE_STATUSES, CLOSED_STATUSES, TicketMessageType, TicketPriority, TicketSort, TicketStatus
from conductor.support.models import TicketFeedEntry, TicketMessage, TicketQuery
from conductor.support.repository import TicketRepository

BASE = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _entry(action: str = "Changed") -> TicketFeedEntry:
    return TicketFeedEntry(action=action, blame="Sam", date=BASE)


def _message(ticket_uuid: str, body: str, *, sent: datetime, kind=TicketMessageType.GENERAL) -> TicketMessage:
    return TicketMessage(
        uuid=f"{ticket_uuid}-{body}",
        ticket_uuid=ticket_uuid,
        message=body,
        type=kind,
        sender_is_staff=kind is TicketMessageType.INTERNAL,
        time_sent=sent,
        sequence=0,
    )


@pytest.mark.asyncio
async def test_ensure_schema_creates_support_tables(engine: AsyncEngine):
    repository = TicketRepository(async_sessionmaker(engine, expire_on_commit=False), engine=engine)

    await repository.ensure_schema()

    async with engine.begin() as conn:
        tables = await conn.run_sync(lambda sync_conn: set(sa_inspect(sync_conn).get_table_names()))
    assert {"support_tickets", "support_ticket_feed", "support_ticket_messages"} <= tables


@pytest.mark.asyncio
async def test_create_and_get_round_trips_assignees_and_timestamps(repository, ticket_factory):
    ticket = ticket_factory("t-1", opened=BASE, assigned=["u-2", "u-1"])

    await repository.create_ticket(ticket)
    stored = await repository.get_ticket("t-1")

    assert stored is not None
    assert stored.assigned_uuids == ["u-2", "u-1"]
    assert stored.time_opened == BASE
    assert stored.time_opened.tzinfo is not None
    assert stored.user is not None and stored.user.uuid == ticket.user.uuid
    assert await repository.get_ticket("missing") is None


@pytest.mark.asyncio
async def test_query_partitions_by_status_and_paginates(repository, ticket_factory):
    for index in range(5):
        await repository.create_ticket(ticket_factory(f"t-{index}", opened=BASE + timedelta(minutes=index)))
    await repository.create_ticket(
        ticket_factory("t-closed", opened=BASE, status=TicketStatus.CLOSED, closed=BASE + timedelta(hours=1))
    )

    page = await repository.query_tickets(TicketQuery(statuses=ACTIVE_STATUSES, page=2, limit=2))
    closed = await repository.query_tickets(TicketQuery(statuses=CLOSED_STATUSES))

    assert page.total == 5
    assert [ticket.uuid for ticket in page.items] == ["t-2", "t-3"]
    assert [ticket.uuid for ticket in closed.items] == ["t-closed"]


@pytest.mark.asyncio
async def test_query_sorts_by_priority_rank_with_uuid_tie_break(repository, ticket_factory):
    await repository.create_ticket(ticket_factory("b", opened=BASE, priority=TicketPriority.HIGH))
    await repository.create_ticket(ticket_factory("c", opened=BASE, priority=TicketPriority.LOW))
    await repository.create_ticket(ticket_factory("a", opened=BASE, priority=TicketPriority.HIGH))
    await repository.create_ticket(ticket_factory("d", opened=BASE, priority=TicketPriority.MEDIUM))

    page = await repository.query_tickets(TicketQuery(sort=TicketSort.PRIORITY))

    assert [ticket.uuid for ticket in page.items] == ["c", "d", "a", "b"]


@pytest.mark.asyncio
async def test_query_filters_by_assignee_priority_and_category(repository, ticket_factory):
    await repository.create_ticket(ticket_factory("t-1", opened=BASE, assigned=["staff-1"], category="billing"))
    await repository.create_ticket(ticket_factory("t-2", opened=BASE, assigned=["staff-2"], category="billing"))
    await repository.create_ticket(
        ticket_factory("t-3", opened=BASE, assigned=["staff-1"], priority=TicketPriority.HIGH)
    )

    by_assignee = await repository.query_tickets(TicketQuery(assignee="staff-1"))
    by_category = await repository.query_tickets(TicketQuery(category="billing", assignee="staff-1"))
    by_priority = await repository.query_tickets(TicketQuery(priority=TicketPriority.HIGH))

    assert {ticket.uuid for ticket in by_assignee.items} == {"t-1", "t-3"}
    assert [ticket.uuid for ticket in by_category.items] == ["t-1"]
    assert by_priority.total == 1 and by_priority.items[0].uuid == "t-3"


@pytest.mark.asyncio
async def test_transition_status_is_compare_and_set(repository, ticket_factory):
    await repository.create_ticket(ticket_factory("t-1", opened=BASE))

    first = await repository.transition_status(
        "t-1",
        expected=TicketStatus.OPEN,
        new=TicketStatus.IN_PROGRESS,
        time_closed=None,
        feed_entry=_entry("first"),
        assignees=["staff-1"],
    )
    second = await repository.transition_status(
        "t-1",
        expected=TicketStatus.OPEN,
        new=TicketStatus.CLOSED,
        time_closed=BASE,
        feed_entry=_entry("second"),
    )

    stored = await repository.get_ticket("t-1")
    assert first is True
    assert second is False
    assert stored.status is TicketStatus.IN_PROGRESS
    assert stored.time_closed is None
    assert stored.assigned_uuids == ["staff-1"]
    assert [entry.action for entry in stored.feed] == ["first"]



@pytest.mark.asyncio
async def test_transition_status_writes_priority_only_with_the_status(repository, ticket_factory):
    await repository.create_ticket(ticket_factory("t-1", opened=BASE, status=TicketStatus.IN_PROGRESS))

    lost = await repository.transition_status(
        "t-1",
        expected=TicketStatus.OPEN,
        new=TicketStatus.CLOSED,
        time_closed=BASE,
        feed_entry=_entry("Closed ticket"),
        priority=TicketPriority.HIGH,
        priority_entry=_entry("Changed priority to High"),
    )
    stored = await repository.get_ticket("t-1")
    assert lost is False
    assert stored.priority is TicketPriority.MEDIUM
    assert stored.feed == []

    won = await repository.transition_status(
        "t-1",
        expected=TicketStatus.IN_PROGRESS,
        new=TicketStatus.CLOSED,
        time_closed=BASE,
        feed_entry=_entry("Closed ticket"),
        priority=TicketPriority.HIGH,
        priority_entry=_entry("Changed priority to High"),
    )
    stored = await repository.get_ticket("t-1")
    assert won is True
    assert stored.priority is TicketPriority.HIGH
    assert stored.status is TicketStatus.CLOSED
    assert [entry.action for entry in stored.feed] == ["Changed priority to High", "Closed ticket"]

@pytest.mark.asyncio
async def test_add_message_assigns_increasing_sequence(repository, ticket_factory):
    await repository.create_ticket(ticket_factory("t-1", opened=BASE))

    first = await repository.add_message(_message("t-1", "one", sent=BASE))
    second = await repository.add_message(_message("t-1", "two", sent=BASE))
    internal = await repository.add_message(
        _message("t-1", "three", sent=BASE, kind=TicketMessageType.INTERNAL)
    )

    general = await repository.list_messages("t-1", types=[TicketMessageType.GENERAL])
    assert first.sequence < second.sequence < internal.sequence
    assert [message.message for message in general] == ["one", "two"]


@pytest.mark.asyncio
async def test_delete_ticket_removes_dependants(repository, ticket_factory):
    await repository.create_ticket(ticket_factory("t-1", opened=BASE, assigned=["staff-1"]))
    await repository.set_assignees("t-1", ["staff-2"], _entry())
    await repository.add_message(_message("t-1", "hello", sent=BASE))

    deleted = await repository.delete_ticket("t-1", only_status=TicketStatus.OPEN)

    assert deleted is True
    assert await repository.get_ticket("t-1") is None
    assert await repository.list_messages("t-1", types=list(TicketMessageType)) == []
    assert (await repository.query_tickets(TicketQuery(assignee="staff-2"))).total == 0


@pytest.mark.asyncio
async def test_delete_ticket_respects_status_guard(repository, ticket_factory):
    await repository.create_ticket(ticket_factory("t-1", opened=BASE, status=TicketStatus.IN_PROGRESS))

    assert await repository.delete_ticket("t-1", only_status=TicketStatus.OPEN) is False
    assert await repository.get_ticket("t-1") is not None


@pytest.mark.asyncio
async def test_search_matches_title_and_description(repository, ticket_factory):
    await repository.create_ticket(ticket_factory("t-1", opened=BASE))
    await repository.create_ticket(ticket_factory("other", opened=BASE, category="billing"))

    results = await repository.search_tickets("BILL")

    assert [ticket.uuid for ticket in results] == ["other"]


@pytest.mark.asyncio
async def test_search_treats_like_wildcards_literally(repository, ticket_factory):
    await repository.create_ticket(replace(ticket_factory("t-1", opened=BASE), title="50% discount missing"))
    await repository.create_ticket(replace(ticket_factory("t-2", opened=BASE), title="500 error on upload"))
    await repository.create_ticket(replace(ticket_factory("t-3", opened=BASE), title="path C:\\books\\ch_1"))

    assert await repository.search_tickets("%%%") == []
    assert [ticket.uuid for ticket in await repository.search_tickets("50%")] == ["t-1"]
    assert await repository.search_tickets("5_0") == []
    assert [ticket.uuid for ticket in await repository.search_tickets("\\ch_")] == ["t-3"]
