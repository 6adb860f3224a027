from __future__ import annotations

from datetime import datetime, timezone

import pytest

from conductor.support.dashboard import (
    CLEAR_OPTION,
    DashboardRequestTracker,
    build_filter_options,
    build_ticket_query,
    capitalize_first_letter,
)
from conductor.support.enums import ACTIVE_STATUSES, CLOSED_STATUSES, TicketPriority, TicketSort
from conductor.support.errors import InvalidQueryError

OPENED = datetime(2024, 3, 1, tzinfo=timezone.utc)


def test_build_ticket_query_treats_empty_strings_as_no_filter():
    query = build_ticket_query(page=3, limit=25, sort="priority", assignee="", priority="", category="")

    assert query.statuses == ACTIVE_STATUSES
    assert query.sort is TicketSort.PRIORITY
    assert query.assignee is None and query.priority is None and query.category is None
    assert query.offset == 50


def test_build_ticket_query_for_closed_partition():
    query = build_ticket_query(closed=True, priority="high", category="billing")

    assert query.statuses == CLOSED_STATUSES
    assert query.priority is TicketPriority.HIGH
    assert query.category == "billing"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"sort": "newest"},
        {"priority": "urgent"},
        {"page": 0},
        {"limit": 0},
        {"limit": 101},
    ],
)
def test_build_ticket_query_rejects_values_outside_the_enumerations(kwargs):
    with pytest.raises(InvalidQueryError) as exc:
        build_ticket_query(**kwargs)

    assert exc.value.code == "invalid_query"
    assert exc.value.status_code == 400


def test_filter_options_are_page_scoped_deduplicated_and_sorted(ticket_factory):
    tickets = [
        ticket_factory("t-1", opened=OPENED, priority=TicketPriority.HIGH, category="technical", assigned=["u-2"]),
        ticket_factory("t-2", opened=OPENED, priority=TicketPriority.LOW, category="Billing", assigned=["u-1", "u-2"]),
        ticket_factory("t-3", opened=OPENED, priority=TicketPriority.HIGH, category="billing"),
    ]
    names = {"u-1": "zoe", "u-2": "Adam"}

    options = build_filter_options(tickets, assignee_label=names.__getitem__)

    assert options.assignee_options[0] == CLEAR_OPTION
    assert [(o.key, o.text) for o in options.assignee_options[1:]] == [("u-2", "Adam"), ("u-1", "Zoe")]
    assert [o.value for o in options.priority_options] == ["", "high", "low"]
    assert [o.text for o in options.priority_options] == ["Clear", "High", "Low"]
    assert [o.value for o in options.category_options] == ["", "Billing", "billing", "technical"]


def test_filter_options_for_empty_page_only_offer_clear():
    options = build_filter_options([])

    assert options.assignee_options == [CLEAR_OPTION]
    assert options.priority_options == [CLEAR_OPTION]
    assert options.category_options == [CLEAR_OPTION]


def test_capitalize_first_letter():
    assert capitalize_first_letter("in progress") == "In progress"
    assert capitalize_first_letter("") == ""


def test_request_tracker_discards_stale_responses():
    tracker: DashboardRequestTracker[str] = DashboardRequestTracker()

    first = tracker.issue()
    second = tracker.issue()

    assert tracker.accept(first, "stale") is None
    assert tracker.accept(second, "fresh") == "fresh"
    assert tracker.latest == second
    assert tracker.is_current(second)
