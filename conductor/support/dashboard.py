"""Staff dashboard query building and filter option derivation."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Callable, Generic, Sequence, TypeVar

from .enums import ACTIVE_STATUSES, CLOSED_STATUSES, TicketPriority, TicketSort
from .errors import InvalidQueryError
from .models import Ticket, TicketQuery

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


@dataclass(frozen=True, slots=True)
class FilterOption:
    key: str
    text: str
    value: str


CLEAR_OPTION = FilterOption(key="", text="Clear", value="")


@dataclass(frozen=True, slots=True)
class FilterOptions:
    assignee_options: list[FilterOption] = field(default_factory=list)
    priority_options: list[FilterOption] = field(default_factory=list)
    category_options: list[FilterOption] = field(default_factory=list)


def capitalize_first_letter(text: str) -> str:
    return text[:1].upper() + text[1:]


def build_ticket_query(
    *,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    sort: str | TicketSort = TicketSort.OPENED,
    assignee: str | None = None,
    priority: str | TicketPriority | None = None,
    category: str | None = None,
    closed: bool = False,
    max_limit: int = MAX_PAGE_SIZE,
) -> TicketQuery:
    """Translate dashboard parameters into a store query.

    Empty strings are treated as "no filter", matching the dashboard's Clear option.
    """

    if page < 1:
        raise InvalidQueryError("page must be a positive integer")
    if limit < 1 or limit > max_limit:
        raise InvalidQueryError(f"limit must be between 1 and {max_limit}")
    try:
        sort_key = TicketSort(sort or TicketSort.OPENED)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in TicketSort)
        raise InvalidQueryError(f"Unknown sort '{sort}'; expected one of {allowed}") from exc
    try:
        priority_filter = TicketPriority(priority) if priority else None
    except ValueError as exc:
        allowed = ", ".join(item.value for item in TicketPriority)
        raise InvalidQueryError(f"Unknown priority '{priority}'; expected one of {allowed}") from exc

    return TicketQuery(
        statuses=CLOSED_STATUSES if closed else ACTIVE_STATUSES,
        assignee=assignee or None,
        priority=priority_filter,
        category=category or None,
        sort=sort_key,
        page=page,
        limit=limit,
    )


def build_filter_options(
    current_page: Sequence[Ticket],
    *,
    assignee_label: Callable[[str], str] | None = None,
) -> FilterOptions:
    """Derive dropdown options from the tickets of the current page only.

    Values outside the fetched page are not offered; widening the scope to the
    whole store is an open product decision.
    """

    label = assignee_label or (lambda uuid: uuid)
    assignees: dict[str, str] = {}
    priorities: dict[str, str] = {}
    categories: dict[str, str] = {}
    for ticket in current_page:
        for uuid in ticket.assigned_uuids:
            assignees.setdefault(uuid, label(uuid))
        priorities.setdefault(ticket.priority.value, ticket.priority.value)
        if ticket.category:
            categories.setdefault(ticket.category, ticket.category)

    return FilterOptions(
        assignee_options=_to_options(assignees),
        priority_options=_to_options(priorities),
        category_options=_to_options(categories),
    )


def _to_options(values: dict[str, str]) -> list[FilterOption]:
    ordered = sorted(values.items(), key=lambda item: (item[1].casefold(), item[0]))
    return [CLEAR_OPTION] + [
        FilterOption(key=key, text=capitalize_first_letter(text), value=key) for key, text in ordered
    ]


class DashboardRequestTracker(Generic[T]):
    """Hand out increasing request tokens and drop responses that were superseded."""

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._latest = 0

    @property
    def latest(self) -> int:
        return self._latest

    def issue(self) -> int:
        self._latest = next(self._counter)
        return self._latest

    def is_current(self, token: int) -> bool:
        return token == self._latest

    def accept(self, token: int, response: T) -> T | None:
        """Return ``response`` if ``token`` is the newest request, otherwise ``None``."""

        if not self.is_current(token):
            return None
        return response
