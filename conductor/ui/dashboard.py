"""Client-side state for the staff dashboard view."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

from conductor.support.dashboard import DashboardRequestTracker

from .api import Err, Ok, Result, SupportAPIClient

MINUTES_PER_DAY = 60 * 24


@dataclass(frozen=True, slots=True)
class DashboardFilters:
    page: int = 1
    limit: int = 10
    sort: str = "opened"
    assignee: str = ""
    priority: str = ""
    category: str = ""


@dataclass(slots=True)
class StaffDashboardState:
    """State owned by one dashboard view; responses older than the latest request are dropped."""

    client: SupportAPIClient
    filters: DashboardFilters = field(default_factory=DashboardFilters)
    tickets: list[Mapping[str, Any]] = field(default_factory=list)
    total: int = 0
    filter_options: Mapping[str, Any] = field(default_factory=dict)
    metrics: Mapping[str, Any] = field(default_factory=dict)
    last_error: Err | None = None
    tracker: DashboardRequestTracker[Result[Any]] = field(default_factory=DashboardRequestTracker)

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total / self.filters.limit))

    @property
    def avg_days_to_close(self) -> float:
        return float(self.metrics.get("avgMinsToClose", 0) or 0) / MINUTES_PER_DAY

    def set_filter(self, name: str, value: str) -> None:
        """Change one filter and return to the first page."""

        if name not in ("assignee", "priority", "category"):
            raise ValueError(f"Unknown dashboard filter: {name}")
        self.filters = replace(self.filters, page=1, **{name: value})

    def set_page(self, page: int) -> None:
        self.filters = replace(self.filters, page=max(1, page))

    def set_sort(self, sort: str) -> None:
        self.filters = replace(self.filters, sort=sort)

    def begin_refresh(self) -> int:
        return self.tracker.issue()

    def apply_tickets(self, token: int, result: Result[Any]) -> bool:
        """Apply a ticket list response; returns ``False`` when it was superseded."""

        accepted = self.tracker.accept(token, result)
        if accepted is None:
            return False
        if isinstance(accepted, Ok):
            body = accepted.value or {}
            self.tickets = list(body.get("tickets", []))
            self.total = int(body.get("total", 0))
            self.filter_options = dict(body.get("filterOptions") or {})
            self.last_error = None
        else:
            self.last_error = accepted
        return True

    def refresh(self) -> bool:
        token = self.begin_refresh()
        filters = self.filters
        result = self.client.list_open_tickets(
            page=filters.page,
            limit=filters.limit,
            sort=filters.sort,
            assignee=filters.assignee,
            priority=filters.priority,
            category=filters.category,
        )
        return self.apply_tickets(token, result)

    def load_metrics(self) -> None:
        result = self.client.get_metrics()
        if isinstance(result, Ok):
            self.metrics = dict(result.value)
        else:
            self.last_error = result
