from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

from .enums import ACTIVE_STATUSES
from .models import SupportMetrics
from .repository import TicketRepository

METRICS_WINDOW = timedelta(days=7)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SupportMetricsAggregator:
    """Compute staff dashboard counters from the ticket store.

    The three figures are read independently; under concurrent writes they may
    reflect slightly different instants.
    """

    def __init__(self, repository: TicketRepository, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._repository = repository
        self._clock = clock

    async def compute_metrics(self) -> SupportMetrics:
        now = self._clock()
        total_open = await self._repository.count_tickets(ACTIVE_STATUSES)
        last_seven = await self._repository.count_opened_between(now - METRICS_WINDOW, now)
        intervals = await self._repository.closed_intervals()
        return SupportMetrics(
            total_open_tickets=total_open,
            last_seven_ticket_count=last_seven,
            avg_mins_to_close=average_minutes(intervals),
        )


def average_minutes(intervals: list[tuple[datetime, datetime]]) -> float:
    if not intervals:
        return 0
    total = sum((closed - opened).total_seconds() for opened, closed in intervals)
    return total / 60 / len(intervals)
