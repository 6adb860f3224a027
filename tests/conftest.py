from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from conductor.support.enums import TicketPriority, TicketStatus
from conductor.support.models import Actor, Ticket, TicketGuest, TicketUser
from conductor.support.repository import TicketRepository

STAFF_UUID = "c9f0f895-fb98-4b91-8f2c-6b1f3d2e5002"
ADMIN_UUID = "8f14e45f-ceea-4e7a-9d2c-3c59e3d1a001"
USER_UUID = "45c48cce-2e2d-4fbd-a1e2-7c3b9d4f6003"


class FrozenClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 3, 4, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def staff() -> Actor:
    return Actor(uuid=STAFF_UUID, email="support@libretexts.org", name="Sam", is_staff=True)


@pytest.fixture
def owner() -> Actor:
    return Actor(uuid=USER_UUID, email="instructor@example.edu", name="Ivy")


@pytest.fixture
def guest_contact() -> TicketGuest:
    return TicketGuest(first_name="Ana", last_name="Bell", email="a@b.com", organization="Example College")


@pytest_asyncio.fixture
async def engine() -> AsyncEngine:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def repository(session_factory: async_sessionmaker, engine: AsyncEngine) -> TicketRepository:
    return TicketRepository(session_factory, engine=engine)


def make_ticket(
    uuid: str,
    *,
    opened: datetime,
    priority: TicketPriority = TicketPriority.MEDIUM,
    status: TicketStatus = TicketStatus.OPEN,
    category: str = "technical",
    assigned: list[str] | None = None,
    user_uuid: str | None = USER_UUID,
    closed: datetime | None = None,
) -> Ticket:
    return Ticket(
        uuid=uuid,
        title=f"Ticket {uuid}",
        description="Something is broken",
        category=category,
        priority=priority,
        status=status,
        time_opened=opened,
        apps=[1],
        assigned_uuids=list(assigned or []),
        user=TicketUser(uuid=user_uuid, email="instructor@example.edu", name="Ivy") if user_uuid else None,
        guest=None
        if user_uuid
        else TicketGuest(first_name="Ana", last_name="Bell", email="a@b.com", organization="Example"),
        time_closed=closed,
    )


@pytest.fixture
def ticket_factory():
    return make_ticket
