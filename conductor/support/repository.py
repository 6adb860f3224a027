from __future__ import annotations

from collections import defaultdict
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from sqlalchemy import case, delete, func, or_, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from packages.db.models import (
    SupportTicketAssigneeTable,
    SupportTicketAttachmentTable,
    SupportTicketFeedTable,
    SupportTicketMessageTable,
    SupportTicketTable,
)

from .enums import STATUS_ORDER, TicketMessageType, TicketPriority, TicketSort, TicketStatus
from .models import (
    Ticket,
    TicketAttachment,
    TicketFeedEntry,
    TicketGuest,
    TicketMessage,
    TicketPage,
    TicketQuery,
    TicketUser,
)


_PRIORITY_RANK = case(
    {priority.value: priority.rank for priority in TicketPriority},
    value=SupportTicketTable.priority,
    else_=len(TicketPriority),
)

_STATUS_RANK = case(
    {status.value: rank for status, rank in STATUS_ORDER.items()},
    value=SupportTicketTable.status,
    else_=len(STATUS_ORDER),
)

_LIKE_ESCAPE = "\\"


class TicketRepository:
    """Persistence helper wrapping support tickets and their dependent rows."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    async def create_ticket(self, ticket: Ticket) -> str:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    SupportTicketTable(
                        uuid=ticket.uuid,
                        title=ticket.title,
                        description=ticket.description,
                        category=ticket.category,
                        priority=ticket.priority.value,
                        status=ticket.status.value,
                        captured_url=ticket.captured_url,
                        apps=list(ticket.apps),
                        user_uuid=ticket.user.uuid if ticket.user else None,
                        user_email=ticket.user.email if ticket.user else None,
                        user_name=ticket.user.name if ticket.user else None,
                        guest=asdict(ticket.guest) if ticket.guest else None,
                        access_key=ticket.access_key,
                        time_opened=ticket.time_opened,
                        time_closed=ticket.time_closed,
                    )
                )
                self._add_assignees(session, ticket.uuid, ticket.assigned_uuids)
                for attachment in ticket.attachments:
                    session.add(self._attachment_to_table(attachment))
                for entry in ticket.feed:
                    session.add(self._feed_to_table(ticket.uuid, entry))
        return ticket.uuid

    async def get_ticket(self, ticket_uuid: str) -> Ticket | None:
        async with self._session_factory() as session:
            row = await session.get(SupportTicketTable, ticket_uuid)
            if row is None:
                return None
            tickets = await self._hydrate(session, [row])
        return tickets[0]

    async def query_tickets(self, query: TicketQuery) -> TicketPage:
        conditions = [SupportTicketTable.status.in_([status.value for status in query.statuses])]
        if query.assignee:
            conditions.append(
                SupportTicketTable.uuid.in_(
                    select(SupportTicketAssigneeTable.ticket_uuid).where(
                        SupportTicketAssigneeTable.user_uuid == query.assignee
                    )
                )
            )
        if query.priority is not None:
            conditions.append(SupportTicketTable.priority == query.priority.value)
        if query.category:
            conditions.append(SupportTicketTable.category == query.category)

        statement = (
            select(SupportTicketTable)
            .where(*conditions)
            .order_by(*self._ordering(query.sort))
            .offset(query.offset)
            .limit(query.limit)
        )
        count_statement = select(func.count()).select_from(SupportTicketTable).where(*conditions)

        async with self._session_factory() as session:
            total = await session.scalar(count_statement)
            result = await session.execute(statement)
            tickets = await self._hydrate(session, result.scalars().all())
        return TicketPage(items=tickets, total=int(total or 0))

    async def search_tickets(self, text: str, *, limit: int = 50) -> list[Ticket]:
        pattern = f"%{_escape_like(text)}%"
        statement = (
            select(SupportTicketTable)
            .where(
                or_(
                    SupportTicketTable.title.ilike(pattern, escape=_LIKE_ESCAPE),
                    SupportTicketTable.description.ilike(pattern, escape=_LIKE_ESCAPE),
                    SupportTicketTable.category.ilike(pattern, escape=_LIKE_ESCAPE),
                    SupportTicketTable.uuid.ilike(pattern, escape=_LIKE_ESCAPE),
                )
            )
            .order_by(SupportTicketTable.time_opened.desc(), SupportTicketTable.uuid.asc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return await self._hydrate(session, result.scalars().all())

    async def list_user_tickets(self, user_uuid: str) -> list[Ticket]:
        statement = (
            select(SupportTicketTable)
            .where(SupportTicketTable.user_uuid == user_uuid)
            .order_by(SupportTicketTable.time_opened.desc(), SupportTicketTable.uuid.asc())
        )
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return await self._hydrate(session, result.scalars().all())

    async def update_priority(
        self, ticket_uuid: str, priority: TicketPriority, feed_entry: TicketFeedEntry
    ) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(SupportTicketTable)
                    .where(SupportTicketTable.uuid == ticket_uuid)
                    .values(priority=priority.value)
                )
                if not result.rowcount:
                    return False
                session.add(self._feed_to_table(ticket_uuid, feed_entry))
        return True

    async def transition_status(
        self,
        ticket_uuid: str,
        *,
        expected: TicketStatus,
        new: TicketStatus,
        time_closed: datetime | None,
        feed_entry: TicketFeedEntry,
        assignees: Sequence[str] | None = None,
        priority: TicketPriority | None = None,
        priority_entry: TicketFeedEntry | None = None,
    ) -> bool:
        """Compare-and-set the status; returns ``False`` when ``expected`` no longer holds.

        A priority change travels in the same ``UPDATE``, so it is only written
        when the status change is.
        """

        values: dict[str, Any] = {"status": new.value, "time_closed": time_closed}
        if priority is not None:
            values["priority"] = priority.value

        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(SupportTicketTable)
                    .where(
                        SupportTicketTable.uuid == ticket_uuid,
                        SupportTicketTable.status == expected.value,
                    )
                    .values(**values)
                )
                if not result.rowcount:
                    return False
                if assignees is not None:
                    await self._replace_assignees(session, ticket_uuid, assignees)
                if priority_entry is not None:
                    session.add(self._feed_to_table(ticket_uuid, priority_entry))
                session.add(self._feed_to_table(ticket_uuid, feed_entry))
        return True

    async def set_assignees(
        self, ticket_uuid: str, assignees: Sequence[str], feed_entry: TicketFeedEntry
    ) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(SupportTicketTable, ticket_uuid)
                if row is None:
                    return False
                await self._replace_assignees(session, ticket_uuid, assignees)
                session.add(self._feed_to_table(ticket_uuid, feed_entry))
        return True

    async def add_attachments(
        self,
        ticket_uuid: str,
        attachments: Sequence[TicketAttachment],
        feed_entry: TicketFeedEntry,
    ) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(SupportTicketTable, ticket_uuid)
                if row is None:
                    return False
                for attachment in attachments:
                    session.add(self._attachment_to_table(attachment))
                session.add(self._feed_to_table(ticket_uuid, feed_entry))
        return True

    async def delete_ticket(self, ticket_uuid: str, *, only_status: TicketStatus | None = None) -> bool:
        """Delete a ticket with its messages, feed, assignees and attachments in one transaction."""

        async with self._session_factory() as session:
            async with session.begin():
                statement = delete(SupportTicketTable).where(SupportTicketTable.uuid == ticket_uuid)
                if only_status is not None:
                    statement = statement.where(SupportTicketTable.status == only_status.value)
                result = await session.execute(statement)
                if not result.rowcount:
                    return False
                for table in (
                    SupportTicketMessageTable,
                    SupportTicketFeedTable,
                    SupportTicketAttachmentTable,
                    SupportTicketAssigneeTable,
                ):
                    await session.execute(delete(table).where(table.ticket_uuid == ticket_uuid))
        return True

    async def add_message(self, message: TicketMessage) -> TicketMessage:
        row = SupportTicketMessageTable(
            uuid=message.uuid,
            ticket_uuid=message.ticket_uuid,
            message=message.message,
            attachments=list(message.attachments),
            sender_uuid=message.sender_uuid,
            sender_email=message.sender_email,
            sender_is_staff=message.sender_is_staff,
            type=message.type.value,
            time_sent=message.time_sent,
        )
        async with self._session_factory() as session:
            async with session.begin():
                session.add(row)
                await session.flush()
                stored = self._table_to_message(row, sequence=row.id)
        return stored

    async def list_messages(
        self, ticket_uuid: str, *, types: Iterable[TicketMessageType]
    ) -> list[TicketMessage]:
        statement = (
            select(SupportTicketMessageTable)
            .where(
                SupportTicketMessageTable.ticket_uuid == ticket_uuid,
                SupportTicketMessageTable.type.in_([kind.value for kind in types]),
            )
            .order_by(SupportTicketMessageTable.time_sent.asc(), SupportTicketMessageTable.id.asc())
        )
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [self._table_to_message(row) for row in result.scalars().all()]

    async def count_tickets(self, statuses: Iterable[TicketStatus]) -> int:
        statement = (
            select(func.count())
            .select_from(SupportTicketTable)
            .where(SupportTicketTable.status.in_([status.value for status in statuses]))
        )
        async with self._session_factory() as session:
            return int(await session.scalar(statement) or 0)

    async def count_opened_between(self, start: datetime, end: datetime) -> int:
        statement = (
            select(func.count())
            .select_from(SupportTicketTable)
            .where(SupportTicketTable.time_opened >= start, SupportTicketTable.time_opened < end)
        )
        async with self._session_factory() as session:
            return int(await session.scalar(statement) or 0)

    async def closed_intervals(self) -> list[tuple[datetime, datetime]]:
        statement = select(SupportTicketTable.time_opened, SupportTicketTable.time_closed).where(
            SupportTicketTable.status == TicketStatus.CLOSED.value,
            SupportTicketTable.time_closed.is_not(None),
        )
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [
                (_ensure_datetime(opened), _ensure_datetime(closed)) for opened, closed in result.all()
            ]

    @staticmethod
    def _ordering(sort: TicketSort) -> list[Any]:
        if sort is TicketSort.PRIORITY:
            primary: Any = _PRIORITY_RANK
        elif sort is TicketSort.STATUS:
            primary = _STATUS_RANK
        elif sort is TicketSort.CATEGORY:
            primary = SupportTicketTable.category
        else:
            primary = SupportTicketTable.time_opened
        return [primary.asc(), SupportTicketTable.uuid.asc()]

    @staticmethod
    def _add_assignees(session: AsyncSession, ticket_uuid: str, assignees: Sequence[str]) -> None:
        for position, user_uuid in enumerate(assignees):
            session.add(
                SupportTicketAssigneeTable(ticket_uuid=ticket_uuid, user_uuid=user_uuid, position=position)
            )

    async def _replace_assignees(
        self, session: AsyncSession, ticket_uuid: str, assignees: Sequence[str]
    ) -> None:
        await session.execute(
            delete(SupportTicketAssigneeTable).where(SupportTicketAssigneeTable.ticket_uuid == ticket_uuid)
        )
        self._add_assignees(session, ticket_uuid, assignees)

    async def _hydrate(self, session: AsyncSession, rows: Sequence[SupportTicketTable]) -> list[Ticket]:
        if not rows:
            return []
        uuids = [row.uuid for row in rows]

        assignee_result = await session.execute(
            select(SupportTicketAssigneeTable)
            .where(SupportTicketAssigneeTable.ticket_uuid.in_(uuids))
            .order_by(SupportTicketAssigneeTable.position.asc(), SupportTicketAssigneeTable.id.asc())
        )
        feed_result = await session.execute(
            select(SupportTicketFeedTable)
            .where(SupportTicketFeedTable.ticket_uuid.in_(uuids))
            .order_by(SupportTicketFeedTable.id.asc())
        )
        attachment_result = await session.execute(
            select(SupportTicketAttachmentTable)
            .where(SupportTicketAttachmentTable.ticket_uuid.in_(uuids))
            .order_by(SupportTicketAttachmentTable.uploaded_date.asc(), SupportTicketAttachmentTable.uuid.asc())
        )

        assignees: dict[str, list[str]] = defaultdict(list)
        for row in assignee_result.scalars().all():
            assignees[row.ticket_uuid].append(row.user_uuid)
        feeds: dict[str, list[TicketFeedEntry]] = defaultdict(list)
        for row in feed_result.scalars().all():
            feeds[row.ticket_uuid].append(
                TicketFeedEntry(action=row.action, blame=row.blame, date=_ensure_datetime(row.date))
            )
        attachments: dict[str, list[TicketAttachment]] = defaultdict(list)
        for row in attachment_result.scalars().all():
            attachments[row.ticket_uuid].append(self._table_to_attachment(row))

        return [
            self._table_to_ticket(
                row,
                assignees=assignees[row.uuid],
                feed=feeds[row.uuid],
                attachments=attachments[row.uuid],
            )
            for row in rows
        ]

    @staticmethod
    def _feed_to_table(ticket_uuid: str, entry: TicketFeedEntry) -> SupportTicketFeedTable:
        return SupportTicketFeedTable(
            ticket_uuid=ticket_uuid,
            action=entry.action,
            blame=entry.blame,
            date=entry.date,
        )

    @staticmethod
    def _attachment_to_table(attachment: TicketAttachment) -> SupportTicketAttachmentTable:
        return SupportTicketAttachmentTable(
            uuid=attachment.uuid,
            ticket_uuid=attachment.ticket_uuid,
            name=attachment.name,
            uploaded_by=attachment.uploaded_by,
            uploaded_date=attachment.uploaded_date,
        )

    @staticmethod
    def _table_to_ticket(
        row: SupportTicketTable,
        *,
        assignees: list[str],
        feed: list[TicketFeedEntry],
        attachments: list[TicketAttachment],
    ) -> Ticket:
        user = None
        if row.user_uuid:
            user = TicketUser(uuid=row.user_uuid, email=row.user_email, name=row.user_name)
        guest = TicketGuest(**row.guest) if row.guest else None
        return Ticket(
            uuid=row.uuid,
            title=row.title,
            description=row.description,
            category=row.category,
            priority=TicketPriority(row.priority),
            status=TicketStatus(row.status),
            time_opened=_ensure_datetime(row.time_opened),
            apps=[int(app) for app in row.apps or []],
            assigned_uuids=list(assignees),
            captured_url=row.captured_url,
            user=user,
            guest=guest,
            access_key=row.access_key,
            time_closed=_ensure_datetime(row.time_closed) if row.time_closed else None,
            feed=list(feed),
            attachments=list(attachments),
        )

    @staticmethod
    def _table_to_attachment(row: SupportTicketAttachmentTable) -> TicketAttachment:
        return TicketAttachment(
            uuid=row.uuid,
            name=row.name,
            ticket_uuid=row.ticket_uuid,
            uploaded_by=row.uploaded_by,
            uploaded_date=_ensure_datetime(row.uploaded_date),
        )

    @staticmethod
    def _table_to_message(row: SupportTicketMessageTable, *, sequence: int | None = None) -> TicketMessage:
        return TicketMessage(
            uuid=row.uuid,
            ticket_uuid=row.ticket_uuid,
            message=row.message,
            type=TicketMessageType(row.type),
            sender_is_staff=bool(row.sender_is_staff),
            time_sent=_ensure_datetime(row.time_sent),
            sequence=int(sequence if sequence is not None else row.id or 0),
            attachments=tuple(row.attachments or ()),
            sender_uuid=row.sender_uuid,
            sender_email=row.sender_email,
        )


def _escape_like(text: str) -> str:
    return (
        text.replace(_LIKE_ESCAPE, _LIKE_ESCAPE * 2)
        .replace("%", _LIKE_ESCAPE + "%")
        .replace("_", _LIKE_ESCAPE + "_")
    )


def _ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")
