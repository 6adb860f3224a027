from __future__ import annotations

from datetime import datetime
from typing import Callable
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field, HttpUrl, model_validator

from conductor.dependencies.support import (
    ActorDep,
    DirectoryDep,
    MessagingServiceDep,
    MetricsDep,
    SettingsDep,
    StaffUser,
    TicketServiceDep,
)
from conductor.support.dashboard import FilterOption, FilterOptions, build_filter_options, build_ticket_query
from conductor.support.enums import TicketMessageType, TicketPriority, TicketStatus
from conductor.support.errors import ForbiddenError, UnauthorizedError, ValidationError
from conductor.support.models import (
    Actor,
    SupportMetrics,
    Ticket,
    TicketGuest,
    TicketMessage,
    TicketUser,
)

router = APIRouter(prefix="/support", tags=["support"])

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TicketGuestModel(CamelModel):
    first_name: str = Field(..., alias="firstName", min_length=1, max_length=100)
    last_name: str = Field(..., alias="lastName", min_length=1, max_length=100)
    email: str = Field(..., pattern=_EMAIL_PATTERN, max_length=255)
    organization: str = Field(..., max_length=255)


class TicketCreateRequest(CamelModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., max_length=500)
    apps: list[int] = Field(..., min_length=1)
    priority: TicketPriority
    category: str = Field(..., min_length=1, max_length=100)
    captured_url: HttpUrl | None = Field(default=None, alias="capturedURL")
    attachments: list[str] = Field(default_factory=list)
    guest: TicketGuestModel | None = None
    user: UUID | None = None

    @model_validator(mode="after")
    def _guest_xor_user(self) -> "TicketCreateRequest":
        if (self.guest is None) == (self.user is None):
            raise ValueError("Either guest or user must be provided, but not both")
        return self


class TicketUpdateRequest(CamelModel):
    priority: TicketPriority | None = None
    status: TicketStatus | None = None

    def ensure_payload(self) -> None:
        if self.priority is None and self.status is None:
            raise HTTPException(status_code=400, detail="No fields provided for update")


class TicketAssignRequest(CamelModel):
    assignee_uuids: list[str] = Field(..., alias="assigneeUUIDs")


class TicketAttachmentsRequest(CamelModel):
    attachments: list[str] = Field(..., min_length=1)


class TicketMessageRequest(CamelModel):
    message: str = Field(..., min_length=1)
    attachments: list[str] = Field(default_factory=list)
    sender_email: str | None = Field(default=None, alias="senderEmail", pattern=_EMAIL_PATTERN)


class TicketUserModel(CamelModel):
    uuid: str
    email: str | None = None
    first_name: str | None = Field(default=None, alias="firstName")


class TicketFeedEntryModel(CamelModel):
    action: str
    blame: str
    date: datetime


class TicketAttachmentModel(CamelModel):
    uuid: str
    name: str
    uploaded_by: str = Field(alias="uploadedBy")
    uploaded_date: datetime = Field(alias="uploadedDate")


class TicketModel(CamelModel):
    uuid: str
    title: str
    description: str
    category: str
    priority: TicketPriority
    status: TicketStatus
    apps: list[int]
    captured_url: str | None = Field(default=None, alias="capturedURL")
    assigned_uuids: list[str] = Field(default_factory=list, alias="assignedUUIDs")
    assigned_users: list[TicketUserModel] = Field(default_factory=list, alias="assignedUsers")
    user: TicketUserModel | None = None
    guest: TicketGuestModel | None = None
    time_opened: datetime = Field(alias="timeOpened")
    time_closed: datetime | None = Field(default=None, alias="timeClosed")
    feed: list[TicketFeedEntryModel] = Field(default_factory=list)
    attachments: list[TicketAttachmentModel] = Field(default_factory=list)

    @classmethod
    def from_entity(cls, ticket: Ticket, *, resolve_user: Callable[[str], TicketUserModel] | None = None) -> "TicketModel":
        resolve = resolve_user or (lambda uuid: TicketUserModel(uuid=uuid))
        return cls(
            uuid=ticket.uuid,
            title=ticket.title,
            description=ticket.description,
            category=ticket.category,
            priority=ticket.priority,
            status=ticket.status,
            apps=list(ticket.apps),
            captured_url=ticket.captured_url,
            assigned_uuids=list(ticket.assigned_uuids),
            assigned_users=[resolve(uuid) for uuid in ticket.assigned_uuids],
            user=(
                TicketUserModel(uuid=ticket.user.uuid, email=ticket.user.email, first_name=ticket.user.name)
                if ticket.user
                else None
            ),
            guest=(
                TicketGuestModel(
                    first_name=ticket.guest.first_name,
                    last_name=ticket.guest.last_name,
                    email=ticket.guest.email,
                    organization=ticket.guest.organization,
                )
                if ticket.guest
                else None
            ),
            time_opened=ticket.time_opened,
            time_closed=ticket.time_closed,
            feed=[TicketFeedEntryModel(action=e.action, blame=e.blame, date=e.date) for e in ticket.feed],
            attachments=[
                TicketAttachmentModel(
                    uuid=a.uuid, name=a.name, uploaded_by=a.uploaded_by, uploaded_date=a.uploaded_date
                )
                for a in ticket.attachments
            ],
        )


class TicketCreatedModel(TicketModel):
    access_key: str | None = Field(default=None, alias="accessKey")


class FilterOptionModel(CamelModel):
    key: str
    text: str
    value: str


class FilterOptionsModel(CamelModel):
    assignee_options: list[FilterOptionModel] = Field(alias="assigneeOptions")
    priority_options: list[FilterOptionModel] = Field(alias="priorityOptions")
    category_options: list[FilterOptionModel] = Field(alias="categoryOptions")

    @classmethod
    def from_options(cls, options: FilterOptions) -> "FilterOptionsModel":
        def convert(items: list[FilterOption]) -> list[FilterOptionModel]:
            return [FilterOptionModel(key=o.key, text=o.text, value=o.value) for o in items]

        return cls(
            assignee_options=convert(options.assignee_options),
            priority_options=convert(options.priority_options),
            category_options=convert(options.category_options),
        )


class TicketListResponse(CamelModel):
    tickets: list[TicketModel]
    total: int
    filter_options: FilterOptionsModel | None = Field(default=None, alias="filterOptions")


class TicketMessageModel(CamelModel):
    uuid: str
    ticket: str
    message: str
    attachments: list[str] = Field(default_factory=list)
    sender_uuid: str | None = Field(default=None, alias="senderUUID")
    sender_email: str | None = Field(default=None, alias="senderEmail")
    sender_is_staff: bool = Field(alias="senderIsStaff")
    type: TicketMessageType
    time_sent: datetime = Field(alias="timeSent")

    @classmethod
    def from_entity(cls, message: TicketMessage) -> "TicketMessageModel":
        return cls(
            uuid=message.uuid,
            ticket=message.ticket_uuid,
            message=message.message,
            attachments=list(message.attachments),
            sender_uuid=message.sender_uuid,
            sender_email=message.sender_email,
            sender_is_staff=message.sender_is_staff,
            type=message.type,
            time_sent=message.time_sent,
        )


class SupportMetricsModel(CamelModel):
    total_open_tickets: int = Field(alias="totalOpenTickets")
    last_seven_ticket_count: int = Field(alias="lastSevenTicketCount")
    avg_mins_to_close: float = Field(alias="avgMinsToClose")


class SupportMetricsResponse(CamelModel):
    metrics: SupportMetricsModel

    @classmethod
    def from_metrics(cls, metrics: SupportMetrics) -> "SupportMetricsResponse":
        return cls(
            metrics=SupportMetricsModel(
                total_open_tickets=metrics.total_open_tickets,
                last_seven_ticket_count=metrics.last_seven_ticket_count,
                avg_mins_to_close=metrics.avg_mins_to_close,
            )
        )


def _user_resolver(directory: DirectoryDep) -> Callable[[str], TicketUserModel]:
    def resolve(uuid: str) -> TicketUserModel:
        recipient = directory.lookup(uuid)
        if recipient is None:
            return TicketUserModel(uuid=uuid)
        return TicketUserModel(uuid=uuid, email=recipient.email, first_name=recipient.name)

    return resolve


async def _list_partition(
    *,
    closed: bool,
    service: TicketServiceDep,
    directory: DirectoryDep,
    settings: SettingsDep,
    user: StaffUser,
    page: int,
    limit: int | None,
    sort: str,
    assignee: str | None,
    priority: str | None,
    category: str | None,
) -> TicketListResponse:
    query = build_ticket_query(
        page=page,
        limit=limit or settings.default_page_size,
        sort=sort,
        assignee=assignee,
        priority=priority,
        category=category,
        closed=closed,
        max_limit=settings.max_page_size,
    )
    result = await service.list_tickets(query, user.to_actor())
    resolve = _user_resolver(directory)

    def assignee_label(uuid: str) -> str:
        return resolve(uuid).first_name or uuid

    options = build_filter_options(result.items, assignee_label=assignee_label)
    return TicketListResponse(
        tickets=[TicketModel.from_entity(ticket, resolve_user=resolve) for ticket in result.items],
        total=result.total,
        filter_options=FilterOptionsModel.from_options(options),
    )


@router.post("/ticket", response_model=TicketCreatedModel, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    service: TicketServiceDep,
    directory: DirectoryDep,
    actor: ActorDep,
) -> TicketCreatedModel:
    guest = None
    ticket_user = None
    if payload.guest is not None:
        guest = TicketGuest(
            first_name=payload.guest.first_name,
            last_name=payload.guest.last_name,
            email=payload.guest.email,
            organization=payload.guest.organization,
        )
    else:
        user_uuid = str(payload.user)
        if actor is None:
            raise UnauthorizedError("Authentication is required to open a ticket as a user")
        if actor.uuid != user_uuid and not actor.is_staff:
            raise ForbiddenError("You may only open tickets on your own behalf")
        if actor.uuid == user_uuid:
            ticket_user = TicketUser(uuid=user_uuid, email=actor.email, name=actor.name or None)
        else:
            recipient = directory.lookup(user_uuid)
            ticket_user = TicketUser(
                uuid=user_uuid,
                email=recipient.email if recipient else None,
                name=recipient.name if recipient else None,
            )

    ticket = await service.create_ticket(
        title=payload.title,
        description=payload.description,
        priority=payload.priority,
        category=payload.category,
        apps=payload.apps,
        captured_url=str(payload.captured_url) if payload.captured_url else None,
        attachments=payload.attachments,
        guest=guest,
        user=ticket_user,
    )
    base = TicketModel.from_entity(ticket, resolve_user=_user_resolver(directory))
    return TicketCreatedModel(**base.model_dump(), access_key=ticket.access_key)


@router.get("/ticket/open", response_model=TicketListResponse, summary="Open and in-progress tickets")
async def list_open_tickets(
    service: TicketServiceDep,
    directory: DirectoryDep,
    settings: SettingsDep,
    user: StaffUser,
    page: int = Query(default=1),
    limit: int | None = Query(default=None),
    sort: str = Query(default="opened"),
    assignee: str | None = Query(default=None),
    priority: str | None = Query(default=None),
    category: str | None = Query(default=None),
) -> TicketListResponse:
    return await _list_partition(
        closed=False,
        service=service,
        directory=directory,
        settings=settings,
        user=user,
        page=page,
        limit=limit,
        sort=sort,
        assignee=assignee,
        priority=priority,
        category=category,
    )


@router.get("/ticket/closed", response_model=TicketListResponse, summary="Closed tickets")
async def list_closed_tickets(
    service: TicketServiceDep,
    directory: DirectoryDep,
    settings: SettingsDep,
    user: StaffUser,
    page: int = Query(default=1),
    limit: int | None = Query(default=None),
    sort: str = Query(default="opened"),
    assignee: str | None = Query(default=None),
    priority: str | None = Query(default=None),
    category: str | None = Query(default=None),
) -> TicketListResponse:
    return await _list_partition(
        closed=True,
        service=service,
        directory=directory,
        settings=settings,
        user=user,
        page=page,
        limit=limit,
        sort=sort,
        assignee=assignee,
        priority=priority,
        category=category,
    )


@router.get("/ticket/search", response_model=list[TicketModel])
async def search_tickets(
    service: TicketServiceDep,
    directory: DirectoryDep,
    user: StaffUser,
    query: str = Query(..., min_length=3),
) -> list[TicketModel]:
    tickets = await service.search_tickets(query, user.to_actor())
    resolve = _user_resolver(directory)
    return [TicketModel.from_entity(ticket, resolve_user=resolve) for ticket in tickets]


@router.get("/user/{user_uuid}/tickets", response_model=list[TicketModel])
async def list_user_tickets(
    user_uuid: UUID,
    service: TicketServiceDep,
    directory: DirectoryDep,
    actor: ActorDep,
) -> list[TicketModel]:
    tickets = await service.list_user_tickets(str(user_uuid), actor)
    resolve = _user_resolver(directory)
    return [TicketModel.from_entity(ticket, resolve_user=resolve) for ticket in tickets]


@router.get("/metrics", response_model=SupportMetricsResponse)
async def get_support_metrics(aggregator: MetricsDep, _: StaffUser) -> SupportMetricsResponse:
    return SupportMetricsResponse.from_metrics(await aggregator.compute_metrics())


@router.get("/ticket/{ticket_uuid}", response_model=TicketModel)
async def get_ticket(
    ticket_uuid: UUID,
    service: TicketServiceDep,
    directory: DirectoryDep,
    actor: ActorDep,
    access_key: str | None = Query(default=None, alias="accessKey"),
) -> TicketModel:
    ticket = await service.get_ticket(str(ticket_uuid), actor, access_key=access_key)
    return TicketModel.from_entity(ticket, resolve_user=_user_resolver(directory))


@router.patch("/ticket/{ticket_uuid}", response_model=TicketModel)
async def update_ticket(
    ticket_uuid: UUID,
    payload: TicketUpdateRequest,
    service: TicketServiceDep,
    directory: DirectoryDep,
    user: StaffUser,
) -> TicketModel:
    payload.ensure_payload()
    ticket = await service.update_ticket(
        str(ticket_uuid), user.to_actor(), priority=payload.priority, status=payload.status
    )
    return TicketModel.from_entity(ticket, resolve_user=_user_resolver(directory))


@router.delete("/ticket/{ticket_uuid}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ticket(ticket_uuid: UUID, service: TicketServiceDep, user: StaffUser) -> Response:
    await service.delete_ticket(str(ticket_uuid), user.to_actor())
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/ticket/{ticket_uuid}/assign", response_model=TicketModel)
async def assign_ticket(
    ticket_uuid: UUID,
    payload: TicketAssignRequest,
    service: TicketServiceDep,
    directory: DirectoryDep,
    user: StaffUser,
) -> TicketModel:
    ticket = await service.assign(str(ticket_uuid), payload.assignee_uuids, user.to_actor())
    return TicketModel.from_entity(ticket, resolve_user=_user_resolver(directory))


@router.post("/ticket/{ticket_uuid}/attachments", response_model=TicketModel)
async def add_ticket_attachments(
    ticket_uuid: UUID,
    payload: TicketAttachmentsRequest,
    service: TicketServiceDep,
    directory: DirectoryDep,
    actor: ActorDep,
    access_key: str | None = Query(default=None, alias="accessKey"),
) -> TicketModel:
    ticket = await service.add_attachments(
        str(ticket_uuid), payload.attachments, actor, access_key=access_key
    )
    return TicketModel.from_entity(ticket, resolve_user=_user_resolver(directory))


@router.post(
    "/ticket/{ticket_uuid}/message",
    response_model=TicketMessageModel,
    status_code=status.HTTP_201_CREATED,
)
async def send_ticket_message(
    ticket_uuid: UUID,
    payload: TicketMessageRequest,
    service: TicketServiceDep,
    messaging: MessagingServiceDep,
    actor: ActorDep,
    access_key: str | None = Query(default=None, alias="accessKey"),
) -> TicketMessageModel:
    sender: Actor
    if actor is not None:
        sender = actor
    else:
        await service.get_ticket(str(ticket_uuid), None, access_key=access_key)
        if not payload.sender_email:
            raise ValidationError("senderEmail is required for guest messages")
        sender = Actor.guest(payload.sender_email)

    message = await messaging.post_message(
        str(ticket_uuid),
        sender,
        payload.message,
        attachments=payload.attachments,
        message_type=TicketMessageType.GENERAL,
    )
    return TicketMessageModel.from_entity(message)


@router.get("/ticket/{ticket_uuid}/messages", response_model=list[TicketMessageModel])
async def list_ticket_messages(
    ticket_uuid: UUID,
    service: TicketServiceDep,
    messaging: MessagingServiceDep,
    actor: ActorDep,
    access_key: str | None = Query(default=None, alias="accessKey"),
) -> list[TicketMessageModel]:
    await service.get_ticket(str(ticket_uuid), actor, access_key=access_key)
    messages = await messaging.list_messages(
        str(ticket_uuid),
        requester_is_staff=actor is not None and actor.is_staff,
        message_type=TicketMessageType.GENERAL,
    )
    return [TicketMessageModel.from_entity(message) for message in messages]


@router.post(
    "/ticket/{ticket_uuid}/internal-message",
    response_model=TicketMessageModel,
    status_code=status.HTTP_201_CREATED,
)
async def send_internal_ticket_message(
    ticket_uuid: UUID,
    payload: TicketMessageRequest,
    messaging: MessagingServiceDep,
    user: StaffUser,
) -> TicketMessageModel:
    message = await messaging.post_message(
        str(ticket_uuid),
        user.to_actor(),
        payload.message,
        attachments=payload.attachments,
        message_type=TicketMessageType.INTERNAL,
    )
    return TicketMessageModel.from_entity(message)


@router.get("/ticket/{ticket_uuid}/internal-messages", response_model=list[TicketMessageModel])
async def list_internal_ticket_messages(
    ticket_uuid: UUID,
    messaging: MessagingServiceDep,
    _: StaffUser,
) -> list[TicketMessageModel]:
    messages = await messaging.list_messages(
        str(ticket_uuid), requester_is_staff=True, message_type=TicketMessageType.INTERNAL
    )
    return [TicketMessageModel.from_entity(message) for message in messages]
