from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from conductor.core.config import Settings, get_settings
from conductor.dependencies.auth import STAFF_ROLES, CurrentUser, StaticUserDirectory, User, role_required
from conductor.support.messaging import TicketMessagingService
from conductor.support.metrics import SupportMetricsAggregator
from conductor.support.models import Actor
from conductor.support.service import TicketService

require_staff = role_required(*STAFF_ROLES)

StaffUser = Annotated[User, Depends(require_staff)]


async def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not configured")
    return service


async def get_messaging_service(request: Request) -> TicketMessagingService:
    service = getattr(request.app.state, "messaging_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Messaging service is not configured")
    return service


async def get_metrics_aggregator(request: Request) -> SupportMetricsAggregator:
    aggregator = getattr(request.app.state, "metrics_aggregator", None)
    if aggregator is None:
        raise HTTPException(status_code=503, detail="Metrics are not configured")
    return aggregator


async def get_user_directory(request: Request) -> StaticUserDirectory:
    directory = getattr(request.app.state, "user_directory", None)
    return directory if directory is not None else StaticUserDirectory()


async def get_actor(user: CurrentUser) -> Actor | None:
    return user.to_actor() if user is not None else None


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
MessagingServiceDep = Annotated[TicketMessagingService, Depends(get_messaging_service)]
MetricsDep = Annotated[SupportMetricsAggregator, Depends(get_metrics_aggregator)]
DirectoryDep = Annotated[StaticUserDirectory, Depends(get_user_directory)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
ActorDep = Annotated[Actor | None, Depends(get_actor)]
