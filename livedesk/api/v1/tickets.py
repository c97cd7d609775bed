"""Ticket endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response

from livedesk.api.deps import get_services
from livedesk.schemas.ticket import (
    TicketCreateRequest,
    TicketListResponse,
    TicketResponse,
    TicketStatsResponse,
    TicketStatusRequest,
)
from livedesk.services.desk import DeskServices

router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.post("", response_model=TicketResponse, status_code=201)
async def create_ticket(
    body: TicketCreateRequest,
    services: DeskServices = Depends(get_services),
) -> TicketResponse:
    ticket = await services.tickets.open_ticket(
        question=body.question,
        user_id=body.user_id,
        user_email=body.user_email,
        user_phone=body.user_phone,
        priority=body.priority,
        category=body.category,
        metadata=body.metadata,
    )
    return TicketResponse.model_validate(ticket)


@router.get("", response_model=TicketListResponse)
async def list_tickets(
    status: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    services: DeskServices = Depends(get_services),
) -> TicketListResponse:
    tickets, total = await services.tickets.list_tickets(status=status, page=page, limit=limit)
    return TicketListResponse(
        tickets=[TicketResponse.model_validate(t) for t in tickets],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/admin/stats", response_model=TicketStatsResponse)
async def ticket_stats(services: DeskServices = Depends(get_services)) -> TicketStatsResponse:
    return TicketStatsResponse(**await services.stats.ticket_stats())


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(
    ticket_id: UUID,
    services: DeskServices = Depends(get_services),
) -> TicketResponse:
    return TicketResponse.model_validate(await services.tickets.get_ticket(ticket_id))


@router.put("/{ticket_id}/status", response_model=TicketResponse)
async def update_ticket_status(
    ticket_id: UUID,
    body: TicketStatusRequest,
    services: DeskServices = Depends(get_services),
) -> TicketResponse:
    ticket = await services.tickets.update_status(ticket_id, body.status)
    return TicketResponse.model_validate(ticket)


@router.delete("/{ticket_id}", status_code=204)
async def delete_ticket(
    ticket_id: UUID,
    services: DeskServices = Depends(get_services),
) -> Response:
    await services.tickets.delete_ticket(ticket_id)
    return Response(status_code=204)
