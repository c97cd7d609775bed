"""Chat session endpoints: admission, queue status and operator actions."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from livedesk.api.deps import get_desk, get_services
from livedesk.schemas.chat import (
    CleanupRequest,
    CleanupResponse,
    EscalateRequest,
    EscalateResponse,
    EscalationConfigUpdate,
    MessageResponse,
    OperatorActionRequest,
    SessionDetailResponse,
    SessionListResponse,
    SessionResponse,
    SupportRequest,
    SupportRequestResponse,
    WaitEstimateResponse,
)
from livedesk.services.desk import DeskServices, SupportDesk
from livedesk.services.escalation import escalation_message

router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("/request-operator", response_model=SupportRequestResponse)
async def request_operator(
    body: SupportRequest,
    desk: SupportDesk = Depends(get_desk),
) -> SupportRequestResponse:
    """Ask for a human operator; may be queued, assigned, or turned into a ticket."""
    result = await desk.request_operator(body)

    if result.bypassed:
        ticket = result.ticket
        return SupportRequestResponse(
            type="ticket_created",
            ticket_id=ticket.id,
            message=escalation_message(ticket.metadata_.get("escalation_reason", "")),
        )

    session = result.session
    if result.assigned:
        return SupportRequestResponse(
            type="operator_assigned",
            session_id=session.id,
            message="An operator has been assigned and will be with you shortly.",
        )

    return SupportRequestResponse(
        type="queue",
        session_id=session.id,
        position=result.wait.queue_position,
        estimated_wait=result.wait.estimated_minutes,
        message="All operators are busy. You are in the queue.",
    )


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    status: str | None = None,
    operator_id: UUID | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    services: DeskServices = Depends(get_services),
) -> SessionListResponse:
    sessions, total = await services.queue.list_sessions(
        status=status, operator_id=operator_id, page=page, limit=limit
    )
    return SessionListResponse(
        sessions=[SessionResponse.model_validate(s) for s in sessions],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/sessions/{session_id}", response_model=SessionDetailResponse)
async def get_session(
    session_id: UUID,
    services: DeskServices = Depends(get_services),
) -> SessionDetailResponse:
    session = await services.queue.get_session(session_id)
    messages = await services.queue.chat_history(session_id)
    return SessionDetailResponse(
        session=SessionResponse.model_validate(session),
        messages=[MessageResponse.model_validate(m) for m in messages],
    )


@router.get("/queue/{session_id}", response_model=WaitEstimateResponse)
async def queue_position(
    session_id: UUID,
    services: DeskServices = Depends(get_services),
) -> WaitEstimateResponse:
    session = await services.queue.get_session(session_id)
    wait = await services.queue.estimate_wait(session_id)
    return WaitEstimateResponse(
        session_id=session_id,
        status=session.status,
        position=wait.queue_position,
        ahead_count=wait.ahead_count,
        estimated_wait=wait.estimated_minutes,
    )


@router.put("/sessions/{session_id}/accept", response_model=SessionResponse)
async def accept_chat(
    session_id: UUID,
    body: OperatorActionRequest,
    services: DeskServices = Depends(get_services),
) -> SessionResponse:
    session = await services.queue.accept_chat(body.operator_id, session_id)
    return SessionResponse.model_validate(session)


@router.put("/sessions/{session_id}/end", response_model=SessionResponse)
async def end_chat(
    session_id: UUID,
    body: OperatorActionRequest,
    services: DeskServices = Depends(get_services),
) -> SessionResponse:
    session = await services.queue.end_chat(session_id, body.operator_id)
    return SessionResponse.model_validate(session)


@router.put("/sessions/{session_id}/escalate", response_model=EscalateResponse)
async def escalate_chat(
    session_id: UUID,
    body: EscalateRequest,
    services: DeskServices = Depends(get_services),
) -> EscalateResponse:
    ticket = await services.escalation.escalate_to_ticket(session_id, body.reason)
    return EscalateResponse(session_id=session_id, ticket_id=ticket.id, reason=body.reason.value)


@router.get("/stats")
async def system_stats(services: DeskServices = Depends(get_services)) -> dict:
    return await services.stats.system_stats()


@router.get("/escalation/stats")
async def escalation_stats(
    days: int = Query(default=7, ge=1, le=90),
    services: DeskServices = Depends(get_services),
) -> list[dict]:
    return await services.stats.escalation_stats(days)


@router.get("/escalation/rules")
async def escalation_rules(services: DeskServices = Depends(get_services)) -> dict:
    return services.escalation.escalation_rules()


@router.put("/escalation/config")
async def update_escalation_config(
    body: EscalationConfigUpdate,
    desk: SupportDesk = Depends(get_desk),
) -> dict:
    desk.update_escalation_config(body.model_dump(exclude_none=True))
    async with desk.unit() as services:
        return services.escalation.escalation_rules()


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_sessions(
    body: CleanupRequest,
    services: DeskServices = Depends(get_services),
) -> CleanupResponse:
    deleted = await services.queue.purge_finished_sessions(body.days_old)
    return CleanupResponse(deleted=deleted)
