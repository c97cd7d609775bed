"""Operator administration and presence endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Response

from livedesk.api.deps import get_services
from livedesk.schemas.operator import (
    OperatorCreateRequest,
    OperatorListItem,
    OperatorPermissionsRequest,
    OperatorResponse,
    OperatorStatsResponse,
    OperatorStatusRequest,
    WorkloadEntry,
)
from livedesk.services.desk import DeskServices
from livedesk.services.presence import minutes_inactive

router = APIRouter(prefix="/operators", tags=["operators"])


@router.post("", response_model=OperatorResponse, status_code=201)
async def create_operator(
    body: OperatorCreateRequest,
    services: DeskServices = Depends(get_services),
) -> OperatorResponse:
    operator = await services.presence.create_operator(
        name=body.name,
        email=body.email,
        phone=body.phone,
        role=body.role,
        permissions=body.permissions,
    )
    return OperatorResponse.model_validate(operator)


@router.get("", response_model=list[OperatorListItem])
async def list_operators(
    include_offline: bool = False,
    services: DeskServices = Depends(get_services),
) -> list[OperatorListItem]:
    operators = await services.presence.list_operators(include_offline=include_offline)
    now = services.clock.now()
    return [
        OperatorListItem(
            **OperatorResponse.model_validate(op).model_dump(),
            minutes_inactive=minutes_inactive(op, now),
        )
        for op in operators
    ]


@router.get("/workload", response_model=list[WorkloadEntry])
async def operator_workload(
    services: DeskServices = Depends(get_services),
) -> list[WorkloadEntry]:
    return [WorkloadEntry(**entry) for entry in await services.stats.workload()]


@router.put("/{operator_id}/status", response_model=OperatorResponse)
async def set_operator_status(
    operator_id: UUID,
    body: OperatorStatusRequest,
    services: DeskServices = Depends(get_services),
) -> OperatorResponse:
    operator = await services.presence.set_status(operator_id, body.is_online)
    return OperatorResponse.model_validate(operator)


@router.put("/{operator_id}/permissions", response_model=OperatorResponse)
async def set_operator_permissions(
    operator_id: UUID,
    body: OperatorPermissionsRequest,
    services: DeskServices = Depends(get_services),
) -> OperatorResponse:
    operator = await services.presence.update_permissions(operator_id, body.permissions)
    return OperatorResponse.model_validate(operator)


@router.put("/{operator_id}/heartbeat", status_code=204)
async def operator_heartbeat(
    operator_id: UUID,
    services: DeskServices = Depends(get_services),
) -> Response:
    await services.presence.heartbeat(operator_id)
    return Response(status_code=204)


@router.get("/{operator_id}/stats", response_model=OperatorStatsResponse)
async def operator_stats(
    operator_id: UUID,
    day: date | None = None,
    services: DeskServices = Depends(get_services),
) -> OperatorStatsResponse:
    return OperatorStatsResponse(**await services.stats.operator_stats(operator_id, day))


@router.delete("/{operator_id}", status_code=204)
async def delete_operator(
    operator_id: UUID,
    services: DeskServices = Depends(get_services),
) -> Response:
    await services.presence.delete_operator(operator_id)
    return Response(status_code=204)
