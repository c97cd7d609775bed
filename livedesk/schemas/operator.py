"""Operator request/response schemas."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OperatorCreateRequest(BaseModel):
    """POST /v1/operators request body."""

    name: str
    email: str
    phone: str | None = None
    role: str = "operator"
    permissions: dict[str, Any] = Field(default_factory=dict)


class OperatorStatusRequest(BaseModel):
    """PUT /v1/operators/{operator_id}/status request body."""

    is_online: bool


class OperatorPermissionsRequest(BaseModel):
    """PUT /v1/operators/{operator_id}/permissions request body."""

    permissions: dict[str, Any]


class OperatorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: str
    phone: str | None = None
    role: str
    permissions: dict[str, Any] = Field(default_factory=dict)
    presence: str
    is_online: bool
    current_session_id: uuid.UUID | None = None
    last_activity: datetime
    online_since: datetime | None = None
    created_at: datetime


class OperatorListItem(OperatorResponse):
    minutes_inactive: int


class WorkloadEntry(BaseModel):
    operator_id: uuid.UUID
    name: str
    presence: str
    active_chats: int
    resolved_today: int
    escalated_today: int


class OperatorStatsResponse(BaseModel):
    operator_id: uuid.UUID
    date: str
    total_chats: int
    resolved_chats: int
    escalated_chats: int
    avg_response_minutes: float | None
    avg_chat_duration_minutes: float | None
