"""Chat session request/response schemas."""

import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from livedesk.models.enums import EscalationReason, Priority


class SupportRequest(BaseModel):
    """POST /v1/chat/request-operator request body."""

    model_config = ConfigDict(from_attributes=True)

    user_id: str | None = None
    user_email: str | None = None
    user_phone: str | None = None
    question: str
    priority: Priority = Priority.MEDIUM
    metadata: dict[str, Any] = Field(default_factory=dict)


class SupportRequestResponse(BaseModel):
    """POST /v1/chat/request-operator response body."""

    type: Literal["queue", "operator_assigned", "ticket_created"]
    message: str
    session_id: uuid.UUID | None = None
    ticket_id: uuid.UUID | None = None
    position: int | None = None
    estimated_wait: int | None = None


class WaitEstimateResponse(BaseModel):
    """GET /v1/chat/queue/{session_id} response body."""

    session_id: uuid.UUID
    status: str
    position: int | None
    ahead_count: int
    estimated_wait: int


class MessageResponse(BaseModel):
    """Single message in a session transcript."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    sender_type: str
    sender_id: str | None = None
    content: str
    message_type: str
    created_at: datetime


class SessionResponse(BaseModel):
    """Chat session summary."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: str | None = None
    user_email: str | None = None
    initial_question: str
    status: str
    priority: str
    operator_id: uuid.UUID | None = None
    queue_position: int | None = None
    response_timeout_at: datetime | None = None
    created_at: datetime
    assigned_at: datetime | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    escalation_reason: str | None = None
    ticket_id: uuid.UUID | None = None
    metadata: dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("metadata_", "metadata")
    )


class SessionDetailResponse(BaseModel):
    """GET /v1/chat/sessions/{session_id} response body."""

    session: SessionResponse
    messages: list[MessageResponse]


class SessionListResponse(BaseModel):
    """GET /v1/chat/sessions response body."""

    sessions: list[SessionResponse]
    total: int
    page: int
    limit: int


class OperatorActionRequest(BaseModel):
    """PUT /v1/chat/sessions/{session_id}/accept|end request body."""

    operator_id: uuid.UUID


class EscalateRequest(BaseModel):
    """PUT /v1/chat/sessions/{session_id}/escalate request body."""

    reason: EscalationReason = EscalationReason.MANUAL_ESCALATION


class EscalateResponse(BaseModel):
    session_id: uuid.UUID
    ticket_id: uuid.UUID
    reason: str


class CleanupRequest(BaseModel):
    """POST /v1/chat/cleanup request body."""

    days_old: int = Field(default=7, ge=1)


class CleanupResponse(BaseModel):
    deleted: int


class EscalationConfigUpdate(BaseModel):
    """PUT /v1/chat/escalation/config request body; omitted fields keep their value."""

    queue_capacity: int | None = Field(default=None, ge=1)
    operator_response_timeout_minutes: int | None = Field(default=None, ge=1)
    queue_timeout_minutes: int | None = Field(default=None, ge=1)
    chat_inactivity_timeout_minutes: int | None = Field(default=None, ge=1)
    operator_inactivity_timeout_minutes: int | None = Field(default=None, ge=1)
    minutes_per_chat_estimate: float | None = Field(default=None, gt=0)
    notify_on_timeout: bool | None = None
    notify_on_escalation: bool | None = None
