"""Ticket request/response schemas."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from livedesk.models.enums import Priority, TicketStatus


class TicketCreateRequest(BaseModel):
    """POST /v1/tickets request body."""

    user_id: str | None = None
    user_email: str | None = None
    user_phone: str | None = None
    question: str
    priority: Priority = Priority.MEDIUM
    category: str = "general"
    metadata: dict[str, Any] = Field(default_factory=dict)


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: str | None = None
    user_email: str | None = None
    user_phone: str | None = None
    question: str
    response: str | None = None
    status: str
    priority: str
    category: str
    created_at: datetime
    responded_at: datetime | None = None
    metadata: dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("metadata_", "metadata")
    )


class TicketListResponse(BaseModel):
    tickets: list[TicketResponse]
    total: int
    page: int
    limit: int


class TicketStatusRequest(BaseModel):
    """PUT /v1/tickets/{ticket_id}/status request body."""

    status: TicketStatus


class TicketStatsResponse(BaseModel):
    total: int
    open: int
    in_progress: int
    resolved: int
    closed: int
    today: int
    avg_response_time_hours: float | None
