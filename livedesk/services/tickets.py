"""Ticket creation, lookup and administration.

Tickets are the asynchronous fallback for a support request: created
directly (queue full, admission failure, HTTP) or by the escalation
coordinator from a live session. Every new ticket fires a
``ticket_created`` notification once its unit of work commits.
"""

from __future__ import annotations

import uuid
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select

from livedesk.core.clock import Clock
from livedesk.core.exceptions import ValidationError
from livedesk.db.store import Store
from livedesk.models.enums import EscalationReason, Priority, TicketStatus
from livedesk.models.ticket import Ticket
from livedesk.schemas.chat import SupportRequest
from livedesk.services.notifications import PendingNotifications

logger = structlog.get_logger(__name__)


def ticket_payload(ticket: Ticket) -> dict[str, Any]:
    return {
        "ticket_id": str(ticket.id),
        "user_id": ticket.user_id,
        "user_email": ticket.user_email,
        "user_phone": ticket.user_phone,
        "question": ticket.question,
        "priority": ticket.priority,
        "category": ticket.category,
        "metadata": ticket.metadata_,
        "created_at": ticket.created_at.isoformat(),
    }


class TicketDesk:
    """Creates and reads support tickets."""

    def __init__(self, store: Store, notifier: PendingNotifications, clock: Clock) -> None:
        self._store = store
        self._notifier = notifier
        self._clock = clock

    async def open_ticket(
        self,
        *,
        question: str,
        user_id: str | None = None,
        user_email: str | None = None,
        user_phone: str | None = None,
        priority: Priority | str = Priority.MEDIUM,
        category: str = "general",
        metadata: dict[str, Any] | None = None,
    ) -> Ticket:
        if not question or not question.strip():
            raise ValidationError("Ticket question is required")

        now = self._clock.now()
        ticket = Ticket(
            id=uuid.uuid4(),
            user_id=user_id,
            user_email=user_email,
            user_phone=user_phone,
            question=question,
            status=TicketStatus.OPEN.value,
            priority=Priority(priority).value,
            category=category,
            created_at=now,
            updated_at=now,
            metadata_=dict(metadata or {}),
        )
        self._store.add(ticket)
        await self._store.flush()

        self._notifier.notify("ticket_created", ticket_payload(ticket))
        logger.info(
            "ticket_created",
            ticket_id=str(ticket.id),
            category=category,
            priority=ticket.priority,
        )
        return ticket

    async def create_direct_ticket(
        self, request: SupportRequest, reason: EscalationReason
    ) -> Ticket:
        """Bypass path: a ticket straight from the raw request, no session."""
        return await self.open_ticket(
            question=request.question,
            user_id=request.user_id,
            user_email=request.user_email,
            user_phone=request.user_phone,
            priority=request.priority,
            category="escalated",
            metadata={**request.metadata, "escalation_reason": reason.value},
        )

    async def get_ticket(self, ticket_id: UUID) -> Ticket:
        return await self._store.get_ticket(ticket_id)

    async def list_tickets(
        self,
        status: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Ticket], int]:
        conditions = []
        if status is not None:
            conditions.append(Ticket.status == status)

        total = (
            await self._store.db.execute(select(func.count(Ticket.id)).where(*conditions))
        ).scalar_one()
        result = await self._store.db.execute(
            select(Ticket)
            .where(*conditions)
            .order_by(Ticket.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def update_status(self, ticket_id: UUID, status: TicketStatus | str) -> Ticket:
        ticket = await self._store.get_ticket(ticket_id)
        try:
            ticket.status = TicketStatus(status).value
        except ValueError as e:
            raise ValidationError(f"Invalid ticket status: {status}") from e
        ticket.updated_at = self._clock.now()
        await self._store.flush()
        logger.info("ticket_status_updated", ticket_id=str(ticket_id), status=ticket.status)
        return ticket

    async def delete_ticket(self, ticket_id: UUID) -> None:
        """Delete a ticket; the session it came from keeps its escalated status."""
        ticket = await self._store.get_ticket(ticket_id)
        await self._store.detach_ticket(ticket_id)
        await self._store.delete(ticket)
        await self._store.flush()
        logger.info("ticket_deleted", ticket_id=str(ticket_id))
