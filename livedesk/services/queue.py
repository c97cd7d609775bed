"""Session lifecycle and queue engine.

State machine for a chat session:

    queue_waiting ──match──▶ operator_assigned ──accept──▶ operator_chat
          │                        │                           │
          └──────── escalate ──────┴────────── end / escalate ─┘
                                        ▼
                         resolved | escalated_ticket (terminal)

Matching never reads-then-writes operator availability. Each candidate is
claimed with a conditional update; losing the claim means another handler
took that operator, and the engine moves on to the next candidate. A
session that finds no operator simply stays queued.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select

from livedesk.core.clock import Clock
from livedesk.core.config import Settings
from livedesk.core.exceptions import StateError, ValidationError
from livedesk.db.store import Store
from livedesk.models.chat_session import ChatSession
from livedesk.models.enums import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    EscalationReason,
    MessageType,
    Priority,
    SenderType,
    SessionStatus,
)
from livedesk.models.message import Message
from livedesk.models.ticket import Ticket
from livedesk.schemas.chat import SupportRequest
from livedesk.services.events import DomainEvent, Publisher
from livedesk.services.tickets import TicketDesk

logger = structlog.get_logger(__name__)

OPERATOR_JOINED_TEXT = "Operator connected to the chat"


@dataclass(frozen=True)
class WaitEstimate:
    queue_position: int | None
    ahead_count: int
    estimated_minutes: int


@dataclass
class AdmissionResult:
    """Outcome of a support request: a live session or a bypass ticket."""

    session: ChatSession | None = None
    ticket: Ticket | None = None
    assigned: bool = False
    wait: WaitEstimate | None = None

    @property
    def bypassed(self) -> bool:
        return self.ticket is not None


def estimate_minutes(ahead_count: int, minutes_per_chat: float) -> int:
    return math.ceil(ahead_count * minutes_per_chat)


class QueueEngine:
    """Admits requests, matches operators and drives session transitions."""

    def __init__(
        self,
        store: Store,
        tickets: TicketDesk,
        events: Publisher,
        clock: Clock,
        config: Settings,
    ) -> None:
        self._store = store
        self._tickets = tickets
        self._events = events
        self._clock = clock
        self._config = config

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def create_session(self, request: SupportRequest) -> AdmissionResult:
        if not request.question or not request.question.strip():
            raise ValidationError("Question is required")

        available = await self._store.count_available_operators()
        waiting = await self._store.count_waiting_sessions()

        if available == 0 and waiting >= self._config.queue_capacity:
            ticket = await self._tickets.create_direct_ticket(
                request, EscalationReason.QUEUE_FULL
            )
            logger.info(
                "queue_full_bypass",
                ticket_id=str(ticket.id),
                waiting=waiting,
                queue_capacity=self._config.queue_capacity,
            )
            return AdmissionResult(ticket=ticket)

        now = self._clock.now()
        flag = "direct_assignment" if available > 0 else "escalation_requested"
        session = ChatSession(
            id=uuid.uuid4(),
            user_id=request.user_id,
            user_email=request.user_email,
            user_phone=request.user_phone,
            initial_question=request.question,
            status=SessionStatus.QUEUE_WAITING.value,
            priority=Priority(request.priority).value,
            queue_position=await self._store.max_queue_position() + 1,
            created_at=now,
            metadata_={**request.metadata, flag: True},
        )
        self._store.add(session)
        await self._store.flush()
        await self.recompute_queue_positions()

        session = await self._store.get_session(session.id)
        logger.info(
            "session_queued",
            session_id=str(session.id),
            priority=session.priority,
            queue_position=session.queue_position,
        )
        await self._events.publish(
            DomainEvent.SESSION_QUEUED,
            {
                "session_id": str(session.id),
                "priority": session.priority,
                "queue_position": session.queue_position,
                "question": session.initial_question,
            },
        )

        assigned = await self.match_operator(session.id)
        session = await self._store.get_session(session.id)
        wait = None if assigned else await self.estimate_wait(session.id)
        return AdmissionResult(session=session, assigned=assigned, wait=wait)

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    async def match_operator(
        self,
        session_id: UUID,
        preferred_operator_id: UUID | None = None,
    ) -> bool:
        """Try to hand a waiting session to the best available operator.

        Candidates are tried most-recently-active first (the preferred
        operator, when available, goes first). Returns True on assignment.
        """
        session = await self._store.get_session(session_id)
        if session.status != SessionStatus.QUEUE_WAITING:
            return False

        candidates = await self._store.candidate_operator_ids()
        if preferred_operator_id in candidates:
            candidates.remove(preferred_operator_id)
            candidates.insert(0, preferred_operator_id)

        for operator_id in candidates:
            now = self._clock.now()
            if not await self._store.claim_operator(operator_id, session_id, now):
                logger.info(
                    "operator_claim_lost",
                    session_id=str(session_id),
                    operator_id=str(operator_id),
                )
                continue

            timeout_at = now + timedelta(
                minutes=self._config.operator_response_timeout_minutes
            )
            moved = await self._store.transition_session(
                session_id,
                [SessionStatus.QUEUE_WAITING],
                status=SessionStatus.OPERATOR_ASSIGNED.value,
                operator_id=operator_id,
                assigned_at=now,
                response_timeout_at=timeout_at,
                queue_position=None,
            )
            if not moved:
                # Session left the queue while the operator was being claimed
                await self._store.release_operator(operator_id, now, session_id=session_id)
                logger.info("session_left_queue_during_match", session_id=str(session_id))
                return False

            await self.recompute_queue_positions()
            logger.info(
                "operator_assigned",
                session_id=str(session_id),
                operator_id=str(operator_id),
                response_timeout_at=timeout_at.isoformat(),
            )
            await self._events.publish(
                DomainEvent.SESSION_OPERATOR_ASSIGNED,
                {
                    "session_id": str(session_id),
                    "operator_id": str(operator_id),
                    "response_timeout_at": timeout_at.isoformat(),
                    "question": session.initial_question,
                    "priority": session.priority,
                },
            )
            return True

        return False

    async def assign_next_in_queue(self, operator_id: UUID) -> bool:
        """Offer the queue head to ``operator_id`` (or the next best operator)."""
        head = await self._store.queue_head()
        if head is None:
            return False
        return await self.match_operator(head.id, preferred_operator_id=operator_id)

    # ------------------------------------------------------------------
    # Operator-driven transitions
    # ------------------------------------------------------------------

    async def accept_chat(self, operator_id: UUID, session_id: UUID) -> ChatSession:
        session = await self._store.get_session(session_id)
        operator = await self._store.get_operator(operator_id)
        if (
            session.status != SessionStatus.OPERATOR_ASSIGNED
            or session.operator_id != operator_id
        ):
            raise StateError("Chat is not assigned to this operator")

        now = self._clock.now()
        moved = await self._store.transition_session(
            session_id,
            [SessionStatus.OPERATOR_ASSIGNED],
            owner_id=operator_id,
            status=SessionStatus.OPERATOR_CHAT.value,
            response_timeout_at=None,
            started_at=now,
        )
        if not moved:
            raise StateError("Chat is no longer waiting for this operator")

        self._store.add(
            Message(
                session_id=session_id,
                sender_type=SenderType.SYSTEM.value,
                sender_id="system",
                content=OPERATOR_JOINED_TEXT,
                message_type=MessageType.SYSTEM.value,
                created_at=now,
            )
        )
        await self._store.flush()

        logger.info("chat_accepted", session_id=str(session_id), operator_id=str(operator_id))
        await self._events.publish(
            DomainEvent.CHAT_OPERATOR_JOINED,
            {
                "session_id": str(session_id),
                "operator_id": str(operator_id),
                "operator_name": operator.name,
            },
        )
        return await self._store.get_session(session_id)

    async def end_chat(self, session_id: UUID, operator_id: UUID) -> ChatSession:
        session = await self._store.get_session(session_id)
        if session.operator_id != operator_id or session.status not in ACTIVE_STATUSES:
            raise StateError("Only the assigned operator can end an active chat")

        now = self._clock.now()
        moved = await self._store.transition_session(
            session_id,
            ACTIVE_STATUSES,
            owner_id=operator_id,
            status=SessionStatus.RESOLVED.value,
            ended_at=now,
            response_timeout_at=None,
        )
        if not moved:
            raise StateError("Chat is no longer active")

        await self._store.release_operator(operator_id, now, session_id=session_id)
        logger.info("chat_ended", session_id=str(session_id), operator_id=str(operator_id))
        await self._events.publish(
            DomainEvent.CHAT_ENDED,
            {
                "session_id": str(session_id),
                "operator_id": str(operator_id),
                "reason": "operator_ended",
            },
        )

        await self.assign_next_in_queue(operator_id)
        return await self._store.get_session(session_id)

    # ------------------------------------------------------------------
    # Queue bookkeeping
    # ------------------------------------------------------------------

    async def recompute_queue_positions(self) -> None:
        """Renumber waiting sessions 1..N by priority, then age."""
        ranked = await self._store.ranked_waiting_session_ids()
        for position, session_id in enumerate(ranked, start=1):
            await self._store.set_queue_position(session_id, position)

    async def estimate_wait(self, session_id: UUID) -> WaitEstimate:
        session = await self._store.get_session(session_id)
        if session.status != SessionStatus.QUEUE_WAITING or session.queue_position is None:
            return WaitEstimate(queue_position=None, ahead_count=0, estimated_minutes=0)

        ahead = await self._store.count_ahead(session.queue_position)
        return WaitEstimate(
            queue_position=session.queue_position,
            ahead_count=ahead,
            estimated_minutes=estimate_minutes(ahead, self._config.minutes_per_chat_estimate),
        )

    # ------------------------------------------------------------------
    # Messages and listings
    # ------------------------------------------------------------------

    async def post_message(
        self,
        session_id: UUID,
        sender_type: SenderType,
        sender_id: str | None,
        content: str,
        message_type: MessageType = MessageType.TEXT,
    ) -> Message:
        if not content or not content.strip():
            raise ValidationError("Message content is required")

        session = await self._store.get_session(session_id)
        if session.status in TERMINAL_STATUSES:
            raise StateError("Chat session has already ended")

        message = Message(
            id=uuid.uuid4(),
            session_id=session_id,
            sender_type=SenderType(sender_type).value,
            sender_id=sender_id,
            content=content,
            message_type=MessageType(message_type).value,
            created_at=self._clock.now(),
        )
        self._store.add(message)
        await self._store.flush()
        return message

    async def get_session(self, session_id: UUID) -> ChatSession:
        return await self._store.get_session(session_id)

    async def chat_history(self, session_id: UUID) -> list[Message]:
        await self._store.get_session(session_id)
        return await self._store.messages_for(session_id)

    async def list_sessions(
        self,
        status: str | None = None,
        operator_id: UUID | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[ChatSession], int]:
        conditions: list[Any] = []
        if status is not None:
            conditions.append(ChatSession.status == status)
        if operator_id is not None:
            conditions.append(ChatSession.operator_id == operator_id)

        total = (
            await self._store.db.execute(
                select(func.count(ChatSession.id)).where(*conditions)
            )
        ).scalar_one()
        result = await self._store.db.execute(
            select(ChatSession)
            .where(*conditions)
            .order_by(ChatSession.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def purge_finished_sessions(self, retention_days: int) -> int:
        """Delete terminal sessions (and their messages) older than the window."""
        cutoff: datetime = self._clock.now() - timedelta(days=retention_days)
        expired = await self._store.sessions_where(
            ChatSession.status.in_([status.value for status in TERMINAL_STATUSES]),
            ChatSession.ended_at < cutoff,
        )
        deleted = await self._store.purge_sessions([session.id for session in expired])
        logger.info("finished_sessions_purged", deleted=deleted, retention_days=retention_days)
        return deleted
