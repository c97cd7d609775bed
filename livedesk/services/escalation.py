"""Escalation of live sessions into asynchronous tickets.

EscalationCoordinator.escalate_to_ticket() does exactly these things in order:
1. Lock the session row and refuse terminal sessions
2. Render the ticket question (initial question + transcript when there is one)
3. Create the ticket, carrying the session metadata and escalation context
4. Move the session to 'escalated_ticket' and repair the queue numbering
5. Free the held operator and offer them the queue head
6. Notify (webhook, non-blocking) and publish ``session:escalated``

The periodic timeout checks also live here because every timeout ends in
an escalation.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import timedelta
from typing import Any
from uuid import UUID

import structlog

from livedesk.core.clock import Clock
from livedesk.core.config import Settings
from livedesk.core.exceptions import LiveDeskError, StateError
from livedesk.db.store import Store
from livedesk.models.chat_session import ChatSession
from livedesk.models.enums import (
    ACTIVE_STATUSES,
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    EscalationReason,
    SenderType,
    SessionStatus,
)
from livedesk.models.message import Message
from livedesk.models.ticket import Ticket
from livedesk.schemas.chat import SupportRequest
from livedesk.services.events import DomainEvent, Publisher
from livedesk.services.notifications import PendingNotifications
from livedesk.services.queue import QueueEngine
from livedesk.services.tickets import TicketDesk

logger = structlog.get_logger(__name__)

TRANSCRIPT_SEPARATOR = "--- Chat history ---"

_SENDER_LABELS = {
    SenderType.USER.value: "Customer",
    SenderType.OPERATOR.value: "Operator",
}

ESCALATION_MESSAGES = {
    EscalationReason.QUEUE_FULL.value: (
        "All our operators are busy right now. We've opened a ticket and will reply by email."
    ),
    EscalationReason.OPERATOR_TIMEOUT.value: (
        "No operator could take your chat in time. We've opened a ticket and will reply by email."
    ),
    EscalationReason.QUEUE_TIMEOUT.value: (
        "You've been waiting too long. We've opened a ticket and will reply by email."
    ),
    EscalationReason.OPERATOR_OFFLINE.value: (
        "Your operator went offline. We've opened a ticket and will reply by email."
    ),
}
DEFAULT_ESCALATION_MESSAGE = "Your request has been turned into a ticket. We'll reply by email."


def render_ticket_question(initial_question: str, messages: Sequence[Message]) -> str:
    """Initial question, plus the non-system transcript when one exists."""
    if len(messages) <= 1:
        return initial_question

    lines = [initial_question, "", TRANSCRIPT_SEPARATOR]
    for message in messages:
        label = _SENDER_LABELS.get(message.sender_type)
        if label is None:
            continue
        lines.append(f"{label}: {message.content}")
    return "\n".join(lines)


def escalation_message(reason: str) -> str:
    return ESCALATION_MESSAGES.get(reason, DEFAULT_ESCALATION_MESSAGE)


class EscalationCoordinator:
    """Turns live sessions into tickets and runs the timeout checks."""

    def __init__(
        self,
        store: Store,
        queue: QueueEngine,
        tickets: TicketDesk,
        notifier: PendingNotifications,
        events: Publisher,
        clock: Clock,
        config: Settings,
    ) -> None:
        self._store = store
        self._queue = queue
        self._tickets = tickets
        self._notifier = notifier
        self._events = events
        self._clock = clock
        self._config = config

    async def escalate_to_ticket(
        self,
        session_id: UUID,
        reason: EscalationReason,
        reassign_operator: bool = True,
    ) -> Ticket:
        """Convert a non-terminal session into an open ticket.

        ``reassign_operator=False`` frees nothing: the caller is taking the
        operator offline and owns that row.
        """
        session = await self._store.lock_session(session_id)
        if session.status in TERMINAL_STATUSES:
            raise StateError(f"Chat session is already {session.status}")

        previous_status = session.status
        operator_id = session.operator_id if session.status in ACTIVE_STATUSES else None

        # 1-2. Transcript → ticket question
        messages = await self._store.messages_for(session_id)
        question = render_ticket_question(session.initial_question, messages)

        # 3. Ticket
        ticket = await self._tickets.open_ticket(
            question=question,
            user_id=session.user_id,
            user_email=session.user_email,
            user_phone=session.user_phone,
            priority=session.priority,
            category="escalated",
            metadata={
                **(session.metadata_ or {}),
                "escalation_reason": reason.value,
                "original_session_id": str(session_id),
                "escalated_from": "chat",
            },
        )

        # 4. Session
        now = self._clock.now()
        moved = await self._store.transition_session(
            session_id,
            OPEN_STATUSES,
            status=SessionStatus.ESCALATED_TICKET.value,
            ticket_id=ticket.id,
            ended_at=now,
            escalation_reason=reason.value,
            queue_position=None,
            response_timeout_at=None,
        )
        if not moved:
            raise StateError("Chat session changed state during escalation")

        if previous_status == SessionStatus.QUEUE_WAITING:
            await self._queue.recompute_queue_positions()

        # 5. Operator
        if operator_id is not None and reassign_operator:
            released = await self._store.release_operator(
                operator_id, now, session_id=session_id
            )
            if released:
                await self._queue.assign_next_in_queue(operator_id)

        # 6. Notify
        if self._config.notify_on_escalation:
            self._notifier.notify(
                "escalation",
                {
                    "session_id": str(session_id),
                    "ticket_id": str(ticket.id),
                    "reason": reason.value,
                    "user_email": session.user_email,
                    "user_phone": session.user_phone,
                    "escalated_at": now.isoformat(),
                },
            )
        await self._events.publish(
            DomainEvent.SESSION_ESCALATED,
            {
                "session_id": str(session_id),
                "ticket_id": str(ticket.id),
                "reason": reason.value,
                "operator_id": str(operator_id) if operator_id else None,
                "message": escalation_message(reason.value),
            },
        )

        logger.info(
            "escalation_complete",
            session_id=str(session_id),
            ticket_id=str(ticket.id),
            reason=reason.value,
            previous_status=previous_status,
            operator_id=str(operator_id) if operator_id else None,
        )
        return ticket

    async def create_direct_ticket(
        self, request: SupportRequest, reason: EscalationReason
    ) -> Ticket:
        """Bypass path: a ticket without any chat session."""
        ticket = await self._tickets.create_direct_ticket(request, reason)
        logger.info("direct_ticket_created", ticket_id=str(ticket.id), reason=reason.value)
        return ticket

    # ------------------------------------------------------------------
    # Timeout checks (driven by the supervisor)
    # ------------------------------------------------------------------

    async def check_timeouts(self) -> dict[str, int]:
        """Escalate unanswered assignments and stale queue entries."""
        now = self._clock.now()
        counts = {"operator_timeout": 0, "queue_timeout": 0}

        unanswered = await self._store.sessions_where(
            ChatSession.status.in_([status.value for status in ACTIVE_STATUSES]),
            ChatSession.response_timeout_at.is_not(None),
            ChatSession.response_timeout_at < now,
        )
        for session in unanswered:
            if await self._escalate_quietly(session, EscalationReason.OPERATOR_TIMEOUT):
                counts["operator_timeout"] += 1

        queue_cutoff = now - timedelta(minutes=self._config.queue_timeout_minutes)
        stale = await self._store.sessions_where(
            ChatSession.status == SessionStatus.QUEUE_WAITING.value,
            ChatSession.created_at < queue_cutoff,
        )
        for session in stale:
            if await self._escalate_quietly(session, EscalationReason.QUEUE_TIMEOUT):
                counts["queue_timeout"] += 1

        if counts["operator_timeout"] or counts["queue_timeout"]:
            logger.info("timeout_check_complete", **counts)
        return counts

    async def _escalate_quietly(self, session: ChatSession, reason: EscalationReason) -> bool:
        listed_status = session.status
        session = await self._store.get_session(session.id)
        if session.status != listed_status:
            # Matched or ended by an earlier escalation in this sweep
            return False

        if reason is EscalationReason.OPERATOR_TIMEOUT and self._config.notify_on_timeout:
            self._notifier.notify(
                "operator_timeout",
                {
                    "session_id": str(session.id),
                    "operator_id": str(session.operator_id) if session.operator_id else None,
                    "response_timeout_at": (
                        session.response_timeout_at.isoformat()
                        if session.response_timeout_at
                        else None
                    ),
                },
            )
        try:
            await self.escalate_to_ticket(session.id, reason)
        except LiveDeskError as e:
            # Another handler moved the session first
            logger.warning(
                "timeout_escalation_skipped",
                session_id=str(session.id),
                reason=reason.value,
                error=e.message,
            )
            return False
        return True

    async def remind_inactive_chats(self) -> int:
        """Notify once per chat that has gone quiet for too long."""
        now = self._clock.now()
        cutoff = now - timedelta(minutes=self._config.chat_inactivity_timeout_minutes)
        reminded = 0

        chats = await self._store.sessions_where(
            ChatSession.status == SessionStatus.OPERATOR_CHAT.value
        )
        for session in chats:
            metadata = dict(session.metadata_ or {})
            if metadata.get("inactivity_reminded_at"):
                continue
            last_activity = await self._store.last_message_at(session.id) or session.started_at
            if last_activity is None or last_activity >= cutoff:
                continue

            self._notifier.notify(
                "chat_inactivity_reminder",
                {
                    "session_id": str(session.id),
                    "operator_id": str(session.operator_id) if session.operator_id else None,
                    "last_activity": last_activity.isoformat(),
                },
            )
            metadata["inactivity_reminded_at"] = now.isoformat()
            session.metadata_ = metadata
            reminded += 1

        if reminded:
            await self._store.flush()
            logger.info("chat_inactivity_reminders_sent", count=reminded)
        return reminded

    def escalation_rules(self) -> dict[str, Any]:
        return {
            "queue_capacity": self._config.queue_capacity,
            "operator_response_timeout_minutes": self._config.operator_response_timeout_minutes,
            "queue_timeout_minutes": self._config.queue_timeout_minutes,
            "chat_inactivity_timeout_minutes": self._config.chat_inactivity_timeout_minutes,
            "operator_inactivity_timeout_minutes": (
                self._config.operator_inactivity_timeout_minutes
            ),
            "minutes_per_chat_estimate": self._config.minutes_per_chat_estimate,
            "notify_on_timeout": self._config.notify_on_timeout,
            "notify_on_escalation": self._config.notify_on_escalation,
        }
