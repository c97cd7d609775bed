"""Durable store adapter used by the mediation services.

Thin wrapper around one AsyncSession with typed helpers. The conditional
updates (``claim_operator``, ``release_operator``, ``switch_presence``,
``transition_session``) are the only way operator availability and session
status change: each is a single ``UPDATE ... WHERE <expected state>`` and
reports whether it won. Going offline (``take_offline``) is unconditional
and leaves the held session in place until it has been escalated.
Reads that follow a conditional update use ``populate_existing`` so the
identity map never hands back stale rows.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from livedesk.core.exceptions import (
    OperatorNotFoundError,
    SessionNotFoundError,
    TicketNotFoundError,
)
from livedesk.models.chat_session import ChatSession
from livedesk.models.enums import (
    PRIORITY_RANK,
    OperatorPresence,
    SessionStatus,
)
from livedesk.models.message import Message
from livedesk.models.operator import Operator
from livedesk.models.ticket import Ticket

_PRIORITY_ORDER = case(PRIORITY_RANK, value=ChatSession.priority, else_=0)


class Store:
    """Entity access and conditional writes for one unit of work."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    @property
    def db(self) -> AsyncSession:
        return self._db

    def add(self, entity: Any) -> None:
        self._db.add(entity)

    async def flush(self) -> None:
        await self._db.flush()

    async def delete(self, entity: Any) -> None:
        await self._db.delete(entity)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_operator(self, operator_id: UUID) -> Operator:
        operator = await self._db.get(Operator, operator_id, populate_existing=True)
        if operator is None:
            raise OperatorNotFoundError(f"Operator {operator_id} not found")
        return operator

    async def find_operator_by_email(self, email: str) -> Operator | None:
        result = await self._db.execute(select(Operator).where(Operator.email == email))
        return result.scalar_one_or_none()

    async def get_session(self, session_id: UUID) -> ChatSession:
        session = await self._db.get(ChatSession, session_id, populate_existing=True)
        if session is None:
            raise SessionNotFoundError(f"Chat session {session_id} not found")
        return session

    async def lock_session(self, session_id: UUID) -> ChatSession:
        """Load a session holding a row lock until the unit of work ends."""
        result = await self._db.execute(
            select(ChatSession)
            .where(ChatSession.id == session_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        session = result.scalar_one_or_none()
        if session is None:
            raise SessionNotFoundError(f"Chat session {session_id} not found")
        return session

    async def get_ticket(self, ticket_id: UUID) -> Ticket:
        ticket = await self._db.get(Ticket, ticket_id, populate_existing=True)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    # ------------------------------------------------------------------
    # Conditional updates
    # ------------------------------------------------------------------

    async def claim_operator(
        self, operator_id: UUID, session_id: UUID, now: datetime
    ) -> bool:
        """Flip an online, available operator to busy for ``session_id``.

        Returns False when another handler got there first.
        """
        result = await self._db.execute(
            update(Operator)
            .where(
                Operator.id == operator_id,
                Operator.is_online.is_(True),
                Operator.presence == OperatorPresence.AVAILABLE.value,
            )
            .values(
                presence=OperatorPresence.BUSY.value,
                current_session_id=session_id,
                last_activity=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release_operator(
        self,
        operator_id: UUID,
        now: datetime,
        session_id: UUID | None = None,
    ) -> bool:
        """Return a busy online operator to available.

        With ``session_id`` the release only applies while the operator
        still references that session.
        """
        conditions = [Operator.id == operator_id, Operator.is_online.is_(True)]
        if session_id is not None:
            conditions.append(Operator.current_session_id == session_id)
        result = await self._db.execute(
            update(Operator)
            .where(*conditions)
            .values(
                presence=OperatorPresence.AVAILABLE.value,
                current_session_id=None,
                last_activity=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def switch_presence(
        self,
        operator_id: UUID,
        expected: OperatorPresence,
        held_session_id: UUID | None,
        presence: OperatorPresence,
        now: datetime,
        **values: Any,
    ) -> bool:
        """Move an operator from ``expected`` to ``presence``.

        Applies only while both presence and ``current_session_id`` are still
        what the caller read, so a claim or release landing in between wins.
        """
        result = await self._db.execute(
            update(Operator)
            .where(
                Operator.id == operator_id,
                Operator.presence == expected.value,
                Operator.current_session_id.is_not_distinct_from(held_session_id),
            )
            .values(presence=presence.value, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def take_offline(self, operator_id: UUID, now: datetime) -> bool:
        """Mark an operator offline so no claim can pick them any more.

        ``current_session_id`` is left alone: whatever the operator holds is
        still theirs until it has been escalated.
        """
        result = await self._db.execute(
            update(Operator)
            .where(Operator.id == operator_id)
            .values(
                is_online=False,
                presence=OperatorPresence.OFFLINE.value,
                connection_id=None,
                last_activity=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def clear_held_session(self, operator_id: UUID, now: datetime) -> bool:
        """Drop the session reference of an operator that is still offline."""
        result = await self._db.execute(
            update(Operator)
            .where(
                Operator.id == operator_id,
                Operator.presence == OperatorPresence.OFFLINE.value,
            )
            .values(current_session_id=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def transition_session(
        self,
        session_id: UUID,
        expected: Iterable[SessionStatus],
        owner_id: UUID | None = None,
        **values: Any,
    ) -> bool:
        """Update a session only while its status is one of ``expected``.

        With ``owner_id`` the session must also still belong to that operator.
        """
        conditions = [
            ChatSession.id == session_id,
            ChatSession.status.in_([status.value for status in expected]),
        ]
        if owner_id is not None:
            conditions.append(ChatSession.operator_id == owner_id)
        result = await self._db.execute(
            update(ChatSession)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def update_operator(self, operator_id: UUID, **values: Any) -> bool:
        result = await self._db.execute(
            update(Operator)
            .where(Operator.id == operator_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def detach_ticket(self, ticket_id: UUID) -> None:
        """Clear the ticket reference of the session it was escalated from."""
        await self._db.execute(
            update(ChatSession)
            .where(ChatSession.ticket_id == ticket_id)
            .values(ticket_id=None)
            .execution_options(synchronize_session=False)
        )

    async def set_queue_position(self, session_id: UUID, position: int) -> None:
        await self._db.execute(
            update(ChatSession)
            .where(
                ChatSession.id == session_id,
                ChatSession.status == SessionStatus.QUEUE_WAITING.value,
            )
            .values(queue_position=position)
            .execution_options(synchronize_session=False)
        )

    # ------------------------------------------------------------------
    # Queue queries
    # ------------------------------------------------------------------

    async def count_available_operators(self) -> int:
        result = await self._db.execute(
            select(func.count(Operator.id)).where(
                Operator.is_online.is_(True),
                Operator.presence == OperatorPresence.AVAILABLE.value,
            )
        )
        return result.scalar_one()

    async def count_waiting_sessions(self) -> int:
        result = await self._db.execute(
            select(func.count(ChatSession.id)).where(
                ChatSession.status == SessionStatus.QUEUE_WAITING.value
            )
        )
        return result.scalar_one()

    async def max_queue_position(self) -> int:
        result = await self._db.execute(
            select(func.max(ChatSession.queue_position)).where(
                ChatSession.status == SessionStatus.QUEUE_WAITING.value
            )
        )
        return result.scalar_one() or 0

    async def count_ahead(self, position: int) -> int:
        result = await self._db.execute(
            select(func.count(ChatSession.id)).where(
                ChatSession.status == SessionStatus.QUEUE_WAITING.value,
                ChatSession.queue_position < position,
            )
        )
        return result.scalar_one()

    async def candidate_operator_ids(self) -> list[UUID]:
        """Available operators, most recently active first."""
        result = await self._db.execute(
            select(Operator.id)
            .where(
                Operator.is_online.is_(True),
                Operator.presence == OperatorPresence.AVAILABLE.value,
            )
            .order_by(Operator.last_activity.desc(), Operator.created_at.asc())
        )
        return list(result.scalars().all())

    async def ranked_waiting_session_ids(self) -> list[UUID]:
        """Waiting sessions by priority rank desc, then age."""
        result = await self._db.execute(
            select(ChatSession.id)
            .where(ChatSession.status == SessionStatus.QUEUE_WAITING.value)
            .order_by(
                _PRIORITY_ORDER.desc(),
                ChatSession.created_at.asc(),
                ChatSession.queue_position.asc(),
            )
        )
        return list(result.scalars().all())

    async def queue_head(self) -> ChatSession | None:
        result = await self._db.execute(
            select(ChatSession)
            .where(ChatSession.status == SessionStatus.QUEUE_WAITING.value)
            .order_by(ChatSession.queue_position.asc(), ChatSession.created_at.asc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Session listings
    # ------------------------------------------------------------------

    async def sessions_where(self, *conditions: Any) -> list[ChatSession]:
        result = await self._db.execute(
            select(ChatSession)
            .where(*conditions)
            .order_by(ChatSession.created_at.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def active_sessions_for_operator(self, operator_id: UUID) -> list[ChatSession]:
        return await self.sessions_where(
            ChatSession.operator_id == operator_id,
            ChatSession.status.in_(
                [SessionStatus.OPERATOR_ASSIGNED.value, SessionStatus.OPERATOR_CHAT.value]
            ),
        )

    async def messages_for(self, session_id: UUID) -> list[Message]:
        result = await self._db.execute(
            select(Message)
            .where(Message.session_id == session_id)
            .order_by(Message.created_at.asc())
        )
        return list(result.scalars().all())

    async def last_message_at(self, session_id: UUID) -> datetime | None:
        result = await self._db.execute(
            select(func.max(Message.created_at)).where(Message.session_id == session_id)
        )
        return result.scalar_one_or_none()

    async def purge_sessions(self, session_ids: list[UUID]) -> int:
        if not session_ids:
            return 0
        await self._db.execute(
            delete(Message)
            .where(Message.session_id.in_(session_ids))
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(
            delete(ChatSession)
            .where(ChatSession.id.in_(session_ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
