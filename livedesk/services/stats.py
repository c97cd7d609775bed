"""Aggregate statistics for dashboards and the ``system:stats`` broadcast.

Plain scans over recent rows; the aggregation happens in Python so the
same queries run on every backend.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import or_, select

from livedesk.core.clock import Clock
from livedesk.db.store import Store
from livedesk.models.chat_session import ChatSession
from livedesk.models.enums import OperatorPresence, SessionStatus, TicketStatus
from livedesk.models.operator import Operator
from livedesk.models.ticket import Ticket


def _average_minutes(pairs: Iterable[tuple[datetime | None, datetime | None]]) -> float | None:
    durations = [
        (end - start).total_seconds() / 60
        for start, end in pairs
        if start is not None and end is not None
    ]
    if not durations:
        return None
    return round(sum(durations) / len(durations), 2)


def _on_day(value: datetime | None, day: date) -> bool:
    return value is not None and value.date() == day


class StatsService:
    """Read-only aggregate queries."""

    def __init__(self, store: Store, clock: Clock) -> None:
        self._store = store
        self._clock = clock

    async def _sessions_since(self, since: datetime) -> list[ChatSession]:
        open_statuses = [
            SessionStatus.QUEUE_WAITING.value,
            SessionStatus.OPERATOR_ASSIGNED.value,
            SessionStatus.OPERATOR_CHAT.value,
        ]
        result = await self._store.db.execute(
            select(ChatSession).where(
                or_(
                    ChatSession.created_at >= since,
                    ChatSession.ended_at >= since,
                    ChatSession.status.in_(open_statuses),
                )
            )
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def _operators(self) -> list[Operator]:
        result = await self._store.db.execute(
            select(Operator).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def system_stats(self) -> dict[str, Any]:
        now = self._clock.now()
        today = now.date()
        start_of_day = datetime.combine(today, datetime.min.time(), tzinfo=now.tzinfo)
        sessions = await self._sessions_since(start_of_day)
        operators = await self._operators()

        tickets = (
            await self._store.db.execute(
                select(Ticket.status, Ticket.created_at).where(
                    or_(
                        Ticket.status == TicketStatus.OPEN.value,
                        Ticket.created_at >= start_of_day,
                    )
                )
            )
        ).all()

        online = [op for op in operators if op.is_online]
        return {
            "sessions_in_queue": sum(
                1 for s in sessions if s.status == SessionStatus.QUEUE_WAITING
            ),
            "active_chats": sum(1 for s in sessions if s.status == SessionStatus.OPERATOR_CHAT),
            "today_resolved": sum(
                1
                for s in sessions
                if s.status == SessionStatus.RESOLVED and _on_day(s.ended_at, today)
            ),
            "today_escalated": sum(
                1
                for s in sessions
                if s.status == SessionStatus.ESCALATED_TICKET and _on_day(s.ended_at, today)
            ),
            "avg_queue_wait_minutes": _average_minutes(
                (s.created_at, s.assigned_at) for s in sessions if _on_day(s.created_at, today)
            ),
            "avg_chat_duration_minutes": _average_minutes(
                (s.started_at, s.ended_at) for s in sessions if _on_day(s.ended_at, today)
            ),
            "operators_online": len(online),
            "operators_available": sum(
                1 for op in online if op.presence == OperatorPresence.AVAILABLE
            ),
            "operators_busy": sum(1 for op in online if op.presence == OperatorPresence.BUSY),
            "open_tickets": sum(1 for row in tickets if row.status == TicketStatus.OPEN),
            "today_tickets": sum(1 for row in tickets if _on_day(row.created_at, today)),
        }

    async def operator_stats(self, operator_id: UUID, day: date | None = None) -> dict[str, Any]:
        await self._store.get_operator(operator_id)
        day = day or self._clock.now().date()
        sessions = await self._store.sessions_where(ChatSession.operator_id == operator_id)
        of_day = [s for s in sessions if _on_day(s.created_at, day)]
        return {
            "operator_id": operator_id,
            "date": day.isoformat(),
            "total_chats": len(of_day),
            "resolved_chats": sum(1 for s in of_day if s.status == SessionStatus.RESOLVED),
            "escalated_chats": sum(
                1 for s in of_day if s.status == SessionStatus.ESCALATED_TICKET
            ),
            "avg_response_minutes": _average_minutes((s.created_at, s.assigned_at) for s in of_day),
            "avg_chat_duration_minutes": _average_minutes(
                (s.started_at, s.ended_at) for s in of_day
            ),
        }

    async def workload(self) -> list[dict[str, Any]]:
        """Online operators with their current and same-day load."""
        today = self._clock.now().date()
        operators = [op for op in await self._operators() if op.is_online]
        entries = []
        for operator in operators:
            sessions = await self._store.sessions_where(ChatSession.operator_id == operator.id)
            entries.append(
                {
                    "operator_id": operator.id,
                    "name": operator.name,
                    "presence": operator.presence,
                    "active_chats": sum(
                        1
                        for s in sessions
                        if s.status
                        in (SessionStatus.OPERATOR_ASSIGNED, SessionStatus.OPERATOR_CHAT)
                    ),
                    "resolved_today": sum(
                        1
                        for s in sessions
                        if s.status == SessionStatus.RESOLVED and _on_day(s.ended_at, today)
                    ),
                    "escalated_today": sum(
                        1
                        for s in sessions
                        if s.status == SessionStatus.ESCALATED_TICKET
                        and _on_day(s.ended_at, today)
                    ),
                }
            )
        entries.sort(key=lambda entry: entry["active_chats"])
        return entries

    async def escalation_stats(self, days: int = 7) -> list[dict[str, Any]]:
        """Per-day session outcomes for the last ``days`` days, newest first."""
        now = self._clock.now()
        since = datetime.combine(
            now.date() - timedelta(days=days - 1), datetime.min.time(), tzinfo=now.tzinfo
        )
        sessions = [s for s in await self._sessions_since(since) if s.created_at >= since]

        by_day: dict[date, list[ChatSession]] = {}
        for session in sessions:
            by_day.setdefault(session.created_at.date(), []).append(session)

        rows = []
        for day in sorted(by_day, reverse=True):
            group = by_day[day]
            reasons: dict[str, int] = {}
            for s in group:
                if s.escalation_reason:
                    reasons[s.escalation_reason] = reasons.get(s.escalation_reason, 0) + 1
            rows.append(
                {
                    "date": day.isoformat(),
                    "total_sessions": len(group),
                    "escalated_sessions": sum(
                        1 for s in group if s.status == SessionStatus.ESCALATED_TICKET
                    ),
                    "resolved_sessions": sum(
                        1 for s in group if s.status == SessionStatus.RESOLVED
                    ),
                    "escalation_reasons": reasons,
                    "avg_wait_minutes": _average_minutes(
                        (s.created_at, s.assigned_at) for s in group
                    ),
                }
            )
        return rows

    async def ticket_stats(self) -> dict[str, Any]:
        """Ticket counts by status, tickets of the last 24 hours, response time."""
        since = self._clock.now() - timedelta(hours=24)
        rows = (
            await self._store.db.execute(
                select(Ticket.status, Ticket.created_at, Ticket.responded_at)
            )
        ).all()

        response_minutes = _average_minutes(
            (row.created_at, row.responded_at) for row in rows
        )
        return {
            "total": len(rows),
            "open": sum(1 for row in rows if row.status == TicketStatus.OPEN),
            "in_progress": sum(1 for row in rows if row.status == TicketStatus.IN_PROGRESS),
            "resolved": sum(1 for row in rows if row.status == TicketStatus.RESOLVED),
            "closed": sum(1 for row in rows if row.status == TicketStatus.CLOSED),
            "today": sum(1 for row in rows if row.created_at > since),
            "avg_response_time_hours": (
                round(response_minutes / 60, 2) if response_minutes is not None else None
            ),
        }
