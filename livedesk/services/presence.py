"""Operator presence registry.

Tracks who is online and whether they can take a chat. Coming online
drains the queue; going offline (explicitly, by connection loss or by
the inactivity sweep) escalates whatever the operator was holding.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from livedesk.core.clock import Clock
from livedesk.core.config import Settings
from livedesk.core.exceptions import ConflictError, OperatorNotFoundError, ValidationError
from livedesk.db.store import Store
from livedesk.models.enums import EscalationReason, OperatorPresence
from livedesk.models.operator import Operator
from livedesk.services.escalation import EscalationCoordinator
from livedesk.services.events import DomainEvent, Publisher
from livedesk.services.queue import QueueEngine

logger = structlog.get_logger(__name__)


def minutes_inactive(operator: Operator, now) -> int:
    return int((now - operator.last_activity).total_seconds() // 60)


class PresenceRegistry:
    """Online/offline and availability bookkeeping for operators."""

    def __init__(
        self,
        store: Store,
        queue: QueueEngine,
        escalation: EscalationCoordinator,
        events: Publisher,
        clock: Clock,
        config: Settings,
    ) -> None:
        self._store = store
        self._queue = queue
        self._escalation = escalation
        self._events = events
        self._clock = clock
        self._config = config

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def create_operator(
        self,
        name: str,
        email: str,
        phone: str | None = None,
        role: str = "operator",
        permissions: dict[str, Any] | None = None,
    ) -> Operator:
        if not name or not name.strip() or not email or not email.strip():
            raise ValidationError("Operator name and email are required")
        if await self._store.find_operator_by_email(email) is not None:
            raise ConflictError(f"An operator with email {email} already exists")

        now = self._clock.now()
        operator = Operator(
            id=uuid.uuid4(),
            name=name,
            email=email,
            phone=phone,
            role=role,
            permissions=dict(permissions or {}),
            presence=OperatorPresence.OFFLINE.value,
            is_online=False,
            last_activity=now,
            created_at=now,
            updated_at=now,
        )
        self._store.add(operator)
        try:
            await self._store.flush()
        except IntegrityError as e:
            raise ConflictError(f"An operator with email {email} already exists") from e

        logger.info("operator_created", operator_id=str(operator.id), role=role)
        return operator

    async def delete_operator(self, operator_id: UUID) -> None:
        operator = await self.force_offline(operator_id)
        await self._store.delete(operator)
        await self._store.flush()
        logger.info("operator_deleted", operator_id=str(operator_id))

    async def set_status(self, operator_id: UUID, is_online: bool) -> Operator:
        if is_online:
            return await self.connect(operator_id)
        return await self.force_offline(operator_id)

    async def list_operators(self, include_offline: bool = False) -> list[Operator]:
        query = select(Operator)
        if not include_offline:
            query = query.where(Operator.is_online.is_(True))
        result = await self._store.db.execute(
            query.order_by(Operator.is_online.desc(), Operator.last_activity.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def update_permissions(
        self, operator_id: UUID, permissions: dict[str, Any]
    ) -> Operator:
        await self._store.get_operator(operator_id)
        await self._store.update_operator(
            operator_id, permissions=dict(permissions), updated_at=self._clock.now()
        )
        logger.info(
            "operator_permissions_updated",
            operator_id=str(operator_id),
            permissions=sorted(permissions),
        )
        return await self._store.get_operator(operator_id)

    # ------------------------------------------------------------------
    # Presence transitions
    # ------------------------------------------------------------------

    async def connect(self, operator_id: UUID, connection_id: str | None = None) -> Operator:
        operator = await self._store.get_operator(operator_id)
        now = self._clock.now()
        was_online = operator.is_online

        observed = OperatorPresence(operator.presence)
        held_session_id = operator.current_session_id

        holding_session = False
        if held_session_id is not None:
            held = await self._store.active_sessions_for_operator(operator_id)
            holding_session = any(s.id == held_session_id for s in held)

        values: dict[str, Any] = {
            "is_online": True,
            "last_activity": now,
            "updated_at": now,
        }
        if connection_id is not None:
            values["connection_id"] = connection_id
        if not was_online:
            values["online_since"] = now
        await self._store.update_operator(operator_id, **values)

        # Presence only moves from what was read above
        if holding_session:
            if observed is not OperatorPresence.BUSY:
                await self._store.switch_presence(
                    operator_id, observed, held_session_id, OperatorPresence.BUSY, now
                )
        elif observed is not OperatorPresence.AVAILABLE or held_session_id is not None:
            await self._store.switch_presence(
                operator_id,
                observed,
                held_session_id,
                OperatorPresence.AVAILABLE,
                now,
                current_session_id=None,
            )

        operator = await self._store.get_operator(operator_id)
        logger.info(
            "operator_online",
            operator_id=str(operator_id),
            presence=operator.presence,
            reconnect=was_online,
        )
        await self._publish_status(operator)

        if operator.presence == OperatorPresence.AVAILABLE:
            await self._queue.assign_next_in_queue(operator_id)
            operator = await self._store.get_operator(operator_id)
        return operator

    async def disconnect(self, operator_id: UUID) -> Operator:
        logger.info("operator_disconnected", operator_id=str(operator_id))
        return await self.force_offline(operator_id)

    async def heartbeat(self, operator_id: UUID) -> None:
        now = self._clock.now()
        if not await self._store.update_operator(operator_id, last_activity=now):
            raise OperatorNotFoundError(f"Operator {operator_id} not found")

    async def force_offline(self, operator_id: UUID) -> Operator:
        """Mark the operator offline, then escalate everything they hold.

        Going offline first closes the door on new claims, so the sessions
        listed afterwards are all the operator will ever hold.
        """
        await self._store.get_operator(operator_id)

        now = self._clock.now()
        await self._store.take_offline(operator_id, now)

        for session in await self._store.active_sessions_for_operator(operator_id):
            await self._escalation.escalate_to_ticket(
                session.id,
                EscalationReason.OPERATOR_OFFLINE,
                reassign_operator=False,
            )

        await self._store.clear_held_session(operator_id, now)
        operator = await self._store.get_operator(operator_id)
        logger.info("operator_offline", operator_id=str(operator_id))
        await self._publish_status(operator)
        return operator

    async def sweep_inactivity(self, max_inactive_minutes: int | None = None) -> int:
        """Force offline every online operator silent for too long."""
        threshold = max_inactive_minutes
        if threshold is None:
            threshold = self._config.operator_inactivity_timeout_minutes
        cutoff = self._clock.now() - timedelta(minutes=threshold)
        result = await self._store.db.execute(
            select(Operator.id).where(
                Operator.is_online.is_(True),
                Operator.last_activity < cutoff,
            )
        )
        inactive = list(result.scalars().all())
        for operator_id in inactive:
            await self.force_offline(operator_id)
            logger.info(
                "operator_inactive_forced_offline",
                operator_id=str(operator_id),
                max_inactive_minutes=threshold,
            )
        return len(inactive)

    async def _publish_status(self, operator: Operator) -> None:
        await self._events.publish(
            DomainEvent.OPERATOR_STATUS_CHANGE,
            {
                "operator_id": str(operator.id),
                "name": operator.name,
                "presence": operator.presence,
                "is_online": operator.is_online,
            },
        )
