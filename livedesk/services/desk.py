"""Unit-of-work wiring for the mediation services.

SupportDesk is created once at startup and stored on ``app.state``. Each
HTTP request, WebSocket event and supervisor sweep opens its own unit:

    async with desk.unit() as services:
        await services.queue.end_chat(session_id, operator_id)

One unit is one database transaction. It commits on success and rolls back
on any exception; driver errors surface as ExternalServiceError.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from livedesk.core.clock import Clock, SystemClock
from livedesk.core.config import Settings, settings
from livedesk.core.exceptions import ExternalServiceError
from livedesk.db.store import Store
from livedesk.models.enums import EscalationReason
from livedesk.schemas.chat import SupportRequest
from livedesk.services.escalation import EscalationCoordinator
from livedesk.services.events import EventBus, PendingEvents, Publisher
from livedesk.services.notifications import Notifier, PendingNotifications
from livedesk.services.presence import PresenceRegistry
from livedesk.services.queue import AdmissionResult, QueueEngine
from livedesk.services.stats import StatsService
from livedesk.services.tickets import TicketDesk

logger = structlog.get_logger(__name__)


@dataclass
class DeskServices:
    """Services bound to one unit of work."""

    store: Store
    tickets: TicketDesk
    queue: QueueEngine
    escalation: EscalationCoordinator
    presence: PresenceRegistry
    stats: StatsService
    clock: Clock


class SupportDesk:
    """Long-lived collaborators plus a factory for units of work."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Notifier,
        events: EventBus | None = None,
        clock: Clock | None = None,
        config: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.notifier = notifier
        self.events = events or EventBus()
        self.clock = clock or SystemClock()
        self.config = config or settings

    def build(
        self,
        db: AsyncSession,
        events: Publisher,
        notifications: PendingNotifications,
    ) -> DeskServices:
        store = Store(db)
        tickets = TicketDesk(store, notifications, self.clock)
        queue = QueueEngine(store, tickets, events, self.clock, self.config)
        escalation = EscalationCoordinator(
            store, queue, tickets, notifications, events, self.clock, self.config
        )
        presence = PresenceRegistry(store, queue, escalation, events, self.clock, self.config)
        return DeskServices(
            store=store,
            tickets=tickets,
            queue=queue,
            escalation=escalation,
            presence=presence,
            stats=StatsService(store, self.clock),
            clock=self.clock,
        )

    @asynccontextmanager
    async def unit(self) -> AsyncIterator[DeskServices]:
        """Yield services sharing one transaction.

        Domain events and webhook notifications raised inside the unit are
        released only after the commit succeeds.
        """
        events = PendingEvents(self.events)
        notifications = PendingNotifications(self.notifier)
        try:
            async with self._session_factory() as db:
                try:
                    yield self.build(db, events, notifications)
                    await db.commit()
                except SQLAlchemyError as e:
                    await db.rollback()
                    events.discard()
                    notifications.discard()
                    logger.error("unit_of_work_failed", error=str(e))
                    raise ExternalServiceError(f"Database operation failed: {e}") from e
                except Exception:
                    await db.rollback()
                    events.discard()
                    notifications.discard()
                    raise
        except ExternalServiceError:
            raise
        except SQLAlchemyError as e:
            logger.error("unit_of_work_connection_error", error=str(e))
            raise ExternalServiceError(f"Database connection failed: {e}") from e

        notifications.release()
        await events.release()

    def update_escalation_config(self, changes: dict[str, Any]) -> Settings:
        """Swap in new escalation policy for every unit opened from now on.

        Scheduler intervals are read once at startup and are not affected.
        """
        self.config = self.config.model_copy(update=changes)
        logger.info("escalation_config_updated", changes=changes)
        return self.config

    async def request_operator(self, request: SupportRequest) -> AdmissionResult:
        """Admit a support request, degrading to a ticket if admission breaks."""
        try:
            async with self.unit() as services:
                return await services.queue.create_session(request)
        except ExternalServiceError as e:
            logger.error("admission_failed_fallback_to_ticket", error=e.message)

        async with self.unit() as services:
            ticket = await services.escalation.create_direct_ticket(
                request, EscalationReason.SYSTEM_ERROR
            )
        return AdmissionResult(ticket=ticket)
