"""In-process domain event bus.

Services publish what happened (``session:operator_assigned``,
``session:escalated``...) without knowing who listens. The routing hub
subscribes and turns events into wire messages, which keeps the services
free of any connection handling.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Protocol

import structlog

logger = structlog.get_logger(__name__)

Subscriber = Callable[[str, dict[str, Any]], Awaitable[None]]


class Publisher(Protocol):
    async def publish(self, event: "DomainEvent | str", payload: dict[str, Any]) -> None: ...


class DomainEvent(str, Enum):
    SESSION_QUEUED = "session:queued"
    SESSION_OPERATOR_ASSIGNED = "session:operator_assigned"
    CHAT_OPERATOR_JOINED = "chat:operator_joined"
    CHAT_ENDED = "chat:ended"
    SESSION_ESCALATED = "session:escalated"
    OPERATOR_STATUS_CHANGE = "operator:status_change"
    SYSTEM_STATS = "system:stats"


class EventBus:
    """Ordered fan-out to async subscribers."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    async def publish(self, event: DomainEvent | str, payload: dict[str, Any]) -> None:
        name = event.value if isinstance(event, DomainEvent) else event
        for subscriber in list(self._subscribers):
            try:
                await subscriber(name, payload)
            except Exception as e:
                logger.error("event_subscriber_failed", domain_event=name, error=str(e))


class PendingEvents:
    """Events raised inside one unit of work.

    Held back until the transaction commits. A rolled-back unit discards them.
    """

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self._pending: list[tuple[DomainEvent | str, dict[str, Any]]] = []

    async def publish(self, event: DomainEvent | str, payload: dict[str, Any]) -> None:
        self._pending.append((event, payload))

    async def release(self) -> None:
        pending, self._pending = self._pending, []
        for event, payload in pending:
            await self._bus.publish(event, payload)

    def discard(self) -> None:
        self._pending.clear()
