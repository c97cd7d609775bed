"""Unit tests for the domain event bus.

Tests:
  - subscribers receive events in publish order with the enum value as name
  - a failing subscriber does not stop the others
  - PendingEvents holds events until release() and drops them on discard()
"""

from __future__ import annotations

import pytest

from livedesk.services.events import DomainEvent, EventBus, PendingEvents


class _Collector:
    def __init__(self) -> None:
        self.seen: list[tuple[str, dict]] = []

    async def __call__(self, event: str, payload: dict) -> None:
        self.seen.append((event, payload))


class TestEventBus:
    """Fan-out behaviour."""

    @pytest.mark.asyncio
    async def test_publish_in_order(self) -> None:
        bus = EventBus()
        collector = _Collector()
        bus.subscribe(collector)

        await bus.publish(DomainEvent.SESSION_QUEUED, {"n": 1})
        await bus.publish("custom:event", {"n": 2})

        assert collector.seen == [("session:queued", {"n": 1}), ("custom:event", {"n": 2})]

    @pytest.mark.asyncio
    async def test_failing_subscriber_isolated(self) -> None:
        """A raising subscriber is logged and the next one still runs."""
        bus = EventBus()

        async def broken(event: str, payload: dict) -> None:
            raise RuntimeError("socket gone")

        collector = _Collector()
        bus.subscribe(broken)
        bus.subscribe(collector)

        await bus.publish(DomainEvent.CHAT_ENDED, {})

        assert collector.seen == [("chat:ended", {})]

    @pytest.mark.asyncio
    async def test_unsubscribe(self) -> None:
        bus = EventBus()
        collector = _Collector()
        bus.subscribe(collector)
        bus.unsubscribe(collector)

        await bus.publish(DomainEvent.SYSTEM_STATS, {})

        assert collector.seen == []


class TestPendingEvents:
    """Deferred delivery for one unit of work."""

    @pytest.mark.asyncio
    async def test_held_until_release(self) -> None:
        """Nothing reaches the bus before release(); release() empties the buffer."""
        bus = EventBus()
        collector = _Collector()
        bus.subscribe(collector)
        pending = PendingEvents(bus)

        await pending.publish(DomainEvent.SESSION_QUEUED, {"a": 1})
        await pending.publish(DomainEvent.SESSION_OPERATOR_ASSIGNED, {"b": 2})
        assert collector.seen == []

        await pending.release()
        assert [name for name, _ in collector.seen] == [
            "session:queued",
            "session:operator_assigned",
        ]

        await pending.release()
        assert len(collector.seen) == 2

    @pytest.mark.asyncio
    async def test_discard(self) -> None:
        bus = EventBus()
        collector = _Collector()
        bus.subscribe(collector)
        pending = PendingEvents(bus)

        await pending.publish(DomainEvent.SESSION_ESCALATED, {})
        pending.discard()
        await pending.release()

        assert collector.seen == []
