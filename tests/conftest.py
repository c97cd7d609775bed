"""Shared fixtures for the LiveDesk test suite.

Integration tests run the real services against an in-memory SQLite
database (aiosqlite, one shared connection). Time comes from a
ManualClock so timeouts are driven by ``clock.advance()`` instead of
sleeping, and outbound webhooks are captured by RecordingNotifier.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import livedesk.models  # noqa: F401  (registers every table on Base.metadata)
from livedesk.core.config import Settings
from livedesk.db.base import Base
from livedesk.models.operator import Operator
from livedesk.schemas.chat import SupportRequest
from livedesk.services.desk import SupportDesk
from livedesk.services.notifications import Notifier
from livedesk.services.queue import AdmissionResult

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> datetime:
        self.current += timedelta(**delta)
        return self.current


class RecordingNotifier(Notifier):
    """Notifier that records deliveries instead of POSTing them."""

    def __init__(self) -> None:
        super().__init__(webhook_url="https://hooks.example.test/notify")
        self.sent: list[tuple[str, dict[str, Any]]] = []

    def notify(self, event: str, payload: dict[str, Any]) -> None:
        self.sent.append((event, payload))

    def events(self) -> list[str]:
        return [event for event, _ in self.sent]


class EventRecorder:
    """EventBus subscriber that keeps every delivered domain event."""

    def __init__(self) -> None:
        self.received: list[tuple[str, dict[str, Any]]] = []

    async def __call__(self, event: str, payload: dict[str, Any]) -> None:
        self.received.append((event, payload))

    def names(self) -> list[str]:
        return [event for event, _ in self.received]

    def of(self, event: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.received if name == event]


class FakeSocket:
    """Minimal stand-in for a FastAPI WebSocket on the send side."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def send_json(self, data: Any) -> None:
        self.sent.append(data)

    def events(self) -> list[str]:
        return [frame["event"] for frame in self.sent]

    def last(self, event: str) -> dict[str, Any]:
        frames = [frame["data"] for frame in self.sent if frame["event"] == event]
        assert frames, f"no {event!r} frame in {self.events()}"
        return frames[-1]


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def config() -> Settings:
    return Settings(
        queue_capacity=3,
        minutes_per_chat_estimate=3.0,
        operator_response_timeout_minutes=5,
        queue_timeout_minutes=15,
        chat_inactivity_timeout_minutes=10,
        operator_inactivity_timeout_minutes=30,
        notification_webhook_url="",
    )


@pytest.fixture
def desk(session_factory, notifier, clock, config) -> SupportDesk:
    return SupportDesk(session_factory, notifier=notifier, clock=clock, config=config)


@pytest.fixture
def recorder(desk: SupportDesk) -> EventRecorder:
    recorder = EventRecorder()
    desk.events.subscribe(recorder)
    return recorder


@pytest.fixture
def make_operator(desk: SupportDesk, clock: ManualClock):
    """Create an operator, online (available) unless ``online=False``."""

    async def _make(name: str = "Alice", online: bool = True) -> Operator:
        async with desk.unit() as services:
            operator = await services.presence.create_operator(
                name=name,
                email=f"{name.lower()}-{uuid.uuid4().hex[:8]}@desk.example.test",
            )
            if online:
                operator = await services.presence.connect(operator.id)
        clock.advance(seconds=1)
        return operator

    return _make


@pytest.fixture
def request_chat(desk: SupportDesk, clock: ManualClock):
    """Submit a support request through the desk, then tick the clock."""

    async def _request(
        question: str = "Where is my order?",
        priority: str = "medium",
        **fields: Any,
    ) -> AdmissionResult:
        result = await desk.request_operator(
            SupportRequest(question=question, priority=priority, **fields)
        )
        clock.advance(seconds=1)
        return result

    return _request


@pytest.fixture
def new_socket():
    """Factory for fresh FakeSocket instances."""
    return FakeSocket
