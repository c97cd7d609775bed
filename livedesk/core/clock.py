"""Time source used by the engine and the supervisor.

Every timestamp written by the services comes from a Clock so timeout
behaviour can be driven by tests without sleeping.
"""

from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
