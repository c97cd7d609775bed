"""Closed value sets stored as text columns.

Columns hold the plain ``.value`` string; comparisons against the enum
members work because every enum here is a ``str`` subclass.
"""

from enum import Enum


class OperatorPresence(str, Enum):
    OFFLINE = "offline"
    AVAILABLE = "available"
    BUSY = "busy"


class SessionStatus(str, Enum):
    QUEUE_WAITING = "queue_waiting"
    OPERATOR_ASSIGNED = "operator_assigned"
    OPERATOR_CHAT = "operator_chat"
    RESOLVED = "resolved"
    ESCALATED_TICKET = "escalated_ticket"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


ACTIVE_STATUSES = (SessionStatus.OPERATOR_ASSIGNED, SessionStatus.OPERATOR_CHAT)
TERMINAL_STATUSES = (SessionStatus.RESOLVED, SessionStatus.ESCALATED_TICKET)
OPEN_STATUSES = (SessionStatus.QUEUE_WAITING, *ACTIVE_STATUSES)


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return PRIORITY_RANK[self.value]


PRIORITY_RANK = {"urgent": 4, "high": 3, "medium": 2, "low": 1}


class SenderType(str, Enum):
    USER = "user"
    OPERATOR = "operator"
    SYSTEM = "system"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    SYSTEM = "system"


class TicketStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class EscalationReason(str, Enum):
    QUEUE_FULL = "queue_full"
    OPERATOR_TIMEOUT = "operator_timeout"
    QUEUE_TIMEOUT = "queue_timeout"
    OPERATOR_OFFLINE = "operator_offline"
    MANUAL_ESCALATION = "manual_escalation"
    SYSTEM_ERROR = "system_error"
