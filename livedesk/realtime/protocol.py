"""Wire protocol for the real-time channel.

Every frame in either direction is ``{"event": <name>, "data": {...}}``.
Inbound payload fields use the camelCase names browser clients send.
"""

import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from livedesk.models.enums import MessageType


class InboundEvent(str, Enum):
    OPERATOR_CONNECT = "operator:connect"
    OPERATOR_DISCONNECT = "operator:disconnect"
    CUSTOMER_JOIN_SESSION = "customer:join_session"
    CHAT_MESSAGE = "chat:message"
    CHAT_TYPING = "chat:typing"
    OPERATOR_ACCEPT_CHAT = "operator:accept_chat"
    OPERATOR_END_CHAT = "operator:end_chat"
    QUEUE_STATUS = "queue:status"
    HEARTBEAT = "heartbeat"


class OutboundEvent(str, Enum):
    OPERATOR_CONNECTED = "operator:connected"
    OPERATOR_STATUS_CHANGE = "operator:status_change"
    SESSION_JOINED = "session:joined"
    SESSION_OPERATOR_ASSIGNED = "session:operator_assigned"
    SESSION_ESCALATED = "session:escalated"
    CHAT_HISTORY = "chat:history"
    CHAT_NEW_MESSAGE = "chat:new_message"
    CHAT_TYPING = "chat:typing"
    CHAT_OPERATOR_JOINED = "chat:operator_joined"
    CHAT_ACCEPTED = "chat:accepted"
    CHAT_ENDED = "chat:ended"
    CUSTOMER_CONNECTED = "customer:connected"
    CUSTOMER_DISCONNECTED = "customer:disconnected"
    QUEUE_POSITION = "queue:position"
    QUEUE_NEW_SESSION = "queue:new_session"
    SYSTEM_STATS = "system:stats"
    HEARTBEAT_ACK = "heartbeat_ack"
    ERROR = "error"


class Envelope(BaseModel):
    event: InboundEvent
    data: dict[str, Any] = Field(default_factory=dict)


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class OperatorConnectPayload(_Payload):
    operator_id: uuid.UUID = Field(alias="operatorId")
    name: str | None = None


class OperatorDisconnectPayload(_Payload):
    pass


class JoinSessionPayload(_Payload):
    session_id: uuid.UUID = Field(alias="sessionId")
    user_id: str | None = Field(default=None, alias="userId")


class ChatMessagePayload(_Payload):
    session_id: uuid.UUID = Field(alias="sessionId")
    message: str = Field(min_length=1)
    message_type: MessageType = Field(default=MessageType.TEXT, alias="messageType")


class TypingPayload(_Payload):
    session_id: uuid.UUID = Field(alias="sessionId")
    is_typing: bool = Field(default=True, alias="isTyping")


class SessionActionPayload(_Payload):
    session_id: uuid.UUID = Field(alias="sessionId")


class QueueStatusPayload(_Payload):
    session_id: uuid.UUID | None = Field(default=None, alias="sessionId")


class HeartbeatPayload(_Payload):
    """Empty: the operator is whoever the connection identified as."""


PAYLOAD_MODELS: dict[InboundEvent, type[_Payload]] = {
    InboundEvent.OPERATOR_CONNECT: OperatorConnectPayload,
    InboundEvent.OPERATOR_DISCONNECT: OperatorDisconnectPayload,
    InboundEvent.CUSTOMER_JOIN_SESSION: JoinSessionPayload,
    InboundEvent.CHAT_MESSAGE: ChatMessagePayload,
    InboundEvent.CHAT_TYPING: TypingPayload,
    InboundEvent.OPERATOR_ACCEPT_CHAT: SessionActionPayload,
    InboundEvent.OPERATOR_END_CHAT: SessionActionPayload,
    InboundEvent.QUEUE_STATUS: QueueStatusPayload,
    InboundEvent.HEARTBEAT: HeartbeatPayload,
}
