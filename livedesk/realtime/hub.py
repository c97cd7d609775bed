"""Real-time routing hub.

One receive loop per connection, so events from a single client are
handled strictly in order. Inbound frames are validated, dispatched by
event name, and every state change is delegated to the services inside
its own unit of work. The hub never changes session or presence state by
itself.

Errors go back to the originating connection only, as an ``error`` event.
Domain events published by the services (after commit) are translated
into wire events for the right participants.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import structlog
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from livedesk.core.exceptions import LiveDeskError, StateError
from livedesk.models.enums import ACTIVE_STATUSES, TERMINAL_STATUSES, SenderType, SessionStatus
from livedesk.models.message import Message
from livedesk.realtime.connections import Connection, ConnectionRegistry
from livedesk.realtime.protocol import (
    PAYLOAD_MODELS,
    ChatMessagePayload,
    Envelope,
    HeartbeatPayload,
    InboundEvent,
    JoinSessionPayload,
    OperatorConnectPayload,
    OperatorDisconnectPayload,
    OutboundEvent,
    QueueStatusPayload,
    SessionActionPayload,
    TypingPayload,
)
from livedesk.services.desk import SupportDesk
from livedesk.services.events import DomainEvent

logger = structlog.get_logger(__name__)

Handler = Callable[[Connection, Any], Awaitable[None]]

CHAT_ENDED_TEXT = "The operator has ended the chat"


def serialize_message(message: Message) -> dict[str, Any]:
    return {
        "id": message.id,
        "sessionId": message.session_id,
        "senderType": message.sender_type,
        "senderId": message.sender_id,
        "message": message.content,
        "messageType": message.message_type,
        "createdAt": message.created_at,
    }


def _describe(error: PydanticValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


class RoutingHub:
    """Routes client events to the services and domain events to clients."""

    def __init__(self, desk: SupportDesk, registry: ConnectionRegistry | None = None) -> None:
        self._desk = desk
        self.registry = registry or ConnectionRegistry()
        self._handlers: dict[InboundEvent, Handler] = {
            InboundEvent.OPERATOR_CONNECT: self._on_operator_connect,
            InboundEvent.OPERATOR_DISCONNECT: self._on_operator_disconnect,
            InboundEvent.CUSTOMER_JOIN_SESSION: self._on_customer_join,
            InboundEvent.CHAT_MESSAGE: self._on_chat_message,
            InboundEvent.CHAT_TYPING: self._on_typing,
            InboundEvent.OPERATOR_ACCEPT_CHAT: self._on_accept_chat,
            InboundEvent.OPERATOR_END_CHAT: self._on_end_chat,
            InboundEvent.QUEUE_STATUS: self._on_queue_status,
            InboundEvent.HEARTBEAT: self._on_heartbeat,
        }
        self._domain_handlers: dict[str, Callable[[dict[str, Any]], Awaitable[None]]] = {
            DomainEvent.SESSION_QUEUED.value: self._route_session_queued,
            DomainEvent.SESSION_OPERATOR_ASSIGNED.value: self._route_operator_assigned,
            DomainEvent.CHAT_OPERATOR_JOINED.value: self._route_operator_joined,
            DomainEvent.CHAT_ENDED.value: self._route_chat_ended,
            DomainEvent.SESSION_ESCALATED.value: self._route_session_escalated,
            DomainEvent.OPERATOR_STATUS_CHANGE.value: self._route_status_change,
            DomainEvent.SYSTEM_STATS.value: self._route_system_stats,
        }
        desk.events.subscribe(self.on_domain_event)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def serve(self, websocket: WebSocket) -> None:
        """Receive loop for one accepted WebSocket."""
        connection = Connection(websocket)
        logger.info("websocket_connected", connection_id=connection.id)
        try:
            while True:
                try:
                    raw = await websocket.receive_json()
                except json.JSONDecodeError:
                    await self._send_error(connection, "INVALID_JSON", "Frame is not valid JSON")
                    continue
                await self.dispatch(connection, raw)
        except WebSocketDisconnect:
            logger.info("websocket_disconnected", connection_id=connection.id)
        finally:
            await self.handle_disconnect(connection)

    async def dispatch(self, connection: Connection, raw: Any) -> None:
        """Validate one inbound frame and run its handler."""
        event_name = raw.get("event") if isinstance(raw, dict) else None
        try:
            envelope = Envelope.model_validate(raw)
        except PydanticValidationError:
            await self._send_error(
                connection, "UNKNOWN_EVENT", f"Unknown or malformed event: {event_name}", event_name
            )
            return

        try:
            payload: BaseModel = PAYLOAD_MODELS[envelope.event].model_validate(envelope.data)
        except PydanticValidationError as e:
            await self._send_error(connection, "VALIDATION_ERROR", _describe(e), event_name)
            return

        handler = self._handlers[envelope.event]
        try:
            await handler(connection, payload)
        except LiveDeskError as e:
            logger.info(
                "websocket_event_rejected",
                connection_id=connection.id,
                ws_event=event_name,
                code=e.code,
            )
            await self._send_error(connection, e.code, e.message, event_name)
        except Exception as e:
            logger.error(
                "websocket_handler_failed",
                connection_id=connection.id,
                ws_event=event_name,
                error=str(e),
            )
            await self._send_error(connection, "INTERNAL_ERROR", "Internal error", event_name)

    async def handle_disconnect(self, connection: Connection) -> None:
        connection.closed = True

        if connection.is_operator:
            operator_id = connection.operator_id
            self.registry.unbind_operator(connection)
            if self.registry.operator(operator_id) is not None:
                # Another live connection still speaks for this operator
                return
            try:
                async with self._desk.unit() as services:
                    await services.presence.disconnect(operator_id)
            except Exception as e:
                logger.error(
                    "operator_disconnect_failed", operator_id=str(operator_id), error=str(e)
                )
            return

        if connection.is_customer:
            session_id = connection.session_id
            self.registry.unbind_customer(connection)
            try:
                async with self._desk.unit() as services:
                    session = await services.queue.get_session(session_id)
            except LiveDeskError:
                return
            if session.status in ACTIVE_STATUSES:
                operator_conn = self.registry.operator(session.operator_id)
                if operator_conn is not None:
                    await operator_conn.send(
                        OutboundEvent.CUSTOMER_DISCONNECTED, {"sessionId": session_id}
                    )
            logger.info("customer_disconnected", session_id=str(session_id))

    # ------------------------------------------------------------------
    # Inbound handlers
    # ------------------------------------------------------------------

    async def _on_operator_connect(
        self, connection: Connection, payload: OperatorConnectPayload
    ) -> None:
        self.registry.bind_operator(connection, payload.operator_id, payload.name)
        try:
            async with self._desk.unit() as services:
                operator = await services.presence.connect(
                    payload.operator_id, connection_id=connection.id
                )
                live_chat = None
                if operator.current_session_id is not None:
                    held = await services.queue.get_session(operator.current_session_id)
                    if (
                        held.status == SessionStatus.OPERATOR_CHAT
                        and held.operator_id == operator.id
                    ):
                        live_chat = held.id
                stats = await services.stats.system_stats()
        except LiveDeskError:
            self.registry.unbind_operator(connection)
            connection.role = None
            connection.operator_id = None
            raise

        connection.operator_name = operator.name
        if live_chat is not None:
            # A reload or second tab picks up the accepted chat
            self.registry.join(live_chat, connection)
        await connection.send(
            OutboundEvent.OPERATOR_CONNECTED,
            {
                "operatorId": operator.id,
                "name": operator.name,
                "presence": operator.presence,
            },
        )
        await connection.send(OutboundEvent.SYSTEM_STATS, stats)

    async def _on_operator_disconnect(
        self, connection: Connection, payload: OperatorDisconnectPayload
    ) -> None:
        operator_id = self._require_operator(connection)
        async with self._desk.unit() as services:
            await services.presence.disconnect(operator_id)
        self.registry.unbind_operator(connection)
        connection.role = None
        connection.operator_id = None

    async def _on_customer_join(self, connection: Connection, payload: JoinSessionPayload) -> None:
        async with self._desk.unit() as services:
            session = await services.queue.get_session(payload.session_id)
            if session.status in TERMINAL_STATUSES:
                raise StateError("Chat session has already ended")
            wait = await services.queue.estimate_wait(payload.session_id)
            history = await services.queue.chat_history(payload.session_id)

        self.registry.bind_customer(connection, session.id, payload.user_id or session.user_id)
        self.registry.join(session.id, connection)

        await connection.send(
            OutboundEvent.SESSION_JOINED,
            {
                "sessionId": session.id,
                "status": session.status,
                "position": wait.queue_position,
                "estimatedWait": wait.estimated_minutes,
            },
        )
        if history:
            await connection.send(
                OutboundEvent.CHAT_HISTORY,
                {"sessionId": session.id, "messages": [serialize_message(m) for m in history]},
            )
        if session.status in ACTIVE_STATUSES:
            operator_conn = self.registry.operator(session.operator_id)
            if operator_conn is not None:
                await operator_conn.send(
                    OutboundEvent.CUSTOMER_CONNECTED,
                    {"sessionId": session.id, "userId": connection.user_id},
                )
        logger.info("customer_joined", session_id=str(session.id), connection_id=connection.id)

    async def _on_chat_message(self, connection: Connection, payload: ChatMessagePayload) -> None:
        sender_type = self._sender_type(connection, payload.session_id)
        async with self._desk.unit() as services:
            if sender_type is SenderType.OPERATOR:
                session = await services.queue.get_session(payload.session_id)
                if session.operator_id != connection.operator_id:
                    raise StateError("Chat is not assigned to this operator")
                await services.presence.heartbeat(connection.operator_id)
            message = await services.queue.post_message(
                payload.session_id,
                sender_type,
                connection.sender_id,
                payload.message,
                payload.message_type,
            )
        await self.registry.broadcast(
            payload.session_id, OutboundEvent.CHAT_NEW_MESSAGE, serialize_message(message)
        )

    async def _on_typing(self, connection: Connection, payload: TypingPayload) -> None:
        sender_type = self._sender_type(connection, payload.session_id)
        await self.registry.broadcast(
            payload.session_id,
            OutboundEvent.CHAT_TYPING,
            {
                "sessionId": payload.session_id,
                "senderType": sender_type.value,
                "senderId": connection.sender_id,
                "isTyping": payload.is_typing,
            },
            exclude=connection,
        )

    async def _on_accept_chat(
        self, connection: Connection, payload: SessionActionPayload
    ) -> None:
        operator_id = self._require_operator(connection)
        async with self._desk.unit() as services:
            session = await services.queue.accept_chat(operator_id, payload.session_id)
            history = await services.queue.chat_history(payload.session_id)

        self.registry.join(session.id, connection)
        await connection.send(
            OutboundEvent.CHAT_ACCEPTED,
            {
                "sessionId": session.id,
                "status": session.status,
                "question": session.initial_question,
                "userId": session.user_id,
                "userEmail": session.user_email,
                "messages": [serialize_message(m) for m in history],
            },
        )

    async def _on_end_chat(self, connection: Connection, payload: SessionActionPayload) -> None:
        operator_id = self._require_operator(connection)
        async with self._desk.unit() as services:
            await services.queue.end_chat(payload.session_id, operator_id)

    async def _on_queue_status(
        self, connection: Connection, payload: QueueStatusPayload
    ) -> None:
        session_id = payload.session_id or connection.session_id
        async with self._desk.unit() as services:
            if session_id is not None:
                session = await services.queue.get_session(session_id)
                wait = await services.queue.estimate_wait(session_id)
            stats = await services.stats.system_stats() if connection.is_operator else None

        if session_id is not None:
            await connection.send(
                OutboundEvent.QUEUE_POSITION,
                {
                    "sessionId": session_id,
                    "status": session.status,
                    "position": wait.queue_position,
                    "aheadCount": wait.ahead_count,
                    "estimatedWait": wait.estimated_minutes,
                },
            )
        if stats is not None:
            await connection.send(OutboundEvent.SYSTEM_STATS, stats)

    async def _on_heartbeat(self, connection: Connection, payload: HeartbeatPayload) -> None:
        if connection.is_operator:
            async with self._desk.unit() as services:
                await services.presence.heartbeat(connection.operator_id)
        await connection.send(
            OutboundEvent.HEARTBEAT_ACK, {"timestamp": datetime.now(timezone.utc)}
        )

    def _require_operator(self, connection: Connection) -> UUID:
        if not connection.is_operator:
            raise StateError("Operator identity not established")
        return connection.operator_id

    def _sender_type(self, connection: Connection, session_id: UUID) -> SenderType:
        if connection.is_operator:
            return SenderType.OPERATOR
        if connection.is_customer and connection.session_id == session_id:
            return SenderType.USER
        raise StateError("Join the chat session first")

    async def _send_error(
        self,
        connection: Connection,
        code: str,
        message: str,
        event: str | None = None,
    ) -> None:
        await connection.send(
            OutboundEvent.ERROR, {"code": code, "message": message, "event": event}
        )

    # ------------------------------------------------------------------
    # Domain events → wire events
    # ------------------------------------------------------------------

    async def on_domain_event(self, event: str, payload: dict[str, Any]) -> None:
        route = self._domain_handlers.get(event)
        if route is not None:
            await route(payload)

    def _participants(self, session_id: UUID, operator_id: UUID | None) -> list[Connection]:
        seen: dict[str, Connection] = {c.id: c for c in self.registry.members(session_id)}
        for connection in (
            self.registry.customer(session_id),
            self.registry.operator(operator_id),
        ):
            if connection is not None:
                seen.setdefault(connection.id, connection)
        return list(seen.values())

    async def _route_session_queued(self, payload: dict[str, Any]) -> None:
        await self.registry.broadcast_operators(
            OutboundEvent.QUEUE_NEW_SESSION,
            {
                "sessionId": payload["session_id"],
                "priority": payload["priority"],
                "position": payload["queue_position"],
                "question": payload["question"],
            },
        )

    async def _route_operator_assigned(self, payload: dict[str, Any]) -> None:
        session_id = UUID(payload["session_id"])
        operator_id = UUID(payload["operator_id"])
        customer = self.registry.customer(session_id)
        if customer is not None:
            await customer.send(
                OutboundEvent.SESSION_OPERATOR_ASSIGNED,
                {"sessionId": session_id, "operatorId": operator_id},
            )
        operator = self.registry.operator(operator_id)
        if operator is not None:
            await operator.send(
                OutboundEvent.SESSION_OPERATOR_ASSIGNED,
                {
                    "sessionId": session_id,
                    "question": payload["question"],
                    "priority": payload["priority"],
                    "timeoutAt": payload["response_timeout_at"],
                },
            )

    async def _route_operator_joined(self, payload: dict[str, Any]) -> None:
        customer = self.registry.customer(UUID(payload["session_id"]))
        if customer is not None:
            await customer.send(
                OutboundEvent.CHAT_OPERATOR_JOINED,
                {
                    "sessionId": payload["session_id"],
                    "operatorId": payload["operator_id"],
                    "operatorName": payload["operator_name"],
                },
            )

    async def _route_chat_ended(self, payload: dict[str, Any]) -> None:
        session_id = UUID(payload["session_id"])
        operator_id = UUID(payload["operator_id"])
        for connection in self._participants(session_id, operator_id):
            await connection.send(
                OutboundEvent.CHAT_ENDED,
                {
                    "sessionId": session_id,
                    "reason": payload["reason"],
                    "message": CHAT_ENDED_TEXT,
                },
            )
        self.registry.dissolve(session_id)

    async def _route_session_escalated(self, payload: dict[str, Any]) -> None:
        session_id = UUID(payload["session_id"])
        operator_id = UUID(payload["operator_id"]) if payload.get("operator_id") else None
        for connection in self._participants(session_id, operator_id):
            await connection.send(
                OutboundEvent.SESSION_ESCALATED,
                {
                    "sessionId": session_id,
                    "ticketId": payload["ticket_id"],
                    "reason": payload["reason"],
                    "message": payload["message"],
                },
            )
        self.registry.dissolve(session_id)

    async def _route_status_change(self, payload: dict[str, Any]) -> None:
        operator_id = UUID(payload["operator_id"])
        await self.registry.broadcast_operators(
            OutboundEvent.OPERATOR_STATUS_CHANGE,
            {
                "operatorId": operator_id,
                "name": payload["name"],
                "presence": payload["presence"],
                "isOnline": payload["is_online"],
            },
            exclude=self.registry.operator(operator_id),
        )

    async def _route_system_stats(self, payload: dict[str, Any]) -> None:
        await self.registry.broadcast_operators(OutboundEvent.SYSTEM_STATS, payload)
