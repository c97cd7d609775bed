"""Unit tests for the real-time wire protocol and hub dispatch errors.

Tests:
  - payloads accept the camelCase names browser clients send
  - chat:message requires a non-empty message
  - unknown events, invalid payloads and handler failures come back as
    ``error`` frames on the originating connection only
  - the receive loop answers invalid JSON and keeps reading
  - heartbeat and disconnect act only for the connection's own operator
"""

from __future__ import annotations

import json
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError

from livedesk.models.enums import MessageType
from livedesk.realtime.connections import Connection
from livedesk.realtime.hub import RoutingHub
from livedesk.realtime.protocol import (
    ChatMessagePayload,
    Envelope,
    InboundEvent,
    OperatorConnectPayload,
    TypingPayload,
)


def _hub() -> tuple[RoutingHub, MagicMock]:
    desk = MagicMock()
    desk.unit.side_effect = RuntimeError("database exploded")
    return RoutingHub(desk), desk


class _Socket:
    def __init__(self) -> None:
        self.sent: list[dict] = []

    async def send_json(self, data) -> None:
        self.sent.append(data)


class TestPayloads:
    """Inbound payload validation."""

    def test_envelope_parses_event_name(self) -> None:
        envelope = Envelope.model_validate({"event": "operator:accept_chat", "data": {}})
        assert envelope.event is InboundEvent.OPERATOR_ACCEPT_CHAT

    def test_camel_case_aliases(self) -> None:
        operator_id = uuid.uuid4()
        payload = OperatorConnectPayload.model_validate(
            {"operatorId": str(operator_id), "name": "Alice"}
        )
        assert payload.operator_id == operator_id

        typing = TypingPayload.model_validate({"sessionId": str(uuid.uuid4())})
        assert typing.is_typing is True

    def test_message_defaults_to_text(self) -> None:
        payload = ChatMessagePayload.model_validate(
            {"sessionId": str(uuid.uuid4()), "message": "hi"}
        )
        assert payload.message_type is MessageType.TEXT

    def test_empty_message_rejected(self) -> None:
        with pytest.raises(PydanticValidationError):
            ChatMessagePayload.model_validate({"sessionId": str(uuid.uuid4()), "message": ""})


class TestDispatchErrors:
    """Errors are reported to the sender as ``error`` frames."""

    @pytest.mark.asyncio
    async def test_unknown_event(self) -> None:
        hub, _ = _hub()
        socket = _Socket()
        await hub.dispatch(Connection(socket), {"event": "chat:shout", "data": {}})

        assert socket.sent[0]["event"] == "error"
        assert socket.sent[0]["data"]["code"] == "UNKNOWN_EVENT"
        assert socket.sent[0]["data"]["event"] == "chat:shout"

    @pytest.mark.asyncio
    async def test_frame_not_an_object(self) -> None:
        hub, _ = _hub()
        socket = _Socket()
        await hub.dispatch(Connection(socket), ["operator:connect"])

        assert socket.sent[0]["data"]["code"] == "UNKNOWN_EVENT"

    @pytest.mark.asyncio
    async def test_invalid_payload(self) -> None:
        hub, _ = _hub()
        socket = _Socket()
        await hub.dispatch(
            Connection(socket), {"event": "chat:message", "data": {"message": "hi"}}
        )

        error = socket.sent[0]["data"]
        assert error["code"] == "VALIDATION_ERROR"
        assert "sessionId" in error["message"]

    @pytest.mark.asyncio
    async def test_message_before_join(self) -> None:
        hub, desk = _hub()
        socket = _Socket()
        await hub.dispatch(
            Connection(socket),
            {"event": "chat:message", "data": {"sessionId": str(uuid.uuid4()), "message": "hi"}},
        )

        assert socket.sent[0]["data"]["code"] == "INVALID_STATE"
        desk.unit.assert_not_called()

    @pytest.mark.asyncio
    async def test_accept_requires_operator_identity(self) -> None:
        hub, _ = _hub()
        socket = _Socket()
        await hub.dispatch(
            Connection(socket),
            {"event": "operator:accept_chat", "data": {"sessionId": str(uuid.uuid4())}},
        )

        assert socket.sent[0]["data"]["code"] == "INVALID_STATE"

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_internal_error(self) -> None:
        hub, _ = _hub()
        socket = _Socket()
        connection = Connection(socket)
        hub.registry.bind_operator(connection, uuid.uuid4(), "Alice")
        await hub.dispatch(connection, {"event": "heartbeat", "data": {}})

        assert socket.sent[0]["event"] == "error"
        assert socket.sent[0]["data"]["code"] == "INTERNAL_ERROR"


class TestReceiveLoop:
    """serve() keeps reading after a bad frame and exits on disconnect."""

    @pytest.mark.asyncio
    async def test_invalid_json_then_heartbeat(self) -> None:
        hub, _ = _hub()
        websocket = MagicMock()
        websocket.send_json = AsyncMock()
        websocket.receive_json = AsyncMock(
            side_effect=[
                json.JSONDecodeError("Expecting value", "not json", 0),
                {"event": "heartbeat", "data": {}},
                WebSocketDisconnect(code=1000),
            ]
        )

        await hub.serve(websocket)

        frames = [c.args[0] for c in websocket.send_json.await_args_list]
        assert frames[0]["event"] == "error"
        assert frames[0]["data"]["code"] == "INVALID_JSON"
        assert frames[1]["event"] == "heartbeat_ack"


class TestIdentity:
    """Operator actions only count for the identity the connection announced."""

    @pytest.mark.asyncio
    async def test_heartbeat_ignores_claimed_operator_id(self) -> None:
        hub, desk = _hub()
        socket = _Socket()
        await hub.dispatch(
            Connection(socket),
            {"event": "heartbeat", "data": {"operatorId": str(uuid.uuid4())}},
        )

        desk.unit.assert_not_called()
        assert socket.sent[0]["event"] == "heartbeat_ack"

    @pytest.mark.asyncio
    async def test_disconnect_requires_operator_identity(self) -> None:
        hub, desk = _hub()
        socket = _Socket()
        await hub.dispatch(
            Connection(socket),
            {"event": "operator:disconnect", "data": {"operatorId": str(uuid.uuid4())}},
        )

        desk.unit.assert_not_called()
        assert socket.sent[0]["data"]["code"] == "INVALID_STATE"
