"""Integration tests for the real-time routing hub.

Drives RoutingHub.dispatch() with fake sockets against the real services.

Tests:
  - operator:connect binds the operator and answers with identity and stats
  - a full chat: assignment push, customer join, accept, messages, end
  - typing indicators go to the other participant only
  - customer join is refused for finished sessions
  - an operator socket dropping escalates their chat to the customer
  - a second connection for the same operator keeps them online and in their chat
"""

from __future__ import annotations

import uuid

import pytest

from livedesk.realtime.connections import Connection
from livedesk.realtime.hub import RoutingHub


def _frame(event: str, **data) -> dict:
    return {"event": event, "data": data}


async def _connect_operator(hub, new_socket, operator):
    socket = new_socket()
    connection = Connection(socket)
    await hub.dispatch(connection, _frame("operator:connect", operatorId=str(operator.id)))
    return socket, connection


async def _join_customer(hub, new_socket, session_id, user_id="cust-1"):
    socket = new_socket()
    connection = Connection(socket)
    await hub.dispatch(
        connection,
        _frame("customer:join_session", sessionId=str(session_id), userId=user_id),
    )
    return socket, connection


class TestOperatorConnect:
    @pytest.mark.asyncio
    async def test_connect(self, desk, make_operator, new_socket) -> None:
        hub = RoutingHub(desk)
        carol = await make_operator("Carol", online=False)

        socket, connection = await _connect_operator(hub, new_socket, carol)

        assert hub.registry.operator(carol.id) is connection
        connected = socket.last("operator:connected")
        assert connected["operatorId"] == str(carol.id)
        assert connected["presence"] == "available"
        assert socket.last("system:stats")["operators_online"] == 1

    @pytest.mark.asyncio
    async def test_unknown_operator_rejected(self, desk, new_socket) -> None:
        hub = RoutingHub(desk)
        socket = new_socket()
        connection = Connection(socket)

        await hub.dispatch(connection, _frame("operator:connect", operatorId=str(uuid.uuid4())))

        assert socket.last("error")["code"] == "OPERATOR_NOT_FOUND"
        assert hub.registry.operators == {}
        assert connection.role is None


class TestChatFlow:
    """End-to-end conversation over the hub."""

    @pytest.mark.asyncio
    async def test_full_conversation(self, desk, make_operator, request_chat, new_socket) -> None:
        hub = RoutingHub(desk)
        alice = await make_operator("Alice", online=False)
        op_socket, _ = await _connect_operator(hub, new_socket, alice)

        session = (await request_chat("Card declined")).session
        assigned = op_socket.last("session:operator_assigned")
        assert assigned["sessionId"] == str(session.id)
        assert assigned["question"] == "Card declined"
        assert op_socket.last("queue:new_session")["sessionId"] == str(session.id)

        cust_socket, _ = await _join_customer(hub, new_socket, session.id)
        joined = cust_socket.last("session:joined")
        assert joined["status"] == "operator_assigned"
        assert op_socket.last("customer:connected")["userId"] == "cust-1"

        await hub.dispatch(
            hub.registry.operator(alice.id),
            _frame("operator:accept_chat", sessionId=str(session.id)),
        )
        accepted = op_socket.last("chat:accepted")
        assert accepted["status"] == "operator_chat"
        assert accepted["messages"][0]["senderType"] == "system"
        assert cust_socket.last("chat:operator_joined")["operatorName"] == "Alice"

        await hub.dispatch(
            hub.registry.customer(session.id),
            _frame("chat:message", sessionId=str(session.id), message="It says declined"),
        )
        for socket in (op_socket, cust_socket):
            message = socket.last("chat:new_message")
            assert message["message"] == "It says declined"
            assert message["senderType"] == "user"
            assert message["senderId"] == "cust-1"

        await hub.dispatch(
            hub.registry.operator(alice.id),
            _frame("chat:message", sessionId=str(session.id), message="Try another card"),
        )
        assert cust_socket.last("chat:new_message")["senderType"] == "operator"

        await hub.dispatch(
            hub.registry.operator(alice.id),
            _frame("operator:end_chat", sessionId=str(session.id)),
        )
        assert cust_socket.last("chat:ended")["reason"] == "operator_ended"
        assert op_socket.last("chat:ended")["sessionId"] == str(session.id)
        assert session.id not in hub.registry.groups

    @pytest.mark.asyncio
    async def test_typing_goes_to_other_side(
        self, desk, make_operator, request_chat, new_socket
    ) -> None:
        hub = RoutingHub(desk)
        alice = await make_operator("Alice", online=False)
        op_socket, op_conn = await _connect_operator(hub, new_socket, alice)
        session = (await request_chat()).session
        await hub.dispatch(op_conn, _frame("operator:accept_chat", sessionId=str(session.id)))
        cust_socket, cust_conn = await _join_customer(hub, new_socket, session.id)

        await hub.dispatch(cust_conn, _frame("chat:typing", sessionId=str(session.id)))

        typing = op_socket.last("chat:typing")
        assert typing["senderType"] == "user"
        assert typing["isTyping"] is True
        assert "chat:typing" not in cust_socket.events()

    @pytest.mark.asyncio
    async def test_operator_cannot_write_to_foreign_chat(
        self, desk, make_operator, request_chat, new_socket
    ) -> None:
        hub = RoutingHub(desk)
        await make_operator("Alice")
        session = (await request_chat()).session
        bob = await make_operator("Bob", online=False)
        bob_socket, bob_conn = await _connect_operator(hub, new_socket, bob)

        await hub.dispatch(
            bob_conn, _frame("chat:message", sessionId=str(session.id), message="hi")
        )

        assert bob_socket.last("error")["code"] == "INVALID_STATE"

    @pytest.mark.asyncio
    async def test_queue_status(self, desk, request_chat, new_socket) -> None:
        hub = RoutingHub(desk)
        await request_chat("first")
        second = (await request_chat("second")).session
        cust_socket, cust_conn = await _join_customer(hub, new_socket, second.id)

        await hub.dispatch(cust_conn, _frame("queue:status"))

        position = cust_socket.last("queue:position")
        assert position["position"] == 2
        assert position["aheadCount"] == 1
        assert position["estimatedWait"] == 3


class TestJoinRules:
    @pytest.mark.asyncio
    async def test_join_finished_session(
        self, desk, make_operator, request_chat, new_socket
    ) -> None:
        hub = RoutingHub(desk)
        alice = await make_operator("Alice")
        session = (await request_chat()).session
        async with desk.unit() as services:
            await services.queue.end_chat(session.id, alice.id)

        cust_socket, _ = await _join_customer(hub, new_socket, session.id)

        assert cust_socket.last("error")["code"] == "INVALID_STATE"
        assert hub.registry.customer(session.id) is None

    @pytest.mark.asyncio
    async def test_join_unknown_session(self, desk, new_socket) -> None:
        hub = RoutingHub(desk)
        cust_socket, _ = await _join_customer(hub, new_socket, uuid.uuid4())

        assert cust_socket.last("error")["code"] == "SESSION_NOT_FOUND"


class TestDisconnects:
    @pytest.mark.asyncio
    async def test_operator_drop_escalates_chat(
        self, desk, make_operator, request_chat, new_socket
    ) -> None:
        hub = RoutingHub(desk)
        alice = await make_operator("Alice", online=False)
        _, op_conn = await _connect_operator(hub, new_socket, alice)
        session = (await request_chat()).session
        await hub.dispatch(op_conn, _frame("operator:accept_chat", sessionId=str(session.id)))
        cust_socket, _ = await _join_customer(hub, new_socket, session.id)

        await hub.handle_disconnect(op_conn)

        escalated = cust_socket.last("session:escalated")
        assert escalated["reason"] == "operator_offline"
        assert escalated["ticketId"]
        assert hub.registry.operator(alice.id) is None
        async with desk.unit() as services:
            operator = await services.store.get_operator(alice.id)
        assert operator.is_online is False

    @pytest.mark.asyncio
    async def test_second_tab_keeps_operator_online(
        self, desk, make_operator, new_socket
    ) -> None:
        hub = RoutingHub(desk)
        alice = await make_operator("Alice", online=False)
        _, first_conn = await _connect_operator(hub, new_socket, alice)
        _, second_conn = await _connect_operator(hub, new_socket, alice)

        await hub.handle_disconnect(first_conn)

        assert hub.registry.operator(alice.id) is second_conn
        async with desk.unit() as services:
            operator = await services.store.get_operator(alice.id)
        assert operator.is_online is True

    @pytest.mark.asyncio
    async def test_dropping_newest_tab_falls_back_to_older(
        self, desk, make_operator, new_socket
    ) -> None:
        hub = RoutingHub(desk)
        alice = await make_operator("Alice", online=False)
        _, first_conn = await _connect_operator(hub, new_socket, alice)
        _, second_conn = await _connect_operator(hub, new_socket, alice)

        await hub.handle_disconnect(second_conn)

        assert hub.registry.operator(alice.id) is first_conn
        async with desk.unit() as services:
            operator = await services.store.get_operator(alice.id)
        assert operator.is_online is True

    @pytest.mark.asyncio
    async def test_second_tab_keeps_live_chat(
        self, desk, make_operator, request_chat, new_socket
    ) -> None:
        hub = RoutingHub(desk)
        alice = await make_operator("Alice", online=False)
        _, first_conn = await _connect_operator(hub, new_socket, alice)
        session = (await request_chat()).session
        await hub.dispatch(first_conn, _frame("operator:accept_chat", sessionId=str(session.id)))
        _, cust_conn = await _join_customer(hub, new_socket, session.id)
        second_socket, second_conn = await _connect_operator(hub, new_socket, alice)

        await hub.handle_disconnect(first_conn)
        await hub.dispatch(
            cust_conn, _frame("chat:message", sessionId=str(session.id), message="Still there?")
        )

        assert second_conn in hub.registry.members(session.id)
        assert second_socket.last("chat:new_message")["message"] == "Still there?"
        async with desk.unit() as services:
            current = await services.store.get_session(session.id)
        assert current.status == "operator_chat"

    @pytest.mark.asyncio
    async def test_customer_drop_notifies_operator(
        self, desk, make_operator, request_chat, new_socket
    ) -> None:
        hub = RoutingHub(desk)
        alice = await make_operator("Alice", online=False)
        op_socket, _ = await _connect_operator(hub, new_socket, alice)
        session = (await request_chat()).session
        _, cust_conn = await _join_customer(hub, new_socket, session.id)

        await hub.handle_disconnect(cust_conn)

        assert op_socket.last("customer:disconnected")["sessionId"] == str(session.id)
        assert hub.registry.customer(session.id) is None
