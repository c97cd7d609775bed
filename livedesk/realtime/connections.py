"""Connection bookkeeping for the routing hub.

    operators: operator_id → Connection (the most recent live tab)
    customers: session_id → Connection
    groups:    session_id → {connection_id: Connection}

A group holds the customer and, once accepted, the operator of one chat.
Sends to a closed socket are logged and the connection is dropped from the
maps, the same way a broadcast cleans up dead clients.
"""

from __future__ import annotations

import uuid
from typing import Any, Protocol
from uuid import UUID

import structlog
from fastapi.encoders import jsonable_encoder

logger = structlog.get_logger(__name__)


class SocketLike(Protocol):
    async def send_json(self, data: Any) -> None: ...


class Connection:
    """One client socket plus the identity it has announced."""

    def __init__(self, websocket: SocketLike, connection_id: str | None = None) -> None:
        self.websocket = websocket
        self.id = connection_id or uuid.uuid4().hex
        self.role: str | None = None  # 'operator' | 'customer'
        self.operator_id: UUID | None = None
        self.operator_name: str | None = None
        self.session_id: UUID | None = None
        self.user_id: str | None = None
        self.closed = False

    @property
    def is_operator(self) -> bool:
        return self.role == "operator" and self.operator_id is not None

    @property
    def is_customer(self) -> bool:
        return self.role == "customer" and self.session_id is not None

    @property
    def sender_id(self) -> str | None:
        if self.is_operator:
            return str(self.operator_id)
        return self.user_id

    async def send(self, event: Any, data: Any) -> bool:
        if self.closed:
            return False
        name = event.value if hasattr(event, "value") else event
        try:
            await self.websocket.send_json({"event": name, "data": jsonable_encoder(data)})
            return True
        except Exception as e:
            logger.warning("websocket_send_failed", connection_id=self.id, error=str(e))
            self.closed = True
            return False


class ConnectionRegistry:
    """Identity and group maps for live connections."""

    def __init__(self) -> None:
        self.operators: dict[UUID, Connection] = {}
        self._operator_tabs: dict[UUID, list[Connection]] = {}
        self.customers: dict[UUID, Connection] = {}
        self.groups: dict[UUID, dict[str, Connection]] = {}

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def bind_operator(self, connection: Connection, operator_id: UUID, name: str | None) -> None:
        connection.role = "operator"
        connection.operator_id = operator_id
        connection.operator_name = name
        self.operators[operator_id] = connection
        tabs = self._operator_tabs.setdefault(operator_id, [])
        if connection not in tabs:
            tabs.append(connection)

    def unbind_operator(self, connection: Connection) -> None:
        """Drop one operator connection.

        When other tabs of the same operator are still live, the newest takes
        over the identity and every chat group the dropped one was in.
        """
        operator_id = connection.operator_id
        successor = None
        if operator_id is not None:
            tabs = [c for c in self._operator_tabs.get(operator_id, []) if c is not connection]
            live = [c for c in tabs if not c.closed]
            if live:
                self._operator_tabs[operator_id] = live
                successor = live[-1]
            else:
                self._operator_tabs.pop(operator_id, None)
            if self.operators.get(operator_id) is connection:
                if successor is not None:
                    self.operators[operator_id] = successor
                else:
                    del self.operators[operator_id]

        if successor is not None:
            for members in self.groups.values():
                if connection.id in members:
                    members[successor.id] = successor
        self.leave_all(connection)

    def bind_customer(self, connection: Connection, session_id: UUID, user_id: str | None) -> None:
        connection.role = "customer"
        connection.session_id = session_id
        connection.user_id = user_id
        self.customers[session_id] = connection

    def unbind_customer(self, connection: Connection) -> None:
        if connection.session_id is not None:
            if self.customers.get(connection.session_id) is connection:
                del self.customers[connection.session_id]
        self.leave_all(connection)

    def operator(self, operator_id: UUID | None) -> Connection | None:
        if operator_id is None:
            return None
        return self.operators.get(operator_id)

    def customer(self, session_id: UUID) -> Connection | None:
        return self.customers.get(session_id)

    # ------------------------------------------------------------------
    # Session groups
    # ------------------------------------------------------------------

    def join(self, session_id: UUID, connection: Connection) -> None:
        self.groups.setdefault(session_id, {})[connection.id] = connection

    def leave(self, session_id: UUID, connection: Connection) -> None:
        members = self.groups.get(session_id)
        if members is None:
            return
        members.pop(connection.id, None)
        if not members:
            del self.groups[session_id]

    def leave_all(self, connection: Connection) -> None:
        for session_id in [sid for sid, members in self.groups.items() if connection.id in members]:
            self.leave(session_id, connection)

    def dissolve(self, session_id: UUID) -> None:
        self.groups.pop(session_id, None)

    def members(self, session_id: UUID) -> list[Connection]:
        return list(self.groups.get(session_id, {}).values())

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def broadcast(
        self,
        session_id: UUID,
        event: Any,
        data: Any,
        exclude: Connection | None = None,
    ) -> int:
        delivered = 0
        for connection in self.members(session_id):
            if connection is exclude:
                continue
            if await connection.send(event, data):
                delivered += 1
            else:
                self.leave(session_id, connection)
        return delivered

    async def broadcast_operators(
        self, event: Any, data: Any, exclude: Connection | None = None
    ) -> int:
        delivered = 0
        for connection in list(self.operators.values()):
            if connection is exclude:
                continue
            if await connection.send(event, data):
                delivered += 1
        return delivered
