"""WebSocket routing: wire protocol, connection registry and hub."""
