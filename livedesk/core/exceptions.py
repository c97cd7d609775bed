"""Custom exception classes for structured error handling."""

from typing import Any


class LiveDeskError(Exception):
    """Base exception for all LiveDesk errors."""

    def __init__(self, code: str, message: str, status_code: int = 500) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message}}


class ValidationError(LiveDeskError):
    def __init__(self, message: str = "Required input is missing or invalid") -> None:
        super().__init__(code="VALIDATION_ERROR", message=message, status_code=400)


class NotFoundError(LiveDeskError):
    def __init__(self, message: str = "Resource not found", code: str = "NOT_FOUND") -> None:
        super().__init__(code=code, message=message, status_code=404)


class SessionNotFoundError(NotFoundError):
    def __init__(self, message: str = "Chat session not found") -> None:
        super().__init__(message=message, code="SESSION_NOT_FOUND")


class OperatorNotFoundError(NotFoundError):
    def __init__(self, message: str = "Operator not found") -> None:
        super().__init__(message=message, code="OPERATOR_NOT_FOUND")


class TicketNotFoundError(NotFoundError):
    def __init__(self, message: str = "Ticket not found") -> None:
        super().__init__(message=message, code="TICKET_NOT_FOUND")


class StateError(LiveDeskError):
    def __init__(self, message: str = "Operation not allowed in the current state") -> None:
        super().__init__(code="INVALID_STATE", message=message, status_code=409)


class ConflictError(LiveDeskError):
    def __init__(self, message: str = "Resource already exists") -> None:
        super().__init__(code="CONFLICT", message=message, status_code=409)


class ExternalServiceError(LiveDeskError):
    def __init__(self, message: str = "External service unavailable") -> None:
        super().__init__(code="EXTERNAL_SERVICE_ERROR", message=message, status_code=503)
