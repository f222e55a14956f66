"""
Domain Errors

Every error raised by the service layer carries the HTTP status it maps to,
so route handlers can let them propagate to the exception handlers in
``tableside.main``.
"""

from typing import Any, Optional


class TablesideError(Exception):
    """Base class for errors reported to API clients."""

    status_code: int = 400
    default_message: str = "Request failed"

    def __init__(
        self,
        message: Optional[str] = None,
        errors: Optional[list[dict[str, Any]]] = None,
    ):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON error envelope."""
        body: dict[str, Any] = {"success": False, "message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationFailed(TablesideError):
    status_code = 400
    default_message = "Validation failed"

    @classmethod
    def from_messages(cls, messages: list[str], message: Optional[str] = None) -> "ValidationFailed":
        return cls(message, errors=[{"msg": m} for m in messages])


class AuthenticationRequired(TablesideError):
    status_code = 401
    default_message = "Authentication required"


class PermissionDenied(TablesideError):
    status_code = 403
    default_message = "Access denied"


class NotFound(TablesideError):
    status_code = 404
    default_message = "Not found"


class PersistenceError(TablesideError):
    status_code = 500
    default_message = "Database operation failed"
