"""Errors raised by Courier.

Failed webhook attempts (bad status, timeouts, disabled targets) are
recorded on the delivery and never raised. The exceptions below cover bad
caller input and an unusable store; each carries the HTTP status the API
answers with.
"""

from __future__ import annotations

from typing import ClassVar


class CourierError(Exception):
    """Base class for Courier errors.

    Attributes:
        message: Human-readable description.
        details: Extra fields included in the API error body.
    """

    code: ClassVar[str] = "courier_error"
    status_code: ClassVar[int] = 500

    def __init__(self, message: str, **details: object) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, object]:
        """Error body: ``{"error": {"code", "message", **details}}``."""
        return {"error": {"code": self.code, "message": self.message, **self.details}}


class ValidationError(CourierError):
    """An argument is outside its allowed range."""

    code = "validation_error"
    status_code = 400

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}", field=field)
        self.field = field


class NotFoundError(CourierError):
    """A referenced event, target or delivery does not exist."""

    code = "not_found"
    status_code = 404

    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            resource_type=resource_type,
            resource_id=resource_id,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class StorageError(CourierError):
    """The store cannot serve requests (not initialized, backend down)."""

    code = "storage_error"
