from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional


class DeskError(Exception):
    """
    Base class for business-rule failures raised by the services.

    Each subclass carries the HTTP status the API renders it with; the JSON
    envelope is {"error": message, "details": details?}.
    """

    status_code: int = 400

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationFailed(DeskError):
    status_code = 400


class NotFound(DeskError):
    status_code = 404


class Conflict(DeskError):
    status_code = 409


class InvalidState(DeskError):
    status_code = 400


class Unauthenticated(DeskError):
    status_code = 401


class Unauthorized(DeskError):
    status_code = 403


def reject_nulls(changes: Mapping[str, Any], fields: Iterable[str]) -> None:
    """
    Raise ValidationFailed when a patch sets any of `fields` to null.
    """
    missing = [key for key in fields if key in changes and changes[key] is None]
    if missing:
        raise ValidationFailed(
            "Validation failed",
            details=[{"field": key, "message": f"{key} cannot be null"} for key in missing],
        )
