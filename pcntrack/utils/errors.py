"""Standardized error payloads and typed domain errors."""
from __future__ import annotations

from typing import Any


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


class DomainError(Exception):
    """Base class for errors raised by services and rendered by the API layer."""

    status_code = 400
    default_code = "DOMAIN_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_response(self) -> dict[str, Any]:
        return error_response(self.code, self.message, self.details)


class ValidationError(DomainError):
    """Malformed input rejected before any write."""

    status_code = 422
    default_code = "VALIDATION_ERROR"


class NotFoundError(DomainError):
    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(DomainError):
    status_code = 409
    default_code = "CONFLICT"


class AuthorizationError(DomainError):
    status_code = 403
    default_code = "FORBIDDEN"


class InfrastructureError(DomainError):
    """Storage or upstream dependency unavailable; callers may retry."""

    status_code = 503
    default_code = "INFRASTRUCTURE_ERROR"


__all__ = [
    "error_response",
    "DomainError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "AuthorizationError",
    "InfrastructureError",
]
