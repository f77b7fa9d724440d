from __future__ import annotations

from typing import Any


class LocalFixError(Exception):
    """Base domain error rendered as ``{"error": ..., "details": ...}``."""

    status_code = 500

    def __init__(self, message: str, *, details: Any | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(LocalFixError):
    """Raised when input is malformed, missing or out of range."""

    status_code = 400


class AuthError(LocalFixError):
    """Raised when no session and no valid bearer token are present."""

    status_code = 401


class ForbiddenError(LocalFixError):
    """Raised when the actor is authenticated but not permitted."""

    status_code = 403


class NotFoundError(LocalFixError):
    """Raised when the referenced entity does not exist."""

    status_code = 404


class ConflictError(LocalFixError):
    """Raised on uniqueness or invariant violations."""

    status_code = 409


class StateError(LocalFixError):
    """Raised when a transition is not allowed from the current state."""

    status_code = 400


class SchemaDriftError(LocalFixError):
    """Raised when the store rejects a write in a way no rewrite covers."""

    status_code = 500


class TransportError(LocalFixError):
    """Raised when the upstream store is unavailable or timed out."""

    status_code = 500


class StoreError(LocalFixError):
    """Raised when the store rejects a request; carries the store error code."""

    status_code = 500

    def __init__(self, code: str | None, message: str, *, details: Any | None = None, hint: Any | None = None) -> None:
        super().__init__(message, details=details)
        self.code = code
        self.hint = hint

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "details": {"code": self.code, "details": self.details, "hint": self.hint},
        }


UNIQUE_VIOLATION = "23505"
CHECK_VIOLATION = "23514"
UNKNOWN_COLUMN = "PGRST204"
NO_ROWS = "PGRST116"
INSUFFICIENT_PRIVILEGE = "42501"


def raise_for_store_error(code: str | None, message: str, *, details: Any | None = None, hint: Any | None = None) -> None:
    if code == UNIQUE_VIOLATION:
        raise ConflictError(message, details={"code": code, "details": details})
    if code == NO_ROWS:
        raise NotFoundError(message)
    if code == INSUFFICIENT_PRIVILEGE:
        raise ForbiddenError(message)
    raise StoreError(code, message, details=details, hint=hint)
