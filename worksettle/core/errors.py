"""
Settlement error taxonomy.

Services raise these; the API layer maps each class onto one HTTP status
code (see ``worksettle.api.errors``).

    SettlementError
    ├── Unauthenticated   (401)
    ├── PermissionDenied  (403)
    ├── InvalidArgument   (400)
    ├── NotFound          (404)
    └── Internal          (500)
"""

from __future__ import annotations

from typing import Any, Optional


class SettlementError(Exception):
    """Base class for errors raised by the settlement services."""

    code: str = "internal"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(message={self.message!r})"


class Unauthenticated(SettlementError):
    code = "unauthenticated"


class PermissionDenied(SettlementError):
    code = "permission_denied"


class NotFound(SettlementError):
    code = "not_found"


class Internal(SettlementError):
    code = "internal"


class InvalidArgument(SettlementError):
    """Rejected input.

    Carries every validation violation (``errors``), non-blocking
    ``warnings``, and for refused status transitions the list of statuses
    that *would* have been accepted.
    """

    code = "invalid_argument"

    def __init__(
        self,
        message: str,
        *,
        errors: Optional[list[str]] = None,
        warnings: Optional[list[str]] = None,
        allowed_transitions: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.errors = list(errors or [])
        self.warnings = list(warnings or [])
        self.allowed_transitions = allowed_transitions

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        if self.errors:
            payload["errors"] = self.errors
        if self.warnings:
            payload["warnings"] = self.warnings
        if self.allowed_transitions is not None:
            payload["allowed_transitions"] = self.allowed_transitions
        return payload
