"""
Translation of settlement errors into HTTP responses.

Every route catches ``SettlementError`` and re-raises through
``settlement_error_to_http`` so clients always receive the same detail
shape::

    {"code": "invalid_argument", "message": "...", "errors": [...],
     "warnings": [...], "allowed_transitions": [...]}
"""

from __future__ import annotations

from fastapi import HTTPException, status

from worksettle.core.errors import (
    InvalidArgument,
    NotFound,
    PermissionDenied,
    SettlementError,
    Unauthenticated,
)

_STATUS_CODES: dict[type[SettlementError], int] = {
    Unauthenticated: status.HTTP_401_UNAUTHORIZED,
    PermissionDenied: status.HTTP_403_FORBIDDEN,
    InvalidArgument: status.HTTP_400_BAD_REQUEST,
    NotFound: status.HTTP_404_NOT_FOUND,
}


def settlement_error_to_http(exc: SettlementError) -> HTTPException:
    status_code = next(
        (code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
    return HTTPException(status_code=status_code, detail=exc.to_dict(), headers=headers)
