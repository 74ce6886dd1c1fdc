"""
Shared FastAPI dependencies for the WorkSettle backend.

Provides the async database session, the store bundle built on it, the
notification wiring, and authentication dependencies that turn a JWT
Bearer token into a ``Caller``.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Annotated, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from worksettle.api.errors import settlement_error_to_http
from worksettle.core.config import settings
from worksettle.core.errors import PermissionDenied, Unauthenticated
from worksettle.services.notificationService import BackgroundDispatcher, NotificationService
from worksettle.stores.sql import SqlStorage

# ---------------------------------------------------------------------------
# Async engine & session factory
# ---------------------------------------------------------------------------
# Created once at import time.  ``expire_on_commit=False`` keeps loaded
# instances usable after the services commit mid-request.
# ---------------------------------------------------------------------------

engine = create_async_engine(
    settings.database_url,
    echo=settings.sql_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a request-scoped ``AsyncSession``; committed on success,
    rolled back on error.

    Usage in a route::

        @router.get("/items")
        async def list_items(db: DBSession):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


DBSession = Annotated[AsyncSession, Depends(get_db)]


def get_storage(db: DBSession) -> SqlStorage:
    return SqlStorage(db)


StorageDep = Annotated[SqlStorage, Depends(get_storage)]


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

notification_dispatcher = BackgroundDispatcher()


def get_notification_service() -> NotificationService:
    return NotificationService(async_session_factory, settings.admin_user_ids)


def get_dispatcher() -> BackgroundDispatcher:
    return notification_dispatcher


Notifier = Annotated[NotificationService, Depends(get_notification_service)]
Dispatcher = Annotated[BackgroundDispatcher, Depends(get_dispatcher)]


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Caller:
    """Identity asserted by a verified JWT (``sub`` and ``role`` claims)."""
    user_id: str
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == settings.admin_role


_bearer_scheme = HTTPBearer(auto_error=False)


def decode_caller(token: str) -> Caller:
    """Verify the token signature and expiry and extract the caller.

    Raises:
        Unauthenticated: Invalid, expired, or missing ``sub``.
    """
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token has expired")
    except jwt.InvalidTokenError:
        raise Unauthenticated("Invalid token")

    subject = claims.get("sub")
    if not subject:
        raise Unauthenticated("Token has no subject")
    return Caller(user_id=str(subject), role=claims.get("role"))


async def get_optional_caller(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(_bearer_scheme)],
) -> Optional[Caller]:
    """``None`` for anonymous requests; 401 for a token that fails verification."""
    if credentials is None:
        return None
    try:
        return decode_caller(credentials.credentials)
    except Unauthenticated as exc:
        raise settlement_error_to_http(exc)


async def get_current_caller(
    caller: Annotated[Optional[Caller], Depends(get_optional_caller)],
) -> Caller:
    if caller is None:
        raise settlement_error_to_http(Unauthenticated("Authentication required"))
    return caller


async def require_admin(
    caller: Annotated[Caller, Depends(get_current_caller)],
) -> Caller:
    if not caller.is_admin:
        raise settlement_error_to_http(PermissionDenied("Admin privileges required"))
    return caller


OptionalCaller = Annotated[Optional[Caller], Depends(get_optional_caller)]
CurrentCaller = Annotated[Caller, Depends(get_current_caller)]
AdminCaller = Annotated[Caller, Depends(require_admin)]
