"""
E2E test fixtures for the WorkSettle backend.

Provides:
- An in-process FastAPI test app with every settlement route registered
- httpx AsyncClient wired via ASGI transport (no network needed)
- A fresh in-memory SQLite database per test
- Seed helpers for work orders in various payment states
- Signed JWTs for a customer, a worker and an admin

FCM is never reached: the notification service dependency is replaced by
an ``AsyncMock`` so tests can assert on what would have been sent.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator
from unittest.mock import AsyncMock

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.pool import StaticPool

from worksettle.core.config import settings
from worksettle.models.base import Base
from worksettle.models.payment import PaymentStatus
from worksettle.models.work_order import WorkOrder, WorkOrderStatus
from worksettle.services.notificationService import BackgroundDispatcher


@compiles(JSONB, "sqlite")
def compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


# ---------------------------------------------------------------------------
# Test IDs
# ---------------------------------------------------------------------------

CUSTOMER_USER_ID = "customer-e2e"
WORKER_USER_ID = "worker-e2e"
ADMIN_USER_ID = "admin-e2e"


def make_token(user_id: str, role: str | None = None, expires_in: int = 3600) -> str:
    claims: dict[str, Any] = {
        "sub": user_id,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    }
    if role is not None:
        claims["role"] = role
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return auth_header(make_token(ADMIN_USER_ID, role=settings.admin_role))


@pytest.fixture
def customer_headers() -> dict[str, str]:
    return auth_header(make_token(CUSTOMER_USER_ID))


# ---------------------------------------------------------------------------
# Async engine + session (in-memory SQLite, one database per test)
# ---------------------------------------------------------------------------

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        yield session

    await engine.dispose()


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

def build_seed_work_order(**overrides: Any) -> WorkOrder:
    values: dict[str, Any] = dict(
        id="wo-e2e-1",
        customer_id=CUSTOMER_USER_ID,
        worker_id=WORKER_USER_ID,
        status=WorkOrderStatus.OPEN,
        base_fee=Decimal("100.00"),
        urgent_fee_percent=Decimal("10"),
        current_urgent_fee_percent=None,
        platform_fee_percent=Decimal("10"),
        payment_status=None,
        urgent_fee_enabled=False,
        urgent_fee_increase_start_at=None,
        urgent_fee_max_percent=Decimal("50"),
        urgent_fee_increase_step=Decimal("5"),
        urgent_fee_increase_count=0,
        created_at=datetime.now(timezone.utc),
    )
    values.update(overrides)
    return WorkOrder(**values)


@pytest_asyncio.fixture
async def seed_work_order(db_session: AsyncSession):
    """Insert and commit a work order; keyword arguments override defaults."""

    async def _seed(**overrides: Any) -> WorkOrder:
        work_order = build_seed_work_order(**overrides)
        db_session.add(work_order)
        await db_session.commit()
        return work_order

    return _seed


@pytest_asyncio.fixture
async def paid_work_order(seed_work_order) -> WorkOrder:
    return await seed_work_order(id="wo-paid", payment_status=PaymentStatus.PAID)


# ---------------------------------------------------------------------------
# App + client
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_notifier() -> AsyncMock:
    notifier = AsyncMock()
    notifier.payment_status_changed = AsyncMock(return_value=None)
    notifier.payment_calculated = AsyncMock(return_value=None)
    notifier.escalation_alert = AsyncMock(return_value=None)
    return notifier


@pytest.fixture
def dispatcher() -> BackgroundDispatcher:
    return BackgroundDispatcher()


def _create_test_app(
    db_session_override: AsyncSession,
    notifier: AsyncMock,
    dispatcher: BackgroundDispatcher,
):
    """Build a FastAPI app with all routes registered and the DB and
    notification dependencies overridden."""
    from fastapi import FastAPI

    from worksettle.api.deps import get_db, get_dispatcher, get_notification_service
    from worksettle.api.routes.payments import router as payments_router
    from worksettle.api.routes.reports import router as reports_router
    from worksettle.api.routes.urgent_fees import router as urgent_fees_router

    app = FastAPI(title="WorkSettle Test")

    async def _override_get_db():
        yield db_session_override

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_notification_service] = lambda: notifier
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    app.include_router(payments_router, prefix="/api/v1")
    app.include_router(urgent_fees_router, prefix="/api/v1")
    app.include_router(reports_router, prefix="/api/v1")

    return app


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    mock_notifier: AsyncMock,
    dispatcher: BackgroundDispatcher,
) -> AsyncGenerator[AsyncClient, None]:
    """httpx AsyncClient connected to the test app via ASGI transport."""
    app = _create_test_app(db_session, mock_notifier, dispatcher)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await dispatcher.drain()
