"""WorkSettle API -- Main Application Entry Point

Creates the FastAPI application, configures CORS middleware, registers
the payment, urgent fee and report routers under the /api/v1 prefix, and
runs the urgent fee escalation on a fixed period when enabled.

Run with::

    uvicorn worksettle.main:app --host 0.0.0.0 --port 8000 --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from worksettle.core.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan: startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Startup:
      - Create missing tables when ``auto_create_schema`` is set.
      - Start the periodic urgent fee escalation when
        ``escalation_scheduler_enabled`` is set.

    Shutdown:
      - Stop the scheduler and wait for in-flight notifications.
    """
    from worksettle.api.deps import async_session_factory, engine, notification_dispatcher
    from worksettle.jobs.scheduler import PeriodicScheduler
    from worksettle.jobs.urgentFeeEscalator import ScheduledUrgentFeeEscalation
    from worksettle.models import Base
    from worksettle.services.notificationService import NotificationService

    if settings.auto_create_schema:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema created")

    scheduler = PeriodicScheduler()
    if settings.escalation_scheduler_enabled:
        scheduler.add(
            ScheduledUrgentFeeEscalation(
                async_session_factory,
                alerter=NotificationService(async_session_factory, settings.admin_user_ids),
            ),
            period_seconds=settings.escalation_period_seconds,
        )
        await scheduler.start()

    yield

    await scheduler.stop()
    await notification_dispatcher.drain()


# ---------------------------------------------------------------------------
# Application instance
# ---------------------------------------------------------------------------

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# CORS middleware
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health", tags=["Health"])
async def health():
    """Lightweight health check for load balancers and readiness probes."""
    return {"status": "ok", "version": settings.app_version}


# ---------------------------------------------------------------------------
# Register API route modules
# ---------------------------------------------------------------------------
# Each router defines its own prefix (/payments, /urgent-fees, /reports);
# mounting under /api/v1 yields /api/v1/payments, etc.
# ---------------------------------------------------------------------------

from worksettle.api.routes import payments, reports, urgent_fees  # noqa: E402

_prefix = settings.api_v1_prefix

app.include_router(payments.router, prefix=_prefix)
app.include_router(urgent_fees.router, prefix=_prefix)
app.include_router(reports.router, prefix=_prefix)
