"""
Urgent Fee Escalator -- Periodic Job.

Every period (10 minutes by default) this job raises the urgent-fee
surcharge on work orders that are still open:

1. Scans open work orders with ``urgent_fee_enabled`` in pages of 500,
   ordered by id.
2. For each, computes
   ``candidate = min(base + floor(elapsed / interval) * step, max)`` where
   ``elapsed`` is the time since ``urgent_fee_increase_start_at``.
3. Writes the candidate only when it is strictly greater than the current
   value.  Re-running over the same data is therefore a no-op, and two
   overlapping runs cannot lower a fee.
4. Commits each page's increases together.
5. Persists an ``EscalationRunStats`` record and alerts operators when any
   document or page failed.

A run-level failure is persisted as a critical stats record, alerted, and
re-raised so the scheduler sees it.

Usage with a simple cron runner::

    python -m worksettle.jobs.urgentFeeEscalator
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from worksettle.core.config import Settings, settings
from worksettle.models.urgent_fee import EscalationRunStats, UrgentFeeSettings
from worksettle.models.work_order import WorkOrder
from worksettle.services.batchCoordinator import BatchOutcome, run_paginated
from worksettle.services.feeCalculator import ensure_utc, to_decimal
from worksettle.services.notificationService import EscalationAlert
from worksettle.stores.interfaces import Storage

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EscalationConfig:
    """Every tunable of the escalation run.

    ``interval_seconds``, ``step_percent`` and ``max_percent`` may be
    overridden at runtime by the admin-edited ``UrgentFeeSettings`` row.
    ``step_percent`` applies to work orders without their own
    ``urgent_fee_increase_step``; ``max_percent`` seeds manual increases on
    work orders without a maximum.
    """
    enabled: bool = True
    period_seconds: int = 600
    interval_seconds: int = 600
    step_percent: Decimal = Decimal("5")
    max_percent: Decimal = Decimal("50")
    batch_size: int = 500
    max_recorded_errors: int = 10
    send_notification: bool = True

    @classmethod
    def from_settings(cls, app_settings: Settings) -> EscalationConfig:
        return cls(
            period_seconds=app_settings.escalation_period_seconds,
            interval_seconds=app_settings.escalation_interval_seconds,
            step_percent=Decimal(app_settings.escalation_step_percent),
            max_percent=Decimal(app_settings.escalation_max_percent),
            batch_size=app_settings.escalation_batch_size,
            max_recorded_errors=app_settings.escalation_max_recorded_errors,
            send_notification=app_settings.send_notifications,
        )

    def with_overrides(self, row: Optional[UrgentFeeSettings]) -> EscalationConfig:
        if row is None:
            return self
        return dataclasses.replace(
            self,
            enabled=row.enabled,
            interval_seconds=row.interval_seconds,
            step_percent=to_decimal(row.step_percent),
            max_percent=to_decimal(row.max_percent),
        )


# ---------------------------------------------------------------------------
# Planning (pure)
# ---------------------------------------------------------------------------

class MissingEscalationFields(ValueError):
    """The work order lacks a field the escalation formula needs."""


@dataclass(frozen=True)
class UrgentFeeIncrease:
    work_order_id: str
    previous_percent: Decimal
    new_percent: Decimal
    reached_max: bool


def compute_candidate_percent(
    base_percent: Decimal,
    elapsed_seconds: float,
    interval_seconds: int,
    step_percent: Decimal,
    max_percent: Decimal,
) -> Optional[Decimal]:
    """``min(base + floor(elapsed / interval) * step, max)``; None before the start time."""
    if elapsed_seconds <= 0:
        return None
    increments = math.floor(elapsed_seconds / interval_seconds)
    return min(base_percent + increments * step_percent, max_percent)


def plan_urgent_fee_increase(
    work_order: WorkOrder,
    now: datetime,
    config: EscalationConfig,
) -> Optional[UrgentFeeIncrease]:
    """Decide whether (and to what) the work order's urgent fee should rise.

    Raises:
        MissingEscalationFields: start time, base percent or maximum missing.
    """
    missing = [
        name
        for name in ("urgent_fee_increase_start_at", "urgent_fee_percent", "urgent_fee_max_percent")
        if getattr(work_order, name) is None
    ]
    if missing:
        raise MissingEscalationFields(", ".join(missing))

    base = to_decimal(work_order.urgent_fee_percent)
    max_percent = to_decimal(work_order.urgent_fee_max_percent)
    step = (
        to_decimal(work_order.urgent_fee_increase_step)
        if work_order.urgent_fee_increase_step is not None
        else config.step_percent
    )
    elapsed = (ensure_utc(now) - ensure_utc(work_order.urgent_fee_increase_start_at)).total_seconds()

    candidate = compute_candidate_percent(base, elapsed, config.interval_seconds, step, max_percent)
    if candidate is None:
        return None

    current = (
        to_decimal(work_order.current_urgent_fee_percent)
        if work_order.current_urgent_fee_percent is not None
        else base
    )
    if candidate <= current:
        return None

    return UrgentFeeIncrease(
        work_order_id=work_order.id,
        previous_percent=current,
        new_percent=candidate,
        reached_max=candidate == max_percent,
    )


def increase_fields(
    work_order: WorkOrder, increase: UrgentFeeIncrease, now: datetime
) -> dict[str, object]:
    fields: dict[str, object] = {
        "current_urgent_fee_percent": increase.new_percent,
        "last_urgent_fee_update": now,
        # Read-then-write: may undercount if two runs overlap
        "urgent_fee_increase_count": (work_order.urgent_fee_increase_count or 0) + 1,
    }
    if increase.reached_max:
        fields["urgent_fee_max_reached_at"] = now
    return fields


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------

class EscalationAlerter(Protocol):
    async def escalation_alert(self, alert: EscalationAlert) -> None: ...


class UrgentFeeEscalator:
    """One escalation run over a ``Storage`` bundle."""

    name = "urgent-fee-escalation"

    def __init__(
        self,
        storage: Storage,
        config: EscalationConfig = EscalationConfig(),
        alerter: Optional[EscalationAlerter] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._storage = storage
        self._config = config
        self._alerter = alerter
        self._clock = clock

    async def run(self) -> EscalationRunStats:
        """Execute one full scan and return the persisted stats record.

        Raises:
            Exception: Any run-level failure, after it has been recorded and
                alerted.
        """
        now = self._clock()
        started = time.monotonic()
        skipped = 0
        processed = 0
        outcome: Optional[BatchOutcome] = None

        try:
            config = self._config.with_overrides(
                await self._storage.settings.get_urgent_fee_settings()
            )
            if not config.enabled:
                logger.info("Urgent fee escalation is disabled; skipping run")
                return EscalationRunStats(
                    started_at=now,
                    processed_count=0,
                    increased_count=0,
                    skipped_count=0,
                    error_count=0,
                    duration_ms=0,
                    errors=[],
                    is_critical=False,
                )

            async def process(work_order: WorkOrder) -> Optional[UrgentFeeIncrease]:
                nonlocal skipped, processed
                processed += 1
                try:
                    return plan_urgent_fee_increase(work_order, now, config)
                except MissingEscalationFields as exc:
                    skipped += 1
                    logger.warning(
                        "Work order %s skipped, missing escalation fields: %s",
                        work_order.id,
                        exc,
                    )
                    return None

            async def commit(pairs: list[tuple[WorkOrder, UrgentFeeIncrease]]) -> None:
                try:
                    for work_order, increase in pairs:
                        self._storage.work_orders.apply(
                            work_order, increase_fields(work_order, increase, now)
                        )
                    await self._storage.commit()
                except Exception:
                    await self._storage.rollback()
                    raise
                for _, increase in pairs:
                    logger.info(
                        "Urgent fee of work order %s raised %s%% -> %s%%",
                        increase.work_order_id,
                        increase.previous_percent,
                        increase.new_percent,
                    )

            outcome = await run_paginated(
                fetch_page=self._storage.work_orders.fetch_escalation_page,
                process=process,
                commit=commit,
                key=lambda work_order: work_order.id,
                page_size=config.batch_size,
            )

            stats = EscalationRunStats(
                started_at=now,
                processed_count=outcome.processed_count,
                increased_count=outcome.mutated_count,
                skipped_count=skipped,
                error_count=outcome.error_count,
                duration_ms=int((time.monotonic() - started) * 1000),
                errors=[e.to_dict() for e in outcome.errors[: config.max_recorded_errors]],
                is_critical=False,
            )
            await self._storage.logs.add_run_stats(stats)
            await self._storage.commit()
        except Exception as exc:
            logger.exception("Urgent fee escalation run failed")
            await self._record_critical(now, started, processed, outcome, exc)
            raise

        logger.info(
            "Urgent fee escalation finished: processed=%d increased=%d skipped=%d errors=%d (%dms)",
            stats.processed_count,
            stats.increased_count,
            stats.skipped_count,
            stats.error_count,
            stats.duration_ms,
        )
        if stats.error_count > 0:
            await self._alert(
                EscalationAlert(
                    processed_count=stats.processed_count,
                    increased_count=stats.increased_count,
                    error_count=stats.error_count,
                    errors=list(stats.errors or []),
                )
            )
        return stats

    async def _record_critical(
        self,
        now: datetime,
        started: float,
        processed: int,
        outcome: Optional[BatchOutcome],
        exc: Exception,
    ) -> None:
        errors = [e.to_dict() for e in outcome.errors] if outcome is not None else []
        increased = outcome.mutated_count if outcome is not None else 0
        critical = EscalationRunStats(
            started_at=now,
            processed_count=processed,
            increased_count=increased,
            skipped_count=0,
            error_count=len(errors) + 1,
            duration_ms=int((time.monotonic() - started) * 1000),
            errors=errors[: self._config.max_recorded_errors],
            is_critical=True,
            critical_error=str(exc),
        )
        try:
            await self._storage.rollback()
            await self._storage.logs.add_run_stats(critical)
            await self._storage.commit()
        except Exception:
            logger.exception("Could not persist critical escalation stats")

        await self._alert(
            EscalationAlert(
                processed_count=processed,
                increased_count=increased,
                error_count=critical.error_count,
                errors=list(critical.errors or []),
                critical_error=str(exc),
            )
        )

    async def _alert(self, alert: EscalationAlert) -> None:
        if not self._config.send_notification or self._alerter is None:
            return
        try:
            await self._alerter.escalation_alert(alert)
        except Exception:
            logger.exception("Failed to alert admins about urgent fee escalation")


# ---------------------------------------------------------------------------
# Session-owning entry points
# ---------------------------------------------------------------------------

async def run_urgent_fee_escalation(
    session_factory: async_sessionmaker[AsyncSession],
    config: Optional[EscalationConfig] = None,
    alerter: Optional[EscalationAlerter] = None,
) -> EscalationRunStats:
    from worksettle.stores.sql import SqlStorage

    async with session_factory() as session:
        escalator = UrgentFeeEscalator(
            SqlStorage(session),
            config=config or EscalationConfig.from_settings(settings),
            alerter=alerter,
        )
        return await escalator.run()


class ScheduledUrgentFeeEscalation:
    """``PeriodicTask`` adapter: a fresh session per run."""

    name = UrgentFeeEscalator.name

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: Optional[EscalationConfig] = None,
        alerter: Optional[EscalationAlerter] = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config or EscalationConfig.from_settings(settings)
        self._alerter = alerter

    async def run(self) -> EscalationRunStats:
        return await run_urgent_fee_escalation(
            self._session_factory, config=self._config, alerter=self._alerter
        )


async def _cli_main() -> None:
    """Run a single escalation pass from the command line."""
    from worksettle.api.deps import async_session_factory
    from worksettle.services.notificationService import NotificationService

    stats = await run_urgent_fee_escalation(
        async_session_factory,
        alerter=NotificationService(async_session_factory, settings.admin_user_ids),
    )
    print(  # noqa: T201
        f"Urgent fee escalation completed: processed={stats.processed_count} "
        f"increased={stats.increased_count} errors={stats.error_count}"
    )


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(_cli_main())
