"""
Urgent fee administration: manual increases, escalation run statistics,
and the global escalation settings.

Authorization (admin-only for writes) is enforced by the API layer; these
functions assume the caller has already been checked.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

from worksettle.core.errors import InvalidArgument, NotFound
from worksettle.jobs.urgentFeeEscalator import EscalationConfig
from worksettle.models.urgent_fee import (
    EscalationRunStats,
    ManualUrgentFeeIncrease,
    UrgentFeeSettings,
)
from worksettle.services.feeCalculator import HUNDRED, ZERO, ensure_utc, to_decimal
from worksettle.stores.interfaces import Storage

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_MANUAL_INCREASE_PERCENT = Decimal("5")
STATS_QUERY_LIMIT = 100

DATE_RANGES: dict[str, timedelta] = {
    "today": timedelta(days=0),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
}


# ---------------------------------------------------------------------------
# DTOs
# ---------------------------------------------------------------------------

@dataclass
class ManualIncreaseResult:
    work_order_id: str
    previous_percent: Decimal
    new_percent: Decimal
    increase_percent: Decimal
    reached_max: bool


@dataclass
class EscalationStatsSummary:
    total_runs: int = 0
    total_processed: int = 0
    total_increased: int = 0
    total_errors: int = 0
    critical_runs: int = 0
    average_duration_ms: float = 0.0
    success_rate: float = 0.0


@dataclass
class EscalationStatsReport:
    date_range: str
    since: datetime
    summary: EscalationStatsSummary
    runs: list[EscalationRunStats] = field(default_factory=list)


@dataclass(frozen=True)
class EffectiveUrgentFeeSettings:
    enabled: bool
    interval_seconds: int
    step_percent: Decimal
    max_percent: Decimal
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Manual increase
# ---------------------------------------------------------------------------

async def manual_increase(
    storage: Storage,
    work_order_id: str,
    admin_id: str,
    increase_percent: Any = None,
    reason: Optional[str] = None,
    config: EscalationConfig = EscalationConfig(),
    now: Optional[datetime] = None,
) -> ManualIncreaseResult:
    """Raise a work order's urgent fee by hand, capped at its maximum.

    Args:
        storage: Store bundle; committed on success.
        work_order_id: Target work order.
        admin_id: Operator performing the increase (recorded in history).
        increase_percent: Percentage points to add (default 5).
        reason: Free-text justification kept in the history.
        config: Supplies the maximum for work orders without one.
        now: Override of the current time.

    Raises:
        InvalidArgument: ``work_order_id`` missing, increase not positive, or
            the fee is already at its maximum.
        NotFound: Unknown work order.
    """
    if not work_order_id:
        raise InvalidArgument("work_order_id is required")
    increase = (
        DEFAULT_MANUAL_INCREASE_PERCENT if increase_percent is None else to_decimal(increase_percent)
    )
    if increase <= ZERO:
        raise InvalidArgument("increase_percent must be greater than 0")

    work_order = await storage.work_orders.get(work_order_id)
    if work_order is None:
        raise NotFound(f"Work order {work_order_id} not found")

    now = now or datetime.now(timezone.utc)
    current = (
        to_decimal(work_order.current_urgent_fee_percent)
        if work_order.current_urgent_fee_percent is not None
        else to_decimal(work_order.urgent_fee_percent)
    )
    max_percent = (
        to_decimal(work_order.urgent_fee_max_percent)
        if work_order.urgent_fee_max_percent is not None
        else config.max_percent
    )
    new_percent = min(current + increase, max_percent)
    if new_percent <= current:
        raise InvalidArgument("Urgent fee is already at its maximum")

    fields: dict[str, Any] = {
        "current_urgent_fee_percent": new_percent,
        "last_urgent_fee_update": now,
        "urgent_fee_increase_count": (work_order.urgent_fee_increase_count or 0) + 1,
    }
    if new_percent == max_percent:
        fields["urgent_fee_max_reached_at"] = now
    storage.work_orders.apply(work_order, fields)

    await storage.logs.add_manual_increase(
        ManualUrgentFeeIncrease(
            work_order_id=work_order_id,
            old_percent=current,
            new_percent=new_percent,
            increase_percent=increase,
            reason=reason,
            admin_id=admin_id,
            created_at=now,
        )
    )
    await storage.commit()

    logger.info(
        "Admin %s raised urgent fee of work order %s: %s%% -> %s%%",
        admin_id,
        work_order_id,
        current,
        new_percent,
    )
    return ManualIncreaseResult(
        work_order_id=work_order_id,
        previous_percent=current,
        new_percent=new_percent,
        increase_percent=increase,
        reached_max=new_percent == max_percent,
    )


# ---------------------------------------------------------------------------
# Run statistics
# ---------------------------------------------------------------------------

def _range_start(date_range: str, now: datetime) -> datetime:
    if date_range not in DATE_RANGES:
        raise InvalidArgument(
            f"date_range must be one of: {', '.join(DATE_RANGES)}"
        )
    today = ensure_utc(now).replace(hour=0, minute=0, second=0, microsecond=0)
    return today - DATE_RANGES[date_range]


def summarize_runs(runs: list[EscalationRunStats]) -> EscalationStatsSummary:
    summary = EscalationStatsSummary(total_runs=len(runs))
    if not runs:
        return summary

    summary.total_processed = sum(r.processed_count or 0 for r in runs)
    summary.total_increased = sum(r.increased_count or 0 for r in runs)
    summary.total_errors = sum(r.error_count or 0 for r in runs)
    summary.critical_runs = sum(1 for r in runs if r.is_critical)
    summary.average_duration_ms = round(
        sum(r.duration_ms or 0 for r in runs) / len(runs), 2
    )
    if summary.total_processed > 0:
        rate = (
            Decimal(summary.total_processed - summary.total_errors)
            / Decimal(summary.total_processed)
            * HUNDRED
        )
        summary.success_rate = float(rate.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
    return summary


async def get_run_stats(
    storage: Storage,
    date_range: str = "today",
    now: Optional[datetime] = None,
) -> EscalationStatsReport:
    """Recent escalation runs (at most 100) with aggregate totals.

    ``success_rate`` is ``(processed - errors) / processed * 100`` rounded to
    two places, 0 when nothing was processed.
    """
    since = _range_start(date_range, now or datetime.now(timezone.utc))
    runs = await storage.logs.list_run_stats(since, STATS_QUERY_LIMIT)
    return EscalationStatsReport(
        date_range=date_range,
        since=since,
        summary=summarize_runs(runs),
        runs=runs,
    )


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

def _effective(row: Optional[UrgentFeeSettings], config: EscalationConfig) -> EffectiveUrgentFeeSettings:
    if row is None:
        return EffectiveUrgentFeeSettings(
            enabled=config.enabled,
            interval_seconds=config.interval_seconds,
            step_percent=config.step_percent,
            max_percent=config.max_percent,
        )
    return EffectiveUrgentFeeSettings(
        enabled=row.enabled,
        interval_seconds=row.interval_seconds,
        step_percent=to_decimal(row.step_percent),
        max_percent=to_decimal(row.max_percent),
        updated_by=row.updated_by,
        updated_at=row.updated_at,
    )


async def get_settings(
    storage: Storage, config: EscalationConfig = EscalationConfig()
) -> EffectiveUrgentFeeSettings:
    """Stored settings, or the configured defaults when none were saved."""
    return _effective(await storage.settings.get_urgent_fee_settings(), config)


async def update_settings(
    storage: Storage,
    admin_id: str,
    enabled: Optional[bool] = None,
    interval_seconds: Optional[int] = None,
    step_percent: Any = None,
    max_percent: Any = None,
    config: EscalationConfig = EscalationConfig(),
    now: Optional[datetime] = None,
) -> EffectiveUrgentFeeSettings:
    """Partially update the global escalation settings.

    Omitted values keep their current (or default) value.

    Raises:
        InvalidArgument: Listing every out-of-range value.
    """
    current = await get_settings(storage, config)
    merged = {
        "enabled": current.enabled if enabled is None else enabled,
        "interval_seconds": current.interval_seconds if interval_seconds is None else interval_seconds,
        "step_percent": current.step_percent if step_percent is None else to_decimal(step_percent),
        "max_percent": current.max_percent if max_percent is None else to_decimal(max_percent),
    }

    errors: list[str] = []
    if merged["interval_seconds"] <= 0:
        errors.append("interval_seconds must be greater than 0")
    if merged["step_percent"] <= ZERO:
        errors.append("step_percent must be greater than 0")
    if not ZERO < merged["max_percent"] <= HUNDRED:
        errors.append("max_percent must be greater than 0 and at most 100")
    if errors:
        raise InvalidArgument("; ".join(errors), errors=errors)

    row = await storage.settings.save_urgent_fee_settings(
        {**merged, "updated_by": admin_id, "updated_at": now or datetime.now(timezone.utc)}
    )
    await storage.commit()
    logger.info("Urgent fee settings updated by %s: %s", admin_id, merged)
    return _effective(row, config)
