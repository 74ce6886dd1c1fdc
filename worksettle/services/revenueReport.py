"""
Platform revenue report.

Aggregates the platform fee earned on work orders created within a period,
broken down by work order status and by urgent-fee band.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from worksettle.core.errors import InvalidArgument
from worksettle.models.work_order import WorkOrder
from worksettle.services.feeCalculator import (
    ZERO,
    FeeInput,
    calculate_payment,
    ensure_utc,
    quantize_amount,
)
from worksettle.stores.interfaces import Storage

logger = logging.getLogger(__name__)

PERIODS: dict[str, timedelta] = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
}

# (label, inclusive upper bound); None = unbounded
URGENT_FEE_BANDS: list[tuple[str, Optional[Decimal]]] = [
    ("0%", Decimal("0")),
    ("1-10%", Decimal("10")),
    ("11-20%", Decimal("20")),
    ("21-30%", Decimal("30")),
    ("30%+", None),
]


@dataclass
class RevenueBucket:
    count: int = 0
    revenue: Decimal = ZERO


@dataclass
class PlatformRevenueReport:
    period: str
    start: datetime
    end: datetime
    total_revenue: Decimal = ZERO
    total_orders: int = 0
    average_revenue: Decimal = ZERO
    by_status: dict[str, RevenueBucket] = field(default_factory=dict)
    by_urgent_fee: dict[str, RevenueBucket] = field(
        default_factory=lambda: {label: RevenueBucket() for label, _ in URGENT_FEE_BANDS}
    )


def urgent_fee_band(percent: Decimal) -> str:
    for label, upper in URGENT_FEE_BANDS:
        if upper is None or percent <= upper:
            return label
    return URGENT_FEE_BANDS[-1][0]


def period_window(period: str, now: datetime) -> tuple[datetime, datetime]:
    if period not in PERIODS:
        raise InvalidArgument(f"period must be one of: {', '.join(PERIODS)}")
    end = ensure_utc(now)
    return end - PERIODS[period], end


def calculate_platform_revenue(
    work_orders: Iterable[WorkOrder],
    period: str,
    start: datetime,
    end: datetime,
) -> PlatformRevenueReport:
    """Sum platform fees over ``work_orders``.

    Work orders without a positive base fee earn nothing and are left out.
    """
    report = PlatformRevenueReport(period=period, start=start, end=end)

    for work_order in work_orders:
        fee_input = FeeInput.from_work_order(work_order)
        if fee_input.base_fee is None or fee_input.base_fee <= ZERO:
            continue

        platform_fee = calculate_payment(fee_input).platform_fee
        report.total_revenue += platform_fee
        report.total_orders += 1

        status = work_order.status.value if work_order.status is not None else "unknown"
        bucket = report.by_status.setdefault(status, RevenueBucket())
        bucket.count += 1
        bucket.revenue += platform_fee

        band = report.by_urgent_fee[urgent_fee_band(fee_input.effective_urgent_fee_percent)]
        band.count += 1
        band.revenue += platform_fee

    if report.total_orders:
        report.average_revenue = quantize_amount(report.total_revenue / report.total_orders)
    report.total_revenue = quantize_amount(report.total_revenue)
    for bucket in [*report.by_status.values(), *report.by_urgent_fee.values()]:
        bucket.revenue = quantize_amount(bucket.revenue)
    return report


async def get_platform_revenue(
    storage: Storage,
    period: str = "monthly",
    now: Optional[datetime] = None,
) -> PlatformRevenueReport:
    start, end = period_window(period, now or datetime.now(timezone.utc))
    work_orders = await storage.work_orders.list_created_between(start, end)
    report = calculate_platform_revenue(work_orders, period, start, end)
    logger.info(
        "Platform revenue (%s): %s over %d orders",
        period,
        report.total_revenue,
        report.total_orders,
    )
    return report
