"""
Report API Routes
=================

Routes:
  GET    /api/v1/reports/platform-revenue   -- Platform fee revenue over a period (admin)
"""

from __future__ import annotations

from fastapi import APIRouter, Query

from worksettle.api.deps import AdminCaller, StorageDep
from worksettle.api.errors import settlement_error_to_http
from worksettle.api.schemas.report import PlatformRevenueOut, RevenueBucketOut
from worksettle.core.errors import SettlementError
from worksettle.services.revenueReport import RevenueBucket, get_platform_revenue

router = APIRouter(prefix="/reports", tags=["Reports"])


def _bucket_out(bucket: RevenueBucket) -> RevenueBucketOut:
    return RevenueBucketOut(count=bucket.count, revenue=float(bucket.revenue))


@router.get(
    "/platform-revenue",
    response_model=PlatformRevenueOut,
    summary="Platform fee revenue",
    description=(
        "Platform fees earned on work orders created in the last day, week "
        "or month, broken down by work order status and urgent fee band."
    ),
)
async def platform_revenue(
    storage: StorageDep,
    admin: AdminCaller,
    period: str = Query(default="monthly", description="daily, weekly or monthly"),
) -> PlatformRevenueOut:
    try:
        report = await get_platform_revenue(storage, period)
    except SettlementError as exc:
        raise settlement_error_to_http(exc)

    return PlatformRevenueOut(
        period=report.period,
        start=report.start,
        end=report.end,
        total_revenue=float(report.total_revenue),
        total_orders=report.total_orders,
        average_revenue=float(report.average_revenue),
        by_status={k: _bucket_out(v) for k, v in report.by_status.items()},
        by_urgent_fee={k: _bucket_out(v) for k, v in report.by_urgent_fee.items()},
    )
