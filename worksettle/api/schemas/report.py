"""
Pydantic v2 schemas for revenue reports.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class RevenueBucketOut(BaseModel):
    count: int
    revenue: float


class PlatformRevenueOut(BaseModel):
    period: str
    start: datetime
    end: datetime
    total_revenue: float
    total_orders: int
    average_revenue: float
    by_status: dict[str, RevenueBucketOut]
    by_urgent_fee: dict[str, RevenueBucketOut]
