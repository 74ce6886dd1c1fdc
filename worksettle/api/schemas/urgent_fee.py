"""
Pydantic v2 schemas for the urgent fee API: manual increases, escalation
run statistics, and escalation settings.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class ManualIncreaseRequest(BaseModel):
    """Admin request to raise a work order's urgent fee."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    increase_percent: Optional[Decimal] = Field(
        default=None, description="Percentage points to add (default 5)"
    )
    reason: Optional[str] = Field(default=None, max_length=2000)


class UrgentFeeSettingsRequest(BaseModel):
    """Partial update of the global escalation settings."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    enabled: Optional[bool] = None
    interval_seconds: Optional[int] = Field(default=None, description="Seconds per step")
    step_percent: Optional[Decimal] = Field(default=None, description="Points per step")
    max_percent: Optional[Decimal] = Field(default=None, description="Escalation ceiling")


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class ManualIncreaseOut(BaseModel):
    work_order_id: str
    previous_percent: float
    new_percent: float
    increase_percent: float
    reached_max: bool


class EscalationRunOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[uuid.UUID] = None
    started_at: datetime
    processed_count: int
    increased_count: int
    skipped_count: int
    error_count: int
    duration_ms: int
    errors: list[dict[str, Any]] = Field(default_factory=list)
    is_critical: bool = False
    critical_error: Optional[str] = None


class EscalationStatsSummaryOut(BaseModel):
    total_runs: int
    total_processed: int
    total_increased: int
    total_errors: int
    critical_runs: int
    average_duration_ms: float
    success_rate: float


class EscalationStatsOut(BaseModel):
    date_range: str
    since: datetime
    summary: EscalationStatsSummaryOut
    runs: list[EscalationRunOut]


class UrgentFeeSettingsOut(BaseModel):
    enabled: bool
    interval_seconds: int
    step_percent: float
    max_percent: float
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None
