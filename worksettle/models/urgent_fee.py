"""
SQLAlchemy models backing the urgent-fee escalation job: per-run statistics,
the global settings row, and the manual increase history.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin

GLOBAL_SETTINGS_ID = "global"


class EscalationRunStats(UUIDPrimaryKeyMixin, Base):
    """Outcome of a single escalator run. Immutable once written."""

    __tablename__ = "urgent_fee_run_stats"

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    processed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    increased_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Capped sample, see EscalationConfig.max_recorded_errors
    errors: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(JSONB, nullable=True)
    is_critical: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    critical_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_urgent_fee_run_stats_started_at", "started_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<EscalationRunStats(started_at={self.started_at}, "
            f"processed={self.processed_count}, increased={self.increased_count}, "
            f"errors={self.error_count})>"
        )


class UrgentFeeSettings(TimestampMixin, Base):
    """Admin-editable escalation settings. A single row keyed ``global``."""

    __tablename__ = "urgent_fee_settings"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=GLOBAL_SETTINGS_ID)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    interval_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    step_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    max_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    updated_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<UrgentFeeSettings(enabled={self.enabled}, interval={self.interval_seconds}s, "
            f"step={self.step_percent}, max={self.max_percent})>"
        )


class ManualUrgentFeeIncrease(UUIDPrimaryKeyMixin, Base):
    """Append-only record of an admin raising a work order's urgent fee."""

    __tablename__ = "urgent_fee_manual_increases"

    work_order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    old_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    new_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    increase_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_id: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_urgent_fee_manual_increases_work_order", "work_order_id"),
    )
