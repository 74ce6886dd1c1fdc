"""
SQLAlchemy model for work orders.

The marketplace workflow owns the job itself (status, assignment); the
settlement services only read the fee inputs and write the payment and
urgent-fee columns.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Enum, Index, Integer, Numeric, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin
from .payment import PaymentStatus


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class WorkOrderStatus(str, enum.Enum):
    """Lifecycle status managed by the marketplace workflow."""
    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# ---------------------------------------------------------------------------
# WorkOrder
# ---------------------------------------------------------------------------

class WorkOrder(TimestampMixin, Base):
    """A job posted by a customer and fulfilled by a worker."""

    __tablename__ = "work_orders"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    customer_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    worker_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    status: Mapped[WorkOrderStatus] = mapped_column(
        Enum(WorkOrderStatus, name="work_order_status"),
        nullable=False,
        default=WorkOrderStatus.OPEN,
    )

    # -- Fee inputs --
    base_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    urgent_fee_percent: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2), nullable=True, default=Decimal("0")
    )
    current_urgent_fee_percent: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2), nullable=True
    )
    platform_fee_percent: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2), nullable=True, default=Decimal("0")
    )
    discount_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    tax_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)

    # -- Payment state --
    payment_status: Mapped[Optional[PaymentStatus]] = mapped_column(
        Enum(PaymentStatus, name="payment_status"), nullable=True
    )
    payment_details: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)
    validation_warnings: Mapped[Optional[list[str]]] = mapped_column(JSONB, nullable=True)
    dynamic_urgent_fee_percent: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2), nullable=True
    )
    calculated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_payment_updated_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # -- Urgent fee escalation --
    urgent_fee_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    urgent_fee_increase_start_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    urgent_fee_max_percent: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2), nullable=True, default=Decimal("50")
    )
    # Unset means the global escalation step applies
    urgent_fee_increase_step: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2), nullable=True
    )
    last_urgent_fee_update: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    urgent_fee_increase_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    urgent_fee_max_reached_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("idx_work_orders_escalation", "status", "urgent_fee_enabled", "id"),
        Index("idx_work_orders_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<WorkOrder(id={self.id}, status={self.status}, "
            f"payment_status={self.payment_status})>"
        )
