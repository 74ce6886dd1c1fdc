"""
SQLAlchemy models for payment records and the payment status audit log.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import DateTime, Index, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class PaymentStatus(str, enum.Enum):
    """Payment lifecycle states. See ``paymentStatusManager`` for transitions."""
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    MOBILE_PAYMENT = "mobile_payment"
    OTHER = "other"


# ---------------------------------------------------------------------------
# PaymentRecord
# ---------------------------------------------------------------------------

class PaymentRecord(TimestampMixin, Base):
    """Per-work-order mirror of the latest fee breakdown and payment status.

    Keyed by work order id; created on first calculation or status change and
    never deleted.
    """

    __tablename__ = "payment_records"

    work_order_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    customer_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    worker_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    payment_info: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    calculated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    payment_method: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    refund_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refund_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    def __repr__(self) -> str:
        return f"<PaymentRecord(work_order={self.work_order_id}, status={self.status})>"


# ---------------------------------------------------------------------------
# PaymentStatusLog
# ---------------------------------------------------------------------------

class PaymentStatusLog(UUIDPrimaryKeyMixin, Base):
    """
    One accepted payment status transition.
    No updated_at column -- log entries are append-only.
    """

    __tablename__ = "payment_status_logs"

    work_order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    # Free text: the previous value may predate the current enum
    previous_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    updated_by: Mapped[str] = mapped_column(String(128), nullable=False)
    customer_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    worker_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    total_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_payment_status_logs_work_order", "work_order_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentStatusLog(work_order={self.work_order_id}, "
            f"{self.previous_status} -> {self.status})>"
        )
