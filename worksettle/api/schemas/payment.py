"""
Pydantic v2 schemas for the payment API.

Covers:
- Fee calculation / validation preview
- Calculate-and-store for a work order
- Single and bulk payment status transitions
- Payment status history

Request bodies accept snake_case or camelCase keys.  Status update fields
are left loosely typed here so every violation is reported together by the
service rather than piecemeal by request parsing.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class FeeCalculationRequest(_CamelRequest):
    """Fee inputs to preview a breakdown for."""

    base_fee: Optional[Decimal] = Field(default=None, description="Base fee (must be > 0)")
    urgent_fee_percent: Optional[Decimal] = Field(default=None, description="0-100")
    platform_fee_percent: Optional[Decimal] = Field(default=None, description="0-50")
    current_urgent_fee_percent: Optional[Decimal] = Field(
        default=None, description="Escalated urgent percent; overrides urgent_fee_percent"
    )
    discount_percent: Optional[Decimal] = Field(default=None, description="0-100")
    tax_percent: Optional[Decimal] = Field(default=None, description="0-100")
    worker_grade: Optional[int] = Field(
        default=None, description="Assigned worker's grade level (1-5)"
    )


class CalculatePaymentRequest(_CamelRequest):
    worker_grade: Optional[int] = Field(
        default=None, description="Assigned worker's grade level (1-5)"
    )
    worker_grade_name: Optional[str] = Field(default=None, max_length=50)


class PaymentStatusUpdateRequest(_CamelRequest):
    """A requested payment status change."""

    work_order_id: Optional[Any] = None
    status: Optional[Any] = None
    paid_at: Optional[Any] = Field(default=None, description="ISO-8601 timestamp")
    payment_method: Optional[Any] = Field(
        default=None, description="card, bank_transfer, cash, mobile_payment or other"
    )
    transaction_id: Optional[Any] = None
    amount: Optional[Any] = Field(default=None, description="Non-negative amount")
    notes: Optional[Any] = None
    failure_reason: Optional[Any] = None
    refund_reason: Optional[Any] = None
    updated_by: Optional[Any] = None


class BulkPaymentStatusRequest(_CamelRequest):
    updates: list[PaymentStatusUpdateRequest] = Field(
        description="Between 1 and 100 status updates"
    )


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class ItemizedChargeOut(BaseModel):
    percent: Optional[float] = None
    amount: float


class GradeInfoOut(BaseModel):
    level: Any
    name: str
    multiplier: float


class FeeBreakdownOut(BaseModel):
    """Amounts rounded to two decimal places."""

    base_fee: float
    discount_percent: float
    discount_amount: float
    discounted_base_fee: float
    urgent_fee_percent: float
    urgent_fee: float
    total_fee: float
    platform_fee_percent: float
    platform_fee: float
    tax_percent: float
    tax_amount: float
    worker_payment: float
    customer_total_payment: float
    itemization: dict[str, ItemizedChargeOut]
    grade: Optional[GradeInfoOut] = None


class PaymentEvaluationOut(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    breakdown: Optional[FeeBreakdownOut] = None


class StoredPaymentOut(BaseModel):
    work_order_id: str
    payment_status: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)
    dynamic_urgent_fee_percent: Optional[float] = None
    breakdown: FeeBreakdownOut


class PaymentTransitionOut(BaseModel):
    work_order_id: str
    previous_status: Optional[str] = None
    status: str
    updated_by: str
    warnings: list[str] = Field(default_factory=list)


class BulkItemOut(BaseModel):
    index: int
    work_order_id: Optional[str] = None
    success: bool
    status: Optional[str] = None
    previous_status: Optional[str] = None
    error: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)


class BulkPaymentStatusOut(BaseModel):
    success_count: int
    failure_count: int
    results: list[BulkItemOut]


class ValidTransitionsOut(BaseModel):
    current: Optional[str] = None
    allowed: list[str]


class PaymentStatusLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    work_order_id: str
    status: str
    previous_status: Optional[str] = None
    updated_by: str
    customer_id: Optional[str] = None
    worker_id: Optional[str] = None
    total_fee: Optional[float] = None
    created_at: datetime


class PaymentStatusHistoryOut(BaseModel):
    work_order_id: str
    entries: list[PaymentStatusLogOut]
