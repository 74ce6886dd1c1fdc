"""
Fee Calculator -- work order payment breakdown.

Computes the monetary breakdown for a work order from its fee inputs:

    discount_amount        = base_fee * discount%
    discounted_base_fee    = base_fee - discount_amount
    urgent_fee             = discounted_base_fee * effective_urgent%
    total_fee              = discounted_base_fee + urgent_fee
    platform_fee           = total_fee * platform%
    tax_amount             = total_fee * tax%
    worker_payment         = total_fee - platform_fee
    customer_total_payment = total_fee + tax_amount

``effective_urgent%`` is ``current_urgent_fee_percent`` when set (the
escalated value) and ``urgent_fee_percent`` otherwise.

Everything here is pure: no I/O, exact ``Decimal`` arithmetic, and the same
inputs always yield the same breakdown.  Rounding to currency precision is
left to persistence (``quantize_amount``).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from worksettle.services.gradeAdjuster import GradeInfo, WorkerGrade


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")

MAX_URGENT_FEE_PERCENT = Decimal("100")
MAX_PLATFORM_FEE_PERCENT = Decimal("50")
MAX_DISCOUNT_PERCENT = Decimal("100")
MAX_TAX_PERCENT = Decimal("100")

# Above these the calculation still succeeds but the caller is warned
URGENT_FEE_WARNING_PERCENT = Decimal("30")
PLATFORM_FEE_WARNING_PERCENT = Decimal("20")

# Dynamic (time-based) urgent fee defaults
DEFAULT_DYNAMIC_MAX_PERCENT = Decimal("50")
DEFAULT_DYNAMIC_INTERVAL_HOURS = 1
DEFAULT_DYNAMIC_STEP_PERCENT = Decimal("5")


# ---------------------------------------------------------------------------
# DTOs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FeeInput:
    """Fee-relevant fields of a work order.

    Missing percentages default to 0.  ``base_fee`` has no default: a work
    order without one fails validation.
    """
    base_fee: Optional[Decimal]
    urgent_fee_percent: Decimal = ZERO
    platform_fee_percent: Decimal = ZERO
    current_urgent_fee_percent: Optional[Decimal] = None
    discount_percent: Decimal = ZERO
    tax_percent: Decimal = ZERO

    @classmethod
    def build(
        cls,
        base_fee: Any,
        urgent_fee_percent: Any = None,
        platform_fee_percent: Any = None,
        current_urgent_fee_percent: Any = None,
        discount_percent: Any = None,
        tax_percent: Any = None,
    ) -> FeeInput:
        """Coerce loosely-typed values (ints, floats, strings, None)."""
        return cls(
            base_fee=_optional_decimal(base_fee),
            urgent_fee_percent=to_decimal(urgent_fee_percent),
            platform_fee_percent=to_decimal(platform_fee_percent),
            current_urgent_fee_percent=_optional_decimal(current_urgent_fee_percent),
            discount_percent=to_decimal(discount_percent),
            tax_percent=to_decimal(tax_percent),
        )

    @classmethod
    def from_work_order(cls, work_order: Any) -> FeeInput:
        return cls.build(
            base_fee=work_order.base_fee,
            urgent_fee_percent=work_order.urgent_fee_percent,
            platform_fee_percent=work_order.platform_fee_percent,
            current_urgent_fee_percent=work_order.current_urgent_fee_percent,
            discount_percent=work_order.discount_percent,
            tax_percent=work_order.tax_percent,
        )

    @property
    def effective_urgent_fee_percent(self) -> Decimal:
        if self.current_urgent_fee_percent is not None:
            return self.current_urgent_fee_percent
        return self.urgent_fee_percent


@dataclass(frozen=True)
class ItemizedCharge:
    """One line of the itemization: the applied percent and the amount."""
    percent: Optional[Decimal]
    amount: Decimal


@dataclass(frozen=True)
class FeeItemization:
    base_fee: ItemizedCharge
    discount: ItemizedCharge
    urgent_fee: ItemizedCharge
    platform_fee: ItemizedCharge
    tax: ItemizedCharge


@dataclass(frozen=True)
class FeeBreakdown:
    """Complete result of ``calculate_payment``."""
    base_fee: Decimal
    discount_percent: Decimal
    discount_amount: Decimal
    discounted_base_fee: Decimal
    urgent_fee_percent: Decimal
    urgent_fee: Decimal
    total_fee: Decimal
    platform_fee_percent: Decimal
    platform_fee: Decimal
    tax_percent: Decimal
    tax_amount: Decimal
    worker_payment: Decimal
    customer_total_payment: Decimal
    itemization: FeeItemization
    grade: Optional[GradeInfo] = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation (amounts rounded to cents) for storage."""
        payload: dict[str, Any] = {
            "base_fee": json_amount(self.base_fee),
            "discount_percent": json_amount(self.discount_percent),
            "discount_amount": json_amount(self.discount_amount),
            "discounted_base_fee": json_amount(self.discounted_base_fee),
            "urgent_fee_percent": json_amount(self.urgent_fee_percent),
            "urgent_fee": json_amount(self.urgent_fee),
            "total_fee": json_amount(self.total_fee),
            "platform_fee_percent": json_amount(self.platform_fee_percent),
            "platform_fee": json_amount(self.platform_fee),
            "tax_percent": json_amount(self.tax_percent),
            "tax_amount": json_amount(self.tax_amount),
            "worker_payment": json_amount(self.worker_payment),
            "customer_total_payment": json_amount(self.customer_total_payment),
            "itemization": {
                name: {
                    "percent": (
                        json_amount(charge.percent) if charge.percent is not None else None
                    ),
                    "amount": json_amount(charge.amount),
                }
                for name, charge in (
                    ("base_fee", self.itemization.base_fee),
                    ("discount", self.itemization.discount),
                    ("urgent_fee", self.itemization.urgent_fee),
                    ("platform_fee", self.itemization.platform_fee),
                    ("tax", self.itemization.tax),
                )
            },
        }
        if self.grade is not None:
            payload["grade"] = {
                "level": self.grade.level,
                "name": self.grade.name,
                "multiplier": float(self.grade.multiplier),
            }
        return payload


@dataclass
class FeeValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class PaymentEvaluation:
    """Validation outcome plus, when valid, the computed breakdown."""
    is_valid: bool
    errors: list[str]
    warnings: list[str]
    breakdown: Optional[FeeBreakdown] = None


# ---------------------------------------------------------------------------
# Numeric helpers
# ---------------------------------------------------------------------------

def to_decimal(value: Any) -> Decimal:
    """Convert to ``Decimal``; ``None`` becomes 0.  Floats go through ``str``."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _optional_decimal(value: Any) -> Optional[Decimal]:
    return None if value is None else to_decimal(value)


def quantize_amount(value: Decimal) -> Decimal:
    """Round to currency precision (2 places, half-up)."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def json_amount(value: Decimal) -> float:
    return float(quantize_amount(value))


def _percent_of(amount: Decimal, percent: Decimal) -> Decimal:
    return amount * percent / HUNDRED


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def calculate_payment(fee_input: FeeInput) -> FeeBreakdown:
    """Compute the full payment breakdown.

    Order matters: the discount comes off the base fee first, the urgent fee
    is charged on the discounted base, and platform fee and tax are both
    percentages of the resulting total.

    Args:
        fee_input: The work order's fee fields.  ``base_fee`` is treated as 0
            when missing; call ``validate_fee_input`` first to reject that.

    Returns:
        A ``FeeBreakdown`` with exact (unrounded) amounts.
    """
    base_fee = fee_input.base_fee if fee_input.base_fee is not None else ZERO

    discount_amount = _percent_of(base_fee, fee_input.discount_percent)
    discounted_base_fee = base_fee - discount_amount

    urgent_percent = fee_input.effective_urgent_fee_percent
    urgent_fee = _percent_of(discounted_base_fee, urgent_percent)

    total_fee = discounted_base_fee + urgent_fee

    platform_fee = _percent_of(total_fee, fee_input.platform_fee_percent)
    tax_amount = _percent_of(total_fee, fee_input.tax_percent)

    itemization = FeeItemization(
        base_fee=ItemizedCharge(percent=None, amount=base_fee),
        discount=ItemizedCharge(percent=fee_input.discount_percent, amount=discount_amount),
        urgent_fee=ItemizedCharge(percent=urgent_percent, amount=urgent_fee),
        platform_fee=ItemizedCharge(
            percent=fee_input.platform_fee_percent, amount=platform_fee
        ),
        tax=ItemizedCharge(percent=fee_input.tax_percent, amount=tax_amount),
    )

    return FeeBreakdown(
        base_fee=base_fee,
        discount_percent=fee_input.discount_percent,
        discount_amount=discount_amount,
        discounted_base_fee=discounted_base_fee,
        urgent_fee_percent=urgent_percent,
        urgent_fee=urgent_fee,
        total_fee=total_fee,
        platform_fee_percent=fee_input.platform_fee_percent,
        platform_fee=platform_fee,
        tax_percent=fee_input.tax_percent,
        tax_amount=tax_amount,
        worker_payment=total_fee - platform_fee,
        customer_total_payment=total_fee + tax_amount,
        itemization=itemization,
    )


def validate_fee_input(fee_input: FeeInput) -> FeeValidationResult:
    """Check fee inputs, collecting every violation rather than stopping early.

    Errors block calculation; warnings are informational (a high urgent fee
    may need customer confirmation, a high platform fee is unusual).
    """
    errors: list[str] = []
    warnings: list[str] = []

    if fee_input.base_fee is None or fee_input.base_fee <= ZERO:
        errors.append("base_fee must be greater than 0")

    if not ZERO <= fee_input.urgent_fee_percent <= MAX_URGENT_FEE_PERCENT:
        errors.append("urgent_fee_percent must be between 0 and 100")

    if not ZERO <= fee_input.platform_fee_percent <= MAX_PLATFORM_FEE_PERCENT:
        errors.append("platform_fee_percent must be between 0 and 50")

    if not ZERO <= fee_input.discount_percent <= MAX_DISCOUNT_PERCENT:
        errors.append("discount_percent must be between 0 and 100")

    if not ZERO <= fee_input.tax_percent <= MAX_TAX_PERCENT:
        errors.append("tax_percent must be between 0 and 100")

    if fee_input.effective_urgent_fee_percent > URGENT_FEE_WARNING_PERCENT:
        warnings.append(
            "Urgent fee exceeds 30%; customer confirmation may be required"
        )

    if fee_input.platform_fee_percent > PLATFORM_FEE_WARNING_PERCENT:
        warnings.append("Platform fee exceeds 20%")

    return FeeValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def evaluate_payment(
    fee_input: FeeInput,
    grade: Optional[WorkerGrade] = None,
) -> PaymentEvaluation:
    """Validate and, if valid, compute (and grade-adjust) the breakdown."""
    validation = validate_fee_input(fee_input)
    if not validation.is_valid:
        return PaymentEvaluation(
            is_valid=False,
            errors=validation.errors,
            warnings=validation.warnings,
        )

    breakdown = calculate_payment(fee_input)
    if grade is not None:
        from worksettle.services.gradeAdjuster import apply_grade_adjustment

        breakdown = apply_grade_adjustment(breakdown, grade)

    return PaymentEvaluation(
        is_valid=True,
        errors=[],
        warnings=validation.warnings,
        breakdown=breakdown,
    )


def calculate_dynamic_urgent_fee(
    work_order: Any,
    hours_since_creation: float,
    max_percent: Any = DEFAULT_DYNAMIC_MAX_PERCENT,
    interval_hours: float = DEFAULT_DYNAMIC_INTERVAL_HOURS,
    step_percent: Any = DEFAULT_DYNAMIC_STEP_PERCENT,
) -> Decimal:
    """Urgent fee percent grown by one step per elapsed interval, capped.

    Args:
        work_order: Anything exposing ``urgent_fee_percent`` (the base rate).
        hours_since_creation: Age of the work order in hours.
        max_percent: Upper bound of the result.
        interval_hours: Hours per step; must be positive.
        step_percent: Percentage points added per full interval.

    Returns:
        The base percent when ``hours_since_creation <= 0``, otherwise
        ``min(base + floor(hours / interval) * step, max_percent)``.
    """
    base = to_decimal(getattr(work_order, "urgent_fee_percent", None))
    if hours_since_creation <= 0:
        return base
    if interval_hours <= 0:
        raise ValueError("interval_hours must be positive")

    intervals = math.floor(hours_since_creation / interval_hours)
    candidate = base + intervals * to_decimal(step_percent)
    return min(candidate, to_decimal(max_percent))


def hours_since(moment: datetime, now: Optional[datetime] = None) -> float:
    """Hours elapsed from ``moment`` to ``now`` (UTC).  Naive values are UTC."""
    now = now or datetime.now(timezone.utc)
    return (ensure_utc(now) - ensure_utc(moment)).total_seconds() / 3600


def ensure_utc(moment: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment
