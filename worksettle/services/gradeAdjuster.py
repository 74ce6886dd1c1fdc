"""
Grade-based platform fee adjustment.

Higher-graded workers pay a smaller platform fee:

    Level 1 (Bronze)   -> 1.0x
    Level 2 (Silver)   -> 0.9x
    Level 3 (Gold)     -> 0.8x
    Level 4 (Platinum) -> 0.7x
    Level 5 (Diamond)  -> 0.6x

Any other level is charged the full fee (1.0x).  Only the platform fee and
the worker payment change; the customer total is unaffected.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from worksettle.services.feeCalculator import FeeBreakdown, FeeInput, calculate_payment

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

GRADE_MULTIPLIERS: dict[int, Decimal] = {
    1: Decimal("1.0"),
    2: Decimal("0.9"),
    3: Decimal("0.8"),
    4: Decimal("0.7"),
    5: Decimal("0.6"),
}

DEFAULT_GRADE_MULTIPLIER = Decimal("1.0")

GRADE_NAMES: dict[int, str] = {
    1: "Bronze",
    2: "Silver",
    3: "Gold",
    4: "Platinum",
    5: "Diamond",
}


# ---------------------------------------------------------------------------
# DTOs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WorkerGrade:
    level: Any
    name: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        return GRADE_NAMES.get(self.level, "Unranked") if isinstance(self.level, int) else "Unranked"


@dataclass(frozen=True)
class GradeInfo:
    """Grade details attached to an adjusted breakdown."""
    level: Any
    name: str
    multiplier: Decimal


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def get_grade_multiplier(level: Any) -> Decimal:
    # bool is an int subclass; True must not map to level 1
    if isinstance(level, bool) or not isinstance(level, int):
        return DEFAULT_GRADE_MULTIPLIER
    return GRADE_MULTIPLIERS.get(level, DEFAULT_GRADE_MULTIPLIER)


def apply_grade_adjustment(breakdown: FeeBreakdown, grade: WorkerGrade) -> FeeBreakdown:
    """Scale the platform fee by the grade multiplier and recompute worker pay.

    Args:
        breakdown: Output of ``calculate_payment``.
        grade: The assigned worker's grade.

    Returns:
        A new breakdown with ``platform_fee`` and ``worker_payment`` adjusted
        and ``grade`` populated.  Every other field is passed through.
    """
    multiplier = get_grade_multiplier(grade.level)
    adjusted_platform_fee = breakdown.platform_fee * multiplier

    itemization = dataclasses.replace(
        breakdown.itemization,
        platform_fee=dataclasses.replace(
            breakdown.itemization.platform_fee, amount=adjusted_platform_fee
        ),
    )

    return dataclasses.replace(
        breakdown,
        platform_fee=adjusted_platform_fee,
        itemization=itemization,
        worker_payment=breakdown.total_fee - adjusted_platform_fee,
        grade=GradeInfo(
            level=grade.level,
            name=grade.display_name,
            multiplier=multiplier,
        ),
    )


def calculate_grade_based_fees(fee_input: FeeInput, grade: WorkerGrade) -> FeeBreakdown:
    return apply_grade_adjustment(calculate_payment(fee_input), grade)
