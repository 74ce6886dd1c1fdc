"""
Work order payment calculation and persistence.

Called when a work order is created or when any of its fee inputs change.
Validates the inputs, resolves the effective urgent fee, computes the
breakdown (grade-adjusted when the assigned worker's grade is known), and
stores it on both the work order and its ``PaymentRecord``.

Effective urgent fee:
- once the escalator (or an admin) has set ``current_urgent_fee_percent``,
  that value is used as-is;
- otherwise, when enabled, the time-based dynamic fee derived from
  ``created_at`` (one step per elapsed interval, capped at the maximum).
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Protocol

from worksettle.core.config import Settings
from worksettle.core.errors import InvalidArgument, NotFound
from worksettle.models.payment import PaymentStatus
from worksettle.models.work_order import WorkOrder
from worksettle.services.feeCalculator import (
    DEFAULT_DYNAMIC_MAX_PERCENT,
    DEFAULT_DYNAMIC_STEP_PERCENT,
    FeeBreakdown,
    FeeInput,
    calculate_dynamic_urgent_fee,
    calculate_payment,
    hours_since,
    validate_fee_input,
)
from worksettle.services.gradeAdjuster import WorkerGrade, apply_grade_adjustment
from worksettle.services.notificationService import BackgroundDispatcher, PaymentCalculatedEvent
from worksettle.stores.interfaces import Storage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentCalculationConfig:
    dynamic_urgent_fee_enabled: bool = True
    dynamic_interval_hours: int = 1
    send_notification: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> PaymentCalculationConfig:
        return cls(
            dynamic_urgent_fee_enabled=settings.dynamic_urgent_fee_enabled,
            dynamic_interval_hours=settings.dynamic_urgent_fee_interval_hours,
            send_notification=settings.send_notifications,
        )


@dataclass
class StoredPaymentCalculation:
    work_order_id: str
    breakdown: FeeBreakdown
    warnings: list[str]
    dynamic_urgent_fee_percent: Optional[Decimal]
    payment_status: Optional[str]


class CalculationNotifier(Protocol):
    async def payment_calculated(self, event: PaymentCalculatedEvent) -> None: ...


def resolve_fee_input(
    work_order: WorkOrder,
    config: PaymentCalculationConfig,
    now: datetime,
) -> tuple[FeeInput, Optional[Decimal]]:
    """Fee input with the effective urgent percent, and the dynamic percent if one applied."""
    fee_input = FeeInput.from_work_order(work_order)
    if fee_input.current_urgent_fee_percent is not None:
        return fee_input, None
    if not config.dynamic_urgent_fee_enabled or work_order.created_at is None:
        return fee_input, None

    dynamic = calculate_dynamic_urgent_fee(
        fee_input,
        hours_since(work_order.created_at, now),
        max_percent=(
            work_order.urgent_fee_max_percent
            if work_order.urgent_fee_max_percent is not None
            else DEFAULT_DYNAMIC_MAX_PERCENT
        ),
        interval_hours=config.dynamic_interval_hours,
        step_percent=(
            work_order.urgent_fee_increase_step
            if work_order.urgent_fee_increase_step is not None
            else DEFAULT_DYNAMIC_STEP_PERCENT
        ),
    )
    return dataclasses.replace(fee_input, current_urgent_fee_percent=dynamic), dynamic


class WorkOrderPaymentService:
    def __init__(
        self,
        storage: Storage,
        notifier: Optional[CalculationNotifier] = None,
        dispatcher: Optional[BackgroundDispatcher] = None,
        config: PaymentCalculationConfig = PaymentCalculationConfig(),
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._storage = storage
        self._notifier = notifier
        self._dispatcher = dispatcher
        self._config = config
        self._clock = clock

    async def calculate_and_store(
        self,
        work_order_id: str,
        worker_grade: Optional[WorkerGrade] = None,
    ) -> StoredPaymentCalculation:
        """Recompute and persist the work order's payment breakdown.

        The payment status is initialised to ``pending`` only when unset;
        recalculating never resets a status already in progress.

        Raises:
            NotFound: Unknown work order.
            InvalidArgument: The fee inputs are invalid (every error listed).
        """
        work_order = await self._storage.work_orders.get(work_order_id)
        if work_order is None:
            raise NotFound(f"Work order {work_order_id} not found")

        now = self._clock()
        fee_input, dynamic_percent = resolve_fee_input(work_order, self._config, now)

        validation = validate_fee_input(fee_input)
        if not validation.is_valid:
            raise InvalidArgument(
                "; ".join(validation.errors),
                errors=validation.errors,
                warnings=validation.warnings,
            )

        breakdown = calculate_payment(fee_input)
        if worker_grade is not None:
            breakdown = apply_grade_adjustment(breakdown, worker_grade)
        details = breakdown.to_dict()

        work_order_fields: dict[str, object] = {
            "payment_details": details,
            "validation_warnings": validation.warnings,
            "dynamic_urgent_fee_percent": dynamic_percent,
            "calculated_at": now,
        }
        if work_order.payment_status is None:
            work_order_fields["payment_status"] = PaymentStatus.PENDING
        self._storage.work_orders.apply(work_order, work_order_fields)

        status = work_order.payment_status
        status_value = status.value if isinstance(status, PaymentStatus) else status
        await self._storage.payment_records.upsert(
            work_order.id,
            {
                "payment_info": details,
                "status": status_value,
                "calculated_at": now,
                "customer_id": work_order.customer_id,
                "worker_id": work_order.worker_id,
            },
        )
        await self._storage.commit()

        logger.info(
            "Payment calculated for work order %s: total=%s worker=%s platform=%s",
            work_order.id,
            details["total_fee"],
            details["worker_payment"],
            details["platform_fee"],
        )

        result = StoredPaymentCalculation(
            work_order_id=work_order.id,
            breakdown=breakdown,
            warnings=validation.warnings,
            dynamic_urgent_fee_percent=dynamic_percent,
            payment_status=status_value,
        )
        if work_order.worker_id:
            await self._notify(
                PaymentCalculatedEvent(
                    work_order_id=work_order.id,
                    worker_id=work_order.worker_id,
                    total_fee=breakdown.total_fee,
                    worker_payment=breakdown.worker_payment,
                )
            )
        return result

    async def _notify(self, event: PaymentCalculatedEvent) -> None:
        if not self._config.send_notification or self._notifier is None:
            return
        notifier = self._notifier
        description = f"payment calculated for {event.work_order_id}"
        if self._dispatcher is not None:
            self._dispatcher.dispatch(lambda: notifier.payment_calculated(event), description)
            return
        try:
            await notifier.payment_calculated(event)
        except Exception:
            logger.exception("Notification failed: %s", description)
