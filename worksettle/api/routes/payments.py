"""
Payment API Routes
==================

Fee calculation, payment status transitions, and status history.

Routes:
  POST   /api/v1/payments/calculate                      -- Validate and preview a fee breakdown
  POST   /api/v1/payments/work-orders/{id}/calculate     -- Calculate and store a work order's payment
  POST   /api/v1/payments/status                         -- Change one payment status
  POST   /api/v1/payments/status/bulk                    -- Change up to 100 payment statuses (admin)
  GET    /api/v1/payments/status/transitions             -- Statuses reachable from a status
  GET    /api/v1/payments/status/{id}/history            -- Status history, newest first
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Query

from worksettle.api.deps import (
    AdminCaller,
    Dispatcher,
    Notifier,
    OptionalCaller,
    StorageDep,
)
from worksettle.api.errors import settlement_error_to_http
from worksettle.api.schemas.payment import (
    BulkItemOut,
    BulkPaymentStatusOut,
    BulkPaymentStatusRequest,
    CalculatePaymentRequest,
    FeeBreakdownOut,
    FeeCalculationRequest,
    PaymentEvaluationOut,
    PaymentStatusHistoryOut,
    PaymentStatusLogOut,
    PaymentStatusUpdateRequest,
    PaymentTransitionOut,
    StoredPaymentOut,
    ValidTransitionsOut,
)
from worksettle.core.config import settings
from worksettle.core.errors import SettlementError
from worksettle.services.feeCalculator import FeeInput, evaluate_payment
from worksettle.services.gradeAdjuster import WorkerGrade
from worksettle.services.paymentStatusManager import (
    PaymentStatusConfig,
    PaymentStatusManager,
    get_valid_status_transitions,
)
from worksettle.services.workOrderPaymentService import (
    PaymentCalculationConfig,
    WorkOrderPaymentService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def _status_manager(
    storage: StorageDep, notifier: Notifier, dispatcher: Dispatcher
) -> PaymentStatusManager:
    return PaymentStatusManager(
        storage,
        notifier=notifier,
        dispatcher=dispatcher,
        config=PaymentStatusConfig.from_settings(settings),
    )


def _update_payload(body: PaymentStatusUpdateRequest) -> dict:
    return body.model_dump(exclude_none=True)


# ---------------------------------------------------------------------------
# POST /api/v1/payments/calculate -- Validate and preview
# ---------------------------------------------------------------------------

@router.post(
    "/calculate",
    response_model=PaymentEvaluationOut,
    summary="Validate fee inputs and preview the payment breakdown",
    description=(
        "Validates the fee inputs, reporting every error at once plus any "
        "non-blocking warnings. When valid the full breakdown is returned, "
        "grade-adjusted when worker_grade is given. Nothing is stored."
    ),
)
async def calculate_payment_preview(body: FeeCalculationRequest) -> PaymentEvaluationOut:
    fee_input = FeeInput.build(
        base_fee=body.base_fee,
        urgent_fee_percent=body.urgent_fee_percent,
        platform_fee_percent=body.platform_fee_percent,
        current_urgent_fee_percent=body.current_urgent_fee_percent,
        discount_percent=body.discount_percent,
        tax_percent=body.tax_percent,
    )
    grade = WorkerGrade(level=body.worker_grade) if body.worker_grade is not None else None
    evaluation = evaluate_payment(fee_input, grade=grade)

    return PaymentEvaluationOut(
        is_valid=evaluation.is_valid,
        errors=evaluation.errors,
        warnings=evaluation.warnings,
        breakdown=(
            FeeBreakdownOut(**evaluation.breakdown.to_dict())
            if evaluation.breakdown is not None
            else None
        ),
    )


# ---------------------------------------------------------------------------
# POST /api/v1/payments/work-orders/{work_order_id}/calculate
# ---------------------------------------------------------------------------

@router.post(
    "/work-orders/{work_order_id}/calculate",
    response_model=StoredPaymentOut,
    summary="Calculate and store a work order's payment",
    description=(
        "Recomputes the payment breakdown from the work order's current fee "
        "inputs and stores it on the work order and its payment record. "
        "The payment status starts at 'pending' when unset."
    ),
)
async def calculate_work_order_payment(
    work_order_id: str,
    storage: StorageDep,
    notifier: Notifier,
    dispatcher: Dispatcher,
    body: Optional[CalculatePaymentRequest] = None,
) -> StoredPaymentOut:
    grade = None
    if body is not None and body.worker_grade is not None:
        grade = WorkerGrade(level=body.worker_grade, name=body.worker_grade_name)

    service = WorkOrderPaymentService(
        storage,
        notifier=notifier,
        dispatcher=dispatcher,
        config=PaymentCalculationConfig.from_settings(settings),
    )
    try:
        result = await service.calculate_and_store(work_order_id, worker_grade=grade)
    except SettlementError as exc:
        raise settlement_error_to_http(exc)

    return StoredPaymentOut(
        work_order_id=result.work_order_id,
        payment_status=result.payment_status,
        warnings=result.warnings,
        dynamic_urgent_fee_percent=(
            float(result.dynamic_urgent_fee_percent)
            if result.dynamic_urgent_fee_percent is not None
            else None
        ),
        breakdown=FeeBreakdownOut(**result.breakdown.to_dict()),
    )


# ---------------------------------------------------------------------------
# POST /api/v1/payments/status -- Single transition
# ---------------------------------------------------------------------------

@router.post(
    "/status",
    response_model=PaymentTransitionOut,
    summary="Change a work order's payment status",
    description=(
        "Validates the update and applies it when the state machine allows "
        "the transition. A refused transition returns 400 with the allowed "
        "statuses. When authenticated, the caller is recorded as updated_by."
    ),
)
async def update_payment_status(
    body: PaymentStatusUpdateRequest,
    storage: StorageDep,
    notifier: Notifier,
    dispatcher: Dispatcher,
    caller: OptionalCaller,
) -> PaymentTransitionOut:
    manager = _status_manager(storage, notifier, dispatcher)
    try:
        outcome = await manager.transition(
            _update_payload(body),
            updated_by=caller.user_id if caller is not None else None,
        )
    except SettlementError as exc:
        raise settlement_error_to_http(exc)

    return PaymentTransitionOut(
        work_order_id=outcome.work_order_id,
        previous_status=outcome.previous_status,
        status=outcome.status.value,
        updated_by=outcome.updated_by,
        warnings=outcome.warnings,
    )


# ---------------------------------------------------------------------------
# POST /api/v1/payments/status/bulk -- Bulk transition (admin)
# ---------------------------------------------------------------------------

@router.post(
    "/status/bulk",
    response_model=BulkPaymentStatusOut,
    summary="Change up to 100 payment statuses",
    description=(
        "Each update is validated and checked independently; one failure "
        "never blocks the others. Returns a per-item result list in request "
        "order. No notifications are sent for bulk updates."
    ),
)
async def bulk_update_payment_status(
    body: BulkPaymentStatusRequest,
    storage: StorageDep,
    notifier: Notifier,
    dispatcher: Dispatcher,
    admin: AdminCaller,
) -> BulkPaymentStatusOut:
    manager = _status_manager(storage, notifier, dispatcher)
    try:
        results = await manager.bulk_transition(
            [_update_payload(item) for item in body.updates],
            updated_by=admin.user_id,
        )
    except SettlementError as exc:
        raise settlement_error_to_http(exc)

    success_count = sum(1 for r in results if r.success)
    return BulkPaymentStatusOut(
        success_count=success_count,
        failure_count=len(results) - success_count,
        results=[
            BulkItemOut(
                index=r.index,
                work_order_id=r.work_order_id,
                success=r.success,
                status=r.status,
                previous_status=r.previous_status,
                error=r.error,
                warnings=r.warnings,
            )
            for r in results
        ],
    )


# ---------------------------------------------------------------------------
# GET /api/v1/payments/status/transitions -- Allowed transitions
# ---------------------------------------------------------------------------

@router.get(
    "/status/transitions",
    response_model=ValidTransitionsOut,
    summary="Statuses reachable from a payment status",
)
async def list_valid_transitions(
    current: Optional[str] = Query(
        default=None, description="Current payment status; omit for an unset status"
    ),
) -> ValidTransitionsOut:
    return ValidTransitionsOut(
        current=current,
        allowed=[s.value for s in get_valid_status_transitions(current)],
    )


# ---------------------------------------------------------------------------
# GET /api/v1/payments/status/{work_order_id}/history
# ---------------------------------------------------------------------------

@router.get(
    "/status/{work_order_id}/history",
    response_model=PaymentStatusHistoryOut,
    summary="Payment status history of a work order",
    description="Every accepted status change, newest first.",
)
async def get_payment_status_history(
    work_order_id: str,
    storage: StorageDep,
) -> PaymentStatusHistoryOut:
    manager = PaymentStatusManager(storage)
    entries = await manager.get_history(work_order_id)
    return PaymentStatusHistoryOut(
        work_order_id=work_order_id,
        entries=[PaymentStatusLogOut.model_validate(e) for e in entries],
    )
