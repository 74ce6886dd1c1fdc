"""
Urgent Fee API Routes
=====================

Escalation control, manual increases, run statistics, and settings.

Routes:
  POST   /api/v1/urgent-fees/run                        -- Run one escalation pass now (admin)
  POST   /api/v1/urgent-fees/{work_order_id}/increase   -- Manually raise an urgent fee (admin)
  GET    /api/v1/urgent-fees/stats                      -- Recent escalation run statistics
  GET    /api/v1/urgent-fees/settings                   -- Current escalation settings
  PUT    /api/v1/urgent-fees/settings                   -- Update escalation settings (admin)
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Query

from worksettle.api.deps import AdminCaller, CurrentCaller, Notifier, StorageDep
from worksettle.api.errors import settlement_error_to_http
from worksettle.api.schemas.urgent_fee import (
    EscalationRunOut,
    EscalationStatsOut,
    EscalationStatsSummaryOut,
    ManualIncreaseOut,
    ManualIncreaseRequest,
    UrgentFeeSettingsOut,
    UrgentFeeSettingsRequest,
)
from worksettle.core.config import settings
from worksettle.core.errors import Internal, SettlementError
from worksettle.jobs.urgentFeeEscalator import EscalationConfig, UrgentFeeEscalator
from worksettle.services import urgentFeeService
from worksettle.services.urgentFeeService import EffectiveUrgentFeeSettings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/urgent-fees", tags=["Urgent Fees"])


def _settings_out(effective: EffectiveUrgentFeeSettings) -> UrgentFeeSettingsOut:
    return UrgentFeeSettingsOut(
        enabled=effective.enabled,
        interval_seconds=effective.interval_seconds,
        step_percent=float(effective.step_percent),
        max_percent=float(effective.max_percent),
        updated_by=effective.updated_by,
        updated_at=effective.updated_at,
    )


# ---------------------------------------------------------------------------
# POST /api/v1/urgent-fees/run -- Run escalation now
# ---------------------------------------------------------------------------

@router.post(
    "/run",
    response_model=EscalationRunOut,
    summary="Run one urgent fee escalation pass",
    description=(
        "Scans every open work order with urgent fee escalation enabled and "
        "raises fees that are due. Returns the run statistics. A disabled "
        "escalation returns an empty, unrecorded run."
    ),
)
async def run_escalation(
    storage: StorageDep,
    notifier: Notifier,
    admin: AdminCaller,
) -> EscalationRunOut:
    logger.info("Manual urgent fee escalation requested by %s", admin.user_id)
    escalator = UrgentFeeEscalator(
        storage,
        config=EscalationConfig.from_settings(settings),
        alerter=notifier,
    )
    try:
        stats = await escalator.run()
    except Exception as exc:
        raise settlement_error_to_http(Internal(f"Urgent fee escalation failed: {exc}"))

    return EscalationRunOut.model_validate(stats)


# ---------------------------------------------------------------------------
# POST /api/v1/urgent-fees/{work_order_id}/increase -- Manual increase
# ---------------------------------------------------------------------------

@router.post(
    "/{work_order_id}/increase",
    response_model=ManualIncreaseOut,
    summary="Manually raise a work order's urgent fee",
    description=(
        "Adds increase_percent points (default 5) to the current urgent fee, "
        "capped at the work order's maximum. Fails when the fee is already "
        "at its maximum."
    ),
)
async def increase_urgent_fee(
    work_order_id: str,
    storage: StorageDep,
    admin: AdminCaller,
    body: Optional[ManualIncreaseRequest] = None,
) -> ManualIncreaseOut:
    body = body or ManualIncreaseRequest()
    try:
        result = await urgentFeeService.manual_increase(
            storage,
            work_order_id,
            admin_id=admin.user_id,
            increase_percent=body.increase_percent,
            reason=body.reason,
            config=EscalationConfig.from_settings(settings),
        )
    except SettlementError as exc:
        raise settlement_error_to_http(exc)

    return ManualIncreaseOut(
        work_order_id=result.work_order_id,
        previous_percent=float(result.previous_percent),
        new_percent=float(result.new_percent),
        increase_percent=float(result.increase_percent),
        reached_max=result.reached_max,
    )


# ---------------------------------------------------------------------------
# GET /api/v1/urgent-fees/stats -- Run statistics
# ---------------------------------------------------------------------------

@router.get(
    "/stats",
    response_model=EscalationStatsOut,
    summary="Recent urgent fee escalation runs",
    description=(
        "Up to 100 runs started since the beginning of the range (today, "
        "week or month), newest first, with aggregate totals."
    ),
)
async def get_escalation_stats(
    storage: StorageDep,
    caller: CurrentCaller,
    date_range: str = Query(default="today", description="today, week or month"),
) -> EscalationStatsOut:
    try:
        report = await urgentFeeService.get_run_stats(storage, date_range)
    except SettlementError as exc:
        raise settlement_error_to_http(exc)

    summary = report.summary
    return EscalationStatsOut(
        date_range=report.date_range,
        since=report.since,
        summary=EscalationStatsSummaryOut(
            total_runs=summary.total_runs,
            total_processed=summary.total_processed,
            total_increased=summary.total_increased,
            total_errors=summary.total_errors,
            critical_runs=summary.critical_runs,
            average_duration_ms=summary.average_duration_ms,
            success_rate=summary.success_rate,
        ),
        runs=[EscalationRunOut.model_validate(run) for run in report.runs],
    )


# ---------------------------------------------------------------------------
# GET / PUT /api/v1/urgent-fees/settings
# ---------------------------------------------------------------------------

@router.get(
    "/settings",
    response_model=UrgentFeeSettingsOut,
    summary="Current urgent fee escalation settings",
)
async def get_urgent_fee_settings(
    storage: StorageDep,
    caller: CurrentCaller,
) -> UrgentFeeSettingsOut:
    effective = await urgentFeeService.get_settings(
        storage, EscalationConfig.from_settings(settings)
    )
    return _settings_out(effective)


@router.put(
    "/settings",
    response_model=UrgentFeeSettingsOut,
    summary="Update urgent fee escalation settings",
    description="Omitted fields keep their current value.",
)
async def update_urgent_fee_settings(
    body: UrgentFeeSettingsRequest,
    storage: StorageDep,
    admin: AdminCaller,
) -> UrgentFeeSettingsOut:
    try:
        effective = await urgentFeeService.update_settings(
            storage,
            admin.user_id,
            enabled=body.enabled,
            interval_seconds=body.interval_seconds,
            step_percent=body.step_percent,
            max_percent=body.max_percent,
            config=EscalationConfig.from_settings(settings),
        )
    except SettlementError as exc:
        raise settlement_error_to_http(exc)

    return _settings_out(effective)
