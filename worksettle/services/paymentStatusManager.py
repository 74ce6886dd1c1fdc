"""
Payment Status Manager -- finite state machine for payment lifecycle.

Governs every payment status change on a work order:

    pending    -> processing, paid, failed, cancelled
    processing -> paid, failed, cancelled
    paid       -> refunded
    failed     -> pending, processing
    refunded   -> (terminal)
    cancelled  -> (terminal)

A work order whose payment status is unset (or holds an unrecognised value)
may only move to ``pending``.

An accepted transition:

  1. writes the status and its status-specific fields to the work order;
  2. mirrors them onto the ``PaymentRecord``;
  3. commits;
  4. appends an immutable ``PaymentStatusLog`` entry (a second, best-effort
     write: a failure here is logged, the transition stands);
  5. dispatches customer/worker notifications in the background.

Usage::

    manager = PaymentStatusManager(storage, notifier=service, dispatcher=dispatcher)
    outcome = await manager.transition({"work_order_id": "wo-1", "status": "paid"})
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Protocol

from worksettle.core.config import Settings
from worksettle.core.errors import InvalidArgument, NotFound
from worksettle.models.payment import PaymentMethod, PaymentStatus, PaymentStatusLog
from worksettle.models.work_order import WorkOrder
from worksettle.services.batchCoordinator import paginate_sequence, run_paginated
from worksettle.services.feeCalculator import ensure_utc, to_decimal
from worksettle.services.notificationService import BackgroundDispatcher, PaymentStatusEvent
from worksettle.stores.interfaces import Storage

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------

VALID_TRANSITIONS: dict[PaymentStatus, tuple[PaymentStatus, ...]] = {
    PaymentStatus.PENDING: (
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
        PaymentStatus.PROCESSING,
    ),
    PaymentStatus.PROCESSING: (
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    ),
    PaymentStatus.PAID: (PaymentStatus.REFUNDED,),
    PaymentStatus.FAILED: (PaymentStatus.PENDING, PaymentStatus.PROCESSING),
    PaymentStatus.REFUNDED: (),
    PaymentStatus.CANCELLED: (),
}

# Allowed targets when the current status is unset or unrecognised
BOOTSTRAP_TRANSITIONS: tuple[PaymentStatus, ...] = (PaymentStatus.PENDING,)

_STATUS_VALUES = ", ".join(s.value for s in PaymentStatus)
_METHOD_VALUES = ", ".join(m.value for m in PaymentMethod)

_MISSING = object()


# ---------------------------------------------------------------------------
# Configuration & DTOs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PaymentStatusConfig:
    send_notification: bool = True
    bulk_max_items: int = 100
    default_updated_by: str = "system"

    @classmethod
    def from_settings(cls, settings: Settings) -> PaymentStatusConfig:
        return cls(
            send_notification=settings.send_notifications,
            bulk_max_items=settings.bulk_update_max_items,
        )


@dataclass(frozen=True)
class PaymentStatusUpdate:
    """A validated, typed status change request."""
    work_order_id: str
    status: PaymentStatus
    paid_at: Optional[datetime] = None
    payment_method: Optional[PaymentMethod] = None
    transaction_id: Optional[str] = None
    amount: Optional[Decimal] = None
    notes: Optional[str] = None
    failure_reason: Optional[str] = None
    refund_reason: Optional[str] = None
    updated_by: Optional[str] = None


@dataclass
class StatusValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    update: Optional[PaymentStatusUpdate] = None


@dataclass
class TransitionOutcome:
    work_order_id: str
    previous_status: Optional[str]
    status: PaymentStatus
    updated_by: str
    warnings: list[str] = field(default_factory=list)


@dataclass
class BulkItemResult:
    index: int
    work_order_id: Optional[str]
    success: bool
    status: Optional[str] = None
    previous_status: Optional[str] = None
    error: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class _PlannedChange:
    work_order: WorkOrder
    previous_status: Optional[str]
    update: PaymentStatusUpdate
    updated_by: str
    timestamp: datetime
    work_order_fields: dict[str, Any]
    record_fields: dict[str, Any]
    warnings: list[str]

    def outcome(self) -> TransitionOutcome:
        return TransitionOutcome(
            work_order_id=self.work_order.id,
            previous_status=self.previous_status,
            status=self.update.status,
            updated_by=self.updated_by,
            warnings=self.warnings,
        )


class PaymentNotifier(Protocol):
    async def payment_status_changed(self, event: PaymentStatusEvent) -> None: ...


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def _status_value(status: Any) -> Optional[str]:
    if status is None:
        return None
    if isinstance(status, PaymentStatus):
        return status.value
    return str(status)


def get_valid_status_transitions(current: Any) -> list[PaymentStatus]:
    """Statuses reachable from ``current``.

    Unset, empty and unrecognised values all yield ``[pending]``; terminal
    states yield ``[]``.
    """
    try:
        key = PaymentStatus(_status_value(current))
    except ValueError:
        return list(BOOTSTRAP_TRANSITIONS)
    return list(VALID_TRANSITIONS[key])


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str) and value.strip():
        try:
            return ensure_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return False
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return False
    return True


def validate_payment_status_update(
    data: Mapping[str, Any],
    now: Optional[datetime] = None,
) -> StatusValidationResult:
    """Check a raw status update, reporting every violation at once.

    A future ``paid_at`` only produces a warning.  When valid the result
    carries the typed ``PaymentStatusUpdate``.
    """
    now = now or datetime.now(timezone.utc)
    errors: list[str] = []
    warnings: list[str] = []

    work_order_id = data.get("work_order_id")
    if not work_order_id or not isinstance(work_order_id, str):
        errors.append("work_order_id is required")

    status: Optional[PaymentStatus] = None
    raw_status = data.get("status")
    if raw_status is None or raw_status == "":
        errors.append("status is required")
    else:
        try:
            status = PaymentStatus(_status_value(raw_status))
        except ValueError:
            errors.append(f"status must be one of: {_STATUS_VALUES}")

    payment_method: Optional[PaymentMethod] = None
    raw_method = data.get("payment_method")
    if raw_method is not None:
        try:
            payment_method = PaymentMethod(
                raw_method.value if isinstance(raw_method, PaymentMethod) else raw_method
            )
        except ValueError:
            errors.append(f"payment_method must be one of: {_METHOD_VALUES}")

    paid_at: Optional[datetime] = None
    raw_paid_at = data.get("paid_at")
    if raw_paid_at is not None:
        paid_at = _parse_datetime(raw_paid_at)
        if paid_at is None:
            errors.append("paid_at must be a valid date")
        elif paid_at > ensure_utc(now):
            warnings.append("paid_at is in the future")

    amount: Optional[Decimal] = None
    raw_amount = data.get("amount")
    if raw_amount is not None:
        if not _is_number(raw_amount) or raw_amount < 0:
            errors.append("amount must be a non-negative number")
        else:
            amount = to_decimal(raw_amount)

    transaction_id = data.get("transaction_id")
    if transaction_id is not None and not isinstance(transaction_id, str):
        errors.append("transaction_id must be a string")

    for text_field in ("notes", "failure_reason", "refund_reason", "updated_by"):
        value = data.get(text_field)
        if value is not None and not isinstance(value, str):
            errors.append(f"{text_field} must be a string")

    if errors:
        return StatusValidationResult(is_valid=False, errors=errors, warnings=warnings)

    return StatusValidationResult(
        is_valid=True,
        warnings=warnings,
        update=PaymentStatusUpdate(
            work_order_id=work_order_id,
            status=status,
            paid_at=paid_at,
            payment_method=payment_method,
            transaction_id=transaction_id,
            amount=amount,
            notes=data.get("notes"),
            failure_reason=data.get("failure_reason"),
            refund_reason=data.get("refund_reason"),
            updated_by=data.get("updated_by"),
        ),
    )


def _status_fields(update: PaymentStatusUpdate, now: datetime) -> dict[str, Any]:
    """Fields recorded alongside the new status."""
    fields: dict[str, Any] = {}
    if update.status == PaymentStatus.PAID:
        fields["paid_at"] = update.paid_at or now
        if update.payment_method is not None:
            fields["payment_method"] = update.payment_method.value
        if update.transaction_id is not None:
            fields["transaction_id"] = update.transaction_id
        if update.amount is not None:
            fields["amount"] = update.amount
        if update.notes is not None:
            fields["notes"] = update.notes
    elif update.status == PaymentStatus.FAILED:
        fields["failed_at"] = now
        if update.failure_reason is not None:
            fields["failure_reason"] = update.failure_reason
    elif update.status == PaymentStatus.REFUNDED:
        fields["refunded_at"] = now
        if update.refund_reason is not None:
            fields["refund_reason"] = update.refund_reason
        if update.amount is not None:
            fields["refund_amount"] = update.amount
    elif update.status == PaymentStatus.CANCELLED:
        fields["cancelled_at"] = now
        if update.notes is not None:
            fields["cancellation_reason"] = update.notes
    return fields


def _total_fee_of(work_order: WorkOrder) -> Optional[Decimal]:
    details = work_order.payment_details or {}
    total = details.get("total_fee")
    return None if total is None else to_decimal(total)


def _event_for(change: _PlannedChange) -> PaymentStatusEvent:
    return PaymentStatusEvent(
        work_order_id=change.work_order.id,
        status=change.update.status,
        previous_status=change.previous_status,
        customer_id=change.work_order.customer_id,
        worker_id=change.work_order.worker_id,
        total_fee=_total_fee_of(change.work_order),
    )


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------

class PaymentStatusManager:
    """Validates and applies payment status transitions."""

    def __init__(
        self,
        storage: Storage,
        notifier: Optional[PaymentNotifier] = None,
        dispatcher: Optional[BackgroundDispatcher] = None,
        config: PaymentStatusConfig = PaymentStatusConfig(),
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._storage = storage
        self._notifier = notifier
        self._dispatcher = dispatcher
        self._config = config
        self._clock = clock

    # -- Single transition --------------------------------------------------

    async def transition(
        self,
        data: Mapping[str, Any],
        updated_by: Optional[str] = None,
    ) -> TransitionOutcome:
        """Validate and apply one status change.

        Args:
            data: Raw update (``work_order_id``, ``status`` and optional
                status-specific fields).
            updated_by: Authenticated actor; takes precedence over
                ``data["updated_by"]``.

        Raises:
            InvalidArgument: Validation failed, or the transition is not
                allowed (``allowed_transitions`` is populated).
            NotFound: The work order does not exist.
        """
        now = self._clock()
        change = await self._plan(data, updated_by, now)

        await self._apply(change)
        await self._storage.commit()
        logger.info(
            "Payment status of work order %s: %s -> %s (by %s)",
            change.work_order.id,
            change.previous_status,
            change.update.status.value,
            change.updated_by,
        )

        # Snapshot before the log write: a failed append rolls back the
        # session, which expires loaded instances
        outcome = change.outcome()
        event = _event_for(change)

        await self._append_logs([change])
        await self._notify(event)
        return outcome

    # -- Bulk transition ----------------------------------------------------

    async def bulk_transition(
        self,
        updates: Sequence[Mapping[str, Any]],
        updated_by: Optional[str] = None,
    ) -> list[BulkItemResult]:
        """Apply up to ``bulk_max_items`` updates with per-item results.

        Each item is validated and checked on its own; a failing item never
        blocks the rest.  Accepted items are committed together.  Items that
        target the same work order are chained in request order.

        Raises:
            InvalidArgument: The list is empty or too long.
        """
        if not updates:
            raise InvalidArgument("updates must contain at least one item")
        if len(updates) > self._config.bulk_max_items:
            raise InvalidArgument(
                f"Bulk updates are limited to {self._config.bulk_max_items} items"
            )

        now = self._clock()
        planned_status: dict[str, Optional[str]] = {}

        async def process(item: tuple[int, Mapping[str, Any]]) -> _PlannedChange:
            _, data = item
            work_order_id = data.get("work_order_id")
            override = _MISSING
            if isinstance(work_order_id, str):
                override = planned_status.get(work_order_id, _MISSING)
            change = await self._plan(data, updated_by, now, current_override=override)
            planned_status[change.work_order.id] = change.update.status.value
            return change

        async def commit(pairs: list[tuple[tuple[int, Any], _PlannedChange]]) -> None:
            try:
                for _, change in pairs:
                    await self._apply(change)
                await self._storage.commit()
            except Exception:
                await self._storage.rollback()
                raise

        outcome = await run_paginated(
            fetch_page=paginate_sequence(list(updates)),
            process=process,
            commit=commit,
            key=lambda item: item[0],
            page_size=self._config.bulk_max_items,
        )

        committed = {index: change for (index, _), change in outcome.committed}
        failures = {error.key: error.message for error in outcome.errors if error.key is not None}
        batch_failure = next(
            (error.message for error in outcome.errors if error.is_batch_failure), None
        )

        results: list[BulkItemResult] = []
        for index, data in enumerate(updates):
            work_order_id = data.get("work_order_id")
            if index in committed:
                change = committed[index]
                results.append(
                    BulkItemResult(
                        index=index,
                        work_order_id=change.work_order.id,
                        success=True,
                        status=change.update.status.value,
                        previous_status=change.previous_status,
                        warnings=change.warnings,
                    )
                )
            else:
                results.append(
                    BulkItemResult(
                        index=index,
                        work_order_id=work_order_id if isinstance(work_order_id, str) else None,
                        success=False,
                        error=failures.get(index, batch_failure or "Not processed"),
                    )
                )

        logger.info(
            "Bulk payment status update: %d/%d succeeded",
            len(committed),
            len(updates),
        )
        await self._append_logs(list(committed.values()))
        return results

    # -- History ------------------------------------------------------------

    async def get_history(self, work_order_id: str) -> list[PaymentStatusLog]:
        """Every accepted transition for the work order, newest first."""
        return await self._storage.logs.list_status_logs(work_order_id)

    # -- Internals ----------------------------------------------------------

    async def _plan(
        self,
        data: Mapping[str, Any],
        updated_by: Optional[str],
        now: datetime,
        current_override: Any = None,
    ) -> _PlannedChange:
        validation = validate_payment_status_update(data, now=now)
        if not validation.is_valid:
            raise InvalidArgument(
                "; ".join(validation.errors),
                errors=validation.errors,
                warnings=validation.warnings,
            )
        update = validation.update

        work_order = await self._storage.work_orders.get(update.work_order_id)
        if work_order is None:
            raise NotFound(f"Work order {update.work_order_id} not found")

        if current_override is _MISSING or current_override is None:
            previous = _status_value(work_order.payment_status)
        else:
            previous = current_override

        allowed = get_valid_status_transitions(previous)
        if update.status not in allowed:
            raise InvalidArgument(
                f"Invalid status transition from {previous or 'unset'} to {update.status.value}",
                warnings=validation.warnings,
                allowed_transitions=[s.value for s in allowed],
            )

        actor = updated_by or update.updated_by or self._config.default_updated_by
        status_fields = _status_fields(update, now)

        return _PlannedChange(
            work_order=work_order,
            previous_status=previous,
            update=update,
            updated_by=actor,
            timestamp=now,
            work_order_fields={
                "payment_status": update.status,
                "last_payment_updated_by": actor,
            },
            record_fields={
                "status": update.status.value,
                "updated_by": actor,
                "customer_id": work_order.customer_id,
                "worker_id": work_order.worker_id,
                **status_fields,
            },
            warnings=validation.warnings,
        )

    async def _apply(self, change: _PlannedChange) -> None:
        self._storage.work_orders.apply(change.work_order, change.work_order_fields)
        await self._storage.payment_records.upsert(change.work_order.id, change.record_fields)

    async def _append_logs(self, changes: list[_PlannedChange]) -> None:
        if not changes:
            return
        try:
            for change in changes:
                await self._storage.logs.append_status_log(
                    PaymentStatusLog(
                        work_order_id=change.work_order.id,
                        status=change.update.status.value,
                        previous_status=change.previous_status,
                        updated_by=change.updated_by,
                        customer_id=change.work_order.customer_id,
                        worker_id=change.work_order.worker_id,
                        total_fee=_total_fee_of(change.work_order),
                        created_at=change.timestamp,
                    )
                )
            await self._storage.commit()
        except Exception:
            logger.exception(
                "Failed to append payment status log for %d transition(s)", len(changes)
            )
            await self._storage.rollback()

    async def _notify(self, event: PaymentStatusEvent) -> None:
        if not self._config.send_notification or self._notifier is None:
            return

        notifier = self._notifier
        description = f"payment status {event.status.value} for {event.work_order_id}"

        if self._dispatcher is not None:
            self._dispatcher.dispatch(lambda: notifier.payment_status_changed(event), description)
            return
        try:
            await notifier.payment_status_changed(event)
        except Exception:
            logger.exception("Notification failed: %s", description)
