"""
Notification Service
====================

Side channel that tells customers, workers and operators about payment
events.  Every public send:

  1. Builds the title, body and deep-link data for the event.
  2. Checks the recipient's ``payment_updates`` preference (operator alerts
     bypass it).
  3. Stores a ``Notification`` row for in-app history.
  4. Pushes to the recipient's active devices via FCM.
  5. Deactivates tokens FCM reports as invalid.

Notifications are dispatched *after* the state change commits, on a
background task, with their own session.  A failed notification is logged
and never rolls back or blocks the state change.

Who hears about a payment status change:

  =========  ========  ======
  status     customer  worker
  =========  ========  ======
  paid       yes       yes (can start work)
  failed     yes       no
  refunded   yes       no
  cancelled  yes       yes
  =========  ========  ======
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from worksettle.integrations.fcm import pushService
from worksettle.models.notification import (
    DeviceToken,
    Notification,
    NotificationPreference,
    NotificationType,
)
from worksettle.models.payment import PaymentStatus

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Event payloads
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PaymentStatusEvent:
    """Snapshot of an accepted transition, taken before dispatch."""
    work_order_id: str
    status: PaymentStatus
    previous_status: Optional[str]
    customer_id: Optional[str]
    worker_id: Optional[str]
    total_fee: Optional[Decimal] = None


@dataclass(frozen=True)
class PaymentCalculatedEvent:
    work_order_id: str
    worker_id: str
    total_fee: Decimal
    worker_payment: Decimal


@dataclass(frozen=True)
class EscalationAlert:
    """What operators are told about an escalation run."""
    processed_count: int
    increased_count: int
    error_count: int
    errors: list[dict[str, Any]]
    critical_error: Optional[str] = None


_CUSTOMER_MESSAGES: dict[PaymentStatus, tuple[str, str]] = {
    PaymentStatus.PAID: ("Payment completed", "Payment for work order {id} has been completed."),
    PaymentStatus.FAILED: ("Payment failed", "Payment for work order {id} failed. Please try again."),
    PaymentStatus.REFUNDED: ("Payment refunded", "Payment for work order {id} has been refunded."),
    PaymentStatus.CANCELLED: ("Payment cancelled", "Payment for work order {id} has been cancelled."),
}

_WORKER_MESSAGES: dict[PaymentStatus, tuple[str, str]] = {
    PaymentStatus.PAID: (
        "Payment confirmed",
        "Payment for work order {id} is complete. You can start the work.",
    ),
    PaymentStatus.CANCELLED: (
        "Work order cancelled",
        "Payment for work order {id} was cancelled.",
    ),
}


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

async def _get_user_device_tokens(user_id: str, db: AsyncSession) -> list[str]:
    result = await db.execute(
        select(DeviceToken.device_token).where(
            DeviceToken.user_id == user_id,
            DeviceToken.is_active.is_(True),
        )
    )
    return [row[0] for row in result.all()]


async def _payment_updates_enabled(user_id: str, db: AsyncSession) -> bool:
    """Users without a preference row receive everything."""
    result = await db.execute(
        select(NotificationPreference.payment_updates).where(
            NotificationPreference.user_id == user_id
        )
    )
    enabled = result.scalar_one_or_none()
    return True if enabled is None else bool(enabled)


async def _store_notification(
    user_id: str,
    title: str,
    body: str,
    notification_type: NotificationType,
    data: dict | None,
    db: AsyncSession,
    sent: bool = True,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        title=title,
        body=body,
        notification_type=notification_type,
        data_json=data,
        read=False,
        sent_at=datetime.now(timezone.utc) if sent else None,
    )
    db.add(notification)
    await db.flush()
    return notification


async def _deactivate_invalid_tokens(invalid_tokens: list[str], db: AsyncSession) -> None:
    if not invalid_tokens:
        return
    logger.info("Deactivating %d invalid device tokens", len(invalid_tokens))
    await db.execute(
        update(DeviceToken)
        .where(DeviceToken.device_token.in_(invalid_tokens))
        .values(is_active=False, updated_at=datetime.now(timezone.utc))
    )
    await db.flush()


async def _send_to_user(
    user_id: str,
    title: str,
    body: str,
    notification_type: NotificationType,
    data: dict | None,
    db: AsyncSession,
    respect_preferences: bool = True,
    channel_id: str = pushService.ANDROID_CHANNEL_PAYMENTS,
) -> bool:
    """Store and push one notification to one user.

    Returns:
        True when pushed to at least one device, or when there was nothing
        to push to (suppressed by preference, no devices).  False when every
        delivery attempt failed.
    """
    if respect_preferences and not await _payment_updates_enabled(user_id, db):
        logger.info(
            "Notification suppressed by user preferences: user=%s, type=%s",
            user_id,
            notification_type.value,
        )
        await _store_notification(user_id, title, body, notification_type, data, db, sent=False)
        return True

    tokens = await _get_user_device_tokens(user_id, db)
    await _store_notification(
        user_id, title, body, notification_type, data, db, sent=bool(tokens)
    )
    if not tokens:
        logger.warning("No device tokens for user %s; notification stored only", user_id)
        return True

    report = await pushService.send_to_devices(
        device_tokens=tokens,
        title=title,
        body=body,
        data=data,
        channel_id=channel_id,
    )
    await _deactivate_invalid_tokens(report.invalid_tokens, db)
    return report.delivered


def _format_amount(amount: Decimal) -> str:
    return f"{amount:,.0f}" if amount == amount.to_integral_value() else f"{amount:,.2f}"


# ---------------------------------------------------------------------------
# Public API -- payment notifications
# ---------------------------------------------------------------------------

async def notify_payment_status_changed(event: PaymentStatusEvent, db: AsyncSession) -> int:
    """Notify the customer and/or worker of a payment status change.

    Returns:
        Number of recipients notified (stored and, where possible, pushed).
    """
    data = {
        "type": NotificationType.PAYMENT_STATUS_CHANGED.value,
        "work_order_id": event.work_order_id,
        "status": event.status.value,
    }
    recipients: list[tuple[str, tuple[str, str]]] = []

    customer_message = _CUSTOMER_MESSAGES.get(event.status)
    if customer_message and event.customer_id:
        recipients.append((event.customer_id, customer_message))

    worker_message = _WORKER_MESSAGES.get(event.status)
    if worker_message and event.worker_id:
        recipients.append((event.worker_id, worker_message))

    for user_id, (title, body) in recipients:
        await _send_to_user(
            user_id,
            title,
            body.format(id=event.work_order_id),
            NotificationType.PAYMENT_STATUS_CHANGED,
            data,
            db,
        )
    return len(recipients)


async def notify_payment_calculated(event: PaymentCalculatedEvent, db: AsyncSession) -> bool:
    """Tell the assigned worker what they will be paid."""
    return await _send_to_user(
        event.worker_id,
        "New work order payment",
        (
            f"Work order {event.work_order_id}: total {_format_amount(event.total_fee)}, "
            f"your payment {_format_amount(event.worker_payment)}."
        ),
        NotificationType.PAYMENT_CALCULATED,
        {
            "type": NotificationType.PAYMENT_CALCULATED.value,
            "work_order_id": event.work_order_id,
        },
        db,
    )


# ---------------------------------------------------------------------------
# Public API -- operator alerts
# ---------------------------------------------------------------------------

async def notify_admins_escalation(
    alert: EscalationAlert,
    admin_user_ids: Sequence[str],
    db: AsyncSession,
) -> int:
    """Alert every configured operator about a failed or partially failed run."""
    if not admin_user_ids:
        logger.warning("Escalation alert not sent: no admin users configured")
        return 0

    if alert.critical_error is not None:
        notification_type = NotificationType.URGENT_FEE_CRITICAL
        title = "Urgent fee escalation failed"
        body = f"The escalation run aborted: {alert.critical_error}"
    else:
        notification_type = NotificationType.URGENT_FEE_ERRORS
        title = "Urgent fee escalation errors"
        body = (
            f"{alert.error_count} error(s) while processing "
            f"{alert.processed_count} work orders."
        )

    data = {
        "type": notification_type.value,
        "processed": alert.processed_count,
        "increased": alert.increased_count,
        "errors": alert.error_count,
    }
    for admin_id in admin_user_ids:
        await _send_to_user(
            admin_id,
            title,
            body,
            notification_type,
            data,
            db,
            respect_preferences=False,
            channel_id=pushService.ANDROID_CHANNEL_ALERTS,
        )
    return len(admin_user_ids)


# ---------------------------------------------------------------------------
# Session-owning facade and background dispatch
# ---------------------------------------------------------------------------

class BackgroundDispatcher:
    """Runs notification coroutines as fire-and-forget tasks.

    Keeps strong references to pending tasks so they are not garbage
    collected mid-flight, and logs (rather than propagates) their failures.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def dispatch(self, factory: Callable[[], Awaitable[Any]], description: str) -> asyncio.Task:
        async def _run() -> None:
            try:
                await factory()
            except Exception:
                logger.exception("Background notification failed: %s", description)

        task = asyncio.get_running_loop().create_task(_run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every in-flight notification (shutdown and tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class NotificationService:
    """Notification entry points that each open and commit their own session."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        admin_user_ids: Sequence[str] = (),
    ) -> None:
        self._session_factory = session_factory
        self._admin_user_ids = list(admin_user_ids)

    async def _in_session(self, send: Callable[[AsyncSession], Awaitable[Any]]) -> Any:
        async with self._session_factory() as db:
            try:
                result = await send(db)
                await db.commit()
                return result
            except Exception:
                await db.rollback()
                raise

    async def payment_status_changed(self, event: PaymentStatusEvent) -> None:
        await self._in_session(lambda db: notify_payment_status_changed(event, db))

    async def payment_calculated(self, event: PaymentCalculatedEvent) -> None:
        await self._in_session(lambda db: notify_payment_calculated(event, db))

    async def escalation_alert(self, alert: EscalationAlert) -> None:
        await self._in_session(
            lambda db: notify_admins_escalation(alert, self._admin_user_ids, db)
        )
