"""
Unit tests for payment and escalation notifications.

Tests recipient routing per payment status, operator alerts, preference
suppression, invalid token cleanup, the session-owning facade and
fire-and-forget dispatch.
"""

import asyncio
import logging
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from worksettle.integrations.fcm import pushService
from worksettle.integrations.fcm.pushService import DeliveryReport
from worksettle.models.notification import Notification, NotificationType
from worksettle.models.payment import PaymentStatus
from worksettle.services import notificationService
from worksettle.services.notificationService import (
    BackgroundDispatcher,
    EscalationAlert,
    NotificationService,
    PaymentCalculatedEvent,
    PaymentStatusEvent,
    notify_admins_escalation,
    notify_payment_calculated,
    notify_payment_status_changed,
)

MODULE = "worksettle.services.notificationService"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db():
    db = AsyncMock()
    db.add = MagicMock()
    return db


def _event(status: PaymentStatus, **overrides) -> PaymentStatusEvent:
    values = dict(
        work_order_id="wo-001",
        status=status,
        previous_status="pending",
        customer_id="customer-1",
        worker_id="worker-1",
    )
    values.update(overrides)
    return PaymentStatusEvent(**values)


# ---------------------------------------------------------------------------
# Payment status routing
# ---------------------------------------------------------------------------


class TestPaymentStatusRouting:
    """Who is told about which transition."""

    @pytest.mark.asyncio
    async def test_paid_notifies_customer_and_worker(self, mock_db):
        with patch(f"{MODULE}._send_to_user", new_callable=AsyncMock) as send:
            count = await notify_payment_status_changed(_event(PaymentStatus.PAID), mock_db)

        assert count == 2
        recipients = [c.args[0] for c in send.await_args_list]
        assert recipients == ["customer-1", "worker-1"]
        assert "can start the work" in send.await_args_list[1].args[2]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [PaymentStatus.FAILED, PaymentStatus.REFUNDED])
    async def test_customer_only_statuses(self, mock_db, status):
        with patch(f"{MODULE}._send_to_user", new_callable=AsyncMock) as send:
            count = await notify_payment_status_changed(_event(status), mock_db)

        assert count == 1
        assert send.await_args.args[0] == "customer-1"

    @pytest.mark.asyncio
    async def test_cancelled_notifies_both(self, mock_db):
        with patch(f"{MODULE}._send_to_user", new_callable=AsyncMock):
            count = await notify_payment_status_changed(_event(PaymentStatus.CANCELLED), mock_db)
        assert count == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [PaymentStatus.PENDING, PaymentStatus.PROCESSING])
    async def test_intermediate_statuses_are_silent(self, mock_db, status):
        with patch(f"{MODULE}._send_to_user", new_callable=AsyncMock) as send:
            count = await notify_payment_status_changed(_event(status), mock_db)

        assert count == 0
        send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unassigned_worker_is_skipped(self, mock_db):
        with patch(f"{MODULE}._send_to_user", new_callable=AsyncMock) as send:
            count = await notify_payment_status_changed(
                _event(PaymentStatus.PAID, worker_id=None), mock_db
            )

        assert count == 1
        assert send.await_args.args[0] == "customer-1"

    @pytest.mark.asyncio
    async def test_deep_link_data(self, mock_db):
        with patch(f"{MODULE}._send_to_user", new_callable=AsyncMock) as send:
            await notify_payment_status_changed(_event(PaymentStatus.FAILED), mock_db)

        data = send.await_args.args[4]
        assert data == {
            "type": "payment_status_changed",
            "work_order_id": "wo-001",
            "status": "failed",
        }


class TestPaymentCalculated:
    @pytest.mark.asyncio
    async def test_amounts_in_body(self, mock_db):
        event = PaymentCalculatedEvent(
            work_order_id="wo-001",
            worker_id="worker-1",
            total_fee=Decimal("1100"),
            worker_payment=Decimal("990.5"),
        )
        with patch(f"{MODULE}._send_to_user", new_callable=AsyncMock) as send:
            send.return_value = True
            delivered = await notify_payment_calculated(event, mock_db)

        assert delivered is True
        body = send.await_args.args[2]
        assert "total 1,100" in body
        assert "your payment 990.50" in body
        assert send.await_args.args[3] == NotificationType.PAYMENT_CALCULATED


# ---------------------------------------------------------------------------
# Operator alerts
# ---------------------------------------------------------------------------


class TestAdminEscalationAlerts:
    @pytest.mark.asyncio
    async def test_partial_failure_alert(self, mock_db):
        alert = EscalationAlert(processed_count=20, increased_count=15, error_count=2, errors=[])
        with patch(f"{MODULE}._send_to_user", new_callable=AsyncMock) as send:
            count = await notify_admins_escalation(alert, ["admin-1", "admin-2"], mock_db)

        assert count == 2
        call = send.await_args_list[0]
        assert call.args[3] == NotificationType.URGENT_FEE_ERRORS
        assert "2 error(s) while processing 20" in call.args[2]
        assert call.kwargs["respect_preferences"] is False
        assert call.kwargs["channel_id"] == pushService.ANDROID_CHANNEL_ALERTS

    @pytest.mark.asyncio
    async def test_critical_alert(self, mock_db):
        alert = EscalationAlert(
            processed_count=5,
            increased_count=0,
            error_count=0,
            errors=[],
            critical_error="database unavailable",
        )
        with patch(f"{MODULE}._send_to_user", new_callable=AsyncMock) as send:
            await notify_admins_escalation(alert, ["admin-1"], mock_db)

        assert send.await_args.args[3] == NotificationType.URGENT_FEE_CRITICAL
        assert "database unavailable" in send.await_args.args[2]

    @pytest.mark.asyncio
    async def test_no_admins_configured(self, mock_db):
        alert = EscalationAlert(processed_count=1, increased_count=0, error_count=1, errors=[])
        with patch(f"{MODULE}._send_to_user", new_callable=AsyncMock) as send:
            count = await notify_admins_escalation(alert, [], mock_db)

        assert count == 0
        send.assert_not_awaited()


# ---------------------------------------------------------------------------
# Delivery to a single user
# ---------------------------------------------------------------------------


class TestSendToUser:
    @pytest.mark.asyncio
    async def test_suppressed_by_preference(self, mock_db):
        with patch(
            f"{MODULE}._payment_updates_enabled", new_callable=AsyncMock, return_value=False
        ), patch(
            f"{MODULE}._get_user_device_tokens", new_callable=AsyncMock
        ) as get_tokens, patch(
            f"{MODULE}.pushService.send_to_devices", new_callable=AsyncMock
        ) as push:
            result = await notificationService._send_to_user(
                "customer-1", "t", "b", NotificationType.PAYMENT_STATUS_CHANGED, None, mock_db
            )

        assert result is True
        get_tokens.assert_not_awaited()
        push.assert_not_awaited()
        stored = mock_db.add.call_args.args[0]
        assert isinstance(stored, Notification)
        assert stored.sent_at is None

    @pytest.mark.asyncio
    async def test_operator_alert_ignores_preference(self, mock_db):
        with patch(
            f"{MODULE}._payment_updates_enabled", new_callable=AsyncMock, return_value=False
        ) as prefs, patch(
            f"{MODULE}._get_user_device_tokens", new_callable=AsyncMock, return_value=["tok-1"]
        ), patch(
            f"{MODULE}.pushService.send_to_devices",
            new_callable=AsyncMock,
            return_value=DeliveryReport(success_count=1),
        ) as push:
            result = await notificationService._send_to_user(
                "admin-1",
                "t",
                "b",
                NotificationType.URGENT_FEE_ERRORS,
                None,
                mock_db,
                respect_preferences=False,
            )

        assert result is True
        prefs.assert_not_awaited()
        push.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_devices_stores_only(self, mock_db):
        with patch(
            f"{MODULE}._payment_updates_enabled", new_callable=AsyncMock, return_value=True
        ), patch(
            f"{MODULE}._get_user_device_tokens", new_callable=AsyncMock, return_value=[]
        ), patch(
            f"{MODULE}.pushService.send_to_devices", new_callable=AsyncMock
        ) as push:
            result = await notificationService._send_to_user(
                "customer-1", "t", "b", NotificationType.PAYMENT_STATUS_CHANGED, None, mock_db
            )

        assert result is True
        push.assert_not_awaited()
        mock_db.add.assert_called_once()

    @pytest.mark.asyncio
    async def test_invalid_tokens_are_deactivated(self, mock_db):
        report = DeliveryReport(success_count=1, failure_count=1, invalid_tokens=["tok-2"])
        with patch(
            f"{MODULE}._payment_updates_enabled", new_callable=AsyncMock, return_value=True
        ), patch(
            f"{MODULE}._get_user_device_tokens",
            new_callable=AsyncMock,
            return_value=["tok-1", "tok-2"],
        ), patch(
            f"{MODULE}.pushService.send_to_devices", new_callable=AsyncMock, return_value=report
        ) as push, patch(
            f"{MODULE}._deactivate_invalid_tokens", new_callable=AsyncMock
        ) as deactivate:
            result = await notificationService._send_to_user(
                "customer-1", "t", "b", NotificationType.PAYMENT_STATUS_CHANGED, None, mock_db
            )

        assert result is True
        assert push.await_args.kwargs["device_tokens"] == ["tok-1", "tok-2"]
        assert push.await_args.kwargs["channel_id"] == pushService.ANDROID_CHANNEL_PAYMENTS
        deactivate.assert_awaited_once_with(["tok-2"], mock_db)

    @pytest.mark.asyncio
    async def test_every_delivery_failed(self, mock_db):
        with patch(
            f"{MODULE}._payment_updates_enabled", new_callable=AsyncMock, return_value=True
        ), patch(
            f"{MODULE}._get_user_device_tokens", new_callable=AsyncMock, return_value=["tok-1"]
        ), patch(
            f"{MODULE}.pushService.send_to_devices",
            new_callable=AsyncMock,
            return_value=DeliveryReport(failure_count=1),
        ):
            result = await notificationService._send_to_user(
                "customer-1", "t", "b", NotificationType.PAYMENT_STATUS_CHANGED, None, mock_db
            )

        assert result is False


# ---------------------------------------------------------------------------
# Facade and dispatch
# ---------------------------------------------------------------------------


class TestNotificationServiceFacade:
    @pytest.mark.asyncio
    async def test_commits_own_session(self, mock_db):
        session_factory = MagicMock()
        session_factory.return_value.__aenter__.return_value = mock_db
        service = NotificationService(session_factory, admin_user_ids=["admin-1"])

        with patch(
            f"{MODULE}.notify_admins_escalation", new_callable=AsyncMock, return_value=1
        ) as notify:
            await service.escalation_alert(
                EscalationAlert(processed_count=1, increased_count=0, error_count=1, errors=[])
            )

        assert notify.await_args.args[1] == ["admin-1"]
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rolls_back_on_failure(self, mock_db):
        session_factory = MagicMock()
        session_factory.return_value.__aenter__.return_value = mock_db
        service = NotificationService(session_factory)

        with patch(
            f"{MODULE}.notify_payment_status_changed",
            new_callable=AsyncMock,
            side_effect=RuntimeError("db gone"),
        ):
            with pytest.raises(RuntimeError):
                await service.payment_status_changed(_event(PaymentStatus.PAID))

        mock_db.rollback.assert_awaited_once()
        mock_db.commit.assert_not_awaited()


class TestBackgroundDispatcher:
    @pytest.mark.asyncio
    async def test_runs_and_drains(self):
        dispatcher = BackgroundDispatcher()
        seen = []

        async def work():
            await asyncio.sleep(0)
            seen.append("done")

        dispatcher.dispatch(work, "test work")
        await dispatcher.drain()

        assert seen == ["done"]

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, caplog):
        dispatcher = BackgroundDispatcher()

        async def boom():
            raise RuntimeError("push failed")

        with caplog.at_level(logging.ERROR, logger=MODULE):
            task = dispatcher.dispatch(boom, "paid notification for wo-001")
            await dispatcher.drain()

        assert task.done()
        assert task.exception() is None
        assert "paid notification for wo-001" in caplog.text
