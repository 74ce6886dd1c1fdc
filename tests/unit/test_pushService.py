"""
Unit tests for the FCM push wrapper: retries, invalid token detection and
multicast aggregation.  The Firebase SDK calls are patched out.
"""

from unittest.mock import MagicMock, patch

import pytest
from firebase_admin.exceptions import InvalidArgumentError, UnavailableError

from worksettle.integrations.fcm import pushService

MESSAGING = "worksettle.integrations.fcm.pushService.messaging"


@pytest.fixture(autouse=True)
def no_firebase(monkeypatch):
    monkeypatch.setattr(pushService, "_ensure_firebase_initialised", MagicMock())
    monkeypatch.setattr(pushService, "RETRY_BASE_DELAY_SECONDS", 0)


class TestErrorClassification:
    def test_transient(self):
        assert pushService._is_transient_error(UnavailableError("down"))
        assert pushService._is_transient_error(RuntimeError("Deadline Exceeded"))
        assert not pushService._is_transient_error(RuntimeError("bad payload"))

    def test_invalid_token(self):
        assert pushService._is_invalid_token_error(InvalidArgumentError("bad token"))
        assert pushService._is_invalid_token_error(RuntimeError("Requested entity unregistered"))
        assert not pushService._is_invalid_token_error(RuntimeError("quota"))


class TestSendToDevices:
    @pytest.mark.asyncio
    async def test_no_tokens(self):
        report = await pushService.send_to_devices([], "t", "b")
        assert report.success_count == 0
        assert not report.delivered

    @pytest.mark.asyncio
    async def test_single_token_retries_transient_errors(self):
        with patch(f"{MESSAGING}.send") as send:
            send.side_effect = [UnavailableError("try later"), "msg-1"]
            report = await pushService.send_to_devices(["tok-1"], "t", "b", data={"n": 1})

        assert send.call_count == 2
        assert report.delivered
        sent = send.call_args.args[0]
        assert sent.data == {"n": "1"}

    @pytest.mark.asyncio
    async def test_single_invalid_token_is_reported(self):
        with patch(f"{MESSAGING}.send", side_effect=InvalidArgumentError("bad token")) as send:
            report = await pushService.send_to_devices(["tok-1"], "t", "b")

        assert send.call_count == 1
        assert report.failure_count == 1
        assert report.invalid_tokens == ["tok-1"]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        with patch(f"{MESSAGING}.send", side_effect=UnavailableError("down")) as send:
            report = await pushService.send_to_devices(["tok-1"], "t", "b")

        assert send.call_count == pushService.MAX_RETRIES
        assert report.failure_count == 1
        assert report.invalid_tokens == []

    @pytest.mark.asyncio
    async def test_multicast_aggregates_responses(self):
        response = MagicMock()
        response.responses = [
            MagicMock(success=True, exception=None),
            MagicMock(success=False, exception=InvalidArgumentError("bad token")),
            MagicMock(success=False, exception=UnavailableError("down")),
        ]
        with patch(f"{MESSAGING}.send_each_for_multicast", return_value=response):
            report = await pushService.send_to_devices(["a", "b", "c"], "t", "b")

        assert report.success_count == 1
        assert report.failure_count == 2
        assert report.invalid_tokens == ["b"]

    @pytest.mark.asyncio
    async def test_multicast_failure_counts_every_token(self):
        with patch(f"{MESSAGING}.send_each_for_multicast", side_effect=RuntimeError("boom")):
            report = await pushService.send_to_devices(["a", "b"], "t", "b")

        assert report.failure_count == 2
        assert not report.delivered
