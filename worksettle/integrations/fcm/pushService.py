"""
Firebase Cloud Messaging (FCM) Push Service
============================================

Thin async wrapper over the Firebase Admin SDK used by the notification
service to deliver payment and escalation pushes.

Initialization:
  The SDK is initialised lazily on first send from
  ``settings.firebase_service_account_path`` (a JSON file) or
  ``settings.firebase_credentials_json`` (the raw JSON).

Retry logic:
  Transient failures (unavailable, deadline exceeded, HTTP 5xx) are retried
  up to ``MAX_RETRIES`` times with exponential backoff.  Invalid-token
  errors are never retried; the offending tokens are reported back so the
  caller can deactivate them.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field

import firebase_admin
from firebase_admin import credentials, messaging
from firebase_admin.exceptions import (
    InvalidArgumentError,
    NotFoundError,
    UnavailableError,
)

from worksettle.core.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration constants
# ---------------------------------------------------------------------------

MAX_RETRIES: int = 3
RETRY_BASE_DELAY_SECONDS: float = 0.5
FCM_BATCH_LIMIT: int = 500  # multicast token limit

ANDROID_CHANNEL_PAYMENTS = "worksettle_payments"
ANDROID_CHANNEL_ALERTS = "worksettle_alerts"


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class SendResult:
    success: bool
    message_id: str | None = None
    error: str | None = None
    invalid_token: bool = False


@dataclass
class DeliveryReport:
    """Aggregate outcome of delivering one notification to a user's devices."""
    success_count: int = 0
    failure_count: int = 0
    invalid_tokens: list[str] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return self.success_count > 0


# ---------------------------------------------------------------------------
# Firebase Admin SDK initialisation (lazy singleton)
# ---------------------------------------------------------------------------

_firebase_app: firebase_admin.App | None = None


def _ensure_firebase_initialised() -> firebase_admin.App:
    """Return the Firebase app, creating it from settings on first use.

    Raises:
        RuntimeError: If no credentials are configured.
    """
    global _firebase_app

    if _firebase_app is not None:
        return _firebase_app

    try:
        _firebase_app = firebase_admin.get_app()
        return _firebase_app
    except ValueError:
        pass  # no default app yet

    if settings.firebase_service_account_path:
        cred = credentials.Certificate(settings.firebase_service_account_path)
    elif settings.firebase_credentials_json:
        cred = credentials.Certificate(json.loads(settings.firebase_credentials_json))
    else:
        raise RuntimeError(
            "Firebase credentials not configured. Set FIREBASE_SERVICE_ACCOUNT_PATH "
            "or FIREBASE_CREDENTIALS_JSON."
        )

    _firebase_app = firebase_admin.initialize_app(cred)
    logger.info("Firebase Admin SDK initialised")
    return _firebase_app


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, UnavailableError):
        return True
    error_str = str(exc).lower()
    return any(
        indicator in error_str
        for indicator in ("unavailable", "deadline exceeded", "timeout", "503", "500")
    )


def _is_invalid_token_error(exc: BaseException) -> bool:
    if isinstance(exc, (InvalidArgumentError, NotFoundError)):
        return True
    error_str = str(exc).lower()
    return any(
        indicator in error_str
        for indicator in ("unregistered", "not-registered", "invalid-registration")
    )


def _platform_configs(
    channel_id: str, high_priority: bool
) -> tuple[messaging.APNSConfig, messaging.AndroidConfig]:
    apns = messaging.APNSConfig(
        headers={"apns-priority": "10" if high_priority else "5"},
        payload=messaging.APNSPayload(aps=messaging.Aps(sound="default")),
    )
    android = messaging.AndroidConfig(
        priority="high" if high_priority else "normal",
        notification=messaging.AndroidNotification(sound="default", channel_id=channel_id),
    )
    return apns, android


async def _send_with_retry(msg: messaging.Message) -> SendResult:
    """Send one message, retrying transient errors with exponential backoff.

    The blocking SDK call runs in a worker thread.
    """
    _ensure_firebase_initialised()

    for attempt in range(1, MAX_RETRIES + 1):
        try:
            message_id: str = await asyncio.to_thread(messaging.send, msg)
            return SendResult(success=True, message_id=message_id)
        except Exception as exc:
            if _is_invalid_token_error(exc):
                logger.warning("Invalid FCM token detected: %s", exc)
                return SendResult(success=False, error=str(exc), invalid_token=True)

            if _is_transient_error(exc) and attempt < MAX_RETRIES:
                delay = RETRY_BASE_DELAY_SECONDS * (2 ** (attempt - 1))
                logger.warning(
                    "Transient FCM error (attempt %d/%d), retrying in %.1fs: %s",
                    attempt,
                    MAX_RETRIES,
                    delay,
                    exc,
                )
                await asyncio.sleep(delay)
                continue

            logger.error("FCM send failed after %d attempts: %s", attempt, exc)
            return SendResult(success=False, error=str(exc))

    return SendResult(success=False, error=f"Failed after {MAX_RETRIES} retries")


async def _send_multicast(
    tokens: list[str],
    notification: messaging.Notification,
    data: dict[str, str] | None,
    apns: messaging.APNSConfig,
    android: messaging.AndroidConfig,
    report: DeliveryReport,
) -> None:
    multicast = messaging.MulticastMessage(
        tokens=tokens,
        notification=notification,
        data=data,
        apns=apns,
        android=android,
    )
    try:
        response: messaging.BatchResponse = await asyncio.to_thread(
            messaging.send_each_for_multicast, multicast
        )
    except Exception as exc:
        logger.error("Multicast send failed for %d tokens: %s", len(tokens), exc)
        report.failure_count += len(tokens)
        return

    for token, send_response in zip(tokens, response.responses):
        if send_response.success:
            report.success_count += 1
            continue
        report.failure_count += 1
        if send_response.exception is not None and _is_invalid_token_error(
            send_response.exception
        ):
            report.invalid_tokens.append(token)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def send_to_devices(
    device_tokens: list[str],
    title: str,
    body: str,
    data: dict[str, str] | None = None,
    high_priority: bool = True,
    channel_id: str = ANDROID_CHANNEL_PAYMENTS,
) -> DeliveryReport:
    """Deliver one notification to every given device.

    A single token is sent with retries; larger lists go through multicast
    in chunks of ``FCM_BATCH_LIMIT``.

    Args:
        device_tokens: FCM registration tokens of the recipient.
        title: Notification title.
        body: Notification body text.
        data: Key-value payload; values are coerced to strings.
        high_priority: Deliver immediately rather than batched by the OS.
        channel_id: Android notification channel.

    Returns:
        DeliveryReport with counts and tokens FCM rejected as invalid.
    """
    report = DeliveryReport()
    if not device_tokens:
        return report

    str_data = {k: str(v) for k, v in data.items()} if data else None
    apns, android = _platform_configs(channel_id, high_priority)
    notification = messaging.Notification(title=title, body=body)

    logger.info("Sending push to %d device(s): title=%r", len(device_tokens), title)

    if len(device_tokens) == 1:
        result = await _send_with_retry(
            messaging.Message(
                token=device_tokens[0],
                notification=notification,
                data=str_data,
                apns=apns,
                android=android,
            )
        )
        if result.success:
            report.success_count = 1
        else:
            report.failure_count = 1
            if result.invalid_token:
                report.invalid_tokens.append(device_tokens[0])
        return report

    _ensure_firebase_initialised()
    for start in range(0, len(device_tokens), FCM_BATCH_LIMIT):
        await _send_multicast(
            device_tokens[start:start + FCM_BATCH_LIMIT],
            notification,
            str_data,
            apns,
            android,
            report,
        )

    if report.invalid_tokens:
        logger.warning("Push found %d invalid tokens", len(report.invalid_tokens))
    return report
