"""
Firebase Cloud Messaging integration
=====================================

Public re-exports for the FCM push service.
"""

from .pushService import (
    ANDROID_CHANNEL_ALERTS,
    ANDROID_CHANNEL_PAYMENTS,
    DeliveryReport,
    SendResult,
    send_to_devices,
)

__all__ = [
    "ANDROID_CHANNEL_ALERTS",
    "ANDROID_CHANNEL_PAYMENTS",
    "DeliveryReport",
    "SendResult",
    "send_to_devices",
]
