"""
SQLAlchemy models for device_tokens, notifications, and notification_preferences.

User ids are external (issued by the account service) so they are stored as
plain strings without foreign keys.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Enum, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class DevicePlatform(str, enum.Enum):
    """Supported mobile platforms for push notifications."""
    IOS = "ios"
    ANDROID = "android"


class NotificationType(str, enum.Enum):
    """Classification of notification events.

    Payment types are subject to the user's ``payment_updates`` preference;
    urgent-fee alerts go to operators and are never suppressed.
    """
    PAYMENT_CALCULATED = "payment_calculated"
    PAYMENT_STATUS_CHANGED = "payment_status_changed"
    URGENT_FEE_ERRORS = "urgent_fee_errors"
    URGENT_FEE_CRITICAL = "urgent_fee_critical"


# ---------------------------------------------------------------------------
# DeviceToken
# ---------------------------------------------------------------------------

class DeviceToken(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """FCM registration token for one user/device pair.

    Deactivated when FCM reports the token as unregistered.
    """
    __tablename__ = "device_tokens"

    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    device_token: Mapped[str] = mapped_column(String(512), nullable=False)
    platform: Mapped[DevicePlatform] = mapped_column(
        Enum(DevicePlatform, name="device_platform"),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default="true",
    )

    __table_args__ = (
        Index("uq_device_tokens_user_token", "user_id", "device_token", unique=True),
        Index("ix_device_tokens_active", "user_id", "is_active"),
    )

    def __repr__(self) -> str:
        return (
            f"<DeviceToken(id={self.id}, user_id={self.user_id}, "
            f"platform={self.platform}, active={self.is_active})>"
        )


# ---------------------------------------------------------------------------
# Notification
# ---------------------------------------------------------------------------

class Notification(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Persistent notification record for in-app notification history.

    Stored even when the push itself is suppressed or cannot be delivered.
    """
    __tablename__ = "notifications"

    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    notification_type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType, name="notification_type"),
        nullable=False,
    )
    data_json: Mapped[Optional[Any]] = mapped_column(JSONB, nullable=True)
    read: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        Index("ix_notifications_user_created", "user_id", "created_at"),
        Index("ix_notifications_type", "notification_type"),
    )

    def __repr__(self) -> str:
        return (
            f"<Notification(id={self.id}, user_id={self.user_id}, "
            f"type={self.notification_type}, read={self.read})>"
        )


# ---------------------------------------------------------------------------
# NotificationPreference
# ---------------------------------------------------------------------------

class NotificationPreference(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Per-user opt-out for payment notifications. At most one row per user."""
    __tablename__ = "notification_preferences"

    user_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    payment_updates: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default="true",
    )

    def __repr__(self) -> str:
        return (
            f"<NotificationPreference(user_id={self.user_id}, "
            f"payment_updates={self.payment_updates})>"
        )
