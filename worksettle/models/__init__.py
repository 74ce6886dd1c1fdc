"""
WorkSettle SQLAlchemy Models
=============================

Central import point for all ORM models. Import ``Base`` from here for the
``create_all`` convenience in tests and at startup.

Usage::

    from worksettle.models import Base, WorkOrder, PaymentRecord
"""

# -- Base & Mixins --
from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin

# -- Payments --
from .payment import PaymentMethod, PaymentRecord, PaymentStatus, PaymentStatusLog

# -- Work orders --
from .work_order import WorkOrder, WorkOrderStatus

# -- Urgent fee escalation --
from .urgent_fee import (
    GLOBAL_SETTINGS_ID,
    EscalationRunStats,
    ManualUrgentFeeIncrease,
    UrgentFeeSettings,
)

# -- Notifications --
from .notification import (
    DevicePlatform,
    DeviceToken,
    Notification,
    NotificationPreference,
    NotificationType,
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    # Payments
    "PaymentMethod",
    "PaymentRecord",
    "PaymentStatus",
    "PaymentStatusLog",
    # Work orders
    "WorkOrder",
    "WorkOrderStatus",
    # Urgent fee escalation
    "GLOBAL_SETTINGS_ID",
    "EscalationRunStats",
    "ManualUrgentFeeIncrease",
    "UrgentFeeSettings",
    # Notifications
    "DeviceToken",
    "DevicePlatform",
    "Notification",
    "NotificationType",
    "NotificationPreference",
]
