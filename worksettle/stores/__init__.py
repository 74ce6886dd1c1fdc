"""Repository interfaces and their SQLAlchemy implementations."""

from .interfaces import LogStore, PaymentRecordStore, SettingsStore, Storage, WorkOrderStore
from .sql import SqlStorage

__all__ = [
    "LogStore",
    "PaymentRecordStore",
    "SettingsStore",
    "SqlStorage",
    "Storage",
    "WorkOrderStore",
]
