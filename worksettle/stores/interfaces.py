"""
Repository interfaces consumed by the settlement services.

Services never touch an ``AsyncSession`` directly; they receive a
``Storage`` bundle and call these narrow methods.  The SQLAlchemy
implementation lives in ``worksettle.stores.sql``; unit tests substitute
in-memory fakes.

Mutations made through ``apply`` / ``upsert`` / ``append_*`` become durable
only when ``Storage.commit`` is awaited.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any, Optional, Protocol

from worksettle.models.payment import PaymentRecord, PaymentStatusLog
from worksettle.models.urgent_fee import (
    EscalationRunStats,
    ManualUrgentFeeIncrease,
    UrgentFeeSettings,
)
from worksettle.models.work_order import WorkOrder


class WorkOrderStore(Protocol):
    async def get(self, work_order_id: str) -> Optional[WorkOrder]: ...

    async def fetch_escalation_page(
        self, after_id: Optional[str], limit: int
    ) -> list[WorkOrder]:
        """Open work orders with escalation enabled, ordered by id, ids > ``after_id``."""
        ...

    async def list_created_between(
        self, start: datetime, end: datetime
    ) -> list[WorkOrder]: ...

    def apply(self, work_order: WorkOrder, fields: Mapping[str, Any]) -> None: ...


class PaymentRecordStore(Protocol):
    async def get(self, work_order_id: str) -> Optional[PaymentRecord]: ...

    async def upsert(
        self, work_order_id: str, fields: Mapping[str, Any]
    ) -> PaymentRecord: ...


class LogStore(Protocol):
    async def append_status_log(self, entry: PaymentStatusLog) -> None: ...

    async def list_status_logs(self, work_order_id: str) -> list[PaymentStatusLog]:
        """Newest first."""
        ...

    async def add_run_stats(self, stats: EscalationRunStats) -> None: ...

    async def list_run_stats(
        self, since: datetime, limit: int
    ) -> list[EscalationRunStats]:
        """Runs started at or after ``since``, newest first."""
        ...

    async def add_manual_increase(self, entry: ManualUrgentFeeIncrease) -> None: ...


class SettingsStore(Protocol):
    async def get_urgent_fee_settings(self) -> Optional[UrgentFeeSettings]: ...

    async def save_urgent_fee_settings(
        self, fields: Mapping[str, Any]
    ) -> UrgentFeeSettings: ...


class Storage(Protocol):
    """Bundle of stores sharing one unit of work."""

    work_orders: WorkOrderStore
    payment_records: PaymentRecordStore
    logs: LogStore
    settings: SettingsStore

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...
