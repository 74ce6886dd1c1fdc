"""
Shared pytest fixtures for WorkSettle unit tests.

Provides an in-memory ``Storage`` bundle implementing the repository
interfaces, plus factories for work orders built from the real ORM models
(no database connection required).
"""

from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Optional
from unittest.mock import AsyncMock

import pytest

from worksettle.models.payment import PaymentRecord, PaymentStatusLog
from worksettle.models.urgent_fee import (
    GLOBAL_SETTINGS_ID,
    EscalationRunStats,
    ManualUrgentFeeIncrease,
    UrgentFeeSettings,
)
from worksettle.models.work_order import WorkOrder, WorkOrderStatus

FIXED_NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# In-memory stores
# ---------------------------------------------------------------------------


class InMemoryWorkOrderStore:
    def __init__(self) -> None:
        self.items: dict[str, WorkOrder] = {}
        self.fail_on_page: Optional[int] = None
        self.pages_fetched = 0

    def add(self, work_order: WorkOrder) -> WorkOrder:
        self.items[work_order.id] = work_order
        return work_order

    async def get(self, work_order_id: str) -> Optional[WorkOrder]:
        return self.items.get(work_order_id)

    async def fetch_escalation_page(
        self, after_id: Optional[str], limit: int
    ) -> list[WorkOrder]:
        self.pages_fetched += 1
        if self.fail_on_page is not None and self.pages_fetched == self.fail_on_page:
            raise RuntimeError("work order query timed out")
        candidates = sorted(
            (
                wo
                for wo in self.items.values()
                if wo.status == WorkOrderStatus.OPEN and wo.urgent_fee_enabled
            ),
            key=lambda wo: wo.id,
        )
        if after_id is not None:
            candidates = [wo for wo in candidates if wo.id > after_id]
        return candidates[:limit]

    async def list_created_between(
        self, start: datetime, end: datetime
    ) -> list[WorkOrder]:
        return sorted(
            (
                wo
                for wo in self.items.values()
                if wo.created_at is not None and start <= wo.created_at < end
            ),
            key=lambda wo: wo.created_at,
        )

    def apply(self, work_order: WorkOrder, fields: Mapping[str, Any]) -> None:
        for name, value in fields.items():
            setattr(work_order, name, value)


class InMemoryPaymentRecordStore:
    def __init__(self) -> None:
        self.items: dict[str, PaymentRecord] = {}

    async def get(self, work_order_id: str) -> Optional[PaymentRecord]:
        return self.items.get(work_order_id)

    async def upsert(
        self, work_order_id: str, fields: Mapping[str, Any]
    ) -> PaymentRecord:
        record = self.items.get(work_order_id)
        if record is None:
            record = PaymentRecord(work_order_id=work_order_id)
            self.items[work_order_id] = record
        for name, value in fields.items():
            setattr(record, name, value)
        return record


class InMemoryLogStore:
    def __init__(self) -> None:
        self.status_logs: list[PaymentStatusLog] = []
        self.run_stats: list[EscalationRunStats] = []
        self.manual_increases: list[ManualUrgentFeeIncrease] = []
        self.fail_status_logs = False
        self.fail_run_stats = False

    async def append_status_log(self, entry: PaymentStatusLog) -> None:
        if self.fail_status_logs:
            raise RuntimeError("log table unavailable")
        self.status_logs.append(entry)

    async def list_status_logs(self, work_order_id: str) -> list[PaymentStatusLog]:
        entries = [e for e in self.status_logs if e.work_order_id == work_order_id]
        return sorted(entries, key=lambda e: e.created_at, reverse=True)

    async def add_run_stats(self, stats: EscalationRunStats) -> None:
        if self.fail_run_stats:
            raise RuntimeError("stats table unavailable")
        self.run_stats.append(stats)

    async def list_run_stats(
        self, since: datetime, limit: int
    ) -> list[EscalationRunStats]:
        runs = [r for r in self.run_stats if r.started_at >= since]
        return sorted(runs, key=lambda r: r.started_at, reverse=True)[:limit]

    async def add_manual_increase(self, entry: ManualUrgentFeeIncrease) -> None:
        self.manual_increases.append(entry)


class InMemorySettingsStore:
    def __init__(self) -> None:
        self.row: Optional[UrgentFeeSettings] = None

    async def get_urgent_fee_settings(self) -> Optional[UrgentFeeSettings]:
        return self.row

    async def save_urgent_fee_settings(
        self, fields: Mapping[str, Any]
    ) -> UrgentFeeSettings:
        if self.row is None:
            self.row = UrgentFeeSettings(id=GLOBAL_SETTINGS_ID)
        for name, value in fields.items():
            setattr(self.row, name, value)
        return self.row


class InMemoryStorage:
    """``Storage`` fake; ``fail_commits`` makes the next N commits raise."""

    def __init__(self) -> None:
        self.work_orders = InMemoryWorkOrderStore()
        self.payment_records = InMemoryPaymentRecordStore()
        self.logs = InMemoryLogStore()
        self.settings = InMemorySettingsStore()
        self.commit_count = 0
        self.rollback_count = 0
        self.fail_commits = 0

    async def commit(self) -> None:
        if self.fail_commits > 0:
            self.fail_commits -= 1
            raise RuntimeError("commit failed")
        self.commit_count += 1

    async def rollback(self) -> None:
        self.rollback_count += 1


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def clock(now: datetime) -> Callable[[], datetime]:
    return lambda: now


@pytest.fixture
def notifier() -> AsyncMock:
    """Mock implementing every notifier/alerter protocol."""
    mock = AsyncMock()
    mock.payment_status_changed = AsyncMock()
    mock.payment_calculated = AsyncMock()
    mock.escalation_alert = AsyncMock()
    return mock


def build_work_order(**overrides: Any) -> WorkOrder:
    """A work order with a 100.00 base fee and escalation fields populated."""
    fields: dict[str, Any] = {
        "id": "wo-001",
        "customer_id": "customer-1",
        "worker_id": "worker-1",
        "status": WorkOrderStatus.OPEN,
        "base_fee": Decimal("100.00"),
        "urgent_fee_percent": Decimal("10"),
        "current_urgent_fee_percent": None,
        "platform_fee_percent": Decimal("10"),
        "discount_percent": None,
        "tax_percent": None,
        "payment_status": None,
        "created_at": FIXED_NOW,
        "urgent_fee_enabled": False,
        "urgent_fee_increase_start_at": None,
        "urgent_fee_max_percent": Decimal("50"),
        "urgent_fee_increase_step": Decimal("5"),
        "urgent_fee_increase_count": 0,
    }
    fields.update(overrides)
    return WorkOrder(**fields)


@pytest.fixture
def work_order_factory(storage: InMemoryStorage) -> Callable[..., WorkOrder]:
    """Build a work order and register it in the in-memory store."""

    def _factory(**overrides: Any) -> WorkOrder:
        return storage.work_orders.add(build_work_order(**overrides))

    return _factory


@pytest.fixture
def escalating_work_order_factory(
    work_order_factory: Callable[..., WorkOrder], now: datetime
) -> Callable[..., WorkOrder]:
    """Open work order with escalation enabled and started ``hours_ago``."""

    def _factory(hours_ago: float = 0, **overrides: Any) -> WorkOrder:
        fields: dict[str, Any] = {
            "urgent_fee_enabled": True,
            "urgent_fee_increase_start_at": now - timedelta(hours=hours_ago),
        }
        fields.update(overrides)
        return work_order_factory(**fields)

    return _factory
