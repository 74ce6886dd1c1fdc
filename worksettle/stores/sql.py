"""
SQLAlchemy (async) implementations of the repository interfaces.

All stores in a ``SqlStorage`` share the caller's ``AsyncSession``; the
session is the unit of work and ``SqlStorage.commit`` is the batch commit.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from worksettle.models.payment import PaymentRecord, PaymentStatusLog
from worksettle.models.urgent_fee import (
    GLOBAL_SETTINGS_ID,
    EscalationRunStats,
    ManualUrgentFeeIncrease,
    UrgentFeeSettings,
)
from worksettle.models.work_order import WorkOrder, WorkOrderStatus

logger = logging.getLogger(__name__)


class SqlWorkOrderStore:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get(self, work_order_id: str) -> Optional[WorkOrder]:
        return await self._db.get(WorkOrder, work_order_id)

    async def fetch_escalation_page(
        self, after_id: Optional[str], limit: int
    ) -> list[WorkOrder]:
        stmt = (
            select(WorkOrder)
            .where(
                WorkOrder.status == WorkOrderStatus.OPEN,
                WorkOrder.urgent_fee_enabled.is_(True),
            )
            .order_by(WorkOrder.id)
            .limit(limit)
        )
        if after_id is not None:
            stmt = stmt.where(WorkOrder.id > after_id)
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def list_created_between(
        self, start: datetime, end: datetime
    ) -> list[WorkOrder]:
        result = await self._db.execute(
            select(WorkOrder)
            .where(WorkOrder.created_at >= start, WorkOrder.created_at < end)
            .order_by(WorkOrder.created_at)
        )
        return list(result.scalars().all())

    def apply(self, work_order: WorkOrder, fields: Mapping[str, Any]) -> None:
        for name, value in fields.items():
            setattr(work_order, name, value)


class SqlPaymentRecordStore:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get(self, work_order_id: str) -> Optional[PaymentRecord]:
        return await self._db.get(PaymentRecord, work_order_id)

    async def upsert(
        self, work_order_id: str, fields: Mapping[str, Any]
    ) -> PaymentRecord:
        record = await self.get(work_order_id)
        if record is None:
            record = PaymentRecord(work_order_id=work_order_id)
            self._db.add(record)
            logger.debug("Creating payment record for work order %s", work_order_id)
        for name, value in fields.items():
            setattr(record, name, value)
        return record


class SqlLogStore:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def append_status_log(self, entry: PaymentStatusLog) -> None:
        self._db.add(entry)

    async def list_status_logs(self, work_order_id: str) -> list[PaymentStatusLog]:
        result = await self._db.execute(
            select(PaymentStatusLog)
            .where(PaymentStatusLog.work_order_id == work_order_id)
            .order_by(PaymentStatusLog.created_at.desc())
        )
        return list(result.scalars().all())

    async def add_run_stats(self, stats: EscalationRunStats) -> None:
        self._db.add(stats)

    async def list_run_stats(
        self, since: datetime, limit: int
    ) -> list[EscalationRunStats]:
        result = await self._db.execute(
            select(EscalationRunStats)
            .where(EscalationRunStats.started_at >= since)
            .order_by(EscalationRunStats.started_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def add_manual_increase(self, entry: ManualUrgentFeeIncrease) -> None:
        self._db.add(entry)


class SqlSettingsStore:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get_urgent_fee_settings(self) -> Optional[UrgentFeeSettings]:
        return await self._db.get(UrgentFeeSettings, GLOBAL_SETTINGS_ID)

    async def save_urgent_fee_settings(
        self, fields: Mapping[str, Any]
    ) -> UrgentFeeSettings:
        row = await self.get_urgent_fee_settings()
        if row is None:
            row = UrgentFeeSettings(id=GLOBAL_SETTINGS_ID)
            self._db.add(row)
        for name, value in fields.items():
            setattr(row, name, value)
        return row


class SqlStorage:
    """Store bundle over a single ``AsyncSession``."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self.work_orders = SqlWorkOrderStore(db)
        self.payment_records = SqlPaymentRecordStore(db)
        self.logs = SqlLogStore(db)
        self.settings = SqlSettingsStore(db)

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()
