"""
Periodic Task Scheduler
=======================

Runs ``PeriodicTask`` implementations on a fixed period inside the API
process.  Tasks only expose ``run()``; the period, start/stop and retry
policy belong to the scheduler.  A failed run is logged and the task is
simply tried again on the next tick.

Usage (FastAPI lifespan)::

    scheduler = PeriodicScheduler()
    scheduler.add(ScheduledUrgentFeeEscalation(), period_seconds=600)
    await scheduler.start()
    ...
    await scheduler.stop()

The same tasks can instead be driven by cron, Cloud Scheduler or similar
via each job module's ``__main__`` entry point.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)


class PeriodicTask(Protocol):
    name: str

    async def run(self) -> Any: ...


@dataclass
class _Entry:
    task: PeriodicTask
    period_seconds: float
    handle: Optional[asyncio.Task] = None


class PeriodicScheduler:
    """Owns one asyncio loop task per registered ``PeriodicTask``."""

    def __init__(self) -> None:
        self._entries: list[_Entry] = []
        self._running = False

    def add(self, task: PeriodicTask, period_seconds: float) -> None:
        if period_seconds <= 0:
            raise ValueError("period_seconds must be positive")
        self._entries.append(_Entry(task=task, period_seconds=period_seconds))

    @property
    def running(self) -> bool:
        return self._running

    async def _loop(self, entry: _Entry) -> None:
        logger.info(
            "Periodic task %s started (period=%ss)", entry.task.name, entry.period_seconds
        )
        while self._running:
            try:
                await entry.task.run()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Periodic task %s failed; retrying next period", entry.task.name)
            await asyncio.sleep(entry.period_seconds)

    async def start(self) -> None:
        if self._running:
            logger.warning("Scheduler is already running")
            return
        self._running = True
        for entry in self._entries:
            entry.handle = asyncio.create_task(self._loop(entry))

    async def stop(self) -> None:
        self._running = False
        for entry in self._entries:
            if entry.handle is None:
                continue
            entry.handle.cancel()
            try:
                await entry.handle
            except asyncio.CancelledError:
                pass
            entry.handle = None
            logger.info("Periodic task %s stopped", entry.task.name)
