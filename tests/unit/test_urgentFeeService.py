"""
Unit tests for urgent fee administration: manual increases, run
statistics and escalation settings.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from worksettle.core.errors import InvalidArgument, NotFound
from worksettle.jobs.urgentFeeEscalator import EscalationConfig
from worksettle.models.urgent_fee import EscalationRunStats
from worksettle.services import urgentFeeService


def _run(started_at, processed=10, increased=4, errors=0, duration=200, critical=False):
    return EscalationRunStats(
        started_at=started_at,
        processed_count=processed,
        increased_count=increased,
        skipped_count=0,
        error_count=errors,
        duration_ms=duration,
        errors=[],
        is_critical=critical,
    )


# ---------------------------------------------------------------------------
# Manual increase
# ---------------------------------------------------------------------------


class TestManualIncrease:
    @pytest.mark.asyncio
    async def test_default_increase(self, storage, work_order_factory, now):
        work_order = work_order_factory()

        result = await urgentFeeService.manual_increase(
            storage, "wo-001", admin_id="admin-1", reason="customer asked", now=now
        )

        assert result.previous_percent == Decimal("10")
        assert result.new_percent == Decimal("15")
        assert result.increase_percent == Decimal("5")
        assert not result.reached_max
        assert work_order.current_urgent_fee_percent == Decimal("15")
        assert work_order.last_urgent_fee_update == now
        assert work_order.urgent_fee_increase_count == 1
        assert storage.commit_count == 1

        [entry] = storage.logs.manual_increases
        assert entry.admin_id == "admin-1"
        assert entry.old_percent == Decimal("10")
        assert entry.new_percent == Decimal("15")
        assert entry.reason == "customer asked"

    @pytest.mark.asyncio
    async def test_builds_on_escalated_value(self, storage, work_order_factory, now):
        work_order_factory(current_urgent_fee_percent=Decimal("30"))

        result = await urgentFeeService.manual_increase(
            storage, "wo-001", admin_id="admin-1", increase_percent=10, now=now
        )

        assert result.new_percent == Decimal("40")

    @pytest.mark.asyncio
    async def test_capped_at_max(self, storage, work_order_factory, now):
        work_order = work_order_factory(current_urgent_fee_percent=Decimal("48"))

        result = await urgentFeeService.manual_increase(
            storage, "wo-001", admin_id="admin-1", now=now
        )

        assert result.new_percent == Decimal("50")
        assert result.reached_max
        assert work_order.urgent_fee_max_reached_at == now

    @pytest.mark.asyncio
    async def test_already_at_max(self, storage, work_order_factory):
        work_order_factory(current_urgent_fee_percent=Decimal("50"))

        with pytest.raises(InvalidArgument, match="already at its maximum"):
            await urgentFeeService.manual_increase(storage, "wo-001", admin_id="admin-1")

        assert storage.logs.manual_increases == []
        assert storage.commit_count == 0

    @pytest.mark.asyncio
    async def test_uses_configured_max_when_unset(self, storage, work_order_factory, now):
        work_order_factory(urgent_fee_max_percent=None)

        result = await urgentFeeService.manual_increase(
            storage,
            "wo-001",
            admin_id="admin-1",
            increase_percent=50,
            config=EscalationConfig(max_percent=Decimal("25")),
            now=now,
        )

        assert result.new_percent == Decimal("25")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("increase", [0, -5])
    async def test_non_positive_increase(self, storage, work_order_factory, increase):
        work_order_factory()
        with pytest.raises(InvalidArgument):
            await urgentFeeService.manual_increase(
                storage, "wo-001", admin_id="admin-1", increase_percent=increase
            )

    @pytest.mark.asyncio
    async def test_unknown_work_order(self, storage):
        with pytest.raises(NotFound):
            await urgentFeeService.manual_increase(storage, "nope", admin_id="admin-1")

    @pytest.mark.asyncio
    async def test_missing_work_order_id(self, storage):
        with pytest.raises(InvalidArgument, match="work_order_id is required"):
            await urgentFeeService.manual_increase(storage, "", admin_id="admin-1")


# ---------------------------------------------------------------------------
# Run statistics
# ---------------------------------------------------------------------------


class TestRunStats:
    @pytest.mark.asyncio
    async def test_today_excludes_older_runs(self, storage, now):
        storage.logs.run_stats = [
            _run(now - timedelta(hours=1), processed=10, errors=1),
            _run(now - timedelta(days=3), processed=20, errors=2),
        ]

        report = await urgentFeeService.get_run_stats(storage, "today", now=now)

        assert report.since == now.replace(hour=0, minute=0)
        assert len(report.runs) == 1
        assert report.summary.total_processed == 10
        assert report.summary.success_rate == 90.0

    @pytest.mark.asyncio
    async def test_week_summary(self, storage, now):
        storage.logs.run_stats = [
            _run(now - timedelta(hours=1), processed=10, errors=1, duration=100),
            _run(now - timedelta(days=3), processed=20, errors=2, duration=301, critical=True),
            _run(now - timedelta(days=40), processed=99),
        ]

        report = await urgentFeeService.get_run_stats(storage, "week", now=now)

        summary = report.summary
        assert summary.total_runs == 2
        assert summary.total_processed == 30
        assert summary.total_increased == 8
        assert summary.total_errors == 3
        assert summary.critical_runs == 1
        assert summary.average_duration_ms == 200.5
        assert summary.success_rate == 90.0
        # newest first
        assert report.runs[0].started_at > report.runs[1].started_at

    @pytest.mark.asyncio
    async def test_empty_range(self, storage, now):
        report = await urgentFeeService.get_run_stats(storage, "month", now=now)
        assert report.summary.total_runs == 0
        assert report.summary.success_rate == 0.0

    @pytest.mark.asyncio
    async def test_invalid_range(self, storage, now):
        with pytest.raises(InvalidArgument, match="date_range must be one of"):
            await urgentFeeService.get_run_stats(storage, "year", now=now)

    def test_success_rate_rounds_half_up(self):
        summary = urgentFeeService.summarize_runs([_run(None, processed=3, errors=1)])
        assert summary.success_rate == 66.67


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestSettings:
    @pytest.mark.asyncio
    async def test_defaults_when_nothing_saved(self, storage):
        effective = await urgentFeeService.get_settings(storage, EscalationConfig())

        assert effective.enabled is True
        assert effective.interval_seconds == 600
        assert effective.step_percent == Decimal("5")
        assert effective.max_percent == Decimal("50")
        assert effective.updated_by is None

    @pytest.mark.asyncio
    async def test_partial_update_keeps_other_values(self, storage, now):
        effective = await urgentFeeService.update_settings(
            storage, "admin-1", step_percent=Decimal("2.5"), now=now
        )

        assert effective.step_percent == Decimal("2.5")
        assert effective.interval_seconds == 600
        assert effective.max_percent == Decimal("50")
        assert effective.updated_by == "admin-1"
        assert effective.updated_at == now
        assert storage.commit_count == 1

        again = await urgentFeeService.update_settings(storage, "admin-2", enabled=False, now=now)
        assert again.enabled is False
        assert again.step_percent == Decimal("2.5")

    @pytest.mark.asyncio
    async def test_reports_every_invalid_value(self, storage):
        with pytest.raises(InvalidArgument) as exc_info:
            await urgentFeeService.update_settings(
                storage, "admin-1", interval_seconds=0, step_percent=-1, max_percent=120
            )

        assert exc_info.value.errors == [
            "interval_seconds must be greater than 0",
            "step_percent must be greater than 0",
            "max_percent must be greater than 0 and at most 100",
        ]
        assert storage.settings.row is None
