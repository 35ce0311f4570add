"""Tests for the per-region sync job."""

import pytest
from unittest.mock import AsyncMock

from settlement_sync.connectors import (
    SimulatorFailure,
    SimulatorOperation,
    make_chargeback,
    make_settlement,
)
from settlement_sync.database import CollectionRecordRepository
from settlement_sync.models import DateRange
from settlement_sync.sync import RegionSyncJob

from conftest import TODAY, seed_records


class TestRegionSyncJob:
    """Tests for RegionSyncJob.run."""

    async def test_successful_run(self, job, simulator, registry, week_range):
        await seed_records(registry, "A", ["1001", "1002"])
        simulator.add_settlements("A", [make_settlement(1, [1001, 9999]), make_settlement(2, [1002])])

        result = await job.run("A", week_range)

        assert result.success
        assert result.region_code == "A"
        assert result.settlements_fetched == 2
        assert result.records_updated == 2
        assert result.orphan_count == 1
        assert result.error_message is None
        assert result.duration_ms is not None

        async with registry.session("A") as session:
            stored = await CollectionRecordRepository(session).get_by_transaction_id("1002")
            assert stored.settlement_id == 2

    async def test_regions_use_their_own_datastore(self, job, simulator, registry, week_range):
        await seed_records(registry, "B", ["1001"])
        simulator.add_settlements("A", [make_settlement(1, [1001])])

        result = await job.run("A", week_range)

        assert result.success
        assert result.records_updated == 0
        assert result.orphan_count == 1

    async def test_invalid_range_reports_invalid_parameters(self, job, simulator, today):
        result = await job.run("A", DateRange(date_from=today, date_to=today.replace(day=1)))

        assert not result.success
        assert result.error_message.startswith("invalid parameters:")
        assert simulator.calls[SimulatorOperation.SETTLEMENTS] == 0

    async def test_unknown_region_reports_invalid_parameters(self, job, simulator, week_range):
        result = await job.run("ZZ", week_range)
        assert not result.success
        assert "no datastore configured for region ZZ" in result.error_message
        assert simulator.calls[SimulatorOperation.TOKEN] == 0
        assert simulator.calls[SimulatorOperation.SETTLEMENTS] == 0

    async def test_provider_error_reported_in_result(self, job, simulator, week_range):
        simulator.fail_next(SimulatorOperation.SETTLEMENTS, SimulatorFailure.INTERNAL_ERROR)

        result = await job.run("A", week_range)

        assert not result.success
        assert result.error_message == (
            "settlements sync failed: RemoteError: [05003] Provider internal error"
        )
        assert result.errors == ["settlements: [05003] Provider internal error"]

    async def test_unexpected_error_is_caught(self, client, registry, week_range):
        client.fetch_settlements = AsyncMock(side_effect=KeyError("Numero"))
        job = RegionSyncJob(client, registry)

        result = await job.run("A", week_range)

        assert not result.success
        assert result.error_message.startswith("internal error: KeyError")


class TestRegionSyncJobChargebacks:
    """Tests for the optional chargeback step."""

    @pytest.fixture
    def cb_job(self, client, registry):
        return RegionSyncJob(client, registry, chargebacks_enabled=True, today=lambda: TODAY)

    async def test_chargebacks_disabled_by_default(self, job, simulator, week_range):
        simulator.add_chargebacks("A", [make_chargeback(5, 1001)])
        result = await job.run("A", week_range)
        assert result.success
        assert result.chargebacks_fetched == 0
        assert simulator.calls[SimulatorOperation.CHARGEBACKS] == 0

    async def test_chargebacks_applied_when_enabled(self, cb_job, simulator, registry, week_range):
        await seed_records(registry, "A", ["1001"])
        simulator.add_settlements("A", [make_settlement(1, [1001])])
        simulator.add_chargebacks("A", [make_chargeback(5, 1001), make_chargeback(6, 4040)])

        result = await cb_job.run("A", week_range)

        assert result.success
        assert result.chargebacks_fetched == 2
        assert result.chargebacks_processed == 1
        async with registry.session("A") as session:
            stored = await CollectionRecordRepository(session).get_by_transaction_id("1001")
            assert stored.settlement_id == 1
            assert stored.chargeback_id == 5

    async def test_chargeback_failure_fails_region(self, cb_job, simulator, registry, week_range):
        await seed_records(registry, "A", ["1001"])
        simulator.add_settlements("A", [make_settlement(1, [1001])])
        simulator.fail_next(SimulatorOperation.CHARGEBACKS, SimulatorFailure.INVALID_PARAMETER)

        result = await cb_job.run("A", week_range)

        assert not result.success
        assert result.error_message.startswith("chargebacks sync failed: RemoteError: [06005]")
        # Settlements were committed before the chargeback step ran
        assert result.records_updated == 1
        async with registry.session("A") as session:
            stored = await CollectionRecordRepository(session).get_by_transaction_id("1001")
            assert stored.settlement_id == 1
