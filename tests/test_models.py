"""Tests for domain models and date range validation."""

import pytest
from datetime import date, datetime, timedelta

from settlement_sync.errors import ValidationError
from settlement_sync.models import (
    AuthToken,
    ChargebackRecord,
    ChargebackStatus,
    ConsolidatedSyncResult,
    DateRange,
    RegionSyncResult,
    SettlementRecord,
    SettlementStatus,
)

TODAY = date(2025, 1, 10)


class TestDateRange:
    """Tests for DateRange validation."""

    def test_valid_range_passes(self):
        DateRange(date_from=date(2025, 1, 1), date_to=date(2025, 1, 7)).check(TODAY, 90)

    def test_single_day_range_is_valid(self):
        DateRange(date_from=TODAY, date_to=TODAY).check(TODAY, 90)

    def test_missing_bound_rejected(self):
        with pytest.raises(ValidationError, match="both"):
            DateRange(date_from=date(2025, 1, 1)).check(TODAY, 90)

    def test_inverted_range_rejected(self):
        with pytest.raises(ValidationError, match="after"):
            DateRange(date_from=date(2025, 1, 7), date_to=date(2025, 1, 1)).check(TODAY, 90)

    def test_future_end_rejected(self):
        with pytest.raises(ValidationError, match="future"):
            DateRange(date_from=date(2025, 1, 1), date_to=date(2025, 1, 11)).check(TODAY, 90)

    def test_span_at_limit_is_valid(self):
        """A range of exactly max_lookback_days is accepted."""
        date_range = DateRange(date_from=TODAY - timedelta(days=90), date_to=TODAY)
        assert date_range.span_days == 90
        date_range.check(TODAY, 90)

    def test_span_over_limit_rejected(self):
        date_range = DateRange(date_from=TODAY - timedelta(days=91), date_to=TODAY)
        with pytest.raises(ValidationError, match="maximum is 90"):
            date_range.check(TODAY, 90)

    def test_last_days(self):
        date_range = DateRange.last_days(7, TODAY)
        assert date_range.date_from == date(2025, 1, 3)
        assert date_range.date_to == TODAY
        assert str(date_range) == "2025-01-03 - 2025-01-10"


class TestStatuses:
    """Tests for provider status parsing."""

    def test_settlement_status_case_insensitive(self):
        assert SettlementStatus.parse("depositada") == SettlementStatus.DEPOSITED
        assert SettlementStatus.parse(" PENDIENTE ") == SettlementStatus.PENDING

    def test_unknown_status_is_none(self):
        assert SettlementStatus.parse("Transferida") is None
        assert SettlementStatus.parse("") is None
        assert ChargebackStatus.parse(None) is None

    def test_settlement_reconcilable(self):
        assert SettlementRecord(id=1, status="Depositada").is_reconcilable()
        assert not SettlementRecord(id=None, status="Depositada").is_reconcilable()
        assert not SettlementRecord(id=1, status="   ").is_reconcilable()
        assert not SettlementRecord(id=1).is_reconcilable()


class TestAuthToken:
    """Tests for token expiry with a safety margin."""

    def test_usable_before_margin(self):
        issued = datetime(2025, 1, 10, 0, 0)
        token = AuthToken(value="t", issued_at=issued, expires_at=issued + timedelta(hours=24))
        assert token.is_usable(issued + timedelta(hours=22), timedelta(hours=1))

    def test_not_usable_inside_margin(self):
        issued = datetime(2025, 1, 10, 0, 0)
        token = AuthToken(value="t", issued_at=issued, expires_at=issued + timedelta(hours=24))
        assert not token.is_usable(issued + timedelta(hours=23), timedelta(hours=1))

    def test_token_value_not_in_repr(self):
        issued = datetime(2025, 1, 10)
        token = AuthToken(value="secret-token", issued_at=issued, expires_at=issued)
        assert "secret-token" not in repr(token)


class TestChargebackRecord:
    """Tests for chargeback deadline helpers."""

    NOW = datetime(2025, 1, 10, 12, 0, 0)

    def test_pending_due_tomorrow_is_urgent(self):
        chargeback = ChargebackRecord(id=1, status="Pendiente", due_date=self.NOW + timedelta(days=1))
        assert chargeback.is_urgent(self.NOW)
        assert not chargeback.is_overdue(self.NOW)

    def test_pending_due_next_week_is_not_urgent(self):
        chargeback = ChargebackRecord(id=1, status="Pendiente", due_date=self.NOW + timedelta(days=7))
        assert not chargeback.is_urgent(self.NOW)

    def test_resolved_is_never_urgent(self):
        chargeback = ChargebackRecord(id=1, status="Resuelto", due_date=self.NOW)
        assert not chargeback.is_urgent(self.NOW)

    def test_overdue(self):
        chargeback = ChargebackRecord(id=1, status="Pendiente", due_date=self.NOW - timedelta(hours=1))
        assert chargeback.is_overdue(self.NOW)
        assert chargeback.is_urgent(self.NOW)

    def test_no_due_date(self):
        chargeback = ChargebackRecord(id=1, status="Pendiente")
        assert not chargeback.is_overdue(self.NOW)
        assert not chargeback.is_urgent(self.NOW)


class TestConsolidatedSyncResult:
    """Tests for consolidated totals."""

    def _result(self) -> ConsolidatedSyncResult:
        result = ConsolidatedSyncResult(
            date_range=DateRange(date_from=date(2025, 1, 1), date_to=date(2025, 1, 7))
        )
        result.add(RegionSyncResult(
            region_code="A", success=True, settlements_fetched=2,
            records_updated=2, orphan_count=1, chargebacks_fetched=1,
            chargebacks_processed=1, urgent_chargebacks=1,
        ))
        result.add(RegionSyncResult.failed("B", "timeout: exceeded 5 seconds"))
        return result

    def test_totals(self):
        result = self._result()
        assert result.regions_queried == 2
        assert result.regions_succeeded == 1
        assert result.regions_failed == 1
        assert result.total_settlements == 2
        assert result.records_updated == 2
        assert result.orphans == 1
        assert result.total_chargebacks == 1
        assert result.chargebacks_processed == 1
        assert result.urgent_chargebacks == 1
        assert not result.all_succeeded

    def test_finalize_rejects_late_results(self):
        result = self._result()
        result.finalize()
        assert result.finalized
        assert result.completed_at is not None
        assert result.add(RegionSyncResult(region_code="C", success=True)) is False
        assert result.regions_queried == 2

    def test_result_for(self):
        result = self._result()
        assert result.result_for("B").error_message.startswith("timeout")
        assert result.result_for("Z") is None

    def test_summary_dict(self):
        summary = self._result().to_summary_dict()
        assert summary["date_from"] == "2025-01-01"
        assert summary["date_to"] == "2025-01-07"
        assert summary["statistics"]["regions_failed"] == 1
        assert "region_results" not in summary

    def test_full_dict_includes_regions(self):
        full = self._result().to_full_dict()
        assert [r["region_code"] for r in full["region_results"]] == ["A", "B"]

    def test_empty_result_succeeds(self):
        result = ConsolidatedSyncResult()
        assert result.all_succeeded
        assert result.to_summary_dict()["date_from"] is None
