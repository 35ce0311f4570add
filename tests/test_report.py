"""Tests for sync report rendering."""

import csv
import io
import json
import pytest
from datetime import date

from settlement_sync.models import ConsolidatedSyncResult, DateRange, RegionSyncResult
from settlement_sync.reconciliation import ReportGenerator


@pytest.fixture
def result():
    consolidated = ConsolidatedSyncResult(
        date_range=DateRange(date_from=date(2025, 1, 1), date_to=date(2025, 1, 7))
    )
    consolidated.add(RegionSyncResult(
        region_code="A", success=True, settlements_fetched=2,
        records_updated=2, orphan_count=1, duration_ms=120,
    ))
    failed = RegionSyncResult.failed("B", "timeout: exceeded 60 seconds")
    consolidated.add(failed)
    consolidated.finalize()
    return consolidated


class TestReportGenerator:
    """Tests for ReportGenerator output formats."""

    def test_json_with_details(self, result):
        data = json.loads(ReportGenerator(result).to_json())
        assert data["statistics"]["regions_succeeded"] == 1
        assert data["statistics"]["orphans"] == 1
        assert len(data["region_results"]) == 2

    def test_json_summary_only(self, result):
        data = json.loads(ReportGenerator(result).to_json(include_details=False))
        assert "region_results" not in data
        assert data["date_from"] == "2025-01-01"

    def test_csv_one_row_per_region(self, result):
        rows = list(csv.reader(io.StringIO(ReportGenerator(result).to_csv())))
        assert rows[0][0] == "region_code"
        assert rows[1][:5] == ["A", "True", "2", "0", "2"]
        assert rows[2][0] == "B"
        assert rows[2][-1] == "timeout: exceeded 60 seconds"

    def test_summary_text(self, result):
        text = ReportGenerator(result).to_summary_text()
        assert "SETTLEMENT SYNC SUMMARY" in text
        assert "Succeeded: 1" in text
        assert "Orphan Transactions: 1" in text

    def test_detailed_text_lists_failures(self, result):
        text = ReportGenerator(result).to_detailed_text()
        assert "A: OK" in text
        assert "B: FAILED" in text
        assert "Error: timeout: exceeded 60 seconds" in text

    def test_render_unknown_format(self, result):
        with pytest.raises(ValueError):
            ReportGenerator(result).render("xml")
