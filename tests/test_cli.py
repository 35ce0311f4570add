"""Tests for the command-line interface."""

import json
import os
import pytest
from datetime import date
from unittest.mock import patch

from settlement_sync.cli import (
    EXIT_FATAL,
    EXIT_OK,
    EXIT_PARTIAL_FAILURE,
    create_parser,
    main,
    parse_date,
    parse_regions,
)

SIMULATED_ENV = {
    "API_KEY": "test_api_key_12345",
    "SYNC_REGIONS": "A,B",
    "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
}


class TestArgumentParsing:
    """Tests for argument helpers."""

    def test_parse_date_formats(self):
        assert parse_date("2025-01-07") == date(2025, 1, 7)
        assert parse_date("07/01/2025") == date(2025, 1, 7)

    def test_parse_date_invalid(self):
        with pytest.raises(ValueError):
            parse_date("Jan 7")

    def test_parse_regions(self):
        assert parse_regions("ba, cba,,") == ["BA", "CBA"]
        assert parse_regions(None) == []

    def test_sync_options(self):
        args = create_parser().parse_args(
            ["sync", "--regions", "A", "--from", "2025-01-01", "--to", "2025-01-07", "--format", "csv"]
        )
        assert args.command == "sync"
        assert args.date_from == "2025-01-01"
        assert args.format == "csv"

    def test_query_options(self):
        args = create_parser().parse_args(["query", "--period", "current_month", "--chargebacks"])
        assert args.command == "query"
        assert args.period == "current_month"
        assert args.chargebacks is True

    def test_query_rejects_unknown_period(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["query", "--period", "last_year"])


class TestMain:
    """Tests for main()."""

    def test_no_command_prints_help(self):
        assert main([]) == EXIT_PARTIAL_FAILURE

    def test_range_and_days_back_conflict(self):
        code = main(["sync", "--from", "2025-01-01", "--to", "2025-01-07", "--days-back", "3"])
        assert code == EXIT_FATAL

    def test_invalid_date(self):
        assert main(["sync", "--from", "yesterday", "--to", "2025-01-07"]) == EXIT_FATAL

    def test_simulated_sync_writes_report(self, tmp_path):
        output = tmp_path / "report.json"
        with patch.dict(os.environ, SIMULATED_ENV, clear=True):
            code = main(["sync", "--simulate", "--days-back", "3", "--output", str(output)])

        assert code == EXIT_OK
        report = json.loads(output.read_text())
        assert report["statistics"]["regions_queried"] == 2
        assert report["statistics"]["regions_succeeded"] == 2

    def test_simulated_sync_text_to_stdout(self, capsys):
        with patch.dict(os.environ, SIMULATED_ENV, clear=True):
            code = main(["sync", "--simulate", "--regions", "A", "--format", "text"])

        assert code == EXIT_OK
        assert "SETTLEMENT SYNC SUMMARY" in capsys.readouterr().out

    def test_future_range_is_fatal(self):
        with patch.dict(os.environ, SIMULATED_ENV, clear=True):
            code = main(["sync", "--simulate", "--from", "2099-01-01", "--to", "2099-01-02"])
        assert code == EXIT_FATAL

    def test_check_simulated(self, capsys):
        with patch.dict(os.environ, SIMULATED_ENV, clear=True):
            code = main(["check", "--simulate"])

        assert code == EXIT_OK
        status = json.loads(capsys.readouterr().out)
        assert status["provider_reachable"] is True
        assert status["token"]["has_valid_token"] is True

    def test_simulated_query_writes_summaries(self, tmp_path):
        output = tmp_path / "query.json"
        with patch.dict(os.environ, SIMULATED_ENV, clear=True):
            code = main([
                "query", "--simulate", "--period", "previous_month", "--chargebacks",
                "--output", str(output),
            ])

        assert code == EXIT_OK
        results = json.loads(output.read_text())
        assert [r["region_code"] for r in results] == ["A", "B"]
        assert all(r["success"] for r in results)
        assert "acceptance_rate" in results[0]["chargebacks"]

    def test_query_text_output(self, capsys):
        with patch.dict(os.environ, SIMULATED_ENV, clear=True):
            code = main(["query", "--simulate", "--regions", "A", "--days-back", "3", "--format", "text"])

        assert code == EXIT_OK
        assert "Settlements - Region: A" in capsys.readouterr().out

    def test_query_conflicting_windows_is_fatal(self):
        with patch.dict(os.environ, SIMULATED_ENV, clear=True):
            code = main(["query", "--simulate", "--days-back", "3", "--period", "last_week"])
        assert code == EXIT_FATAL
