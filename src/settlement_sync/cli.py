#!/usr/bin/env python3
"""Command-line interface for settlement synchronization.

Runs a sync over one or more regions, queries settlements without
updating the ledger, or checks that the provider is reachable with the
configured credentials.

Usage:
    python -m settlement_sync.cli sync --regions BA,CBA --days-back 7
    python -m settlement_sync.cli sync --regions BA --from 2025-01-01 --to 2025-01-07 --format text
    python -m settlement_sync.cli query --regions BA --period previous_month --chargebacks
    python -m settlement_sync.cli check
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import date, datetime
from typing import List, Optional

from .bootstrap import build_components
from .config import SyncSettings
from .connectors import SimulatorConfig, SimulatorConnector
from .database import RegionDatabaseRegistry
from .errors import SettlementSyncError, ValidationError
from .models import DateRange, QueryPeriod
from .reconciliation import ReportGenerator, REPORT_FORMATS

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PARTIAL_FAILURE = 1
EXIT_FATAL = 2


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def parse_date(value: str) -> date:
    """Parse a date in YYYY-MM-DD or DD/MM/YYYY format.

    Raises:
        ValueError: If the string cannot be parsed.
    """
    for fmt in ("%Y-%m-%d", "%d/%m/%Y"):
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Unable to parse date: {value}. Expected YYYY-MM-DD or DD/MM/YYYY")


def parse_regions(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [code.strip().upper() for code in value.split(",") if code.strip()]


async def run_sync_async(
    regions: List[str],
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    days_back: Optional[int] = None,
    pool_size: Optional[int] = None,
    timeout: Optional[float] = None,
    output_file: Optional[str] = None,
    output_format: str = "json",
    simulate: bool = False,
    create_tables: bool = False,
) -> int:
    """Run a sync and write the report.

    Returns:
        Exit code: 0 if every region succeeded, 1 if some failed, 2 on a
        fatal error.
    """
    settings = SyncSettings.from_env()
    regions = regions or settings.regions
    connector = SimulatorConnector(SimulatorConfig(generate_random=True, seed=42)) if simulate else None
    databases = RegionDatabaseRegistry.from_env(regions, create_tables=create_tables or simulate)
    components = build_components(settings, connector=connector, databases=databases)

    try:
        coordinator = components.coordinator
        if date_from is not None or date_to is not None:
            result = await coordinator.sync_regions(
                regions,
                DateRange(date_from=date_from, date_to=date_to),
                pool_size=pool_size,
                per_region_timeout=timeout,
            )
        else:
            result = await coordinator.sync_recent(
                regions,
                days_back=days_back,
                pool_size=pool_size,
                per_region_timeout=timeout,
            )

        output = ReportGenerator(result).render(output_format)
        if output_file:
            with open(output_file, "w") as f:
                f.write(output)
            logger.info(f"Report written to {output_file}")
        else:
            print(output)

        if result.all_succeeded:
            return EXIT_OK
        logger.warning(
            f"Sync completed with failures: {result.regions_failed} of "
            f"{result.regions_queried} regions failed"
        )
        return EXIT_PARTIAL_FAILURE
    finally:
        await components.aclose()


async def run_query_async(
    regions: List[str],
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    days_back: Optional[int] = None,
    period: Optional[str] = None,
    include_chargebacks: bool = False,
    output_file: Optional[str] = None,
    output_format: str = "json",
    simulate: bool = False,
) -> int:
    """Query settlements (and optionally chargebacks) without touching the ledger.

    Returns:
        Exit code: 0 if every region answered, 1 if some failed, 2 on a
        fatal error.
    """
    settings = SyncSettings.from_env()
    connector = SimulatorConnector(SimulatorConfig(generate_random=True, seed=42)) if simulate else None
    components = build_components(
        settings,
        connector=connector,
        databases=RegionDatabaseRegistry.from_env(settings.regions),
    )
    try:
        date_range = None
        if date_from is not None or date_to is not None:
            date_range = DateRange(date_from=date_from, date_to=date_to)
        results = await components.query.query_regions(
            regions or None,
            date_range=date_range,
            days_back=days_back,
            period=QueryPeriod(period) if period else None,
            include_chargebacks=include_chargebacks,
        )

        if output_format == "text":
            lines = []
            for result in results:
                if not result.success:
                    lines.append(f"Region {result.region_code}: FAILED - {result.error_message}")
                    continue
                lines.append(result.settlements.describe())
                if result.chargebacks is not None:
                    lines.append(result.chargebacks.describe())
            output = "\n".join(lines)
        else:
            output = json.dumps([r.to_dict() for r in results], indent=2)

        if output_file:
            with open(output_file, "w") as f:
                f.write(output)
            logger.info(f"Query results written to {output_file}")
        else:
            print(output)

        failed = [r.region_code for r in results if not r.success]
        if failed:
            logger.warning(f"Query failed for regions: {', '.join(failed)}")
            return EXIT_PARTIAL_FAILURE
        return EXIT_OK
    finally:
        await components.aclose()


async def run_check_async(simulate: bool = False) -> int:
    """Check provider connectivity and print token status."""
    settings = SyncSettings.from_env()
    connector = SimulatorConnector() if simulate else None
    components = build_components(
        settings,
        connector=connector,
        databases=RegionDatabaseRegistry.from_env(settings.regions),
    )
    try:
        reachable = await components.coordinator.check_connectivity()
        status = {
            "provider_reachable": reachable,
            "token": components.coordinator.token_status(),
        }
        print(json.dumps(status, indent=2))
        return EXIT_OK if reachable else EXIT_FATAL
    finally:
        await components.aclose()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="settlement-sync",
        description="Synchronize provider settlements and chargebacks into regional ledgers.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    sync_parser = subparsers.add_parser("sync", help="Run a synchronization")
    sync_parser.add_argument(
        "--regions", "-r",
        help="Comma-separated region codes (default: SYNC_REGIONS)",
    )
    sync_parser.add_argument("--from", dest="date_from", help="First day (YYYY-MM-DD)")
    sync_parser.add_argument("--to", dest="date_to", help="Last day (YYYY-MM-DD)")
    sync_parser.add_argument(
        "--days-back", "-d",
        type=int,
        help="Sync the last N days up to today (default: SYNC_DAYS_BACK)",
    )
    sync_parser.add_argument("--pool-size", type=int, help="Concurrent region jobs")
    sync_parser.add_argument("--timeout", type=float, help="Seconds to wait per region")
    sync_parser.add_argument("--output", "-o", help="Output file path (default: stdout)")
    sync_parser.add_argument(
        "--format", "-f",
        choices=list(REPORT_FORMATS),
        default="json",
        help="Output format (default: json)",
    )
    sync_parser.add_argument(
        "--simulate",
        action="store_true",
        help="Use the in-memory provider simulator instead of the real API",
    )
    sync_parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables in each region's datastore",
    )

    query_parser = subparsers.add_parser(
        "query", help="Fetch and summarize settlements without updating the ledger"
    )
    query_parser.add_argument(
        "--regions", "-r",
        help="Comma-separated region codes (default: SYNC_REGIONS)",
    )
    query_parser.add_argument("--from", dest="date_from", help="First day (YYYY-MM-DD)")
    query_parser.add_argument("--to", dest="date_to", help="Last day (YYYY-MM-DD)")
    query_parser.add_argument("--days-back", "-d", type=int, help="Query the last N days up to today")
    query_parser.add_argument(
        "--period", "-p",
        choices=[p.value for p in QueryPeriod],
        help="Preset window",
    )
    query_parser.add_argument(
        "--chargebacks",
        action="store_true",
        help="Also summarize chargebacks (acceptance rate and financial impact)",
    )
    query_parser.add_argument("--output", "-o", help="Output file path (default: stdout)")
    query_parser.add_argument(
        "--format", "-f",
        choices=["json", "text"],
        default="json",
        help="Output format (default: json)",
    )
    query_parser.add_argument(
        "--simulate",
        action="store_true",
        help="Use the in-memory provider simulator instead of the real API",
    )

    check_parser = subparsers.add_parser("check", help="Check provider connectivity and token status")
    check_parser.add_argument("--simulate", action="store_true", help="Check against the simulator")

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code.
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)
    configure_logging(parsed_args.verbose)

    if not parsed_args.command:
        parser.print_help()
        return EXIT_PARTIAL_FAILURE

    try:
        if parsed_args.command == "sync":
            if (parsed_args.date_from or parsed_args.date_to) and parsed_args.days_back is not None:
                raise ValidationError("use either --from/--to or --days-back, not both")
            return asyncio.run(run_sync_async(
                regions=parse_regions(parsed_args.regions),
                date_from=parse_date(parsed_args.date_from) if parsed_args.date_from else None,
                date_to=parse_date(parsed_args.date_to) if parsed_args.date_to else None,
                days_back=parsed_args.days_back,
                pool_size=parsed_args.pool_size,
                timeout=parsed_args.timeout,
                output_file=parsed_args.output,
                output_format=parsed_args.format,
                simulate=parsed_args.simulate,
                create_tables=parsed_args.create_tables,
            ))
        if parsed_args.command == "query":
            return asyncio.run(run_query_async(
                regions=parse_regions(parsed_args.regions),
                date_from=parse_date(parsed_args.date_from) if parsed_args.date_from else None,
                date_to=parse_date(parsed_args.date_to) if parsed_args.date_to else None,
                days_back=parsed_args.days_back,
                period=parsed_args.period,
                include_chargebacks=parsed_args.chargebacks,
                output_file=parsed_args.output,
                output_format=parsed_args.format,
                simulate=parsed_args.simulate,
            ))
        if parsed_args.command == "check":
            return asyncio.run(run_check_async(simulate=parsed_args.simulate))
    except (ValueError, SettlementSyncError) as e:
        logger.error(str(e))
        return EXIT_FATAL

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
