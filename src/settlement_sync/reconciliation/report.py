"""Report generation for consolidated sync results."""

import json
import csv
import io
from datetime import date, datetime

from ..models import ConsolidatedSyncResult

REPORT_FORMATS = ("json", "csv", "text", "detailed_text")


class ReportGenerator:
    """Generator for sync reports in various formats."""

    def __init__(self, result: ConsolidatedSyncResult):
        """Initialize the report generator.

        Args:
            result: The consolidated result to render.
        """
        self.result = result

    def to_json(self, include_details: bool = True, indent: int = 2) -> str:
        """Generate JSON representation of the result.

        Args:
            include_details: If True, include every region result.
            indent: JSON indentation level.

        Returns:
            JSON string.
        """
        if include_details:
            data = self.result.to_full_dict()
        else:
            data = self.result.to_summary_dict()

        def json_serializer(obj):
            if isinstance(obj, (datetime, date)):
                return obj.isoformat()
            raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

        return json.dumps(data, indent=indent, default=json_serializer)

    def to_csv(self) -> str:
        """One CSV row per region."""
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow([
            "region_code", "success", "settlements_fetched", "chargebacks_fetched",
            "records_updated", "chargebacks_processed", "orphans",
            "urgent_chargebacks", "duration_ms", "error_message",
        ])
        for r in self.result.region_results:
            writer.writerow([
                r.region_code,
                r.success,
                r.settlements_fetched,
                r.chargebacks_fetched,
                r.records_updated,
                r.chargebacks_processed,
                r.orphan_count,
                r.urgent_chargebacks,
                r.duration_ms if r.duration_ms is not None else "",
                r.error_message or "",
            ])
        return output.getvalue()

    def to_summary_text(self) -> str:
        """Generate a human-readable text summary.

        Returns:
            Formatted text summary of the sync run.
        """
        summary = self.result.to_summary_dict()
        stats = summary["statistics"]

        lines = [
            "=" * 60,
            "SETTLEMENT SYNC SUMMARY",
            "=" * 60,
            "Date Range:",
            f"  From: {summary['date_from']}",
            f"  To: {summary['date_to']}",
            "",
            "Regions:",
            f"  Queried: {stats['regions_queried']}",
            f"  Succeeded: {stats['regions_succeeded']}",
            f"  Failed: {stats['regions_failed']}",
            "",
            "Statistics:",
            f"  Settlements Fetched: {stats['total_settlements']}",
            f"  Chargebacks Fetched: {stats['total_chargebacks']}",
            f"  Records Updated: {stats['records_updated']}",
            f"  Chargebacks Processed: {stats['chargebacks_processed']}",
            f"  Orphan Transactions: {stats['orphans']}",
            f"  Urgent Chargebacks: {stats['urgent_chargebacks']}",
            "",
            f"Started At: {summary['started_at']}",
            f"Completed At: {summary['completed_at'] or 'N/A'}",
            "=" * 60,
        ]
        return "\n".join(lines)

    def to_detailed_text(self) -> str:
        """Summary followed by one block per region."""
        lines = [self.to_summary_text(), "", "REGION RESULTS", "-" * 40]
        for r in self.result.region_results:
            state = "OK" if r.success else "FAILED"
            lines.append(
                f"  {r.region_code}: {state} - settlements={r.settlements_fetched} "
                f"updated={r.records_updated} orphans={r.orphan_count} "
                f"chargebacks={r.chargebacks_fetched}"
            )
            if r.error_message:
                lines.append(f"    Error: {r.error_message}")
            for error in r.errors:
                if error != r.error_message:
                    lines.append(f"    - {error}")
        return "\n".join(lines)

    def render(self, format: str = "json", include_details: bool = True) -> str:
        """Render in one of ``REPORT_FORMATS``."""
        if format == "json":
            return self.to_json(include_details=include_details)
        if format == "csv":
            return self.to_csv()
        if format == "text":
            return self.to_summary_text()
        if format == "detailed_text":
            return self.to_detailed_text()
        raise ValueError(f"Unknown report format: {format}")
