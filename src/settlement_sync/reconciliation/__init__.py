"""Reconciliation of provider settlements and chargebacks.

- Bulk-match settlement line items to CollectionRecords by transaction id
- Apply chargebacks to the same records
- Report orphan transaction ids instead of creating records
- Render consolidated results as JSON, CSV or text
"""

from .engine import ReconciliationEngine, canonical_status, settlement_notes
from .chargebacks import ChargebackProcessor
from .report import ReportGenerator, REPORT_FORMATS

__all__ = [
    "ReconciliationEngine",
    "ChargebackProcessor",
    "ReportGenerator",
    "REPORT_FORMATS",
    "canonical_status",
    "settlement_notes",
]
