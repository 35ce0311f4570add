"""Domain models for settlement and chargeback synchronization."""

import enum
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional, Dict, Any, List
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, PrivateAttr

from .config import DEFAULT_TIMEZONE
from .errors import ValidationError

URGENT_CHARGEBACK_WINDOW = timedelta(days=2)


def local_now(timezone: str = DEFAULT_TIMEZONE) -> datetime:
    """Naive wall-clock time in the provider's timezone."""
    return datetime.now(ZoneInfo(timezone)).replace(tzinfo=None)


class SettlementStatus(str, enum.Enum):
    """Settlement statuses reported by the provider."""
    PENDING = "Pendiente"
    DEPOSITED = "Depositada"
    CANCELLED = "Cancelada"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["SettlementStatus"]:
        """Case-insensitive lookup; returns None for unknown values."""
        if not value:
            return None
        for member in cls:
            if member.value.lower() == value.strip().lower():
                return member
        return None


class ChargebackStatus(str, enum.Enum):
    """Chargeback statuses reported by the provider."""
    PENDING = "Pendiente"
    ANSWERED = "Respondido"
    ACCEPTED = "Aceptado"
    RESOLVED = "Resuelto"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["ChargebackStatus"]:
        """Case-insensitive lookup; returns None for unknown values."""
        if not value:
            return None
        for member in cls:
            if member.value.lower() == value.strip().lower():
                return member
        return None


class QueryPeriod(str, enum.Enum):
    """Preset query windows."""
    LAST_WEEK = "last_week"
    LAST_MONTH = "last_month"
    CURRENT_MONTH = "current_month"
    PREVIOUS_MONTH = "previous_month"


PERIOD_DAYS = {
    QueryPeriod.LAST_WEEK: 7,
    QueryPeriod.LAST_MONTH: 30,
}


class AuthToken(BaseModel):
    """Bearer credential issued by the provider."""
    value: str = Field(..., repr=False, description="Opaque token string")
    issued_at: datetime = Field(..., description="Time the token was obtained")
    expires_at: datetime = Field(..., description="Provider-side expiry time")

    def is_usable(self, now: datetime, safety_margin: timedelta) -> bool:
        """True while ``now + safety_margin`` is still before expiry."""
        return now + safety_margin < self.expires_at


class DateRange(BaseModel):
    """Inclusive query window, in calendar days."""
    date_from: Optional[date] = Field(None, description="First day, inclusive")
    date_to: Optional[date] = Field(None, description="Last day, inclusive")

    @classmethod
    def last_days(cls, days_back: int, today: date) -> "DateRange":
        """Range covering ``[today - days_back, today]``."""
        return cls(date_from=today - timedelta(days=days_back), date_to=today)

    @classmethod
    def current_month(cls, today: date) -> "DateRange":
        """From the first day of the current month up to today."""
        return cls(date_from=today.replace(day=1), date_to=today)

    @classmethod
    def previous_month(cls, today: date) -> "DateRange":
        """The whole previous calendar month."""
        last_day = today.replace(day=1) - timedelta(days=1)
        return cls(date_from=last_day.replace(day=1), date_to=last_day)

    @classmethod
    def for_period(cls, period: "QueryPeriod", today: date) -> "DateRange":
        """Resolve a preset window relative to ``today``.

        Raises:
            ValidationError: If ``period`` is not a known preset.
        """
        try:
            period = QueryPeriod(period)
        except ValueError:
            choices = ", ".join(p.value for p in QueryPeriod)
            raise ValidationError(f"unknown period {period!r}, expected one of: {choices}")
        if period == QueryPeriod.CURRENT_MONTH:
            return cls.current_month(today)
        if period == QueryPeriod.PREVIOUS_MONTH:
            return cls.previous_month(today)
        return cls.last_days(PERIOD_DAYS[period], today)

    @property
    def span_days(self) -> int:
        if self.date_from is None or self.date_to is None:
            return 0
        return (self.date_to - self.date_from).days

    def check(self, today: date, max_lookback_days: int) -> None:
        """Validate the range against today's date and the lookback ceiling.

        Args:
            today: Current date in the provider's timezone.
            max_lookback_days: Maximum allowed span in days.

        Raises:
            ValidationError: If a bound is missing or the range is invalid.
        """
        if self.date_from is None or self.date_to is None:
            raise ValidationError("date range requires both date_from and date_to")
        if self.date_from > self.date_to:
            raise ValidationError(
                f"date_from {self.date_from} is after date_to {self.date_to}"
            )
        if self.date_to > today:
            raise ValidationError(f"date_to {self.date_to} is in the future")
        if self.span_days > max_lookback_days:
            raise ValidationError(
                f"date range spans {self.span_days} days, "
                f"maximum is {max_lookback_days}"
            )

    def __str__(self) -> str:
        return f"{self.date_from} - {self.date_to}"


class SettlementLineItem(BaseModel):
    """One transaction inside a settlement."""
    external_transaction_id: Optional[str] = Field(None, description="Provider transaction id")
    amount: Optional[Decimal] = None
    external_reference: Optional[str] = Field(None, description="Operation number")
    is_depositable: bool = True


class SettlementRecord(BaseModel):
    """A provider settlement batch with its line items."""
    id: Optional[int] = Field(None, description="Settlement number")
    sequence: Optional[int] = None
    agreement: Optional[int] = Field(None, description="Payment agreement (convenio)")
    status: Optional[str] = None
    period_from: Optional[date] = None
    period_to: Optional[date] = None
    estimated_deposit_date: Optional[date] = None
    deposit_date: Optional[date] = None
    gross_amount: Optional[Decimal] = None
    net_amount: Optional[Decimal] = None
    commission: Optional[Decimal] = None
    tax: Optional[Decimal] = None
    item_count: Optional[int] = None
    line_items: List[SettlementLineItem] = Field(default_factory=list)

    @property
    def status_enum(self) -> Optional[SettlementStatus]:
        return SettlementStatus.parse(self.status)

    def is_reconcilable(self) -> bool:
        """A settlement needs an id and a non-blank status to be applied."""
        return self.id is not None and bool(self.status and self.status.strip())


class ChargebackRecord(BaseModel):
    """A disputed transaction reported by the provider."""
    id: Optional[int] = Field(None, description="Chargeback number")
    status: Optional[str] = None
    payment_method: Optional[str] = None
    external_transaction_id: Optional[str] = None
    amount: Optional[Decimal] = None
    card_masked: Optional[str] = None
    due_date: Optional[datetime] = None

    @property
    def status_enum(self) -> Optional[ChargebackStatus]:
        return ChargebackStatus.parse(self.status)

    def is_pending(self) -> bool:
        return self.status_enum == ChargebackStatus.PENDING

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        """True when the response deadline has already passed."""
        if self.due_date is None:
            return False
        return (now or local_now()) > self.due_date

    def is_urgent(self, now: Optional[datetime] = None) -> bool:
        """Pending with less than two days left to respond."""
        if not self.is_pending() or self.due_date is None:
            return False
        return self.due_date - (now or local_now()) < URGENT_CHARGEBACK_WINDOW


class ReconciliationOutcome(BaseModel):
    """Result of applying one batch of provider records to a region's ledger."""
    matched_record_ids: List[str] = Field(default_factory=list)
    orphan_transaction_ids: List[str] = Field(default_factory=list)
    skipped_ids: List[Optional[int]] = Field(default_factory=list)
    status_counts: Dict[str, int] = Field(default_factory=dict)
    processed: int = Field(default=0, description="Provider records applied")
    urgent: int = Field(default=0, description="Urgent chargebacks seen")

    @property
    def records_updated(self) -> int:
        return len(self.matched_record_ids)

    @property
    def orphan_count(self) -> int:
        return len(self.orphan_transaction_ids)


def _status_label(parsed: Optional[enum.Enum], raw: Optional[str]) -> str:
    if parsed is not None:
        return parsed.value
    return raw.strip() if raw and raw.strip() else "Unknown"


def _percent(part: Decimal, whole: Decimal) -> float:
    if not whole:
        return 0.0
    return float(Decimal(part) * 100 / Decimal(whole))


class SettlementSummary(BaseModel):
    """Counts and totals over settlements fetched for one region."""
    region_code: str
    date_range: DateRange
    settlement_count: int = 0
    line_item_count: int = 0
    total_amount: Decimal = Decimal("0")
    net_amount: Decimal = Decimal("0")
    count_by_status: Dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_records(
        cls,
        region_code: str,
        date_range: DateRange,
        settlements: List[SettlementRecord],
    ) -> "SettlementSummary":
        summary = cls(region_code=region_code, date_range=date_range)
        for settlement in settlements:
            summary.settlement_count += 1
            summary.line_item_count += len(settlement.line_items)
            summary.total_amount += settlement.gross_amount or Decimal("0")
            summary.net_amount += settlement.net_amount or Decimal("0")
            label = _status_label(settlement.status_enum, settlement.status)
            summary.count_by_status[label] = summary.count_by_status.get(label, 0) + 1
        return summary

    def describe(self) -> str:
        return (
            f"Settlements - Region: {self.region_code}, Period: {self.date_range} | "
            f"Total: {self.settlement_count} | Transactions: {self.line_item_count} | "
            f"Gross: ${self.total_amount:.2f} | Net: ${self.net_amount:.2f}"
        )


class ChargebackSummary(BaseModel):
    """Counts and disputed amounts over chargebacks fetched for one region.

    Pending and answered chargebacks are still under review; accepted ones
    are lost disputes and make up the financial impact.
    """
    region_code: str
    date_range: DateRange
    total: int = 0
    in_review: int = 0
    accepted: int = 0
    urgent: int = 0
    total_disputed: Decimal = Decimal("0")
    accepted_amount: Decimal = Decimal("0")
    count_by_status: Dict[str, int] = Field(default_factory=dict)
    amount_by_status: Dict[str, Decimal] = Field(default_factory=dict)

    @classmethod
    def from_records(
        cls,
        region_code: str,
        date_range: DateRange,
        chargebacks: List[ChargebackRecord],
        now: Optional[datetime] = None,
    ) -> "ChargebackSummary":
        summary = cls(region_code=region_code, date_range=date_range)
        for chargeback in chargebacks:
            status = chargeback.status_enum
            amount = chargeback.amount or Decimal("0")
            label = _status_label(status, chargeback.status)

            summary.total += 1
            summary.total_disputed += amount
            summary.count_by_status[label] = summary.count_by_status.get(label, 0) + 1
            summary.amount_by_status[label] = summary.amount_by_status.get(label, Decimal("0")) + amount
            if status in (ChargebackStatus.PENDING, ChargebackStatus.ANSWERED):
                summary.in_review += 1
            elif status == ChargebackStatus.ACCEPTED:
                summary.accepted += 1
                summary.accepted_amount += amount
            if chargeback.is_urgent(now):
                summary.urgent += 1
        return summary

    @property
    def acceptance_rate(self) -> float:
        """Accepted chargebacks as a percentage of all chargebacks (0-100)."""
        return _percent(Decimal(self.accepted), Decimal(self.total))

    @property
    def financial_impact(self) -> float:
        """Accepted amount as a percentage of the total disputed amount (0-100)."""
        return _percent(self.accepted_amount, self.total_disputed)

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["acceptance_rate"] = round(self.acceptance_rate, 2)
        data["financial_impact"] = round(self.financial_impact, 2)
        return data

    def describe(self) -> str:
        return (
            f"Chargebacks - Region: {self.region_code}, Period: {self.date_range} | "
            f"Total: {self.total} | In review: {self.in_review} | "
            f"Accepted: {self.accepted} ({self.acceptance_rate:.2f}%) | "
            f"Disputed: ${self.total_disputed:.2f} | "
            f"Accepted amount: ${self.accepted_amount:.2f} ({self.financial_impact:.2f}% impact)"
        )


class RegionQueryResult(BaseModel):
    """Outcome of a read-only query for one region."""
    region_code: str
    success: bool = False
    settlements: Optional[SettlementSummary] = None
    chargebacks: Optional[ChargebackSummary] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "region_code": self.region_code,
            "success": self.success,
            "error_message": self.error_message,
            "settlements": self.settlements.model_dump(mode="json") if self.settlements else None,
            "chargebacks": self.chargebacks.to_dict() if self.chargebacks else None,
        }


class RegionSyncResult(BaseModel):
    """Outcome of one region's sync run."""
    region_code: str
    success: bool = False
    settlements_fetched: int = 0
    chargebacks_fetched: int = 0
    records_updated: int = 0
    chargebacks_processed: int = 0
    orphan_count: int = 0
    urgent_chargebacks: int = 0
    error_message: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
    duration_ms: Optional[int] = None

    @classmethod
    def failed(cls, region_code: str, message: str) -> "RegionSyncResult":
        return cls(region_code=region_code, success=False, error_message=message)


class ConsolidatedSyncResult(BaseModel):
    """Totals over every region of one coordinator run.

    Results are accepted until :meth:`finalize` is called; afterwards the
    result is frozen and late additions are ignored.
    """
    date_range: Optional[DateRange] = None
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    region_results: List[RegionSyncResult] = Field(default_factory=list)

    _finalized: bool = PrivateAttr(default=False)

    @property
    def finalized(self) -> bool:
        return self._finalized

    def add(self, result: RegionSyncResult) -> bool:
        """Merge a region result. Returns False if the result was finalized."""
        if self._finalized:
            return False
        self.region_results.append(result)
        return True

    def finalize(self) -> None:
        if not self._finalized:
            self.completed_at = datetime.utcnow()
            self._finalized = True

    @property
    def regions_queried(self) -> int:
        return len(self.region_results)

    @property
    def regions_succeeded(self) -> int:
        return sum(1 for r in self.region_results if r.success)

    @property
    def regions_failed(self) -> int:
        return sum(1 for r in self.region_results if not r.success)

    @property
    def total_settlements(self) -> int:
        return sum(r.settlements_fetched for r in self.region_results)

    @property
    def total_chargebacks(self) -> int:
        return sum(r.chargebacks_fetched for r in self.region_results)

    @property
    def records_updated(self) -> int:
        return sum(r.records_updated for r in self.region_results)

    @property
    def chargebacks_processed(self) -> int:
        return sum(r.chargebacks_processed for r in self.region_results)

    @property
    def orphans(self) -> int:
        return sum(r.orphan_count for r in self.region_results)

    @property
    def urgent_chargebacks(self) -> int:
        return sum(r.urgent_chargebacks for r in self.region_results)

    @property
    def all_succeeded(self) -> bool:
        return self.regions_failed == 0

    def result_for(self, region_code: str) -> Optional[RegionSyncResult]:
        for result in self.region_results:
            if result.region_code == region_code:
                return result
        return None

    def to_summary_dict(self) -> Dict[str, Any]:
        """Return totals without the per-region breakdown."""
        return {
            "date_from": self.date_range.date_from.isoformat() if self.date_range and self.date_range.date_from else None,
            "date_to": self.date_range.date_to.isoformat() if self.date_range and self.date_range.date_to else None,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "statistics": {
                "regions_queried": self.regions_queried,
                "regions_succeeded": self.regions_succeeded,
                "regions_failed": self.regions_failed,
                "total_settlements": self.total_settlements,
                "total_chargebacks": self.total_chargebacks,
                "records_updated": self.records_updated,
                "chargebacks_processed": self.chargebacks_processed,
                "orphans": self.orphans,
                "urgent_chargebacks": self.urgent_chargebacks,
            },
        }

    def to_full_dict(self) -> Dict[str, Any]:
        """Return totals plus every region result."""
        result = self.to_summary_dict()
        result["region_results"] = [r.model_dump() for r in self.region_results]
        return result
