"""Read-only settlement and chargeback queries.

Records are fetched through the shared client and summarized. Nothing here
opens a region's datastore, so a query never changes the ledger.
"""

import asyncio
import logging
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional

from .client import RetryingApiClient
from .errors import SettlementSyncError, ValidationError
from .models import (
    ChargebackRecord,
    ChargebackSummary,
    DateRange,
    QueryPeriod,
    RegionQueryResult,
    SettlementRecord,
    SettlementSummary,
)

logger = logging.getLogger(__name__)

MIN_QUERY_DAYS = 1
MAX_REGION_CODE_LENGTH = 10


class SettlementQueryService:
    """
    Queries the provider without reconciling.

    A query window is given in exactly one of three ways: an explicit
    DateRange, a ``days_back`` count ending today, or a QueryPeriod preset.

    Example:
        service = SettlementQueryService(client, today=settings.today)
        settlements = await service.previous_month("BA")
        summary = await service.summarize_chargebacks("BA", days_back=30)
    """

    def __init__(
        self,
        client: RetryingApiClient,
        today: Optional[Callable[[], date]] = None,
        max_lookback_days: int = 90,
        regions: Optional[Iterable[str]] = None,
    ):
        self.client = client
        self.max_lookback_days = max_lookback_days
        self.regions = list(regions or [])
        self._today = today or date.today

    @staticmethod
    def check_region(region_code: Optional[str]) -> str:
        """Return the normalized region code.

        Raises:
            ValidationError: If the code is blank or too long.
        """
        code = (region_code or "").strip().upper()
        if not code:
            raise ValidationError("region code must not be empty")
        if len(code) > MAX_REGION_CODE_LENGTH:
            raise ValidationError(
                f"region code {code!r} is longer than {MAX_REGION_CODE_LENGTH} characters"
            )
        return code

    def resolve_range(
        self,
        date_range: Optional[DateRange] = None,
        days_back: Optional[int] = None,
        period: Optional[QueryPeriod] = None,
    ) -> DateRange:
        """Turn one of the accepted window forms into a DateRange.

        Raises:
            ValidationError: If no form or more than one is given, or
                ``days_back`` is out of range.
        """
        given = sum(value is not None for value in (date_range, days_back, period))
        if given > 1:
            raise ValidationError("use only one of a date range, days_back or a period")
        if period is not None:
            return DateRange.for_period(period, self._today())
        if days_back is not None:
            if days_back < MIN_QUERY_DAYS or days_back > self.max_lookback_days:
                raise ValidationError(
                    f"days_back must be between {MIN_QUERY_DAYS} and "
                    f"{self.max_lookback_days}, got {days_back}"
                )
            return DateRange.last_days(days_back, self._today())
        if date_range is None:
            raise ValidationError("a date range, days_back or a period is required")
        return date_range

    def limits(self) -> Dict[str, int]:
        return {"min_days": MIN_QUERY_DAYS, "max_days": self.max_lookback_days}

    async def fetch_settlements(
        self,
        region_code: str,
        date_range: Optional[DateRange] = None,
        days_back: Optional[int] = None,
        period: Optional[QueryPeriod] = None,
    ) -> List[SettlementRecord]:
        """Fetch one region's settlements.

        Raises:
            ValidationError: If the region or window is invalid (no request
                is made).
            AuthError: If the provider keeps rejecting the token.
            RemoteError: On any other provider error.
        """
        code = self.check_region(region_code)
        window = self.resolve_range(date_range, days_back, period)
        logger.info(f"[{code}] Querying settlements for {window}")
        settlements = await self.client.fetch_settlements(window, region_code=code)
        if not settlements:
            logger.debug(f"[{code}] No settlements for {window}")
        return settlements

    async def fetch_chargebacks(
        self,
        region_code: str,
        date_range: Optional[DateRange] = None,
        days_back: Optional[int] = None,
        period: Optional[QueryPeriod] = None,
    ) -> List[ChargebackRecord]:
        """Fetch one region's chargebacks. Same contract as :meth:`fetch_settlements`."""
        code = self.check_region(region_code)
        window = self.resolve_range(date_range, days_back, period)
        logger.info(f"[{code}] Querying chargebacks for {window}")
        return await self.client.fetch_chargebacks(window, region_code=code)

    async def last_week(self, region_code: str) -> List[SettlementRecord]:
        return await self.fetch_settlements(region_code, period=QueryPeriod.LAST_WEEK)

    async def last_month(self, region_code: str) -> List[SettlementRecord]:
        return await self.fetch_settlements(region_code, period=QueryPeriod.LAST_MONTH)

    async def current_month(self, region_code: str) -> List[SettlementRecord]:
        return await self.fetch_settlements(region_code, period=QueryPeriod.CURRENT_MONTH)

    async def previous_month(self, region_code: str) -> List[SettlementRecord]:
        return await self.fetch_settlements(region_code, period=QueryPeriod.PREVIOUS_MONTH)

    async def summarize_settlements(
        self,
        region_code: str,
        date_range: Optional[DateRange] = None,
        days_back: Optional[int] = None,
        period: Optional[QueryPeriod] = None,
    ) -> SettlementSummary:
        code = self.check_region(region_code)
        window = self.resolve_range(date_range, days_back, period)
        settlements = await self.client.fetch_settlements(window, region_code=code)
        return SettlementSummary.from_records(code, window, settlements)

    async def summarize_chargebacks(
        self,
        region_code: str,
        date_range: Optional[DateRange] = None,
        days_back: Optional[int] = None,
        period: Optional[QueryPeriod] = None,
    ) -> ChargebackSummary:
        code = self.check_region(region_code)
        window = self.resolve_range(date_range, days_back, period)
        chargebacks = await self.client.fetch_chargebacks(window, region_code=code)
        summary = ChargebackSummary.from_records(code, window, chargebacks)
        logger.info(
            f"[{code}] {summary.total} chargebacks, {summary.accepted} accepted "
            f"({summary.acceptance_rate:.2f}%), {summary.urgent} urgent"
        )
        return summary

    async def _query_region(
        self,
        region_code: str,
        date_range: DateRange,
        include_chargebacks: bool,
    ) -> RegionQueryResult:
        result = RegionQueryResult(region_code=region_code)
        try:
            result.settlements = await self.summarize_settlements(region_code, date_range)
            if include_chargebacks:
                result.chargebacks = await self.summarize_chargebacks(region_code, date_range)
            result.success = True
        except SettlementSyncError as e:
            logger.error(f"[{region_code}] Query failed: {e}")
            result.error_message = f"{type(e).__name__}: {e}"
        return result

    async def query_regions(
        self,
        region_codes: Optional[Iterable[str]] = None,
        date_range: Optional[DateRange] = None,
        days_back: Optional[int] = None,
        period: Optional[QueryPeriod] = None,
        include_chargebacks: bool = False,
    ) -> List[RegionQueryResult]:
        """Summarize several regions concurrently.

        A region whose query fails is reported in its result; the others are
        unaffected.

        Args:
            region_codes: Regions to query. Defaults to the configured ones.
            date_range: Explicit window.
            days_back: Window ending today.
            period: Preset window.
            include_chargebacks: Also summarize chargebacks.

        Returns:
            One RegionQueryResult per distinct region, in the given order.

        Raises:
            ValidationError: If no region is given, a region code is invalid
                or the window is invalid.
        """
        codes: List[str] = []
        for code in region_codes if region_codes is not None else self.regions:
            code = self.check_region(code)
            if code not in codes:
                codes.append(code)
        if not codes:
            raise ValidationError("at least one region code is required")
        window = self.resolve_range(date_range, days_back, period)
        window.check(self._today(), self.max_lookback_days)

        logger.info(f"Querying {len(codes)} regions ({', '.join(codes)}) for {window}")
        return list(await asyncio.gather(*(
            self._query_region(code, window, include_chargebacks) for code in codes
        )))
