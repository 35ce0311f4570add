"""Per-region synchronization pipeline."""

import time
import logging
from datetime import date
from typing import Callable, Optional

from ..client import RetryingApiClient
from ..database import RegionDatabaseRegistry
from ..errors import SettlementSyncError, ValidationError
from ..models import DateRange, RegionSyncResult
from ..reconciliation import ChargebackProcessor, ReconciliationEngine
from ..reconciliation.engine import DEFAULT_PROCESSOR

logger = logging.getLogger(__name__)


class RegionSyncJob:
    """
    Fetches settlements for one region, reconciles them against the region's
    ledger and, when enabled, does the same for chargebacks.

    ``run`` always returns a RegionSyncResult; failures are reported in the
    result instead of being raised.
    """

    def __init__(
        self,
        client: RetryingApiClient,
        databases: RegionDatabaseRegistry,
        chargebacks_enabled: bool = False,
        processor: str = DEFAULT_PROCESSOR,
        today: Optional[Callable[[], date]] = None,
    ):
        """Initialize the job.

        Args:
            client: Provider client shared by all regions.
            databases: Registry holding each region's datastore.
            chargebacks_enabled: Also fetch and apply chargebacks.
            processor: Provider name written to audit rows.
            today: Processing date for audit rows.
        """
        self.client = client
        self.databases = databases
        self.chargebacks_enabled = chargebacks_enabled
        self.processor = processor
        self._today = today

    async def run(self, region_code: str, date_range: DateRange) -> RegionSyncResult:
        """Synchronize one region for ``date_range``.

        Args:
            region_code: Region to synchronize.
            date_range: Inclusive query window.

        Returns:
            RegionSyncResult; ``success`` is False if any step failed.
        """
        started = time.monotonic()
        result = RegionSyncResult(region_code=region_code)
        step = "settlements"
        logger.info(
            f"[{region_code}] Sync started for {date_range} "
            f"(chargebacks {'enabled' if self.chargebacks_enabled else 'disabled'})"
        )

        try:
            # Unconfigured regions fail before any provider call
            await self.databases.manager_for(region_code)
            settlements = await self.client.fetch_settlements(date_range, region_code=region_code)
            result.settlements_fetched = len(settlements)

            async with self.databases.session(region_code) as session:
                engine = ReconciliationEngine(session, processor=self.processor, today=self._today)
                outcome = await engine.reconcile(region_code, settlements)
                result.records_updated = outcome.records_updated
                result.orphan_count = outcome.orphan_count

                if self.chargebacks_enabled:
                    step = "chargebacks"
                    chargebacks = await self.client.fetch_chargebacks(
                        date_range, region_code=region_code
                    )
                    result.chargebacks_fetched = len(chargebacks)
                    processor = ChargebackProcessor(
                        session, processor=self.processor, today=self._today
                    )
                    cb_outcome = await processor.process(region_code, chargebacks)
                    result.chargebacks_processed = cb_outcome.records_updated
                    result.urgent_chargebacks = cb_outcome.urgent

            result.success = True

        except ValidationError as e:
            result.success = False
            result.error_message = f"invalid parameters: {e}"
            result.errors.append(f"{step}: {e}")
            logger.error(f"[{region_code}] Invalid parameters: {e}")

        except SettlementSyncError as e:
            result.success = False
            result.error_message = f"{step} sync failed: {type(e).__name__}: {e}"
            result.errors.append(f"{step}: {e}")
            logger.error(f"[{region_code}] {step} sync failed: {e}")

        except Exception as e:
            result.success = False
            result.error_message = f"internal error: {type(e).__name__}: {e}"
            result.errors.append(f"{step}: {e}")
            logger.exception(f"[{region_code}] Unexpected error during sync")

        result.duration_ms = int((time.monotonic() - started) * 1000)
        if result.success:
            logger.info(
                f"[{region_code}] Sync finished in {result.duration_ms}ms: "
                f"{result.settlements_fetched} settlements, {result.records_updated} records updated, "
                f"{result.orphan_count} orphans, {result.chargebacks_processed} chargebacks applied"
            )
        return result
