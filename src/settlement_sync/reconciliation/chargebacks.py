"""Apply provider chargebacks to a region's ledger."""

import logging
from collections import Counter
from datetime import date, datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import AuditKind, AuditRepository, CollectionRecord, CollectionRecordRepository
from ..errors import PersistenceError
from ..models import ChargebackRecord, ChargebackStatus, ReconciliationOutcome, local_now
from .engine import DEFAULT_PROCESSOR

logger = logging.getLogger(__name__)


def canonical_chargeback_status(status: Optional[str]) -> Optional[str]:
    parsed = ChargebackStatus.parse(status)
    if parsed is not None:
        return parsed.value
    return status.strip() if status else status


class ChargebackProcessor:
    """
    Matches chargebacks to CollectionRecords by transaction id.

    Follows the same contract as the settlement engine: one bulk lookup,
    absolute assignment of the chargeback columns, one batch write, orphans
    reported rather than created. Settlement columns are left untouched.
    """

    def __init__(
        self,
        session: AsyncSession,
        processor: str = DEFAULT_PROCESSOR,
        today: Optional[Callable[[], date]] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.session = session
        self.records = CollectionRecordRepository(session)
        self.audit = AuditRepository(session)
        self.processor = processor
        self._today = today or date.today
        self._now = now or local_now

    @staticmethod
    def apply_chargeback(record: CollectionRecord, chargeback: ChargebackRecord) -> None:
        record.chargeback_id = chargeback.id
        record.chargeback_status = canonical_chargeback_status(chargeback.status)
        record.chargeback_amount = chargeback.amount
        record.chargeback_due_date = chargeback.due_date

    async def process(
        self,
        region_code: str,
        chargebacks: List[ChargebackRecord],
    ) -> ReconciliationOutcome:
        """Apply a batch of chargebacks.

        Args:
            region_code: Region whose ledger the session points at.
            chargebacks: Chargebacks fetched from the provider.

        Returns:
            ReconciliationOutcome; ``urgent`` counts pending chargebacks due
            within two days.

        Raises:
            PersistenceError: If the lookup or the batch write fails.
        """
        outcome = ReconciliationOutcome()
        if not chargebacks:
            return outcome

        valid = []
        for chargeback in chargebacks:
            if chargeback.id is None or not chargeback.external_transaction_id:
                logger.warning(
                    f"[{region_code}] Skipping chargeback without number or transaction: "
                    f"id={chargeback.id}"
                )
                outcome.skipped_ids.append(chargeback.id)
                continue
            valid.append(chargeback)

        try:
            known = await self.records.find_by_transaction_ids(
                c.external_transaction_id for c in valid
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"collection record lookup failed: {e}") from e

        matched: Dict[str, CollectionRecord] = {}
        orphans: Dict[str, None] = {}
        status_counts: Counter = Counter()
        now = self._now()
        urgent = 0

        for chargeback in valid:
            status_counts[canonical_chargeback_status(chargeback.status)] += 1
            if chargeback.is_urgent(now):
                urgent += 1
                logger.warning(
                    f"[{region_code}] Chargeback #{chargeback.id} for transaction "
                    f"{chargeback.external_transaction_id} is due {chargeback.due_date} "
                    f"and needs attention"
                )
            record = known.get(chargeback.external_transaction_id)
            if record is None:
                orphans[chargeback.external_transaction_id] = None
                continue
            self.apply_chargeback(record, chargeback)
            matched[record.id] = record

        if matched:
            try:
                await self.records.save_all(list(matched.values()))
                await self.session.commit()
            except SQLAlchemyError as e:
                await self.session.rollback()
                raise PersistenceError(
                    f"failed to persist {len(matched)} chargeback updates: {e}"
                ) from e

        for chargeback in valid:
            await self._append_audit(region_code, chargeback)

        outcome.matched_record_ids = list(matched)
        outcome.orphan_transaction_ids = list(orphans)
        outcome.status_counts = dict(status_counts)
        outcome.processed = len(valid)
        outcome.urgent = urgent

        logger.info(
            f"[{region_code}] Chargebacks processed: {len(valid)} received, "
            f"{len(matched)} records updated, {len(orphans)} orphans, {urgent} urgent"
        )
        return outcome

    async def _append_audit(self, region_code: str, chargeback: ChargebackRecord) -> None:
        try:
            await self.audit.append(
                region_code=region_code,
                processor=self.processor,
                kind=AuditKind.CHARGEBACK,
                reference_id=chargeback.id,
                status=canonical_chargeback_status(chargeback.status),
                amount=chargeback.amount,
                observation=(
                    f"Region:{region_code} Chargeback#{chargeback.id} "
                    f"Tx#{chargeback.external_transaction_id} "
                    f"{canonical_chargeback_status(chargeback.status)} "
                    f"Method:{chargeback.payment_method} Card:{chargeback.card_masked} "
                    f"Due:{chargeback.due_date}"
                ),
                processed_on=self._today(),
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                f"[{region_code}] Failed to record audit row for chargeback "
                f"#{chargeback.id}: {e}"
            )
