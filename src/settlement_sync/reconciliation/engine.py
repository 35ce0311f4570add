"""Batch reconciliation of provider settlements against a region's ledger."""

import logging
from collections import Counter
from datetime import date
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import AuditKind, AuditRepository, CollectionRecord, CollectionRecordRepository
from ..errors import PersistenceError
from ..models import ReconciliationOutcome, SettlementRecord, SettlementStatus

logger = logging.getLogger(__name__)

DEFAULT_PROCESSOR = "e-Pagos"


def canonical_status(status: Optional[str]) -> Optional[str]:
    """Known statuses in their canonical spelling; unknown ones trimmed."""
    parsed = SettlementStatus.parse(status)
    if parsed is not None:
        return parsed.value
    return status.strip() if status else status


def settlement_notes(settlement: SettlementRecord) -> str:
    return (
        f"Settled - settlement #{settlement.id} seq #{settlement.sequence} "
        f"{canonical_status(settlement.status)}"
    )


def settlement_observation(region_code: str, settlement: SettlementRecord) -> str:
    return (
        f"Region:{region_code} Settlement#{settlement.id} Seq#{settlement.sequence} "
        f"{canonical_status(settlement.status)} "
        f"Period:{settlement.period_from}-{settlement.period_to} "
        f"Amount:{settlement.gross_amount} Items:{settlement.item_count}"
    )


class ReconciliationEngine:
    """
    Applies provider settlements to the CollectionRecords of one region.

    Every line item is matched by external transaction id through a single
    bulk lookup. Matched records get the settlement's fields assigned (never
    accumulated), so running the same batch twice leaves the same values.
    Unmatched ids are reported as orphans; records are never created or
    deleted here.
    """

    def __init__(
        self,
        session: AsyncSession,
        processor: str = DEFAULT_PROCESSOR,
        today: Optional[Callable[[], date]] = None,
    ):
        """Initialize the engine.

        Args:
            session: Session on the region's datastore.
            processor: Provider name written to the audit trail.
            today: Returns the processing date for audit rows.
        """
        self.session = session
        self.records = CollectionRecordRepository(session)
        self.audit = AuditRepository(session)
        self.processor = processor
        self._today = today or date.today

    @staticmethod
    def apply_settlement(record: CollectionRecord, settlement: SettlementRecord) -> None:
        """Copy the settlement's fields onto ``record``."""
        record.settlement_id = settlement.id
        record.settlement_sequence = settlement.sequence
        record.settlement_status = canonical_status(settlement.status)
        record.settlement_period_from = settlement.period_from
        record.settlement_period_to = settlement.period_to
        record.deposit_date = settlement.deposit_date
        record.payment_method_code = settlement.agreement

        # Amounts the provider omits keep their previous value
        if settlement.gross_amount is not None:
            record.settlement_amount = settlement.gross_amount
        if settlement.net_amount is not None:
            record.deposited_amount = settlement.net_amount
        if settlement.commission is not None:
            record.commission = settlement.commission
        if settlement.tax is not None:
            record.tax = settlement.tax

        record.notes = settlement_notes(settlement)

    async def reconcile(
        self,
        region_code: str,
        settlements: List[SettlementRecord],
    ) -> ReconciliationOutcome:
        """Reconcile a batch of settlements.

        Args:
            region_code: Region whose ledger the session points at.
            settlements: Settlements fetched from the provider.

        Returns:
            ReconciliationOutcome with matched record ids and orphan ids.

        Raises:
            PersistenceError: If the lookup or the batch write fails.
        """
        outcome = ReconciliationOutcome()
        if not settlements:
            logger.info(f"[{region_code}] No settlements to reconcile")
            return outcome

        valid = []
        for settlement in settlements:
            if settlement.is_reconcilable():
                valid.append(settlement)
            else:
                logger.warning(
                    f"[{region_code}] Skipping malformed settlement "
                    f"id={settlement.id} status={settlement.status!r}"
                )
                outcome.skipped_ids.append(settlement.id)

        transaction_ids = list(dict.fromkeys(
            item.external_transaction_id
            for settlement in valid
            for item in settlement.line_items
            if item.external_transaction_id
        ))

        try:
            known = await self.records.find_by_transaction_ids(transaction_ids)
        except SQLAlchemyError as e:
            raise PersistenceError(f"collection record lookup failed: {e}") from e

        matched: Dict[str, CollectionRecord] = {}
        orphans: Dict[str, None] = {}
        status_counts: Counter = Counter()

        for settlement in valid:
            for item in settlement.line_items:
                tx_id = item.external_transaction_id
                if not tx_id:
                    logger.debug(
                        f"[{region_code}] Settlement #{settlement.id} has a line item "
                        f"without transaction id"
                    )
                    continue
                record = known.get(tx_id)
                if record is None:
                    orphans[tx_id] = None
                    continue
                self.apply_settlement(record, settlement)
                matched[record.id] = record
            status_counts[canonical_status(settlement.status)] += 1

        if matched:
            try:
                await self.records.save_all(list(matched.values()))
                await self.session.commit()
            except SQLAlchemyError as e:
                await self.session.rollback()
                logger.error(f"[{region_code}] Batch write of {len(matched)} records failed: {e}")
                raise PersistenceError(
                    f"failed to persist {len(matched)} collection records: {e}"
                ) from e

        for settlement in valid:
            await self._append_audit(region_code, settlement)

        outcome.matched_record_ids = list(matched)
        outcome.orphan_transaction_ids = list(orphans)
        outcome.status_counts = dict(status_counts)
        outcome.processed = len(valid)

        if orphans:
            logger.warning(
                f"[{region_code}] {len(orphans)} transaction ids have no collection record: "
                f"{', '.join(list(orphans)[:10])}{'...' if len(orphans) > 10 else ''}"
            )
        logger.info(
            f"[{region_code}] Reconciliation complete: {len(valid)} settlements, "
            f"{len(matched)} records updated, {len(orphans)} orphans, "
            f"{len(outcome.skipped_ids)} skipped"
        )
        return outcome

    async def _append_audit(self, region_code: str, settlement: SettlementRecord) -> None:
        try:
            await self.audit.append(
                region_code=region_code,
                processor=self.processor,
                kind=AuditKind.SETTLEMENT,
                reference_id=settlement.id,
                sequence=settlement.sequence,
                status=canonical_status(settlement.status),
                amount=settlement.gross_amount,
                item_count=settlement.item_count,
                observation=settlement_observation(region_code, settlement),
                processed_on=self._today(),
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                f"[{region_code}] Failed to record audit row for settlement "
                f"#{settlement.id}: {e}"
            )
