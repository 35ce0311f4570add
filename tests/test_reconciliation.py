"""Tests for settlement reconciliation and chargeback processing."""

import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

from sqlalchemy.exc import SQLAlchemyError

from settlement_sync.database import AuditKind, AuditRepository, CollectionRecordRepository
from settlement_sync.errors import PersistenceError
from settlement_sync.models import (
    ChargebackRecord,
    SettlementLineItem,
    SettlementRecord,
)
from settlement_sync.reconciliation import (
    ChargebackProcessor,
    ReconciliationEngine,
    canonical_status,
    settlement_notes,
)

PROCESSED_ON = date(2025, 1, 10)


def settlement(number, tx_ids, status="Depositada", sequence=1, **kwargs) -> SettlementRecord:
    return SettlementRecord(
        id=number,
        sequence=sequence,
        agreement=kwargs.pop("agreement", 4),
        status=status,
        period_from=date(2025, 1, 1),
        period_to=date(2025, 1, 7),
        deposit_date=date(2025, 1, 9),
        gross_amount=kwargs.pop("gross_amount", Decimal("300.00")),
        net_amount=kwargs.pop("net_amount", Decimal("290.00")),
        commission=kwargs.pop("commission", Decimal("8.26")),
        tax=kwargs.pop("tax", Decimal("1.74")),
        item_count=len(tx_ids),
        line_items=[
            SettlementLineItem(external_transaction_id=tx, amount=Decimal("100.00"))
            for tx in tx_ids
        ],
    )


async def seed(session, *tx_ids):
    repo = CollectionRecordRepository(session)
    records = [await repo.create(tx, amount_paid=Decimal("100.00")) for tx in tx_ids]
    await session.commit()
    return records


@pytest.fixture
def engine(db_session):
    return ReconciliationEngine(db_session, today=lambda: PROCESSED_ON)


class TestSettlementHelpers:
    """Tests for status and notes formatting."""

    def test_canonical_status(self):
        assert canonical_status("DEPOSITADA") == "Depositada"
        assert canonical_status(" Transferida ") == "Transferida"
        assert canonical_status(None) is None

    def test_settlement_notes(self):
        notes = settlement_notes(settlement(12, [], sequence=3, status="pendiente"))
        assert notes == "Settled - settlement #12 seq #3 Pendiente"


class TestReconciliationEngine:
    """Tests for ReconciliationEngine.reconcile."""

    async def test_matches_and_reports_orphans(self, engine, db_session):
        first, second = await seed(db_session, "1001", "1002")

        outcome = await engine.reconcile("A", [
            settlement(1, ["1001", "9999"]),
            settlement(2, ["1002"]),
        ])

        assert sorted(outcome.matched_record_ids) == sorted([first.id, second.id])
        assert outcome.orphan_transaction_ids == ["9999"]
        assert outcome.records_updated == 2
        assert outcome.processed == 2
        assert outcome.status_counts == {"Depositada": 2}

        stored = await CollectionRecordRepository(db_session).get_by_transaction_id("1001")
        assert stored.settlement_id == 1
        assert stored.settlement_status == "Depositada"
        assert stored.deposit_date == date(2025, 1, 9)
        assert stored.payment_method_code == 4
        assert stored.settlement_amount == Decimal("300.00")
        assert stored.notes == "Settled - settlement #1 seq #1 Depositada"

    async def test_never_creates_records(self, engine, db_session):
        await seed(db_session, "1001")
        repo = CollectionRecordRepository(db_session)

        outcome = await engine.reconcile("A", [settlement(1, ["5555", "6666"])])

        assert outcome.records_updated == 0
        assert outcome.orphan_transaction_ids == ["5555", "6666"]
        assert await repo.count() == 1

    async def test_reconcile_is_idempotent(self, engine, db_session):
        await seed(db_session, "1001", "1002")
        batch = [settlement(1, ["1001", "1002"]), settlement(2, ["1002", "7777"])]
        repo = CollectionRecordRepository(db_session)

        first = await engine.reconcile("A", batch)
        after_first = {tx: (await repo.get_by_transaction_id(tx)).to_dict() for tx in ("1001", "1002")}
        second = await engine.reconcile("A", batch)
        after_second = {tx: (await repo.get_by_transaction_id(tx)).to_dict() for tx in ("1001", "1002")}

        assert after_first == after_second
        assert first.records_updated == second.records_updated
        assert first.orphan_transaction_ids == second.orphan_transaction_ids
        assert await repo.count() == 2

    async def test_record_matched_twice_counts_once(self, engine, db_session):
        """The last settlement naming a record wins; the record is counted once."""
        [record] = await seed(db_session, "1001")

        outcome = await engine.reconcile("A", [
            settlement(1, ["1001"], status="Pendiente"),
            settlement(2, ["1001"], status="Depositada"),
        ])

        assert outcome.matched_record_ids == [record.id]
        stored = await CollectionRecordRepository(db_session).get_by_transaction_id("1001")
        assert stored.settlement_id == 2
        assert stored.settlement_status == "Depositada"

    async def test_malformed_settlements_are_skipped(self, engine, db_session):
        await seed(db_session, "1001", "1002")

        outcome = await engine.reconcile("A", [
            settlement(None, ["1001"]),
            settlement(3, ["1002"], status="  "),
            settlement(4, ["1002"]),
        ])

        assert outcome.skipped_ids == [None, 3]
        assert outcome.processed == 1
        stored = await CollectionRecordRepository(db_session).get_by_transaction_id("1001")
        assert stored.settlement_id is None

    async def test_line_items_without_transaction_id_are_ignored(self, engine, db_session):
        await seed(db_session, "1001")
        batch = settlement(1, ["1001", None])

        outcome = await engine.reconcile("A", [batch])

        assert outcome.records_updated == 1
        assert outcome.orphan_transaction_ids == []

    async def test_missing_amounts_keep_previous_values(self, engine, db_session):
        await seed(db_session, "1001")
        await engine.reconcile("A", [settlement(1, ["1001"])])
        await engine.reconcile("A", [settlement(1, ["1001"], sequence=2, gross_amount=None, tax=None)])

        stored = await CollectionRecordRepository(db_session).get_by_transaction_id("1001")
        assert stored.settlement_sequence == 2
        assert stored.settlement_amount == Decimal("300.00")
        assert stored.tax == Decimal("1.74")

    async def test_empty_batch(self, engine):
        outcome = await engine.reconcile("A", [])
        assert outcome.records_updated == 0
        assert outcome.processed == 0

    async def test_writes_one_audit_row_per_settlement(self, engine, db_session):
        await seed(db_session, "1001")
        await engine.reconcile("A", [settlement(1, ["1001"]), settlement(2, ["4242"])])

        rows = await AuditRepository(db_session).list_for_region("A", AuditKind.SETTLEMENT)
        assert sorted(r.reference_id for r in rows) == [1, 2]
        assert all(r.processor == "e-Pagos" for r in rows)
        assert all(r.processed_on == PROCESSED_ON for r in rows)
        observations = {r.reference_id: r.observation for r in rows}
        assert observations[1].startswith("Region:A Settlement#1 Seq#1 Depositada")
        assert "Items:1" in observations[2]

    async def test_batch_write_failure_raises_persistence_error(self, engine, db_session):
        await seed(db_session, "1001")
        engine.records.save_all = AsyncMock(side_effect=SQLAlchemyError("disk full"))

        with pytest.raises(PersistenceError, match="disk full"):
            await engine.reconcile("A", [settlement(1, ["1001"])])

    async def test_lookup_failure_raises_persistence_error(self, engine):
        engine.records.find_by_transaction_ids = AsyncMock(side_effect=SQLAlchemyError("gone"))

        with pytest.raises(PersistenceError, match="lookup failed"):
            await engine.reconcile("A", [settlement(1, ["1001"])])

    async def test_audit_failure_does_not_fail_reconciliation(self, engine, db_session):
        await seed(db_session, "1001")
        engine.audit.append = AsyncMock(side_effect=SQLAlchemyError("audit table locked"))

        outcome = await engine.reconcile("A", [settlement(1, ["1001"])])

        assert outcome.records_updated == 1
        stored = await CollectionRecordRepository(db_session).get_by_transaction_id("1001")
        assert stored.settlement_id == 1


class TestChargebackProcessor:
    """Tests for ChargebackProcessor.process."""

    NOW = datetime(2025, 1, 10, 12, 0, 0)

    @pytest.fixture
    def processor(self, db_session):
        return ChargebackProcessor(db_session, today=lambda: PROCESSED_ON, now=lambda: self.NOW)

    def chargeback(self, number, tx_id, status="Pendiente", days_left=7) -> ChargebackRecord:
        return ChargebackRecord(
            id=number,
            status=status,
            payment_method="Visa",
            external_transaction_id=tx_id,
            amount=Decimal("100.00"),
            card_masked="****3704",
            due_date=self.NOW + timedelta(days=days_left),
        )

    async def test_applies_chargeback_columns(self, processor, db_session):
        await seed(db_session, "1001")

        outcome = await processor.process("A", [self.chargeback(5, "1001")])

        assert outcome.records_updated == 1
        stored = await CollectionRecordRepository(db_session).get_by_transaction_id("1001")
        assert stored.chargeback_id == 5
        assert stored.chargeback_status == "Pendiente"
        assert stored.chargeback_amount == Decimal("100.00")
        assert stored.chargeback_due_date == self.NOW + timedelta(days=7)

    async def test_settlement_columns_untouched(self, processor, engine, db_session):
        await seed(db_session, "1001")
        await engine.reconcile("A", [settlement(1, ["1001"])])

        await processor.process("A", [self.chargeback(5, "1001")])

        stored = await CollectionRecordRepository(db_session).get_by_transaction_id("1001")
        assert stored.settlement_id == 1
        assert stored.notes == "Settled - settlement #1 seq #1 Depositada"

    async def test_orphans_and_skipped(self, processor, db_session):
        await seed(db_session, "1001")

        outcome = await processor.process("A", [
            self.chargeback(5, "8888"),
            self.chargeback(None, "1001"),
            self.chargeback(6, None),
        ])

        assert outcome.orphan_transaction_ids == ["8888"]
        assert outcome.skipped_ids == [None, 6]
        assert outcome.records_updated == 0

    async def test_counts_urgent_chargebacks(self, processor, db_session):
        await seed(db_session, "1001", "1002", "1003")

        outcome = await processor.process("A", [
            self.chargeback(1, "1001", days_left=1),
            self.chargeback(2, "1002", days_left=10),
            self.chargeback(3, "1003", status="Resuelto", days_left=1),
        ])

        assert outcome.urgent == 1
        assert outcome.status_counts == {"Pendiente": 2, "Resuelto": 1}

    async def test_writes_chargeback_audit_rows(self, processor, db_session):
        await seed(db_session, "1001")
        await processor.process("A", [self.chargeback(5, "1001")])

        audit = AuditRepository(db_session)
        rows = await audit.list_for_region("A", AuditKind.CHARGEBACK)
        assert [r.reference_id for r in rows] == [5]
        assert "Card:****3704" in rows[0].observation
        assert await audit.list_for_region("A", AuditKind.SETTLEMENT) == []

    async def test_batch_write_failure_raises_persistence_error(self, processor, db_session):
        await seed(db_session, "1001")
        processor.records.save_all = AsyncMock(side_effect=SQLAlchemyError("disk full"))

        with pytest.raises(PersistenceError):
            await processor.process("A", [self.chargeback(5, "1001")])
