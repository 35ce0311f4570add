"""Repository layer for the collection ledger and the audit trail."""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Dict, Iterable, List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from .models import CollectionRecord, SyncAuditEntry, AuditKind

logger = logging.getLogger(__name__)

# Bound on IN (...) list size per query
LOOKUP_CHUNK_SIZE = 500


class CollectionRecordRepository:
    """Repository for CollectionRecord lookups and batch updates."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def create(
        self,
        external_transaction_id: Optional[str],
        amount_paid: Optional[Decimal] = None,
        paid_at: Optional[datetime] = None,
    ) -> CollectionRecord:
        """Create a ledger record.

        Args:
            external_transaction_id: Provider transaction id, if known.
            amount_paid: Amount collected.
            paid_at: Collection time.

        Returns:
            Created CollectionRecord instance.
        """
        record = CollectionRecord(
            external_transaction_id=external_transaction_id,
            amount_paid=amount_paid,
            paid_at=paid_at,
        )
        self.session.add(record)
        await self.session.flush()
        logger.debug(f"Created collection record {record.id} for transaction {external_transaction_id}")
        return record

    async def get_by_transaction_id(self, external_transaction_id: str) -> Optional[CollectionRecord]:
        result = await self.session.execute(
            select(CollectionRecord).where(
                CollectionRecord.external_transaction_id == external_transaction_id
            )
        )
        return result.scalar_one_or_none()

    async def find_by_transaction_ids(
        self,
        external_transaction_ids: Iterable[str],
    ) -> Dict[str, CollectionRecord]:
        """Load every record whose transaction id is in the given set.

        Args:
            external_transaction_ids: Provider transaction ids to look up.

        Returns:
            Mapping of transaction id to record. Ids with no record are absent.
        """
        ids = list(dict.fromkeys(external_transaction_ids))
        found: Dict[str, CollectionRecord] = {}
        for start in range(0, len(ids), LOOKUP_CHUNK_SIZE):
            chunk = ids[start:start + LOOKUP_CHUNK_SIZE]
            result = await self.session.execute(
                select(CollectionRecord).where(
                    CollectionRecord.external_transaction_id.in_(chunk)
                )
            )
            for record in result.scalars().all():
                found[record.external_transaction_id] = record
        logger.debug(f"Bulk lookup matched {len(found)} of {len(ids)} transaction ids")
        return found

    async def save_all(self, records: List[CollectionRecord]) -> None:
        """Stage a batch of modified records and flush them in one go."""
        self.session.add_all(records)
        await self.session.flush()

    async def count(self) -> int:
        result = await self.session.execute(select(func.count(CollectionRecord.id)))
        return result.scalar_one()


class AuditRepository:
    """Repository for the append-only sync audit trail."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self,
        region_code: str,
        processor: str,
        kind: AuditKind = AuditKind.SETTLEMENT,
        reference_id: Optional[int] = None,
        sequence: Optional[int] = None,
        status: Optional[str] = None,
        amount: Optional[Decimal] = None,
        item_count: Optional[int] = None,
        observation: Optional[str] = None,
        processed_on: Optional[date] = None,
    ) -> SyncAuditEntry:
        """Append an audit row.

        Args:
            region_code: Region the row belongs to.
            processor: Name of the provider that produced the data.
            kind: Settlement or chargeback.
            reference_id: Settlement or chargeback number.
            sequence: Settlement sequence.
            status: Provider status at processing time.
            amount: Settlement or chargeback amount.
            item_count: Number of line items.
            observation: Free-text summary.
            processed_on: Processing date. Defaults to today.

        Returns:
            Created SyncAuditEntry instance.
        """
        entry = SyncAuditEntry(
            kind=kind.value,
            region_code=region_code,
            reference_id=reference_id,
            sequence=sequence,
            status=status,
            amount=amount,
            item_count=item_count,
            processor=processor,
            observation=observation,
            processed_on=processed_on or date.today(),
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_for_region(
        self,
        region_code: str,
        kind: Optional[AuditKind] = None,
    ) -> List[SyncAuditEntry]:
        query = select(SyncAuditEntry).where(SyncAuditEntry.region_code == region_code)
        if kind is not None:
            query = query.where(SyncAuditEntry.kind == kind.value)
        result = await self.session.execute(query.order_by(SyncAuditEntry.created_at))
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self.session.execute(select(func.count(SyncAuditEntry.id)))
        return result.scalar_one()
