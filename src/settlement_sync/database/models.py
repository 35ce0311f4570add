"""SQLAlchemy models for the per-region collection ledger."""

import uuid
import enum
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Dict, Any

from sqlalchemy import (
    String,
    Integer,
    Date,
    DateTime,
    Numeric,
    Text,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class AuditKind(str, enum.Enum):
    """What an audit row records."""
    SETTLEMENT = "settlement"
    CHARGEBACK = "chargeback"


def _iso(value: Optional[Any]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _str(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


class CollectionRecord(Base):
    """A locally known payment obligation, matched to provider transactions.

    Rows are created by the collection side of the system; synchronization
    only updates the settlement and chargeback columns in place.
    """
    __tablename__ = "collection_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    external_transaction_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)
    amount_paid: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Settlement data
    settlement_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    settlement_sequence: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    settlement_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    settlement_period_from: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    settlement_period_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    deposit_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    payment_method_code: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    settlement_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    deposited_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    commission: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    tax: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)

    # Chargeback data
    chargeback_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    chargeback_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    chargeback_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    chargeback_due_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_collection_records_settlement_id", "settlement_id"),
        Index("ix_collection_records_chargeback_id", "chargeback_id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert the record to dictionary representation."""
        return {
            "id": self.id,
            "external_transaction_id": self.external_transaction_id,
            "amount_paid": _str(self.amount_paid),
            "paid_at": _iso(self.paid_at),
            "settlement_id": self.settlement_id,
            "settlement_sequence": self.settlement_sequence,
            "settlement_status": self.settlement_status,
            "settlement_period_from": _iso(self.settlement_period_from),
            "settlement_period_to": _iso(self.settlement_period_to),
            "deposit_date": _iso(self.deposit_date),
            "payment_method_code": self.payment_method_code,
            "settlement_amount": _str(self.settlement_amount),
            "deposited_amount": _str(self.deposited_amount),
            "commission": _str(self.commission),
            "tax": _str(self.tax),
            "chargeback_id": self.chargeback_id,
            "chargeback_status": self.chargeback_status,
            "chargeback_amount": _str(self.chargeback_amount),
            "chargeback_due_date": _iso(self.chargeback_due_date),
            "notes": self.notes,
            "created_at": _iso(self.created_at),
        }


class SyncAuditEntry(Base):
    """Append-only audit row, one per reconciled settlement or chargeback."""
    __tablename__ = "settlement_audit"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default=AuditKind.SETTLEMENT.value)
    region_code: Mapped[str] = mapped_column(String(20), nullable=False)
    reference_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    sequence: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    item_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    processor: Mapped[str] = mapped_column(String(50), nullable=False)
    observation: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_on: Mapped[date] = mapped_column(Date, nullable=False, default=date.today)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_settlement_audit_region_code", "region_code"),
        Index("ix_settlement_audit_reference", "kind", "reference_id"),
        Index("ix_settlement_audit_created_at", "created_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert the audit entry to dictionary representation."""
        return {
            "id": self.id,
            "kind": self.kind,
            "region_code": self.region_code,
            "reference_id": self.reference_id,
            "sequence": self.sequence,
            "status": self.status,
            "amount": _str(self.amount),
            "item_count": self.item_count,
            "processor": self.processor,
            "observation": self.observation,
            "processed_on": _iso(self.processed_on),
            "created_at": _iso(self.created_at),
        }
