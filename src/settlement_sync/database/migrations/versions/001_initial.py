"""Initial migration - create collection_records and settlement_audit tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Ledger records, updated in place by synchronization
    op.create_table(
        'collection_records',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('external_transaction_id', sa.String(64), nullable=True, unique=True),
        sa.Column('amount_paid', sa.Numeric(15, 2), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('settlement_id', sa.Integer(), nullable=True),
        sa.Column('settlement_sequence', sa.Integer(), nullable=True),
        sa.Column('settlement_status', sa.String(30), nullable=True),
        sa.Column('settlement_period_from', sa.Date(), nullable=True),
        sa.Column('settlement_period_to', sa.Date(), nullable=True),
        sa.Column('deposit_date', sa.Date(), nullable=True),
        sa.Column('payment_method_code', sa.Integer(), nullable=True),
        sa.Column('settlement_amount', sa.Numeric(15, 2), nullable=True),
        sa.Column('deposited_amount', sa.Numeric(15, 2), nullable=True),
        sa.Column('commission', sa.Numeric(15, 2), nullable=True),
        sa.Column('tax', sa.Numeric(15, 2), nullable=True),
        sa.Column('chargeback_id', sa.Integer(), nullable=True),
        sa.Column('chargeback_status', sa.String(30), nullable=True),
        sa.Column('chargeback_amount', sa.Numeric(15, 2), nullable=True),
        sa.Column('chargeback_due_date', sa.DateTime(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_index('ix_collection_records_settlement_id', 'collection_records', ['settlement_id'])
    op.create_index('ix_collection_records_chargeback_id', 'collection_records', ['chargeback_id'])

    # Append-only audit trail
    op.create_table(
        'settlement_audit',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('kind', sa.String(20), nullable=False, server_default='settlement'),
        sa.Column('region_code', sa.String(20), nullable=False),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('sequence', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(30), nullable=True),
        sa.Column('amount', sa.Numeric(15, 2), nullable=True),
        sa.Column('item_count', sa.Integer(), nullable=True),
        sa.Column('processor', sa.String(50), nullable=False),
        sa.Column('observation', sa.Text(), nullable=True),
        sa.Column('processed_on', sa.Date(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_index('ix_settlement_audit_region_code', 'settlement_audit', ['region_code'])
    op.create_index('ix_settlement_audit_reference', 'settlement_audit', ['kind', 'reference_id'])
    op.create_index('ix_settlement_audit_created_at', 'settlement_audit', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_settlement_audit_created_at', table_name='settlement_audit')
    op.drop_index('ix_settlement_audit_reference', table_name='settlement_audit')
    op.drop_index('ix_settlement_audit_region_code', table_name='settlement_audit')
    op.drop_table('settlement_audit')

    op.drop_index('ix_collection_records_chargeback_id', table_name='collection_records')
    op.drop_index('ix_collection_records_settlement_id', table_name='collection_records')
    op.drop_table('collection_records')
