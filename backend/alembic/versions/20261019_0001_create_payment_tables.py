"""create_payment_tables

Revision ID: 4c1f2a9e7b30
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4c1f2a9e7b30'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


payment_status = sa.Enum('PENDING', 'PAID', 'EXPIRED', name='paymentstatus')
transaction_status = sa.Enum('PENDING', 'CONFIRMED', 'FAILED', name='transactionstatus')


def upgrade() -> None:
    """Create merchants, payments, transactions and price_history tables."""
    op.create_table(
        'merchants',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('name', sa.String(120), nullable=False),
        sa.Column('wallet_address', sa.String(66), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )

    op.create_table(
        'payments',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('session_id', sa.String(64), nullable=False, unique=True, index=True),
        sa.Column('merchant_id', sa.String(36), sa.ForeignKey('merchants.id'), nullable=False, index=True),
        sa.Column('merchant_address', sa.String(66), nullable=False),
        sa.Column('amount', sa.Numeric(20, 2), nullable=False),
        sa.Column('currency', sa.String(10), nullable=False, server_default='ARS'),
        sa.Column('concept', sa.String(255), nullable=False),
        sa.Column('order_id', sa.String(64), nullable=True),
        sa.Column('qr_payload', sa.Text, nullable=False),
        sa.Column('qr_version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('status', payment_status, nullable=False, server_default='PENDING', index=True),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('expires_at', sa.TIMESTAMP, nullable=False, index=True),
        sa.Column('created_at', sa.TIMESTAMP, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP'), index=True),
        sa.Column('updated_at', sa.TIMESTAMP, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('merchant_id', 'session_id', name='uq_payments_merchant_session'),
    )

    op.create_table(
        'transactions',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('payment_id', sa.String(36), sa.ForeignKey('payments.id'), nullable=False, index=True),
        sa.Column('source_amount', sa.Numeric(20, 2), nullable=False),
        sa.Column('source_currency', sa.String(10), nullable=False, server_default='ARS'),
        sa.Column('exchange_rate', sa.Numeric(30, 12), nullable=False),
        sa.Column('quote_source', sa.String(10), nullable=False),
        sa.Column('target_amount', sa.Numeric(30, 12), nullable=False),
        sa.Column('target_currency', sa.String(10), nullable=False, server_default='USDT'),
        sa.Column('status', transaction_status, nullable=False, server_default='PENDING', index=True),
        sa.Column('settlement_ref', sa.String(130), nullable=True, index=True),
        sa.Column('confirmation_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('required_confirmations', sa.Integer, nullable=False, server_default='1'),
        sa.Column('wallet_address', sa.String(66), nullable=False),
        sa.Column('failure_reason', sa.Text, nullable=True),
        sa.Column('created_at', sa.TIMESTAMP, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP'), index=True),
        sa.Column('updated_at', sa.TIMESTAMP, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )

    # Storage backstop for single confirmation and settlement replay
    op.create_index(
        'uq_transactions_confirmed_payment',
        'transactions',
        ['payment_id'],
        unique=True,
        sqlite_where=sa.text("status = 'CONFIRMED'"),
        postgresql_where=sa.text("status = 'CONFIRMED'"),
    )
    op.create_index(
        'uq_transactions_confirmed_settlement_ref',
        'transactions',
        ['settlement_ref'],
        unique=True,
        sqlite_where=sa.text("status = 'CONFIRMED'"),
        postgresql_where=sa.text("status = 'CONFIRMED'"),
    )

    op.create_table(
        'price_history',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('base_currency', sa.String(10), nullable=False, index=True),
        sa.Column('quote_currency', sa.String(10), nullable=False, index=True),
        sa.Column('rate', sa.Numeric(30, 12), nullable=False),
        sa.Column('source', sa.String(32), nullable=False),
        sa.Column('oracle_address', sa.String(66), nullable=True),
        sa.Column('obtained_at', sa.TIMESTAMP, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP'), index=True),
    )


def downgrade() -> None:
    """Drop payment tables."""
    op.drop_table('price_history')
    op.drop_index('uq_transactions_confirmed_settlement_ref', table_name='transactions')
    op.drop_index('uq_transactions_confirmed_payment', table_name='transactions')
    op.drop_table('transactions')
    op.drop_table('payments')
    op.drop_table('merchants')
    transaction_status.drop(op.get_bind(), checkfirst=True)
    payment_status.drop(op.get_bind(), checkfirst=True)
