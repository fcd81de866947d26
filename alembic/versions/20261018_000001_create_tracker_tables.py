"""create tracker tables

Revision ID: 20261018_000001
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261018_000001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create chain cursor, balance and points tables."""
    op.create_table(
        'chain_status',
        sa.Column('chain_name', sa.String(64), nullable=False),
        sa.Column('last_processed_block', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('chain_name'),
    )

    op.create_table(
        'balance_changes',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('chain_name', sa.String(64), nullable=False),
        sa.Column('user_address', sa.String(42), nullable=False),
        sa.Column('event_type', sa.String(20), nullable=False),
        sa.Column('amount', sa.String(79), nullable=False),
        sa.Column('balance_after', sa.String(79), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('log_index', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('event_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('tx_hash', sa.String(66), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'chain_name', 'tx_hash', 'log_index', 'event_type',
            name='uq_balance_changes_event',
        ),
    )
    op.create_index(
        'ix_balance_changes_user_time', 'balance_changes',
        ['chain_name', 'user_address', 'event_time'],
    )
    op.create_index(
        'ix_balance_changes_user_order', 'balance_changes',
        ['chain_name', 'user_address', 'block_number', 'log_index'],
    )

    op.create_table(
        'user_balances',
        sa.Column('chain_name', sa.String(64), nullable=False),
        sa.Column('user_address', sa.String(42), nullable=False),
        sa.Column('current_balance', sa.String(79), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('chain_name', 'user_address'),
    )

    op.create_table(
        'user_points',
        sa.Column('chain_name', sa.String(64), nullable=False),
        sa.Column('user_address', sa.String(42), nullable=False),
        sa.Column('total_points', sa.Double(), nullable=False, server_default='0'),
        sa.Column('last_calculated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('chain_name', 'user_address'),
    )

    op.create_table(
        'points_calculation_history',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('chain_name', sa.String(64), nullable=False),
        sa.Column('user_address', sa.String(42), nullable=False),
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('points_added', sa.Double(), nullable=False),
        sa.Column('total_points', sa.Double(), nullable=False),
        sa.Column('calculated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_points_history_user_period', 'points_calculation_history',
        ['chain_name', 'user_address', 'period_start', 'period_end'],
    )


def downgrade() -> None:
    """Drop tracker tables."""
    op.drop_index('ix_points_history_user_period', table_name='points_calculation_history')
    op.drop_table('points_calculation_history')
    op.drop_table('user_points')
    op.drop_table('user_balances')
    op.drop_index('ix_balance_changes_user_order', table_name='balance_changes')
    op.drop_index('ix_balance_changes_user_time', table_name='balance_changes')
    op.drop_table('balance_changes')
    op.drop_table('chain_status')
