"""Initial migration - create sync_states and synced_payments tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

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
    op.create_table(
        'sync_states',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('provider', sa.String(50), nullable=False),
        sa.Column('account_id', sa.String(255), nullable=False, server_default='default'),
        sa.Column('state_json', sa.Text(), nullable=False, server_default='{}'),
        sa.Column('phase', sa.String(20), nullable=False, server_default='scanning'),
        sa.Column('depth', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('latest_id', sa.String(255), nullable=True),
        sa.Column('steps_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('records_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('last_synced_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('provider', 'account_id', name='uq_sync_states_lineage'),
    )

    op.create_table(
        'synced_payments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('idempotency_key', sa.String(64), nullable=False, unique=True),
        sa.Column('provider', sa.String(50), nullable=False),
        sa.Column('account_id', sa.String(255), nullable=False),
        sa.Column('reference', sa.String(255), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('asset', sa.String(16), nullable=True),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('source_account_reference', sa.String(255), nullable=True),
        sa.Column('destination_account_reference', sa.String(255), nullable=True),
        sa.Column('metadata_json', sa.Text(), nullable=True),
        sa.Column('raw_json', sa.Text(), nullable=True),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('psp_created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_index('ix_synced_payments_lineage', 'synced_payments', ['provider', 'account_id', 'sequence'])
    op.create_index('ix_synced_payments_reference', 'synced_payments', ['reference'])


def downgrade() -> None:
    op.drop_index('ix_synced_payments_reference', table_name='synced_payments')
    op.drop_index('ix_synced_payments_lineage', table_name='synced_payments')
    op.drop_table('synced_payments')
    op.drop_table('sync_states')
