"""create agent.threads table

Revision ID: b7e2f91c4d10
Revises:
Create Date: 2026-01-14

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'b7e2f91c4d10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.execute("CREATE SCHEMA IF NOT EXISTS agent")

    op.create_table(
        'threads',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('title', sa.Text(), nullable=True),
        sa.Column('source', sa.String(length=16), nullable=False),
        sa.Column('source_id', sa.Text(), nullable=True),
        sa.Column('messages', postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('context', postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('wake_job_id', sa.Text(), nullable=True),
        sa.Column('wake_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.PrimaryKeyConstraint('id'),
        schema='agent',
    )
    op.create_index('idx_threads_status', 'threads', ['status'], schema='agent')
    op.create_index('idx_threads_source', 'threads', ['source', 'source_id'], schema='agent')
    op.create_index('idx_threads_updated', 'threads', ['updated_at'], schema='agent')

    # At most one open thread per alert fingerprint
    op.create_index(
        'uq_threads_open_alert',
        'threads',
        ['source', 'source_id'],
        unique=True,
        schema='agent',
        postgresql_where=sa.text("source = 'alert' AND status IN ('active', 'sleeping')"),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('uq_threads_open_alert', table_name='threads', schema='agent')
    op.drop_index('idx_threads_updated', table_name='threads', schema='agent')
    op.drop_index('idx_threads_source', table_name='threads', schema='agent')
    op.drop_index('idx_threads_status', table_name='threads', schema='agent')
    op.drop_table('threads', schema='agent')
