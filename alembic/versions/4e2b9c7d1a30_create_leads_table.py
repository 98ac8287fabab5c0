"""create leads table

Revision ID: 4e2b9c7d1a30
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4e2b9c7d1a30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('leads',
        sa.Column('session_id', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('phone', sa.Text(), nullable=True),
        sa.Column('budget', sa.Integer(), nullable=True),
        sa.Column('heat_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('start_time', sa.DateTime(), nullable=True),
        sa.Column('area', sa.Text(), nullable=True),
        sa.Column('location', sa.Text(), nullable=True),
        sa.Column('compound', sa.Text(), nullable=True),
        sa.Column('unit_type', sa.Text(), nullable=True),
        sa.Column('call_requested', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('best_call_time', sa.Text(), nullable=True),
        sa.Column('tonality', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('session_id'),
    )
    op.create_index('ix_leads_heat_score', 'leads', ['heat_score'])
    op.create_index('ix_leads_start_time', 'leads', ['start_time'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_leads_start_time', table_name='leads')
    op.drop_index('ix_leads_heat_score', table_name='leads')
    op.drop_table('leads')
