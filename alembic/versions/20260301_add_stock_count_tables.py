"""Add stock count tables

Revision ID: 20260301_stock_count
Revises:
Create Date: 2026-03-01

Creates the stock count tables and the approval workflow tables they read.
The organization tables (companies, regions, areas, sites, profiles) are
owned by the hosted database; only the mirrored manager columns are added
when missing.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '20260301_stock_count'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Mirrored manager columns on the hosted organization tables
    op.execute("ALTER TABLE regions ADD COLUMN IF NOT EXISTS regional_manager_id UUID REFERENCES profiles(id) ON DELETE SET NULL")
    op.execute("ALTER TABLE regions ADD COLUMN IF NOT EXISTS manager_id UUID REFERENCES profiles(id) ON DELETE SET NULL")
    op.execute("ALTER TABLE areas ADD COLUMN IF NOT EXISTS area_manager_id UUID REFERENCES profiles(id) ON DELETE SET NULL")
    op.execute("ALTER TABLE areas ADD COLUMN IF NOT EXISTS manager_id UUID REFERENCES profiles(id) ON DELETE SET NULL")
    op.execute("ALTER TABLE sites ADD COLUMN IF NOT EXISTS region_id UUID REFERENCES regions(id) ON DELETE SET NULL")

    # Approval Workflows
    op.create_table(
        'approval_workflows',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('company_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('type', sa.String(30), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('is_active', sa.Boolean, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_workflow_company_type', 'approval_workflows', ['company_id', 'type', 'is_active'])

    # Approval Steps
    op.create_table(
        'approval_steps',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('workflow_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('approval_workflows.id', ondelete='CASCADE'), nullable=False),
        sa.Column('step_order', sa.Integer, nullable=False),
        sa.Column('step_name', sa.String(100)),
        sa.Column('approver_role', sa.String(50), nullable=False),
        sa.Column('is_required', sa.Boolean, server_default=sa.true()),
        sa.UniqueConstraint('workflow_id', 'step_order', name='uq_approval_step_order'),
    )

    # Stock Counts
    op.create_table(
        'stock_counts',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('company_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('site_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('sites.id')),
        sa.Column('name', sa.String(200)),
        sa.Column('count_date', sa.Date, nullable=False),
        sa.Column('frequency', sa.String(20), nullable=False, server_default='monthly'),
        sa.Column('status', sa.String(30), nullable=False, server_default='draft'),
        sa.Column('libraries_included', postgresql.JSONB),
        sa.Column('total_items', sa.Integer, server_default='0'),
        sa.Column('items_counted', sa.Integer, server_default='0'),
        sa.Column('variance_count', sa.Integer, server_default='0'),
        sa.Column('total_variance_value', sa.Numeric(15, 2), server_default='0'),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
        sa.Column('completed_by', postgresql.UUID(as_uuid=True)),
        sa.Column('ready_for_approval_at', sa.DateTime(timezone=True)),
        sa.Column('ready_for_approval_by', postgresql.UUID(as_uuid=True)),
        sa.Column('approver_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('profiles.id', ondelete='SET NULL')),
        sa.Column('approved_at', sa.DateTime(timezone=True)),
        sa.Column('approved_by', postgresql.UUID(as_uuid=True)),
        sa.Column('rejected_at', sa.DateTime(timezone=True)),
        sa.Column('rejected_by', postgresql.UUID(as_uuid=True)),
        sa.Column('rejection_reason', sa.Text),
        sa.Column('notes', sa.Text),
        sa.Column('created_by', postgresql.UUID(as_uuid=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_sc_company_site', 'stock_counts', ['company_id', 'site_id'])
    op.create_index('idx_sc_status', 'stock_counts', ['company_id', 'status'])

    # Stock Count Items
    op.create_table(
        'stock_count_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('stock_count_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('stock_counts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('library_type', sa.String(50)),
        sa.Column('item_name', sa.String(255), nullable=False),
        sa.Column('unit_of_measurement', sa.String(30)),
        sa.Column('theoretical_closing', sa.Numeric(15, 3)),
        sa.Column('unit_cost', sa.Numeric(15, 4)),
        sa.Column('counted_quantity', sa.Numeric(15, 3)),
        sa.Column('variance_quantity', sa.Numeric(15, 3)),
        sa.Column('variance_percentage', sa.Numeric(12, 4)),
        sa.Column('variance_value', sa.Numeric(15, 2)),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('counted_at', sa.DateTime(timezone=True)),
        sa.Column('is_counted', sa.Boolean, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_sci_count', 'stock_count_items', ['stock_count_id'])
    op.create_index('idx_sci_count_library', 'stock_count_items', ['stock_count_id', 'library_type'])


def downgrade() -> None:
    op.drop_index('idx_sci_count_library', table_name='stock_count_items')
    op.drop_index('idx_sci_count', table_name='stock_count_items')
    op.drop_table('stock_count_items')

    op.drop_index('idx_sc_status', table_name='stock_counts')
    op.drop_index('idx_sc_company_site', table_name='stock_counts')
    op.drop_table('stock_counts')

    op.drop_table('approval_steps')
    op.drop_index('ix_workflow_company_type', table_name='approval_workflows')
    op.drop_table('approval_workflows')
