"""Create delivery dispatch and earnings ledger tables

The orders table belongs to checkout and must already exist;
delivery_assignments.order_id references it.

Revision ID: 001_delivery_ledger
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001_delivery_ledger'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade():
    """Create delivery tables"""

    # ====================
    # ZONES
    # ====================
    op.create_table(
        'delivery_zones',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'name', name='uq_delivery_zone_name'),
    )
    op.create_index('ix_delivery_zones_tenant_id', 'delivery_zones', ['tenant_id'])

    op.create_table(
        'delivery_zone_pincodes',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('zone_id', sa.Uuid(), sa.ForeignKey('delivery_zones.id', ondelete='CASCADE'), nullable=False),
        sa.Column('pincode', sa.String(10), nullable=False),
        sa.UniqueConstraint('zone_id', 'pincode', name='uq_delivery_zone_pincode'),
    )
    op.create_index('ix_delivery_zone_pincodes_zone_id', 'delivery_zone_pincodes', ['zone_id'])
    op.create_index('ix_delivery_zone_pincodes_pincode', 'delivery_zone_pincodes', ['pincode'])

    # ====================
    # AGENTS
    # ====================
    op.create_table(
        'delivery_agents',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('full_name', sa.String(200), nullable=False),
        sa.Column('mobile_number', sa.String(20), nullable=False),
        sa.Column('payment_type', sa.String(30), nullable=False,
                  comment='monthly_salary, fixed_per_order, percentage_per_order'),
        sa.Column('monthly_salary', sa.Numeric(12, 2), nullable=True),
        sa.Column('per_order_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('percentage_value', sa.Numeric(5, 2), nullable=True),
        sa.Column('wallet_balance', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_earned', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_paid', sa.Numeric(12, 2), nullable=False),
        sa.Column('account_holder_name', sa.String(200), nullable=True),
        sa.Column('account_number', sa.String(30), nullable=True),
        sa.Column('ifsc_code', sa.String(11), nullable=True),
        sa.Column('upi_id', sa.String(100), nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'mobile_number', name='uq_delivery_agent_mobile'),
        sa.CheckConstraint('wallet_balance >= 0', name='ck_delivery_agents_wallet_non_negative'),
    )
    op.create_index('ix_delivery_agents_tenant_id', 'delivery_agents', ['tenant_id'])

    op.create_table(
        'delivery_agent_zones',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('agent_id', sa.Uuid(), sa.ForeignKey('delivery_agents.id', ondelete='CASCADE'), nullable=False),
        sa.Column('zone_id', sa.Uuid(), sa.ForeignKey('delivery_zones.id', ondelete='CASCADE'), nullable=False),
        sa.UniqueConstraint('agent_id', 'zone_id', name='uq_delivery_agent_zone'),
    )
    op.create_index('ix_delivery_agent_zones_agent_id', 'delivery_agent_zones', ['agent_id'])
    op.create_index('ix_delivery_agent_zones_zone_id', 'delivery_agent_zones', ['zone_id'])

    # ====================
    # ASSIGNMENTS
    # ====================
    op.create_table(
        'delivery_assignments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('orders.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('zone_id', sa.Uuid(), sa.ForeignKey('delivery_zones.id', ondelete='SET NULL'), nullable=True),
        sa.Column('agent_id', sa.Uuid(), sa.ForeignKey('delivery_agents.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('picked_up_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('out_for_delivery_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('returned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cod_collected', sa.Numeric(12, 2), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('order_id', name='uq_delivery_assignment_order'),
    )
    op.create_index('ix_delivery_assignments_tenant_id', 'delivery_assignments', ['tenant_id'])
    op.create_index('ix_delivery_assignments_tenant_status', 'delivery_assignments', ['tenant_id', 'status'])
    op.create_index('ix_delivery_assignments_agent', 'delivery_assignments', ['agent_id', 'status'])

    op.create_table(
        'delivery_status_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('assignment_id', sa.Uuid(), sa.ForeignKey('delivery_assignments.id', ondelete='RESTRICT'),
                  nullable=False),
        sa.Column('old_status', sa.String(30), nullable=True),
        sa.Column('new_status', sa.String(30), nullable=False),
        sa.Column('actor_type', sa.String(20), nullable=False, comment='agent, admin, system'),
        sa.Column('actor_id', sa.Uuid(), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_delivery_status_logs_tenant_id', 'delivery_status_logs', ['tenant_id'])
    op.create_index('ix_delivery_status_logs_assignment', 'delivery_status_logs', ['assignment_id', 'created_at'])

    # ====================
    # LEDGER
    # ====================
    op.create_table(
        'delivery_earnings',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('agent_id', sa.Uuid(), sa.ForeignKey('delivery_agents.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('assignment_id', sa.Uuid(), sa.ForeignKey('delivery_assignments.id', ondelete='RESTRICT'),
                  nullable=True),
        sa.Column('order_id', sa.Uuid(), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('earning_type', sa.String(30), nullable=False),
        sa.Column('description', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('assignment_id', name='uq_delivery_earning_assignment'),
        sa.CheckConstraint(
            "amount > 0 OR (amount = 0 AND earning_type = 'monthly_salary')",
            name='ck_delivery_earnings_amount_positive',
        ),
    )
    op.create_index('ix_delivery_earnings_tenant_id', 'delivery_earnings', ['tenant_id'])
    op.create_index('ix_delivery_earnings_agent_created', 'delivery_earnings', ['agent_id', 'created_at'])

    op.create_table(
        'delivery_payout_requests',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('agent_id', sa.Uuid(), sa.ForeignKey('delivery_agents.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('agent_notes', sa.Text, nullable=True),
        sa.Column('admin_notes', sa.Text, nullable=True),
        sa.Column('rejection_reason', sa.Text, nullable=True),
        sa.Column('requested_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processed_by', sa.Uuid(), nullable=True),
        sa.CheckConstraint('amount > 0', name='ck_delivery_payout_requests_amount_positive'),
    )
    op.create_index('ix_delivery_payout_requests_tenant_id', 'delivery_payout_requests', ['tenant_id'])
    op.create_index('ix_delivery_payout_requests_agent_status', 'delivery_payout_requests', ['agent_id', 'status'])

    op.create_table(
        'delivery_payouts',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('agent_id', sa.Uuid(), sa.ForeignKey('delivery_agents.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('payout_request_id', sa.Uuid(),
                  sa.ForeignKey('delivery_payout_requests.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('transaction_reference', sa.String(100), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('paid_by', sa.Uuid(), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('payout_request_id', name='uq_delivery_payout_request'),
        sa.CheckConstraint('amount > 0', name='ck_delivery_payouts_amount_positive'),
    )
    op.create_index('ix_delivery_payouts_tenant_id', 'delivery_payouts', ['tenant_id'])
    op.create_index('ix_delivery_payouts_agent_paid', 'delivery_payouts', ['agent_id', 'paid_at'])


def downgrade():
    """Drop delivery tables"""
    op.drop_table('delivery_payouts')
    op.drop_table('delivery_payout_requests')
    op.drop_table('delivery_earnings')
    op.drop_table('delivery_status_logs')
    op.drop_table('delivery_assignments')
    op.drop_table('delivery_agent_zones')
    op.drop_table('delivery_agents')
    op.drop_table('delivery_zone_pincodes')
    op.drop_table('delivery_zones')
