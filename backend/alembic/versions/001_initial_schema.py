"""Initial Schema - Minga-Greens Produktionsplanung

Revision ID: 001
Revises:
Create Date: 2026-01-23

Erstellt Katalog, Bestellungen, Produktionspläne, Trays, Ernten und die
Event-Outbox.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ORDER_STATUS = sa.Enum(
    'ENTWURF', 'BESTAETIGT', 'IN_PRODUKTION', 'ERNTEREIF', 'GEERNTET', 'GELIEFERT', 'STORNIERT',
    name='orderstatus',
)
ORDER_LINE_UNIT = sa.Enum('G', 'TRAY', name='orderlineunit')
PLAN_STATUS = sa.Enum('DRAFT', 'ACTIVE', 'COMPLETED', 'CANCELLED', name='planstatus')
CROP_STAGE = sa.Enum(
    'SOAKING', 'GERMINATION', 'BLACKOUT', 'LIGHT', 'HARVESTED', 'CANCELLED',
    name='cropstage',
)
STAGE_ACTION = sa.Enum(
    'START', 'ADVANCE', 'REVERT', 'CANCEL', 'SHIFT', 'PARTIAL_HARVEST', 'HARVEST', 'HARVEST_CORRECTION',
    name='stageaction',
)
DOMAIN_EVENT_TYPE = sa.Enum(
    'CROP_PLANTED', 'ALL_CROPS_READY', 'ORDER_HARVESTED', 'PLAN_REVIEW_REQUIRED', 'ORDER_INFEASIBLE',
    name='domaineventtype',
)


def _id_column() -> sa.Column:
    return sa.Column(
        'id', postgresql.UUID(as_uuid=True), primary_key=True,
        server_default=sa.text('gen_random_uuid()'),
    )


def upgrade() -> None:
    # Seeds (Saatgut-Sorten)
    op.create_table(
        'seeds',
        _id_column(),
        sa.Column('name', sa.String(100), nullable=False, index=True),
        sa.Column('sorte', sa.String(100)),
        sa.Column('lieferant', sa.String(200)),
        sa.Column('notizen', sa.Text),
        sa.Column('aktiv', sa.Boolean, server_default='true'),
        sa.Column('created_at', sa.DateTime, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, server_default=sa.text('NOW()')),
    )

    # Grow Plans (Wachstumsprofile)
    op.create_table(
        'grow_plans',
        _id_column(),
        sa.Column('seed_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('seeds.id'), nullable=False, index=True),
        sa.Column('code', sa.String(50), nullable=False, unique=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('seed_soak_hours', sa.Integer, server_default='0'),
        sa.Column('germination_days', sa.Integer, nullable=False),
        sa.Column('blackout_days', sa.Integer, server_default='0'),
        sa.Column('light_days', sa.Integer, nullable=False),
        sa.Column('days_to_maturity', sa.Integer),
        sa.Column('buffer_percentage', sa.Numeric(5, 2), server_default='10'),
        sa.Column('yield_grams_per_unit', sa.Numeric(10, 2), nullable=False),
        sa.Column('seed_density_grams_per_tray', sa.Numeric(10, 2)),
        sa.Column('growing_notes', sa.Text),
        sa.Column('is_active', sa.Boolean, server_default='true'),
        sa.Column('created_at', sa.DateTime, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, server_default=sa.text('NOW()')),
    )

    # Product Mixes
    op.create_table(
        'product_mixes',
        _id_column(),
        sa.Column('name', sa.String(100), nullable=False, unique=True),
        sa.Column('description', sa.Text),
        sa.Column('is_active', sa.Boolean, server_default='true'),
        sa.Column('created_at', sa.DateTime, server_default=sa.text('NOW()')),
    )
    op.create_table(
        'mix_components',
        _id_column(),
        sa.Column('mix_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('product_mixes.id', ondelete='CASCADE'), nullable=False),
        sa.Column('seed_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('seeds.id'), nullable=False),
        sa.Column('percentage', sa.Numeric(5, 2), nullable=False),
    )

    # Orders
    op.create_table(
        'orders',
        _id_column(),
        sa.Column('order_number', sa.String(20), nullable=False, unique=True, index=True),
        sa.Column('customer_name', sa.String(200), nullable=False),
        sa.Column('order_date', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('delivery_date', sa.Date, nullable=False, index=True),
        sa.Column('status', ORDER_STATUS, server_default='ENTWURF', index=True),
        sa.Column('notes', sa.Text),
        sa.Column('created_at', sa.DateTime, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, server_default=sa.text('NOW()')),
    )
    op.create_table(
        'order_lines',
        _id_column(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer, nullable=False),
        sa.Column('seed_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('seeds.id', ondelete='SET NULL')),
        sa.Column('mix_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('product_mixes.id', ondelete='SET NULL')),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False),
        sa.Column('unit', ORDER_LINE_UNIT, nullable=False, server_default='G'),
        sa.Column('harvest_date', sa.Date),
        sa.Column('created_at', sa.DateTime, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, server_default=sa.text('NOW()')),
    )
    op.create_table(
        'order_audit_logs',
        _id_column(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('field_name', sa.String(100)),
        sa.Column('old_values', postgresql.JSONB),
        sa.Column('new_values', postgresql.JSONB),
        sa.Column('user_name', sa.String(200)),
        sa.Column('created_at', sa.DateTime, server_default=sa.text('NOW()')),
        sa.Column('reason', sa.Text),
    )
    op.create_index('ix_order_audit_logs_order_id', 'order_audit_logs', ['order_id'])
    op.create_index('ix_order_audit_logs_created_at', 'order_audit_logs', ['created_at'])

    # Production Plans
    op.create_table(
        'production_plans',
        _id_column(),
        sa.Column('seed_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('seeds.id'), nullable=False, index=True),
        sa.Column('grow_plan_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('grow_plans.id'), nullable=False),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='SET NULL')),
        sa.Column('harvest_date', sa.Date, nullable=False, index=True),
        sa.Column('plant_by_date', sa.Date, nullable=False),
        sa.Column('seed_soak_date', sa.Date),
        sa.Column('trays_needed', sa.Integer, nullable=False),
        sa.Column('grams_needed', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', PLAN_STATUS, nullable=False, server_default='DRAFT', index=True),
        sa.Column('approved_by', sa.String(200)),
        sa.Column('approved_at', sa.DateTime),
        sa.Column('completed_at', sa.DateTime),
        sa.Column('cancelled_at', sa.DateTime),
        sa.Column('cancel_reason', sa.Text),
        sa.Column('calculation_details', postgresql.JSONB),
        sa.Column('created_at', sa.DateTime, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, server_default=sa.text('NOW()')),
    )
    # Höchstens ein offener Plan pro Sorte und Erntedatum
    op.create_index(
        'uq_production_plans_open_seed_harvest',
        'production_plans',
        ['seed_id', 'harvest_date'],
        unique=True,
        postgresql_where=sa.text("status IN ('DRAFT', 'ACTIVE')"),
    )
    op.create_table(
        'plan_contributions',
        _id_column(),
        sa.Column('plan_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('production_plans.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('trays', sa.Integer, nullable=False),
        sa.Column('grams', sa.Numeric(12, 2), nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true'),
        sa.Column('removed_at', sa.DateTime),
        sa.Column('removal_reason', sa.Text),
        sa.Column('created_at', sa.DateTime, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, server_default=sa.text('NOW()')),
    )

    # Grow Batches und Trays
    op.create_table(
        'grow_batches',
        _id_column(),
        sa.Column('grow_plan_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('grow_plans.id'), nullable=False),
        sa.Column('production_plan_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('production_plans.id', ondelete='SET NULL')),
        sa.Column('regal_position', sa.String(50)),
        sa.Column('notizen', sa.Text),
        sa.Column('created_at', sa.DateTime, server_default=sa.text('NOW()')),
    )
    op.create_table(
        'trays',
        _id_column(),
        sa.Column('tray_number', sa.String(50), nullable=False, index=True),
        sa.Column('grow_plan_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('grow_plans.id'), nullable=False),
        sa.Column('batch_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('grow_batches.id', ondelete='SET NULL'), index=True),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='SET NULL'), index=True),
        sa.Column('production_plan_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('production_plans.id', ondelete='SET NULL'), index=True),
        sa.Column('current_stage', CROP_STAGE, nullable=False, index=True),
        sa.Column('soaking_at', sa.DateTime),
        sa.Column('germination_at', sa.DateTime),
        sa.Column('blackout_at', sa.DateTime),
        sa.Column('light_at', sa.DateTime),
        sa.Column('harvested_at', sa.DateTime),
        sa.Column('cancelled_at', sa.DateTime),
        sa.Column('ready_flagged_at', sa.DateTime),
        sa.Column('watering_suspended_at', sa.DateTime),
        sa.Column('notes', sa.Text),
        sa.Column('created_at', sa.DateTime, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, server_default=sa.text('NOW()')),
    )
    # Tray-Nummern sind unter lebenden Trays eindeutig
    op.create_index(
        'uq_trays_live_tray_number',
        'trays',
        ['tray_number'],
        unique=True,
        postgresql_where=sa.text("current_stage NOT IN ('HARVESTED', 'CANCELLED')"),
    )
    op.create_table(
        'stage_transition_logs',
        _id_column(),
        sa.Column('tray_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('trays.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('action', STAGE_ACTION, nullable=False),
        sa.Column('from_stage', CROP_STAGE),
        sa.Column('to_stage', CROP_STAGE),
        sa.Column('occurred_at', sa.DateTime, nullable=False),
        sa.Column('user_name', sa.String(200)),
        sa.Column('reason', sa.Text),
        sa.Column('created_at', sa.DateTime, server_default=sa.text('NOW()')),
    )

    # Harvests
    op.create_table(
        'harvests',
        _id_column(),
        sa.Column('seed_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('seeds.id'), nullable=False, index=True),
        sa.Column('harvest_date', sa.Date, nullable=False, index=True),
        sa.Column('user_name', sa.String(200)),
        sa.Column('notes', sa.Text),
        sa.Column('total_weight_grams', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('tray_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('average_weight_per_tray', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, server_default=sa.text('NOW()')),
    )
    op.create_table(
        'harvest_lines',
        _id_column(),
        sa.Column('harvest_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('harvests.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('tray_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('trays.id'), nullable=False, index=True),
        sa.Column('harvested_weight_grams', sa.Numeric(10, 2), nullable=False),
        sa.Column('percentage_harvested', sa.Numeric(5, 2), nullable=False),
        sa.Column('notes', sa.Text),
        sa.Column('stage_before', CROP_STAGE),
        sa.Column('created_at', sa.DateTime, server_default=sa.text('NOW()')),
    )

    # Domain Events (Outbox)
    op.create_table(
        'domain_events',
        _id_column(),
        sa.Column('event_type', DOMAIN_EVENT_TYPE, nullable=False, index=True),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), index=True),
        sa.Column('tray_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('trays.id', ondelete='SET NULL')),
        sa.Column('payload', postgresql.JSONB),
        sa.Column('occurred_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('dispatched_at', sa.DateTime, index=True),
        sa.Column('attempts', sa.Integer, server_default='0'),
        sa.Column('last_error', sa.Text),
    )


def downgrade() -> None:
    op.drop_table('domain_events')
    op.drop_table('harvest_lines')
    op.drop_table('harvests')
    op.drop_table('stage_transition_logs')
    op.drop_index('uq_trays_live_tray_number', table_name='trays')
    op.drop_table('trays')
    op.drop_table('grow_batches')
    op.drop_table('plan_contributions')
    op.drop_index('uq_production_plans_open_seed_harvest', table_name='production_plans')
    op.drop_table('production_plans')
    op.drop_index('ix_order_audit_logs_created_at', table_name='order_audit_logs')
    op.drop_index('ix_order_audit_logs_order_id', table_name='order_audit_logs')
    op.drop_table('order_audit_logs')
    op.drop_table('order_lines')
    op.drop_table('orders')
    op.drop_table('mix_components')
    op.drop_table('product_mixes')
    op.drop_table('grow_plans')
    op.drop_table('seeds')

    for enum in (DOMAIN_EVENT_TYPE, STAGE_ACTION, CROP_STAGE, PLAN_STATUS, ORDER_LINE_UNIT, ORDER_STATUS):
        enum.drop(op.get_bind(), checkfirst=True)
