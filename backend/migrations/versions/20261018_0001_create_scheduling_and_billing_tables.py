"""Create scheduling and billing tables

Revision ID: a7c3e9d1f204
Revises:
Create Date: 2026-10-18 09:00:00.000000

This migration adds:
1. provider, provider_schedule, schedule_exception, appointment
2. health_plan, billing_rule, billing_batch, billing_batch_item
3. notification_log
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'a7c3e9d1f204'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'provider',
        sa.Column('provider_id', sa.Uuid(), primary_key=True),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('slot_duration', sa.Integer(), nullable=True),
        sa.Column('buffer_time', sa.Integer(), nullable=True),
        sa.Column('max_daily_appointments', sa.Integer(), nullable=True),
        sa.Column('advance_booking_days', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'provider_schedule',
        sa.Column('schedule_id', sa.Uuid(), primary_key=True),
        sa.Column('provider_id', sa.Uuid(), sa.ForeignKey('provider.provider_id'), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('is_available', sa.Boolean(), nullable=False),
        sa.Column('break_start', sa.Time(), nullable=True),
        sa.Column('break_end', sa.Time(), nullable=True),
        sa.Column('location_id', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('day_of_week BETWEEN 0 AND 6', name='ck_provider_schedule_day_of_week'),
    )
    op.create_index('ix_provider_schedule_provider_id', 'provider_schedule', ['provider_id'])

    op.create_table(
        'schedule_exception',
        sa.Column('exception_id', sa.Uuid(), primary_key=True),
        sa.Column('provider_id', sa.Uuid(), sa.ForeignKey('provider.provider_id'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('exception_type', sa.String(50), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('is_all_day', sa.Boolean(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=True),
        sa.Column('end_time', sa.Time(), nullable=True),
        sa.Column('location_id', sa.String(64), nullable=True),
        sa.Column('recurrence_pattern', sa.String(20), nullable=False),
        sa.Column('recurrence_end_date', sa.Date(), nullable=True),
        sa.Column(
            'parent_exception_id',
            sa.Uuid(),
            sa.ForeignKey('schedule_exception.exception_id', ondelete='CASCADE'),
            nullable=True,
        ),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('end_date >= start_date', name='ck_schedule_exception_dates'),
    )
    op.create_index('ix_schedule_exception_provider_id', 'schedule_exception', ['provider_id'])
    op.create_index('ix_schedule_exception_dates', 'schedule_exception', ['start_date', 'end_date'])

    op.create_table(
        'health_plan',
        sa.Column('health_plan_id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'appointment',
        sa.Column('appointment_id', sa.Uuid(), primary_key=True),
        sa.Column('provider_id', sa.Uuid(), sa.ForeignKey('provider.provider_id'), nullable=False),
        sa.Column('health_plan_id', sa.Uuid(), sa.ForeignKey('health_plan.health_plan_id'), nullable=True),
        sa.Column('scheduled_at', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_appointment_provider_id', 'appointment', ['provider_id'])
    op.create_index('ix_appointment_health_plan_id', 'appointment', ['health_plan_id'])
    op.create_index('ix_appointment_scheduled_at', 'appointment', ['scheduled_at'])

    op.create_table(
        'billing_rule',
        sa.Column('rule_id', sa.Uuid(), primary_key=True),
        sa.Column('health_plan_id', sa.Uuid(), sa.ForeignKey('health_plan.health_plan_id'), nullable=False),
        sa.Column('contract_id', sa.Uuid(), nullable=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('billing_type', sa.String(20), nullable=False),
        sa.Column('billing_day', sa.Integer(), nullable=True),
        sa.Column('batch_threshold_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('batch_threshold_appointments', sa.Integer(), nullable=True),
        sa.Column('payment_term_days', sa.Integer(), nullable=True),
        sa.Column('minimum_billing_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('late_fee_percentage', sa.Numeric(5, 2), nullable=True),
        sa.Column('discount_percentage', sa.Numeric(5, 2), nullable=True),
        sa.Column('discount_if_paid_until_days', sa.Integer(), nullable=True),
        sa.Column('notify_on_generation', sa.Boolean(), nullable=False),
        sa.Column('notify_before_due_date', sa.Boolean(), nullable=False),
        sa.Column('notify_days_before', sa.Integer(), nullable=True),
        sa.Column('notify_on_late_payment', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_billing_rule_health_plan_id', 'billing_rule', ['health_plan_id'])

    op.create_table(
        'billing_batch',
        sa.Column('batch_id', sa.Uuid(), primary_key=True),
        sa.Column('health_plan_id', sa.Uuid(), sa.ForeignKey('health_plan.health_plan_id'), nullable=False),
        sa.Column('billing_rule_id', sa.Uuid(), sa.ForeignKey('billing_rule.rule_id'), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_billing_batch_health_plan_id', 'billing_batch', ['health_plan_id'])
    op.create_index('ix_billing_batch_billing_rule_id', 'billing_batch', ['billing_rule_id'])

    # Unique appointment_id: an appointment is billed at most once
    op.create_table(
        'billing_batch_item',
        sa.Column('item_id', sa.Uuid(), primary_key=True),
        sa.Column('batch_id', sa.Uuid(), sa.ForeignKey('billing_batch.batch_id'), nullable=False),
        sa.Column('appointment_id', sa.Uuid(), sa.ForeignKey('appointment.appointment_id'), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.UniqueConstraint('appointment_id', name='uq_billing_batch_item_appointment_id'),
    )
    op.create_index('ix_billing_batch_item_batch_id', 'billing_batch_item', ['batch_id'])

    op.create_table(
        'notification_log',
        sa.Column('notification_id', sa.Uuid(), primary_key=True),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('health_plan_id', sa.Uuid(), nullable=False),
        sa.Column('batch_id', sa.Uuid(), nullable=True),
        sa.Column('payload_json', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_notification_log_health_plan_id', 'notification_log', ['health_plan_id'])


def downgrade() -> None:
    op.drop_table('notification_log')
    op.drop_table('billing_batch_item')
    op.drop_table('billing_batch')
    op.drop_table('billing_rule')
    op.drop_table('appointment')
    op.drop_table('health_plan')
    op.drop_table('schedule_exception')
    op.drop_table('provider_schedule')
    op.drop_table('provider')
