"""booking engine schema

Revision ID: a41c7d2e9b10
Revises:
Create Date: 2026-10-19 09:12:41.504113

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'a41c7d2e9b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Replica: service definitions
    op.create_table('service_definitions',
        sa.Column('id', sa.String(length=255), nullable=False),
        sa.Column('business_id', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('price', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('requires_payment', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('min_advance_booking_hours', sa.Integer(), nullable=True),
        sa.Column('max_advance_booking_days', sa.Integer(), nullable=True),
        sa.Column('source_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('duration_minutes > 0', name='ck_service_definitions_duration_positive'),
        sa.CheckConstraint('price >= 0', name='ck_service_definitions_price_non_negative'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_service_definitions_business_id', 'service_definitions', ['business_id'])

    # Replica: weekly availability
    op.create_table('availability_rules',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('business_id', sa.String(length=255), nullable=False),
        sa.Column('day_of_week', sa.String(length=10), nullable=False),
        sa.Column('start_time', sa.String(length=5), nullable=False),
        sa.Column('end_time', sa.String(length=5), nullable=False),
        sa.Column('buffer_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'day_of_week', 'start_time', 'end_time',
                            name='uq_availability_rules_window')
    )
    op.create_index('ix_availability_rules_business_day', 'availability_rules', ['business_id', 'day_of_week'])

    op.create_table('business_calendars',
        sa.Column('business_id', sa.String(length=255), nullable=False),
        sa.Column('timezone', sa.String(length=64), nullable=True),
        sa.Column('availability_occurred_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('business_id')
    )

    # System of record: bookings
    op.create_table('bookings',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('business_id', sa.String(length=255), nullable=False),
        sa.Column('service_id', sa.String(length=255), nullable=False),
        sa.Column('customer_id', sa.String(length=255), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING_PAYMENT'),
        sa.Column('payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('cancelled_by', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('start_time < end_time', name='ck_bookings_interval'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_intent_id')
    )
    op.create_index('ix_bookings_service_id', 'bookings', ['service_id'])
    op.create_index('ix_bookings_customer_id', 'bookings', ['customer_id'])
    op.create_index('ix_bookings_business_window', 'bookings', ['business_id', 'start_time', 'end_time'])
    op.create_index('ix_bookings_status_end', 'bookings', ['status', 'end_time'])

    # Outbox
    op.create_table('booking_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('booking_id', sa.String(length=36), nullable=False),
        sa.Column('business_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=50), nullable=False),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('last_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_booking_events_booking_id', 'booking_events', ['booking_id'])
    op.create_index('ix_booking_events_status_created', 'booking_events', ['status', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_booking_events_status_created', table_name='booking_events')
    op.drop_index('ix_booking_events_booking_id', table_name='booking_events')
    op.drop_table('booking_events')

    op.drop_index('ix_bookings_status_end', table_name='bookings')
    op.drop_index('ix_bookings_business_window', table_name='bookings')
    op.drop_index('ix_bookings_customer_id', table_name='bookings')
    op.drop_index('ix_bookings_service_id', table_name='bookings')
    op.drop_table('bookings')

    op.drop_table('business_calendars')

    op.drop_index('ix_availability_rules_business_day', table_name='availability_rules')
    op.drop_table('availability_rules')

    op.drop_index('ix_service_definitions_business_id', table_name='service_definitions')
    op.drop_table('service_definitions')
