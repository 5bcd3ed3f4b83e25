"""Create booking tables

Revision ID: 001_create_booking_tables
Revises:
Create Date: 2026-10-19

Note: the exclusion constraint on appointments needs btree_gist. It backs
the slot check made at booking time against concurrent inserts.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_create_booking_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create booking tables."""
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")

    op.create_table(
        'branches',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(150), nullable=False),
        sa.Column('timezone', sa.String(64)),
        sa.Column('active', sa.Boolean(), default=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'staff',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('branch_id', sa.String(36), sa.ForeignKey('branches.id'), nullable=False, index=True),
        sa.Column('name', sa.String(150), nullable=False),
        sa.Column('active', sa.Boolean(), default=True),
    )

    op.create_table(
        'business_hours',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('branch_id', sa.String(36), sa.ForeignKey('branches.id'), nullable=False, index=True),
        sa.Column('weekday', sa.Integer(), nullable=False),
        sa.Column('open_time', sa.Time(), nullable=False),
        sa.Column('close_time', sa.Time(), nullable=False),
        sa.UniqueConstraint('branch_id', 'weekday', name='uq_business_hours_branch_weekday'),
    )

    op.create_table(
        'staff_hours',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('staff_id', sa.String(36), sa.ForeignKey('staff.id'), nullable=False, index=True),
        sa.Column('weekday', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.UniqueConstraint('staff_id', 'weekday', name='uq_staff_hours_staff_weekday'),
    )

    op.create_table(
        'blackouts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('staff_id', sa.String(36), sa.ForeignKey('staff.id'), nullable=False, index=True),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('reason', sa.Text()),
    )

    op.create_table(
        'services',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('branch_id', sa.String(36), sa.ForeignKey('branches.id'), nullable=False, index=True),
        sa.Column('name', sa.String(150), nullable=False),
        sa.Column('active', sa.Boolean(), default=True),
        sa.Column('duration_min', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('deposit_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('buffer_min', sa.Integer()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'service_types',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(150), nullable=False),
        sa.Column('active', sa.Boolean(), default=True),
        sa.Column('base_duration_min', sa.Integer()),
        sa.Column('base_price_cents', sa.Integer()),
        sa.Column('base_deposit_cents', sa.Integer()),
        sa.Column('base_buffer_min', sa.Integer()),
    )

    op.create_table(
        'service_type_assignments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('service_id', sa.String(36), sa.ForeignKey('services.id'), nullable=False, index=True),
        sa.Column('service_type_id', sa.String(36), sa.ForeignKey('service_types.id')),
        sa.Column('use_service_defaults', sa.Boolean()),
        sa.Column('override_duration_min', sa.Integer()),
        sa.Column('override_price_cents', sa.Integer()),
        sa.Column('override_deposit_cents', sa.Integer()),
        sa.Column('override_buffer_min', sa.Integer()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'customers',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('full_name', sa.String(200)),
        sa.Column('email', sa.String(255), index=True),
        sa.Column('whatsapp', sa.String(30)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'appointments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('branch_id', sa.String(36), sa.ForeignKey('branches.id'), nullable=False, index=True),
        sa.Column('customer_id', sa.String(36), sa.ForeignKey('customers.id'), index=True),
        sa.Column('staff_id', sa.String(36), sa.ForeignKey('staff.id')),
        sa.Column('service_id', sa.String(36), sa.ForeignKey('services.id')),
        sa.Column('service_type_id', sa.String(36), sa.ForeignKey('service_types.id')),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('deposit_cents', sa.Integer()),
        sa.Column('legacy_deposit_amount', sa.Numeric(10, 2)),
        sa.Column('notes', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_appointments_staff_starts_at', 'appointments', ['staff_id', 'starts_at'])
    op.create_index('ix_appointments_status_created_at', 'appointments', ['status', 'created_at'])

    # One active appointment per staff member per instant (half-open ranges)
    op.execute("""
        ALTER TABLE appointments
        ADD CONSTRAINT ex_appointments_staff_no_overlap
        EXCLUDE USING gist (
            staff_id WITH =,
            tstzrange(starts_at, ends_at, '[)') WITH &&
        )
        WHERE (status IN ('pending', 'reserved', 'confirmed') AND staff_id IS NOT NULL)
    """)

    op.create_table(
        'payments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('appointment_id', sa.String(36), sa.ForeignKey('appointments.id'), nullable=False, index=True),
        sa.Column('provider', sa.String(30), nullable=False),
        sa.Column('provider_payment_id', sa.String(255), index=True),
        sa.Column('kind', sa.String(20), nullable=False, server_default='deposit'),
        sa.Column('covers_deposit', sa.Boolean(), default=False),
        sa.Column('status', sa.String(30), nullable=False, server_default='pending'),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('payload', sa.JSON()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('provider', sa.String(30), nullable=False),
        sa.Column('event_id', sa.String(255), nullable=False),
        sa.Column('payload', sa.JSON()),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('processed_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('provider', 'event_id', name='uq_webhook_events_provider_event'),
    )

    op.create_table(
        'reminders',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('appointment_id', sa.String(36), sa.ForeignKey('appointments.id'), nullable=False, index=True),
        sa.Column('channel', sa.String(20), nullable=False, server_default='whatsapp'),
        sa.Column('to_address', sa.String(255), nullable=False),
        sa.Column('template', sa.String(50)),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(20), server_default='pending'),
        sa.Column('attempts', sa.Integer(), server_default='0'),
        sa.Column('last_error', sa.Text()),
        sa.Column('sent_at', sa.DateTime(timezone=True)),
    )


def downgrade():
    """Drop booking tables."""
    op.drop_table('reminders')
    op.drop_table('webhook_events')
    op.drop_table('payments')
    op.drop_table('appointments')
    op.drop_table('customers')
    op.drop_table('service_type_assignments')
    op.drop_table('service_types')
    op.drop_table('services')
    op.drop_table('blackouts')
    op.drop_table('staff_hours')
    op.drop_table('business_hours')
    op.drop_table('staff')
    op.drop_table('branches')
