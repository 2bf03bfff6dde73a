"""initial lettings schema

Revision ID: l0001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete lettings schema:
- agencies: multi-tenant root
- properties, bedrooms: lettable stock
- applications: approved applicants awaiting a tenancy
- tenancies, tenancy_members, guarantor_agreements: lifecycle state
- payment_schedules, payments: obligations and the payments against them
- tenancy_events: outbound notification outbox
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'l0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade():
    # ============================================================================
    # agencies: tenant root
    # ============================================================================
    op.create_table(
        'agencies',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_agencies_code', 'agencies', ['code'], unique=True)

    # ============================================================================
    # properties / bedrooms
    # ============================================================================
    op.create_table(
        'properties',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('agency_id', sa.Integer(), nullable=False),
        sa.Column('address_line1', sa.String(length=255), nullable=False),
        sa.Column('city', sa.String(length=120), nullable=True),
        sa.Column('postcode', sa.String(length=16), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['agency_id'], ['agencies.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_properties_agency_id', 'properties', ['agency_id'])

    # occupancy_version is bumped to serialize room assignment
    op.create_table(
        'bedrooms',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('property_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('base_rent_pppw', sa.Numeric(12, 2), nullable=True),
        sa.Column('occupancy_version', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('property_id', 'name', name='uq_bedrooms_property_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_bedrooms_property_id', 'bedrooms', ['property_id'])

    # ============================================================================
    # applications
    # ============================================================================
    op.create_table(
        'applications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('agency_id', sa.Integer(), nullable=False),
        sa.Column('first_name', sa.String(length=128), nullable=False),
        sa.Column('surname', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='approved'),
        sa.Column('guarantor_required', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('guarantor_name', sa.String(length=255), nullable=True),
        sa.Column('guarantor_email', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['agency_id'], ['agencies.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_applications_agency_status', 'applications', ['agency_id', 'status'])

    # ============================================================================
    # tenancies
    # ============================================================================
    op.create_table(
        'tenancies',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('agency_id', sa.Integer(), nullable=False),
        sa.Column('property_id', sa.Integer(), nullable=False),
        sa.Column('source_tenancy_id', sa.Integer(), nullable=True),
        sa.Column('tenancy_type', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('rent_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('is_rolling_periodic', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('auto_generate_payments', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('is_migration', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('notice_given_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expired_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['agency_id'], ['agencies.id'], ),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id'], ),
        sa.ForeignKeyConstraint(['source_tenancy_id'], ['tenancies.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_tenancies_property_id', 'tenancies', ['property_id'])
    op.create_index('ix_tenancies_agency_status', 'tenancies', ['agency_id', 'status'])
    op.create_index(
        'ix_tenancies_rolling', 'tenancies',
        ['is_rolling_periodic', 'auto_generate_payments', 'status'],
    )

    op.create_table(
        'tenancy_members',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenancy_id', sa.Integer(), nullable=False),
        sa.Column('application_id', sa.Integer(), nullable=True),
        sa.Column('bedroom_id', sa.Integer(), nullable=True),
        sa.Column('first_name', sa.String(length=128), nullable=False),
        sa.Column('surname', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('rent_pppw', sa.Numeric(12, 2), nullable=True),
        sa.Column('deposit_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('payment_option', sa.String(length=32), nullable=True),
        sa.Column('is_signed', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('signed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('signature_data', sa.Text(), nullable=True),
        sa.Column('guarantor_required', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('guarantor_name', sa.String(length=255), nullable=True),
        sa.Column('guarantor_email', sa.String(length=255), nullable=True),
        sa.Column('key_status', sa.String(length=32), nullable=False, server_default='not_collected'),
        sa.Column('key_collection_date', sa.Date(), nullable=True),
        sa.Column('key_return_date', sa.Date(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['tenancy_id'], ['tenancies.id'], ),
        sa.ForeignKeyConstraint(['application_id'], ['applications.id'], ),
        sa.ForeignKeyConstraint(['bedroom_id'], ['bedrooms.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenancy_id', 'bedroom_id', name='uq_tenancy_members_tenancy_bedroom'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_tenancy_members_tenancy_id', 'tenancy_members', ['tenancy_id'])
    op.create_index('ix_tenancy_members_bedroom_id', 'tenancy_members', ['bedroom_id'])

    op.create_table(
        'guarantor_agreements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenancy_id', sa.Integer(), nullable=False),
        sa.Column('member_id', sa.Integer(), nullable=False),
        sa.Column('guarantor_name', sa.String(length=255), nullable=True),
        sa.Column('guarantor_email', sa.String(length=255), nullable=True),
        sa.Column('guarantor_token', sa.String(length=64), nullable=False),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_signed', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('signed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('signature_data', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['tenancy_id'], ['tenancies.id'], ),
        sa.ForeignKeyConstraint(['member_id'], ['tenancy_members.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('member_id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_guarantor_agreements_tenancy_id', 'guarantor_agreements', ['tenancy_id'])
    op.create_index(
        'ix_guarantor_agreements_guarantor_token', 'guarantor_agreements',
        ['guarantor_token'], unique=True,
    )

    # ============================================================================
    # payment_schedules / payments
    # ============================================================================
    # One automated rent line per (member, period); deposits have no period
    op.create_table(
        'payment_schedules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenancy_id', sa.Integer(), nullable=False),
        sa.Column('member_id', sa.Integer(), nullable=True),
        sa.Column('payment_type', sa.String(length=32), nullable=False, server_default='rent'),
        sa.Column('schedule_type', sa.String(length=16), nullable=False, server_default='automated'),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('amount_due', sa.Numeric(12, 2), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('covers_from', sa.Date(), nullable=True),
        sa.Column('covers_to', sa.Date(), nullable=True),
        sa.Column('amount_paid', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['tenancy_id'], ['tenancies.id'], ),
        sa.ForeignKeyConstraint(['member_id'], ['tenancy_members.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'tenancy_id', 'member_id', 'payment_type', 'covers_from',
            name='uq_payment_schedules_period',
        ),
        sqlite_autoincrement=True
    )
    op.create_index('ix_payment_schedules_member_id', 'payment_schedules', ['member_id'])
    op.create_index('ix_payment_schedules_tenancy_due', 'payment_schedules', ['tenancy_id', 'due_date'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('schedule_id', sa.Integer(), nullable=False),
        sa.Column('tenancy_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('payment_date', sa.Date(), nullable=False),
        sa.Column('payment_reference', sa.String(length=128), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['schedule_id'], ['payment_schedules.id'], ),
        sa.ForeignKeyConstraint(['tenancy_id'], ['tenancies.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_payments_schedule_id', 'payments', ['schedule_id'])
    op.create_index('ix_payments_tenancy_id', 'payments', ['tenancy_id'])

    # ============================================================================
    # tenancy_events: outbox (tenancy_id deliberately not a foreign key)
    # ============================================================================
    op.create_table(
        'tenancy_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('agency_id', sa.Integer(), nullable=False),
        sa.Column('tenancy_id', sa.Integer(), nullable=True),
        sa.Column('member_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('dispatched_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('dispatch_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['agency_id'], ['agencies.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_tenancy_events_agency_id', 'tenancy_events', ['agency_id'])
    op.create_index('ix_tenancy_events_tenancy_id', 'tenancy_events', ['tenancy_id'])
    op.create_index('ix_tenancy_events_undispatched', 'tenancy_events', ['dispatched_at', 'id'])


def downgrade():
    op.drop_table('tenancy_events')
    op.drop_table('payments')
    op.drop_table('payment_schedules')
    op.drop_table('guarantor_agreements')
    op.drop_table('tenancy_members')
    op.drop_table('tenancies')
    op.drop_table('applications')
    op.drop_table('bedrooms')
    op.drop_table('properties')
    op.drop_table('agencies')
