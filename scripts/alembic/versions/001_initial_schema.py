"""Initial schema with users, stations, connectors, vehicles, reservations

Revision ID: 001_initial_schema
Revises: 
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create initial database schema."""
    # Needed for the equality operator on UUIDs inside a gist exclusion constraint
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")

    op.execute(
        "CREATE TYPE reservationstatus AS ENUM "
        "('PENDING', 'CONFIRMED', 'CHECKED_IN', 'COMPLETED', 'CANCELED', 'EXPIRED')"
    )

    # Create users table
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('display_name', sa.String(length=100), nullable=True),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='user'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
    )

    # Create stations table
    op.create_table(
        'stations',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('address', sa.String(length=500), nullable=True),
        sa.Column('operator_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.ForeignKeyConstraint(['operator_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_stations_operator_id', 'stations', ['operator_id'])

    # Create connectors table
    op.create_table(
        'connectors',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('station_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('standard', sa.String(length=20), nullable=False),
        sa.Column('max_kw', sa.Numeric(precision=6, scale=2), nullable=False),
        sa.Column('price_per_kwh_bdt', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.ForeignKeyConstraint(['station_id'], ['stations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_connectors_station_id', 'connectors', ['station_id'])

    # Create vehicles table
    op.create_table(
        'vehicles',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('connector_standards', postgresql.ARRAY(sa.String(length=20)), nullable=False),
        sa.Column('usable_kwh', sa.Numeric(precision=6, scale=2), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_vehicles_user_id', 'vehicles', ['user_id'])

    # Create reservations table
    op.create_table(
        'reservations',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('vehicle_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('station_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('connector_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            'status',
            postgresql.ENUM(
                'PENDING', 'CONFIRMED', 'CHECKED_IN', 'COMPLETED', 'CANCELED', 'EXPIRED',
                name='reservationstatus', create_type=False,
            ),
            nullable=False,
            server_default='PENDING',
        ),
        sa.Column('qr_code', sa.String(length=64), nullable=False),
        sa.Column('otp', sa.String(length=10), nullable=False),
        sa.Column('payment_deadline', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_paid', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('total_cost_bdt', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('notes', sa.String(length=500), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('canceled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('start_time < end_time', name='check_time_range'),
        sa.CheckConstraint('total_cost_bdt >= 0', name='check_nonnegative_cost'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['vehicle_id'], ['vehicles.id']),
        sa.ForeignKeyConstraint(['station_id'], ['stations.id']),
        sa.ForeignKeyConstraint(['connector_id'], ['connectors.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('uq_reservations_qr_code', 'reservations', ['qr_code'], unique=True)
    op.create_index('ix_reservations_user_status', 'reservations', ['user_id', 'status'])
    op.create_index(
        'ix_reservations_station_connector_start',
        'reservations',
        ['station_id', 'connector_id', 'start_time'],
    )
    op.create_index(
        'ix_reservations_connector_window_status',
        'reservations',
        ['connector_id', 'start_time', 'end_time', 'status'],
    )
    op.create_index('ix_reservations_status_start', 'reservations', ['status', 'start_time'])

    # No two blocking reservations on one connector may overlap
    op.execute(
        """
        ALTER TABLE reservations
        ADD CONSTRAINT excl_reservations_connector_window
        EXCLUDE USING gist (
            connector_id WITH =,
            tstzrange(start_time, end_time, '[)') WITH &&
        )
        WHERE (status IN ('PENDING', 'CONFIRMED', 'CHECKED_IN'))
        """
    )


def downgrade() -> None:
    """Drop all tables and types."""
    op.execute("ALTER TABLE reservations DROP CONSTRAINT IF EXISTS excl_reservations_connector_window")
    op.drop_index('ix_reservations_status_start', table_name='reservations')
    op.drop_index('ix_reservations_connector_window_status', table_name='reservations')
    op.drop_index('ix_reservations_station_connector_start', table_name='reservations')
    op.drop_index('ix_reservations_user_status', table_name='reservations')
    op.drop_index('uq_reservations_qr_code', table_name='reservations')
    op.drop_table('reservations')
    op.drop_index('ix_vehicles_user_id', table_name='vehicles')
    op.drop_table('vehicles')
    op.drop_index('ix_connectors_station_id', table_name='connectors')
    op.drop_table('connectors')
    op.drop_index('ix_stations_operator_id', table_name='stations')
    op.drop_table('stations')
    op.drop_table('users')
    op.execute('DROP TYPE reservationstatus')
