"""Booking history table

Revision ID: 004
Revises: 003
Create Date: 2025-06-20 18:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = '004'
down_revision = '003'
name = 'booking_history_table'


def upgrade() -> None:
    op.create_table('booking_history',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('booking_id', sa.Integer(), nullable=False),
    sa.Column('action', sa.Text(), nullable=False),
    sa.Column('old_values', sa.JSON(), nullable=True),
    sa.Column('new_values', sa.JSON(), nullable=True),
    sa.Column('performed_by', sa.Text(), nullable=False),
    sa.Column('timestamp', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    sa.CheckConstraint("action IN ('created', 'modified', 'cancelled', 'completed')", name='check_action'),
    sa.ForeignKeyConstraint(['booking_id'], ['bookings.id']),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_booking_history_booking_id', 'booking_history', ['booking_id'], unique=False)
    op.create_index('ix_booking_history_timestamp', 'booking_history', ['timestamp'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_booking_history_timestamp', table_name='booking_history')
    op.drop_index('ix_booking_history_booking_id', table_name='booking_history')
    op.drop_table('booking_history')
