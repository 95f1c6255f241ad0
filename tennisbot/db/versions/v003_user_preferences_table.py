"""User preferences table

Revision ID: 003
Revises: 002
Create Date: 2025-06-14 09:30:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = '003'
down_revision = '002'
name = 'user_preferences_table'


def upgrade() -> None:
    op.create_table('user_preferences',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('user_id', sa.Text(), nullable=False),
    sa.Column('timezone', sa.Text(), server_default='Europe/Kiev', nullable=False),
    sa.Column('notifications', sa.Boolean(), server_default=sa.true(), nullable=False),
    sa.Column('language', sa.Text(), server_default='en', nullable=False),
    sa.Column('preferred_times', sa.JSON(), nullable=True),
    sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('user_id')
    )


def downgrade() -> None:
    op.drop_table('user_preferences')
