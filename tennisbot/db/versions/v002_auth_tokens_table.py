"""Auth tokens table

Revision ID: 002
Revises: 001
Create Date: 2025-06-01 10:05:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = '002'
down_revision = '001'
name = 'auth_tokens_table'


def upgrade() -> None:
    op.create_table('auth_tokens',
    sa.Column('id', sa.Integer(), autoincrement=False, nullable=False),
    sa.Column('access_token', sa.Text(), nullable=False),
    sa.Column('refresh_token', sa.Text(), nullable=False),
    sa.Column('expiry', sa.DateTime(), nullable=True),
    sa.Column('scope', sa.Text(), nullable=True),
    sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )


def downgrade() -> None:
    op.drop_table('auth_tokens')
