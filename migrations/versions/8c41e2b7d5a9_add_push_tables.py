"""Add push token registry tables

Revision ID: 8c41e2b7d5a9
Revises:
Create Date: 2026-10-17 09:12:41.518203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '8c41e2b7d5a9'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create push_tokens table
    op.create_table(
        'push_tokens',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('token_key', sa.String(length=1024), nullable=False),
        sa.Column('token', sa.Text(), nullable=False),
        sa.Column('device_id', sa.String(length=128), nullable=True),
        sa.Column('origin', sa.String(length=255), nullable=True),
        sa.Column('user_agent', sa.String(length=160), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'token_key', name='uq_push_tokens_user_key')
    )
    op.create_index('idx_push_tokens_user_updated', 'push_tokens', ['user_id', 'updated_at'])

    # Create user_push_states table
    op.create_table(
        'user_push_states',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('push_enabled', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('push_permission', sa.String(length=32), nullable=True),
        sa.Column('push_token_state', sa.String(length=32), nullable=True),
        sa.Column('last_push_check_at', sa.DateTime(), nullable=True),
        sa.Column('last_push_token_at', sa.DateTime(), nullable=True),
        sa.Column('last_push_error', sa.String(length=140), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id')
    )


def downgrade() -> None:
    op.drop_table('user_push_states')
    op.drop_index('idx_push_tokens_user_updated', table_name='push_tokens')
    op.drop_table('push_tokens')
