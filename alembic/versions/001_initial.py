"""Initial schema: api_keys and usage_events tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create api_keys table
    op.create_table(
        'api_keys',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.String(length=100), nullable=False),
        sa.Column('key_hash', sa.String(length=64), nullable=False),
        sa.Column('key_preview', sa.String(length=16), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('contact_email', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('rate_limit', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_used_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('allowed_ips', sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_api_keys_id', 'api_keys', ['id'])
    op.create_index('ix_api_keys_client_id', 'api_keys', ['client_id'], unique=True)
    op.create_index('ix_api_keys_key_hash', 'api_keys', ['key_hash'], unique=True)
    op.create_index('idx_api_keys_active_expiry', 'api_keys', ['is_active', 'expires_at'])

    # Create usage_events table
    op.create_table(
        'usage_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.String(length=100), nullable=False),
        sa.Column('endpoint', sa.String(length=500), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_usage_events_id', 'usage_events', ['id'])
    op.create_index('ix_usage_events_client_id', 'usage_events', ['client_id'])
    op.create_index('ix_usage_events_timestamp', 'usage_events', ['timestamp'])
    op.create_index('idx_usage_events_window', 'usage_events', ['client_id', 'timestamp'])


def downgrade() -> None:
    # Drop usage_events table
    op.drop_index('idx_usage_events_window', table_name='usage_events')
    op.drop_index('ix_usage_events_timestamp', table_name='usage_events')
    op.drop_index('ix_usage_events_client_id', table_name='usage_events')
    op.drop_index('ix_usage_events_id', table_name='usage_events')
    op.drop_table('usage_events')

    # Drop api_keys table
    op.drop_index('idx_api_keys_active_expiry', table_name='api_keys')
    op.drop_index('ix_api_keys_key_hash', table_name='api_keys')
    op.drop_index('ix_api_keys_client_id', table_name='api_keys')
    op.drop_index('ix_api_keys_id', table_name='api_keys')
    op.drop_table('api_keys')
