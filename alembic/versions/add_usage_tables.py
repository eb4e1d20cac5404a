"""Add usage_counters and usage_events tables

Revision ID: usage_001
Revises: users_001
Create Date: 2026-09-29 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'usage_001'
down_revision = 'users_001'
branch_labels = None
depends_on = None


def upgrade():
    # One row per identity per UTC day; the unique constraint is the upsert target
    op.create_table('usage_counters',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('identity_key', sa.String(), nullable=False),
        sa.Column('usage_date', sa.Date(), nullable=False),
        sa.Column('count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_used_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('identity_key', 'usage_date', name='uq_usage_counters_identity_date')
    )
    op.create_index(op.f('ix_usage_counters_identity_key'), 'usage_counters', ['identity_key'], unique=False)
    op.create_index(op.f('ix_usage_counters_usage_date'), 'usage_counters', ['usage_date'], unique=False)

    op.create_table('usage_events',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=True),
        sa.Column('identity_key', sa.String(), nullable=True),
        sa.Column('api_type', sa.String(), nullable=False),
        sa.Column('endpoint', sa.String(), nullable=False),
        sa.Column('model', sa.String(), nullable=True),
        sa.Column('operation', sa.String(), nullable=False),
        sa.Column('input_tokens', sa.Integer(), nullable=True),
        sa.Column('output_tokens', sa.Integer(), nullable=True),
        sa.Column('image_count', sa.Integer(), nullable=True),
        sa.Column('cost', sa.Float(), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_usage_events_id'), 'usage_events', ['id'], unique=False)
    op.create_index(op.f('ix_usage_events_user_id'), 'usage_events', ['user_id'], unique=False)
    op.create_index(op.f('ix_usage_events_identity_key'), 'usage_events', ['identity_key'], unique=False)
    op.create_index(op.f('ix_usage_events_operation'), 'usage_events', ['operation'], unique=False)
    op.create_index(op.f('ix_usage_events_created_at'), 'usage_events', ['created_at'], unique=False)


def downgrade():
    op.drop_index(op.f('ix_usage_events_created_at'), table_name='usage_events')
    op.drop_index(op.f('ix_usage_events_operation'), table_name='usage_events')
    op.drop_index(op.f('ix_usage_events_identity_key'), table_name='usage_events')
    op.drop_index(op.f('ix_usage_events_user_id'), table_name='usage_events')
    op.drop_index(op.f('ix_usage_events_id'), table_name='usage_events')
    op.drop_table('usage_events')

    op.drop_index(op.f('ix_usage_counters_usage_date'), table_name='usage_counters')
    op.drop_index(op.f('ix_usage_counters_identity_key'), table_name='usage_counters')
    op.drop_table('usage_counters')
