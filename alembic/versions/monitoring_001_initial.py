"""Monitoring: saved queries, monitored searches, snapshots, notification events

Revision ID: monitoring_001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = 'monitoring_001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- Saved search queries ---
    op.create_table('saved_search_queries',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('owner_id', sa.String(length=64), nullable=False),
        sa.Column('raw_text', sa.Text(), nullable=True),
        sa.Column('destinations', postgresql.JSONB(astext_type=sa.Text()), nullable=True, server_default='[]'),
        sa.Column('departure_city', sa.String(length=100), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('flexible_month', sa.String(length=50), nullable=True),
        sa.Column('duration_nights', sa.Integer(), nullable=True),
        sa.Column('adults', sa.Integer(), nullable=False, server_default='2'),
        sa.Column('children', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('children_ages', postgresql.JSONB(astext_type=sa.Text()), nullable=True, server_default='[]'),
        sa.Column('budget', sa.Numeric(12, 2), nullable=True),
        sa.Column('budget_type', sa.String(length=20), nullable=False, server_default='total'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='RUB'),
        sa.Column('travel_styles', postgresql.JSONB(astext_type=sa.Text()), nullable=True, server_default='[]'),
        sa.Column('requirements', postgresql.JSONB(astext_type=sa.Text()), nullable=True, server_default='[]'),
        sa.Column('priorities', postgresql.JSONB(astext_type=sa.Text()), nullable=True, server_default='{}'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_saved_search_queries_owner_id', 'saved_search_queries', ['owner_id'])

    # --- Monitored searches ---
    op.create_table('monitored_searches',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('owner_id', sa.String(length=64), nullable=False),
        sa.Column('saved_query_id', sa.UUID(), nullable=False),
        sa.Column('monitor_until', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('is_paused', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('notify_conditions', postgresql.JSONB(astext_type=sa.Text()), nullable=True, server_default='{}'),
        sa.Column('checks_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('notifications_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_checked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_notification_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('lease_token', sa.String(length=64), nullable=True),
        sa.Column('lease_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['saved_query_id'], ['saved_search_queries.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_monitored_searches_owner_id', 'monitored_searches', ['owner_id'])
    op.create_index(
        'ix_monitored_searches_eligible', 'monitored_searches',
        ['is_active', 'is_paused', 'monitor_until'],
    )

    # --- Result snapshots ---
    op.create_table('result_snapshots',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('monitored_search_id', sa.UUID(), nullable=False),
        sa.Column('candidate_id', sa.String(length=200), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='RUB'),
        sa.Column('availability', sa.String(length=30), nullable=True),
        sa.Column('score', sa.Integer(), nullable=True),
        sa.Column('found_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_notified', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('notified_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['monitored_search_id'], ['monitored_searches.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('monitored_search_id', 'candidate_id', name='uq_snapshot_search_candidate'),
    )

    # --- Notification events ---
    op.create_table('notification_events',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('monitored_search_id', sa.UUID(), nullable=False),
        sa.Column('owner_id', sa.String(length=64), nullable=False),
        sa.Column('candidate_id', sa.String(length=200), nullable=False),
        sa.Column('reason', sa.String(length=30), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('price_delta', sa.Numeric(12, 2), nullable=True),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=True, server_default='{}'),
        sa.Column('delivery_status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('delivery_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['monitored_search_id'], ['monitored_searches.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_notification_events_search_created', 'notification_events',
        ['monitored_search_id', 'created_at'],
    )


def downgrade() -> None:
    op.drop_index('ix_notification_events_search_created', table_name='notification_events')
    op.drop_table('notification_events')
    op.drop_table('result_snapshots')
    op.drop_index('ix_monitored_searches_eligible', table_name='monitored_searches')
    op.drop_index('ix_monitored_searches_owner_id', table_name='monitored_searches')
    op.drop_table('monitored_searches')
    op.drop_index('ix_saved_search_queries_owner_id', table_name='saved_search_queries')
    op.drop_table('saved_search_queries')
