"""Initial migration - profiles and integration tables

Revision ID: 001_integrations
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_integrations'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Athlete profiles (club membership)
    op.create_table(
        'profiles',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('club_id', sa.String(36), nullable=False),
        sa.Column('display_name', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_profiles_club_id', 'profiles', ['club_id'])

    # OAuth connections, one per athlete+provider
    op.create_table(
        'connected_accounts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('athlete_id', sa.String(36), nullable=False),
        sa.Column('club_id', sa.String(36), nullable=True),
        sa.Column('provider', sa.String(20), nullable=False),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('token_expires', sa.DateTime(), nullable=True),
        sa.Column('provider_uid', sa.String(64), nullable=True),
        sa.Column('scopes', sa.JSON(), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('athlete_id', 'provider', name='uq_connected_accounts_athlete_provider'),
    )
    op.create_index('ix_connected_accounts_athlete_id', 'connected_accounts', ['athlete_id'])
    op.create_index('ix_connected_accounts_provider_uid', 'connected_accounts', ['provider', 'provider_uid'])

    # Normalized workouts
    op.create_table(
        'workouts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('athlete_id', sa.String(36), nullable=False),
        sa.Column('club_id', sa.String(36), nullable=True),
        sa.Column('activity_type', sa.String(20), nullable=False),
        sa.Column('source', sa.String(20), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('duration_s', sa.Integer(), nullable=True),
        sa.Column('distance_m', sa.Float(), nullable=True),
        sa.Column('avg_hr', sa.Float(), nullable=True),
        sa.Column('max_hr', sa.Float(), nullable=True),
        sa.Column('avg_pace_s_km', sa.Integer(), nullable=True),
        sa.Column('avg_power_w', sa.Float(), nullable=True),
        sa.Column('calories', sa.Float(), nullable=True),
        sa.Column('tss', sa.Float(), nullable=True),
        sa.Column('raw_data', sa.JSON(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_workouts_athlete_source_started', 'workouts', ['athlete_id', 'source', 'started_at'])

    # Wellness readings
    op.create_table(
        'health_metrics',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('athlete_id', sa.String(36), nullable=False),
        sa.Column('club_id', sa.String(36), nullable=True),
        sa.Column('metric_type', sa.String(30), nullable=False),
        sa.Column('value', sa.Float(), nullable=False),
        sa.Column('unit', sa.String(20), nullable=False),
        sa.Column('recorded_at', sa.DateTime(), nullable=False),
        sa.Column('source', sa.String(20), nullable=False),
        sa.Column('raw_data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index(
        'ix_health_metrics_athlete_type_recorded',
        'health_metrics',
        ['athlete_id', 'metric_type', 'recorded_at'],
    )

    # Daily wellness logs
    op.create_table(
        'daily_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('athlete_id', sa.String(36), nullable=False),
        sa.Column('club_id', sa.String(36), nullable=True),
        sa.Column('log_date', sa.Date(), nullable=False),
        sa.Column('hrv', sa.Float(), nullable=True),
        sa.Column('resting_hr', sa.Float(), nullable=True),
        sa.Column('sleep_hours', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('athlete_id', 'log_date', name='uq_daily_logs_athlete_date'),
    )
    op.create_index('ix_daily_logs_athlete_id', 'daily_logs', ['athlete_id'])

    # Durable webhook queue
    op.create_table(
        'webhook_queue',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('provider', sa.String(20), nullable=False),
        sa.Column('event_data', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('available_at', sa.DateTime(), nullable=False),
        sa.Column('locked_until', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_webhook_queue_status_available', 'webhook_queue', ['status', 'available_at'])

    # Sync audit log
    op.create_table(
        'sync_history',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('athlete_id', sa.String(36), nullable=True),
        sa.Column('provider', sa.String(20), nullable=False),
        sa.Column('event_type', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('workouts_added', sa.Integer(), nullable=True),
        sa.Column('metrics_added', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_sync_history_athlete_id', 'sync_history', ['athlete_id'])
    op.create_index('ix_sync_history_created_at', 'sync_history', ['created_at'])


def downgrade() -> None:
    op.drop_table('sync_history')
    op.drop_table('webhook_queue')
    op.drop_table('daily_logs')
    op.drop_table('health_metrics')
    op.drop_table('workouts')
    op.drop_table('connected_accounts')
    op.drop_table('profiles')
