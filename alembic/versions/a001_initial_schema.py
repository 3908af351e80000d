"""Initial schema creation

Revision ID: a001
Revises:
Create Date: 2025-12-03

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'a001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create initial database schema."""

    # Create users table
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('timezone', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )
    op.create_index('ix_users_email', 'users', ['email'])

    # Create notification_settings table
    op.create_table(
        'notification_settings',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('channels', sa.JSON(), nullable=True),
        sa.Column('remind_at', sa.String(5), nullable=True),
        sa.Column('lead_time_days', sa.Integer(), nullable=True),
        sa.Column('slack_webhook', sa.String(500), nullable=True),
        sa.Column('discord_webhook', sa.String(500), nullable=True),
        sa.Column('push_endpoint', sa.String(500), nullable=True),
        sa.Column('push_token', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.UniqueConstraint('user_id')
    )
    op.create_index('ix_notification_settings_user_id', 'notification_settings', ['user_id'])

    # Create people table
    op.create_table(
        'people',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'])
    )
    op.create_index('ix_people_user_id', 'people', ['user_id'])

    # Create events table
    op.create_table(
        'events',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('person_id', sa.String(36), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('recurrence', sa.Enum('NONE', 'YEARLY', name='recurrence'), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('budget', sa.Numeric(10, 2), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('show_milestone', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['person_id'], ['people.id'])
    )
    op.create_index('ix_events_person_id', 'events', ['person_id'])

    # Create event_completions table
    op.create_table(
        'event_completions',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('event_id', sa.String(36), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['event_id'], ['events.id']),
        sa.UniqueConstraint('event_id', 'year', name='uq_event_completion_year')
    )
    op.create_index('ix_event_completions_event_id', 'event_completions', ['event_id'])

    # Create gifts table
    op.create_table(
        'gifts',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('event_id', sa.String(36), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('value', sa.Numeric(10, 2), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'])
    )
    op.create_index('ix_gifts_event_id', 'gifts', ['event_id'])
    op.create_index('ix_gifts_year', 'gifts', ['year'])

    # Create reminder_logs table
    op.create_table(
        'reminder_logs',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('event_id', sa.String(36), nullable=False),
        sa.Column('occurrence_year', sa.Integer(), nullable=False),
        sa.Column('occurs_on', sa.Date(), nullable=False),
        sa.Column('channel', sa.String(20), nullable=False),
        sa.Column('remind_on', sa.Date(), nullable=False),
        sa.Column('days_away', sa.Integer(), nullable=False),
        sa.Column('status', sa.Enum('SENT', 'FAILED', name='dispatchstatus'), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['event_id'], ['events.id']),
        sa.UniqueConstraint('event_id', 'occurrence_year', 'channel', 'remind_on', name='uq_reminder_dispatch')
    )
    op.create_index('ix_reminder_logs_user_id', 'reminder_logs', ['user_id'])
    op.create_index('ix_reminder_logs_event_id', 'reminder_logs', ['event_id'])
    op.create_index('ix_reminder_logs_remind_on', 'reminder_logs', ['remind_on'])
    op.create_index('ix_reminder_logs_status', 'reminder_logs', ['status'])
    op.create_index('ix_reminder_logs_sent_at', 'reminder_logs', ['sent_at'])

    # Create notification_rate_limits table
    op.create_table(
        'notification_rate_limits',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('channel', sa.String(20), nullable=False),
        sa.Column('limit_key', sa.String(255), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('max_allowed', sa.Integer(), nullable=False),
        sa.Column('window_started_at', sa.DateTime(), nullable=False),
        sa.Column('last_attempt_at', sa.DateTime(), nullable=True),
        sa.Column('reset_at', sa.DateTime(), nullable=False),
        sa.Column('is_blocked', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('channel', 'limit_key', name='uq_rate_limit_channel_key')
    )
    op.create_index('ix_notification_rate_limits_reset_at', 'notification_rate_limits', ['reset_at'])
    op.create_index('ix_notification_rate_limits_is_blocked', 'notification_rate_limits', ['is_blocked'])

    # Create channel_health table
    op.create_table(
        'channel_health',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('channel', sa.String(20), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('status', sa.Enum('HEALTHY', 'WARNING', 'CRITICAL', name='healthstatus'), nullable=False),
        sa.Column('consecutive_failures', sa.Integer(), nullable=False),
        sa.Column('consecutive_successes', sa.Integer(), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('response_time_ms', sa.Integer(), nullable=True),
        sa.Column('checked_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_channel_health_channel', 'channel_health', ['channel'])
    op.create_index('ix_channel_health_checked_at', 'channel_health', ['checked_at'])

    # Create notification_outages table
    op.create_table(
        'notification_outages',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('channel', sa.String(20), nullable=False),
        sa.Column('outage_type', sa.String(50), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_resolved', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_notification_outages_channel', 'notification_outages', ['channel'])
    op.create_index('ix_notification_outages_started_at', 'notification_outages', ['started_at'])
    op.create_index('ix_notification_outages_is_resolved', 'notification_outages', ['is_resolved'])

    # Create notification_metrics table
    op.create_table(
        'notification_metrics',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('channel', sa.String(20), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('sent_count', sa.Integer(), nullable=False),
        sa.Column('failed_count', sa.Integer(), nullable=False),
        sa.Column('success_rate', sa.Float(), nullable=False),
        sa.Column('avg_response_time', sa.Float(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('channel', 'date', name='uq_metric_channel_date')
    )
    op.create_index('ix_notification_metrics_date', 'notification_metrics', ['date'])

    # Create notification_analytics table
    op.create_table(
        'notification_analytics',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('channel', sa.String(20), nullable=False),
        sa.Column('notification_type', sa.String(50), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('sent_count', sa.Integer(), nullable=False),
        sa.Column('delivered_count', sa.Integer(), nullable=False),
        sa.Column('failed_count', sa.Integer(), nullable=False),
        sa.Column('read_count', sa.Integer(), nullable=False),
        sa.Column('click_count', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('channel', 'notification_type', 'date', name='uq_analytics_channel_type_date')
    )
    op.create_index('ix_notification_analytics_date', 'notification_analytics', ['date'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('notification_analytics')
    op.drop_table('notification_metrics')
    op.drop_table('notification_outages')
    op.drop_table('channel_health')
    op.drop_table('notification_rate_limits')
    op.drop_table('reminder_logs')
    op.drop_table('gifts')
    op.drop_table('event_completions')
    op.drop_table('events')
    op.drop_table('people')
    op.drop_table('notification_settings')
    op.drop_table('users')
