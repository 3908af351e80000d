"""Scheduler and background tasks package."""
from app.scheduler.reminder_scheduler import (
    start_scheduler,
    stop_scheduler,
    check_and_send_reminders,
    cleanup_rate_limits,
    check_channel_health,
    update_notification_analytics
)

__all__ = [
    'start_scheduler',
    'stop_scheduler',
    'check_and_send_reminders',
    'cleanup_rate_limits',
    'check_channel_health',
    'update_notification_analytics'
]
