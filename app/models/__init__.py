"""Database models package."""
from app.models.user import User
from app.models.notification_setting import NotificationSetting, Channel
from app.models.person import Person
from app.models.event import Event, EventCompletion, Gift, Recurrence
from app.models.reminder_log import ReminderLog, DispatchStatus
from app.models.rate_limit import NotificationRateLimit
from app.models.health import ChannelHealth, NotificationOutage, HealthStatus
from app.models.metrics import NotificationMetric, NotificationAnalytics

__all__ = [
    "User",
    "NotificationSetting",
    "Channel",
    "Person",
    "Event",
    "EventCompletion",
    "Gift",
    "Recurrence",
    "ReminderLog",
    "DispatchStatus",
    "NotificationRateLimit",
    "ChannelHealth",
    "NotificationOutage",
    "HealthStatus",
    "NotificationMetric",
    "NotificationAnalytics",
]
