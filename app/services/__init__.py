"""Business logic services package."""
from app.services.channels import ChannelDriver, DeliveryResult, build_channel_drivers
from app.services.rate_limiter import RateLimiter, RateLimitDecision
from app.services.health_service import HealthService
from app.services.analytics_service import AnalyticsService
from app.services.reminder_service import ReminderService, TickSummary

__all__ = [
    "ChannelDriver",
    "DeliveryResult",
    "build_channel_drivers",
    "RateLimiter",
    "RateLimitDecision",
    "HealthService",
    "AnalyticsService",
    "ReminderService",
    "TickSummary"
]
