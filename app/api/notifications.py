"""Notification API routes: test sends and delivery status."""
from datetime import timedelta
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session
import logging

from app.clock import Clock, SystemClock
from app.config import settings
from app.database import get_db
from app.models.notification_setting import Channel
from app.services.analytics_service import AnalyticsService
from app.services.health_service import HealthService
from app.services.rate_limiter import RateLimiter
from app.services.reminder_service import ReminderService


logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix=f"{settings.api_prefix}/notifications", tags=["notifications"])


class TestNotificationRequest(BaseModel):
    """Body of a test notification request."""
    user_id: str
    channel: str


def get_clock() -> Clock:
    return SystemClock()


def get_reminder_service(clock: Clock = Depends(get_clock)) -> ReminderService:
    return ReminderService(clock=clock)


@router.post("/test")
def send_test_notification(
    payload: TestNotificationRequest,
    service: ReminderService = Depends(get_reminder_service)
):
    """
    Send a test notification on one channel.

    Notification errors propagate to the registered exception handlers,
    which map them to 400/429/500 responses.

    Args:
        payload: User ID and channel name
        service: Reminder service

    Returns:
        Delivery summary

    Raises:
        HTTPException: If the channel is unknown or the user does not exist
    """
    try:
        channel = Channel.parse(payload.channel)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        result = service.send_test_notification(payload.user_id, channel)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {
        "status": "sent",
        "channel": channel.value,
        "recipient": result.recipient,
        "response_time_ms": result.response_time_ms,
    }


@router.get("/status")
def notification_status(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """
    Delivery status for the dashboard.

    Returns:
        Latest health per channel, open outages, active rate limit blocks
        and the last 7 days of delivery metrics
    """
    health_service = HealthService(db, clock)
    limiter = RateLimiter(db, clock)
    today = clock.now().date()

    return {
        "health": {
            channel: snapshot.to_dict()
            for channel, snapshot in health_service.latest_snapshots().items()
        },
        "outages": [outage.to_dict() for outage in health_service.active_outages()],
        "rate_limits": [
            {
                "channel": record.channel,
                "limit_key": record.limit_key,
                "attempts": record.attempts,
                "max_allowed": record.max_allowed,
                "reset_at": record.reset_at.isoformat(),
            }
            for record in limiter.active_blocks()
        ],
        "metrics": AnalyticsService(db).channel_summary(today - timedelta(days=6), today),
    }
