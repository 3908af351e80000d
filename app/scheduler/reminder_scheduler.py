"""Reminder scheduler: runs the reminder tick every minute plus maintenance jobs."""
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
import logging

from app.database import SessionLocal
from app.services.analytics_service import AnalyticsService
from app.services.health_service import HealthService
from app.services.rate_limiter import RateLimiter
from app.services.reminder_service import ReminderService


# Configure logging
logger = logging.getLogger(__name__)


# Global scheduler instance
scheduler = BackgroundScheduler(timezone="UTC")


def check_and_send_reminders():
    """
    Run one reminder tick.

    Called by the scheduler every minute. Errors are logged and never
    propagate into the scheduler; the next tick retries whatever was not
    recorded as dispatched.
    """
    logger.info("Starting reminder tick...")

    try:
        reminder_service = ReminderService()
        summary = reminder_service.run_tick()
        logger.info(f"Reminder tick completed. {summary}")
    except Exception as e:
        logger.error(f"Error during reminder tick: {str(e)}", exc_info=True)


def cleanup_rate_limits():
    """Delete rate limit rows whose window ended a while ago."""
    db = SessionLocal()
    try:
        deleted = RateLimiter(db).cleanup_expired()
        logger.info(f"Rate limit cleanup completed. Removed {deleted} records.")
    except Exception as e:
        logger.error(f"Error during rate limit cleanup: {str(e)}", exc_info=True)
    finally:
        db.close()


def check_channel_health():
    """Test every user's enabled channels and log the unhealthy ones."""
    db = SessionLocal()
    try:
        health = HealthService(db)
        overview = health.system_overview()
        logged = health.log_unhealthy_channels()
        logger.info(
            f"Channel health check completed for {overview['active_users']} active users. "
            f"{logged} unhealthy channels."
        )
    except Exception as e:
        logger.error(f"Error during channel health check: {str(e)}", exc_info=True)
    finally:
        db.close()


def update_notification_analytics():
    """Log the system notification report for the last 30 days."""
    db = SessionLocal()
    try:
        report = AnalyticsService(db).system_analytics()
        logger.info(
            f"Notification analytics updated: {report['total_notifications']} sent, "
            f"success rate {report['success_rate']}%, by channel {report['by_channel']}"
        )
    except Exception as e:
        logger.error(f"Error during analytics update: {str(e)}", exc_info=True)
    finally:
        db.close()


def start_scheduler():
    """
    Start the reminder scheduler.

    The reminder tick runs at the start of every minute with at most one
    instance running; missed runs are coalesced into one. Rate limit
    cleanup runs hourly. Channel health checks and the analytics report
    run once a day.
    """
    scheduler.add_job(
        check_and_send_reminders,
        trigger=CronTrigger(minute="*"),
        id='reminder_tick',
        name='Reminder Tick',
        max_instances=1,
        coalesce=True,
        replace_existing=True
    )

    scheduler.add_job(
        cleanup_rate_limits,
        trigger=CronTrigger(minute=0),
        id='rate_limit_cleanup',
        name='Rate Limit Cleanup',
        max_instances=1,
        coalesce=True,
        replace_existing=True
    )

    scheduler.add_job(
        check_channel_health,
        trigger=CronTrigger(hour=3, minute=0),
        id='channel_health_check',
        name='Channel Health Check',
        max_instances=1,
        coalesce=True,
        replace_existing=True
    )

    scheduler.add_job(
        update_notification_analytics,
        trigger=CronTrigger(hour=4, minute=0),
        id='analytics_update',
        name='Analytics Update',
        max_instances=1,
        coalesce=True,
        replace_existing=True
    )

    logger.info("Reminder scheduler configured to run every minute")

    # Start the scheduler
    scheduler.start()
    logger.info("Reminder scheduler started")


def stop_scheduler():
    """
    Stop the reminder scheduler.

    Waits for a running tick so in-flight sends finish before shutdown.
    """
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Reminder scheduler stopped")
    else:
        logger.info("Reminder scheduler was not running")
