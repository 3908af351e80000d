"""Daily delivery metrics, analytics counters and notification reports."""
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
import logging
import uuid

from dateutil.relativedelta import relativedelta
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.clock import Clock, SystemClock, as_naive_utc
from app.config import Settings, settings as app_settings
from app.models.metrics import NotificationAnalytics, NotificationMetric
from app.models.notification_setting import Channel, NotificationSetting, channel_name
from app.models.reminder_log import DispatchStatus, ReminderLog
from app.models.user import User
from app.services.composer import REMINDER_TYPE
from app.services.locks import channel_lock


logger = logging.getLogger(__name__)

DEFAULT_PERIOD_DAYS = 30
TOP_USERS_LIMIT = 10
CHANNEL_ORDER = [channel.value for channel in Channel]


def calculate_change(current: float, previous: float) -> float:
    """Percentage change from ``previous`` to ``current``; 100 when growing from zero."""
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


class AnalyticsService:
    """
    Delivery outcomes folded into per-day rows, and reports over the
    dispatch records for a user or the whole system.
    """

    def __init__(self, db: Session, clock: Optional[Clock] = None, config: Optional[Settings] = None):
        self.db = db
        self.clock = clock or SystemClock()
        self.config = config or app_settings

    def record_outcome(
        self,
        channel: str,
        day: date,
        delivered: bool,
        response_time_ms: Optional[int] = None,
        notification_type: str = REMINDER_TYPE
    ) -> None:
        """
        Fold one delivery outcome into the channel's metric and analytics rows.

        Args:
            channel: Channel name
            day: Day the outcome is counted on
            delivered: True for a successful delivery
            response_time_ms: Send duration, averaged over successes
            notification_type: Notification type for the analytics row
        """
        channel = channel_name(channel)
        with channel_lock("analytics", channel):
            try:
                self._apply(channel, day, delivered, response_time_ms, notification_type)
            except IntegrityError:
                # Row for the day created concurrently by another process
                self.db.rollback()
                self._apply(channel, day, delivered, response_time_ms, notification_type)

    def _apply(self, channel, day, delivered, response_time_ms, notification_type) -> None:
        metric = (
            self.db.query(NotificationMetric)
            .filter(NotificationMetric.channel == channel, NotificationMetric.date == day)
            .with_for_update()
            .first()
        )
        if metric is None:
            metric = NotificationMetric(
                id=str(uuid.uuid4()),
                channel=channel,
                date=day,
                sent_count=0,
                failed_count=0,
                success_rate=0.0
            )
            self.db.add(metric)
        metric.add_outcome(delivered, response_time_ms)

        analytics = (
            self.db.query(NotificationAnalytics)
            .filter(
                NotificationAnalytics.channel == channel,
                NotificationAnalytics.notification_type == notification_type,
                NotificationAnalytics.date == day
            )
            .with_for_update()
            .first()
        )
        if analytics is None:
            analytics = NotificationAnalytics(
                id=str(uuid.uuid4()),
                channel=channel,
                notification_type=notification_type,
                date=day,
                sent_count=0,
                delivered_count=0,
                failed_count=0,
                read_count=0,
                click_count=0
            )
            self.db.add(analytics)

        if delivered:
            analytics.sent_count += 1
            analytics.delivered_count += 1
        else:
            analytics.failed_count += 1

        self.db.commit()

    def channel_summary(self, start: date, end: date) -> Dict[str, Dict[str, Any]]:
        """
        Per-channel totals for the inclusive date range.

        Returns:
            Mapping of channel to sent, failed, success_rate and
            avg_response_time
        """
        rows = (
            self.db.query(
                NotificationMetric.channel,
                func.sum(NotificationMetric.sent_count),
                func.sum(NotificationMetric.failed_count),
                func.avg(NotificationMetric.avg_response_time)
            )
            .filter(NotificationMetric.date >= start, NotificationMetric.date <= end)
            .group_by(NotificationMetric.channel)
            .all()
        )

        summary = {}
        for channel, sent, failed, avg_response in rows:
            sent = int(sent or 0)
            failed = int(failed or 0)
            total = sent + failed
            summary[channel] = {
                "sent": sent,
                "failed": failed,
                "success_rate": round(sent / total * 100, 2) if total else 0.0,
                "avg_response_time": round(float(avg_response), 2) if avg_response is not None else None,
            }
        return summary

    def user_analytics(
        self,
        user: User,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Report on the reminders dispatched to one user.

        Args:
            user: Recipient
            start: Start of the period; 30 days before ``end`` when omitted
            end: End of the period; now when omitted

        Returns:
            Dict with totals, per-channel and per-day counts, success rate,
            average per day, most active day and channel preferences
        """
        start, end = self._period(start, end)
        records = self._records(start, end, ReminderLog.user_id == user.id)
        sent = [record for record in records if record.status == DispatchStatus.SENT]
        by_day = self._daily_breakdown(sent)

        return {
            "user_id": user.id,
            "period": {"start": start.isoformat(), "end": end.isoformat()},
            "total_notifications": len(sent),
            "by_channel": self._channel_breakdown(sent),
            "by_day": by_day,
            "success_rate": self._success_rate(records),
            "average_per_day": self._average_per_day(len(sent), start, end),
            "most_active_day": max(by_day, key=by_day.get) if by_day else None,
            "channel_preferences": self._channel_preferences(user),
        }

    def system_analytics(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Report on every reminder dispatched in the period.

        Returns:
            Dict with the user report's totals plus user counts, average
            per user, top users, channel distribution and a zero-filled
            daily growth trend
        """
        start, end = self._period(start, end)
        records = self._records(start, end)
        sent = [record for record in records if record.status == DispatchStatus.SENT]

        total_users = self.db.query(func.count(User.id)).scalar() or 0
        active_users = self.db.query(func.count(func.distinct(NotificationSetting.user_id))).scalar() or 0

        return {
            "period": {"start": start.isoformat(), "end": end.isoformat()},
            "total_notifications": len(sent),
            "total_users": total_users,
            "active_users": active_users,
            "by_channel": self._channel_breakdown(sent),
            "by_day": self._daily_breakdown(sent),
            "success_rate": self._success_rate(records),
            "average_per_user": len(sent) / max(1, total_users),
            "average_per_day": self._average_per_day(len(sent), start, end),
            "top_users": dict(Counter(record.user_id for record in sent).most_common(TOP_USERS_LIMIT)),
            "channel_distribution": self._channel_distribution(),
            "growth_trend": self._growth_trend(sent, start, end),
        }

    def comparative_analytics(
        self,
        current_start: datetime,
        current_end: datetime,
        previous_start: datetime,
        previous_end: datetime
    ) -> Dict[str, Any]:
        """System reports for two periods and the percentage change between them."""
        current = self.system_analytics(current_start, current_end)
        previous = self.system_analytics(previous_start, previous_end)

        return {
            "period1": current,
            "period2": previous,
            "changes": {
                key: calculate_change(current[key], previous[key])
                for key in ("total_notifications", "active_users", "average_per_day")
            },
        }

    def time_based_stats(self, period: str) -> Dict[str, Any]:
        """System report for ``today``, ``week``, ``month`` or ``year``; 30 days otherwise."""
        end = self.clock.now()
        if period == "today":
            start = end.replace(hour=0, minute=0, second=0, microsecond=0)
        elif period == "week":
            start = end - timedelta(weeks=1)
        elif period == "month":
            start = end - relativedelta(months=1)
        elif period == "year":
            start = end - relativedelta(years=1)
        else:
            start = end - timedelta(days=DEFAULT_PERIOD_DAYS)
        return self.system_analytics(start, end)

    def _period(self, start: Optional[datetime], end: Optional[datetime]):
        end = end or self.clock.now()
        start = start or end - timedelta(days=DEFAULT_PERIOD_DAYS)
        return start, end

    def _records(self, start: datetime, end: datetime, *criteria) -> List[ReminderLog]:
        return (
            self.db.query(ReminderLog)
            .filter(
                ReminderLog.sent_at >= as_naive_utc(start),
                ReminderLog.sent_at <= as_naive_utc(end),
                *criteria
            )
            .order_by(ReminderLog.sent_at)
            .all()
        )

    @staticmethod
    def _channel_breakdown(records: List[ReminderLog]) -> Dict[str, int]:
        counts = Counter(record.channel for record in records)
        ordered = {channel: counts[channel] for channel in CHANNEL_ORDER if channel in counts}
        for channel, count in counts.items():
            ordered.setdefault(channel, count)
        return ordered

    @staticmethod
    def _daily_breakdown(records: List[ReminderLog]) -> Dict[str, int]:
        counts = Counter(record.sent_at.date().isoformat() for record in records)
        return dict(sorted(counts.items()))

    @staticmethod
    def _success_rate(records: List[ReminderLog]) -> float:
        if not records:
            return 0.0
        sent = sum(1 for record in records if record.status == DispatchStatus.SENT)
        return round(sent / len(records) * 100, 2)

    @staticmethod
    def _average_per_day(count: int, start: datetime, end: datetime) -> float:
        days = (as_naive_utc(end) - as_naive_utc(start)).days
        if days <= 0:
            return 0.0
        return count / days

    def _channel_preferences(self, user: User) -> Dict[str, Any]:
        setting = user.notification_setting
        channels = setting.resolved_channels(self.config.reminder_default_channels) if setting else []
        preferences: Dict[str, Any] = {"enabled_channels": [channel.value for channel in channels]}
        for channel in Channel:
            preferences[f"has_{channel.value}"] = channel in channels
        return preferences

    def _channel_distribution(self) -> Dict[str, int]:
        """Number of users with each channel enabled."""
        distribution = {channel: 0 for channel in CHANNEL_ORDER}
        for setting in self.db.query(NotificationSetting).yield_per(200):
            for channel in setting.resolved_channels(self.config.reminder_default_channels):
                distribution[channel.value] += 1
        return distribution

    @staticmethod
    def _growth_trend(records: List[ReminderLog], start: datetime, end: datetime) -> Dict[str, int]:
        counts = Counter(record.sent_at.date() for record in records)
        trend = {}
        day, last = as_naive_utc(start).date(), as_naive_utc(end).date()
        while day <= last:
            trend[day.isoformat()] = counts.get(day, 0)
            day += timedelta(days=1)
        return trend
