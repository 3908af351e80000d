"""Daily delivery counters per channel."""
from sqlalchemy import Column, String, Integer, Date, Float, UniqueConstraint
from app.database import Base


class NotificationMetric(Base):
    """Per-day, per-channel delivery totals."""

    __tablename__ = "notification_metrics"

    id = Column(String(36), primary_key=True)
    channel = Column(String(20), nullable=False)
    date = Column(Date, nullable=False, index=True)
    sent_count = Column(Integer, nullable=False, default=0)
    failed_count = Column(Integer, nullable=False, default=0)
    success_rate = Column(Float, nullable=False, default=0.0)
    avg_response_time = Column(Float, nullable=True)

    __table_args__ = (
        UniqueConstraint('channel', 'date', name='uq_metric_channel_date'),
    )

    def __repr__(self) -> str:
        return f"<NotificationMetric(channel={self.channel}, date={self.date}, sent={self.sent_count})>"

    def add_outcome(self, delivered: bool, response_time_ms=None) -> None:
        """Fold one delivery outcome into the totals."""
        if delivered:
            if response_time_ms is not None:
                previous = (self.avg_response_time or 0.0) * self.sent_count
                self.avg_response_time = (previous + response_time_ms) / (self.sent_count + 1)
            self.sent_count += 1
        else:
            self.failed_count += 1
        total = self.sent_count + self.failed_count
        self.success_rate = round(self.sent_count / total * 100, 2) if total else 0.0


class NotificationAnalytics(Base):
    """Per-day funnel counters for a channel and notification type."""

    __tablename__ = "notification_analytics"

    id = Column(String(36), primary_key=True)
    channel = Column(String(20), nullable=False)
    notification_type = Column(String(50), nullable=False)
    date = Column(Date, nullable=False, index=True)
    sent_count = Column(Integer, nullable=False, default=0)
    delivered_count = Column(Integer, nullable=False, default=0)
    failed_count = Column(Integer, nullable=False, default=0)
    read_count = Column(Integer, nullable=False, default=0)
    click_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint('channel', 'notification_type', 'date', name='uq_analytics_channel_type_date'),
    )

    def __repr__(self) -> str:
        return (
            f"<NotificationAnalytics(channel={self.channel}, type={self.notification_type}, "
            f"date={self.date})>"
        )

    @property
    def delivery_rate(self) -> float:
        if not self.sent_count:
            return 0.0
        return round(self.delivered_count / self.sent_count * 100, 2)
