"""NotificationRateLimit model for per-channel attempt counters."""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, UniqueConstraint
from datetime import datetime, timedelta
from math import ceil
from app.database import Base


class NotificationRateLimit(Base):
    """Attempt counter for one (channel, limit key) in a fixed window.

    Timestamps are naive UTC. ``is_blocked`` implies ``reset_at`` is in the
    future; an elapsed window is reset by the limiter on the next attempt.
    """

    __tablename__ = "notification_rate_limits"

    id = Column(String(36), primary_key=True)
    channel = Column(String(20), nullable=False)
    limit_key = Column(String(255), nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    max_allowed = Column(Integer, nullable=False)
    window_started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    last_attempt_at = Column(DateTime, nullable=True)
    reset_at = Column(DateTime, nullable=False, index=True)
    is_blocked = Column(Boolean, nullable=False, default=False, index=True)

    __table_args__ = (
        UniqueConstraint('channel', 'limit_key', name='uq_rate_limit_channel_key'),
    )

    def __repr__(self) -> str:
        return (
            f"<NotificationRateLimit(channel={self.channel}, key={self.limit_key}, "
            f"attempts={self.attempts}/{self.max_allowed}, blocked={self.is_blocked})>"
        )

    def is_expired(self, now: datetime) -> bool:
        return now >= self.reset_at

    def retry_after(self, now: datetime) -> int:
        """Whole seconds until the window resets, never below 1 while unexpired."""
        if self.is_expired(now):
            return 0
        return max(1, ceil((self.reset_at - now).total_seconds()))

    def restart_window(self, now: datetime, window_seconds: int, max_allowed: int) -> None:
        self.attempts = 0
        self.max_allowed = max_allowed
        self.window_started_at = now
        self.reset_at = now + timedelta(seconds=window_seconds)
        self.is_blocked = False
