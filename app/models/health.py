"""Channel health snapshots and outage records."""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Text, Enum
from datetime import datetime
from typing import Optional
import enum
from app.database import Base


class HealthStatus(str, enum.Enum):
    """Channel health states, ordered by severity."""
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def escalate(self) -> "HealthStatus":
        return _SEVERITY_ORDER[min(self.severity + 1, len(_SEVERITY_ORDER) - 1)]

    def recover(self) -> "HealthStatus":
        return _SEVERITY_ORDER[max(self.severity - 1, 0)]


_SEVERITY_ORDER = [HealthStatus.HEALTHY, HealthStatus.WARNING, HealthStatus.CRITICAL]


class ChannelHealth(Base):
    """Time-stamped health snapshot for a channel.

    A new row is written whenever the status changes; the latest row (highest
    ``sequence`` for the channel) also carries the running success/failure
    streaks.
    """

    __tablename__ = "channel_health"

    id = Column(String(36), primary_key=True)
    channel = Column(String(20), nullable=False, index=True)
    sequence = Column(Integer, nullable=False, default=0)
    status = Column(Enum(HealthStatus), nullable=False, default=HealthStatus.HEALTHY)
    consecutive_failures = Column(Integer, nullable=False, default=0)
    consecutive_successes = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    response_time_ms = Column(Integer, nullable=True)
    checked_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    def __repr__(self) -> str:
        return f"<ChannelHealth(channel={self.channel}, status={self.status}, checked_at={self.checked_at})>"

    def is_healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY

    def is_warning(self) -> bool:
        return self.status == HealthStatus.WARNING

    def is_critical(self) -> bool:
        return self.status == HealthStatus.CRITICAL

    def to_dict(self) -> dict:
        return {
            "channel": self.channel,
            "status": self.status.value,
            "consecutive_failures": self.consecutive_failures,
            "consecutive_successes": self.consecutive_successes,
            "last_error": self.last_error,
            "checked_at": self.checked_at.isoformat(),
        }


class NotificationOutage(Base):
    """Outage opened when a channel turns critical, resolved when it is healthy again."""

    __tablename__ = "notification_outages"

    id = Column(String(36), primary_key=True)
    channel = Column(String(20), nullable=False, index=True)
    outage_type = Column(String(50), nullable=False, default="delivery_failures")
    started_at = Column(DateTime, nullable=False, index=True)
    ended_at = Column(DateTime, nullable=True)
    description = Column(Text, nullable=True)
    is_resolved = Column(Boolean, nullable=False, default=False, index=True)

    def __repr__(self) -> str:
        return f"<NotificationOutage(channel={self.channel}, started_at={self.started_at}, resolved={self.is_resolved})>"

    def is_active(self) -> bool:
        return not self.is_resolved

    def duration_minutes(self) -> Optional[int]:
        if not self.ended_at:
            return None
        return int((self.ended_at - self.started_at).total_seconds() // 60)

    def resolve(self, now: datetime) -> None:
        self.ended_at = now
        self.is_resolved = True

    def to_dict(self) -> dict:
        return {
            "channel": self.channel,
            "outage_type": self.outage_type,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "description": self.description,
            "is_resolved": self.is_resolved,
        }
