"""Per-user notification preferences."""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from datetime import datetime, time
from typing import List, Optional
import enum

from app.database import Base


class Channel(str, enum.Enum):
    """Delivery channels supported by the reminder core."""
    MAIL = "mail"
    SLACK = "slack"
    DISCORD = "discord"
    PUSH = "push"

    @classmethod
    def parse(cls, value: str) -> "Channel":
        """Parse a channel name, raising ValueError for unknown channels."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unsupported notification channel: {value}")


def channel_name(channel) -> str:
    """Plain string name of a channel given as enum or string."""
    return channel.value if isinstance(channel, Channel) else str(channel)


def parse_send_time(value: str) -> time:
    """Parse an ``HH:MM`` string into a time of day."""
    try:
        hour, minute = (int(part) for part in value.split(":", 1))
        return time(hour=hour, minute=minute)
    except (AttributeError, TypeError, ValueError):
        raise ValueError(f"Send time must be HH:MM, got {value!r}")


class NotificationSetting(Base):
    """Channel preferences, send time and lead time for one user."""

    __tablename__ = "notification_settings"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, unique=True, index=True)
    channels = Column(JSON, nullable=True)
    remind_at = Column(String(5), nullable=True)
    lead_time_days = Column(Integer, nullable=True)
    slack_webhook = Column(String(500), nullable=True)
    discord_webhook = Column(String(500), nullable=True)
    push_endpoint = Column(String(500), nullable=True)
    push_token = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="notification_setting")

    def __repr__(self) -> str:
        return f"<NotificationSetting(user_id={self.user_id}, channels={self.channels})>"

    def resolved_channels(self, default_channels: List[str]) -> List[Channel]:
        """Enabled channels, or the configured defaults when the user chose none.

        Unknown names are dropped; order and uniqueness are preserved.
        """
        names = self.channels if self.channels is not None else default_channels
        resolved = []
        for name in names or []:
            try:
                channel = Channel.parse(name)
            except ValueError:
                continue
            if channel not in resolved:
                resolved.append(channel)
        return resolved

    def send_time(self, default: str) -> time:
        return parse_send_time(self.remind_at or default)

    def validate(self) -> None:
        """Validate notification setting data."""
        if not self.id:
            raise ValueError("Notification setting ID is required")
        if not self.user_id:
            raise ValueError("User ID is required")
        if self.remind_at:
            parse_send_time(self.remind_at)
        if self.lead_time_days is not None and self.lead_time_days < 0:
            raise ValueError("Lead time days must be non-negative")
        for name in self.channels or []:
            Channel.parse(name)
