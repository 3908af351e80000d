"""User model for reminder recipients."""
from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging

from app.database import Base


logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "UTC"


def is_valid_timezone(name: str) -> bool:
    """Check whether a name is a known IANA zone identifier."""
    if not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return False
    return True


class User(Base):
    """User model representing the owner of people, events and reminders."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=True, index=True)
    timezone = Column(String(64), nullable=False, default=DEFAULT_TIMEZONE)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    people = relationship("Person", back_populates="user", cascade="all, delete-orphan")
    notification_setting = relationship(
        "NotificationSetting", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    reminder_logs = relationship("ReminderLog", back_populates="user")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, name={self.name}, timezone={self.timezone})>"

    def get_timezone(self) -> ZoneInfo:
        """Resolve the user's zone, falling back to UTC when unset or unknown."""
        if self.timezone and is_valid_timezone(self.timezone):
            return ZoneInfo(self.timezone)
        if self.timezone:
            logger.warning(f"Unknown timezone '{self.timezone}' for user {self.id}, using UTC")
        return ZoneInfo(DEFAULT_TIMEZONE)

    def validate(self) -> None:
        """Validate user data."""
        if not self.id:
            raise ValueError("User ID is required")
        if not self.name:
            raise ValueError("Name is required")
        if self.timezone and not is_valid_timezone(self.timezone):
            raise ValueError(f"Unknown timezone: {self.timezone}")
        if self.email and "@" not in self.email:
            raise ValueError("Email address is invalid")
