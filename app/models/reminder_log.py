"""ReminderLog model for tracking reminder dispatches."""
from sqlalchemy import Column, String, Integer, Date, DateTime, Enum, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from app.database import Base


class DispatchStatus(str, enum.Enum):
    """Outcome recorded for a dispatch."""
    SENT = "sent"
    FAILED = "failed"


class ReminderLog(Base):
    """Idempotency record for one reminder of one occurrence on one channel and day.

    A ``sent`` row stops any further reminder for the occurrence on that
    channel. A ``failed`` row (permanent failure) only blocks retries for
    the rest of the recipient's local day.
    """

    __tablename__ = "reminder_logs"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    occurrence_year = Column(Integer, nullable=False)
    occurs_on = Column(Date, nullable=False)
    channel = Column(String(20), nullable=False)
    remind_on = Column(Date, nullable=False, index=True)
    days_away = Column(Integer, nullable=False)
    status = Column(Enum(DispatchStatus), nullable=False, default=DispatchStatus.SENT, index=True)
    error = Column(Text, nullable=True)
    sent_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    # Unique constraint: one dispatch per occurrence, channel and local day
    __table_args__ = (
        UniqueConstraint('event_id', 'occurrence_year', 'channel', 'remind_on', name='uq_reminder_dispatch'),
    )

    # Relationships
    user = relationship("User", back_populates="reminder_logs")
    event = relationship("Event")

    def __repr__(self) -> str:
        return (
            f"<ReminderLog(id={self.id}, event_id={self.event_id}, channel={self.channel}, "
            f"remind_on={self.remind_on}, status={self.status})>"
        )

    def validate(self) -> None:
        """Validate reminder log data."""
        if not self.id:
            raise ValueError("ReminderLog ID is required")
        if not self.user_id:
            raise ValueError("User ID is required")
        if not self.event_id:
            raise ValueError("Event ID is required")
        if not self.channel:
            raise ValueError("Channel is required")
        if self.days_away is None or self.days_away < 0:
            raise ValueError("Days away must be non-negative")
        if self.occurs_on and self.occurrence_year != self.occurs_on.year:
            raise ValueError("Occurrence year must match the occurrence date")
