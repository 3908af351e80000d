"""Event, completion and gift models."""
from sqlalchemy import (
    Column, String, Integer, Date, DateTime, Boolean, Numeric, Text, Enum, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship
from dateutil.relativedelta import relativedelta
from datetime import datetime, date
from decimal import Decimal
from typing import Optional
import enum
import uuid

from app.database import Base


class Recurrence(str, enum.Enum):
    """Recurrence mode enumeration."""
    NONE = "none"
    YEARLY = "yearly"


def ordinal(number: int) -> str:
    """Convert a number to its ordinal form (1st, 2nd, 3rd, 11th...)."""
    suffix = "th"
    if number % 100 not in (11, 12, 13):
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(number % 10, "th")
    return f"{number}{suffix}"


def yearly_occurrence(original: date, year: int) -> date:
    """The anniversary of ``original`` in ``year``; Feb 29 falls back to Feb 28."""
    return original + relativedelta(years=year - original.year)


class Event(Base):
    """Event model representing a dated occasion for a person."""

    __tablename__ = "events"

    id = Column(String(36), primary_key=True)
    person_id = Column(String(36), ForeignKey("people.id"), nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    recurrence = Column(Enum(Recurrence), nullable=False, default=Recurrence.YEARLY)
    date = Column(Date, nullable=False)
    budget = Column(Numeric(10, 2), nullable=True)
    notes = Column(Text, nullable=True)
    show_milestone = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    person = relationship("Person", back_populates="events")
    completions = relationship("EventCompletion", back_populates="event", cascade="all, delete-orphan")
    gifts = relationship("Gift", back_populates="event", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, type={self.event_type}, date={self.date})>"

    @property
    def is_annual(self) -> bool:
        return self.recurrence == Recurrence.YEARLY

    def next_occurrence(self, today: date) -> Optional[date]:
        """Get the next occurrence on or after ``today``.

        Non-recurring events in the past have no next occurrence.
        """
        if not self.is_annual:
            return self.date if self.date >= today else None

        this_year = yearly_occurrence(self.date, today.year)
        if this_year >= today:
            return this_year
        return yearly_occurrence(self.date, today.year + 1)

    def next_occurrence_year(self, today: date) -> Optional[int]:
        occurrence = self.next_occurrence(today)
        return occurrence.year if occurrence else None

    def milestone(self, today: date) -> Optional[int]:
        """Years since the original date at the next occurrence (38 for a 38th birthday)."""
        if not self.is_annual:
            return None
        year = self.next_occurrence_year(today)
        return year - self.date.year if year is not None else None

    def display_name(self, today: date) -> str:
        """Event type, prefixed with the milestone ordinal when enabled."""
        milestone = self.milestone(today)
        if self.show_milestone and milestone is not None and milestone > 0:
            return f"{ordinal(milestone)} {self.event_type}"
        return self.event_type

    def is_completed_for_year(self, year: int) -> bool:
        return any(completion.year == year for completion in self.completions)

    def mark_complete_for_year(self, year: int) -> "EventCompletion":
        """Mark the event handled for a year; marking twice is a no-op."""
        for completion in self.completions:
            if completion.year == year:
                return completion
        completion = EventCompletion(
            id=str(uuid.uuid4()),
            year=year,
            completed_at=datetime.utcnow()
        )
        self.completions.append(completion)
        return completion

    def unmark_complete_for_year(self, year: int) -> None:
        self.completions = [c for c in self.completions if c.year != year]

    def total_gifts_value_for_year(self, year: int) -> Decimal:
        return sum(
            (Decimal(gift.value) for gift in self.gifts if gift.year == year and gift.value is not None),
            Decimal("0")
        )

    def remaining_value_for_year(self, year: int) -> Decimal:
        """Budget left for a year; negative when gifts exceed it, zero without a budget."""
        if self.budget is None:
            return Decimal("0")
        return Decimal(self.budget) - self.total_gifts_value_for_year(year)

    def validate(self) -> None:
        """Validate event data."""
        if not self.id:
            raise ValueError("Event ID is required")
        if not self.person_id:
            raise ValueError("Person ID is required")
        if not self.event_type:
            raise ValueError("Event type is required")
        if not isinstance(self.date, date):
            raise ValueError("Event date must be a date object")
        if self.budget is not None and self.budget < 0:
            raise ValueError("Budget must be non-negative")


class EventCompletion(Base):
    """Marks an event handled for one occurrence year."""

    __tablename__ = "event_completions"

    id = Column(String(36), primary_key=True)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    year = Column(Integer, nullable=False)
    completed_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Unique constraint: one completion per event per year
    __table_args__ = (
        UniqueConstraint('event_id', 'year', name='uq_event_completion_year'),
    )

    # Relationships
    event = relationship("Event", back_populates="completions")

    def __repr__(self) -> str:
        return f"<EventCompletion(event_id={self.event_id}, year={self.year})>"


class Gift(Base):
    """Gift bought or planned for an event in a given year."""

    __tablename__ = "gifts"

    id = Column(String(36), primary_key=True)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    year = Column(Integer, nullable=False, index=True)
    title = Column(String(255), nullable=False)
    value = Column(Numeric(10, 2), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    event = relationship("Event", back_populates="gifts")

    def __repr__(self) -> str:
        return f"<Gift(id={self.id}, title={self.title}, year={self.year})>"

    def validate(self) -> None:
        """Validate gift data."""
        if not self.title:
            raise ValueError("Title is required")
        if self.value is not None and self.value < 0:
            raise ValueError("Gift value must be non-negative")
