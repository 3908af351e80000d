"""Pytest configuration and fixtures for tests."""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from app.database import Base
from app.clock import FrozenClock
from app.config import Settings
from app.models.user import User
from app.models.person import Person
from app.models.event import Event, Recurrence
from app.models.notification_setting import NotificationSetting
from app.models.reminder_log import DispatchStatus, ReminderLog
from app.services.channels import ChannelDriver, DeliveryResult
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Generator, Optional
from contextlib import contextmanager
import uuid


def _create_test_engine():
    # One shared in-memory database for every session the services open
    return create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )


@pytest.fixture(scope="function")
def session_factory():
    """
    Session factory bound to a fresh in-memory SQLite database.
    """
    engine = _create_test_engine()
    Base.metadata.create_all(bind=engine)

    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def test_db(session_factory) -> Generator[Session, None, None]:
    """
    Create a test database session for each test.
    Uses an in-memory SQLite database for fast testing.
    """
    session = session_factory()

    try:
        yield session
    finally:
        session.close()


@contextmanager
def get_test_session_factory():
    """
    Context manager for creating test session factories.
    Used for property-based tests where fixtures don't work well.
    """
    engine = _create_test_engine()
    Base.metadata.create_all(bind=engine)

    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@contextmanager
def get_test_db_session():
    """
    Context manager for creating test database sessions.
    Used for property-based tests where fixtures don't work well.
    """
    with get_test_session_factory() as factory:
        session = factory()
        try:
            yield session
        finally:
            session.close()


def make_settings(**overrides) -> Settings:
    """Settings for tests: inline dispatch, no retries, mail on by default."""
    values = {
        "database_url": "sqlite://",
        "scheduler_pool_size": 1,
        "webhook_max_retries": 0,
        "reminder_default_channels": ["mail"],
        "reminder_mail_enabled": True,
        "reminder_slack_webhook": None,
        "reminder_discord_webhook": None,
        "reminder_push_endpoint": None,
        "reminder_push_token": None,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()


@pytest.fixture
def frozen_clock() -> FrozenClock:
    return FrozenClock(datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc))


def make_user(
    db: Session,
    name: str = "Jordan",
    email: Optional[str] = None,
    tz: str = "UTC",
    channels=None,
    remind_at: Optional[str] = None,
    lead_time_days: Optional[int] = None,
    **endpoints
) -> User:
    """Create a user with notification settings."""
    user_id = str(uuid.uuid4())
    user = User(
        id=user_id,
        name=name,
        email=email or f"{user_id[:8]}@example.com",
        timezone=tz
    )
    db.add(user)
    db.add(NotificationSetting(
        id=str(uuid.uuid4()),
        user_id=user_id,
        channels=channels,
        remind_at=remind_at,
        lead_time_days=lead_time_days,
        **endpoints
    ))
    db.commit()
    return user


def make_event(
    db: Session,
    user: User,
    event_date: date,
    event_type: str = "Birthday",
    person_name: str = "Alex",
    recurrence: Recurrence = Recurrence.YEARLY,
    budget: Optional[Decimal] = None,
    show_milestone: bool = False
) -> Event:
    """Create a person and one event for them."""
    person = Person(id=str(uuid.uuid4()), user_id=user.id, name=person_name)
    db.add(person)
    event = Event(
        id=str(uuid.uuid4()),
        person_id=person.id,
        event_type=event_type,
        recurrence=recurrence,
        date=event_date,
        budget=budget,
        show_milestone=show_milestone
    )
    db.add(event)
    db.commit()
    return event


def make_reminder_log(
    db: Session,
    user: User,
    event: Event,
    sent_at: datetime,
    channel: str = "mail",
    status: DispatchStatus = DispatchStatus.SENT,
    error: Optional[str] = None
) -> ReminderLog:
    """Record one dispatch of ``event`` on ``channel`` at naive UTC ``sent_at``."""
    reminder_log = ReminderLog(
        id=str(uuid.uuid4()),
        user_id=user.id,
        event_id=event.id,
        occurrence_year=sent_at.year,
        occurs_on=sent_at.date(),
        channel=channel,
        remind_on=sent_at.date(),
        days_away=0,
        status=status,
        error=error,
        sent_at=sent_at
    )
    db.add(reminder_log)
    db.commit()
    return reminder_log


class FakeDriver(ChannelDriver):
    """Driver that records sends and replays scripted results."""

    def __init__(self, channel, results=None, error=None, rejection=None, reachable=True):
        super().__init__(make_settings())
        self.reachable = reachable
        self.connectivity_checks = []
        self.channel = channel
        self.results = list(results or [])
        self.error = error
        self.rejection = rejection
        self.validated = 0
        self.sent = []

    def validate(self, target, message):
        self.validated += 1
        if self.rejection is not None:
            raise self.rejection

    def send(self, target, message):
        if self.error is not None:
            raise self.error
        self.sent.append((target, message))
        if self.results:
            return self.results.pop(0)
        return DeliveryResult(ok=True, channel=self.channel, response_time_ms=42, recipient=target.address)

    def check_connectivity(self, target, message):
        self.connectivity_checks.append((target, message))
        return self.reachable
