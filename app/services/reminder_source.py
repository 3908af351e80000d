"""Read-only projections consumed by the reminder core.

The scheduler and composer never traverse ORM relationships themselves.
A ``ReminderSource`` hydrates everything they need into frozen value
objects, computed against each recipient's local date.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Tuple
import logging

from sqlalchemy.orm import Session, selectinload

from app.config import Settings, settings as app_settings
from app.clock import ensure_utc
from app.models.user import User
from app.models.person import Person
from app.models.event import Event
from app.models.notification_setting import Channel, NotificationSetting, parse_send_time


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecipientSnapshot:
    id: str
    name: str
    email: Optional[str]
    timezone: str


@dataclass(frozen=True)
class ChannelTarget:
    """Where a channel delivers: an e-mail address or an endpoint URL (+ token)."""
    address: str
    token: Optional[str] = None


@dataclass(frozen=True)
class EventSnapshot:
    id: str
    person_name: str
    event_type: str
    display_name: str
    budget: Optional[Decimal]
    occurs_on: date
    completed: bool

    @property
    def occurrence_year(self) -> int:
        return self.occurs_on.year


@dataclass(frozen=True)
class ReminderContext:
    """Everything needed to decide and compose one user's reminders."""
    recipient: RecipientSnapshot
    local_now: datetime
    send_time: time
    lead_time_days: int
    targets: Dict[Channel, ChannelTarget] = field(default_factory=dict)
    events: Tuple[EventSnapshot, ...] = ()

    @property
    def local_date(self) -> date:
        return self.local_now.date()


class ReminderSource:
    """Provider of hydrated reminder contexts."""

    def contexts(self, now: datetime) -> Iterator[ReminderContext]:
        raise NotImplementedError

    def recipient_context(self, user_id: str, now: datetime) -> Optional[ReminderContext]:
        raise NotImplementedError


class SqlReminderSource(ReminderSource):
    """Builds reminder contexts from the relational store."""

    def __init__(self, db: Session, config: Optional[Settings] = None):
        self.db = db
        self.config = config or app_settings

    def contexts(self, now: datetime) -> Iterator[ReminderContext]:
        """Yield a context for every user with at least one usable channel."""
        users = self.db.query(User).options(selectinload(User.notification_setting)).order_by(User.id).all()
        for user in users:
            try:
                context = self._build_context(user, now)
            except Exception:
                logger.exception(f"Skipping reminders for user {user.id}, could not build context")
                continue
            if context is not None:
                yield context

    def recipient_context(self, user_id: str, now: datetime) -> Optional[ReminderContext]:
        user = self.db.query(User).filter(User.id == user_id).first()
        if user is None:
            return None
        return self._build_context(user, now, include_events=False, require_targets=False)

    def _build_context(
        self,
        user: User,
        now: datetime,
        include_events: bool = True,
        require_targets: bool = True
    ) -> Optional[ReminderContext]:
        setting = user.notification_setting or NotificationSetting(user_id=user.id)
        targets = self.channel_targets(user, setting)
        if require_targets and not targets:
            return None

        zone = user.get_timezone()
        local_now = ensure_utc(now).astimezone(zone)

        try:
            send_time = setting.send_time(self.config.reminder_send_time)
        except ValueError:
            logger.warning(f"Invalid send time for user {user.id}, using default")
            send_time = parse_send_time(self.config.reminder_send_time)

        lead_time = setting.lead_time_days
        if lead_time is None:
            lead_time = self.config.reminder_lead_time_days

        events = self._event_snapshots(user, local_now.date()) if include_events else []

        return ReminderContext(
            recipient=RecipientSnapshot(
                id=user.id,
                name=user.name,
                email=user.email,
                timezone=zone.key
            ),
            local_now=local_now,
            send_time=send_time,
            lead_time_days=lead_time,
            targets=targets,
            events=tuple(events)
        )

    def channel_targets(self, user: User, setting: NotificationSetting) -> Dict[Channel, ChannelTarget]:
        """Resolve each enabled channel to a delivery target; unconfigured channels drop out."""
        targets: Dict[Channel, ChannelTarget] = {}
        for channel in setting.resolved_channels(self.config.reminder_default_channels):
            target = self.channel_target(user, setting, channel)
            if target is not None:
                targets[channel] = target
        return targets

    def channel_target(self, user: User, setting: NotificationSetting, channel: Channel) -> Optional[ChannelTarget]:
        """Target for one channel whether or not the user enabled it; None when unconfigured."""
        if channel == Channel.MAIL:
            if self.config.reminder_mail_enabled and user.email:
                return ChannelTarget(address=user.email)
        elif channel == Channel.SLACK:
            url = setting.slack_webhook or self.config.reminder_slack_webhook
            if url:
                return ChannelTarget(address=url)
        elif channel == Channel.DISCORD:
            url = setting.discord_webhook or self.config.reminder_discord_webhook
            if url:
                return ChannelTarget(address=url)
        elif channel == Channel.PUSH:
            endpoint = setting.push_endpoint or self.config.reminder_push_endpoint
            if endpoint:
                token = setting.push_token or self.config.reminder_push_token
                return ChannelTarget(address=endpoint, token=token)
        return None

    def _event_snapshots(self, user: User, today: date) -> List[EventSnapshot]:
        events = (
            self.db.query(Event)
            .join(Person, Event.person_id == Person.id)
            .filter(Person.user_id == user.id)
            .options(
                selectinload(Event.person),
                selectinload(Event.completions)
            )
            .order_by(Event.id)
            .all()
        )

        snapshots = []
        for event in events:
            occurs_on = event.next_occurrence(today)
            if occurs_on is None:
                continue
            snapshots.append(EventSnapshot(
                id=event.id,
                person_name=event.person.name,
                event_type=event.event_type,
                display_name=event.display_name(today),
                budget=event.budget,
                occurs_on=occurs_on,
                completed=event.is_completed_for_year(occurs_on.year)
            ))
        return snapshots
