"""Notification composer.

Builds channel-specific reminder payloads from hydrated projections. The
functions here are pure: no I/O and no clock reads, so identical inputs
always produce identical payloads.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo
import json

from app.models.notification_setting import Channel
from app.services.reminder_source import EventSnapshot, RecipientSnapshot


REMINDER_TYPE = "upcoming_event_reminder"
TEST_TYPE = "test_channel"

DISCORD_ACCENT_COLOR = 0xF97316
MAIL_SUBJECT = "Upcoming event reminder"
MAIL_CLOSING = "Set aside a moment to confirm your gift or mark it complete once it is handled."


@dataclass(frozen=True)
class ReminderMessage:
    """Transport-independent message plus the channel's structured payload."""
    channel: Channel
    notification_type: str
    headline: str
    body: str
    content: Dict[str, Any] = field(default_factory=dict)
    event_id: Optional[str] = None

    def to_json(self) -> str:
        """Canonical serialization, stable across calls."""
        return json.dumps(
            {
                "channel": self.channel.value,
                "notification_type": self.notification_type,
                "headline": self.headline,
                "body": self.body,
                "content": self.content,
                "event_id": self.event_id,
            },
            sort_keys=True,
            separators=(",", ":")
        )


def time_descriptor(days_away: int) -> str:
    if days_away == 0:
        return "today"
    if days_away == 1:
        return "tomorrow"
    return f"in {days_away} days"


def urgency_label(days_away: int) -> str:
    return "soon" if days_away <= 1 else "upcoming"


def format_date(value: date) -> str:
    """Format like ``Jan 5, 2025``."""
    return f"{value.strftime('%b')} {value.day}, {value.year}"


def format_budget(budget: Optional[Decimal]) -> str:
    if not budget:
        return "not set"
    return f"${Decimal(budget):,.2f}"


def headline(event: EventSnapshot, days_away: int) -> str:
    return f"{event.display_name} for {event.person_name} is {time_descriptor(days_away)}"


def body(event: EventSnapshot, occurs_on: date) -> str:
    return f"Happening on {format_date(occurs_on)}. Budget: {format_budget(event.budget)}"


def compose(
    event: EventSnapshot,
    occurs_on: date,
    recipient: RecipientSnapshot,
    channel: Channel,
    days_away: int
) -> ReminderMessage:
    """
    Build the reminder payload for one event occurrence on one channel.

    Args:
        event: Hydrated event projection
        occurs_on: Occurrence date being reminded about
        recipient: Hydrated recipient projection
        channel: Target channel
        days_away: Days between the recipient's local date and the occurrence

    Returns:
        ReminderMessage with the channel-specific ``content``
    """
    if days_away < 0:
        raise ValueError("days_away must be non-negative")

    title = headline(event, days_away)
    text = body(event, occurs_on)
    builder = _BUILDERS[Channel(channel)]
    content = builder(event, occurs_on, recipient, days_away, title, text)

    return ReminderMessage(
        channel=Channel(channel),
        notification_type=REMINDER_TYPE,
        headline=title,
        body=text,
        content=content,
        event_id=event.id
    )


def _mail_content(event, occurs_on, recipient, days_away, title, text) -> Dict[str, Any]:
    return {
        "subject": MAIL_SUBJECT,
        "greeting": f"Hi {recipient.name}!",
        "lines": [title, text, MAIL_CLOSING],
    }


def _slack_content(event, occurs_on, recipient, days_away, title, text) -> Dict[str, Any]:
    return {
        "text": title,
        "blocks": [
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": f"*{event.display_name}* for {event.person_name}",
                },
                "fields": [
                    {"type": "mrkdwn", "text": f"*When:*\n{format_date(occurs_on)}"},
                    {"type": "mrkdwn", "text": f"*Status:*\n{urgency_label(days_away).capitalize()}"},
                    {"type": "mrkdwn", "text": f"*Days Away:*\n{days_away}"},
                ],
            }
        ],
    }


def _discord_content(event, occurs_on, recipient, days_away, title, text) -> Dict[str, Any]:
    # Occurrence midnight in the recipient's zone
    timestamp = datetime.combine(occurs_on, time.min, tzinfo=ZoneInfo(recipient.timezone))
    return {
        "content": title,
        "embeds": [
            {
                "title": f"{event.display_name} for {event.person_name}",
                "description": text,
                "timestamp": timestamp.isoformat(),
                "color": DISCORD_ACCENT_COLOR,
            }
        ],
    }


def _push_content(event, occurs_on, recipient, days_away, title, text) -> Dict[str, Any]:
    return {
        "title": title,
        "body": text,
        "event_id": event.id,
        "occurs_on": occurs_on.isoformat(),
        "person": event.person_name,
        "event_type": event.display_name,
        "urgency": urgency_label(days_away),
    }


_BUILDERS = {
    Channel.MAIL: _mail_content,
    Channel.SLACK: _slack_content,
    Channel.DISCORD: _discord_content,
    Channel.PUSH: _push_content,
}


def compose_test_message(recipient: RecipientSnapshot, channel: Channel, sent_at: datetime) -> ReminderMessage:
    """Message used to check a channel's configuration on demand."""
    channel = Channel(channel)
    title = "Test notification"
    text = f"Your {channel.value} channel is configured correctly."
    stamp = sent_at.isoformat()

    if channel == Channel.MAIL:
        content = {"subject": title, "greeting": f"Hi {recipient.name}!", "lines": [text]}
    elif channel == Channel.SLACK:
        content = {"text": f"{title}: {text}"}
    elif channel == Channel.DISCORD:
        content = {
            "content": title,
            "embeds": [{"title": title, "description": text, "timestamp": stamp, "color": DISCORD_ACCENT_COLOR}],
        }
    else:
        content = {"title": title, "body": text, "sent_at": stamp}

    return ReminderMessage(
        channel=channel,
        notification_type=TEST_TYPE,
        headline=title,
        body=text,
        content=content
    )
