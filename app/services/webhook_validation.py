"""Validation of delivery targets and payloads before any network call."""
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse
import re

from app.exceptions import WebhookValidationError
from app.models.notification_setting import Channel


WEBHOOK_URL_RULES = {
    Channel.SLACK: re.compile(r"^https://hooks\.slack\.(com|test)/services/[a-zA-Z0-9/_-]+$"),
    Channel.DISCORD: re.compile(r"^https://discord\.com/api/webhooks/\d+/[a-zA-Z0-9_-]+$"),
}

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

REQUIRED_CONTENT_KEYS = {
    Channel.MAIL: ("subject", "lines"),
    Channel.SLACK: ("text",),
    Channel.DISCORD: ("content",),
    Channel.PUSH: ("title", "body"),
}


def sanitize_webhook_url(url: str) -> str:
    """Strip the trailing slash and mask the secret path for logging."""
    url = (url or "").rstrip("/")
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return url
    segments = parsed.path.split("/")
    if len(segments) > 2:
        segments[-1] = "***"
    return f"{parsed.scheme}://{parsed.netloc}{'/'.join(segments)}"


def mask_email(email: str) -> str:
    """Show only the domain of an address, e.g. ``***@example.com``."""
    if not email or "@" not in email:
        return "***"
    return f"***@{email.rsplit('@', 1)[1]}"


def webhook_url_errors(url: Optional[str], channel: Channel) -> List[str]:
    """List the problems with a webhook URL for a channel; empty when valid."""
    if not url:
        return ["url is required"]

    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return ["url must be a valid http(s) URL"]

    rule = WEBHOOK_URL_RULES.get(channel)
    if rule is not None and not rule.match(url):
        return [f"url is not a valid {channel.value} webhook URL"]
    return []


def validate_webhook_url(url: Optional[str], channel: Channel) -> None:
    errors = webhook_url_errors(url, channel)
    if errors:
        raise WebhookValidationError(f"Invalid {channel.value} webhook URL", errors)


def validate_email_address(address: Optional[str]) -> None:
    if not address:
        raise WebhookValidationError("Invalid mail recipient", ["recipient is required"])
    if not EMAIL_PATTERN.match(address):
        raise WebhookValidationError("Invalid mail recipient", ["recipient must be an email address"])


def validate_payload(channel: Channel, content: Dict[str, Any]) -> None:
    """Ensure the composed payload carries the fields the channel requires."""
    errors = []
    if not isinstance(content, dict) or not content:
        errors.append("payload is empty")
    else:
        for key in REQUIRED_CONTENT_KEYS[channel]:
            if not content.get(key):
                errors.append(f"payload.{key} is required")
    if errors:
        raise WebhookValidationError(f"Malformed {channel.value} payload", errors)
