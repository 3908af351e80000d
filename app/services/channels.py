"""Channel drivers for reminder delivery.

One driver per channel in the closed set {mail, slack, discord, push}.
Drivers validate their target and payload before touching the network,
then report a ``DeliveryResult`` that classifies any failure as transient,
permanent or rate limited. They never decide whether to retry on a later
tick; the reminder service does that from the classification.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional
import logging
import smtplib
import time

import requests

from app.config import Settings, settings as app_settings
from app.exceptions import (
    FailureKind,
    NotificationDeliveryError,
    RateLimitExceededError,
    WebhookSendError,
    WebhookValidationError,
)
from app.models.notification_setting import Channel
from app.services.composer import ReminderMessage
from app.services.reminder_source import ChannelTarget
from app.services.webhook_validation import (
    mask_email,
    sanitize_webhook_url,
    validate_email_address,
    validate_payload,
    validate_webhook_url,
)


logger = logging.getLogger(__name__)

USER_AGENT = "GiftReminder-{channel}Webhook/1.0"
DEFAULT_RETRY_AFTER = 60
CONNECTIVITY_TIMEOUT = 10
PUSH_HEAD_TIMEOUT = 5


@dataclass
class DeliveryResult:
    """Outcome of a single send."""
    ok: bool
    channel: Channel
    http_status: Optional[int] = None
    response_body: Optional[str] = None
    error_detail: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    retry_after: Optional[int] = None
    response_time_ms: Optional[int] = None
    recipient: Optional[str] = None

    @property
    def is_permanent(self) -> bool:
        return self.failure_kind == FailureKind.PERMANENT

    @property
    def is_transient(self) -> bool:
        return self.failure_kind == FailureKind.TRANSIENT

    def raise_for_failure(self, notification_type: Optional[str] = None) -> None:
        """Raise the matching notification error when the send failed."""
        if self.ok:
            return

        if self.failure_kind == FailureKind.RATE_LIMITED:
            raise RateLimitExceededError(
                f"{self.channel.value.capitalize()} rate limit exceeded",
                limit_type=f"{self.channel.value}_webhook",
                retry_after=self.retry_after or DEFAULT_RETRY_AFTER
            )

        if self.http_status:
            raise WebhookSendError(
                f"{self.channel.value.capitalize()} webhook request failed",
                response_code=self.http_status,
                response_body=self.response_body or "",
                context={"webhook": self.recipient}
            )

        raise NotificationDeliveryError(
            f"Failed to send {self.channel.value.capitalize()} notification",
            channel=self.channel.value,
            recipient=self.recipient,
            notification_type=notification_type,
            delivery_details={"error_detail": self.error_detail},
            permanent=self.is_permanent
        )


def classify_status(status_code: int) -> Optional[FailureKind]:
    """Map an HTTP status to a failure kind; None for success."""
    if 200 <= status_code < 300:
        return None
    if status_code == 429:
        return FailureKind.RATE_LIMITED
    if 400 <= status_code < 500:
        return FailureKind.PERMANENT
    return FailureKind.TRANSIENT


class ChannelDriver(ABC):
    """
    Abstract base class for channel drivers.

    ``send`` raises ``WebhookValidationError`` for malformed targets or
    payloads and otherwise returns a ``DeliveryResult``.
    """

    channel: Channel

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or app_settings

    @abstractmethod
    def validate(self, target: ChannelTarget, message: ReminderMessage) -> None:
        """Check target and payload; raise WebhookValidationError when unusable."""

    @abstractmethod
    def send(self, target: ChannelTarget, message: ReminderMessage) -> DeliveryResult:
        """Deliver a composed message to a target."""

    @abstractmethod
    def check_connectivity(self, target: ChannelTarget, message: ReminderMessage) -> bool:
        """True when the channel looks reachable for this target."""

    def describe_target(self, target: ChannelTarget) -> str:
        """Log-safe rendering of the target."""
        return sanitize_webhook_url(target.address)


class MailChannel(ChannelDriver):
    """Email delivery via SMTP."""

    channel = Channel.MAIL

    def validate(self, target: ChannelTarget, message: ReminderMessage) -> None:
        validate_email_address(target.address if target else None)
        validate_payload(self.channel, message.content)

    def describe_target(self, target: ChannelTarget) -> str:
        return mask_email(target.address)

    def build_message(self, target: ChannelTarget, message: ReminderMessage) -> MIMEMultipart:
        content = message.content
        paragraphs = [content.get("greeting", "")] + list(content.get("lines", []))
        msg = MIMEMultipart()
        msg['From'] = self.config.mail_from_address
        msg['To'] = target.address
        msg['Subject'] = content["subject"]
        msg.attach(MIMEText("\n\n".join(p for p in paragraphs if p), 'plain', 'utf-8'))
        return msg

    def send(self, target: ChannelTarget, message: ReminderMessage) -> DeliveryResult:
        self.validate(target, message)
        recipient = self.describe_target(target)
        started = time.monotonic()

        try:
            with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port, timeout=self.config.webhook_timeout) as server:
                if self.config.smtp_use_tls:
                    server.starttls()
                if self.config.smtp_username:
                    server.login(self.config.smtp_username, self.config.smtp_password or "")
                server.send_message(self.build_message(target, message))
        except smtplib.SMTPRecipientsRefused as e:
            logger.warning(f"Mail recipient {recipient} refused: {e.recipients}")
            return DeliveryResult(
                ok=False,
                channel=self.channel,
                error_detail=f"Recipient refused: {e.recipients}",
                failure_kind=FailureKind.PERMANENT,
                recipient=recipient
            )
        except smtplib.SMTPResponseException as e:
            # 5xx replies are final, 4xx may succeed later
            kind = FailureKind.PERMANENT if e.smtp_code >= 500 else FailureKind.TRANSIENT
            reply = e.smtp_error.decode(errors="replace") if isinstance(e.smtp_error, bytes) else str(e.smtp_error)
            logger.error(f"SMTP server rejected email to {recipient}: {e.smtp_code} {reply}")
            return DeliveryResult(
                ok=False,
                channel=self.channel,
                error_detail=f"SMTP {e.smtp_code}: {reply}",
                failure_kind=kind,
                recipient=recipient
            )
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {recipient}: {e}")
            return DeliveryResult(
                ok=False,
                channel=self.channel,
                error_detail=str(e),
                failure_kind=FailureKind.TRANSIENT,
                recipient=recipient
            )

        elapsed = int((time.monotonic() - started) * 1000)
        logger.info(f"Email sent to {recipient}")
        return DeliveryResult(ok=True, channel=self.channel, response_time_ms=elapsed, recipient=recipient)

    def check_connectivity(self, target: ChannelTarget, message: ReminderMessage) -> bool:
        """Mail counts as reachable when the SMTP server and credentials are configured."""
        return all([
            self.config.smtp_host,
            self.config.smtp_port,
            self.config.smtp_username,
            self.config.smtp_password,
        ])


class WebhookChannel(ChannelDriver):
    """Shared JSON-over-HTTP POST behaviour for webhook channels."""

    def validate(self, target: ChannelTarget, message: ReminderMessage) -> None:
        validate_webhook_url(target.address if target else None, self.channel)
        validate_payload(self.channel, message.content)

    def build_payload(self, message: ReminderMessage) -> Dict[str, Any]:
        return dict(message.content)

    def build_headers(self, target: ChannelTarget) -> Dict[str, str]:
        return {
            'Content-Type': 'application/json',
            'User-Agent': USER_AGENT.format(channel=self.channel.value.capitalize()),
        }

    def send(self, target: ChannelTarget, message: ReminderMessage) -> DeliveryResult:
        self.validate(target, message)
        return self._post_with_retry(target, self.build_payload(message))

    def check_connectivity(self, target: ChannelTarget, message: ReminderMessage) -> bool:
        """POST the message once; any 2xx answer means the webhook is reachable."""
        try:
            self.validate(target, message)
            response = requests.post(
                target.address,
                json=self.build_payload(message),
                headers=self.build_headers(target),
                timeout=CONNECTIVITY_TIMEOUT
            )
        except WebhookValidationError as e:
            logger.warning(f"{self.channel.value} webhook {self.describe_target(target)} is invalid: {e.validation_errors}")
            return False
        except requests.RequestException as e:
            logger.warning(f"{self.channel.value} webhook {self.describe_target(target)} unreachable: {e}")
            return False
        return 200 <= response.status_code < 300

    def _post_with_retry(self, target: ChannelTarget, payload: Dict[str, Any]) -> DeliveryResult:
        """POST the payload, retrying transient failures up to ``webhook_max_retries`` times."""
        delays: List[int] = self.config.webhook_retry_delays or [1]
        max_retries = max(0, self.config.webhook_max_retries)
        webhook = self.describe_target(target)

        result = None
        for attempt in range(max_retries + 1):
            result = self._post_once(target, payload, webhook, attempt)
            if result.ok or not result.is_transient or attempt == max_retries:
                break
            delay = delays[min(attempt, len(delays) - 1)]
            logger.info(f"Retrying {self.channel.value} webhook in {delay} seconds (attempt {attempt + 2})")
            time.sleep(delay)
        return result

    def _post_once(self, target: ChannelTarget, payload: Dict[str, Any], webhook: str, attempt: int) -> DeliveryResult:
        started = time.monotonic()
        try:
            response = requests.post(
                target.address,
                json=payload,
                headers=self.build_headers(target),
                timeout=self.config.webhook_timeout
            )
        except requests.Timeout as e:
            logger.warning(f"{self.channel.value} webhook {webhook} timed out (attempt {attempt + 1}): {e}")
            return DeliveryResult(
                ok=False,
                channel=self.channel,
                error_detail=f"Timed out after {self.config.webhook_timeout}s",
                failure_kind=FailureKind.TRANSIENT,
                recipient=webhook
            )
        except requests.RequestException as e:
            logger.warning(f"{self.channel.value} webhook {webhook} send failed (attempt {attempt + 1}): {e}")
            return DeliveryResult(
                ok=False,
                channel=self.channel,
                error_detail=str(e),
                failure_kind=FailureKind.TRANSIENT,
                recipient=webhook
            )

        elapsed = int((time.monotonic() - started) * 1000)
        kind = classify_status(response.status_code)

        if kind is None:
            logger.info(
                f"{self.channel.value} webhook notification sent to {webhook} "
                f"(status {response.status_code}, attempt {attempt + 1})"
            )
            return DeliveryResult(
                ok=True,
                channel=self.channel,
                http_status=response.status_code,
                response_time_ms=elapsed,
                recipient=webhook
            )

        retry_after = None
        if kind == FailureKind.RATE_LIMITED:
            try:
                retry_after = int(response.headers.get('Retry-After', DEFAULT_RETRY_AFTER))
            except (TypeError, ValueError):
                retry_after = DEFAULT_RETRY_AFTER

        logger.warning(
            f"{self.channel.value} webhook request to {webhook} failed: "
            f"status {response.status_code}, body {response.text[:500]!r}"
        )
        return DeliveryResult(
            ok=False,
            channel=self.channel,
            http_status=response.status_code,
            response_body=response.text,
            error_detail=f"HTTP {response.status_code}",
            failure_kind=kind,
            retry_after=retry_after,
            response_time_ms=elapsed,
            recipient=webhook
        )


class SlackWebhookChannel(WebhookChannel):
    """Slack incoming-webhook delivery."""

    channel = Channel.SLACK


class DiscordWebhookChannel(WebhookChannel):
    """Discord webhook delivery."""

    channel = Channel.DISCORD


class PushWebhookChannel(WebhookChannel):
    """Generic push gateway delivery with optional bearer token."""

    channel = Channel.PUSH

    def build_headers(self, target: ChannelTarget) -> Dict[str, str]:
        headers = super().build_headers(target)
        if target.token:
            headers['Authorization'] = f"Bearer {target.token}"
        return headers

    def check_connectivity(self, target: ChannelTarget, message: ReminderMessage) -> bool:
        """HEAD the push endpoint; nothing is delivered."""
        try:
            validate_webhook_url(target.address if target else None, self.channel)
            response = requests.head(target.address, headers=self.build_headers(target), timeout=PUSH_HEAD_TIMEOUT)
        except WebhookValidationError as e:
            logger.warning(f"Push endpoint {self.describe_target(target)} is invalid: {e.validation_errors}")
            return False
        except requests.RequestException as e:
            logger.warning(f"Push endpoint {self.describe_target(target)} unreachable: {e}")
            return False
        return 200 <= response.status_code < 300


DRIVER_CLASSES = {
    Channel.MAIL: MailChannel,
    Channel.SLACK: SlackWebhookChannel,
    Channel.DISCORD: DiscordWebhookChannel,
    Channel.PUSH: PushWebhookChannel,
}


def build_channel_drivers(config: Optional[Settings] = None) -> Dict[Channel, ChannelDriver]:
    """Instantiate one driver per channel, keyed by channel."""
    return {channel: driver_class(config) for channel, driver_class in DRIVER_CLASSES.items()}
