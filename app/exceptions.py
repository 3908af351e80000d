"""Custom exceptions and error handling for reminder delivery.

Each error carries its structured context (channel, recipient, response
code/body, limit counters) so the HTTP boundary never has to parse messages.
"""
from typing import Optional, Dict, Any, List
import enum


class FailureKind(str, enum.Enum):
    """How a failed delivery attempt should be treated."""
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    RATE_LIMITED = "rate_limited"
    VALIDATION = "validation"


class NotificationError(Exception):
    """Base class for notification errors with an HTTP-facing shape."""

    status_code = 500
    label = "Notification error"

    def __init__(self, message: str, error_code: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize notification error.

        Args:
            message: Contextual error message
            error_code: Machine-readable error code
            details: Optional additional error details
        """
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    @property
    def failure_kind(self) -> FailureKind:
        return FailureKind.TRANSIENT

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to dictionary format for API responses.

        Returns:
            Dictionary with error information
        """
        return {
            "message": self.label,
            "error": self.message,
        }


class NotificationDeliveryError(NotificationError):
    """Error raised when a notification could not be delivered on a channel."""

    label = "Notification delivery failed"

    def __init__(
        self,
        message: str = "Notification delivery failed",
        channel: str = "unknown",
        recipient: Optional[str] = None,
        notification_type: Optional[str] = None,
        delivery_details: Optional[Dict[str, Any]] = None,
        permanent: bool = False
    ):
        self.channel = channel
        self.recipient = recipient
        self.notification_type = notification_type
        self.delivery_details = delivery_details or {}
        self.permanent = permanent

        context_parts = []
        if channel != "unknown":
            context_parts.append(f"channel: {channel}")
        if recipient is not None:
            context_parts.append(f"recipient: {recipient}")
        if notification_type is not None:
            context_parts.append(f"type: {notification_type}")
        if context_parts:
            message = f"{message} ({', '.join(context_parts)})"

        super().__init__(
            message=message,
            error_code="NOTIFICATION_DELIVERY_FAILED",
            details={
                "channel": channel,
                "recipient": recipient,
                "notification_type": notification_type,
                **self.delivery_details
            }
        )

    @property
    def failure_kind(self) -> FailureKind:
        return FailureKind.PERMANENT if self.permanent else FailureKind.TRANSIENT

    def to_dict(self) -> Dict[str, Any]:
        return {
            **super().to_dict(),
            "channel": self.channel,
            "recipient": self.recipient,
        }


class WebhookSendError(NotificationError):
    """Error raised when a webhook endpoint rejects or fails a request.

    A response code of 0 means no HTTP response was received.
    """

    label = "Webhook delivery failed"

    def __init__(
        self,
        message: str = "Webhook send failed",
        response_code: int = 0,
        response_body: str = "",
        context: Optional[Dict[str, Any]] = None
    ):
        self.response_code = response_code
        self.response_body = response_body
        self.context = context or {}

        if response_code > 0:
            message = f"{message} (HTTP {response_code})"

        super().__init__(
            message=message,
            error_code="WEBHOOK_SEND_FAILED",
            details={
                "response_code": response_code,
                "response_body": response_body,
                **self.context
            }
        )

    @property
    def failure_kind(self) -> FailureKind:
        if 400 <= self.response_code < 500:
            return FailureKind.PERMANENT
        return FailureKind.TRANSIENT

    def to_dict(self) -> Dict[str, Any]:
        return {
            **super().to_dict(),
            "response_code": self.response_code,
            "response_body": self.response_body,
        }


class RateLimitExceededError(NotificationError):
    """Error raised when a channel's rate limit blocks a send."""

    status_code = 429
    label = "Rate limit exceeded"

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        limit_type: str = "default",
        retry_after: int = 60,
        current_count: int = 0,
        max_allowed: int = 0
    ):
        self.limit_type = limit_type
        self.retry_after = retry_after
        self.current_count = current_count
        self.max_allowed = max_allowed

        if current_count > 0 and max_allowed > 0:
            message = (
                f"{message}: {limit_type.capitalize()} limit exceeded "
                f"({current_count}/{max_allowed}). Retry after {retry_after} seconds."
            )

        super().__init__(
            message=message,
            error_code="RATE_LIMIT_EXCEEDED",
            details={
                "limit_type": limit_type,
                "retry_after": retry_after,
                "current_count": current_count,
                "max_allowed": max_allowed
            }
        )

    @property
    def failure_kind(self) -> FailureKind:
        return FailureKind.RATE_LIMITED

    def to_dict(self) -> Dict[str, Any]:
        return {
            **super().to_dict(),
            "limit_type": self.limit_type,
            "retry_after": self.retry_after,
            "current_count": self.current_count,
            "max_allowed": self.max_allowed,
        }


class WebhookValidationError(NotificationError):
    """Error raised before any network call when a target or payload is malformed."""

    status_code = 400
    label = "Webhook validation failed"

    def __init__(self, message: str = "Webhook validation failed", validation_errors: Optional[List[str]] = None):
        self.validation_errors = list(validation_errors or [])

        if self.validation_errors:
            message = f"{message}: {', '.join(self.validation_errors)}"

        super().__init__(
            message=message,
            error_code="WEBHOOK_VALIDATION_FAILED",
            details={"validation_errors": self.validation_errors}
        )

    @property
    def failure_kind(self) -> FailureKind:
        return FailureKind.VALIDATION

    def to_dict(self) -> Dict[str, Any]:
        return {
            **super().to_dict(),
            "validation_errors": self.validation_errors,
        }


def format_error_for_api(error: NotificationError) -> Dict[str, Any]:
    """
    Format notification error for API response.

    Args:
        error: Notification error to format

    Returns:
        Dictionary suitable for JSON API response
    """
    return error.to_dict()


def register_exception_handlers(app) -> None:
    """Install JSON handlers for every notification error on a FastAPI app."""
    from fastapi import Request
    from fastapi.responses import JSONResponse

    async def handle_notification_error(request: Request, exc: NotificationError):
        return JSONResponse(status_code=exc.status_code, content=format_error_for_api(exc))

    for error_class in (
        NotificationDeliveryError,
        WebhookSendError,
        RateLimitExceededError,
        WebhookValidationError,
    ):
        app.add_exception_handler(error_class, handle_notification_error)
