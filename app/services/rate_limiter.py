"""Fixed-window rate limiter backed by the notification_rate_limits table."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import logging
import uuid

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.clock import Clock, SystemClock, as_naive_utc
from app.config import Settings, settings as app_settings
from app.exceptions import RateLimitExceededError
from app.models.notification_setting import channel_name
from app.models.rate_limit import NotificationRateLimit
from app.services.locks import channel_lock


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of one counted attempt."""
    allowed: bool
    retry_after: int
    current_count: int
    max_allowed: int
    reset_at: datetime

    @property
    def blocked(self) -> bool:
        return not self.allowed


def limit_key_for_user(user_id: str) -> str:
    return f"user:{user_id}"


class RateLimiter:
    """
    Per (channel, key) attempt counter.

    The first attempt opens a window of ``window_seconds``. Attempts are
    allowed while the count is below the channel's limit; the first attempt
    at the limit marks the row blocked and every later attempt before
    ``reset_at`` is refused with a shrinking ``retry_after``. Once
    ``reset_at`` has passed the window restarts and counting begins again.
    """

    def __init__(self, db: Session, clock: Optional[Clock] = None, config: Optional[Settings] = None):
        """
        Initialize rate limiter.

        Args:
            db: Database session
            clock: Time source; wall clock when omitted
            config: Settings providing the per-channel policy
        """
        self.db = db
        self.clock = clock or SystemClock()
        self.config = config or app_settings

    def policy(self, channel: str) -> Dict[str, int]:
        return self.config.rate_limit_for(channel_name(channel))

    def check_and_increment(self, channel: str, key: str) -> RateLimitDecision:
        """
        Count one attempt and decide whether it may proceed.

        Args:
            channel: Channel the attempt is made on
            key: Limit key, e.g. ``user:<id>``

        Returns:
            RateLimitDecision for this attempt
        """
        channel = channel_name(channel)
        with channel_lock("rate_limit", channel):
            try:
                return self._check_and_increment(channel, key)
            except IntegrityError:
                # Another process created the row first
                self.db.rollback()
                return self._check_and_increment(channel, key)

    def _check_and_increment(self, channel: str, key: str) -> RateLimitDecision:
        now = as_naive_utc(self.clock.now())
        policy = self.policy(channel)

        record = (
            self.db.query(NotificationRateLimit)
            .filter(
                NotificationRateLimit.channel == channel,
                NotificationRateLimit.limit_key == key
            )
            .with_for_update()
            .first()
        )

        if record is None:
            record = NotificationRateLimit(id=str(uuid.uuid4()), channel=channel, limit_key=key)
            record.restart_window(now, policy["window_seconds"], policy["limit"])
            self.db.add(record)
        elif record.is_expired(now):
            logger.debug(f"Rate limit window for {channel}/{key} expired, restarting")
            record.restart_window(now, policy["window_seconds"], policy["limit"])

        record.last_attempt_at = now

        if record.attempts >= record.max_allowed:
            record.is_blocked = True
            decision = RateLimitDecision(
                allowed=False,
                retry_after=record.retry_after(now),
                current_count=record.attempts,
                max_allowed=record.max_allowed,
                reset_at=record.reset_at
            )
            logger.warning(
                f"Rate limit reached for {channel}/{key}: "
                f"{record.attempts}/{record.max_allowed}, retry after {decision.retry_after}s"
            )
        else:
            record.attempts += 1
            decision = RateLimitDecision(
                allowed=True,
                retry_after=0,
                current_count=record.attempts,
                max_allowed=record.max_allowed,
                reset_at=record.reset_at
            )

        self.db.commit()
        return decision

    def ensure_allowed(self, channel: str, key: str) -> RateLimitDecision:
        """
        Count one attempt, raising when it is refused.

        Raises:
            RateLimitExceededError: If the channel limit for ``key`` is reached
        """
        decision = self.check_and_increment(channel, key)
        if not decision.allowed:
            raise RateLimitExceededError(
                "Too many notification attempts",
                limit_type=channel_name(channel),
                retry_after=decision.retry_after,
                current_count=decision.current_count,
                max_allowed=decision.max_allowed
            )
        return decision

    def _get(self, channel: str, key: str) -> Optional[NotificationRateLimit]:
        return self.db.query(NotificationRateLimit).filter(
            NotificationRateLimit.channel == channel_name(channel),
            NotificationRateLimit.limit_key == key
        ).first()

    def stats(self, channel: str, key: str) -> Dict[str, Any]:
        """Current counters for a key, as if no window were open when none is."""
        now = as_naive_utc(self.clock.now())
        policy = self.policy(channel)
        record = self._get(channel, key)

        if record is None or record.is_expired(now):
            return {
                "attempts": 0,
                "max_allowed": policy["limit"],
                "remaining": policy["limit"],
                "is_blocked": False,
                "reset_at": None,
                "retry_after": 0,
            }

        return {
            "attempts": record.attempts,
            "max_allowed": record.max_allowed,
            "remaining": max(0, record.max_allowed - record.attempts),
            "is_blocked": record.is_blocked,
            "reset_at": record.reset_at.isoformat(),
            "retry_after": record.retry_after(now) if record.is_blocked else 0,
        }

    def reset(self, channel: str, key: str) -> bool:
        """Drop the counter for a key. Returns True if one existed."""
        with channel_lock("rate_limit", channel_name(channel)):
            record = self._get(channel, key)
            if record is None:
                return False
            self.db.delete(record)
            self.db.commit()
        logger.info(f"Rate limit reset for {channel_name(channel)}/{key}")
        return True

    def cleanup_expired(self, grace_minutes: Optional[int] = None) -> int:
        """
        Delete rows whose window ended more than ``grace_minutes`` ago.

        Returns:
            Number of rows deleted
        """
        if grace_minutes is None:
            grace_minutes = self.config.rate_limit_cleanup_grace_minutes
        cutoff = as_naive_utc(self.clock.now()) - timedelta(minutes=grace_minutes)

        deleted = (
            self.db.query(NotificationRateLimit)
            .filter(NotificationRateLimit.reset_at < cutoff)
            .delete(synchronize_session=False)
        )
        self.db.commit()

        if deleted:
            logger.info(f"Removed {deleted} expired rate limit records")
        return deleted

    def active_blocks(self) -> List[NotificationRateLimit]:
        """Blocked rows whose window has not ended yet."""
        now = as_naive_utc(self.clock.now())
        return (
            self.db.query(NotificationRateLimit)
            .filter(
                NotificationRateLimit.is_blocked.is_(True),
                NotificationRateLimit.reset_at > now
            )
            .order_by(NotificationRateLimit.reset_at)
            .all()
        )