"""Channel health tracking, outage bookkeeping and per-user connectivity checks."""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
import enum
import logging
import uuid

from sqlalchemy.orm import Session, selectinload

from app.clock import Clock, SystemClock, as_naive_utc
from app.config import Settings, settings as app_settings
from app.models.health import ChannelHealth, HealthStatus, NotificationOutage
from app.models.notification_setting import Channel, channel_name
from app.models.reminder_log import DispatchStatus, ReminderLog
from app.models.user import User
from app.services.channels import ChannelDriver, build_channel_drivers
from app.services.composer import compose_test_message
from app.services.locks import channel_lock
from app.services.reminder_source import ChannelTarget, RecipientSnapshot, SqlReminderSource


logger = logging.getLogger(__name__)

ACTIVITY_WINDOW_DAYS = 7


class ConnectivityStatus(str, enum.Enum):
    """Outcome of checking one user's channel."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    INACTIVE = "inactive"


@dataclass
class ChannelCheck:
    """Recent activity and reachability of one user's channel."""
    channel: str
    status: ConnectivityStatus = ConnectivityStatus.INACTIVE
    connectivity: bool = False
    last_used: Optional[datetime] = None
    total_attempts: int = 0
    error_count: int = 0
    success_rate: float = 0.0
    details: List[str] = field(default_factory=list)

    @property
    def is_unhealthy(self) -> bool:
        return self.status == ConnectivityStatus.UNHEALTHY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel,
            "status": self.status.value,
            "connectivity": self.connectivity,
            "last_used": self.last_used.isoformat() if self.last_used else None,
            "total_attempts": self.total_attempts,
            "error_count": self.error_count,
            "success_rate": self.success_rate,
            "details": list(self.details),
        }


class HealthService:
    """
    Health state machine per channel.

    Every ``failures_per_step`` consecutive failures move the channel one
    level up (healthy, warning, critical). While not healthy,
    ``recovery_successes`` consecutive successes move it one level down, so
    a critical channel needs two full streaks to be healthy again. Entering
    critical opens an outage; returning to healthy resolves it.

    Separately, ``check_channel`` inspects one user's channel: its delivery
    records from the last week and a live connectivity test through the
    channel driver.
    """

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        config: Optional[Settings] = None,
        drivers: Optional[Dict[Channel, ChannelDriver]] = None
    ):
        self.db = db
        self.clock = clock or SystemClock()
        self.config = config or app_settings
        self._drivers = drivers
        self._reachability: Dict[Tuple[str, str, Optional[str]], bool] = {}

    @property
    def drivers(self) -> Dict[Channel, ChannelDriver]:
        if self._drivers is None:
            self._drivers = build_channel_drivers(self.config)
        return self._drivers

    @property
    def failures_per_step(self) -> int:
        return max(1, self.config.health_failures_per_step)

    @property
    def recovery_successes(self) -> int:
        return max(1, self.config.health_recovery_successes)

    def latest_snapshot(self, channel: str) -> Optional[ChannelHealth]:
        return (
            self.db.query(ChannelHealth)
            .filter(ChannelHealth.channel == channel_name(channel))
            .order_by(ChannelHealth.sequence.desc())
            .first()
        )

    def current_status(self, channel: str) -> HealthStatus:
        snapshot = self.latest_snapshot(channel)
        return snapshot.status if snapshot else HealthStatus.HEALTHY

    def latest_snapshots(self) -> Dict[str, ChannelHealth]:
        """Latest snapshot per channel that has ever reported an outcome."""
        snapshots = {}
        for channel in Channel:
            snapshot = self.latest_snapshot(channel.value)
            if snapshot is not None:
                snapshots[channel.value] = snapshot
        return snapshots

    def open_outage(self, channel: str) -> Optional[NotificationOutage]:
        return (
            self.db.query(NotificationOutage)
            .filter(
                NotificationOutage.channel == channel_name(channel),
                NotificationOutage.is_resolved.is_(False)
            )
            .order_by(NotificationOutage.started_at.desc())
            .first()
        )

    def active_outages(self) -> List[NotificationOutage]:
        return (
            self.db.query(NotificationOutage)
            .filter(NotificationOutage.is_resolved.is_(False))
            .order_by(NotificationOutage.started_at)
            .all()
        )

    def record_success(self, channel: str, response_time_ms: Optional[int] = None) -> ChannelHealth:
        """
        Report a delivered notification.

        Args:
            channel: Channel name
            response_time_ms: Time the send took, if measured

        Returns:
            The channel's latest snapshot after the update
        """
        return self._record(channel_name(channel), success=True, response_time_ms=response_time_ms)

    def record_failure(self, channel: str, error: Optional[str] = None) -> ChannelHealth:
        """
        Report a failed delivery (transient or permanent).

        Args:
            channel: Channel name
            error: Failure detail stored on the snapshot

        Returns:
            The channel's latest snapshot after the update
        """
        return self._record(channel_name(channel), success=False, error=error)

    def _record(
        self,
        channel: str,
        success: bool,
        response_time_ms: Optional[int] = None,
        error: Optional[str] = None
    ) -> ChannelHealth:
        with channel_lock("health", channel):
            now = as_naive_utc(self.clock.now())
            latest = (
                self.db.query(ChannelHealth)
                .filter(ChannelHealth.channel == channel)
                .order_by(ChannelHealth.sequence.desc())
                .with_for_update()
                .first()
            )

            previous = latest.status if latest else HealthStatus.HEALTHY
            failures = latest.consecutive_failures if latest else 0
            successes = latest.consecutive_successes if latest else 0
            status = previous

            if success:
                failures = 0
                successes += 1
                if previous != HealthStatus.HEALTHY and successes >= self.recovery_successes:
                    status = previous.recover()
                    successes = 0
            else:
                successes = 0
                failures += 1
                if failures % self.failures_per_step == 0:
                    status = previous.escalate()

            if latest is None or status != previous:
                snapshot = ChannelHealth(
                    id=str(uuid.uuid4()),
                    channel=channel,
                    sequence=(latest.sequence + 1) if latest else 1,
                    status=status,
                    last_error=latest.last_error if latest else None
                )
                self.db.add(snapshot)
                if latest is not None:
                    logger.info(f"Channel {channel} health changed: {previous.value} -> {status.value}")
            else:
                snapshot = latest

            snapshot.consecutive_failures = failures
            snapshot.consecutive_successes = successes
            snapshot.checked_at = now
            if success:
                snapshot.response_time_ms = response_time_ms
            else:
                snapshot.last_error = error

            if status == HealthStatus.CRITICAL and previous != HealthStatus.CRITICAL:
                self._open_outage(channel, now, error)
            elif status == HealthStatus.HEALTHY and previous != HealthStatus.HEALTHY:
                self._resolve_outage(channel, now)

            self.db.commit()
            return snapshot

    def _open_outage(self, channel: str, now, error: Optional[str]) -> None:
        if self.open_outage(channel) is not None:
            return
        outage = NotificationOutage(
            id=str(uuid.uuid4()),
            channel=channel,
            outage_type="delivery_failures",
            started_at=now,
            description=f"{channel.capitalize()} deliveries failing" + (f": {error}" if error else ""),
            is_resolved=False
        )
        self.db.add(outage)
        logger.error(f"Outage opened for channel {channel}")

    def _resolve_outage(self, channel: str, now) -> None:
        outage = self.open_outage(channel)
        if outage is None:
            return
        outage.resolve(now)
        logger.info(f"Outage resolved for channel {channel} after {outage.duration_minutes()} minutes")

    def check_channel(self, user: User, channel: str) -> ChannelCheck:
        """
        Check one of a user's channels.

        A channel without settings or without a configured target is
        inactive. Otherwise it is healthy when it carried at least one
        reminder in the last week, inactive when it carried none, and
        unhealthy whenever the connectivity test fails.

        Args:
            user: Owner of the channel
            channel: Channel name

        Returns:
            ChannelCheck with status, activity counters and details
        """
        channel = Channel.parse(channel)
        check = ChannelCheck(channel=channel.value)

        setting = user.notification_setting
        if setting is None:
            check.details.append("Notification settings missing")
            return check

        target = SqlReminderSource(self.db, self.config).channel_target(user, setting, channel)
        if target is None:
            check.details.append("Channel configuration missing")
            return check

        since = as_naive_utc(self.clock.now()) - timedelta(days=ACTIVITY_WINDOW_DAYS)
        records = (
            self.db.query(ReminderLog.status, ReminderLog.sent_at)
            .filter(
                ReminderLog.user_id == user.id,
                ReminderLog.channel == channel.value,
                ReminderLog.sent_at >= since
            )
            .order_by(ReminderLog.sent_at.desc())
            .all()
        )

        if not records:
            check.details.append("No recent activity")
        else:
            failed = sum(1 for status, _ in records if status == DispatchStatus.FAILED)
            check.status = ConnectivityStatus.HEALTHY
            check.last_used = records[0].sent_at
            check.total_attempts = len(records)
            check.error_count = failed
            check.success_rate = round((len(records) - failed) / len(records) * 100, 2)

        check.connectivity = self._is_reachable(user, channel, target)
        if not check.connectivity:
            check.status = ConnectivityStatus.UNHEALTHY
            check.details.append("Connectivity test failed")

        return check

    def check_all_channels(self, user: User) -> Dict[str, ChannelCheck]:
        """Check every channel the user has enabled, keyed by channel name."""
        setting = user.notification_setting
        if setting is None:
            return {}
        return {
            channel.value: self.check_channel(user, channel)
            for channel in setting.resolved_channels(self.config.reminder_default_channels)
        }

    def system_overview(self) -> Dict[str, Any]:
        """
        Count healthy, unhealthy and inactive channels across all users.

        Returns:
            Dict with total_users, active_users (users with at least one
            enabled channel), per-channel status counts and last_check
        """
        users = self._users_with_settings()
        overview = {
            "total_users": len(users),
            "active_users": 0,
            "channels": {
                channel.value: {status.value: 0 for status in ConnectivityStatus}
                for channel in Channel
            },
            "last_check": self.clock.now().isoformat(),
        }

        for user in users:
            checks = self.check_all_channels(user)
            if checks:
                overview["active_users"] += 1
            for name, check in checks.items():
                overview["channels"][name][check.status.value] += 1

        return overview

    def users_with_unhealthy_channels(self) -> List[User]:
        """Users with at least one enabled channel failing its connectivity test."""
        return [
            user for user in self._users_with_settings()
            if any(check.is_unhealthy for check in self.check_all_channels(user).values())
        ]

    def log_health_issue(self, user: User, channel: str, issue: str) -> None:
        logger.warning(f"Channel health issue for user {user.id} on {channel_name(channel)}: {issue}")

    def log_unhealthy_channels(self, issue: str = "System health check failed") -> int:
        """Log every unhealthy user channel. Returns the number logged."""
        logged = 0
        for user in self.users_with_unhealthy_channels():
            for name, check in self.check_all_channels(user).items():
                if check.is_unhealthy:
                    self.log_health_issue(user, name, issue)
                    logged += 1
        return logged

    def _users_with_settings(self) -> List[User]:
        return (
            self.db.query(User)
            .options(selectinload(User.notification_setting))
            .order_by(User.id)
            .all()
        )

    def _is_reachable(self, user: User, channel: Channel, target: ChannelTarget) -> bool:
        # Shared endpoints are tested once per service instance
        key = (channel.value, target.address, target.token)
        if key not in self._reachability:
            recipient = RecipientSnapshot(
                id=user.id,
                name=user.name,
                email=user.email,
                timezone=user.get_timezone().key
            )
            message = compose_test_message(recipient, channel, self.clock.now())
            self._reachability[key] = self.drivers[channel].check_connectivity(target, message)
        return self._reachability[key]
