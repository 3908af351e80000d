"""Reminder service: decides which reminders are due and dispatches them."""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Dict, List, Optional
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import enum
import uuid
import logging

from app.clock import Clock, FrozenClock, SystemClock, as_naive_utc, ensure_utc
from app.config import Settings, settings as app_settings
from app.database import SessionLocal
from app.exceptions import FailureKind, WebhookValidationError
from app.models.notification_setting import Channel
from app.models.reminder_log import DispatchStatus, ReminderLog
from app.services.analytics_service import AnalyticsService
from app.services.channels import ChannelDriver, DeliveryResult, build_channel_drivers
from app.services.composer import TEST_TYPE, compose, compose_test_message
from app.services.health_service import HealthService
from app.services.rate_limiter import RateLimiter, limit_key_for_user
from app.services.reminder_source import (
    ChannelTarget,
    EventSnapshot,
    RecipientSnapshot,
    ReminderContext,
    ReminderSource,
    SqlReminderSource,
)


# Configure logging
logger = logging.getLogger(__name__)


class DispatchOutcome(str, enum.Enum):
    """What happened to one due (event, channel) pair."""
    SENT = "sent"
    FAILED = "failed"
    RETRY = "retry"
    RATE_LIMITED = "rate_limited"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class DispatchJob:
    """One due reminder: an event occurrence on one channel for one recipient."""
    recipient: RecipientSnapshot
    event: EventSnapshot
    channel: Channel
    target: ChannelTarget
    remind_on: date
    days_away: int

    def describe(self) -> str:
        return (
            f"user {self.recipient.id}, event {self.event.id}, "
            f"channel {self.channel.value}, occurs on {self.event.occurs_on.isoformat()}"
        )


@dataclass
class TickSummary:
    """Counts for one scheduler tick."""
    users: int = 0
    due: int = 0
    outcomes: Dict[DispatchOutcome, int] = field(default_factory=dict)

    def add(self, outcome: DispatchOutcome) -> None:
        self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1

    def count(self, outcome: DispatchOutcome) -> int:
        return self.outcomes.get(outcome, 0)

    @property
    def sent(self) -> int:
        return self.count(DispatchOutcome.SENT)

    @property
    def failed(self) -> int:
        return self.count(DispatchOutcome.FAILED)

    def __str__(self) -> str:
        parts = ", ".join(f"{outcome.value}={n}" for outcome, n in sorted(self.outcomes.items()))
        return f"users={self.users}, due={self.due}" + (f", {parts}" if parts else "")


class ReminderService:
    """
    Per-minute reminder tick.

    A reminder for an event occurrence is due on a channel when the
    recipient's local date lies within the lead window ending on the
    occurrence, the local time has reached the recipient's send time, the
    occurrence is not completed, and no dispatch record blocks it. Each due
    pair is sent on a worker thread with its own session.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        clock: Optional[Clock] = None,
        drivers: Optional[Dict[Channel, ChannelDriver]] = None,
        source_factory: Callable[..., ReminderSource] = SqlReminderSource,
        config: Optional[Settings] = None
    ):
        """Initialize reminder service.

        Args:
            session_factory: Callable returning a new database session
            clock: Time source; wall clock when omitted
            drivers: Channel driver lookup; built from config when omitted
            source_factory: Callable taking (session, config) and returning a ReminderSource
            config: Application settings
        """
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.config = config or app_settings
        self.drivers = drivers if drivers is not None else build_channel_drivers(self.config)
        self.source_factory = source_factory

    def run_tick(self, now: Optional[datetime] = None, override_days: Optional[int] = None) -> TickSummary:
        """Run one scheduler tick.

        Safe to invoke every minute: dispatch records make repeated ticks
        within a recipient's day send each reminder at most once.

        Args:
            now: Tick instant; the clock's time when omitted
            override_days: Lead time in days used for every user on this run

        Returns:
            TickSummary with per-outcome counts
        """
        now = ensure_utc(now or self.clock.now())
        summary = TickSummary()

        db = self.session_factory()
        try:
            source = self.source_factory(db, self.config)
            jobs = self.collect_due_jobs(db, source, now, override_days, summary)
        finally:
            db.close()

        summary.due = len(jobs)
        if not jobs:
            logger.debug(f"No reminders due at {now.isoformat()}")
            return summary

        for outcome in self._execute(jobs, now):
            summary.add(outcome)

        logger.info(f"Reminder tick at {now.isoformat()} finished: {summary}")
        return summary

    def collect_due_jobs(
        self,
        db: Session,
        source: ReminderSource,
        now: datetime,
        override_days: Optional[int] = None,
        summary: Optional[TickSummary] = None
    ) -> List[DispatchJob]:
        """List every (event, channel) pair due at ``now``."""
        jobs = []
        for context in source.contexts(now):
            if summary is not None:
                summary.users += 1
            lead_days = override_days if override_days is not None else context.lead_time_days
            try:
                jobs.extend(self._due_for_context(db, context, lead_days))
            except Exception:
                db.rollback()
                logger.exception(f"Skipping reminders for user {context.recipient.id}, due check failed")
        return jobs

    def _due_for_context(self, db: Session, context: ReminderContext, lead_days: int) -> List[DispatchJob]:
        if context.local_now.time() < context.send_time:
            return []

        jobs = []
        for event in context.events:
            if event.completed:
                continue

            days_away = (event.occurs_on - context.local_date).days
            if days_away < 0 or days_away > lead_days:
                continue

            for channel, target in context.targets.items():
                if self.is_blocked(db, event, channel, context.local_date):
                    continue
                jobs.append(DispatchJob(
                    recipient=context.recipient,
                    event=event,
                    channel=channel,
                    target=target,
                    remind_on=context.local_date,
                    days_away=days_away
                ))
        return jobs

    @staticmethod
    def is_blocked(db: Session, event: EventSnapshot, channel: Channel, local_date: date) -> bool:
        """True when a dispatch record rules out sending this occurrence today.

        A ``sent`` record covers the whole occurrence; any record (including
        a permanent failure) covers the local day it was written on.
        """
        return db.query(ReminderLog.id).filter(
            ReminderLog.event_id == event.id,
            ReminderLog.occurrence_year == event.occurrence_year,
            ReminderLog.channel == channel.value,
            or_(
                ReminderLog.status == DispatchStatus.SENT,
                ReminderLog.remind_on == local_date
            )
        ).first() is not None

    def _execute(self, jobs: List[DispatchJob], now: datetime) -> List[DispatchOutcome]:
        pool_size = max(1, self.config.scheduler_pool_size)
        if pool_size == 1 or len(jobs) == 1:
            return [self._dispatch_safely(job, now) for job in jobs]

        with ThreadPoolExecutor(max_workers=min(pool_size, len(jobs)), thread_name_prefix="reminder") as executor:
            return list(executor.map(lambda job: self._dispatch_safely(job, now), jobs))

    def _dispatch_safely(self, job: DispatchJob, now: datetime) -> DispatchOutcome:
        try:
            return self.dispatch(job, now)
        except Exception:
            logger.exception(f"Unexpected error dispatching reminder ({job.describe()})")
            return DispatchOutcome.RETRY

    def dispatch(self, job: DispatchJob, now: datetime) -> DispatchOutcome:
        """Send one due reminder and record its outcome.

        Args:
            job: Due reminder
            now: Tick instant

        Returns:
            DispatchOutcome for the job
        """
        db = self.session_factory()
        try:
            # Limiter and health windows follow the tick instant, not the wall clock
            clock = FrozenClock(now)
            driver = self.drivers[job.channel]
            message = compose(job.event, job.event.occurs_on, job.recipient, job.channel, job.days_away)
            analytics = AnalyticsService(db)
            metric_day = as_naive_utc(now).date()

            try:
                driver.validate(job.target, message)
            except WebhookValidationError as e:
                return self._reject(db, job, now, analytics, e)

            limiter = RateLimiter(db, clock, self.config)
            decision = limiter.check_and_increment(job.channel, limit_key_for_user(job.recipient.id))
            if not decision.allowed:
                logger.warning(
                    f"Skipping reminder, rate limited for {decision.retry_after}s ({job.describe()})"
                )
                return DispatchOutcome.RATE_LIMITED

            try:
                result = driver.send(job.target, message)
            except WebhookValidationError as e:
                return self._reject(db, job, now, analytics, e)

            health = HealthService(db, clock, self.config)

            if result.ok:
                recorded = self._record_dispatch(db, job, now, DispatchStatus.SENT)
                analytics.record_outcome(job.channel, metric_day, delivered=True, response_time_ms=result.response_time_ms)
                health.record_success(job.channel, result.response_time_ms)
                logger.info(f"Reminder sent ({job.describe()}, {job.days_away} days away)")
                return DispatchOutcome.SENT if recorded else DispatchOutcome.DUPLICATE

            if result.failure_kind == FailureKind.RATE_LIMITED:
                logger.warning(
                    f"Endpoint throttled reminder, retry after {result.retry_after}s ({job.describe()})"
                )
                return DispatchOutcome.RATE_LIMITED

            analytics.record_outcome(job.channel, metric_day, delivered=False)
            health.record_failure(job.channel, result.error_detail)

            if result.is_permanent:
                self._record_dispatch(db, job, now, DispatchStatus.FAILED, result.error_detail)
                logger.error(f"Reminder failed permanently ({job.describe()}): {result.error_detail}")
                return DispatchOutcome.FAILED

            logger.warning(f"Reminder failed, will retry next tick ({job.describe()}): {result.error_detail}")
            return DispatchOutcome.RETRY
        finally:
            db.close()

    def _reject(
        self,
        db: Session,
        job: DispatchJob,
        now: datetime,
        analytics: AnalyticsService,
        error: WebhookValidationError
    ) -> DispatchOutcome:
        """Record a reminder whose target or payload failed validation as a permanent failure."""
        logger.error(f"Reminder rejected before sending ({job.describe()}): {error.validation_errors}")
        self._record_dispatch(db, job, now, DispatchStatus.FAILED, error.message)
        analytics.record_outcome(job.channel, as_naive_utc(now).date(), delivered=False)
        return DispatchOutcome.FAILED

    def _record_dispatch(
        self,
        db: Session,
        job: DispatchJob,
        now: datetime,
        status: DispatchStatus,
        error: Optional[str] = None
    ) -> bool:
        """Persist the dispatch record. Returns False if a concurrent tick already wrote it."""
        reminder_log = ReminderLog(
            id=str(uuid.uuid4()),
            user_id=job.recipient.id,
            event_id=job.event.id,
            occurrence_year=job.event.occurrence_year,
            occurs_on=job.event.occurs_on,
            channel=job.channel.value,
            remind_on=job.remind_on,
            days_away=job.days_away,
            status=status,
            error=error,
            sent_at=as_naive_utc(now)
        )
        db.add(reminder_log)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info(f"Dispatch already recorded ({job.describe()})")
            return False
        return True

    def send_test_notification(self, user_id: str, channel: str) -> DeliveryResult:
        """Send a test message on one channel right away.

        Args:
            user_id: Recipient user ID
            channel: Channel name

        Returns:
            DeliveryResult of the successful send

        Raises:
            LookupError: If the user does not exist
            WebhookValidationError: If the channel has no usable target
            RateLimitExceededError: If the channel limit for the user is reached
            WebhookSendError: If the endpoint answered with an error status
            NotificationDeliveryError: If the send failed without a response
        """
        channel = Channel.parse(channel)
        now = ensure_utc(self.clock.now())

        db = self.session_factory()
        try:
            context = self.source_factory(db, self.config).recipient_context(user_id, now)
            if context is None:
                raise LookupError(f"User {user_id} not found")

            target = context.targets.get(channel)
            if target is None:
                raise WebhookValidationError(
                    f"Channel {channel.value} is not configured",
                    [f"{channel.value} target is required"]
                )

            clock = FrozenClock(now)
            driver = self.drivers[channel]
            message = compose_test_message(context.recipient, channel, now)
            driver.validate(target, message)

            RateLimiter(db, clock, self.config).ensure_allowed(channel, limit_key_for_user(user_id))

            result = driver.send(target, message)

            if result.failure_kind != FailureKind.RATE_LIMITED:
                AnalyticsService(db).record_outcome(
                    channel,
                    as_naive_utc(now).date(),
                    delivered=result.ok,
                    response_time_ms=result.response_time_ms,
                    notification_type=TEST_TYPE
                )
                health = HealthService(db, clock, self.config)
                if result.ok:
                    health.record_success(channel, result.response_time_ms)
                else:
                    health.record_failure(channel, result.error_detail)
        finally:
            db.close()

        result.raise_for_failure(TEST_TYPE)
        logger.info(f"Test notification sent to user {user_id} on {channel.value}")
        return result
