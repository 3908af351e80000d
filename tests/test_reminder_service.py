"""Unit tests for reminder service."""
import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import patch
from sqlalchemy.orm import Session

from app.clock import FrozenClock
from app.exceptions import FailureKind, WebhookSendError, WebhookValidationError, RateLimitExceededError
from app.models.event import Event, Recurrence
from app.models.health import ChannelHealth, HealthStatus
from app.models.metrics import NotificationAnalytics, NotificationMetric
from app.models.notification_setting import Channel
from app.models.rate_limit import NotificationRateLimit
from app.models.reminder_log import DispatchStatus, ReminderLog
from app.models.user import User
from app.services.channels import DeliveryResult
from app.services.reminder_service import DispatchOutcome, ReminderService
from app.services.reminder_source import SqlReminderSource
from tests.conftest import FakeDriver, make_event, make_settings, make_user


SLACK_URL = "https://hooks.slack.com/services/T000/B000/secret"


def failure(channel, kind, status=None, detail="failed", retry_after=None):
    return DeliveryResult(
        ok=False,
        channel=channel,
        http_status=status,
        error_detail=detail,
        failure_kind=kind,
        retry_after=retry_after
    )


def build_service(session_factory, clock, config=None, **overrides):
    drivers = {channel: FakeDriver(channel) for channel in Channel}
    for name, driver in overrides.items():
        drivers[Channel(name)] = driver
    service = ReminderService(
        session_factory=session_factory,
        clock=clock,
        drivers=drivers,
        config=config or make_settings()
    )
    return service, drivers


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def sent_logs(db: Session):
    db.expire_all()
    return db.query(ReminderLog).filter(ReminderLog.status == DispatchStatus.SENT).all()


class TestDueSelection:
    """Test which reminders are due."""

    def test_event_within_lead_window_is_sent(self, session_factory, test_db: Session):
        user = make_user(test_db, name="Jordan")
        event = make_event(test_db, user, date(1990, 3, 13), person_name="Alex", budget=Decimal("25"))
        clock = FrozenClock(utc(2025, 3, 10, 9, 30))
        service, drivers = build_service(session_factory, clock)

        summary = service.run_tick()

        assert summary.users == 1
        assert summary.due == 1
        assert summary.sent == 1
        target, message = drivers[Channel.MAIL].sent[0]
        assert target.address == user.email
        assert message.headline == "Birthday for Alex is in 3 days"
        assert message.body == "Happening on Mar 13, 2025. Budget: $25.00"

        log = sent_logs(test_db)[0]
        assert log.event_id == event.id
        assert log.occurrence_year == 2025
        assert log.occurs_on == date(2025, 3, 13)
        assert log.remind_on == date(2025, 3, 10)
        assert log.days_away == 3
        assert log.channel == "mail"

    def test_event_outside_lead_window_is_skipped(self, session_factory, test_db: Session):
        user = make_user(test_db)
        make_event(test_db, user, date(1990, 3, 18))
        service, drivers = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 9, 30)))

        summary = service.run_tick()

        assert summary.due == 0
        assert drivers[Channel.MAIL].sent == []

    def test_event_on_the_day_is_today(self, session_factory, test_db: Session):
        user = make_user(test_db)
        make_event(test_db, user, date(1990, 3, 10))
        service, drivers = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 9, 30)))

        service.run_tick()

        assert drivers[Channel.MAIL].sent[0][1].headline.endswith("is today")

    def test_before_send_time_nothing_is_sent(self, session_factory, test_db: Session):
        user = make_user(test_db)
        make_event(test_db, user, date(1990, 3, 12))
        service, drivers = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 8, 59)))

        assert service.run_tick().due == 0

    def test_later_send_time_fires_once_after_threshold(self, session_factory, test_db: Session):
        user = make_user(test_db, remind_at="18:00")
        make_event(test_db, user, date(1990, 3, 12))
        clock = FrozenClock(utc(2025, 3, 10, 9, 0))
        service, drivers = build_service(session_factory, clock)

        total = 0
        while clock.now() < utc(2025, 3, 11, 0, 0):
            total += service.run_tick().sent
            clock.advance(minutes=30)

        assert total == 1
        assert len(drivers[Channel.MAIL].sent) == 1

    def test_lead_time_zero_only_fires_on_the_day(self, session_factory, test_db: Session):
        user = make_user(test_db, lead_time_days=0)
        make_event(test_db, user, date(1990, 3, 12))
        clock = FrozenClock(utc(2025, 3, 10, 10, 0))
        service, drivers = build_service(session_factory, clock)

        assert service.run_tick().due == 0
        clock.set(utc(2025, 3, 11, 10, 0))
        assert service.run_tick().due == 0
        clock.set(utc(2025, 3, 12, 10, 0))
        assert service.run_tick().sent == 1
        assert drivers[Channel.MAIL].sent[0][1].headline.endswith("is today")

    def test_override_days_widens_window(self, session_factory, test_db: Session):
        user = make_user(test_db)
        make_event(test_db, user, date(1990, 3, 20))
        service, drivers = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)))

        assert service.run_tick().due == 0
        summary = service.run_tick(override_days=10)

        assert summary.sent == 1
        assert sent_logs(test_db)[0].days_away == 10

    def test_past_one_off_event_is_ignored(self, session_factory, test_db: Session):
        user = make_user(test_db)
        make_event(test_db, user, date(2025, 3, 9), recurrence=Recurrence.NONE)
        service, _ = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)))

        assert service.run_tick().due == 0

    def test_user_without_channels_is_skipped(self, session_factory, test_db: Session):
        user = make_user(test_db, channels=[])
        make_event(test_db, user, date(1990, 3, 11))
        service, _ = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)))

        summary = service.run_tick()

        assert summary.users == 0
        assert summary.due == 0

    def test_mail_disabled_globally(self, session_factory, test_db: Session):
        user = make_user(test_db)
        make_event(test_db, user, date(1990, 3, 11))
        service, _ = build_service(
            session_factory,
            FrozenClock(utc(2025, 3, 10, 10, 0)),
            make_settings(reminder_mail_enabled=False)
        )

        assert service.run_tick().due == 0

    def test_each_enabled_channel_gets_a_dispatch(self, session_factory, test_db: Session):
        user = make_user(test_db, channels=["mail", "slack"], slack_webhook=SLACK_URL)
        make_event(test_db, user, date(1990, 3, 11))
        service, drivers = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)))

        summary = service.run_tick()

        assert summary.sent == 2
        assert len(drivers[Channel.SLACK].sent) == 1
        assert drivers[Channel.SLACK].sent[0][0].address == SLACK_URL
        assert sorted(log.channel for log in sent_logs(test_db)) == ["mail", "slack"]

    def test_slack_without_webhook_is_dropped(self, session_factory, test_db: Session):
        user = make_user(test_db, channels=["slack"])
        make_event(test_db, user, date(1990, 3, 11))
        service, _ = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)))

        assert service.run_tick().due == 0

    def test_global_webhook_fallback(self, session_factory, test_db: Session):
        user = make_user(test_db, channels=["slack"])
        make_event(test_db, user, date(1990, 3, 11))
        service, drivers = build_service(
            session_factory,
            FrozenClock(utc(2025, 3, 10, 10, 0)),
            make_settings(reminder_slack_webhook=SLACK_URL)
        )

        assert service.run_tick().sent == 1
        assert drivers[Channel.SLACK].sent[0][0].address == SLACK_URL


class TestIdempotency:
    """Test dispatch records prevent duplicates."""

    def test_two_ticks_same_day_dispatch_once(self, session_factory, test_db: Session):
        user = make_user(test_db)
        make_event(test_db, user, date(1990, 3, 12))
        clock = FrozenClock(utc(2025, 3, 10, 9, 30))
        service, drivers = build_service(session_factory, clock)

        service.run_tick()
        clock.advance(minutes=1)
        second = service.run_tick()

        assert second.due == 0
        assert len(drivers[Channel.MAIL].sent) == 1
        assert len(sent_logs(test_db)) == 1

    def test_sent_reminder_not_repeated_later_in_window(self, session_factory, test_db: Session):
        user = make_user(test_db)
        make_event(test_db, user, date(1990, 3, 14))
        clock = FrozenClock(utc(2025, 3, 10, 9, 30))
        service, drivers = build_service(session_factory, clock)

        service.run_tick()
        clock.advance(days=1)
        service.run_tick()
        clock.advance(days=3)
        service.run_tick()

        assert len(drivers[Channel.MAIL].sent) == 1

    def test_next_years_occurrence_is_reminded_again(self, session_factory, test_db: Session):
        user = make_user(test_db)
        make_event(test_db, user, date(1990, 3, 12))
        clock = FrozenClock(utc(2025, 3, 10, 9, 30))
        service, drivers = build_service(session_factory, clock)

        service.run_tick()
        clock.set(utc(2026, 3, 10, 9, 30))
        service.run_tick()

        years = sorted(log.occurrence_year for log in sent_logs(test_db))
        assert years == [2025, 2026]

    def test_concurrent_record_treated_as_duplicate(self, session_factory, test_db: Session):
        user = make_user(test_db)
        make_event(test_db, user, date(1990, 3, 12))
        clock = FrozenClock(utc(2025, 3, 10, 9, 30))
        service, drivers = build_service(session_factory, clock)

        db = session_factory()
        try:
            jobs = service.collect_due_jobs(db, SqlReminderSource(db, service.config), clock.now())
        finally:
            db.close()

        assert service.dispatch(jobs[0], clock.now()) == DispatchOutcome.SENT
        assert service.dispatch(jobs[0], clock.now()) == DispatchOutcome.DUPLICATE
        assert len(sent_logs(test_db)) == 1


class TestTimezones:
    """Test local-time evaluation per user."""

    def test_new_york_user_gets_reminder_at_local_nine(self, session_factory, test_db: Session):
        user = make_user(test_db, tz="America/New_York", remind_at="09:00")
        make_event(test_db, user, date(1990, 3, 17))
        # New York is UTC-4 on 2025-03-10 (DST started 2025-03-09)
        clock = FrozenClock(utc(2025, 3, 9, 12, 0))
        service, drivers = build_service(session_factory, clock)

        while clock.now() < utc(2025, 3, 10, 13, 0):
            assert service.run_tick().sent == 0
            clock.advance(minutes=15)

        clock.set(utc(2025, 3, 10, 12, 59))
        assert service.run_tick().sent == 0

        clock.set(utc(2025, 3, 10, 13, 0))
        assert service.run_tick().sent == 1

        while clock.now() < utc(2025, 3, 11, 4, 0):
            clock.advance(minutes=20)
            assert service.run_tick().sent == 0

        log = sent_logs(test_db)[0]
        assert log.remind_on == date(2025, 3, 10)
        assert log.days_away == 7

    def test_local_date_differs_from_utc_date(self, session_factory, test_db: Session):
        user = make_user(test_db, tz="Asia/Tokyo", remind_at="08:00")
        make_event(test_db, user, date(1990, 3, 11))
        # 2025-03-09 23:30 UTC is 2025-03-10 08:30 in Tokyo
        service, drivers = build_service(session_factory, FrozenClock(utc(2025, 3, 9, 23, 30)))

        assert service.run_tick().sent == 1
        log = sent_logs(test_db)[0]
        assert log.remind_on == date(2025, 3, 10)
        assert log.days_away == 1
        assert drivers[Channel.MAIL].sent[0][1].headline.endswith("is tomorrow")

    def test_directory_zone_name_falls_back_to_utc(self, session_factory, test_db: Session):
        broken = make_user(test_db, name="Broken", tz="America")
        healthy = make_user(test_db, name="Healthy", tz="UTC")
        make_event(test_db, broken, date(1990, 3, 12))
        make_event(test_db, healthy, date(1990, 3, 12))
        service, drivers = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)))

        summary = service.run_tick()

        assert summary.users == 2
        assert summary.sent == 2
        assert {log.user_id for log in sent_logs(test_db)} == {broken.id, healthy.id}

    def test_unreadable_zone_skips_only_that_user(self, session_factory, test_db: Session):
        broken = make_user(test_db, name="Broken", tz="Europe/Paris")
        healthy = make_user(test_db, name="Healthy", tz="UTC")
        make_event(test_db, broken, date(1990, 3, 12))
        make_event(test_db, healthy, date(1990, 3, 12))
        broken_id = broken.id
        real_get_timezone = User.get_timezone

        def get_timezone(user):
            if user.id == broken_id:
                raise IsADirectoryError("zone path is a directory")
            return real_get_timezone(user)

        service, _ = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)))
        with patch.object(User, 'get_timezone', autospec=True, side_effect=get_timezone):
            summary = service.run_tick()

        assert summary.users == 1
        assert summary.sent == 1
        assert [log.user_id for log in sent_logs(test_db)] == [healthy.id]

    def test_due_check_error_skips_only_that_user(self, session_factory, test_db: Session):
        broken = make_user(test_db, name="Broken")
        healthy = make_user(test_db, name="Healthy")
        make_event(test_db, broken, date(1990, 3, 12))
        make_event(test_db, healthy, date(1990, 3, 12))
        broken_id = broken.id
        service, _ = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)))
        real_due_for_context = service._due_for_context

        def due_for_context(db, context, lead_days):
            if context.recipient.id == broken_id:
                raise RuntimeError("corrupt event row")
            return real_due_for_context(db, context, lead_days)

        with patch.object(service, '_due_for_context', side_effect=due_for_context):
            summary = service.run_tick()

        assert summary.users == 2
        assert summary.sent == 1
        assert [log.user_id for log in sent_logs(test_db)] == [healthy.id]


class TestCompletion:
    """Test completion suppression."""

    def test_completed_occurrence_is_not_reminded(self, session_factory, test_db: Session):
        user = make_user(test_db)
        event = make_event(test_db, user, date(1990, 3, 12))
        event.mark_complete_for_year(2025)
        test_db.commit()
        service, drivers = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)))

        assert service.run_tick().due == 0
        assert drivers[Channel.MAIL].sent == []

    def test_completion_for_other_year_does_not_suppress(self, session_factory, test_db: Session):
        user = make_user(test_db)
        event = make_event(test_db, user, date(1990, 3, 12))
        event.mark_complete_for_year(2024)
        test_db.commit()
        service, _ = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)))

        assert service.run_tick().sent == 1

    def test_completion_mid_window_stops_further_reminders(self, session_factory, test_db: Session):
        user = make_user(test_db)
        event = make_event(test_db, user, date(1990, 3, 14))
        clock = FrozenClock(utc(2025, 3, 10, 10, 0))
        service, drivers = build_service(
            session_factory, clock,
            mail=FakeDriver(Channel.MAIL, results=[failure(Channel.MAIL, FailureKind.TRANSIENT)])
        )
        service.run_tick()

        event = test_db.get(Event, event.id)
        event.mark_complete_for_year(2025)
        test_db.commit()
        clock.advance(minutes=1)

        assert service.run_tick().due == 0


class TestFailures:
    """Test failure classification handling."""

    def test_transient_failure_retried_next_tick(self, session_factory, test_db: Session):
        user = make_user(test_db)
        make_event(test_db, user, date(1990, 3, 12))
        clock = FrozenClock(utc(2025, 3, 10, 10, 0))
        driver = FakeDriver(Channel.MAIL, results=[failure(Channel.MAIL, FailureKind.TRANSIENT, detail="timeout")])
        service, _ = build_service(session_factory, clock, mail=driver)

        first = service.run_tick()
        test_db.expire_all()
        assert first.count(DispatchOutcome.RETRY) == 1
        assert test_db.query(ReminderLog).count() == 0

        clock.advance(minutes=1)
        second = service.run_tick()

        assert second.sent == 1
        assert len(driver.sent) == 2
        assert len(sent_logs(test_db)) == 1

    def test_permanent_failure_recorded_and_blocks_rest_of_day(self, session_factory, test_db: Session):
        user = make_user(test_db)
        make_event(test_db, user, date(1990, 3, 14))
        clock = FrozenClock(utc(2025, 3, 10, 10, 0))
        driver = FakeDriver(Channel.MAIL, results=[failure(Channel.MAIL, FailureKind.PERMANENT, detail="Recipient refused")])
        service, _ = build_service(session_factory, clock, mail=driver)

        assert service.run_tick().failed == 1
        test_db.expire_all()
        log = test_db.query(ReminderLog).one()
        assert log.status == DispatchStatus.FAILED
        assert log.error == "Recipient refused"

        clock.advance(hours=5)
        assert service.run_tick().due == 0

        clock.advance(days=1)
        assert service.run_tick().sent == 1
        assert len(driver.sent) == 2

    def test_validation_error_recorded_as_failed(self, session_factory, test_db: Session):
        user = make_user(test_db)
        make_event(test_db, user, date(1990, 3, 12))
        driver = FakeDriver(Channel.MAIL, error=WebhookValidationError("Invalid mail recipient", ["recipient is required"]))
        service, _ = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)), mail=driver)

        assert service.run_tick().failed == 1
        test_db.expire_all()
        log = test_db.query(ReminderLog).one()
        assert log.status == DispatchStatus.FAILED
        assert log.error == "Invalid mail recipient: recipient is required"
        assert test_db.query(ChannelHealth).count() == 0

    def test_remote_throttle_is_not_a_failure(self, session_factory, test_db: Session):
        user = make_user(test_db)
        make_event(test_db, user, date(1990, 3, 12))
        driver = FakeDriver(Channel.MAIL, results=[failure(Channel.MAIL, FailureKind.RATE_LIMITED, status=429, retry_after=30)])
        service, _ = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)), mail=driver)

        summary = service.run_tick()

        test_db.expire_all()
        assert summary.count(DispatchOutcome.RATE_LIMITED) == 1
        assert test_db.query(ReminderLog).count() == 0
        assert test_db.query(ChannelHealth).count() == 0
        assert test_db.query(NotificationMetric).count() == 0

    def test_failures_update_health_and_metrics(self, session_factory, test_db: Session):
        user = make_user(test_db)
        make_event(test_db, user, date(1990, 3, 12))
        make_event(test_db, user, date(1990, 3, 13), person_name="Riley")
        driver = FakeDriver(Channel.MAIL, results=[
            failure(Channel.MAIL, FailureKind.TRANSIENT, status=503, detail="HTTP 503"),
            failure(Channel.MAIL, FailureKind.TRANSIENT, status=503, detail="HTTP 503"),
        ])
        service, _ = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)), mail=driver)

        service.run_tick()

        test_db.expire_all()
        health = test_db.query(ChannelHealth).order_by(ChannelHealth.sequence.desc()).first()
        assert health.status == HealthStatus.CRITICAL
        metric = test_db.query(NotificationMetric).one()
        assert metric.failed_count == 2
        assert metric.sent_count == 0

    def test_unexpected_error_does_not_stop_tick(self, session_factory, test_db: Session):
        user = make_user(test_db, channels=["mail", "slack"], slack_webhook=SLACK_URL)
        make_event(test_db, user, date(1990, 3, 12))
        broken = FakeDriver(Channel.SLACK, error=RuntimeError("boom"))
        service, drivers = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)), slack=broken)

        summary = service.run_tick()

        assert summary.sent == 1
        assert summary.count(DispatchOutcome.RETRY) == 1


class TestSuccessBookkeeping:
    """Test metrics and health after successful sends."""

    def test_success_updates_metrics_and_health(self, session_factory, test_db: Session):
        user = make_user(test_db)
        make_event(test_db, user, date(1990, 3, 12))
        service, _ = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)))

        service.run_tick()

        test_db.expire_all()
        metric = test_db.query(NotificationMetric).one()
        assert metric.channel == "mail"
        assert metric.date == date(2025, 3, 10)
        assert metric.sent_count == 1
        assert metric.avg_response_time == 42

        analytics = test_db.query(NotificationAnalytics).one()
        assert analytics.sent_count == 1
        assert analytics.delivered_count == 1

        health = test_db.query(ChannelHealth).one()
        assert health.is_healthy()


class TestRateLimiting:
    """Test rate limits during ticks."""

    def test_blocked_reminders_are_skipped_without_record(self, session_factory, test_db: Session):
        user = make_user(test_db)
        make_event(test_db, user, date(1990, 3, 11), person_name="Alex")
        make_event(test_db, user, date(1990, 3, 12), person_name="Riley")
        config = make_settings(rate_limits={"mail": {"limit": 1, "window_seconds": 3600}})
        clock = FrozenClock(utc(2025, 3, 10, 10, 0))
        service, drivers = build_service(session_factory, clock, config)

        summary = service.run_tick()

        assert summary.sent == 1
        assert summary.count(DispatchOutcome.RATE_LIMITED) == 1
        assert len(drivers[Channel.MAIL].sent) == 1
        assert len(sent_logs(test_db)) == 1

        clock.advance(hours=1)
        retry = service.run_tick()
        assert retry.sent == 1
        assert len(sent_logs(test_db)) == 2

    def test_explicit_tick_instant_drives_limiter_and_health(self, session_factory, test_db: Session):
        user = make_user(test_db)
        make_event(test_db, user, date(1990, 3, 12))
        service, _ = build_service(session_factory, FrozenClock(utc(2030, 1, 1, 0, 0)))

        summary = service.run_tick(utc(2025, 3, 10, 10, 0))

        assert summary.sent == 1
        test_db.expire_all()
        limit = test_db.query(NotificationRateLimit).one()
        assert limit.window_started_at == datetime(2025, 3, 10, 10, 0)
        assert limit.reset_at.year == 2025
        assert test_db.query(ChannelHealth).one().checked_at == datetime(2025, 3, 10, 10, 0)

    def test_rejected_reminder_does_not_use_rate_limit(self, session_factory, test_db: Session):
        user = make_user(test_db)
        make_event(test_db, user, date(1990, 3, 12))
        driver = FakeDriver(
            Channel.MAIL,
            rejection=WebhookValidationError("Invalid mail recipient", ["recipient is required"])
        )
        config = make_settings(rate_limits={"mail": {"limit": 1, "window_seconds": 3600}})
        service, _ = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)), config, mail=driver)

        summary = service.run_tick()

        assert summary.failed == 1
        assert driver.sent == []
        test_db.expire_all()
        log = test_db.query(ReminderLog).one()
        assert log.status == DispatchStatus.FAILED
        assert log.error == "Invalid mail recipient: recipient is required"
        assert test_db.query(NotificationRateLimit).count() == 0
        assert test_db.query(NotificationMetric).one().failed_count == 1


class TestThreadPool:
    """Test fan-out across worker threads."""

    def test_jobs_dispatched_on_pool(self, session_factory, test_db: Session):
        user = make_user(test_db, channels=["mail", "slack"], slack_webhook=SLACK_URL)
        for offset in range(3):
            make_event(test_db, user, date(1990, 3, 11 + offset), person_name=f"Person {offset}")
        service, _ = build_service(
            session_factory,
            FrozenClock(utc(2025, 3, 10, 10, 0)),
            make_settings(scheduler_pool_size=4)
        )

        with patch.object(service, 'dispatch', return_value=DispatchOutcome.SENT) as mock_dispatch:
            summary = service.run_tick()

        assert mock_dispatch.call_count == 6
        assert summary.due == 6
        assert summary.sent == 6


class TestSendTestNotification:
    """Test the synchronous test-send path."""

    def test_success(self, session_factory, test_db: Session):
        user = make_user(test_db, name="Jordan")
        service, drivers = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)))

        result = service.send_test_notification(user.id, "mail")

        assert result.ok
        message = drivers[Channel.MAIL].sent[0][1]
        assert message.notification_type == "test_channel"
        test_db.expire_all()
        assert test_db.query(NotificationAnalytics).one().notification_type == "test_channel"
        assert test_db.query(ReminderLog).count() == 0

    def test_unknown_user(self, session_factory):
        service, _ = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)))

        with pytest.raises(LookupError):
            service.send_test_notification("missing", "mail")

    def test_unconfigured_channel(self, session_factory, test_db: Session):
        user = make_user(test_db, channels=["mail"])
        service, _ = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)))

        with pytest.raises(WebhookValidationError) as exc_info:
            service.send_test_notification(user.id, "slack")

        assert exc_info.value.validation_errors == ["slack target is required"]

    def test_unknown_channel(self, session_factory, test_db: Session):
        user = make_user(test_db)
        service, _ = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)))

        with pytest.raises(ValueError):
            service.send_test_notification(user.id, "fax")

    def test_failed_send_raises(self, session_factory, test_db: Session):
        user = make_user(test_db, channels=["slack"], slack_webhook=SLACK_URL)
        driver = FakeDriver(Channel.SLACK, results=[failure(Channel.SLACK, FailureKind.PERMANENT, status=404, detail="HTTP 404")])
        service, _ = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)), slack=driver)

        with pytest.raises(WebhookSendError) as exc_info:
            service.send_test_notification(user.id, "slack")

        assert exc_info.value.response_code == 404
        test_db.expire_all()
        assert test_db.query(ChannelHealth).one().is_warning()

    def test_rate_limited(self, session_factory, test_db: Session):
        user = make_user(test_db)
        config = make_settings(rate_limits={"mail": {"limit": 1, "window_seconds": 60}})
        service, _ = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)), config)

        service.send_test_notification(user.id, "mail")
        with pytest.raises(RateLimitExceededError) as exc_info:
            service.send_test_notification(user.id, "mail")

        assert exc_info.value.retry_after == 60
        test_db.expire_all()
        assert test_db.query(NotificationRateLimit).one().is_blocked is True

    def test_rejected_test_send_does_not_use_rate_limit(self, session_factory, test_db: Session):
        user = make_user(test_db)
        driver = FakeDriver(
            Channel.MAIL,
            rejection=WebhookValidationError("Invalid mail recipient", ["recipient is required"])
        )
        service, _ = build_service(session_factory, FrozenClock(utc(2025, 3, 10, 10, 0)), mail=driver)

        with pytest.raises(WebhookValidationError):
            service.send_test_notification(user.id, "mail")

        assert driver.sent == []
        test_db.expire_all()
        assert test_db.query(NotificationRateLimit).count() == 0
