"""
Notification scheduler tests.
Tests for the due window, alert side effects and start/stop lifecycle.
"""

import pytest
from datetime import datetime, timedelta
from unittest.mock import MagicMock

from fluxo.database.models import Activity, NotificationType, User, UserSettings
from fluxo.errors import BackendUnavailableError
from fluxo.notifiers.base import NotificationResult, Notifier
from fluxo.scheduler import NotificationScheduler, SchedulerState, is_due, minutes_until
from fluxo.store import RecordStore


class FakeNotifier(Notifier):
    def __init__(self, success: bool = True):
        self.sent = []
        self.success = success

    def send(self, alert):
        self.sent.append(alert)
        return NotificationResult(success=self.success, channel="fake", error=None if self.success else "down")


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def scheduler(store: RecordStore, notifier: FakeNotifier, now: datetime) -> NotificationScheduler:
    return NotificationScheduler(
        store,
        notifier=notifier,
        clock=lambda: now,
        scheduler_factory=MagicMock,
    )


def _activity(store: RecordStore, user: User, date: datetime, **kwargs) -> Activity:
    return store.save_activity(Activity(user_id=user.id, title="Reunião com Carlos", date=date, **kwargs))


class TestDueWindow:
    """Test the minutes-until computation."""

    def test_minutes_are_floored(self, now: datetime):
        assert minutes_until(now + timedelta(minutes=15, seconds=59), now) == 15
        assert minutes_until(now - timedelta(seconds=1), now) == -1

    @pytest.mark.parametrize(
        "offset, expected",
        [
            (timedelta(minutes=15), True),
            (timedelta(minutes=15, seconds=59), True),
            (timedelta(minutes=16), False),
            (timedelta(seconds=0), True),
            (timedelta(minutes=-1), False),
        ],
    )
    def test_is_due(self, now: datetime, offset, expected):
        activity = Activity(user_id="u", title="t", date=now + offset)
        assert is_due(activity, now, 15) is expected

    def test_completed_or_notified_never_due(self, now: datetime):
        date = now + timedelta(minutes=5)
        assert not is_due(Activity(user_id="u", title="t", date=date, completed=True), now, 15)
        assert not is_due(Activity(user_id="u", title="t", date=date, notified=True), now, 15)


class TestScan:
    """Test a single scan."""

    def test_fires_at_window_edge(self, store, user, scheduler, notifier, now):
        activity = _activity(store, user, now + timedelta(minutes=15))

        fired = scheduler.scan(user.id)

        assert [a.id for a in fired] == [activity.id]
        assert len(notifier.sent) == 1
        assert notifier.sent[0].title == "Atividade Próxima: Reunião com Carlos"
        assert notifier.sent[0].body == "Sua atividade está agendada para 09:15."
        assert store.activities.get(user.id, activity.id).notified is True

        notifications = store.list_notifications(user.id)
        assert len(notifications) == 1
        assert notifications[0].type == NotificationType.ACTIVITY
        assert notifications[0].title == "Lembrete: Reunião com Carlos"

    def test_failed_mark_keeps_no_notification(self, store, user, scheduler, now, monkeypatch):
        activity = _activity(store, user, now + timedelta(minutes=5))

        def fail(activity_id):
            raise BackendUnavailableError("disk full")

        monkeypatch.setattr(store.activities, "mark_notified", fail)

        assert scheduler.scan(user.id) == []
        assert store.list_notifications(user.id) == []
        assert store.activities.get(user.id, activity.id).notified is False

    def test_past_activity_is_skipped(self, store, user, scheduler, notifier, now):
        _activity(store, user, now - timedelta(minutes=5))

        assert scheduler.scan(user.id) == []
        assert notifier.sent == []

    def test_outside_window_is_skipped(self, store, user, scheduler, now):
        _activity(store, user, now + timedelta(minutes=16))

        assert scheduler.scan(user.id) == []

    def test_second_scan_does_not_refire(self, store, user, scheduler, notifier, now):
        _activity(store, user, now + timedelta(minutes=10))

        scheduler.scan(user.id)
        assert scheduler.scan(user.id) == []
        assert len(notifier.sent) == 1
        assert len(store.list_notifications(user.id)) == 1

    def test_disabled_notifications_do_nothing(self, store, user, scheduler, notifier, now):
        store.save_settings(UserSettings(user_id=user.id, notifications_enabled=False))
        _activity(store, user, now + timedelta(minutes=5))

        assert scheduler.scan(user.id) == []
        assert notifier.sent == []

    def test_lead_time_comes_from_settings(self, store, user, scheduler, now):
        store.save_settings(UserSettings(user_id=user.id, notifications_enabled=True, activity_alert_minutes=60))
        _activity(store, user, now + timedelta(minutes=45))

        assert len(scheduler.scan(user.id)) == 1

    def test_failed_platform_alert_still_persists(self, store, user, now):
        scheduler = NotificationScheduler(store, notifier=FakeNotifier(success=False), clock=lambda: now)
        activity = _activity(store, user, now + timedelta(minutes=5))

        scheduler.scan(user.id)

        assert store.activities.get(user.id, activity.id).notified is True
        assert len(store.list_notifications(user.id)) == 1

    def test_without_notifier(self, store, user, now):
        scheduler = NotificationScheduler(store, clock=lambda: now)
        _activity(store, user, now + timedelta(minutes=5))

        assert len(scheduler.scan(user.id)) == 1

    def test_only_scans_own_activities(self, store, user, make_user, scheduler, now):
        other = make_user(email="bia@example.com", name="Bia")
        _activity(store, other, now + timedelta(minutes=5))

        assert scheduler.scan(user.id) == []


class TestLifecycle:
    """Test start and stop of the scheduler."""

    def test_start_scans_immediately(self, store, user, scheduler, notifier, now):
        _activity(store, user, now + timedelta(minutes=5))

        scheduler.start(user.id)

        assert scheduler.state == SchedulerState.RUNNING
        assert len(notifier.sent) == 1

    def test_start_registers_interval_job(self, store, user, now):
        backend = MagicMock()
        scheduler = NotificationScheduler(store, clock=lambda: now, interval_seconds=60, scheduler_factory=lambda: backend)

        scheduler.start(user.id)

        backend.add_job.assert_called_once()
        kwargs = backend.add_job.call_args.kwargs
        assert kwargs["max_instances"] == 1
        assert kwargs["coalesce"] is True
        backend.start.assert_called_once()

    def test_restart_stops_previous_backend(self, store, user, now):
        backends = [MagicMock(), MagicMock()]
        scheduler = NotificationScheduler(store, clock=lambda: now, scheduler_factory=lambda: backends.pop(0))

        scheduler.start(user.id)
        first = scheduler._scheduler
        scheduler.start(user.id)

        first.shutdown.assert_called_once_with(wait=False)
        assert scheduler.is_running

    def test_no_tick_after_stop(self, store, user, scheduler, notifier, now):
        scheduler.start(user.id)
        job_args = scheduler._scheduler.add_job.call_args.kwargs["args"]
        scheduler.stop()
        _activity(store, user, now + timedelta(minutes=5))

        scheduler._tick(*job_args)

        assert scheduler.state == SchedulerState.STOPPED
        assert notifier.sent == []

    def test_disabling_mid_session_suppresses_next_tick(self, store, user, scheduler, notifier, now):
        scheduler.start(user.id)
        job_args = scheduler._scheduler.add_job.call_args.kwargs["args"]
        store.save_settings(UserSettings(user_id=user.id, notifications_enabled=False))
        activity = _activity(store, user, now + timedelta(minutes=5))

        scheduler._tick(*job_args)

        assert scheduler.state == SchedulerState.RUNNING
        assert notifier.sent == []
        assert store.list_notifications(user.id) == []
        assert store.activities.get(user.id, activity.id).notified is False

    def test_stop_when_stopped_is_noop(self, scheduler):
        scheduler.stop()
        assert scheduler.state == SchedulerState.STOPPED
