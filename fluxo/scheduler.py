"""
Activity reminder scheduler.

One scheduler belongs to one signed-in session. While running it scans the
user's activities on a fixed interval and alerts once per activity.
"""

import logging
import math
import threading
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from fluxo.database.models import Activity, NotificationType
from fluxo.errors import FluxoError
from fluxo.notifiers.base import ActivityAlert, Notifier
from fluxo.store import RecordStore

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 60


class SchedulerState(str, Enum):
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"


def minutes_until(activity_date: datetime, now: datetime) -> int:
    """Whole minutes from ``now`` until the activity, rounded down."""
    return math.floor((activity_date - now).total_seconds() / 60)


def is_due(activity: Activity, now: datetime, window_minutes: int) -> bool:
    """True for open, not yet alerted activities starting within the window."""
    if activity.completed or activity.notified:
        return False
    return 0 <= minutes_until(activity.date, now) <= window_minutes


class NotificationScheduler:
    """Periodic activity scan for a single user session."""

    def __init__(
        self,
        store: RecordStore,
        notifier: Optional[Notifier] = None,
        interval_seconds: int = DEFAULT_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = datetime.now,
        scheduler_factory: Callable[[], BackgroundScheduler] = BackgroundScheduler,
    ):
        """
        Args:
            store: Record store holding activities, settings and notifications
            notifier: Platform alert channel; None disables platform alerts
            interval_seconds: Seconds between scans
            clock: Source of "now"
            scheduler_factory: Builds the APScheduler backend
        """
        self.store = store
        self.notifier = notifier
        self.interval_seconds = interval_seconds
        self.clock = clock
        self.scheduler_factory = scheduler_factory

        self.user_id: Optional[str] = None
        self._scheduler: Optional[BackgroundScheduler] = None
        self._generation = 0
        self._state_lock = threading.Lock()
        self._scan_lock = threading.Lock()

    @property
    def state(self) -> SchedulerState:
        if self._scheduler is None:
            return SchedulerState.STOPPED
        return SchedulerState.RUNNING

    @property
    def is_running(self) -> bool:
        return self.state == SchedulerState.RUNNING

    def start(self, user_id: str) -> None:
        """
        Start scanning for a user.

        A running job is stopped first so a session never holds two timers.
        The first scan runs before this method returns.
        """
        self.stop()

        with self._state_lock:
            self._generation += 1
            generation = self._generation
            self.user_id = user_id

            scheduler = self.scheduler_factory()
            scheduler.add_job(
                self._tick,
                IntervalTrigger(seconds=self.interval_seconds),
                args=[generation],
                id=f"activity-scan-{user_id}",
                max_instances=1,
                coalesce=True,
            )
            scheduler.start()
            self._scheduler = scheduler

        logger.info(
            f"Reminder scheduler started for user {user_id} "
            f"(every {self.interval_seconds}s)"
        )
        self._tick(generation)

    def stop(self) -> None:
        """Cancel future scans. A scan already in progress may finish."""
        with self._state_lock:
            scheduler = self._scheduler
            if scheduler is None:
                return
            self._generation += 1
            self._scheduler = None
            user_id = self.user_id
            self.user_id = None

        scheduler.remove_all_jobs()
        scheduler.shutdown(wait=False)
        logger.info(f"Reminder scheduler stopped for user {user_id}")

    def _tick(self, generation: int) -> None:
        """Scheduled entry point; skips stale and overlapping runs."""
        if generation != self._generation:
            return
        if not self._scan_lock.acquire(blocking=False):
            logger.debug("Previous activity scan still running, skipping tick")
            return
        try:
            user_id = self.user_id
            if user_id is None or generation != self._generation:
                return
            self.scan(user_id)
        except FluxoError as e:
            logger.error(f"Activity scan failed for user {self.user_id}: {e}")
        finally:
            self._scan_lock.release()

    def scan(self, user_id: str, now: Optional[datetime] = None) -> list[Activity]:
        """
        Alert on every activity due within the user's lead time.

        Settings are read on every scan, so disabling notifications takes
        effect on the next tick.

        Returns:
            Activities that were alerted in this scan
        """
        now = now or self.clock()
        settings = self.store.get_settings(user_id)
        if not settings.notifications_enabled:
            return []

        fired = []
        for activity in self.store.activities.list_for_user(user_id):
            if not is_due(activity, now, settings.activity_alert_minutes):
                continue
            try:
                self._fire(activity)
                fired.append(activity)
            except FluxoError as e:
                logger.error(f"Error alerting activity {activity.id}: {e}")

        if fired:
            logger.info(f"Sent {len(fired)} activity reminder(s) to user {user_id}")
        return fired

    def _fire(self, activity: Activity) -> None:
        when = activity.date.strftime("%H:%M")

        if self.notifier is not None:
            result = self.notifier.send(
                ActivityAlert(
                    user_id=activity.user_id,
                    activity_id=activity.id,
                    title=f"Atividade Próxima: {activity.title}",
                    body=f"Sua atividade está agendada para {when}.",
                    scheduled_for=activity.date,
                )
            )
            if not result.success:
                logger.warning(
                    f"Platform alert via {result.channel} failed: {result.error}"
                )

        with self.store.db.transaction():
            self.store.create_notification(
                activity.user_id,
                f"Lembrete: {activity.title}",
                f"Atividade agendada para {when}",
                NotificationType.ACTIVITY,
            )
            self.store.activities.mark_notified(activity.id)
        activity.notified = True
