"""
Stale Detector - Flags applied applications that have gone quiet.

Staleness is derived on read from the status history and never stored,
so it can't disagree with the history.
"""

from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional
import logging
import threading

from job_recommender.core.models import ApplicationRecord, ApplicationStatus
from job_recommender.tracker.events import STALE_FLAGGED, EventFeed


class StaleDetector:
    """Decides whether an application in `applied` has seen no activity for too long."""

    DEFAULT_THRESHOLD_DAYS = 14

    def __init__(
        self,
        threshold_days: float = DEFAULT_THRESHOLD_DAYS,
        clock: Callable[[], datetime] = datetime.now,
        event_feed: Optional[EventFeed] = None,
    ):
        self.threshold = timedelta(days=threshold_days)
        self.clock = clock
        self.event_feed = event_feed
        self.logger = logging.getLogger(self.__class__.__name__)

        # (application id, history length) pairs already announced on the feed
        self._announced: set[tuple[str, int]] = set()
        self._lock = threading.Lock()

    def is_stale(self, application: ApplicationRecord, now: Optional[datetime] = None) -> bool:
        if application.status != ApplicationStatus.APPLIED:
            return False
        last_activity = application.last_activity
        if last_activity is None:
            return False
        now = now or self.clock()
        return now - last_activity >= self.threshold

    def days_idle(self, application: ApplicationRecord, now: Optional[datetime] = None) -> float:
        last_activity = application.last_activity
        if last_activity is None:
            return 0.0
        return ((now or self.clock()) - last_activity).total_seconds() / 86400

    def find_stale(
        self,
        applications: Iterable[ApplicationRecord],
        now: Optional[datetime] = None,
    ) -> list[ApplicationRecord]:
        """Stale applications, longest idle first."""
        now = now or self.clock()
        stale = [app for app in applications if self.is_stale(app, now)]
        return sorted(stale, key=lambda app: (app.last_activity, app.application_id))

    def scan(
        self,
        applications: Iterable[ApplicationRecord],
        now: Optional[datetime] = None,
    ) -> list[ApplicationRecord]:
        """
        Find stale applications and announce the newly stale ones on the event feed.

        An application is announced once per quiet period; any new history
        entry starts a new period.
        """
        now = now or self.clock()
        stale = self.find_stale(applications, now)

        fresh = []
        with self._lock:
            for app in stale:
                key = (app.application_id, len(app.history))
                if key not in self._announced:
                    self._announced.add(key)
                    fresh.append(app)

        if self.event_feed is not None:
            for app in fresh:
                self.event_feed.publish(STALE_FLAGGED, {
                    "application_id": app.application_id,
                    "job_id": app.job_id,
                    "last_activity": app.last_activity.isoformat(),
                    "days_idle": round(self.days_idle(app, now), 1),
                })

        if fresh:
            self.logger.info(f"{len(fresh)} application(s) newly stale")
        return stale
