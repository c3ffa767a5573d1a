"""
Application Tracker - Lifecycle and audit trail of tracked applications.

Any status may move to any other status. What the tracker guarantees is
that every transition is timestamped and appended to the application's
history together with the status change, that transitions on one
application are serialized, and that no transition is ever dropped.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional
import csv
import logging
import threading

from job_recommender.core.exceptions import ConcurrentTransitionConflict, UnknownApplication
from job_recommender.core.models import (
    ApplicationRecord,
    ApplicationStatus,
    FeedbackAction,
    FeedbackSignal,
    StatusEntry,
)
from job_recommender.learning.feedback_store import FeedbackStore
from job_recommender.tracker.events import STATUS_CHANGED, EventFeed
from job_recommender.tracker.stale_detector import StaleDetector
from job_recommender.utils.storage import read_json, safe_filename, write_json


@dataclass
class TransitionResult:
    """What a transition did."""
    application: ApplicationRecord
    entry: StatusEntry
    previous: ApplicationStatus
    conflict: Optional[ConcurrentTransitionConflict] = None
    signal: Optional[FeedbackSignal] = None


class ApplicationTracker:
    """Tracks applications; the append-only history is authoritative, status is its projection."""

    # Entering these statuses is an outcome the learner can use
    OUTCOME_STATUSES = {
        ApplicationStatus.INTERVIEW,
        ApplicationStatus.OFFER,
        ApplicationStatus.ACCEPTED,
        ApplicationStatus.REJECTED,
        ApplicationStatus.WITHDRAWN,
    }

    def __init__(
        self,
        storage_path: Optional[str] = None,
        feedback_store: Optional[FeedbackStore] = None,
        event_feed: Optional[EventFeed] = None,
        clock: Callable[[], datetime] = datetime.now,
        stale_detector: Optional[StaleDetector] = None,
    ):
        """
        Initialize the application tracker.

        Args:
            storage_path: Directory for storing application data (None keeps it in memory)
            feedback_store: Receives a signal for every outcome transition
            event_feed: Receives a status-change event for every transition
            clock: Time source
            stale_detector: Counts stale applications in the statistics
        """
        self.storage_path = Path(storage_path) if storage_path else None
        self.feedback_store = feedback_store
        self.event_feed = event_feed
        self.clock = clock
        self.stale_detector = stale_detector
        self.logger = logging.getLogger(self.__class__.__name__)

        self.applications: dict[str, ApplicationRecord] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

        if self.storage_path:
            self.storage_path.mkdir(parents=True, exist_ok=True)
            self._load_applications()

    def track(
        self,
        job_id: str,
        resume_version_id: str,
        status: ApplicationStatus = ApplicationStatus.SAVED,
        cover_letter_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> ApplicationRecord:
        """
        Set a status for a (job, resume version, cover letter), creating the record on first use.

        Returns:
            The application record after the status was recorded
        """
        with self._registry_lock:
            existing = self._find(job_id, resume_version_id, cover_letter_id)
            if existing is None:
                record = ApplicationRecord(
                    job_id=job_id,
                    resume_version_id=resume_version_id,
                    cover_letter_id=cover_letter_id,
                    status=status,
                    created_at=self.clock(),
                )
                record.history.append(StatusEntry(1, status, record.created_at, note))
                self._save_application(record)
                self.applications[record.application_id] = record
                self._locks[record.application_id] = threading.RLock()

        if existing is not None:
            return self.transition(existing.application_id, status, note).application

        self.logger.info(f"Tracking application {record.application_id} for job {job_id} ({status.value})")
        self._after_transition(record, record.history[0], None)
        return self._snapshot(record)

    def transition(
        self,
        application_id: str,
        status: ApplicationStatus,
        note: Optional[str] = None,
        expected_status: Optional[ApplicationStatus] = None,
    ) -> TransitionResult:
        """
        Move an application to a new status.

        Args:
            application_id: ID of the application
            status: New status (any status is allowed)
            note: Optional note stored with the history entry
            expected_status: Status the caller last saw; a mismatch means another
                transition got in first. Both are kept and this one wins.

        Returns:
            TransitionResult, with `conflict` set when the caller raced another transition

        Raises:
            UnknownApplication: if the application is not tracked
        """
        lock = self._lock_for(application_id)

        with lock:
            record = self.applications.get(application_id)
            if record is None or record.deleted:
                raise UnknownApplication(application_id)

            previous = record.status
            conflict = None
            if expected_status is not None and expected_status != previous:
                conflict = ConcurrentTransitionConflict(application_id, expected_status, previous, status)
                self.logger.warning(str(conflict))

            last = record.history[-1] if record.history else None
            timestamp = self.clock()
            if last is not None and timestamp < last.timestamp:
                timestamp = last.timestamp
            entry = StatusEntry(len(record.history) + 1, status, timestamp, note)

            # Persist first; memory only changes once the record is durable
            updated = replace(record, status=status, history=record.history + [entry])
            self._save_application(updated)
            record.history.append(entry)
            record.status = status

            self.logger.info(f"Application {application_id}: {previous.value} -> {status.value}")
            signal = self._after_transition(record, entry, previous)

            return TransitionResult(self._snapshot(record), entry, previous, conflict, signal)

    def _after_transition(
        self,
        record: ApplicationRecord,
        entry: StatusEntry,
        previous: Optional[ApplicationStatus],
    ) -> Optional[FeedbackSignal]:
        signal = None
        if self.feedback_store is not None and entry.status in self.OUTCOME_STATUSES:
            signal = self.feedback_store.record(
                job_id=record.job_id,
                action=FeedbackAction.INTERVIEW_OUTCOME,
                reason=entry.note,
                outcome=entry.status,
                highest_stage=record.highest_stage,
                application_id=record.application_id,
            )

        if self.event_feed is not None:
            self.event_feed.publish(STATUS_CHANGED, {
                "application_id": record.application_id,
                "job_id": record.job_id,
                "from": previous.value if previous else None,
                "to": entry.status.value,
                "sequence": entry.sequence,
                "note": entry.note,
            })
        return signal

    def get_application(self, application_id: str) -> Optional[ApplicationRecord]:
        """Get a copy of an application by ID."""
        record = self.applications.get(application_id)
        return self._snapshot(record) if record and not record.deleted else None

    def history(self, application_id: str) -> tuple[StatusEntry, ...]:
        with self._lock_for(application_id):
            record = self.applications.get(application_id)
            if record is None:
                raise UnknownApplication(application_id)
            return tuple(record.history)

    def is_live(self, application_id: str) -> bool:
        """True while the application exists, is not deleted and was not withdrawn."""
        record = self.applications.get(application_id)
        return bool(record) and not record.deleted and record.status != ApplicationStatus.WITHDRAWN

    def get_applications_by_status(self, status: ApplicationStatus) -> list[ApplicationRecord]:
        """Get all applications with a specific status."""
        return [app for app in self.get_all_applications() if app.status == status]

    def get_all_applications(self) -> list[ApplicationRecord]:
        """Get all tracked (non-deleted) applications."""
        with self._registry_lock:
            records = [r for r in self.applications.values() if not r.deleted]
        return [self._snapshot(r) for r in sorted(records, key=lambda r: (r.created_at, r.application_id))]

    def get_active_applications(self) -> list[ApplicationRecord]:
        """Get applications that are still in progress."""
        return [app for app in self.get_all_applications() if not app.status.is_terminal]

    def get_statistics(self) -> dict:
        """Get statistics about tracked applications."""
        applications = self.get_all_applications()
        total = len(applications)

        if total == 0:
            return {
                "total": 0,
                "by_status": {},
                "response_rate": 0,
                "interview_rate": 0,
                "active_applications": 0,
                "stale": 0,
            }

        by_status = {}
        for status in ApplicationStatus:
            count = sum(1 for app in applications if app.status == status)
            if count > 0:
                by_status[status.value] = count

        applied = [app for app in applications if app.highest_stage.stage >= ApplicationStatus.APPLIED.stage]
        responded = [app for app in applied if app.highest_stage.stage >= ApplicationStatus.SCREENING.stage
                     or app.status == ApplicationStatus.REJECTED]
        interviewed = [app for app in applied if app.highest_stage.reached_interview]

        return {
            "total": total,
            "by_status": by_status,
            "response_rate": (len(responded) / len(applied) * 100) if applied else 0,
            "interview_rate": (len(interviewed) / len(applied) * 100) if applied else 0,
            "active_applications": len([app for app in applications if not app.status.is_terminal]),
            "stale": len(self.stale_detector.find_stale(applications)) if self.stale_detector else 0,
        }

    def remove_application(self, application_id: str) -> bool:
        """
        Stop tracking an application.

        The record is marked deleted; its history is kept.

        Returns:
            True if removed, False if not found
        """
        with self._lock_for(application_id):
            record = self.applications.get(application_id)
            if record is None or record.deleted:
                return False
            self._save_application(replace(record, deleted=True))
            record.deleted = True

        self.logger.info(f"Removed application {application_id}")
        return True

    def export_to_csv(self, filepath: str) -> str:
        """
        Export all applications and their history to CSV.

        Returns:
            Path to the exported CSV file
        """
        applications = self.get_all_applications()

        with open(filepath, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            writer.writerow([
                "ID", "Job ID", "Resume Version", "Cover Letter", "Status",
                "Created", "Last Activity", "Transitions", "History",
            ])
            for app in applications:
                writer.writerow([
                    app.application_id,
                    app.job_id,
                    app.resume_version_id,
                    app.cover_letter_id or "",
                    app.status.value,
                    app.created_at.isoformat(),
                    app.last_activity.isoformat() if app.last_activity else "",
                    len(app.history),
                    " > ".join(e.status.value for e in app.history),
                ])

        self.logger.info(f"Exported {len(applications)} applications to {filepath}")
        return filepath

    def _find(self, job_id: str, resume_version_id: str, cover_letter_id: Optional[str]) -> Optional[ApplicationRecord]:
        for record in self.applications.values():
            if (not record.deleted and record.job_id == job_id
                    and record.resume_version_id == resume_version_id
                    and record.cover_letter_id == cover_letter_id):
                return record
        return None

    def _lock_for(self, application_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(application_id)
            if lock is None:
                if application_id not in self.applications:
                    raise UnknownApplication(application_id)
                lock = self._locks[application_id] = threading.RLock()
            return lock

    @staticmethod
    def _snapshot(record: ApplicationRecord) -> ApplicationRecord:
        return replace(record, history=list(record.history))

    def _save_application(self, application: ApplicationRecord) -> None:
        """Save an application to disk."""
        if not self.storage_path:
            return
        write_json(self.storage_path / f"{safe_filename(application.application_id)}.json", application.to_dict())

    def _load_applications(self) -> None:
        """Load all saved applications from disk."""
        for filepath in sorted(self.storage_path.glob("*.json")):
            application = ApplicationRecord.from_dict(read_json(filepath))
            self.applications[application.application_id] = application
            self._locks[application.application_id] = threading.RLock()

        self.logger.info(f"Loaded {len(self.applications)} applications")
