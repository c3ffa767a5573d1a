"""
Feedback Store - Append-only log of user actions and application outcomes.

The full log is the learner's training set. Signals are never edited or
removed; callers only ever get copies of the log.
"""

from datetime import datetime
from pathlib import Path
from typing import Callable, Optional
import logging
import threading

from job_recommender.core.models import ApplicationStatus, FeedbackAction, FeedbackSignal
from job_recommender.utils.storage import append_jsonl, read_jsonl


class FeedbackStore:
    """Thread-safe append-only feedback log, optionally mirrored to a JSON-lines file."""

    def __init__(
        self,
        storage_path: Optional[str] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.storage_path = Path(storage_path) if storage_path else None
        self.clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

        self._signals: list[FeedbackSignal] = []
        self._lock = threading.Lock()
        self._listeners: list[Callable[[FeedbackSignal], None]] = []

        if self.storage_path:
            self._signals = [FeedbackSignal.from_dict(d) for d in read_jsonl(self.storage_path)]
            self.logger.info(f"Loaded {len(self._signals)} feedback signals")

    def record(
        self,
        job_id: str,
        action: FeedbackAction,
        reason: Optional[str] = None,
        outcome: Optional[ApplicationStatus] = None,
        highest_stage: Optional[ApplicationStatus] = None,
        application_id: Optional[str] = None,
    ) -> FeedbackSignal:
        """Append a new signal and notify listeners."""
        signal = FeedbackSignal(
            job_id=job_id,
            action=action,
            timestamp=self.clock(),
            reason=reason,
            outcome=outcome,
            highest_stage=highest_stage,
            application_id=application_id,
        )
        return self.append(signal)

    def append(self, signal: FeedbackSignal) -> FeedbackSignal:
        with self._lock:
            if self.storage_path:
                append_jsonl(self.storage_path, signal.to_dict())
            self._signals.append(signal)
            listeners = list(self._listeners)

        self.logger.info(f"Feedback: {signal.action.value} on {signal.job_id}"
                         + (f" ({signal.outcome.value})" if signal.outcome else ""))

        for listener in listeners:
            listener(signal)
        return signal

    def add_listener(self, listener: Callable[[FeedbackSignal], None]) -> None:
        self._listeners.append(listener)

    def all(self) -> tuple[FeedbackSignal, ...]:
        with self._lock:
            return tuple(self._signals)

    def for_job(self, job_id: str) -> list[FeedbackSignal]:
        return [s for s in self.all() if s.job_id == job_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._signals)
