"""
Event feed consumed by notification front ends (chat bot, email digest).

The engine publishes status changes, stale flags and strong new
recommendations here; delivery is the subscriber's business.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional
import logging
import threading
import uuid


STATUS_CHANGED = "status_changed"
STALE_FLAGGED = "stale_flagged"
RECOMMENDATION = "recommendation"


@dataclass(frozen=True)
class Event:
    kind: str
    payload: dict
    timestamp: datetime = field(default_factory=datetime.now)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "kind": self.kind,
            "timestamp": self.timestamp.isoformat(),
            "payload": self.payload,
        }


class EventFeed:
    """In-process publish/subscribe feed with a bounded replay buffer."""

    def __init__(self, history_size: int = 500, clock: Callable[[], datetime] = datetime.now):
        self.clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)
        self._subscribers: list[tuple[Callable[[Event], None], Optional[frozenset]]] = []
        self._history: deque[Event] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def subscribe(
        self,
        callback: Callable[[Event], None],
        kinds: Optional[Iterable[str]] = None,
    ) -> Callable[[], None]:
        """
        Register a callback for all events, or only the given kinds.

        Returns:
            A function that removes the subscription
        """
        entry = (callback, frozenset(kinds) if kinds else None)
        with self._lock:
            self._subscribers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, kind: str, payload: dict) -> Event:
        event = Event(kind=kind, payload=payload, timestamp=self.clock())
        with self._lock:
            self._history.append(event)
            subscribers = list(self._subscribers)

        for callback, kinds in subscribers:
            if kinds is not None and kind not in kinds:
                continue
            try:
                callback(event)
            except Exception as e:
                # A failing subscriber must not undo a committed transition
                self.logger.error(f"Subscriber failed on {kind} event: {e}")

        return event

    def recent(self, kind: Optional[str] = None, limit: int = 50) -> list[Event]:
        with self._lock:
            events = [e for e in self._history if kind is None or e.kind == kind]
        return events[-limit:]
