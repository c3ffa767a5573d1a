"""
Weight vector versions and the "current" pointer.

Versions are immutable and never removed. Retraining commits a new version
and swaps the pointer in one assignment, so readers never wait on a
running retrain.
"""

from datetime import datetime
from pathlib import Path
from typing import Callable, Optional
import logging
import threading

from job_recommender.core.models import FEATURES, WeightVector
from job_recommender.utils.storage import read_json, write_json


DEFAULT_WEIGHTS = {feature: 1.0 for feature in FEATURES}


class WeightStore:
    """Holds every weight-vector version plus the active one."""

    def __init__(
        self,
        storage_path: Optional[str] = None,
        default_weights: Optional[dict] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.storage_path = Path(storage_path) if storage_path else None
        self.clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

        self._versions: dict[int, WeightVector] = {}
        self._current: Optional[WeightVector] = None
        self._commit_lock = threading.Lock()

        if self.storage_path:
            self.storage_path.mkdir(parents=True, exist_ok=True)
            self._load()

        if not self._versions:
            weights = dict(DEFAULT_WEIGHTS)
            weights.update(default_weights or {})
            self._store(WeightVector(version=1, weights=weights, created_at=self.clock()))

    def current(self) -> WeightVector:
        """The active weight vector."""
        return self._current

    def get(self, version: int) -> WeightVector:
        try:
            return self._versions[version]
        except KeyError:
            raise KeyError(f"Unknown weight vector version: {version}") from None

    def versions(self) -> list[WeightVector]:
        return [self._versions[v] for v in sorted(self._versions)]

    def commit(
        self,
        weights: dict,
        trained_on: int = 0,
        positive_exemplars: tuple = (),
        negative_exemplars: tuple = (),
    ) -> WeightVector:
        """Create the next version and make it current."""
        missing = [f for f in FEATURES if f not in weights]
        if missing:
            raise ValueError(f"Weights missing features: {missing}")

        with self._commit_lock:
            parent = self._current
            vector = WeightVector(
                version=max(self._versions) + 1,
                weights={f: float(weights[f]) for f in FEATURES},
                created_at=self.clock(),
                parent_version=parent.version if parent else None,
                trained_on=trained_on,
                positive_exemplars=tuple(tuple(e) for e in positive_exemplars),
                negative_exemplars=tuple(tuple(e) for e in negative_exemplars),
            )
            self._store(vector)

        self.logger.info(f"Committed weight vector v{vector.version}: {vector.weights}")
        return vector

    def _store(self, vector: WeightVector) -> None:
        if self.storage_path:
            write_json(self.storage_path / f"v{vector.version:04d}.json", vector.to_dict())
            write_json(self.storage_path / "_current.json", {"version": vector.version})
        self._versions[vector.version] = vector
        self._current = vector

    def _load(self) -> None:
        for filepath in sorted(self.storage_path.glob("v*.json")):
            vector = WeightVector.from_dict(read_json(filepath))
            self._versions[vector.version] = vector

        if not self._versions:
            return

        pointer = self.storage_path / "_current.json"
        version = read_json(pointer)["version"] if pointer.exists() else max(self._versions)
        self._current = self._versions.get(version, self._versions[max(self._versions)])
        self.logger.info(f"Loaded {len(self._versions)} weight versions (current v{self._current.version})")
