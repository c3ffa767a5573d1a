"""
Feedback Learner - Re-weights the scoring features from accumulated feedback.

Each job with a terminal signal becomes one training example:
- positive: the application reached interview or better
- negative: the job was passed on, or rejected before any interview
- neutral: anything else (excluded)

Weights move by a bounded gradient step on logistic loss over the five
sub-scores, so each weight stays tied to one named feature and shifts
gradually. Labeled jobs are also frozen into the new version as exemplars
for the historical-success feature.
"""

from dataclasses import dataclass
from typing import Callable, Iterable, Optional
import logging
import math
import threading

from job_recommender.core.exceptions import InsufficientTrainingData
from job_recommender.core.models import (
    FEATURES,
    ApplicationStatus,
    FeedbackAction,
    FeedbackSignal,
    JobRecord,
    WeightVector,
)
from job_recommender.learning.feedback_store import FeedbackStore
from job_recommender.learning.weights import WeightStore
from job_recommender.utils.text import jaccard, normalize_skill, normalize_title


TITLE_STOPWORDS = {"and", "of", "the", "for", "to", "in", "a", "an", "with", "i", "ii", "iii"}


def job_feature_tokens(job: JobRecord) -> tuple[str, ...]:
    """Token set describing what a job is about: its skills and title words."""
    tokens = {f"skill:{normalize_skill(s)}" for s in job.all_skills}
    tokens |= {f"title:{t}" for t in normalize_title(job.title).split() if t not in TITLE_STOPWORDS}
    return tuple(sorted(tokens))


def job_similarity(a: Iterable[str], b: Iterable[str]) -> float:
    """Similarity of two job feature token sets (0-1)."""
    return jaccard(a, b)


def historical_success_score(tokens: Iterable[str], vector: WeightVector) -> float:
    """
    How much a job resembles past successes rather than past rejections.

    0.5 + 0.5 * (best similarity to a positive exemplar - best similarity
    to a negative exemplar); 0.5 when the vector carries no exemplars.
    """
    tokens = tuple(tokens)
    if not vector.positive_exemplars and not vector.negative_exemplars:
        return 0.5

    best_positive = max((job_similarity(tokens, e) for e in vector.positive_exemplars), default=0.0)
    best_negative = max((job_similarity(tokens, e) for e in vector.negative_exemplars), default=0.0)
    return min(1.0, max(0.0, 0.5 + 0.5 * (best_positive - best_negative)))


def label_signals(signals: Iterable[FeedbackSignal]) -> Optional[int]:
    """Label for one job's signals: 1 positive, 0 negative, None neutral."""
    signals = list(signals)

    for signal in signals:
        for stage in (signal.outcome, signal.highest_stage):
            if stage is not None and stage.reached_interview:
                return 1

    for signal in signals:
        if signal.action == FeedbackAction.PASSED:
            return 0
        if signal.outcome == ApplicationStatus.REJECTED:
            return 0

    return None


@dataclass
class TrainingExample:
    job_id: str
    label: int
    features: Optional[dict]
    tokens: tuple[str, ...]


class FeedbackLearner:
    """Produces new weight-vector versions from the feedback log."""

    def __init__(
        self,
        weight_store: WeightStore,
        feedback_store: FeedbackStore,
        job_lookup: Callable[[str], Optional[JobRecord]],
        feature_lookup: Callable[[str], Optional[dict]],
        id_resolver: Optional[Callable[[str], str]] = None,
        learning_rate: float = 0.5,
        max_step: float = 0.05,
        epochs: int = 20,
        min_weight: float = 0.05,
        max_weight: float = 3.0,
        min_labeled_examples: int = 2,
        retrain_after: int = 5,
    ):
        """
        Args:
            weight_store: Where versions are read and committed
            feedback_store: The training log (read only)
            job_lookup: job id -> JobRecord (None if unknown)
            feature_lookup: job id -> sub-scores of its latest match (None if never scored)
            id_resolver: Maps a retired job id to the id it was merged into
            learning_rate: Gradient step size
            max_step: Largest change any weight may take in one epoch
            epochs: Passes over the examples per retrain
            min_weight / max_weight: Bounds keeping every feature in play
            min_labeled_examples: Fewer labeled jobs than this skips retraining
            retrain_after: New signals that trigger `maybe_retrain`
        """
        self.weight_store = weight_store
        self.feedback_store = feedback_store
        self.job_lookup = job_lookup
        self.feature_lookup = feature_lookup
        self.id_resolver = id_resolver
        self.learning_rate = learning_rate
        self.max_step = max_step
        self.epochs = epochs
        self.min_weight = min_weight
        self.max_weight = max_weight
        self.min_labeled_examples = min_labeled_examples
        self.retrain_after = retrain_after

        self.logger = logging.getLogger(self.__class__.__name__)
        self._retrain_lock = threading.Lock()
        self._trained_through = weight_store.current().trained_on

    @property
    def pending_signals(self) -> int:
        """Signals recorded since the last retrain attempt."""
        return max(0, len(self.feedback_store) - self._trained_through)

    def maybe_retrain(self) -> Optional[WeightVector]:
        """Retrain once enough new signals have accumulated; None otherwise."""
        if self.pending_signals < self.retrain_after:
            return None
        with self._retrain_lock:
            # Another caller may have retrained while this one waited
            if self.pending_signals < self.retrain_after:
                return None
            return self._retrain(None)

    def retrain(self, signals: Optional[Iterable[FeedbackSignal]] = None) -> WeightVector:
        """
        Fit a new weight vector on the feedback log.

        Args:
            signals: Signals to train on (default: the whole log)

        Returns:
            The new current version, or the unchanged current version when
            the data cannot support a retrain
        """
        with self._retrain_lock:
            return self._retrain(signals)

    def _retrain(self, signals: Optional[Iterable[FeedbackSignal]]) -> WeightVector:
        signals = tuple(signals) if signals is not None else self.feedback_store.all()
        current = self.weight_store.current()

        try:
            examples = self.build_examples(signals)
            weights = self.fit(examples, current.weights)
        except InsufficientTrainingData as e:
            self.logger.warning(f"Skipping retrain, keeping v{current.version}: {e}")
            self._trained_through = max(self._trained_through, len(signals))
            return current

        vector = self.weight_store.commit(
            weights,
            trained_on=len(signals),
            positive_exemplars=[e.tokens for e in examples if e.label == 1 and e.tokens],
            negative_exemplars=[e.tokens for e in examples if e.label == 0 and e.tokens],
        )
        self._trained_through = max(self._trained_through, len(signals))
        self.logger.info(
            f"Retrained on {len(examples)} labeled jobs from {len(signals)} signals -> v{vector.version}"
        )
        return vector

    def build_examples(self, signals: Iterable[FeedbackSignal]) -> list[TrainingExample]:
        """Group signals by (current) job id and label each job; neutral jobs are dropped."""
        by_job: dict[str, list[FeedbackSignal]] = {}
        for signal in signals:
            job_id = self.id_resolver(signal.job_id) if self.id_resolver else signal.job_id
            by_job.setdefault(job_id, []).append(signal)

        examples = []
        for job_id in sorted(by_job):
            label = label_signals(by_job[job_id])
            if label is None:
                continue
            job = self.job_lookup(job_id)
            tokens = job_feature_tokens(job) if job else ()
            examples.append(TrainingExample(job_id, label, self.feature_lookup(job_id), tokens))

        positives = sum(1 for e in examples if e.label == 1)
        negatives = len(examples) - positives

        if len(examples) < self.min_labeled_examples:
            raise InsufficientTrainingData(len(examples), self.min_labeled_examples)
        if not positives or not negatives:
            raise InsufficientTrainingData(
                len(examples), self.min_labeled_examples,
                f"need both outcomes ({positives} positive, {negatives} negative)",
            )
        return examples

    def fit(self, examples: list[TrainingExample], start: dict) -> dict:
        """Bounded batch gradient descent on logistic loss over centred sub-scores."""
        weights = {f: float(start.get(f, 1.0)) for f in FEATURES}
        featured = [e for e in examples if e.features]
        if not featured:
            self.logger.info("No scored jobs among labeled examples; weights unchanged")
            return weights

        for _ in range(self.epochs):
            gradient = {f: 0.0 for f in FEATURES}
            for example in featured:
                x = {f: example.features.get(f, 0.5) - 0.5 for f in FEATURES}
                z = sum(weights[f] * x[f] for f in FEATURES)
                p = 1.0 / (1.0 + math.exp(-z))
                for f in FEATURES:
                    gradient[f] += (p - example.label) * x[f]

            for f in FEATURES:
                step = -self.learning_rate * gradient[f] / len(featured)
                step = max(-self.max_step, min(self.max_step, step))
                weights[f] = max(self.min_weight, min(self.max_weight, weights[f] + step))

        return weights
