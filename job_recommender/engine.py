"""
Recommendation Engine - Wires the stores, scorer, learner, tracker and
analysis manager together from one Config.

Every operation here is independently callable from any thread: scoring
runs on a worker pool bounded by the analysis concurrency limit, state
transitions serialize per application, and retraining swaps the active
weight vector atomically without blocking scorers.
"""

from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional, Union
import logging
import threading
import time

from job_recommender.analysis.client import AnalysisClient, AnthropicAnalysisClient
from job_recommender.analysis.cost import CostLedger
from job_recommender.analysis.invocation_manager import AIInvocationManager
from job_recommender.analysis.results import (
    AnalysisResult,
    CoverLetter,
    InterviewPrep,
    InvocationKind,
    ParsedResume,
    TailoringSuggestions,
)
from job_recommender.core.deduplicator import DedupOutcome, Deduplicator, IngestReport
from job_recommender.core.exceptions import EngineError, UnknownApplication
from job_recommender.core.matcher import MatchScorer
from job_recommender.core.models import (
    ApplicationRecord,
    ApplicationStatus,
    FeedbackAction,
    FeedbackSignal,
    JobRecord,
    MatchResult,
    SkillProfile,
    StatusEntry,
    UserPreferences,
    WeightVector,
)
from job_recommender.core.profile_parser import ResumeTextExtractor, profile_from_analysis, profile_from_json
from job_recommender.core.stores import JobStore, MatchResultStore, ProfileStore
from job_recommender.integrations.aggregator import FetchReport, JobAggregator
from job_recommender.learning.feedback_store import FeedbackStore
from job_recommender.learning.learner import FeedbackLearner
from job_recommender.learning.weights import WeightStore
from job_recommender.tracker.application_tracker import ApplicationTracker, TransitionResult
from job_recommender.tracker.events import RECOMMENDATION, Event, EventFeed
from job_recommender.tracker.stale_detector import StaleDetector
from job_recommender.utils.config import Config


@dataclass
class ScoreReport:
    """Results of a bulk scoring run; failed jobs are listed, not raised."""
    results: list[MatchResult] = field(default_factory=list)
    errors: dict[str, EngineError] = field(default_factory=dict)


class RecommendationEngine:
    """Facade over the recommendation and feedback-learning components."""

    MANAGER_OPTIONS = (
        "cache_ttl_seconds", "max_attempts", "base_delay", "max_delay",
        "timeout_seconds", "max_concurrency", "batch_size",
    )

    def __init__(
        self,
        config: Optional[Config] = None,
        data_dir: Optional[str] = None,
        analysis_client: Optional[AnalysisClient] = None,
        in_memory: bool = False,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            config: Configuration (default: ~/.job_recommender/config.json)
            data_dir: Overrides `storage.data_dir`
            analysis_client: Analysis service adapter (default: Anthropic, created on first use)
            in_memory: Keep all state in memory instead of under data_dir
            clock: Time source shared by every component
            sleep: Used between analysis retries
        """
        self.config = config or Config()
        self.clock = clock
        self.sleep = sleep
        self.logger = logging.getLogger(self.__class__.__name__)

        root = None if in_memory else Path(data_dir or self.config.get_data_dir())
        if root is not None:
            root.mkdir(parents=True, exist_ok=True)
        self.data_dir = root

        self.events = EventFeed(clock=clock)
        self.job_store = JobStore(self._path("jobs"))
        self.profile_store = ProfileStore(self._path("profiles"))
        self.result_store = MatchResultStore(self._path("matches.jsonl"))
        self.feedback_store = FeedbackStore(self._path("feedback.jsonl"), clock=clock)
        self.weight_store = WeightStore(self._path("weights"), clock=clock)

        self.preferences = UserPreferences.from_dict(self.config.section("preferences"))
        self.deduplicator = Deduplicator(self.job_store, **self.config.section("dedup"))
        self.scorer = MatchScorer(
            self.profile_store,
            self.job_store,
            self.weight_store,
            self.result_store,
            preferences=self.preferences,
            clock=clock,
        )
        self.learner = FeedbackLearner(
            self.weight_store,
            self.feedback_store,
            job_lookup=self.job_store.find,
            feature_lookup=self._latest_subscores,
            id_resolver=self.job_store.resolve,
            **self.config.section("learning"),
        )
        self.stale_detector = StaleDetector(self.config.get("tracker.stale_days", 14), clock, self.events)
        self.tracker = ApplicationTracker(
            self._path("applications"),
            self.feedback_store,
            self.events,
            clock=clock,
            stale_detector=self.stale_detector,
        )
        self.feedback_store.add_listener(self._on_feedback)
        self.extractor = ResumeTextExtractor()

        self.notify_threshold = self.config.get("scoring.notify_threshold", 80)
        self._notified: set[tuple[str, str, int]] = set()
        self._notify_lock = threading.Lock()

        self._analysis_client = analysis_client
        self._manager: Optional[AIInvocationManager] = None
        self._manager_lock = threading.Lock()

    def _path(self, name: str) -> Optional[str]:
        return str(self.data_dir / name) if self.data_dir is not None else None

    # Analysis

    @property
    def manager(self) -> AIInvocationManager:
        """The invocation manager; the analysis client is created on first use."""
        with self._manager_lock:
            if self._manager is None:
                analysis = self.config.section("analysis")
                client = self._analysis_client or AnthropicAnalysisClient(
                    api_key=self.config.get_api_key("anthropic") or None,
                    model=analysis.get("model", "claude-sonnet-4-20250514"),
                    max_tokens=analysis.get("max_tokens", 2000),
                )
                ledger = CostLedger(
                    input_cost_per_1k=analysis.get("input_cost_per_1k", 0.003),
                    output_cost_per_1k=analysis.get("output_cost_per_1k", 0.015),
                    storage_path=self._path("costs.jsonl"),
                )
                options = {k: analysis[k] for k in self.MANAGER_OPTIONS if k in analysis}
                self._manager = AIInvocationManager(
                    client,
                    ledger,
                    cache_path=self._path("analysis_cache.jsonl"),
                    clock=self.clock,
                    sleep=self.sleep,
                    **options,
                )
            return self._manager

    @property
    def max_concurrency(self) -> int:
        return self.config.get("analysis.max_concurrency", 4)

    def cost_summary(self) -> dict:
        return self.manager.cost_summary()

    def retry_failed_analysis(self) -> list[Union[AnalysisResult, Exception]]:
        return self.manager.retry_failed()

    # Jobs

    def ingest_jobs(self, candidates: Iterable[JobRecord]) -> IngestReport:
        """Deduplicate candidate records into the job store."""
        return self.deduplicator.ingest_many(candidates)

    def fetch_and_ingest(self, aggregator: JobAggregator, limit_per_source: Optional[int] = None) -> tuple[FetchReport, IngestReport]:
        fetched = aggregator.fetch_all(limit_per_source)
        return fetched, self.ingest_jobs(fetched.jobs)

    def resolve_duplicate(self, review_id: str, merge_into: Optional[str] = None) -> DedupOutcome:
        return self.deduplicator.resolve(review_id, merge_into)

    def archive_job(self, job_id: str, keep_snapshot: bool = True) -> JobRecord:
        return self.job_store.archive(job_id, keep_snapshot=keep_snapshot)

    # Profiles

    def parse_resume(
        self,
        resume_version_id: str,
        file_path: Optional[str] = None,
        text: Optional[str] = None,
    ) -> SkillProfile:
        """
        Parse a resume version through the analysis service and store its skill profile.

        Reparsing unchanged content is answered from the analysis cache and
        keeps the current snapshot.

        Raises:
            AnalysisUnavailable: if the service could not be reached
        """
        if text is None:
            if file_path is None:
                raise ValueError("Either file_path or text is required")
            text = self.extractor.extract(file_path)

        parsed: ParsedResume = self.manager.invoke(InvocationKind.PARSE_RESUME, {"resume_text": text})
        return self._store_profile(profile_from_analysis(resume_version_id, parsed, self.clock()))

    def load_profile(self, resume_version_id: str, file_path: str) -> SkillProfile:
        """Store a skill profile from a JSON skills file, without the analysis service."""
        return self._store_profile(profile_from_json(resume_version_id, file_path, self.clock()))

    def _store_profile(self, profile: SkillProfile) -> SkillProfile:
        history = self.profile_store.history(profile.resume_version_id)
        if history and history[-1].fingerprint() == profile.fingerprint():
            return history[-1]
        stored = self.profile_store.put(profile)
        self.logger.info(f"Stored skill profile for {profile.resume_version_id} ({len(profile.skills)} skills)")
        return stored

    # Scoring

    def score(self, resume_version_id: str, job_id: str) -> MatchResult:
        """
        Score one pair under the current weight vector.

        Raises:
            MissingProfile, MissingJob
        """
        result = self.scorer.score(resume_version_id, self.job_store.resolve(job_id))
        self._maybe_notify(result)
        return result

    def score_many(self, resume_version_id: str, job_ids: Optional[Iterable[str]] = None) -> ScoreReport:
        """Score a resume version against many jobs in parallel (default: all open jobs)."""
        if job_ids is None:
            job_ids = [job.canonical_id for job in self.job_store.open_jobs()]
        job_ids = list(dict.fromkeys(job_ids))

        report = ScoreReport()
        if not job_ids:
            return report

        with ThreadPoolExecutor(max_workers=max(1, min(self.max_concurrency, len(job_ids)))) as executor:
            futures = {
                executor.submit(self.score, resume_version_id, job_id): job_id
                for job_id in job_ids
            }
            for future in as_completed(futures):
                job_id = futures[future]
                try:
                    report.results.append(future.result())
                except EngineError as e:
                    self.logger.warning(f"Could not score {job_id}: {e}")
                    report.errors[job_id] = e

        report.results.sort(key=lambda r: r.job_id)
        return report

    def top_recommendations(self, resume_version_id: str, n: int = 10) -> list[MatchResult]:
        """
        The n best open jobs for a resume version.

        Equal scores are ordered by most recent posting, then by job id.

        Raises:
            MissingProfile: if the resume version has not been parsed
        """
        self.profile_store.get(resume_version_id)

        report = self.score_many(resume_version_id)
        jobs = {job.canonical_id: job for job in self.job_store.open_jobs()}
        return MatchScorer.rank(report.results, jobs)[:n]

    def _maybe_notify(self, result: MatchResult) -> None:
        if result.score < self.notify_threshold:
            return
        key = (result.resume_version_id, result.job_id, result.weight_version)
        with self._notify_lock:
            if key in self._notified:
                return
            self._notified.add(key)

        self.events.publish(RECOMMENDATION, {
            "resume_version_id": result.resume_version_id,
            "job_id": result.job_id,
            "score": result.score,
            "weight_version": result.weight_version,
            "matching_skills": result.matching_skills,
        })

    def _latest_subscores(self, job_id: str) -> Optional[dict]:
        canonical = self.job_store.resolve(job_id)
        result = self.result_store.latest_for_job(canonical, self.job_store.aliases_of(canonical))
        return dict(result.subscores) if result else None

    # Feedback and learning

    def record_feedback(
        self,
        job_id: str,
        action: FeedbackAction,
        reason: Optional[str] = None,
    ) -> FeedbackSignal:
        """Record a user action on a job; retrains once enough new signals have accumulated."""
        job = self.job_store.get(job_id)
        return self.feedback_store.record(job.canonical_id, FeedbackAction(action), reason=reason)

    def _on_feedback(self, signal: FeedbackSignal) -> None:
        # Covers outcome signals the tracker appends as well as direct feedback
        self.learner.maybe_retrain()

    def retrain(self) -> WeightVector:
        """Retrain on the whole feedback log; keeps the current version when data is insufficient."""
        return self.learner.retrain()

    def current_weights(self) -> WeightVector:
        return self.weight_store.current()

    # Applications

    def track(
        self,
        job_id: str,
        resume_version_id: str,
        status: ApplicationStatus = ApplicationStatus.SAVED,
        cover_letter_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> ApplicationRecord:
        """Set a status on a (job, resume version, cover letter), creating the application on first use."""
        job = self.job_store.get(job_id)
        record = self.tracker.track(job.canonical_id, resume_version_id, ApplicationStatus(status), cover_letter_id, note)
        self._after_status(record.job_id, record.status, record.application_id)
        return record

    def transition(
        self,
        application_id: str,
        status: ApplicationStatus,
        note: Optional[str] = None,
        expected_status: Optional[ApplicationStatus] = None,
    ) -> TransitionResult:
        result = self.tracker.transition(application_id, ApplicationStatus(status), note, expected_status)
        self._after_status(result.application.job_id, result.entry.status, application_id)
        return result

    def _after_status(self, job_id: str, status: ApplicationStatus, application_id: str) -> None:
        if status == ApplicationStatus.APPLIED:
            self.feedback_store.record(job_id, FeedbackAction.APPLIED, application_id=application_id)

    def history(self, application_id: str) -> tuple[StatusEntry, ...]:
        return self.tracker.history(application_id)

    def remove_application(self, application_id: str) -> bool:
        return self.tracker.remove_application(application_id)

    def stale_applications(self) -> list[ApplicationRecord]:
        """Applications idle in `applied` past the threshold; newly stale ones are announced."""
        return self.stale_detector.scan(self.tracker.get_all_applications())

    def subscribe(self, callback: Callable[[Event], None], kinds: Optional[Iterable[str]] = None) -> Callable[[], None]:
        return self.events.subscribe(callback, kinds)

    # Generation

    def generate_cover_letter(self, application_id: str, tone: str = "professional") -> Optional[CoverLetter]:
        return self._generate(application_id, InvocationKind.GENERATE_COVER_LETTER, tone=tone)

    def tailor_resume(self, application_id: str) -> Optional[TailoringSuggestions]:
        return self._generate(application_id, InvocationKind.TAILOR_RESUME)

    def interview_prep(self, application_id: str) -> Optional[InterviewPrep]:
        return self._generate(application_id, InvocationKind.INTERVIEW_PREP)

    def generate_many(
        self,
        kind: InvocationKind,
        application_ids: Iterable[str],
    ) -> dict[str, Union[AnalysisResult, Exception, None]]:
        """
        Queue low-priority generation for many applications and submit it in batches.

        Returns:
            application id -> result, the error it failed with, or None when the
            application was deleted or withdrawn while its request was in flight
        """
        kind = InvocationKind(kind)
        futures: dict[str, Future] = {}
        outcomes: dict[str, Union[AnalysisResult, Exception, None]] = {}

        for application_id in application_ids:
            try:
                futures[application_id] = self.manager.submit(kind, self._generation_payload(application_id, kind))
            except EngineError as e:
                outcomes[application_id] = e

        self.manager.flush()

        for application_id, future in futures.items():
            error = future.exception()
            if error is not None:
                outcomes[application_id] = error
            else:
                outcomes[application_id] = self._keep_if_live(application_id, future.result())
        return outcomes

    def _generate(self, application_id: str, kind: InvocationKind, **extra) -> Optional[AnalysisResult]:
        payload = self._generation_payload(application_id, kind, **extra)
        result = self.manager.invoke(kind, payload)
        return self._keep_if_live(application_id, result)

    def _keep_if_live(self, application_id: str, result: AnalysisResult) -> Optional[AnalysisResult]:
        # The request is never cancelled; its answer is dropped instead
        if not self.tracker.is_live(application_id):
            self.logger.info(f"Discarding {result.kind.value} result for inactive application {application_id}")
            return None
        return result

    def _generation_payload(self, application_id: str, kind: InvocationKind, tone: str = "professional") -> dict:
        application = self.tracker.get_application(application_id)
        if application is None:
            raise UnknownApplication(application_id)

        profile = self.profile_store.get(application.resume_version_id)
        job = self.job_store.get(application.job_id)
        match = self.score(application.resume_version_id, job.canonical_id)

        profile_payload = {
            "skills": [s.to_dict() for s in profile.skills],
            "total_years": profile.total_years,
        }
        job_payload = {
            "title": job.title,
            "company": job.company,
            "location": job.location,
            "required_skills": list(job.required_skills),
            "preferred_skills": list(job.preferred_skills),
            "description": job.description,
        }

        if kind == InvocationKind.GENERATE_COVER_LETTER:
            return {
                "profile": profile_payload,
                "job": job_payload,
                "match": {
                    "score": match.score,
                    "matching_skills": match.matching_skills,
                    "missing_skills": match.missing_skills,
                },
                "tone": tone,
            }
        if kind == InvocationKind.TAILOR_RESUME:
            return {
                "profile": profile_payload,
                "job": job_payload,
                "gaps": [
                    {"skill": g.skill, "kind": g.kind, "detail": g.detail}
                    for g in match.explanation.gaps
                ],
            }
        if kind == InvocationKind.INTERVIEW_PREP:
            return {"profile": profile_payload, "job": job_payload}

        raise ValueError(f"{kind.value} is not a generation request")

    def close(self) -> None:
        if self._manager is not None:
            self._manager.shutdown()
