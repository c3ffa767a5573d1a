"""
Deduplicator - Merges job records that describe the same real-world posting.

Two records are the same posting when company, normalized title and
location agree, and either one of their source references was seen before
or their descriptions overlap strongly. Descriptions that overlap only
moderately are held for manual review: a false merge is worse than a
missed one.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional
import hashlib
import logging
import threading
import uuid

from job_recommender.core.exceptions import AmbiguousDuplicate, UnknownReview
from job_recommender.core.models import JobRecord, RemoteMode
from job_recommender.core.stores import JobStore
from job_recommender.utils.storage import read_json, write_json
from job_recommender.utils.text import (
    jaccard,
    normalize_company,
    normalize_location,
    normalize_skill,
    normalize_title,
    tokenize,
)


def canonical_id_for(job: JobRecord) -> str:
    """Stable id derived from the smallest source reference of a record."""
    anchor = min(job.sources).key
    return "job_" + hashlib.sha1(anchor.encode("utf-8")).hexdigest()[:12]


@dataclass
class DedupOutcome:
    """Result of ingesting one candidate."""
    canonical_id: Optional[str]
    action: str  # created, merged, ambiguous
    similarity: float = 0.0
    review_id: Optional[str] = None


@dataclass
class PendingReview:
    """A candidate held for manual disambiguation."""
    review_id: str
    candidate: JobRecord
    existing_id: str
    similarity: float
    flagged_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "review_id": self.review_id,
            "candidate": self.candidate.to_dict(),
            "existing_id": self.existing_id,
            "similarity": self.similarity,
            "flagged_at": self.flagged_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PendingReview":
        return cls(
            review_id=data["review_id"],
            candidate=JobRecord.from_dict(data["candidate"]),
            existing_id=data["existing_id"],
            similarity=data["similarity"],
            flagged_at=datetime.fromisoformat(data["flagged_at"]),
        )


@dataclass
class IngestReport:
    """Outcome of a bulk ingest."""
    created: list[str] = field(default_factory=list)
    merged: list[str] = field(default_factory=list)
    ambiguous: list[AmbiguousDuplicate] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def canonical_ids(self) -> list[str]:
        return sorted(set(self.created) | set(self.merged))

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "merged": self.merged,
            "ambiguous": [
                {"review_id": a.review_id, "candidate": a.candidate_key,
                 "existing_id": a.existing_id, "similarity": round(a.similarity, 3)}
                for a in self.ambiguous
            ],
            "errors": self.errors,
        }


class Deduplicator:
    """Canonicalizes incoming job records against the job store."""

    def __init__(
        self,
        job_store: JobStore,
        title_similarity: float = 0.8,
        location_similarity: float = 0.5,
        description_high: float = 0.85,
        description_low: float = 0.6,
    ):
        if not 0 <= description_low <= description_high <= 1:
            raise ValueError("Expected 0 <= description_low <= description_high <= 1")

        self.job_store = job_store
        self.title_similarity = title_similarity
        self.location_similarity = location_similarity
        self.description_high = description_high
        self.description_low = description_low

        self.pending_reviews: dict[str, PendingReview] = {}
        self.logger = logging.getLogger(self.__class__.__name__)
        self._lock = threading.Lock()

        # Reviews are settled in a later run, so they live beside the jobs
        self.reviews_path: Optional[Path] = (
            job_store.storage_path / "_reviews.json" if job_store.storage_path else None
        )
        if self.reviews_path and self.reviews_path.exists():
            for data in read_json(self.reviews_path):
                review = PendingReview.from_dict(data)
                self.pending_reviews[review.review_id] = review
            self.logger.info(f"Loaded {len(self.pending_reviews)} pending duplicate reviews")

    def ingest(self, candidate: JobRecord) -> DedupOutcome:
        """
        Canonicalize one candidate record.

        Args:
            candidate: Record from a connector, with at least one source reference

        Returns:
            DedupOutcome naming the canonical id the record now belongs to

        Raises:
            AmbiguousDuplicate: if the candidate was held for manual review
        """
        if not candidate.sources:
            raise ValueError(f"Job '{candidate.title}' has no source reference")

        with self._lock:
            for source in candidate.sources:
                known = self.job_store.find_by_source(source)
                if known is not None:
                    merged_id = self._merge(known, candidate)
                    return DedupOutcome(merged_id, "merged", similarity=1.0)

            best, similarity = self._best_match(candidate)

            if best is not None and similarity >= self.description_high:
                merged_id = self._merge(best, candidate)
                return DedupOutcome(merged_id, "merged", similarity=similarity)

            if best is not None and similarity >= self.description_low:
                review = PendingReview(
                    review_id=str(uuid.uuid4()),
                    candidate=candidate,
                    existing_id=best.canonical_id,
                    similarity=similarity,
                )
                self.pending_reviews[review.review_id] = review
                self._save_reviews()
                self.logger.warning(
                    f"Ambiguous duplicate: {min(candidate.sources).key} vs {best.canonical_id} "
                    f"(similarity {similarity:.2f})"
                )
                raise AmbiguousDuplicate(
                    review.review_id, min(candidate.sources).key, best.canonical_id, similarity
                )

            return DedupOutcome(self._create(candidate), "created", similarity=similarity)

    def ingest_many(self, candidates: Iterable[JobRecord]) -> IngestReport:
        """Ingest a stream of candidates, collecting ambiguities instead of stopping."""
        report = IngestReport()

        for candidate in candidates:
            try:
                outcome = self.ingest(candidate)
            except AmbiguousDuplicate as e:
                report.ambiguous.append(e)
                continue
            except ValueError as e:
                report.errors.append(str(e))
                continue

            if outcome.action == "created":
                report.created.append(outcome.canonical_id)
            else:
                report.merged.append(outcome.canonical_id)

        self.logger.info(
            f"Ingested: {len(report.created)} new, {len(report.merged)} merged, "
            f"{len(report.ambiguous)} held for review"
        )
        return report

    def resolve(self, review_id: str, merge_into: Optional[str] = None) -> DedupOutcome:
        """
        Settle a pending review by hand.

        Args:
            review_id: Id from the AmbiguousDuplicate error
            merge_into: Canonical id to merge into, or None to keep it separate

        Raises:
            UnknownReview: if no review with that id is pending
            MissingJob: if merge_into names no scorable job (the review stays pending)
        """
        with self._lock:
            review = self.pending_reviews.get(review_id)
            if review is None:
                raise UnknownReview(review_id)

            if merge_into:
                existing = self.job_store.get(merge_into)
                outcome = DedupOutcome(self._merge(existing, review.candidate), "merged",
                                       similarity=review.similarity)
            else:
                outcome = DedupOutcome(self._create(review.candidate), "created", similarity=review.similarity)

            del self.pending_reviews[review_id]
            self._save_reviews()
            return outcome

    def _save_reviews(self) -> None:
        if self.reviews_path:
            write_json(self.reviews_path, [r.to_dict() for r in self.pending_reviews.values()])

    def description_similarity(self, a: JobRecord, b: JobRecord) -> float:
        return jaccard(tokenize(a.description), tokenize(b.description))

    def same_identity(self, a: JobRecord, b: JobRecord) -> bool:
        """Company, normalized title and location agree within thresholds."""
        if normalize_company(a.company) != normalize_company(b.company):
            return False

        title_a, title_b = normalize_title(a.title), normalize_title(b.title)
        if title_a != title_b and jaccard(title_a.split(), title_b.split()) < self.title_similarity:
            return False

        if a.remote_mode == RemoteMode.REMOTE and b.remote_mode == RemoteMode.REMOTE:
            return True
        loc_a, loc_b = normalize_location(a.location), normalize_location(b.location)
        if loc_a == loc_b:
            return True
        return jaccard(loc_a.split(), loc_b.split()) >= self.location_similarity

    def _best_match(self, candidate: JobRecord) -> tuple[Optional[JobRecord], float]:
        best, best_similarity = None, 0.0
        for existing in self.job_store.all(include_archived=True):
            if not self.same_identity(existing, candidate):
                continue
            similarity = self.description_similarity(existing, candidate)
            if best is None or similarity > best_similarity:
                best, best_similarity = existing, similarity
        return best, best_similarity

    def _create(self, candidate: JobRecord) -> str:
        canonical = replace(candidate, canonical_id=canonical_id_for(candidate))
        self.job_store.put(canonical)
        self.logger.info(f"New canonical job {canonical.canonical_id}: {canonical.title} at {canonical.company}")
        return canonical.canonical_id

    def _merge(self, existing: JobRecord, candidate: JobRecord) -> str:
        merged = merge_records(existing, candidate)
        merged = replace(merged, canonical_id=canonical_id_for(merged), status=existing.status)

        if merged.canonical_id != existing.canonical_id:
            self.job_store.remove_canonical(existing.canonical_id, merged.canonical_id)
        self.job_store.put(merged)

        self.logger.info(
            f"Merged {min(candidate.sources).key} into {merged.canonical_id} "
            f"({len(merged.sources)} sources)"
        )
        return merged.canonical_id


def _precedence(job: JobRecord) -> tuple:
    return (job.posted_date or datetime.max, min(job.sources))


def _union(primary: tuple[str, ...], secondary: tuple[str, ...]) -> tuple[str, ...]:
    seen = {normalize_skill(s) for s in primary}
    extra = [s for s in secondary if normalize_skill(s) not in seen]
    return tuple(primary) + tuple(extra)


def merge_records(a: JobRecord, b: JobRecord) -> JobRecord:
    """
    Merge two records of the same posting; the result does not depend on argument order.

    Content comes from the record posted first (ties: smaller source
    reference), gaps are filled from the other, sources are unioned and the
    earliest posted date is kept.
    """
    primary, secondary = sorted((a, b), key=_precedence)

    posted_dates = [d for d in (a.posted_date, b.posted_date) if d is not None]

    return replace(
        primary,
        sources=tuple(sorted(set(a.sources) | set(b.sources))),
        posted_date=min(posted_dates) if posted_dates else None,
        required_skills=_union(primary.required_skills, secondary.required_skills),
        preferred_skills=_union(primary.preferred_skills, secondary.preferred_skills),
        salary_min=primary.salary_min if primary.has_compensation else secondary.salary_min,
        salary_max=primary.salary_max if primary.has_compensation else secondary.salary_max,
        description=primary.description or secondary.description,
        experience_level=primary.experience_level or secondary.experience_level,
        min_years=primary.min_years if primary.min_years is not None else secondary.min_years,
    )
