"""
Core data models for the recommendation engine.

Jobs, skill profiles, match results, feedback signals, tracked applications
and weight vectors. Everything that is append-only or versioned is a frozen
dataclass; the two records with a mutable status field (jobs and
applications) only change through their owning component.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Optional
import hashlib
import json
import uuid


FEATURES = (
    "skill_overlap",
    "seniority_fit",
    "location_fit",
    "compensation_fit",
    "historical_success",
)

# Minimum skill strength for a skill to be reported as matching rather than partial
MATCH_STRENGTH = 0.75


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class JobStatus(Enum):
    """Lifecycle of a canonical job record."""
    OPEN = "open"
    CLOSED = "closed"
    ARCHIVED = "archived"


class ApplicationStatus(Enum):
    """Status of a tracked application."""
    SAVED = "saved"
    APPLIED = "applied"
    SCREENING = "screening"
    INTERVIEW = "interview"
    OFFER = "offer"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"

    @property
    def is_terminal(self) -> bool:
        return self in (ApplicationStatus.ACCEPTED, ApplicationStatus.REJECTED, ApplicationStatus.WITHDRAWN)

    @property
    def stage(self) -> int:
        """Progress rank; terminal negatives rank with saved."""
        return _STAGE_RANK[self]

    @property
    def reached_interview(self) -> bool:
        return self.stage >= ApplicationStatus.INTERVIEW.stage


_STAGE_RANK = {
    ApplicationStatus.SAVED: 0,
    ApplicationStatus.REJECTED: 0,
    ApplicationStatus.WITHDRAWN: 0,
    ApplicationStatus.APPLIED: 1,
    ApplicationStatus.SCREENING: 2,
    ApplicationStatus.INTERVIEW: 3,
    ApplicationStatus.OFFER: 4,
    ApplicationStatus.ACCEPTED: 5,
}


class FeedbackAction(Enum):
    """Kinds of user action recorded as feedback."""
    INTERESTED = "interested"
    PASSED = "passed"
    APPLIED = "applied"
    INTERVIEW_OUTCOME = "interview_outcome"


class SkillLevel(Enum):
    """Proficiency level for a skill."""
    BEGINNER = 1
    INTERMEDIATE = 2
    ADVANCED = 3
    EXPERT = 4

    @property
    def weight(self) -> float:
        return {1: 0.4, 2: 0.6, 3: 0.8, 4: 1.0}[self.value]

    @classmethod
    def parse(cls, value) -> "SkillLevel":
        if isinstance(value, SkillLevel):
            return value
        if isinstance(value, int):
            return cls(value)
        return cls[str(value).strip().upper()]


class RemoteMode(Enum):
    """Where the work happens."""
    REMOTE = "remote"
    HYBRID = "hybrid"
    ON_SITE = "on_site"


@dataclass(frozen=True, order=True)
class SourceRef:
    """A (source, external id) pair identifying a posting on one job board."""
    source: str
    external_id: str

    @property
    def key(self) -> str:
        return f"{self.source}:{self.external_id}"

    def to_dict(self) -> dict:
        return {"source": self.source, "external_id": self.external_id}


@dataclass
class JobRecord:
    """
    A job posting.

    Candidates arrive from connectors with an empty `canonical_id` and a
    single source; the deduplicator assigns the canonical identity. After
    that only `status` changes.
    """
    title: str = ""
    company: str = ""
    location: str = ""
    canonical_id: str = ""
    remote_mode: RemoteMode = RemoteMode.ON_SITE
    salary_min: Optional[int] = None
    salary_max: Optional[int] = None
    required_skills: tuple[str, ...] = ()
    preferred_skills: tuple[str, ...] = ()
    posted_date: Optional[datetime] = None
    description: str = ""
    sources: tuple[SourceRef, ...] = ()
    experience_level: str = ""
    min_years: Optional[float] = None
    status: JobStatus = JobStatus.OPEN

    def __post_init__(self):
        self.required_skills = tuple(self.required_skills)
        self.preferred_skills = tuple(self.preferred_skills)
        self.sources = tuple(sorted(set(self.sources)))

    @property
    def has_compensation(self) -> bool:
        return self.salary_min is not None or self.salary_max is not None

    @property
    def all_skills(self) -> tuple[str, ...]:
        return self.required_skills + self.preferred_skills

    def fingerprint(self) -> str:
        """Hash of the scoring-relevant content (status and identity excluded)."""
        content = {
            "title": self.title,
            "company": self.company,
            "location": self.location,
            "remote_mode": self.remote_mode.value,
            "salary_min": self.salary_min,
            "salary_max": self.salary_max,
            "required_skills": list(self.required_skills),
            "preferred_skills": list(self.preferred_skills),
            "description": self.description,
            "experience_level": self.experience_level,
            "min_years": self.min_years,
        }
        return hashlib.sha256(json.dumps(content, sort_keys=True).encode()).hexdigest()[:16]

    def to_dict(self) -> dict:
        return {
            "canonical_id": self.canonical_id,
            "title": self.title,
            "company": self.company,
            "location": self.location,
            "remote_mode": self.remote_mode.value,
            "salary_min": self.salary_min,
            "salary_max": self.salary_max,
            "required_skills": list(self.required_skills),
            "preferred_skills": list(self.preferred_skills),
            "posted_date": _iso(self.posted_date),
            "description": self.description,
            "sources": [s.to_dict() for s in self.sources],
            "experience_level": self.experience_level,
            "min_years": self.min_years,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "JobRecord":
        sources = [SourceRef(**s) for s in data.get("sources", [])]
        if not sources and data.get("source"):
            sources = [SourceRef(data["source"], str(data.get("external_id", "")))]
        return cls(
            canonical_id=data.get("canonical_id", ""),
            title=data.get("title", ""),
            company=data.get("company", ""),
            location=data.get("location", ""),
            remote_mode=RemoteMode(data.get("remote_mode", "on_site")),
            salary_min=data.get("salary_min"),
            salary_max=data.get("salary_max"),
            required_skills=tuple(data.get("required_skills", [])),
            preferred_skills=tuple(data.get("preferred_skills", [])),
            posted_date=_parse_dt(data.get("posted_date")),
            description=data.get("description", ""),
            sources=tuple(sources),
            experience_level=data.get("experience_level", ""),
            min_years=data.get("min_years"),
            status=JobStatus(data.get("status", "open")),
        )


@dataclass(frozen=True)
class SkillEntry:
    """One (skill, proficiency, years, recency) tuple of a profile."""
    name: str
    level: SkillLevel = SkillLevel.INTERMEDIATE
    years: float = 0.0
    years_since_used: float = 0.0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "level": self.level.name,
            "years": self.years,
            "years_since_used": self.years_since_used,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SkillEntry":
        return cls(
            name=data["name"],
            level=SkillLevel.parse(data.get("level", "INTERMEDIATE")),
            years=float(data.get("years", 0.0) or 0.0),
            years_since_used=float(data.get("years_since_used", 0.0) or 0.0),
        )


@dataclass(frozen=True)
class SkillProfile:
    """Immutable skill snapshot produced from one resume version."""
    resume_version_id: str
    skills: tuple[SkillEntry, ...] = ()
    total_years: float = 0.0
    created_at: datetime = field(default_factory=datetime.now)
    supersedes: Optional[str] = None

    def fingerprint(self) -> str:
        content = [s.to_dict() for s in self.skills] + [self.total_years]
        return hashlib.sha256(json.dumps(content, sort_keys=True).encode()).hexdigest()[:16]

    def to_dict(self) -> dict:
        return {
            "resume_version_id": self.resume_version_id,
            "skills": [s.to_dict() for s in self.skills],
            "total_years": self.total_years,
            "created_at": _iso(self.created_at),
            "supersedes": self.supersedes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SkillProfile":
        return cls(
            resume_version_id=data["resume_version_id"],
            skills=tuple(SkillEntry.from_dict(s) for s in data.get("skills", [])),
            total_years=float(data.get("total_years", 0.0) or 0.0),
            created_at=_parse_dt(data.get("created_at")) or datetime.now(),
            supersedes=data.get("supersedes"),
        )


@dataclass
class UserPreferences:
    """Stated location and compensation preferences of the user."""
    location: str = ""
    desired_locations: list[str] = field(default_factory=list)
    remote_preference: str = "flexible"  # remote, hybrid, on_site, flexible
    salary_min: Optional[int] = None
    salary_max: Optional[int] = None

    def fingerprint(self) -> str:
        content = [self.location, sorted(self.desired_locations), self.remote_preference,
                   self.salary_min, self.salary_max]
        return hashlib.sha256(json.dumps(content).encode()).hexdigest()[:16]

    @classmethod
    def from_dict(cls, data: dict) -> "UserPreferences":
        return cls(
            location=data.get("location", ""),
            desired_locations=list(data.get("desired_locations", [])),
            remote_preference=data.get("remote_preference", "flexible"),
            salary_min=data.get("salary_min"),
            salary_max=data.get("salary_max"),
        )


@dataclass(frozen=True)
class SkillOverlap:
    skill: str
    strength: float
    required: bool = True


@dataclass(frozen=True)
class SkillGap:
    skill: str
    kind: str  # "missing" or "experience"
    required: bool = True
    detail: str = ""


@dataclass(frozen=True)
class Contribution:
    """One sub-score's effect on the final score."""
    feature: str
    subscore: float
    weight: float
    impact: float
    skills: tuple[str, ...] = ()


@dataclass(frozen=True)
class Explanation:
    top_contributors: tuple[Contribution, ...] = ()
    top_detractors: tuple[Contribution, ...] = ()
    overlaps: tuple[SkillOverlap, ...] = ()
    gaps: tuple[SkillGap, ...] = ()

    @property
    def matching_skills(self) -> list[str]:
        return [o.skill for o in self.overlaps if o.strength >= MATCH_STRENGTH]

    @property
    def missing_skills(self) -> list[str]:
        return [g.skill for g in self.gaps if g.kind == "missing"]

    @property
    def experience_gaps(self) -> list[str]:
        return [g.skill for g in self.gaps if g.kind == "experience"]

    def to_dict(self) -> dict:
        def contribution(c: Contribution) -> dict:
            return {
                "feature": c.feature,
                "subscore": round(c.subscore, 4),
                "weight": round(c.weight, 4),
                "impact": round(c.impact, 4),
                "skills": list(c.skills),
            }

        return {
            "top_contributors": [contribution(c) for c in self.top_contributors],
            "top_detractors": [contribution(c) for c in self.top_detractors],
            "overlaps": [{"skill": o.skill, "strength": round(o.strength, 4), "required": o.required}
                         for o in self.overlaps],
            "gaps": [{"skill": g.skill, "kind": g.kind, "required": g.required, "detail": g.detail}
                     for g in self.gaps],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Explanation":
        def contribution(d: dict) -> Contribution:
            return Contribution(d["feature"], d["subscore"], d["weight"], d["impact"], tuple(d.get("skills", [])))

        return cls(
            top_contributors=tuple(contribution(c) for c in data.get("top_contributors", [])),
            top_detractors=tuple(contribution(c) for c in data.get("top_detractors", [])),
            overlaps=tuple(SkillOverlap(**o) for o in data.get("overlaps", [])),
            gaps=tuple(SkillGap(**g) for g in data.get("gaps", [])),
        )


@dataclass(frozen=True)
class MatchResult:
    """Score of one (resume version, job) pair under one weight-vector version."""
    resume_version_id: str
    job_id: str
    score: int
    subscores: dict
    weight_version: int
    input_fingerprint: str
    computed_at: datetime
    explanation: Explanation

    @property
    def matching_skills(self) -> list[str]:
        return self.explanation.matching_skills

    @property
    def missing_skills(self) -> list[str]:
        return self.explanation.missing_skills

    def to_dict(self) -> dict:
        return {
            "resume_version_id": self.resume_version_id,
            "job_id": self.job_id,
            "score": self.score,
            "subscores": {k: round(v, 6) for k, v in self.subscores.items()},
            "weight_version": self.weight_version,
            "input_fingerprint": self.input_fingerprint,
            "computed_at": _iso(self.computed_at),
            "explanation": self.explanation.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MatchResult":
        return cls(
            resume_version_id=data["resume_version_id"],
            job_id=data["job_id"],
            score=int(data["score"]),
            subscores=dict(data["subscores"]),
            weight_version=int(data["weight_version"]),
            input_fingerprint=data["input_fingerprint"],
            computed_at=_parse_dt(data["computed_at"]),
            explanation=Explanation.from_dict(data.get("explanation", {})),
        )


@dataclass(frozen=True)
class FeedbackSignal:
    """Append-only record of a user action or application outcome."""
    job_id: str
    action: FeedbackAction
    timestamp: datetime = field(default_factory=datetime.now)
    reason: Optional[str] = None
    outcome: Optional[ApplicationStatus] = None
    highest_stage: Optional[ApplicationStatus] = None
    application_id: Optional[str] = None
    signal_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict:
        return {
            "signal_id": self.signal_id,
            "job_id": self.job_id,
            "action": self.action.value,
            "timestamp": _iso(self.timestamp),
            "reason": self.reason,
            "outcome": self.outcome.value if self.outcome else None,
            "highest_stage": self.highest_stage.value if self.highest_stage else None,
            "application_id": self.application_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FeedbackSignal":
        return cls(
            signal_id=data["signal_id"],
            job_id=data["job_id"],
            action=FeedbackAction(data["action"]),
            timestamp=_parse_dt(data["timestamp"]),
            reason=data.get("reason"),
            outcome=ApplicationStatus(data["outcome"]) if data.get("outcome") else None,
            highest_stage=ApplicationStatus(data["highest_stage"]) if data.get("highest_stage") else None,
            application_id=data.get("application_id"),
        )


@dataclass(frozen=True)
class StatusEntry:
    """One immutable line of an application's status history."""
    sequence: int
    status: ApplicationStatus
    timestamp: datetime
    note: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "sequence": self.sequence,
            "status": self.status.value,
            "timestamp": _iso(self.timestamp),
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StatusEntry":
        return cls(
            sequence=int(data["sequence"]),
            status=ApplicationStatus(data["status"]),
            timestamp=_parse_dt(data["timestamp"]),
            note=data.get("note"),
        )


@dataclass
class ApplicationRecord:
    """
    A tracked application for one (job, resume version, cover letter).

    `status` is a projection of the last history entry and only changes
    through the application tracker.
    """
    job_id: str
    resume_version_id: str
    cover_letter_id: Optional[str] = None
    status: ApplicationStatus = ApplicationStatus.SAVED
    history: list[StatusEntry] = field(default_factory=list)
    application_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.now)
    deleted: bool = False

    @property
    def last_activity(self) -> Optional[datetime]:
        if not self.history:
            return None
        return max(entry.timestamp for entry in self.history)

    @property
    def highest_stage(self) -> ApplicationStatus:
        return max((entry.status for entry in self.history), key=lambda s: s.stage,
                   default=self.status)

    def to_dict(self) -> dict:
        return {
            "application_id": self.application_id,
            "job_id": self.job_id,
            "resume_version_id": self.resume_version_id,
            "cover_letter_id": self.cover_letter_id,
            "status": self.status.value,
            "history": [entry.to_dict() for entry in self.history],
            "created_at": _iso(self.created_at),
            "deleted": self.deleted,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ApplicationRecord":
        return cls(
            application_id=data["application_id"],
            job_id=data["job_id"],
            resume_version_id=data["resume_version_id"],
            cover_letter_id=data.get("cover_letter_id"),
            status=ApplicationStatus(data.get("status", "saved")),
            history=[StatusEntry.from_dict(e) for e in data.get("history", [])],
            created_at=_parse_dt(data.get("created_at")) or datetime.now(),
            deleted=data.get("deleted", False),
        )


@dataclass(frozen=True)
class WeightVector:
    """
    A versioned set of scoring weights, one per named feature.

    Also freezes the exemplar token sets the historical-success feature
    compares against, so a result computed under a version can be
    reproduced later.
    """
    version: int
    weights: dict
    created_at: datetime = field(default_factory=datetime.now)
    parent_version: Optional[int] = None
    trained_on: int = 0
    positive_exemplars: tuple[tuple[str, ...], ...] = ()
    negative_exemplars: tuple[tuple[str, ...], ...] = ()

    def __post_init__(self):
        # Read-only view so a published version cannot be edited in place
        object.__setattr__(self, "weights", MappingProxyType(dict(self.weights)))

    def weight(self, feature: str) -> float:
        return float(self.weights.get(feature, 0.0))

    @property
    def total(self) -> float:
        return sum(self.weight(f) for f in FEATURES)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "weights": dict(self.weights),
            "created_at": _iso(self.created_at),
            "parent_version": self.parent_version,
            "trained_on": self.trained_on,
            "positive_exemplars": [list(e) for e in self.positive_exemplars],
            "negative_exemplars": [list(e) for e in self.negative_exemplars],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WeightVector":
        return cls(
            version=int(data["version"]),
            weights=dict(data["weights"]),
            created_at=_parse_dt(data.get("created_at")) or datetime.now(),
            parent_version=data.get("parent_version"),
            trained_on=int(data.get("trained_on", 0)),
            positive_exemplars=tuple(tuple(e) for e in data.get("positive_exemplars", [])),
            negative_exemplars=tuple(tuple(e) for e in data.get("negative_exemplars", [])),
        )
