"""
Match Scorer - Scores a (resume version, job) pair from 0 to 100.

Five sub-scores, each in [0, 1]:
- Skill overlap: weighted overlap of job skills with profile skills,
  scaled by proficiency, recency and years
- Seniority fit: distance between the job's and the profile's experience buckets
- Location fit: on-site / hybrid / remote compatibility with user preference
- Compensation fit: overlap of the posted range with the user's expectation
- Historical success: resemblance to past jobs that led to interviews

The final score is the weighted mean under the current weight vector,
together with an explanation naming the skills behind it.
"""

from datetime import datetime
from typing import Callable, Optional
import hashlib
import logging
import math
import re

from .models import (
    FEATURES,
    MATCH_STRENGTH,
    Contribution,
    Explanation,
    JobRecord,
    MatchResult,
    RemoteMode,
    SkillEntry,
    SkillGap,
    SkillOverlap,
    SkillProfile,
    UserPreferences,
    WeightVector,
)
from .stores import JobStore, MatchResultStore, ProfileStore
from job_recommender.learning.learner import historical_success_score, job_feature_tokens
from job_recommender.learning.weights import WeightStore
from job_recommender.utils.text import normalize_location, skills_match, tokenize


NEUTRAL = 0.5


class MatchScorer:
    """Scores resume versions against canonical jobs."""

    REQUIRED_SKILL_WEIGHT = 1.0
    PREFERRED_SKILL_WEIGHT = 0.5

    # Years implied by seniority keywords in the title or level
    LEVEL_YEARS = {
        "intern": 0,
        "entry": 0,
        "junior": 1,
        "mid": 3,
        "senior": 5,
        "lead": 7,
        "staff": 8,
        "principal": 10,
        "director": 10,
        "executive": 15,
    }

    YEARS_PATTERNS = [
        r'(\d+)\+?\s*years?\s*(?:of\s+)?experience',
        r'(\d+)\+?\s*years?\s*(?:of\s+)?(?:relevant|professional)',
        r'minimum\s+(?:of\s+)?(\d+)\s*years?',
        r'at\s+least\s+(\d+)\s*years?',
    ]

    # Upper bounds (exclusive) of the experience buckets 0-1, 2-3, 4-6, 7-9, 10+
    BUCKET_BOUNDS = (2, 4, 7, 10)

    def __init__(
        self,
        profile_store: ProfileStore,
        job_store: JobStore,
        weight_store: WeightStore,
        result_store: MatchResultStore,
        preferences: Optional[UserPreferences] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.profile_store = profile_store
        self.job_store = job_store
        self.weight_store = weight_store
        self.result_store = result_store
        self.preferences = preferences or UserPreferences()
        self.clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

    def score(self, resume_version_id: str, job_id: str) -> MatchResult:
        """
        Score one resume version against one job.

        Returns the stored result when neither input nor the weight vector
        changed since it was computed; otherwise computes and stores a new one.

        Raises:
            MissingProfile: if the resume version has not been parsed
            MissingJob: if the job is unknown or archived without snapshot
        """
        profile = self.profile_store.get(resume_version_id)
        job = self.job_store.get(job_id)
        vector = self.weight_store.current()

        fingerprint = self.input_fingerprint(profile, job)
        existing = self.result_store.find(resume_version_id, job.canonical_id, vector.version, fingerprint)
        if existing is not None:
            return existing

        subscores, explanation = self.compute(profile, job, vector)
        result = MatchResult(
            resume_version_id=resume_version_id,
            job_id=job.canonical_id,
            score=self.combine(subscores, vector),
            subscores=subscores,
            weight_version=vector.version,
            input_fingerprint=fingerprint,
            computed_at=self.clock(),
            explanation=explanation,
        )
        stored = self.result_store.add(result)
        self.logger.debug(
            f"Scored {resume_version_id} x {job.canonical_id}: {stored.score} (weights v{vector.version})"
        )
        return stored

    def input_fingerprint(self, profile: SkillProfile, job: JobRecord) -> str:
        parts = [profile.resume_version_id, profile.fingerprint(), job.fingerprint(), self.preferences.fingerprint()]
        return hashlib.sha256("|".join(parts).encode()).hexdigest()[:20]

    def compute(self, profile: SkillProfile, job: JobRecord, vector: WeightVector) -> tuple[dict, Explanation]:
        """Compute sub-scores and explanation without touching any store."""
        required_years = self.required_years(job)

        skill_score, overlaps, gaps = self._skill_overlap(profile, job, required_years)
        subscores = {
            "skill_overlap": skill_score,
            "seniority_fit": self._seniority_fit(profile, required_years),
            "location_fit": self._location_fit(job),
            "compensation_fit": self._compensation_fit(job),
            "historical_success": historical_success_score(job_feature_tokens(job), vector),
        }

        explanation = self._explain(subscores, vector, overlaps, gaps)
        return subscores, explanation

    @staticmethod
    def combine(subscores: dict, vector: WeightVector) -> int:
        """round(100 * sum(w_i * s_i) / sum(w_i)), clamped to [0, 100]."""
        total_weight = vector.total
        if total_weight <= 0:
            raise ValueError(f"Weight vector v{vector.version} has no positive weight")
        weighted = sum(vector.weight(f) * subscores[f] for f in FEATURES) / total_weight
        return max(0, min(100, int(math.floor(100 * weighted + 0.5))))

    def _skill_overlap(
        self,
        profile: SkillProfile,
        job: JobRecord,
        required_years: Optional[float],
    ) -> tuple[float, list[SkillOverlap], list[SkillGap]]:
        """Weighted overlap of job skills with the profile (0-1)."""
        if not job.required_skills and not job.preferred_skills:
            return self._description_skill_match(profile, job), [], []

        overlaps: list[SkillOverlap] = []
        gaps: list[SkillGap] = []
        numerator = 0.0
        denominator = 0.0
        seen: list[str] = []

        wanted = [(s, True) for s in job.required_skills] + [(s, False) for s in job.preferred_skills]
        for job_skill, required in wanted:
            if any(skills_match(job_skill, s) for s in seen):
                continue
            seen.append(job_skill)

            weight = self.REQUIRED_SKILL_WEIGHT if required else self.PREFERRED_SKILL_WEIGHT
            denominator += weight

            entry = self._find_entry(profile, job_skill)
            if entry is None:
                gaps.append(SkillGap(job_skill, "missing", required, "not in profile"))
                continue

            strength = self._skill_strength(entry, required_years if required else None)
            numerator += weight * strength
            overlaps.append(SkillOverlap(job_skill, strength, required))

            if strength < MATCH_STRENGTH:
                gaps.append(SkillGap(job_skill, "experience", required,
                                     self._gap_detail(entry, required_years if required else None)))

        overlaps.sort(key=lambda o: (not o.required, -o.strength, o.skill.lower()))
        gaps.sort(key=lambda g: (g.kind != "missing", not g.required, g.skill.lower()))

        score = numerator / denominator if denominator else NEUTRAL
        return score, overlaps, gaps

    @staticmethod
    def _find_entry(profile: SkillProfile, job_skill: str) -> Optional[SkillEntry]:
        matches = [entry for entry in profile.skills if skills_match(job_skill, entry.name)]
        if not matches:
            return None
        return max(matches, key=lambda e: (e.level.value, e.years, -e.years_since_used))

    @staticmethod
    def _skill_strength(entry: SkillEntry, required_years: Optional[float]) -> float:
        """Proficiency x recency x years, each in [0, 1]."""
        recency = 1.0 / (1.0 + 0.25 * max(0.0, entry.years_since_used))
        if required_years:
            years_factor = 0.5 + 0.5 * min(1.0, entry.years / required_years)
        else:
            years_factor = 1.0
        return entry.level.weight * recency * years_factor

    @staticmethod
    def _gap_detail(entry: SkillEntry, required_years: Optional[float]) -> str:
        parts = [entry.level.name.lower()]
        if required_years and entry.years < required_years:
            parts.append(f"{entry.years:g} of {required_years:g} years")
        if entry.years_since_used > 0:
            parts.append(f"last used {entry.years_since_used:g} years ago")
        return ", ".join(parts)

    def _description_skill_match(self, profile: SkillProfile, job: JobRecord) -> float:
        """Skill match from the job description when the posting lists no skills."""
        if not job.description or not profile.skills:
            return NEUTRAL

        desc_tokens = " ".join(tokenize(job.description))
        total = 0.0
        for entry in profile.skills:
            name = " ".join(tokenize(entry.name))
            if name and re.search(rf"(^|\s){re.escape(name)}(\s|$)", desc_tokens):
                total += self._skill_strength(entry, None)
        return min(1.0, total / len(profile.skills))

    def required_years(self, job: JobRecord) -> Optional[float]:
        """Minimum years of experience a job asks for, if it can be determined."""
        if job.min_years is not None:
            return float(job.min_years)

        for pattern in self.YEARS_PATTERNS:
            match = re.search(pattern, job.description, re.IGNORECASE)
            if match:
                return float(match.group(1))

        level_text = f"{job.experience_level} {job.title}".lower()
        for level, years in self.LEVEL_YEARS.items():
            if re.search(rf"\b{level}\b", level_text):
                return float(years)

        return None

    def bucket(self, years: float) -> int:
        for index, bound in enumerate(self.BUCKET_BOUNDS):
            if years < bound:
                return index
        return len(self.BUCKET_BOUNDS)

    def _seniority_fit(self, profile: SkillProfile, required_years: Optional[float]) -> float:
        if required_years is None:
            return NEUTRAL

        profile_years = profile.total_years or max((s.years for s in profile.skills), default=0.0)
        distance = self.bucket(profile_years) - self.bucket(required_years)

        if distance == 0:
            return 1.0
        if distance < 0:
            # Under-qualified
            return max(0.0, 1.0 - 0.25 * -distance)
        # Over-qualified: one bucket is tolerated
        return max(0.0, 0.9 - 0.25 * (distance - 1))

    def _location_fit(self, job: JobRecord) -> float:
        preference = self.preferences.remote_preference

        if job.remote_mode == RemoteMode.REMOTE:
            return 1.0 if preference in ("remote", "flexible") else 0.8

        wanted = [self.preferences.location] + list(self.preferences.desired_locations)
        wanted = [normalize_location(w) for w in wanted if w]
        job_loc = normalize_location(job.location)

        if not job_loc or not wanted:
            return NEUTRAL

        if any(w in job_loc or job_loc in w for w in wanted):
            locality = 1.0
        elif any(set(w.split()) & set(job_loc.split()) for w in wanted):
            locality = 0.8
        else:
            locality = 0.0

        if locality == 0.0:
            return 0.3 if job.remote_mode == RemoteMode.HYBRID else 0.2

        if preference == "remote":
            return locality * (0.7 if job.remote_mode == RemoteMode.HYBRID else 0.5)
        if preference == "hybrid" and job.remote_mode == RemoteMode.ON_SITE:
            return locality * 0.8
        return locality

    def _compensation_fit(self, job: JobRecord) -> float:
        """Overlap of the posted range with the expected range; neutral when undisclosed."""
        user_min = self.preferences.salary_min
        if not job.has_compensation or not user_min:
            return NEUTRAL

        job_min = job.salary_min if job.salary_min is not None else job.salary_max
        job_max = job.salary_max if job.salary_max is not None else job.salary_min
        job_min, job_max = min(job_min, job_max), max(job_min, job_max)

        if job_max < user_min:
            # Below expectation: half credit at most, nothing once 50% short
            shortfall = (user_min - job_max) / user_min
            return max(0.0, 0.5 * (1.0 - 2.0 * shortfall))

        if job_max == job_min:
            return 1.0
        above = (job_max - max(job_min, user_min)) / (job_max - job_min)
        return 0.75 + 0.25 * above

    def _explain(
        self,
        subscores: dict,
        vector: WeightVector,
        overlaps: list[SkillOverlap],
        gaps: list[SkillGap],
        limit: int = 3,
    ) -> Explanation:
        total = vector.total
        matching = tuple(o.skill for o in overlaps if o.strength >= MATCH_STRENGTH)
        lacking = tuple(g.skill for g in gaps)

        contributions = []
        for feature in FEATURES:
            weight = vector.weight(feature)
            impact = (weight / total) * (subscores[feature] - NEUTRAL)
            skills: tuple[str, ...] = ()
            if feature == "skill_overlap":
                skills = matching if impact >= 0 else lacking
            contributions.append(Contribution(feature, subscores[feature], weight, impact, skills))

        contributors = sorted((c for c in contributions if c.impact > 0), key=lambda c: (-c.impact, c.feature))
        detractors = sorted((c for c in contributions if c.impact < 0), key=lambda c: (c.impact, c.feature))

        return Explanation(
            top_contributors=tuple(contributors[:limit]),
            top_detractors=tuple(detractors[:limit]),
            overlaps=tuple(overlaps),
            gaps=tuple(gaps),
        )

    @staticmethod
    def rank(
        results: list[MatchResult],
        jobs: dict[str, JobRecord],
    ) -> list[MatchResult]:
        """Sort by score; ties go to the most recently posted job, then job id."""
        def key(result: MatchResult):
            job = jobs.get(result.job_id)
            posted = job.posted_date if job else None
            return (-result.score, posted is None, -posted.timestamp() if posted else 0.0, result.job_id)

        return sorted(results, key=key)
