"""
Stores for canonical jobs, skill profiles and match results.

Each store keeps its records in memory and, when given a storage path,
mirrors them to JSON files so state survives restarts.
"""

from dataclasses import replace
from pathlib import Path
from typing import Iterable, Optional
import logging
import threading

from job_recommender.core.exceptions import MissingJob, MissingProfile
from job_recommender.core.models import JobRecord, JobStatus, MatchResult, SkillProfile, SourceRef
from job_recommender.utils.storage import (
    append_jsonl,
    read_json,
    read_jsonl,
    safe_filename,
    write_json,
)


class JobStore:
    """Canonical job records, indexed by canonical id and by source reference."""

    def __init__(self, storage_path: Optional[str] = None):
        self.storage_path = Path(storage_path) if storage_path else None
        self.logger = logging.getLogger(self.__class__.__name__)
        self._lock = threading.RLock()

        self._jobs: dict[str, JobRecord] = {}
        self._by_source: dict[SourceRef, str] = {}
        self._aliases: dict[str, str] = {}
        self._dropped: set[str] = set()

        if self.storage_path:
            self.storage_path.mkdir(parents=True, exist_ok=True)
            self._load()

    def put(self, job: JobRecord) -> None:
        """Insert or replace a canonical record."""
        if not job.canonical_id:
            raise ValueError("Only canonical records can be stored")

        with self._lock:
            self._jobs[job.canonical_id] = job
            for source in job.sources:
                self._by_source[source] = job.canonical_id
            self._save(job.canonical_id)

    def remove_canonical(self, old_id: str, new_id: str) -> None:
        """Retire a canonical id in favour of another, keeping the old id resolvable."""
        with self._lock:
            self._jobs.pop(old_id, None)
            self._aliases[old_id] = new_id
            for alias, target in list(self._aliases.items()):
                if target == old_id:
                    self._aliases[alias] = new_id
            if self.storage_path:
                path = self.storage_path / f"{safe_filename(old_id)}.json"
                if path.exists():
                    path.unlink()
                write_json(self.storage_path / "_aliases.json", self._aliases)

    def resolve(self, job_id: str) -> str:
        with self._lock:
            return self._aliases.get(job_id, job_id)

    def aliases_of(self, job_id: str) -> list[str]:
        """Retired ids that were merged into the job's current canonical id."""
        with self._lock:
            canonical = self.resolve(job_id)
            return sorted(alias for alias, target in self._aliases.items() if target == canonical)

    def find(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            return self._jobs.get(self.resolve(job_id))

    def get(self, job_id: str) -> JobRecord:
        """Get a scorable job record or raise MissingJob."""
        with self._lock:
            canonical = self.resolve(job_id)
            job = self._jobs.get(canonical)
            if job is None:
                raise MissingJob(job_id)
            if canonical in self._dropped:
                raise MissingJob(job_id, archived=True)
            return job

    def find_by_source(self, source: SourceRef) -> Optional[JobRecord]:
        with self._lock:
            canonical = self._by_source.get(source)
            return self._jobs.get(canonical) if canonical else None

    def all(self, include_archived: bool = False) -> list[JobRecord]:
        with self._lock:
            jobs = list(self._jobs.values())
        if not include_archived:
            jobs = [job for job in jobs if job.status != JobStatus.ARCHIVED]
        return sorted(jobs, key=lambda j: j.canonical_id)

    def open_jobs(self) -> list[JobRecord]:
        return [job for job in self.all() if job.status == JobStatus.OPEN]

    def set_status(self, job_id: str, status: JobStatus) -> JobRecord:
        with self._lock:
            job = self.get(job_id)
            updated = replace(job, status=status)
            self.put(updated)
            return updated

    def archive(self, job_id: str, keep_snapshot: bool = True) -> JobRecord:
        """
        Archive a job instead of deleting it.

        Args:
            job_id: Canonical (or aliased) job id
            keep_snapshot: If False the posting content is dropped and the
                job can no longer be scored

        Returns:
            The archived record
        """
        with self._lock:
            job = self.find(job_id)
            if job is None:
                raise MissingJob(job_id)

            if keep_snapshot:
                archived = replace(job, status=JobStatus.ARCHIVED)
            else:
                archived = JobRecord(
                    canonical_id=job.canonical_id,
                    title=job.title,
                    company=job.company,
                    sources=job.sources,
                    posted_date=job.posted_date,
                    status=JobStatus.ARCHIVED,
                )
                self._dropped.add(job.canonical_id)

            self.put(archived)
            self.logger.info(f"Archived job {job.canonical_id} (snapshot kept: {keep_snapshot})")
            return archived

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def _save(self, job_id: str) -> None:
        if not self.storage_path:
            return
        data = self._jobs[job_id].to_dict()
        data["snapshot_dropped"] = job_id in self._dropped
        write_json(self.storage_path / f"{safe_filename(job_id)}.json", data)

    def _load(self) -> None:
        aliases_path = self.storage_path / "_aliases.json"
        if aliases_path.exists():
            self._aliases = read_json(aliases_path)

        for filepath in sorted(self.storage_path.glob("*.json")):
            if filepath.name.startswith("_"):
                continue
            data = read_json(filepath)
            job = JobRecord.from_dict(data)
            self._jobs[job.canonical_id] = job
            for source in job.sources:
                self._by_source[source] = job.canonical_id
            if data.get("snapshot_dropped"):
                self._dropped.add(job.canonical_id)

        self.logger.info(f"Loaded {len(self._jobs)} jobs")


class ProfileStore:
    """
    Skill profiles keyed by resume version.

    Reparsing a resume version appends a new snapshot that supersedes the
    previous one; snapshots are never edited.
    """

    def __init__(self, storage_path: Optional[str] = None):
        self.storage_path = Path(storage_path) if storage_path else None
        self.logger = logging.getLogger(self.__class__.__name__)
        self._lock = threading.RLock()
        self._profiles: dict[str, list[SkillProfile]] = {}

        if self.storage_path:
            self.storage_path.mkdir(parents=True, exist_ok=True)
            for filepath in sorted(self.storage_path.glob("*.json")):
                snapshots = [SkillProfile.from_dict(d) for d in read_json(filepath)]
                if snapshots:
                    self._profiles[snapshots[0].resume_version_id] = snapshots

    def put(self, profile: SkillProfile) -> SkillProfile:
        with self._lock:
            snapshots = self._profiles.setdefault(profile.resume_version_id, [])
            if snapshots and profile.supersedes is None:
                profile = replace(profile, supersedes=snapshots[-1].fingerprint())
            snapshots.append(profile)

            if self.storage_path:
                write_json(
                    self.storage_path / f"{safe_filename(profile.resume_version_id)}.json",
                    [p.to_dict() for p in snapshots],
                )

        self.logger.info(
            f"Stored profile for {profile.resume_version_id} ({len(profile.skills)} skills)"
        )
        return profile

    def get(self, resume_version_id: str) -> SkillProfile:
        """Latest snapshot for a resume version, or raise MissingProfile."""
        with self._lock:
            snapshots = self._profiles.get(resume_version_id)
            if not snapshots:
                raise MissingProfile(resume_version_id)
            return snapshots[-1]

    def history(self, resume_version_id: str) -> list[SkillProfile]:
        with self._lock:
            return list(self._profiles.get(resume_version_id, []))

    def versions(self) -> list[str]:
        with self._lock:
            return sorted(self._profiles)


class MatchResultStore:
    """
    Append-only store of match results.

    A result is unique per (resume version, job, weight version, input
    fingerprint); recomputations add rows and never replace old ones.
    """

    def __init__(self, storage_path: Optional[str] = None):
        self.storage_path = Path(storage_path) if storage_path else None
        self._lock = threading.RLock()
        self._results: dict[tuple, MatchResult] = {}
        self._by_pair: dict[tuple[str, str], list[MatchResult]] = {}

        if self.storage_path:
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            for data in read_jsonl(self.storage_path):
                self._index(MatchResult.from_dict(data))

    @staticmethod
    def _key(resume_version_id: str, job_id: str, weight_version: int, fingerprint: str) -> tuple:
        return (resume_version_id, job_id, weight_version, fingerprint)

    def find(self, resume_version_id: str, job_id: str, weight_version: int,
             fingerprint: str) -> Optional[MatchResult]:
        with self._lock:
            return self._results.get(self._key(resume_version_id, job_id, weight_version, fingerprint))

    def add(self, result: MatchResult) -> MatchResult:
        """Store a result; returns the existing row if an identical key is already present."""
        with self._lock:
            key = self._key(result.resume_version_id, result.job_id,
                            result.weight_version, result.input_fingerprint)
            existing = self._results.get(key)
            if existing is not None:
                return existing
            self._index(result)
            if self.storage_path:
                append_jsonl(self.storage_path, result.to_dict())
            return result

    def history(self, resume_version_id: str, job_id: str) -> list[MatchResult]:
        with self._lock:
            return list(self._by_pair.get((resume_version_id, job_id), []))

    def latest(self, resume_version_id: str, job_id: str) -> Optional[MatchResult]:
        rows = self.history(resume_version_id, job_id)
        return rows[-1] if rows else None

    def latest_for_job(self, job_id: str, aliases: Iterable[str] = ()) -> Optional[MatchResult]:
        """Most recently computed result for a job across all resume versions and its former ids."""
        job_ids = {job_id, *aliases}
        with self._lock:
            rows = [r for (_, j), results in self._by_pair.items() if j in job_ids for r in results]
        if not rows:
            return None
        return max(rows, key=lambda r: (r.computed_at, r.weight_version))

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def _index(self, result: MatchResult) -> None:
        key = self._key(result.resume_version_id, result.job_id,
                        result.weight_version, result.input_fingerprint)
        self._results[key] = result
        self._by_pair.setdefault((result.resume_version_id, result.job_id), []).append(result)
