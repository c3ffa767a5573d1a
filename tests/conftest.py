"""Shared fixtures: a controllable clock, a scripted analysis client and sample records."""

from datetime import datetime, timedelta
import copy
import json
import threading
import time

import pytest

from job_recommender.analysis.client import AnalysisClient, RawResponse
from job_recommender.analysis.results import InvocationKind
from job_recommender.core.models import JobRecord, RemoteMode, SkillEntry, SkillLevel, SkillProfile, SourceRef
from job_recommender.engine import RecommendationEngine
from job_recommender.utils.config import Config


START = datetime(2026, 3, 2, 9, 0, 0)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self.now

    def advance(self, **kwargs) -> datetime:
        with self._lock:
            self.now += timedelta(**kwargs)
            return self.now


DEFAULT_RESPONSES = {
    InvocationKind.PARSE_RESUME: {
        "skills": [
            {"name": "Python", "level": "EXPERT", "years": 6, "years_since_used": 0},
            {"name": "SQL", "level": "BEGINNER", "years": 1, "years_since_used": 0},
        ],
        "total_years": 6,
        "summary": "Backend engineer",
    },
    InvocationKind.GENERATE_COVER_LETTER: {
        "text": "Dear hiring team,\n\nI build Python services.",
        "highlights": ["Python"],
    },
    InvocationKind.TAILOR_RESUME: {
        "suggestions": ["Lead with the Python platform work"],
        "keywords": ["SQL"],
    },
    InvocationKind.INTERVIEW_PREP: {
        "questions": ["How would you scale the ingestion service?"],
        "talking_points": ["Six years of Python"],
    },
}


class FakeAnalysisClient(AnalysisClient):
    """
    Analysis client answering from canned payloads.

    `script` is consumed one item per call before falling back to the
    canned answer: an exception is raised, a dict is returned as the data.
    """

    def __init__(self, responses=None, script=None, delay: float = 0.0):
        self.responses = dict(DEFAULT_RESPONSES)
        self.responses.update(responses or {})
        self.script = list(script or [])
        self.delay = delay
        self.calls: list[tuple[InvocationKind, dict]] = []
        self.batches: list[int] = []
        self._lock = threading.Lock()

    def invoke(self, kind, payload):
        with self._lock:
            self.calls.append((kind, payload))
            step = self.script.pop(0) if self.script else None

        if self.delay:
            time.sleep(self.delay)
        if isinstance(step, Exception):
            raise step

        data = step if step is not None else self.responses[kind]
        return RawResponse(data=copy.deepcopy(data), input_tokens=100, output_tokens=50)

    def invoke_batch(self, requests):
        with self._lock:
            self.batches.append(len(requests))
        return super().invoke_batch(requests)

    def calls_for(self, kind) -> int:
        with self._lock:
            return sum(1 for k, _ in self.calls if k == kind)


def make_job(
    external_id: str = "1",
    source: str = "board",
    title: str = "Backend Engineer",
    company: str = "Acme",
    location: str = "Austin, TX",
    description: str = "Build Python services for our data platform.",
    **fields,
) -> JobRecord:
    return JobRecord(
        title=title,
        company=company,
        location=location,
        description=description,
        sources=(SourceRef(source, external_id),),
        **fields,
    )


def make_profile(resume_version_id: str = "v1", skills=None, total_years: float = 6.0) -> SkillProfile:
    if skills is None:
        skills = (
            SkillEntry("Python", SkillLevel.EXPERT, 6.0, 0.0),
            SkillEntry("SQL", SkillLevel.BEGINNER, 1.0, 0.0),
        )
    return SkillProfile(resume_version_id=resume_version_id, skills=tuple(skills),
                        total_years=total_years, created_at=START)


def python_job(**fields) -> JobRecord:
    """Remote Python role paying above the configured minimum."""
    defaults = dict(
        external_id="py-1",
        title="Senior Python Engineer",
        location="Remote",
        remote_mode=RemoteMode.REMOTE,
        required_skills=("Python",),
        min_years=5,
        salary_min=120000,
        salary_max=150000,
        posted_date=datetime(2026, 2, 20),
    )
    defaults.update(fields)
    return make_job(**defaults)


def analyst_job(**fields) -> JobRecord:
    """On-site analyst role sharing no skills with the default profile."""
    defaults = dict(
        external_id="da-1",
        title="Data Analyst",
        company="Globex",
        location="New York, NY",
        description="Analyze sales data and build dashboards.",
        required_skills=("Excel", "Tableau"),
        posted_date=datetime(2026, 2, 25),
    )
    defaults.update(fields)
    return make_job(**defaults)


SKILLS_FILE = {
    "skills": [
        {"name": "Python", "level": "EXPERT", "years": 6, "years_since_used": 0},
        {"name": "SQL", "level": "BEGINNER", "years": 1, "years_since_used": 0},
    ],
    "total_years": 6,
}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_client():
    return FakeAnalysisClient()


@pytest.fixture
def config(tmp_path):
    config = Config(str(tmp_path / "config.json"))
    config.set("preferences.location", "Austin, TX")
    config.set("preferences.salary_min", 100000)
    return config


@pytest.fixture
def skills_file(tmp_path):
    path = tmp_path / "skills.json"
    path.write_text(json.dumps(SKILLS_FILE))
    return path


@pytest.fixture
def engine(tmp_path, config, fake_client, clock):
    engine = RecommendationEngine(
        config,
        data_dir=str(tmp_path / "data"),
        analysis_client=fake_client,
        clock=clock,
        sleep=lambda seconds: None,
    )
    yield engine
    engine.close()
