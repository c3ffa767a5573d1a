"""Unit tests for job-board connectors and the aggregator."""

from datetime import datetime
import html
import json

import pytest
import requests

from conftest import make_job
from job_recommender.core.models import RemoteMode, SourceRef
from job_recommender.integrations import GreenhouseSource, JobAggregator, JobSource, JsonFileSource


POSTING_HTML = """
<p>We are hiring a backend engineer to work on our payments platform.</p>
<h3>Requirements</h3>
<ul><li>5+ years of Python</li><li>Production SQL</li></ul>
<h3>Nice to have</h3>
<ul><li>Kubernetes</li></ul>
<p>Salary: $120,000 - $150,000</p>
"""


class FakeResponse:
    def __init__(self, data, status=200):
        self.data = data
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"HTTP {self.status}")

    def json(self):
        return self.data


class FakeSession:
    def __init__(self, boards):
        self.boards = boards
        self.requested = []

    def get(self, url, params=None, timeout=None):
        self.requested.append((url, params))
        board = url.rstrip("/").split("/")[-2]
        board_data = self.boards[board]
        if isinstance(board_data, Exception):
            raise board_data
        return FakeResponse(board_data)


def _greenhouse_job(job_id=123, title="Backend Engineer", location="Remote - US"):
    return {
        "id": job_id,
        "title": title,
        "location": {"name": location},
        "content": html.escape(POSTING_HTML),
        "first_published": "2026-01-15T10:00:00-05:00",
    }


class BrokenSource(JobSource):
    @property
    def name(self):
        return "broken"

    def fetch_jobs(self, limit=None):
        raise RuntimeError("board offline")


class StaticSource(JobSource):
    def __init__(self, name, jobs):
        super().__init__()
        self._name = name
        self.jobs = jobs

    @property
    def name(self):
        return self._name

    def fetch_jobs(self, limit=None):
        return self.jobs[:limit] if limit else list(self.jobs)


@pytest.mark.unit
def test_greenhouse_parses_posting():
    """A Greenhouse posting becomes a candidate record with skills split by section."""
    session = FakeSession({"acme-corp": {"jobs": [_greenhouse_job()]}})
    source = GreenhouseSource(["acme-corp"], known_skills=["Python", "SQL", "Kubernetes", "Go"], session=session)

    jobs = source.fetch_jobs()

    assert len(jobs) == 1
    job = jobs[0]
    assert job.canonical_id == ""
    assert job.sources == (SourceRef("greenhouse", "acme-corp/123"),)
    assert job.company == "Acme Corp"
    assert job.remote_mode == RemoteMode.REMOTE
    assert job.required_skills == ("Python", "SQL")
    assert job.preferred_skills == ("Kubernetes",)
    assert (job.salary_min, job.salary_max) == (120000, 150000)
    assert job.posted_date == datetime(2026, 1, 15, 15, 0)
    assert "payments platform" in job.description
    assert session.requested[0][1] == {"content": "true"}


@pytest.mark.unit
def test_greenhouse_skips_incomplete_jobs():
    """Postings without an id or title are dropped."""
    session = FakeSession({"acme": {"jobs": [_greenhouse_job(), {"id": 9}, {"title": "No id"}]}})

    jobs = GreenhouseSource(["acme"], session=session).fetch_jobs()

    assert len(jobs) == 1


@pytest.mark.unit
def test_greenhouse_failing_board_skipped():
    """A board that cannot be fetched does not stop the others."""
    session = FakeSession({
        "broken": requests.ConnectionError("timeout"),
        "acme": {"jobs": [_greenhouse_job(1), _greenhouse_job(2, location="Austin, TX")]},
    })

    jobs = GreenhouseSource(["broken", "acme"], session=session).fetch_jobs(limit=1)

    assert len(jobs) == 1
    assert jobs[0].sources[0].external_id == "acme/1"


@pytest.mark.unit
def test_json_file_source(tmp_path):
    """Exported postings get a source reference from the file and lose any canonical id."""
    path = tmp_path / "exported.json"
    path.write_text(json.dumps({"jobs": [
        {"id": "a1", "title": "Backend Engineer", "company": "Acme", "canonical_id": "job_old",
         "required_skills": ["Python"], "posted_date": "2026-02-01T00:00:00"},
        {"title": "Data Analyst", "company": "Globex",
         "sources": [{"source": "lever", "external_id": "x9"}]},
        {"title": "SRE", "company": "Initech"},
    ]}))

    jobs = JsonFileSource(str(path)).fetch_jobs()

    assert [j.sources[0] for j in jobs] == [
        SourceRef("exported", "a1"), SourceRef("lever", "x9"), SourceRef("exported", "2"),
    ]
    assert jobs[0].canonical_id == ""
    assert jobs[0].posted_date == datetime(2026, 2, 1)
    assert len(JsonFileSource(str(path)).fetch_jobs(limit=2)) == 2


@pytest.mark.unit
def test_salary_parsing():
    """Salary text with k suffixes or single figures is understood."""
    source = JsonFileSource("unused.json")

    assert source._parse_salary("$90k - $110k") == (90000, 110000)
    assert source._parse_salary("$75,000") == (75000, 75000)
    assert source._parse_salary("competitive") == (None, None)


@pytest.mark.unit
def test_aggregator_collects_errors():
    """A failing source is reported while the others still deliver."""
    aggregator = JobAggregator([
        StaticSource("first", [make_job("1"), make_job("2")]),
        BrokenSource(),
        StaticSource("second", [make_job("3", source="second")]),
    ])

    report = aggregator.fetch_all()

    assert [j.sources[0].external_id for j in report.jobs] == ["1", "2", "3"]
    assert report.counts == {"first": 2, "broken": 0, "second": 1}
    assert report.errors == {"broken": "board offline"}


@pytest.mark.unit
def test_aggregator_sequential_matches_parallel():
    """Sequential and parallel fetching return the same candidate order."""
    sources = [StaticSource("a", [make_job("1")]), StaticSource("b", [make_job("2")])]

    parallel = JobAggregator(sources).fetch_all()
    sequential = JobAggregator(sources, parallel=False).fetch_all()

    assert parallel.jobs == sequential.jobs


@pytest.mark.unit
def test_aggregator_manages_sources():
    """Sources can be added and removed by name."""
    aggregator = JobAggregator()
    aggregator.add_source(StaticSource("Lever", []))

    assert aggregator.get_available_sources() == ["Lever"]
    assert aggregator.remove_source("lever") is True
    assert aggregator.remove_source("lever") is False
    assert aggregator.fetch_all().jobs == []
