"""
Integration tests for the command line interface.

Each test drives `main()` with an argv list against a temporary config
file and data directory; nothing here talks to the analysis service.
"""

import json

import pytest

from conftest import SKILLS_FILE
from job_recommender.cli import main
from job_recommender.core.stores import JobStore


JOBS = [
    {
        "id": "py-1",
        "title": "Senior Python Engineer",
        "company": "Acme",
        "location": "Remote",
        "remote_mode": "remote",
        "required_skills": ["Python"],
        "min_years": 5,
        "posted_date": "2026-02-20T00:00:00",
    },
    {
        "id": "da-1",
        "title": "Data Analyst",
        "company": "Globex",
        "location": "New York, NY",
        "required_skills": ["Excel", "Tableau"],
    },
]


@pytest.fixture
def workspace(tmp_path):
    jobs_path = tmp_path / "jobs.json"
    jobs_path.write_text(json.dumps(JOBS))
    skills_path = tmp_path / "skills.json"
    skills_path.write_text(json.dumps(SKILLS_FILE))
    return tmp_path


def _run(workspace, *args):
    main(["--config", str(workspace / "config.json"), "--data-dir", str(workspace / "data"), *args])


def _job_ids(workspace):
    store = JobStore(str(workspace / "data" / "jobs"))
    return {job.title: job.canonical_id for job in store.all()}


@pytest.mark.integration
def test_ingest_parse_recommend(workspace, capsys):
    """Postings and a skills file lead to ranked recommendations."""
    _run(workspace, "ingest", "--file", str(workspace / "jobs.json"))
    assert "2 new" in capsys.readouterr().out

    _run(workspace, "parse", "-r", "v1", "-f", str(workspace / "skills.json"))
    assert "Skills (2)" in capsys.readouterr().out

    _run(workspace, "recommend", "-r", "v1", "--top", "5")
    out = capsys.readouterr().out

    assert "Top 2 recommendations" in out
    assert out.index("Senior Python Engineer") < out.index("Data Analyst")


@pytest.mark.integration
def test_reingest_merges(workspace, capsys):
    """Ingesting the same file twice merges instead of duplicating."""
    _run(workspace, "ingest", "--file", str(workspace / "jobs.json"))
    _run(workspace, "ingest", "--file", str(workspace / "jobs.json"))

    assert "0 new, 2 merged" in capsys.readouterr().out
    assert len(_job_ids(workspace)) == 2


@pytest.mark.integration
def test_score_json(workspace, capsys):
    """The score command can print the full result as JSON."""
    _run(workspace, "ingest", "--file", str(workspace / "jobs.json"))
    _run(workspace, "parse", "-r", "v1", "-f", str(workspace / "skills.json"))
    job_id = _job_ids(workspace)["Senior Python Engineer"]
    capsys.readouterr()

    _run(workspace, "score", "-r", "v1", "-j", job_id, "--json")
    result = json.loads(capsys.readouterr().out)

    assert result["job_id"] == job_id
    assert result["weight_version"] == 1
    assert 0 <= result["score"] <= 100


@pytest.mark.integration
def test_track_and_history(workspace, capsys):
    """Applications are tracked, updated and listed from the command line."""
    _run(workspace, "ingest", "--file", str(workspace / "jobs.json"))
    job_id = _job_ids(workspace)["Data Analyst"]

    _run(workspace, "track", "-j", job_id, "-r", "v1", "-s", "applied")
    out = capsys.readouterr().out
    application_id = out.split("Tracking ")[1].split(" ")[0]

    _run(workspace, "track", "--update", application_id, "-s", "interview", "--note", "phone screen went well")
    assert "applied -> interview" in capsys.readouterr().out

    _run(workspace, "track", "--history", application_id)
    history = capsys.readouterr().out
    assert "applied" in history
    assert "interview - phone screen went well" in history

    _run(workspace, "track", "--stats")
    assert "Interview Rate: 100.0%" in capsys.readouterr().out

    _run(workspace, "stale")
    assert "No stale applications" in capsys.readouterr().out


@pytest.mark.integration
def test_feedback_and_retrain(workspace, capsys):
    """Feedback is recorded and retraining reports when data is insufficient."""
    _run(workspace, "ingest", "--file", str(workspace / "jobs.json"))
    job_id = _job_ids(workspace)["Data Analyst"]

    _run(workspace, "feedback", "-j", job_id, "-a", "passed", "--reason", "not my field")
    assert "Recorded 'passed'" in capsys.readouterr().out

    _run(workspace, "retrain")
    assert "keeping weights v1" in capsys.readouterr().out


@pytest.mark.integration
def test_errors_exit_nonzero(workspace, capsys):
    """Engine errors are printed and end the process with status 1."""
    _run(workspace, "ingest", "--file", str(workspace / "jobs.json"))
    job_id = _job_ids(workspace)["Data Analyst"]

    with pytest.raises(SystemExit) as exc_info:
        _run(workspace, "score", "-r", "missing-version", "-j", job_id)

    assert exc_info.value.code == 1
    assert "No skill profile" in capsys.readouterr().out


@pytest.mark.integration
def test_config_commands(workspace, capsys):
    """Config values can be set and are shown with secrets masked."""
    _run(workspace, "config", "--set", "tracker.stale_days", "21")
    _run(workspace, "config", "--set-api-key", "anthropic", "sk-ant-1234567890")
    capsys.readouterr()

    _run(workspace, "config", "--show")
    out = capsys.readouterr().out

    assert '"stale_days": 21' in out
    assert "sk-ant-1234567890" not in out
    assert json.loads((workspace / "config.json").read_text())["tracker"]["stale_days"] == 21


@pytest.mark.integration
def test_costs_without_calls(workspace, capsys):
    """The usage report works before any analysis call was made."""
    _run(workspace, "costs")

    out = capsys.readouterr().out
    assert "External calls: 0" in out
    assert "Cache hits: 0" in out


@pytest.mark.integration
def test_no_command_prints_help(workspace):
    """Running without a command exits with status 1."""
    with pytest.raises(SystemExit) as exc_info:
        main([])

    assert exc_info.value.code == 1


def _posting(external_id, description):
    return {"id": external_id, "title": "Backend Engineer", "company": "Acme",
            "location": "Austin, TX", "description": description}


@pytest.mark.integration
def test_duplicate_review_settled_in_later_run(workspace, capsys):
    """A review id printed by one run can be resolved by the next one."""
    first = workspace / "board_a.json"
    first.write_text(json.dumps([_posting("1", "python services api design scale team build deploy monitor cloud")]))
    second = workspace / "board_b.json"
    second.write_text(json.dumps([_posting("2", "python services api design scale team build deploy kafka")]))

    _run(workspace, "ingest", "--file", str(first))
    _run(workspace, "ingest", "--file", str(second))
    out = capsys.readouterr().out
    assert "1 held for review" in out
    review_id = out.split("review id ")[1].split()[0]
    existing_id = _job_ids(workspace)["Backend Engineer"]

    _run(workspace, "ingest", "--resolve", review_id, "--merge-into", existing_id)
    assert f"Review {review_id}: merged" in capsys.readouterr().out

    with pytest.raises(SystemExit) as exc_info:
        _run(workspace, "ingest", "--resolve", review_id)

    assert exc_info.value.code == 1
    assert "No pending duplicate review" in capsys.readouterr().out
