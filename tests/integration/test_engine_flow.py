"""
End-to-end tests of RecommendationEngine.

Jobs are ingested, a profile is parsed, recommendations are ranked,
applications move through their lifecycle and the resulting feedback
retrains the scoring weights. The analysis service is a scripted fake.
"""

import pytest

from conftest import analyst_job, make_job, python_job
from job_recommender.analysis.results import CoverLetter, InvocationKind, TailoringSuggestions
from job_recommender.core.exceptions import (
    AnalysisUnavailable,
    MissingJob,
    MissingProfile,
    TransientAnalysisError,
    UnknownApplication,
)
from job_recommender.core.models import ApplicationStatus, FeedbackAction
from job_recommender.engine import RecommendationEngine
from job_recommender.tracker.events import RECOMMENDATION, STALE_FLAGGED, STATUS_CHANGED


def _ingest(engine):
    report = engine.ingest_jobs([python_job(), analyst_job()])
    python_id, analyst_id = report.created
    return python_id, analyst_id


@pytest.mark.integration
def test_recommendations_ranked(engine, skills_file):
    """The best-matching open job comes first, with its explanation."""
    python_id, analyst_id = _ingest(engine)
    engine.load_profile("v1", str(skills_file))

    top = engine.top_recommendations("v1", n=5)

    assert [r.job_id for r in top] == [python_id, analyst_id]
    assert top[0].score == 90
    assert top[0].matching_skills == ["Python"]
    assert top[1].missing_skills == ["Excel", "Tableau"]


@pytest.mark.integration
def test_recommendations_skip_closed_and_archived(engine, skills_file):
    """Archived jobs are not recommended."""
    python_id, analyst_id = _ingest(engine)
    engine.load_profile("v1", str(skills_file))
    engine.archive_job(python_id)

    assert [r.job_id for r in engine.top_recommendations("v1")] == [analyst_id]


@pytest.mark.integration
def test_recommendations_need_profile(engine):
    """Asking for recommendations before parsing a resume raises MissingProfile."""
    _ingest(engine)

    with pytest.raises(MissingProfile):
        engine.top_recommendations("v1")


@pytest.mark.integration
def test_score_many_reports_failures(engine, skills_file):
    """Bulk scoring lists jobs it could not score instead of failing."""
    python_id, _ = _ingest(engine)
    engine.load_profile("v1", str(skills_file))

    report = engine.score_many("v1", [python_id, "job_missing"])

    assert [r.job_id for r in report.results] == [python_id]
    assert isinstance(report.errors["job_missing"], MissingJob)


@pytest.mark.integration
def test_strong_match_announced_once(engine, skills_file):
    """Scores at or above the threshold are published once per weight version."""
    received = []
    engine.subscribe(received.append, kinds=[RECOMMENDATION])
    python_id, _ = _ingest(engine)
    engine.load_profile("v1", str(skills_file))

    engine.top_recommendations("v1")
    engine.score("v1", python_id)

    assert [e.payload["job_id"] for e in received] == [python_id]


@pytest.mark.integration
def test_parse_resume_uses_cache(engine, fake_client):
    """Reparsing unchanged resume text costs no call and keeps the snapshot."""
    first = engine.parse_resume("v1", text="Six years of Python.")
    second = engine.parse_resume("v1", text="Six years of Python.")

    assert first == second
    assert fake_client.calls_for(InvocationKind.PARSE_RESUME) == 1
    assert len(engine.profile_store.history("v1")) == 1

    usage = engine.cost_summary()["by_kind"]["parse-resume"]
    assert usage["calls"] == 1
    assert usage["cache_hits"] == 1


@pytest.mark.integration
def test_parse_resume_from_file(engine, tmp_path):
    """A resume file is read, sent for analysis and stored as a profile."""
    resume = tmp_path / "resume.txt"
    resume.write_text("Jane Doe\nSix years of Python, a little SQL.")

    profile = engine.parse_resume("v2", file_path=str(resume))

    assert [s.name for s in profile.skills] == ["Python", "SQL"]
    assert engine.profile_store.get("v2") == profile


@pytest.mark.integration
def test_parse_resume_unavailable(engine, fake_client):
    """An unreachable service surfaces AnalysisUnavailable and keeps the request."""
    fake_client.script = [TransientAnalysisError("overloaded")] * 4

    with pytest.raises(AnalysisUnavailable):
        engine.parse_resume("v1", text="Six years of Python.")

    assert len(engine.manager.failed_requests) == 1
    outcomes = engine.retry_failed_analysis()
    assert len(outcomes) == 1
    assert engine.profile_store.history("v1") == []


@pytest.mark.integration
def test_application_lifecycle_feeds_learning(engine, skills_file):
    """Applying, interviewing and passing produce signals that retrain the weights."""
    python_id, analyst_id = _ingest(engine)
    engine.load_profile("v1", str(skills_file))
    before = engine.score("v1", python_id)

    app = engine.track(python_id, "v1", ApplicationStatus.APPLIED)
    engine.transition(app.application_id, ApplicationStatus.INTERVIEW, note="onsite booked")
    engine.score("v1", analyst_id)
    engine.record_feedback(analyst_id, FeedbackAction.PASSED, reason="not my field")

    actions = [s.action for s in engine.feedback_store.all()]
    assert actions == [FeedbackAction.APPLIED, FeedbackAction.INTERVIEW_OUTCOME, FeedbackAction.PASSED]

    vector = engine.retrain()
    after = engine.score("v1", python_id)

    assert vector.version == 2
    assert after.weight_version == 2
    assert after.subscores["historical_success"] > before.subscores["historical_success"]
    assert [r.weight_version for r in engine.result_store.history("v1", python_id)] == [1, 2]


@pytest.mark.integration
def test_retrain_without_enough_feedback(engine, skills_file):
    """Retraining on too little feedback keeps the current weights."""
    python_id, _ = _ingest(engine)
    engine.record_feedback(python_id, FeedbackAction.INTERESTED)

    assert engine.retrain().version == 1


@pytest.mark.integration
def test_automatic_retrain(engine, skills_file):
    """Enough new signals trigger a retrain without being asked."""
    python_id, analyst_id = _ingest(engine)
    engine.load_profile("v1", str(skills_file))
    engine.top_recommendations("v1")

    app = engine.track(python_id, "v1", ApplicationStatus.APPLIED)
    engine.transition(app.application_id, ApplicationStatus.INTERVIEW)
    engine.record_feedback(analyst_id, FeedbackAction.PASSED)
    engine.record_feedback(analyst_id, FeedbackAction.PASSED)
    assert engine.current_weights().version == 1

    engine.record_feedback(python_id, FeedbackAction.INTERESTED)

    assert engine.current_weights().version == 2


@pytest.mark.integration
def test_stale_applications(engine, clock):
    """Applications idle in applied past the threshold are flagged and announced once."""
    python_id, analyst_id = _ingest(engine)
    quiet = engine.track(python_id, "v1", ApplicationStatus.APPLIED)
    busy = engine.track(analyst_id, "v1", ApplicationStatus.APPLIED)

    clock.advance(days=10)
    engine.transition(busy.application_id, ApplicationStatus.SCREENING)
    clock.advance(days=5)

    stale = engine.stale_applications()
    engine.stale_applications()

    assert [a.application_id for a in stale] == [quiet.application_id]
    assert len(engine.events.recent(STALE_FLAGGED)) == 1


@pytest.mark.integration
def test_transitions_published(engine):
    """Every status change is published on the event feed."""
    received = []
    engine.subscribe(received.append, kinds=[STATUS_CHANGED])
    python_id, _ = _ingest(engine)

    app = engine.track(python_id, "v1")
    engine.transition(app.application_id, ApplicationStatus.APPLIED)

    assert [e.payload["to"] for e in received] == ["saved", "applied"]


@pytest.mark.integration
def test_generate_cover_letter(engine, skills_file, fake_client):
    """A cover letter request carries the profile, job, match and tone."""
    python_id, _ = _ingest(engine)
    engine.load_profile("v1", str(skills_file))
    app = engine.track(python_id, "v1")

    letter = engine.generate_cover_letter(app.application_id, tone="warm")

    assert isinstance(letter, CoverLetter)
    kind, payload = fake_client.calls[-1]
    assert kind == InvocationKind.GENERATE_COVER_LETTER
    assert payload["tone"] == "warm"
    assert payload["job"]["title"] == "Senior Python Engineer"
    assert payload["match"]["matching_skills"] == ["Python"]


@pytest.mark.integration
def test_generation_discarded_for_withdrawn(engine, skills_file):
    """Results for applications that were withdrawn are discarded."""
    python_id, _ = _ingest(engine)
    engine.load_profile("v1", str(skills_file))
    app = engine.track(python_id, "v1")
    engine.transition(app.application_id, ApplicationStatus.WITHDRAWN)

    assert engine.interview_prep(app.application_id) is None


@pytest.mark.integration
def test_generation_for_unknown_application(engine):
    """Generating for an application that was never tracked raises UnknownApplication."""
    with pytest.raises(UnknownApplication):
        engine.tailor_resume("missing")


@pytest.mark.integration
def test_generate_many_batches(engine, skills_file, fake_client):
    """Bulk generation is queued, sent in a batch and mapped back per application."""
    python_id, analyst_id = _ingest(engine)
    engine.load_profile("v1", str(skills_file))
    first = engine.track(python_id, "v1")
    second = engine.track(analyst_id, "v1")

    outcomes = engine.generate_many(
        InvocationKind.TAILOR_RESUME, [first.application_id, second.application_id, "missing"]
    )

    assert isinstance(outcomes[first.application_id], TailoringSuggestions)
    assert isinstance(outcomes[second.application_id], TailoringSuggestions)
    assert isinstance(outcomes["missing"], UnknownApplication)
    assert fake_client.batches == [2]


@pytest.mark.integration
def test_duplicate_postings_collapse(engine, skills_file):
    """The same role from two boards is stored and recommended once."""
    report = engine.ingest_jobs([python_job(source="lever"), python_job(source="greenhouse", external_id="gh-7")])
    engine.load_profile("v1", str(skills_file))

    assert len(report.canonical_ids) == 1
    assert len(engine.top_recommendations("v1")) == 1


@pytest.mark.integration
def test_state_survives_restart(engine, skills_file, tmp_path, config, fake_client, clock):
    """Jobs, profiles, results, weights and applications are reloaded from the data directory."""
    python_id, _ = _ingest(engine)
    engine.load_profile("v1", str(skills_file))
    result = engine.score("v1", python_id)
    app = engine.track(python_id, "v1", ApplicationStatus.APPLIED)
    engine.close()

    restarted = RecommendationEngine(config, data_dir=str(tmp_path / "data"), analysis_client=fake_client,
                                     clock=clock, sleep=lambda seconds: None)
    try:
        assert restarted.job_store.get(python_id).title == "Senior Python Engineer"
        assert restarted.profile_store.get("v1").total_years == 6.0
        rescored = restarted.score("v1", python_id)
        assert (rescored.score, rescored.input_fingerprint) == (result.score, result.input_fingerprint)
        assert len(restarted.result_store) == 1
        assert restarted.tracker.get_application(app.application_id).status == ApplicationStatus.APPLIED
        assert len(restarted.feedback_store) == 1
    finally:
        restarted.close()


@pytest.mark.integration
def test_in_memory_engine(config, fake_client, clock):
    """An in-memory engine runs the same flow without touching disk."""
    engine = RecommendationEngine(config, analysis_client=fake_client, in_memory=True, clock=clock,
                                  sleep=lambda seconds: None)
    try:
        engine.ingest_jobs([make_job(required_skills=("Python",))])
        engine.parse_resume("v1", text="Python developer")
        assert len(engine.top_recommendations("v1")) == 1
        assert engine.data_dir is None
    finally:
        engine.close()


@pytest.mark.integration
def test_retrain_after_merge_renames_job(engine, skills_file):
    """Signals and scores recorded before a merge renamed the job still train the weights."""
    report = engine.ingest_jobs([python_job(source="lever"), analyst_job()])
    old_id, analyst_id = report.created
    engine.load_profile("v1", str(skills_file))
    engine.score("v1", old_id)
    engine.score("v1", analyst_id)
    app = engine.track(old_id, "v1", ApplicationStatus.APPLIED)

    merged = engine.ingest_jobs([python_job(source="greenhouse", external_id="gh-7")])
    new_id = merged.merged[0]
    assert new_id != old_id

    engine.transition(app.application_id, ApplicationStatus.INTERVIEW)
    engine.record_feedback(analyst_id, FeedbackAction.PASSED)

    examples = engine.learner.build_examples(engine.feedback_store.all())
    assert sorted(e.job_id for e in examples) == sorted([new_id, analyst_id])
    assert all(e.features is not None for e in examples)

    vector = engine.retrain()

    assert vector.version == 2
    assert dict(vector.weights) != dict(engine.weight_store.get(1).weights)


@pytest.mark.integration
def test_outcome_signal_triggers_retrain(engine, skills_file):
    """An interview reached through the tracker can be the signal that starts a retrain."""
    python_id, analyst_id = _ingest(engine)
    engine.load_profile("v1", str(skills_file))
    engine.top_recommendations("v1")

    engine.record_feedback(analyst_id, FeedbackAction.PASSED)
    engine.record_feedback(analyst_id, FeedbackAction.PASSED)
    engine.record_feedback(python_id, FeedbackAction.INTERESTED)
    app = engine.track(python_id, "v1", ApplicationStatus.APPLIED)
    assert engine.current_weights().version == 1

    engine.transition(app.application_id, ApplicationStatus.INTERVIEW)

    assert engine.feedback_store.all()[-1].action == FeedbackAction.INTERVIEW_OUTCOME
    assert engine.current_weights().version == 2
