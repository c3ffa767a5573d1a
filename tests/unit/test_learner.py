"""Unit tests for the feedback log, weight store and learner."""

from concurrent.futures import ThreadPoolExecutor
import dataclasses
import threading

import pytest

from conftest import make_job
from job_recommender.core.models import (
    FEATURES,
    ApplicationStatus,
    FeedbackAction,
    FeedbackSignal,
)
from job_recommender.learning.feedback_store import FeedbackStore
from job_recommender.learning.learner import (
    FeedbackLearner,
    historical_success_score,
    job_feature_tokens,
    label_signals,
)
from job_recommender.learning.weights import DEFAULT_WEIGHTS, WeightStore


JOBS = {
    "job_b": make_job("b", title="Data Analyst", required_skills=("Excel", "Tableau")),
    "job_c": make_job("c", title="Backend Engineer", required_skills=("Python", "Django")),
    "job_x": make_job("x", title="Support Specialist", required_skills=("Zendesk",)),
}

FEATURE_ROWS = {
    "job_b": {"skill_overlap": 0.2, "seniority_fit": 0.5, "location_fit": 0.5,
              "compensation_fit": 0.5, "historical_success": 0.5},
    "job_c": {"skill_overlap": 0.9, "seniority_fit": 0.5, "location_fit": 0.5,
              "compensation_fit": 0.5, "historical_success": 0.5},
}


@pytest.fixture
def feedback(clock):
    return FeedbackStore(clock=clock)


@pytest.fixture
def weights(clock):
    return WeightStore(clock=clock)


@pytest.fixture
def learner(weights, feedback):
    return FeedbackLearner(weights, feedback, job_lookup=JOBS.get, feature_lookup=FEATURE_ROWS.get,
                           retrain_after=3)


def _pass_b_interview_c(feedback):
    feedback.record("job_b", FeedbackAction.PASSED, reason="not my field")
    feedback.record("job_c", FeedbackAction.INTERVIEW_OUTCOME,
                    outcome=ApplicationStatus.INTERVIEW, highest_stage=ApplicationStatus.INTERVIEW)


@pytest.mark.unit
def test_cold_start_uses_defaults(weights):
    """A fresh store starts at version 1 with default weights."""
    current = weights.current()

    assert current.version == 1
    assert dict(current.weights) == DEFAULT_WEIGHTS
    assert current.parent_version is None


@pytest.mark.unit
def test_insufficient_data_keeps_version(learner, feedback, weights):
    """Too few labeled jobs leave the current version in place."""
    feedback.record("job_b", FeedbackAction.PASSED)

    result = learner.retrain()

    assert result.version == 1
    assert len(weights.versions()) == 1


@pytest.mark.unit
def test_one_sided_labels_keep_version(learner, feedback):
    """Only negative examples cannot support a retrain."""
    feedback.record("job_b", FeedbackAction.PASSED)
    feedback.record("job_x", FeedbackAction.PASSED)

    assert learner.retrain().version == 1


@pytest.mark.unit
def test_retrain_favours_interviewed_jobs(learner, feedback):
    """Passing on B and interviewing for C raises the success score of C-like jobs."""
    similar_to_c = job_feature_tokens(make_job("d", title="Backend Engineer", required_skills=("Python", "Flask")))
    similar_to_b = job_feature_tokens(make_job("e", title="Data Analyst", required_skills=("Excel",)))
    before = learner.weight_store.current()

    _pass_b_interview_c(feedback)
    after = learner.retrain()

    assert after.version == 2
    assert after.parent_version == 1
    assert historical_success_score(similar_to_c, before) == 0.5
    assert historical_success_score(similar_to_c, after) > 0.5
    assert historical_success_score(similar_to_b, after) < 0.5


@pytest.mark.unit
def test_retrain_moves_informative_weight_only(learner, feedback):
    """Only features that separate the outcomes change, within the step bound."""
    _pass_b_interview_c(feedback)

    vector = learner.retrain()

    assert vector.weight("skill_overlap") > 1.0
    assert vector.weight("skill_overlap") <= 1.0 + learner.max_step * learner.epochs
    for feature in FEATURES:
        if feature != "skill_overlap":
            assert vector.weight(feature) == 1.0


@pytest.mark.unit
def test_versions_are_immutable(learner, feedback, weights):
    """Published versions never change and the version count never drops."""
    original = weights.get(1)
    _pass_b_interview_c(feedback)
    learner.retrain()
    learner.retrain()

    assert [v.version for v in weights.versions()] == [1, 2, 3]
    assert dict(weights.get(1).weights) == DEFAULT_WEIGHTS
    assert weights.get(1) is original

    with pytest.raises(TypeError):
        original.weights["skill_overlap"] = 5.0
    with pytest.raises(dataclasses.FrozenInstanceError):
        original.version = 7


@pytest.mark.unit
def test_maybe_retrain_threshold(learner, feedback):
    """Retraining waits until enough new signals have arrived."""
    feedback.record("job_b", FeedbackAction.PASSED)
    feedback.record("job_c", FeedbackAction.INTERVIEW_OUTCOME, outcome=ApplicationStatus.INTERVIEW)

    assert learner.pending_signals == 2
    assert learner.maybe_retrain() is None

    feedback.record("job_x", FeedbackAction.INTERESTED)
    vector = learner.maybe_retrain()

    assert vector is not None
    assert vector.version == 2
    assert learner.pending_signals == 0


@pytest.mark.unit
def test_commit_requires_every_feature(weights):
    """A weight dict missing a feature is rejected."""
    with pytest.raises(ValueError):
        weights.commit({"skill_overlap": 2.0})


@pytest.mark.unit
def test_weight_store_persists(tmp_path, clock):
    """Versions and the current pointer survive a reload."""
    store = WeightStore(str(tmp_path / "weights"), clock=clock)
    store.commit({f: 2.0 for f in FEATURES})

    reloaded = WeightStore(str(tmp_path / "weights"), clock=clock)

    assert reloaded.current().version == 2
    assert reloaded.current().weight("location_fit") == 2.0
    assert [v.version for v in reloaded.versions()] == [1, 2]


@pytest.mark.unit
def test_feedback_log_is_append_only(tmp_path, clock):
    """Signals are persisted in order and returned as an immutable snapshot."""
    store = FeedbackStore(str(tmp_path / "feedback.jsonl"), clock=clock)
    store.record("job_b", FeedbackAction.PASSED, reason="too junior")
    store.record("job_c", FeedbackAction.APPLIED)

    snapshot = store.all()
    reloaded = FeedbackStore(str(tmp_path / "feedback.jsonl"), clock=clock)

    assert isinstance(snapshot, tuple)
    assert [s.job_id for s in reloaded.all()] == ["job_b", "job_c"]
    assert reloaded.all()[0].reason == "too junior"
    assert reloaded.all()[0].timestamp == clock()


@pytest.mark.unit
def test_feedback_listener_notified(feedback):
    """Listeners see every appended signal."""
    seen = []
    feedback.add_listener(seen.append)

    signal = feedback.record("job_b", FeedbackAction.INTERESTED)

    assert seen == [signal]


@pytest.mark.unit
def test_label_signals():
    """Interview or better is positive; a pass or pre-interview rejection is negative."""
    def signal(action, outcome=None, highest=None):
        return FeedbackSignal("job", action, outcome=outcome, highest_stage=highest)

    assert label_signals([signal(FeedbackAction.INTERVIEW_OUTCOME, ApplicationStatus.OFFER)]) == 1
    assert label_signals([signal(FeedbackAction.INTERVIEW_OUTCOME, ApplicationStatus.REJECTED,
                                 ApplicationStatus.INTERVIEW)]) == 1
    assert label_signals([signal(FeedbackAction.INTERVIEW_OUTCOME, ApplicationStatus.REJECTED,
                                 ApplicationStatus.APPLIED)]) == 0
    assert label_signals([signal(FeedbackAction.PASSED)]) == 0
    assert label_signals([signal(FeedbackAction.INTERESTED), signal(FeedbackAction.APPLIED)]) is None


@pytest.mark.unit
def test_unscored_examples_keep_weights(weights, feedback):
    """Labeled jobs that were never scored add exemplars but leave the weights alone."""
    learner = FeedbackLearner(weights, feedback, job_lookup=JOBS.get, feature_lookup=lambda job_id: None)
    _pass_b_interview_c(feedback)

    vector = learner.retrain()

    assert vector.version == 2
    assert dict(vector.weights) == DEFAULT_WEIGHTS
    assert vector.positive_exemplars and vector.negative_exemplars


@pytest.mark.unit
def test_concurrent_maybe_retrain_commits_once(learner, feedback, weights):
    """Callers racing past the threshold produce a single new version."""
    _pass_b_interview_c(feedback)
    feedback.record("job_x", FeedbackAction.INTERESTED)
    start = threading.Barrier(8)

    def attempt(_):
        start.wait()
        return learner.maybe_retrain()

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(executor.map(attempt, range(8)))

    assert sum(1 for r in results if r is not None) == 1
    assert [v.version for v in weights.versions()] == [1, 2]


@pytest.mark.unit
def test_merged_job_ids_grouped(weights, feedback):
    """Signals recorded under a retired job id count toward the job it was merged into."""
    aliases = {"job_c_old": "job_c"}
    learner = FeedbackLearner(weights, feedback, job_lookup=JOBS.get, feature_lookup=FEATURE_ROWS.get,
                              id_resolver=lambda job_id: aliases.get(job_id, job_id))
    feedback.record("job_b", FeedbackAction.PASSED)
    feedback.record("job_c_old", FeedbackAction.INTERVIEW_OUTCOME,
                    outcome=ApplicationStatus.INTERVIEW, highest_stage=ApplicationStatus.INTERVIEW)
    feedback.record("job_c", FeedbackAction.INTERESTED)

    examples = learner.build_examples(feedback.all())

    assert [(e.job_id, e.label) for e in examples] == [("job_b", 0), ("job_c", 1)]
    assert all(e.features is not None for e in examples)
