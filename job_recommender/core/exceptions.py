"""Exceptions raised by the recommendation engine."""

from typing import Optional


class EngineError(Exception):
    """Base class for all engine errors."""
    pass


class MissingProfile(EngineError):
    """
    Raised when a resume version has no parsed skill profile yet.

    Attributes:
        resume_version_id: The resume version that was requested
    """

    def __init__(self, resume_version_id: str):
        self.resume_version_id = resume_version_id
        super().__init__(f"No skill profile for resume version '{resume_version_id}'")


class MissingJob(EngineError):
    """
    Raised when a job is unknown or was archived without keeping its snapshot.

    Attributes:
        job_id: The requested job id
        archived: True if the job exists but its content was dropped
    """

    def __init__(self, job_id: str, archived: bool = False):
        self.job_id = job_id
        self.archived = archived
        reason = "archived without snapshot" if archived else "not found"
        super().__init__(f"Job '{job_id}' {reason}")


class AmbiguousDuplicate(EngineError):
    """
    Raised when an incoming job looks like an existing one but not clearly enough to merge.

    The candidate is held for manual review under `review_id`.

    Attributes:
        review_id: Id of the pending review entry
        candidate_key: Source key of the incoming record
        existing_id: Canonical id of the record it resembles
        similarity: Description similarity that fell between the thresholds
    """

    def __init__(self, review_id: str, candidate_key: str, existing_id: str, similarity: float):
        self.review_id = review_id
        self.candidate_key = candidate_key
        self.existing_id = existing_id
        self.similarity = similarity
        super().__init__(
            f"Job {candidate_key} may duplicate {existing_id} "
            f"(description similarity {similarity:.2f}); held for review as {review_id}"
        )


class AnalysisUnavailable(EngineError):
    """
    Raised when the analysis service could not be reached within the retry policy.

    The original request is kept by the invocation manager for manual retry.

    Attributes:
        kind: Invocation kind value
        request_key: Content hash of the request
        attempts: Number of attempts made
        original_error: The last error seen
    """

    def __init__(
        self,
        kind: str,
        request_key: str,
        attempts: int,
        original_error: Optional[Exception] = None,
    ):
        self.kind = kind
        self.request_key = request_key
        self.attempts = attempts
        self.original_error = original_error

        parts = [f"Analysis '{kind}' unavailable after {attempts} attempt(s)"]
        if original_error:
            parts.append(f"Original error: {original_error}")
        parts.append(f"Request {request_key[:12]} preserved for retry")

        super().__init__("\n".join(parts))


class ConcurrentTransitionConflict(EngineError):
    """
    Reported when a transition raced another one on the same application.

    Both transitions are in the history; the later one holds the status.

    Attributes:
        application_id: The contested application
        expected: Status the caller believed was current
        actual: Status that was current when the transition was applied
        requested: Status the caller moved to
    """

    def __init__(self, application_id: str, expected, actual, requested):
        self.application_id = application_id
        self.expected = expected
        self.actual = actual
        self.requested = requested
        super().__init__(
            f"Application {application_id}: expected '{expected.value}' but found "
            f"'{actual.value}' when moving to '{requested.value}'"
        )


class UnknownApplication(EngineError, KeyError):
    """Raised when an application id was never tracked."""

    def __init__(self, application_id: str):
        self.application_id = application_id
        super().__init__(f"Application not found: {application_id}")

    def __str__(self) -> str:
        return self.args[0]


class InsufficientTrainingData(EngineError):
    """Raised inside the learner when feedback cannot support a new weight version."""

    def __init__(self, labeled: int, required: int, reason: str = ""):
        self.labeled = labeled
        self.required = required
        message = f"{labeled} labeled example(s), {required} required"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class TransientAnalysisError(EngineError):
    """Rate limit, timeout or server error from the analysis service; safe to retry."""
    pass


class PermanentAnalysisError(EngineError):
    """Analysis request rejected outright (bad request, auth); not retried."""
    pass


class UnknownReview(EngineError, KeyError):
    """Raised when a duplicate review id is not pending (never flagged, or already settled)."""

    def __init__(self, review_id: str):
        self.review_id = review_id
        super().__init__(f"No pending duplicate review: {review_id}")

    def __str__(self) -> str:
        return self.args[0]
