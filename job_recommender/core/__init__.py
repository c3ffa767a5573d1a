"""Core models and data structures for job recommendation."""

from .models import (
    JobRecord,
    SourceRef,
    SkillEntry,
    SkillProfile,
    MatchResult,
    Explanation,
    FeedbackSignal,
    ApplicationRecord,
    WeightVector,
)
from .exceptions import EngineError

__all__ = [
    "JobRecord",
    "SourceRef",
    "SkillEntry",
    "SkillProfile",
    "MatchResult",
    "Explanation",
    "FeedbackSignal",
    "ApplicationRecord",
    "WeightVector",
    "EngineError",
]
