"""
Feedback log, weight-vector versions and the learner that produces them.
"""

from .feedback_store import FeedbackStore
from .weights import WeightStore
from .learner import FeedbackLearner

__all__ = [
    "FeedbackStore",
    "WeightStore",
    "FeedbackLearner",
]
