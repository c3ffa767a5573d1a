"""
Job-board connectors.
"""

from .base import JobSource, JsonFileSource
from .greenhouse import GreenhouseSource
from .aggregator import JobAggregator, FetchReport

__all__ = [
    "JobSource",
    "JsonFileSource",
    "GreenhouseSource",
    "JobAggregator",
    "FetchReport",
]
