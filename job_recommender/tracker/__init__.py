"""
Application Tracker - Track applications and flag the ones that went quiet.
"""

from .application_tracker import ApplicationTracker
from .events import EventFeed
from .stale_detector import StaleDetector

__all__ = [
    "ApplicationTracker",
    "EventFeed",
    "StaleDetector",
]
