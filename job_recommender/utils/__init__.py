"""
Utility modules for the job recommender.
"""

from .config import Config

__all__ = [
    "Config",
]
