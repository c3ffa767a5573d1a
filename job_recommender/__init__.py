"""
Job Recommender - Personalised job recommendation engine

This application:
1. Ingests job postings from several boards and merges duplicates
2. Scores every job against a resume version with an explained breakdown
3. Learns from your feedback and application outcomes which jobs suit you
4. Tracks applications and flags the ones that went quiet
5. Generates cover letters, tailoring hints and interview prep on demand
"""

__version__ = "1.0.0"
__author__ = "Job Recommender"
