"""
Main entry point for the job_recommender package.

Usage:
    python -m job_recommender [command] [options]

See 'python -m job_recommender --help' for available commands.
"""

from job_recommender.cli import main

if __name__ == "__main__":
    main()
