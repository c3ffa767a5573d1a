"""
Job Aggregator - Collects postings from several connectors.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Optional
import logging

from .base import JobSource
from job_recommender.core.models import JobRecord


@dataclass
class FetchReport:
    """Postings gathered from all sources, plus the sources that failed."""
    jobs: list[JobRecord] = field(default_factory=list)
    counts: dict[str, int] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)


class JobAggregator:
    """Fetches from multiple connectors; candidates go to the deduplicator unfiltered."""

    def __init__(self, sources: Optional[list[JobSource]] = None, parallel: bool = True):
        self.sources: list[JobSource] = list(sources or [])
        self.parallel = parallel
        self.logger = logging.getLogger(self.__class__.__name__)

    def add_source(self, source: JobSource) -> None:
        """Add a custom job source."""
        self.sources.append(source)

    def remove_source(self, name: str) -> bool:
        """Remove a source by name."""
        for i, source in enumerate(self.sources):
            if source.name.lower() == name.lower():
                self.sources.pop(i)
                return True
        return False

    def get_available_sources(self) -> list[str]:
        return [s.name for s in self.sources if s.is_available()]

    def fetch_all(self, limit_per_source: Optional[int] = None) -> FetchReport:
        """
        Fetch postings from every available source.

        A failing source is recorded in the report's `errors` and does not
        stop the others. Result order follows source order, so the same
        sources always yield the same candidate sequence.
        """
        active = [s for s in self.sources if s.is_available()]
        report = FetchReport()

        if not active:
            self.logger.warning("No active sources available")
            return report

        results: dict[int, list[JobRecord]] = {}

        if self.parallel and len(active) > 1:
            with ThreadPoolExecutor(max_workers=len(active)) as executor:
                futures = {
                    executor.submit(source.fetch_jobs, limit_per_source): (index, source)
                    for index, source in enumerate(active)
                }
                for future in as_completed(futures):
                    index, source = futures[future]
                    try:
                        results[index] = future.result()
                    except Exception as e:
                        self.logger.error(f"{source.name} fetch failed: {e}")
                        report.errors[source.name] = str(e)
        else:
            for index, source in enumerate(active):
                try:
                    results[index] = source.fetch_jobs(limit_per_source)
                except Exception as e:
                    self.logger.error(f"{source.name} fetch failed: {e}")
                    report.errors[source.name] = str(e)

        for index, source in enumerate(active):
            jobs = results.get(index, [])
            report.jobs.extend(jobs)
            report.counts[source.name] = len(jobs)
            self.logger.debug(f"{source.name}: Found {len(jobs)} jobs")

        self.logger.info(f"Fetched {len(report.jobs)} postings from {len(active)} sources")
        return report
