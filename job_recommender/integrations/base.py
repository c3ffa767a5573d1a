"""
Base class for job-board connectors.

A connector only fetches postings and maps them to candidate JobRecords
carrying a single SourceRef; identity resolution is the deduplicator's job.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
import json
import logging
import re

from job_recommender.core.models import JobRecord, RemoteMode, SourceRef


class JobSource(ABC):
    """Abstract base class for job-board connectors."""

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    @abstractmethod
    def name(self) -> str:
        """Source name, used in every SourceRef this connector produces."""
        pass

    @property
    def requires_api_key(self) -> bool:
        return False

    @abstractmethod
    def fetch_jobs(self, limit: Optional[int] = None) -> list[JobRecord]:
        """
        Fetch current postings.

        Args:
            limit: Maximum number of postings (None = all)

        Returns:
            Candidate JobRecords without a canonical id
        """
        pass

    def is_available(self) -> bool:
        """Check if the connector is properly configured and available."""
        if self.requires_api_key and not self.api_key:
            return False
        return True

    def _parse_salary(self, salary_text: str) -> tuple[Optional[int], Optional[int]]:
        """Parse salary range from text."""
        if not salary_text:
            return None, None

        # Remove currency symbols and commas
        clean = salary_text.replace('$', '').replace(',', '')
        clean = re.sub(r'(\d+)\s*[kK]\b', lambda m: str(int(m.group(1)) * 1000), clean)

        numbers = re.findall(r'\d+', clean)

        if len(numbers) >= 2:
            return int(numbers[0]), int(numbers[1])
        elif len(numbers) == 1:
            return int(numbers[0]), int(numbers[0])

        return None, None

    @staticmethod
    def _remote_mode(*texts: str) -> RemoteMode:
        text = " ".join(t for t in texts if t).lower()
        if "hybrid" in text:
            return RemoteMode.HYBRID
        if "remote" in text:
            return RemoteMode.REMOTE
        return RemoteMode.ON_SITE


class JsonFileSource(JobSource):
    """
    Postings exported to a JSON file (a list of job objects).

    Each object uses the JobRecord field names plus `external_id`; records
    that already carry `sources` keep them.
    """

    def __init__(self, file_path: str, source_name: Optional[str] = None):
        super().__init__()
        self.file_path = Path(file_path)
        self._name = source_name or self.file_path.stem

    @property
    def name(self) -> str:
        return self._name

    def fetch_jobs(self, limit: Optional[int] = None) -> list[JobRecord]:
        with open(self.file_path, 'r') as f:
            data = json.load(f)

        if isinstance(data, dict):
            data = data.get("jobs", [])

        jobs = []
        for index, item in enumerate(data):
            item = dict(item)
            item.pop("canonical_id", None)
            if not item.get("sources"):
                external_id = str(item.get("external_id") or item.get("id") or index)
                item["sources"] = [{"source": self.name, "external_id": external_id}]
            jobs.append(JobRecord.from_dict(item))

            if limit is not None and len(jobs) >= limit:
                break

        self.logger.info(f"Read {len(jobs)} jobs from {self.file_path}")
        return jobs
