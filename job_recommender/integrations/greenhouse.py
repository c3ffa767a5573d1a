"""
Greenhouse ATS integration.

Greenhouse is a popular Applicant Tracking System used by many tech companies.
Their job board API is public and doesn't require authentication for reading jobs.
"""

from datetime import datetime, timezone
from typing import Optional
import html
import re

from bs4 import BeautifulSoup
import requests

from .base import JobSource
from job_recommender.core.models import JobRecord, SourceRef


class GreenhouseSource(JobSource):
    """Greenhouse job board connector for a list of company boards."""

    API_URL = "https://boards-api.greenhouse.io/v1/boards"

    # Headings that introduce skill lists in posting bodies
    REQUIRED_HEADINGS = ("requirements", "qualifications", "what you'll need", "you have", "must have")
    PREFERRED_HEADINGS = ("nice to have", "bonus", "preferred", "plus")

    def __init__(
        self,
        boards: list[str],
        known_skills: Optional[list[str]] = None,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            boards: Greenhouse board tokens (usually the company slug)
            known_skills: Skill names to look for in posting bodies
            timeout: HTTP timeout in seconds
            session: requests session (tests pass their own)
        """
        super().__init__()
        self.boards = list(boards)
        self.known_skills = list(known_skills or [])
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def name(self) -> str:
        return "greenhouse"

    def fetch_jobs(self, limit: Optional[int] = None) -> list[JobRecord]:
        """Fetch postings from every configured board; a failing board is logged and skipped."""
        all_jobs = []

        for board in self.boards:
            if limit is not None and len(all_jobs) >= limit:
                break
            try:
                all_jobs.extend(self._get_board_jobs(board))
            except requests.RequestException as e:
                self.logger.error(f"Error fetching {board} jobs: {e}")

        return all_jobs[:limit] if limit is not None else all_jobs

    def _get_board_jobs(self, board: str) -> list[JobRecord]:
        url = f"{self.API_URL}/{board}/jobs"
        params = {"content": "true"}  # Include job descriptions

        response = self.session.get(url, params=params, timeout=self.timeout)
        response.raise_for_status()

        jobs = []
        for job_data in response.json().get("jobs", []):
            job = self._parse_job(job_data, board)
            if job:
                jobs.append(job)

        self.logger.debug(f"{board}: {len(jobs)} jobs")
        return jobs

    def _parse_job(self, data: dict, board: str) -> Optional[JobRecord]:
        """Parse Greenhouse job data into a candidate JobRecord."""
        if not data.get("id") or not data.get("title"):
            self.logger.warning(f"Skipping Greenhouse job without id/title on {board}")
            return None

        location_data = data.get("location", {})
        location = location_data.get("name", "") if isinstance(location_data, dict) else str(location_data or "")

        soup = BeautifulSoup(self._unescape(data.get("content", "")), "html.parser")
        description = soup.get_text("\n", strip=True)
        required, preferred = self._extract_skills(soup)

        salary_min, salary_max = self._parse_salary(self._find_salary(description))

        return JobRecord(
            title=data["title"].strip(),
            company=self._company_name(data, board),
            location=location,
            remote_mode=self._remote_mode(location, data["title"]),
            salary_min=salary_min,
            salary_max=salary_max,
            required_skills=tuple(required),
            preferred_skills=tuple(preferred),
            posted_date=self._parse_date(data.get("first_published") or data.get("updated_at")),
            description=description,
            sources=(SourceRef(self.name, f"{board}/{data['id']}"),),
        )

    @staticmethod
    def _unescape(content: str) -> str:
        # The board API returns HTML-escaped HTML
        return html.unescape(content or "")

    @staticmethod
    def _company_name(data: dict, board: str) -> str:
        company = data.get("company_name")
        if company:
            return company
        return board.replace("-", " ").title()

    @staticmethod
    def _parse_date(value: Optional[str]) -> Optional[datetime]:
        if not value:
            return None
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed

    @staticmethod
    def _find_salary(text: str) -> str:
        match = re.search(r"\$\s?\d[\d,]*\s?[kK]?\s*(?:-|–|to)\s*\$?\s?\d[\d,]*\s?[kK]?", text)
        return match.group(0) if match else ""

    def _extract_skills(self, soup: BeautifulSoup) -> tuple[list[str], list[str]]:
        """Split known skills into required and preferred by the section they appear in."""
        if not self.known_skills:
            return [], []

        required, preferred = [], []
        section = "required"

        for element in soup.find_all(["h1", "h2", "h3", "h4", "strong", "p", "li"]):
            text = element.get_text(" ", strip=True)
            lowered = text.lower()
            if element.name in ("h1", "h2", "h3", "h4", "strong"):
                if any(h in lowered for h in self.PREFERRED_HEADINGS):
                    section = "preferred"
                elif any(h in lowered for h in self.REQUIRED_HEADINGS):
                    section = "required"
                continue

            for skill in self.known_skills:
                if re.search(rf"(?<![\w+#]){re.escape(skill.lower())}(?![\w+#])", lowered):
                    target = preferred if section == "preferred" else required
                    if skill not in required and skill not in preferred:
                        target.append(skill)

        return required, preferred
