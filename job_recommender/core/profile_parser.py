"""
Profile Parser - Reads resume documents and turns parsed results into skill profiles.

Supports PDF, DOCX, and plain text resumes. Skill extraction itself is done
by the analysis service; this module supplies the text it reads and
converts its answer into an immutable SkillProfile.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional
import json
import logging

from docx import Document
import pdfplumber

from job_recommender.analysis.results import ParsedResume
from job_recommender.core.models import SkillEntry, SkillProfile
from job_recommender.utils.text import normalize_skill


class ResumeTextExtractor:
    """Extracts plain text from resume documents."""

    SUPPORTED_EXTENSIONS = {".pdf", ".docx", ".txt", ".md"}

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    def extract(self, file_path: str) -> str:
        """
        Read a resume file and return its text.

        Raises:
            FileNotFoundError: if the file does not exist
            ValueError: for unsupported formats or documents with no text
        """
        path = Path(file_path)

        if not path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        extension = path.suffix.lower()

        if extension == ".pdf":
            text = self._read_pdf(path)
        elif extension == ".docx":
            text = self._read_docx(path)
        elif extension in [".txt", ".md"]:
            text = path.read_text(encoding="utf-8")
        else:
            raise ValueError(f"Unsupported file format: {extension}")

        text = text.strip()
        if not text:
            raise ValueError(f"No text found in {file_path}")

        self.logger.info(f"Extracted {len(text)} characters from {path.name}")
        return text

    def _read_pdf(self, path: Path) -> str:
        pages = []
        with pdfplumber.open(path) as pdf:
            for page in pdf.pages:
                pages.append(page.extract_text() or "")
        return "\n".join(pages)

    def _read_docx(self, path: Path) -> str:
        doc = Document(str(path))
        paragraphs = [para.text for para in doc.paragraphs]

        # Skills are often laid out in tables
        for table in doc.tables:
            for row in table.rows:
                paragraphs.append(" | ".join(cell.text for cell in row.cells))

        return "\n".join(paragraphs)


def _merge_entries(entries) -> tuple[SkillEntry, ...]:
    """Collapse entries naming the same skill, keeping the strongest evidence."""
    merged: dict[str, SkillEntry] = {}
    for entry in entries:
        key = normalize_skill(entry.name)
        if not key:
            continue
        current = merged.get(key)
        if current is None:
            merged[key] = entry
            continue
        merged[key] = SkillEntry(
            name=current.name,
            level=max(current.level, entry.level, key=lambda level: level.weight),
            years=max(current.years, entry.years),
            years_since_used=min(current.years_since_used, entry.years_since_used),
        )
    return tuple(sorted(merged.values(), key=lambda e: normalize_skill(e.name)))


def profile_from_analysis(
    resume_version_id: str,
    parsed: ParsedResume,
    created_at: Optional[datetime] = None,
) -> SkillProfile:
    """Build the skill profile of a resume version from a parse-resume result."""
    return SkillProfile(
        resume_version_id=resume_version_id,
        skills=_merge_entries(parsed.skills),
        total_years=parsed.total_years,
        created_at=created_at or datetime.now(),
    )


def profile_from_json(
    resume_version_id: str,
    file_path: str,
    created_at: Optional[datetime] = None,
) -> SkillProfile:
    """
    Build a skill profile from a hand-written JSON skills file.

    The file has the same shape as a parse-resume answer:
    {"skills": [{"name": ..., "level": ..., "years": ..., "years_since_used": ...}], "total_years": ...}
    """
    with open(file_path, 'r') as f:
        data = json.load(f)
    return profile_from_analysis(resume_version_id, ParsedResume.from_payload(data), created_at)
