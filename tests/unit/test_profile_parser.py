"""Unit tests for resume text extraction and skill profile construction."""

import json

import pytest
from docx import Document

from job_recommender.analysis.results import ParsedResume
from job_recommender.core.models import SkillEntry, SkillLevel
from job_recommender.core.profile_parser import ResumeTextExtractor, profile_from_analysis, profile_from_json
from job_recommender.core.stores import ProfileStore


@pytest.fixture
def extractor():
    return ResumeTextExtractor()


@pytest.mark.unit
def test_extract_text_file(extractor, tmp_path):
    """Plain text and markdown resumes are read as-is."""
    path = tmp_path / "resume.md"
    path.write_text("# Jane Doe\n\nPython engineer\n")

    assert extractor.extract(str(path)) == "# Jane Doe\n\nPython engineer"


@pytest.mark.unit
def test_extract_docx_with_table(extractor, tmp_path):
    """DOCX paragraphs and table cells are both extracted."""
    document = Document()
    document.add_paragraph("Jane Doe")
    table = document.add_table(rows=1, cols=2)
    table.rows[0].cells[0].text = "Python"
    table.rows[0].cells[1].text = "6 years"
    path = tmp_path / "resume.docx"
    document.save(str(path))

    text = extractor.extract(str(path))

    assert "Jane Doe" in text
    assert "Python | 6 years" in text


@pytest.mark.unit
def test_extract_errors(extractor, tmp_path):
    """Missing, unsupported and empty files are rejected."""
    with pytest.raises(FileNotFoundError):
        extractor.extract(str(tmp_path / "missing.pdf"))

    rtf = tmp_path / "resume.rtf"
    rtf.write_text("{\\rtf1 hello}")
    with pytest.raises(ValueError):
        extractor.extract(str(rtf))

    empty = tmp_path / "empty.txt"
    empty.write_text("   \n")
    with pytest.raises(ValueError):
        extractor.extract(str(empty))


@pytest.mark.unit
def test_profile_merges_skill_variants(clock):
    """Variants of one skill collapse into a single entry with the strongest evidence."""
    parsed = ParsedResume(skills=(
        SkillEntry("Python", SkillLevel.ADVANCED, 3.0, 2.0),
        SkillEntry("py", SkillLevel.EXPERT, 5.0, 0.0),
        SkillEntry("Docker", SkillLevel.BEGINNER, 1.0, 0.0),
    ), total_years=7.0)

    profile = profile_from_analysis("v1", parsed, clock())

    assert [s.name for s in profile.skills] == ["Docker", "Python"]
    python = profile.skills[1]
    assert python.level == SkillLevel.EXPERT
    assert python.years == 5.0
    assert python.years_since_used == 0.0
    assert profile.total_years == 7.0
    assert profile.created_at == clock()


@pytest.mark.unit
def test_profile_from_json(tmp_path):
    """A hand-written skills file produces a profile."""
    path = tmp_path / "skills.json"
    path.write_text(json.dumps({"skills": [{"name": "Go", "level": "ADVANCED", "years": 4}], "total_years": 4}))

    profile = profile_from_json("v2", str(path))

    assert profile.resume_version_id == "v2"
    assert profile.skills[0].level == SkillLevel.ADVANCED


@pytest.mark.unit
def test_reparse_supersedes_previous_snapshot(clock):
    """Storing a new snapshot for a version links it to the previous one."""
    store = ProfileStore()
    first = store.put(profile_from_analysis("v1", ParsedResume(skills=(SkillEntry("Go"),)), clock()))
    second = store.put(profile_from_analysis("v1", ParsedResume(skills=(SkillEntry("Rust"),)), clock()))

    assert second.supersedes == first.fingerprint()
    assert store.get("v1") == second
    assert len(store.history("v1")) == 2
