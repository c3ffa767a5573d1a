"""
Typed results of the analysis service, one class per invocation kind.

The service answers in loosely structured JSON; each result class checks
the fields its consumers rely on and exposes them as attributes.
"""

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

from job_recommender.core.models import SkillEntry, SkillLevel


class InvocationKind(Enum):
    """Kinds of analysis the engine can request."""
    PARSE_RESUME = "parse-resume"
    GENERATE_COVER_LETTER = "generate-cover-letter"
    TAILOR_RESUME = "tailor-resume"
    INTERVIEW_PREP = "interview-prep"


class MalformedResult(ValueError):
    """The service answered, but not in the expected shape."""
    pass


def _require(data: dict, key: str, kind: InvocationKind):
    if key not in data:
        raise MalformedResult(f"{kind.value} result missing '{key}'")
    return data[key]


def _strings(value, key: str, kind: InvocationKind) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list):
        raise MalformedResult(f"{kind.value} result field '{key}' must be a list")
    return tuple(str(item) for item in value if item is not None)


@dataclass(frozen=True)
class AnalysisResult:
    kind: ClassVar[InvocationKind]

    @classmethod
    def from_payload(cls, data: dict) -> "AnalysisResult":
        raise NotImplementedError

    def to_payload(self) -> dict:
        raise NotImplementedError


@dataclass(frozen=True)
class ParsedResume(AnalysisResult):
    """Skills and experience extracted from a resume document."""
    kind: ClassVar[InvocationKind] = InvocationKind.PARSE_RESUME

    skills: tuple[SkillEntry, ...]
    total_years: float = 0.0
    summary: str = ""

    @classmethod
    def from_payload(cls, data: dict) -> "ParsedResume":
        raw_skills = _require(data, "skills", cls.kind)
        if not isinstance(raw_skills, list):
            raise MalformedResult("parse-resume 'skills' must be a list")

        skills = []
        for item in raw_skills:
            if isinstance(item, str):
                item = {"name": item}
            if not isinstance(item, dict) or not item.get("name"):
                raise MalformedResult(f"parse-resume skill entry malformed: {item!r}")
            try:
                level = SkillLevel.parse(item.get("level", "INTERMEDIATE"))
            except (KeyError, ValueError):
                level = SkillLevel.INTERMEDIATE
            skills.append(SkillEntry(
                name=str(item["name"]).strip(),
                level=level,
                years=float(item.get("years") or 0.0),
                years_since_used=float(item.get("years_since_used") or 0.0),
            ))

        return cls(
            skills=tuple(skills),
            total_years=float(data.get("total_years") or 0.0),
            summary=str(data.get("summary") or ""),
        )

    def to_payload(self) -> dict:
        return {
            "skills": [s.to_dict() for s in self.skills],
            "total_years": self.total_years,
            "summary": self.summary,
        }


@dataclass(frozen=True)
class CoverLetter(AnalysisResult):
    kind: ClassVar[InvocationKind] = InvocationKind.GENERATE_COVER_LETTER

    text: str
    highlights: tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, data: dict) -> "CoverLetter":
        text = _require(data, "text", cls.kind)
        if not isinstance(text, str) or not text.strip():
            raise MalformedResult("generate-cover-letter 'text' is empty")
        return cls(text=text, highlights=_strings(data.get("highlights", []), "highlights", cls.kind))

    def to_payload(self) -> dict:
        return {"text": self.text, "highlights": list(self.highlights)}


@dataclass(frozen=True)
class TailoringSuggestions(AnalysisResult):
    kind: ClassVar[InvocationKind] = InvocationKind.TAILOR_RESUME

    suggestions: tuple[str, ...]
    keywords: tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, data: dict) -> "TailoringSuggestions":
        return cls(
            suggestions=_strings(_require(data, "suggestions", cls.kind), "suggestions", cls.kind),
            keywords=_strings(data.get("keywords", []), "keywords", cls.kind),
        )

    def to_payload(self) -> dict:
        return {"suggestions": list(self.suggestions), "keywords": list(self.keywords)}


@dataclass(frozen=True)
class InterviewPrep(AnalysisResult):
    kind: ClassVar[InvocationKind] = InvocationKind.INTERVIEW_PREP

    questions: tuple[str, ...]
    talking_points: tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, data: dict) -> "InterviewPrep":
        return cls(
            questions=_strings(_require(data, "questions", cls.kind), "questions", cls.kind),
            talking_points=_strings(data.get("talking_points", []), "talking_points", cls.kind),
        )

    def to_payload(self) -> dict:
        return {"questions": list(self.questions), "talking_points": list(self.talking_points)}


RESULT_TYPES: dict[InvocationKind, type[AnalysisResult]] = {
    InvocationKind.PARSE_RESUME: ParsedResume,
    InvocationKind.GENERATE_COVER_LETTER: CoverLetter,
    InvocationKind.TAILOR_RESUME: TailoringSuggestions,
    InvocationKind.INTERVIEW_PREP: InterviewPrep,
}


def parse_result(kind: InvocationKind, data: dict) -> AnalysisResult:
    if not isinstance(data, dict):
        raise MalformedResult(f"{kind.value} result must be a JSON object")
    return RESULT_TYPES[kind].from_payload(data)
