"""
Adapters for the external analysis service.

`AnalysisClient` is the interface the invocation manager calls;
`AnthropicAnalysisClient` implements it on the Anthropic Messages API.
Nothing outside the invocation manager should use these directly.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Union
import json
import logging
import re

import anthropic

from job_recommender.analysis.results import InvocationKind
from job_recommender.core.exceptions import PermanentAnalysisError, TransientAnalysisError


@dataclass
class RawResponse:
    """Unparsed answer from the service, with token usage when reported."""
    data: dict
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


class AnalysisClient(ABC):
    """Abstract interface to the analysis service."""

    @abstractmethod
    def invoke(self, kind: InvocationKind, payload: dict) -> RawResponse:
        """
        Run one analysis request.

        Raises:
            TransientAnalysisError: rate limit, timeout, server error
            PermanentAnalysisError: the request itself was rejected
        """
        pass

    def invoke_batch(
        self,
        requests: list[tuple[InvocationKind, dict]],
    ) -> list[Union[RawResponse, Exception]]:
        """
        Run several requests in one submission.

        Per-item failures are returned in place of responses; an exception
        raised from here fails the whole batch. The default sends the items
        one after the other.
        """
        responses: list[Union[RawResponse, Exception]] = []
        for kind, payload in requests:
            try:
                responses.append(self.invoke(kind, payload))
            except (TransientAnalysisError, PermanentAnalysisError) as e:
                responses.append(e)
        return responses


PROMPTS = {
    InvocationKind.PARSE_RESUME: """Extract the candidate's skills from this resume.

RESUME:
{resume_text}

Return ONLY a JSON object of the form:
{{"skills": [{{"name": "Python", "level": "EXPERT", "years": 6, "years_since_used": 0}}],
  "total_years": 8, "summary": "one sentence"}}
`level` is one of BEGINNER, INTERMEDIATE, ADVANCED, EXPERT. `years_since_used` is 0 for skills in current use.""",

    InvocationKind.GENERATE_COVER_LETTER: """Write a compelling cover letter for the following job application.

APPLICANT SKILLS:
{profile}

JOB DETAILS:
{job}

MATCH ANALYSIS:
{match}

INSTRUCTIONS:
1. Write a {tone} cover letter (3-4 paragraphs, under 400 words)
2. Connect 2-3 matching skills to the job requirements
3. Don't use generic phrases like "I am writing to apply"
4. Make it specific to the company and role

Return ONLY a JSON object: {{"text": "<letter in markdown>", "highlights": ["skill", ...]}}""",

    InvocationKind.TAILOR_RESUME: """Suggest how to tailor this resume for the job below.

APPLICANT SKILLS:
{profile}

JOB DETAILS:
{job}

GAPS FOUND:
{gaps}

Return ONLY a JSON object: {{"suggestions": ["..."], "keywords": ["..."]}}""",

    InvocationKind.INTERVIEW_PREP: """Prepare the candidate for an interview for the job below.

APPLICANT SKILLS:
{profile}

JOB DETAILS:
{job}

Return ONLY a JSON object: {{"questions": ["..."], "talking_points": ["..."]}}""",
}

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def extract_json(text: str) -> dict:
    """Pull the JSON object out of a model answer (tolerates code fences and prose)."""
    cleaned = _FENCE_RE.sub("", text.strip())
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise TransientAnalysisError("Analysis answer contained no JSON object")
        try:
            return json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError as e:
            raise TransientAnalysisError(f"Analysis answer was not valid JSON: {e}") from e


class AnthropicAnalysisClient(AnalysisClient):
    """Analysis service backed by Claude."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "claude-sonnet-4-20250514",
        max_tokens: int = 2000,
        client: Optional[anthropic.Anthropic] = None,
    ):
        """
        Args:
            api_key: Anthropic API key (None falls back to ANTHROPIC_API_KEY)
            model: Claude model name
            max_tokens: Answer length limit
            client: Preconfigured SDK client; created on first call otherwise
        """
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self._client = client
        self.logger = logging.getLogger(self.__class__.__name__)

    def _get_client(self) -> anthropic.Anthropic:
        if self._client is None:
            try:
                # Retries and timeouts are the invocation manager's job
                self._client = anthropic.Anthropic(api_key=self.api_key, max_retries=0)
            except anthropic.AnthropicError as e:
                raise PermanentAnalysisError(f"Anthropic client unavailable: {e}") from e
        return self._client

    def build_prompt(self, kind: InvocationKind, payload: dict) -> str:
        fields = {
            key: value if isinstance(value, str) else json.dumps(value, indent=2, default=str)
            for key, value in payload.items()
        }
        fields.setdefault("tone", "professional")
        try:
            return PROMPTS[kind].format(**fields)
        except KeyError as e:
            raise PermanentAnalysisError(f"{kind.value} payload missing field {e}") from e

    def invoke(self, kind: InvocationKind, payload: dict) -> RawResponse:
        prompt = self.build_prompt(kind, payload)

        try:
            response = self._get_client().messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except (anthropic.RateLimitError, anthropic.APIConnectionError, anthropic.InternalServerError) as e:
            raise TransientAnalysisError(f"{type(e).__name__}: {e}") from e
        except anthropic.APIStatusError as e:
            if e.status_code in (408, 409, 429) or e.status_code >= 500:
                raise TransientAnalysisError(f"HTTP {e.status_code}: {e}") from e
            raise PermanentAnalysisError(f"HTTP {e.status_code}: {e}") from e

        text = "".join(block.text for block in response.content if getattr(block, "type", "text") == "text")
        usage = getattr(response, "usage", None)

        return RawResponse(
            data=extract_json(text),
            input_tokens=getattr(usage, "input_tokens", None),
            output_tokens=getattr(usage, "output_tokens", None),
        )
