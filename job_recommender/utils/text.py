"""
Text helpers shared by the deduplicator, the scorer and the learner.

Skill aliasing, title/company normalisation and token-overlap similarity.
"""

from typing import Iterable
import re


# Canonical skill name -> accepted variants
SKILL_VARIATIONS = {
    "javascript": ["js", "ecmascript"],
    "typescript": ["ts"],
    "python": ["py", "python3"],
    "kubernetes": ["k8s"],
    "postgresql": ["postgres", "psql"],
    "mongodb": ["mongo"],
    "react": ["reactjs", "react.js"],
    "node.js": ["nodejs", "node"],
    "machine learning": ["ml"],
    "artificial intelligence": ["ai"],
    "amazon web services": ["aws"],
    "google cloud platform": ["gcp"],
    "continuous integration": ["ci"],
    "continuous deployment": ["cd"],
    "ci/cd": ["cicd", "ci cd"],
    "golang": ["go"],
}

_ALIASES = {
    variant: base
    for base, variants in SKILL_VARIATIONS.items()
    for variant in variants
}

COMPANY_SUFFIXES = {"inc", "llc", "ltd", "corp", "corporation", "co", "gmbh", "plc", "company"}

TITLE_ABBREVIATIONS = {
    "sr": "senior",
    "jr": "junior",
    "eng": "engineer",
    "engr": "engineer",
    "dev": "developer",
    "mgr": "manager",
    "swe": "software engineer",
}

_TOKEN_RE = re.compile(r"[a-z0-9][a-z0-9+#.]*")


def tokenize(text: str) -> list[str]:
    """Lowercase word tokens; keeps `c++`, `c#` and `node.js` intact."""
    if not text:
        return []
    return [t.rstrip(".") for t in _TOKEN_RE.findall(text.lower())]


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    """Token-overlap ratio |A & B| / |A | B|; 0.0 when both are empty."""
    set_a, set_b = set(a), set(b)
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def normalize_skill(name: str) -> str:
    """Map a skill name to its canonical lowercase form."""
    cleaned = " ".join(name.lower().split())
    return _ALIASES.get(cleaned, cleaned)


def skills_match(skill1: str, skill2: str) -> bool:
    """Check if two skill names refer to the same skill (including variants)."""
    a, b = normalize_skill(skill1), normalize_skill(skill2)
    if a == b:
        return True

    # Substring match for compound skills ("react native" vs "react")
    if len(a) > 3 and len(b) > 3:
        if re.search(rf"\b{re.escape(a)}\b", b) or re.search(rf"\b{re.escape(b)}\b", a):
            return True

    return False


def normalize_title(title: str) -> str:
    tokens = []
    for token in tokenize(title):
        tokens.extend(TITLE_ABBREVIATIONS.get(token, token).split())
    return " ".join(tokens)


def normalize_company(company: str) -> str:
    tokens = [t for t in tokenize(company.replace(",", " ")) if t not in COMPANY_SUFFIXES]
    return " ".join(tokens)


def normalize_location(location: str) -> str:
    return " ".join(tokenize(location.replace(",", " ")))
