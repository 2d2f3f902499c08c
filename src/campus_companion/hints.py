"""
campus_companion/hints.py

Reading structured fields out of a vision model's reply.

The vision prompt asks for a JSON object, and :func:`parse_vision_output`
uses it when the model complies.  When it does not, the free text goes through
:func:`parse_structured_hints`, the only place that guesses fields with
regular expressions.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import re
from typing import Any, Final

logger = logging.getLogger("campus-companion.hints")

DEFAULT_SUBJECT: Final[str] = "General Studies"

DEFAULT_STUDY_SUGGESTIONS: Final[tuple[str, ...]] = (
    "Review the key concepts highlighted in this material",
    "Practice similar problems or examples",
    "Connect this content to your course curriculum",
    "Discuss the concepts with classmates or instructors",
)

_TEXT_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"(?:text|title|heading|label)s?[:\s]+([^\n\r]+)", re.IGNORECASE),
    re.compile(r"(?:reads?|says?|shows?)[:\s]+[\"']([^\"']+)[\"']", re.IGNORECASE),
    re.compile(r"(?:written|displayed)[:\s]+([^\n\r]+)", re.IGNORECASE),
)

_FORMULA_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"\$\$([^$]+)\$\$"),
    re.compile(r"(?<!\$)\$([^$\n]+)\$(?!\$)"),
    re.compile(r"\\\[(.+?)\\\]", re.DOTALL),
    re.compile(r"(\\begin\{([^}]+)\}.*?\\end\{\2\})", re.DOTALL),
)

_CONCEPT_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"(?:concept|topic|theme)s?[:\s]+([^\n\r.]+)", re.IGNORECASE),
    re.compile(r"(?:about|regarding|concerning)[:\s]+([^\n\r.]+)", re.IGNORECASE),
    re.compile(r"(?:key|main|important|primary)[:\s]+([^\n\r.]+)", re.IGNORECASE),
)

_SUGGESTION_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"(?:study|learn|practice|review|understand)[:\s]+([^\n\r.]+)", re.IGNORECASE),
    re.compile(r"(?:should|could|might|would)[:\s]+([^\n\r.]+)", re.IGNORECASE),
    re.compile(r"(?:recommend|suggest)s?[:\s]+([^\n\r.]+)", re.IGNORECASE),
)

_SUBJECT_KEYWORDS: Final[dict[str, tuple[str, ...]]] = {
    "Mathematics": ("equation", "formula", "calculus", "algebra", "geometry", "theorem", "proof"),
    "Physics": ("force", "energy", "wave", "particle", "quantum", "mechanics", "electricity"),
    "Chemistry": ("molecule", "atom", "reaction", "compound", "element", "chemical", "bond"),
    "Biology": ("cell", "organism", "dna", "protein", "evolution", "ecosystem", "anatomy"),
    "Engineering": ("circuit", "design", "system", "structure", "analysis", "technical"),
    "Computer Science": ("algorithm", "code", "program", "data", "software", "computing"),
    "Economics": ("market", "price", "demand", "supply", "economy", "financial"),
    "Psychology": ("behavior", "cognitive", "mental", "brain", "learning", "memory"),
    "Literature": ("text", "author", "poem", "novel", "literary", "analysis"),
    "History": ("historical", "period", "event", "date", "timeline", "civilization"),
}

_FENCE: Final[re.Pattern[str]] = re.compile(r"^```[a-z]*\n?|\n?```$", re.IGNORECASE)


@dataclasses.dataclass(slots=True)
class PartialHints:
    """Whatever fields could be recovered from a vision reply.

    ``None`` means the field was not found; callers fill defaults.
    """

    description: str
    extracted_text: str | None = None
    formulas: list[str] | None = None
    key_concepts: list[str] | None = None
    study_suggestions: list[str] | None = None
    subject: str | None = None


def _dedupe(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


def _collect(text: str, patterns: tuple[re.Pattern[str], ...], min_len: int) -> list[str]:
    found: list[str] = []
    for pattern in patterns:
        for match in pattern.finditer(text):
            value = match.group(1).strip()
            if len(value) >= min_len:
                found.append(value)
    return found


def parse_structured_hints(text: str) -> PartialHints:
    """Recover vision fields from free text with regex heuristics.

    Args:
        text: The model's raw reply.

    Returns:
        A :class:`PartialHints`; list fields are ``None`` when nothing matched.
    """
    extracted = _collect(text, _TEXT_PATTERNS, 3)
    formulas = _dedupe(_collect(text, _FORMULA_PATTERNS, 2))
    concepts = _dedupe(_collect(text, _CONCEPT_PATTERNS, 4))[:5]
    suggestions = _dedupe(_collect(text, _SUGGESTION_PATTERNS, 6))[:4]
    return PartialHints(
        description=text,
        extracted_text=" | ".join(extracted) or None,
        formulas=formulas or None,
        key_concepts=concepts or None,
        study_suggestions=suggestions or None,
    )


def classify_subject(text: str) -> str:
    """Pick the subject whose keywords appear most often in ``text``."""
    lowered = text.lower()
    best, best_score = DEFAULT_SUBJECT, 0
    for subject, keywords in _SUBJECT_KEYWORDS.items():
        score = sum(1 for keyword in keywords if keyword in lowered)
        if score > best_score:
            best, best_score = subject, score
    return best


def _str_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    items = [str(item).strip() for item in value if str(item).strip()]
    return _dedupe(items)


def _from_json(text: str) -> PartialHints | None:
    clean = _FENCE.sub("", text.strip()).strip()
    start, end = clean.find("{"), clean.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(clean[start:end + 1])
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or not isinstance(data.get("description"), str):
        return None
    subject = data.get("subject")
    extracted = data.get("extracted_text")
    return PartialHints(
        description=data["description"],
        extracted_text=extracted if isinstance(extracted, str) else None,
        formulas=_str_list(data.get("formulas")),
        key_concepts=_str_list(data.get("key_concepts")),
        study_suggestions=_str_list(data.get("study_suggestions")),
        subject=subject if isinstance(subject, str) and subject.strip() else None,
    )


def parse_vision_output(text: str) -> PartialHints:
    """Read a vision reply: the requested JSON object first, heuristics second."""
    hints = _from_json(text)
    if hints is not None:
        return hints
    logger.info("[hints] reply was not the requested JSON; using text heuristics.")
    return parse_structured_hints(text)
