"""Tolerant decoding of the model's recommendation payload.

The model is asked for a single JSON object, but real responses arrive
wrapped in code fences, surrounded by prose, or cut off mid-array when
the output token limit is hit. Decoding therefore works per candidate:
every element of the ``recommendations`` array that can be decoded is
validated on its own and either kept or discarded with a reason.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from contentintel.analysis.prompt import ArticleForAnalysis
from contentintel.storage.models import Confidence, Impact

logger = logging.getLogger(__name__)

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n?```\s*$")

_decoder = json.JSONDecoder()


class RecommendationPayload(BaseModel):
    """Shape of one recommendation as emitted by the model."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    category: str = "General"
    title: str = Field(min_length=1)
    summary: str = ""
    details: str = ""
    impact: str = Impact.MEDIUM.value
    citation_indices: list[int] = Field(default_factory=list, alias="citationIndices")
    citation_excerpts: list[str] = Field(default_factory=list, alias="citationExcerpts")

    @field_validator("title", "category", "summary", "details", mode="before")
    @classmethod
    def _coerce_text(cls, value: object) -> object:
        if value is None:
            return ""
        return value.strip() if isinstance(value, str) else value

    @field_validator("category", mode="after")
    @classmethod
    def _default_category(cls, value: str) -> str:
        return value or "General"

    @field_validator("impact", mode="before")
    @classmethod
    def _normalize_impact(cls, value: object) -> str:
        text = str(value or "").strip().lower()
        return text if text in {i.value for i in Impact} else Impact.MEDIUM.value

    @field_validator("citation_indices", mode="before")
    @classmethod
    def _keep_integer_indices(cls, value: object) -> list[int]:
        if not isinstance(value, list):
            return []
        indices: list[int] = []
        for item in value:
            try:
                indices.append(int(item))
            except (TypeError, ValueError, OverflowError):
                continue
        return indices

    @field_validator("citation_excerpts", mode="before")
    @classmethod
    def _stringify_excerpts(cls, value: object) -> list[str]:
        if not isinstance(value, list):
            return []
        return ["" if v is None else str(v) for v in value]


@dataclass
class ParsedCitation:
    fetch_result_id: int | None
    source_name: str
    source_url: str
    excerpt: str = ""


@dataclass
class ParsedRecommendation:
    category: str
    title: str
    summary: str
    details: str
    impact: str
    confidence: str
    citations: list[ParsedCitation] = field(default_factory=list)

    @property
    def source_count(self) -> int:
        return len(self.citations)


@dataclass
class Candidate:
    """One decoded array element, tagged valid or invalid."""

    index: int
    payload: RecommendationPayload | None = None
    error: str | None = None

    @property
    def valid(self) -> bool:
        return self.payload is not None


def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    cleaned = _FENCE_OPEN.sub("", cleaned)
    cleaned = _FENCE_CLOSE.sub("", cleaned)
    return cleaned.strip()


def _skip_separators(text: str, pos: int) -> int:
    while pos < len(text) and (text[pos].isspace() or text[pos] == ","):
        pos += 1
    return pos


def _salvage_array(text: str, start: int) -> list[object]:
    """Decode array elements one by one from ``start`` until one fails."""
    items: list[object] = []
    pos = start + 1
    while True:
        pos = _skip_separators(text, pos)
        if pos >= len(text) or text[pos] == "]":
            break
        try:
            item, pos = _decoder.raw_decode(text, pos)
        except json.JSONDecodeError:
            break
        items.append(item)
    return items


def extract_raw_candidates(raw_text: str) -> list[object]:
    """Pull the raw recommendation elements out of a model response."""
    if not raw_text or not raw_text.strip():
        return []
    text = strip_code_fences(raw_text)

    obj_start = text.find("{")
    first_bracket = text.find("[")
    bare_array = first_bracket != -1 and (obj_start == -1 or first_bracket < obj_start)
    if obj_start != -1 and not bare_array:
        try:
            obj, _ = _decoder.raw_decode(text, obj_start)
        except json.JSONDecodeError:
            obj = None
        if isinstance(obj, dict):
            recs = obj.get("recommendations")
            return recs if isinstance(recs, list) else []

    key = text.find('"recommendations"')
    array_start = text.find("[", key) if key != -1 else text.find("[")
    if array_start == -1:
        return []
    try:
        arr, _ = _decoder.raw_decode(text, array_start)
    except json.JSONDecodeError:
        return _salvage_array(text, array_start)
    return arr if isinstance(arr, list) else []


def decode_candidates(raw_text: str) -> list[Candidate]:
    candidates: list[Candidate] = []
    for i, item in enumerate(extract_raw_candidates(raw_text)):
        if not isinstance(item, dict):
            candidates.append(Candidate(index=i, error="not an object"))
            continue
        try:
            candidates.append(Candidate(index=i, payload=RecommendationPayload.model_validate(item)))
        except ValidationError as exc:
            candidates.append(Candidate(index=i, error=str(exc.errors()[0].get("msg", exc))))
        except (TypeError, ValueError, OverflowError) as exc:
            candidates.append(Candidate(index=i, error=f"{exc.__class__.__name__}: {exc}"))
    return candidates


def _resolve_citations(
    payload: RecommendationPayload, articles: list[ArticleForAnalysis]
) -> list[ParsedCitation]:
    seen: set[int] = set()
    citations: list[ParsedCitation] = []
    for pos, idx in enumerate(payload.citation_indices):
        if idx in seen:
            continue
        if not 0 <= idx < len(articles):
            logger.debug("Dropping citation to unknown article [%d] in %r", idx, payload.title)
            continue
        seen.add(idx)
        article = articles[idx]
        excerpt = payload.citation_excerpts[pos] if pos < len(payload.citation_excerpts) else ""
        citations.append(
            ParsedCitation(
                fetch_result_id=article.id,
                source_name=article.source_name,
                source_url=article.url,
                excerpt=excerpt,
            )
        )
    return citations


def _confidence(citations: list[ParsedCitation], articles: list[ArticleForAnalysis]) -> str:
    tiers = {a.id: a.source_tier for a in articles}
    if len({c.source_name for c in citations}) >= 2:
        return Confidence.VERIFIED.value
    if any(tiers.get(c.fetch_result_id) == "tier_1" for c in citations):
        return Confidence.VERIFIED.value
    return Confidence.ESTIMATED.value


def parse_recommendations(
    raw_text: str, articles: list[ArticleForAnalysis]
) -> list[ParsedRecommendation]:
    """Decode as many valid recommendations as the response allows.

    Never raises: garbage yields an empty list.
    """
    recommendations: list[ParsedRecommendation] = []
    candidates = decode_candidates(raw_text)
    for candidate in candidates:
        if not candidate.valid:
            logger.warning("Discarding recommendation #%d: %s", candidate.index, candidate.error)
            continue
        payload = candidate.payload
        citations = _resolve_citations(payload, articles)
        recommendations.append(
            ParsedRecommendation(
                category=payload.category,
                title=payload.title,
                summary=payload.summary,
                details=payload.details,
                impact=payload.impact,
                confidence=_confidence(citations, articles),
                citations=citations,
            )
        )

    if not candidates:
        logger.warning("No recommendations found in model response (%d chars)", len(raw_text or ""))
    return recommendations
