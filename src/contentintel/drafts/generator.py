"""Turn recommendations into reviewable task and SOP drafts.

Everything here is a pure function of its arguments: no database, no
network. The orchestrator resolves SOP document associations beforehand
and persists whatever these functions return.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol, Sequence

from contentintel.storage.models import Confidence, Impact, SopDraftType

_IMPACT_RANK = {Impact.LOW.value: 0, Impact.MEDIUM.value: 1, Impact.HIGH.value: 2}
_CONFIDENCE_RANK = {Confidence.ESTIMATED.value: 0, Confidence.VERIFIED.value: 1}

# (impact, confidence) -> (priority, due in days)
_SCHEDULE: dict[tuple[str, str], tuple[str, int]] = {
    ("high", "verified"): ("urgent", 3),
    ("high", "estimated"): ("high", 7),
    ("medium", "verified"): ("high", 14),
    ("medium", "estimated"): ("medium", 21),
    ("low", "verified"): ("low", 30),
    ("low", "estimated"): ("low", 45),
}

_ADJUSTMENT_RE = re.compile(
    r"RECOMMENDED ADJUSTMENT:?\s*(?P<body>.*?)(?=\n[A-Z][A-Z' ]{3,}:|\Z)", re.DOTALL
)
_STEP_RE = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s+(?P<step>.+?)\s*$")
_TERM_RE = re.compile(r"[a-z0-9]{3,}")
_SECTION_BREAK_RE = re.compile(r"\n\s*\n")

BEFORE_EXCERPT_CHARS = 1500


class CitationLike(Protocol):
    source_name: str
    source_url: str
    excerpt: str


class RecommendationLike(Protocol):
    category: str
    title: str
    summary: str
    details: str
    impact: str
    confidence: str
    citations: Sequence[CitationLike]


@dataclass(frozen=True)
class DraftRules:
    min_impact: str = Impact.MEDIUM.value
    min_confidence: str = Confidence.ESTIMATED.value
    sop_min_impact: str = Impact.HIGH.value
    max_tasks: int = 2


@dataclass(frozen=True)
class SopAssociation:
    """An SOP/strategy document already linked to a recommendation's topic."""

    name: str
    template_set_id: int | None = None
    doc_id: str | None = None
    document_text: str | None = None


@dataclass
class TaskDraftSpec:
    title: str
    description: str
    suggested_priority: str
    suggested_due_in_days: int


@dataclass
class SopDraftSpec:
    draft_type: str
    sop_title: str
    description: str
    after_content: str
    sop_doc_id: str | None = None
    template_set_id: int | None = None
    before_content: str | None = None


@dataclass
class DraftBundle:
    tasks: list[TaskDraftSpec]
    sop: SopDraftSpec | None = None


def suggest_priority(impact: str, confidence: str) -> str:
    return _SCHEDULE.get((impact, confidence), ("medium", 21))[0]


def suggest_due_in_days(impact: str, confidence: str) -> int:
    return _SCHEDULE.get((impact, confidence), ("medium", 21))[1]


def meets_threshold(rec: RecommendationLike, min_impact: str, min_confidence: str) -> bool:
    return _IMPACT_RANK.get(rec.impact, 0) >= _IMPACT_RANK.get(min_impact, 0) and (
        _CONFIDENCE_RANK.get(rec.confidence, 0) >= _CONFIDENCE_RANK.get(min_confidence, 0)
    )


def adjustment_steps(details: str) -> list[str]:
    """Numbered or bulleted steps from the RECOMMENDED ADJUSTMENT section."""
    match = _ADJUSTMENT_RE.search(details or "")
    if not match:
        return []
    steps = []
    for line in match.group("body").splitlines():
        step = _STEP_RE.match(line)
        if step:
            steps.append(step.group("step"))
    return steps


def _sources_block(rec: RecommendationLike) -> str:
    if not rec.citations:
        return ""
    lines = [f"- {c.source_name}: {c.source_url}" for c in rec.citations]
    return "Sources:\n" + "\n".join(lines)


def generate_task_drafts(rec: RecommendationLike, max_tasks: int = 2) -> list[TaskDraftSpec]:
    """One draft per adjustment step (up to ``max_tasks``), else one overall."""
    priority = suggest_priority(rec.impact, rec.confidence)
    due = suggest_due_in_days(rec.impact, rec.confidence)
    sources = _sources_block(rec)
    steps = adjustment_steps(rec.details)[:max_tasks]

    if not steps:
        description = "\n\n".join(p for p in (rec.summary, rec.details, sources) if p)
        return [TaskDraftSpec(f"[{rec.category}] {rec.title}", description, priority, due)]

    drafts = []
    for step in steps:
        description = "\n\n".join(
            p for p in (f"Action: {step}", f"Why: {rec.summary}", sources) if p
        )
        drafts.append(TaskDraftSpec(f"[{rec.category}] {step[:120]}", description, priority, due))
    return drafts


def _document_sections(text: str) -> list[str]:
    """Markdown heading sections, else paragraphs, else non-empty lines."""
    sections: list[str] = []
    current: list[str] = []
    for line in text.splitlines():
        if line.lstrip().startswith("#") and any(prev.strip() for prev in current):
            sections.append("\n".join(current).strip())
            current = []
        current.append(line)
    if any(prev.strip() for prev in current):
        sections.append("\n".join(current).strip())
    if len(sections) <= 1:
        sections = [p.strip() for p in _SECTION_BREAK_RE.split(text) if p.strip()]
    if len(sections) <= 1:
        sections = [line.strip() for line in text.splitlines() if line.strip()]
    return sections


def _terms(text: str) -> set[str]:
    return set(_TERM_RE.findall(text.lower()))


def relevant_excerpt(
    document_text: str | None, rec: RecommendationLike, max_chars: int = BEFORE_EXCERPT_CHARS
) -> str | None:
    """The part of an existing SOP that ``rec`` most likely changes.

    Sections are scored by the words they share with the recommendation's
    title and category; with no overlap at all the document's opening
    section is quoted instead.
    """
    if not document_text or not document_text.strip():
        return None
    sections = _document_sections(document_text)
    terms = _terms(f"{rec.title} {rec.category}")
    best = max(sections, key=lambda s: len(terms & _terms(s)))
    if not terms & _terms(best):
        best = sections[0]
    if len(best) > max_chars:
        best = best[:max_chars].rstrip() + "\n[...]"
    return best


def generate_sop_draft(
    rec: RecommendationLike, association: SopAssociation | None
) -> SopDraftSpec:
    """``edit`` when a document is associated with the topic, else ``new``."""
    steps = adjustment_steps(rec.details)
    adjustment = "\n".join(f"{i}. {s}" for i, s in enumerate(steps, 1)) or rec.details
    after_content = "\n\n".join(
        p
        for p in (
            f"## {rec.title}",
            f"### What is changing\n{rec.summary}",
            f"### Recommended adjustment\n{adjustment}",
            _sources_block(rec),
        )
        if p
    )
    description = (
        f"{rec.impact.capitalize()}-impact {rec.confidence} recommendation "
        f"in {rec.category}: {rec.title}"
    )

    if association is not None and association.doc_id:
        return SopDraftSpec(
            draft_type=SopDraftType.EDIT.value,
            sop_title=association.name,
            description=description,
            after_content=after_content,
            sop_doc_id=association.doc_id,
            template_set_id=association.template_set_id,
            before_content=relevant_excerpt(association.document_text, rec),
        )

    title = association.name if association is not None else f"{rec.category} SOP"
    return SopDraftSpec(
        draft_type=SopDraftType.NEW.value,
        sop_title=title,
        description=description,
        after_content=f"# {title}\n\n{after_content}",
        template_set_id=association.template_set_id if association else None,
    )


def draft_for_recommendation(
    rec: RecommendationLike, rules: DraftRules, association: SopAssociation | None
) -> DraftBundle:
    """Task drafts over the draft threshold, an SOP draft over the SOP threshold."""
    if not meets_threshold(rec, rules.min_impact, rules.min_confidence):
        return DraftBundle(tasks=[])
    sop = None
    if _IMPACT_RANK.get(rec.impact, 0) >= _IMPACT_RANK.get(rules.sop_min_impact, 2):
        sop = generate_sop_draft(rec, association)
    return DraftBundle(tasks=generate_task_drafts(rec, rules.max_tasks), sop=sop)
