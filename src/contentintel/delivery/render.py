"""Render a digest as a structured document and as a short relay message."""

from __future__ import annotations

from typing import Sequence

from contentintel.delivery.documents import DocBlock
from contentintel.llm.prompts import render
from contentintel.storage.models import Digest, Impact, Recommendation


def document_title(digest: Digest) -> str:
    return f"Content Intelligence Report: {digest.period}"


def render_digest_document(
    digest: Digest, recommendations: Sequence[Recommendation]
) -> list[DocBlock]:
    blocks = [
        DocBlock("Content Intelligence Report", "HEADING_1"),
        DocBlock(f"Period: {digest.period}\n"),
        DocBlock("Executive Summary", "HEADING_2"),
        DocBlock(
            f"Sources analyzed: {digest.sources_fetched}\n"
            f"Recommendations: {digest.recommendations_generated}\n"
            f"Task drafts: {digest.task_drafts_created}\n"
            f"SOP updates suggested: {digest.sop_drafts_created}\n"
        ),
    ]

    high_impact = [r for r in recommendations if r.impact == Impact.HIGH.value]
    if high_impact:
        blocks.append(DocBlock("High-Impact Changes", "HEADING_2"))
        for rec in high_impact:
            blocks.append(DocBlock(rec.title, "HEADING_3"))
            blocks.append(
                DocBlock(
                    f"Category: {rec.category} | Confidence: {rec.confidence} "
                    f"| Sources: {rec.source_count}"
                )
            )
            blocks.append(DocBlock(f"{rec.summary}\n"))
            if rec.details:
                blocks.append(DocBlock(f"{rec.details}\n"))
            if rec.citations:
                lines = [
                    f'• {c.source_name}: "{c.excerpt}"\n  {c.source_url}' for c in rec.citations
                ]
                blocks.append(DocBlock("Sources:\n" + "\n".join(lines) + "\n"))

    blocks.append(DocBlock("All Recommendations by Category", "HEADING_2"))
    if not recommendations:
        blocks.append(DocBlock("No recommendations this period."))
    categories = list(dict.fromkeys(r.category for r in recommendations))
    for category in categories:
        blocks.append(DocBlock(category, "HEADING_3"))
        for rec in (r for r in recommendations if r.category == category):
            blocks.append(DocBlock(f"{rec.impact.upper()}: {rec.title}"))
            blocks.append(DocBlock(f"{rec.summary}\n"))
    return blocks


def render_summary(
    digest: Digest,
    recommendations: Sequence[Recommendation],
    document_url: str | None = None,
    top_n: int = 5,
) -> str:
    """Condensed relay message: counts, top high-impact items, report link."""
    high_impact = [r for r in recommendations if r.impact == Impact.HIGH.value]
    verified = [r for r in recommendations if r.confidence == "verified"]
    return render(
        "digest_summary.j2",
        period=digest.period,
        sources_fetched=digest.sources_fetched,
        recommendations_generated=digest.recommendations_generated,
        high_impact_count=len(high_impact),
        verified_count=len(verified),
        task_drafts_created=digest.task_drafts_created,
        sop_drafts_created=digest.sop_drafts_created,
        top=high_impact[:top_n],
        document_url=document_url,
    ).strip()
