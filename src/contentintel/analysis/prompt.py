"""Token-budgeted prompt assembly.

Articles compete for a fixed token budget; the prompt frame (system
prompt, instructions, response schema) is never cut. Admission order is
deterministic:

1. tier ascending (``tier_1`` first),
2. newest first, undated articles after dated ones,
3. article id.

Articles are admitted in that order while they fit. The first article
that does not fit is truncated into the remaining budget when at least
``MIN_PARTIAL_TOKENS`` remain, otherwise dropped, and every article after
it is dropped. Token counts are estimated offline as one token per four
characters.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime

from contentintel.errors import BudgetError
from contentintel.llm.prompts import render

CHARS_PER_TOKEN = 4
MIN_PARTIAL_TOKENS = 200
ARTICLE_SEPARATOR = "\n---\n"
TRANSCRIPT_MARKER = "--- VIDEO TRANSCRIPT ---"

_TIER_RANK = {"tier_1": 1, "tier_2": 2, "tier_3": 3}


@dataclass
class ArticleForAnalysis:
    """A persisted fetch result joined with its source, as the model sees it."""

    id: int
    url: str
    title: str
    content: str
    source_name: str
    source_tier: str = "tier_3"
    category: str = "general"
    published_at: datetime | None = None


@dataclass
class PromptSettings:
    token_budget: int = 100_000
    max_article_chars: int = 6000


@dataclass
class Prompt:
    """A built prompt plus the articles it references, in index order."""

    system_prompt: str
    user_prompt: str
    articles: list[ArticleForAnalysis] = field(default_factory=list)
    dropped: int = 0

    @property
    def estimated_tokens(self) -> int:
        return estimate_tokens(self.system_prompt) + estimate_tokens(self.user_prompt)


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def truncate_content(content: str, max_chars: int) -> str:
    """Cut ``content`` to ``max_chars``, keeping a video description intact.

    When the content carries a transcript after ``TRANSCRIPT_MARKER``, the
    description before the marker survives and only the transcript is cut.
    """
    if max_chars <= 0:
        return ""
    if len(content) <= max_chars:
        return content
    idx = content.find(TRANSCRIPT_MARKER)
    if idx == -1 or idx > max_chars:
        return content[:max_chars]
    description = content[:idx]
    remaining = max_chars - len(description)
    if remaining <= 100:
        return description.strip()
    return description + content[idx : idx + remaining]


def prioritize(articles: list[ArticleForAnalysis]) -> list[ArticleForAnalysis]:
    """Order articles by tier, then recency, then id."""

    def key(a: ArticleForAnalysis) -> tuple:
        return (
            _TIER_RANK.get(a.source_tier, 99),
            a.published_at is None,
            -a.published_at.timestamp() if a.published_at else 0.0,
            a.id,
        )

    return sorted(articles, key=key)


def format_article(index: int, article: ArticleForAnalysis) -> str:
    published = article.published_at.strftime("%Y-%m-%d") if article.published_at else "unknown"
    return (
        f"[{index}] SOURCE: {article.source_name} ({article.source_tier}) "
        f"| CATEGORY: {article.category}\n"
        f"TITLE: {article.title}\n"
        f"URL: {article.url}\n"
        f"PUBLISHED: {published}\n"
        f"CONTENT: {article.content}\n"
    )


def _render_user(articles: list[ArticleForAnalysis]) -> str:
    articles_text = ARTICLE_SEPARATOR.join(
        format_article(i, a) for i, a in enumerate(articles)
    )
    return render("analysis_user.j2", article_count=len(articles), articles_text=articles_text)


def build_prompt(articles: list[ArticleForAnalysis], settings: PromptSettings) -> Prompt:
    """Build the analysis prompt within ``settings.token_budget``.

    Raises:
        BudgetError: if the prompt frame alone does not fit the budget.
    """
    budget = settings.token_budget
    prepared = [
        replace(a, content=truncate_content(a.content, settings.max_article_chars))
        for a in prioritize(articles)
    ]
    categories = sorted({a.category for a in prepared if a.category})
    system_prompt = render("analysis_system.j2", categories=categories)

    used = estimate_tokens(system_prompt) + estimate_tokens(_render_user([]))
    if used > budget:
        raise BudgetError(
            "Prompt frame exceeds token budget",
            {"frame_tokens": used, "token_budget": budget},
        )

    admitted: list[ArticleForAnalysis] = []
    for article in prepared:
        block = format_article(len(admitted), article) + ARTICLE_SEPARATOR
        cost = estimate_tokens(block)
        if used + cost <= budget:
            admitted.append(article)
            used += cost
            continue

        remaining = budget - used
        if remaining >= MIN_PARTIAL_TOKENS:
            header = format_article(len(admitted), replace(article, content="")) + ARTICLE_SEPARATOR
            room = (remaining - estimate_tokens(header)) * CHARS_PER_TOKEN - CHARS_PER_TOKEN
            if room > 0:
                admitted.append(replace(article, content=truncate_content(article.content, room)))
        break

    user_prompt = _render_user(admitted)
    # Per-block estimates are an upper bound, but re-check the assembled text
    while admitted and estimate_tokens(system_prompt) + estimate_tokens(user_prompt) > budget:
        admitted.pop()
        user_prompt = _render_user(admitted)

    return Prompt(
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        articles=admitted,
        dropped=len(prepared) - len(admitted),
    )
