"""Tests for budget-aware prompt construction."""

from __future__ import annotations

from datetime import datetime

import pytest

from contentintel.analysis.prompt import (
    MIN_PARTIAL_TOKENS,
    TRANSCRIPT_MARKER,
    ArticleForAnalysis,
    PromptSettings,
    build_prompt,
    estimate_tokens,
    prioritize,
    truncate_content,
)
from contentintel.errors import BudgetError


def _article(id: int, tier: str = "tier_2", day: int = 1, content_len: int = 400) -> ArticleForAnalysis:
    return ArticleForAnalysis(
        id=id,
        url=f"https://example.com/{id}",
        title=f"Article {id}",
        content="x" * content_len,
        source_name=f"Source {id}",
        source_tier=tier,
        category="GBP",
        published_at=datetime(2026, 2, day),
    )


def test_estimate_tokens_rounds_up() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_prioritize_tier_then_recency_then_id() -> None:
    articles = [
        _article(1, "tier_3", day=20),
        _article(2, "tier_1", day=5),
        _article(3, "tier_1", day=10),
        _article(4, "tier_2", day=10),
        _article(5, "tier_1", day=10),
    ]
    assert [a.id for a in prioritize(articles)] == [3, 5, 2, 4, 1]


def test_truncate_keeps_video_description() -> None:
    content = "Description of the video. " + TRANSCRIPT_MARKER + " " + "word " * 500
    cut = truncate_content(content, 300)

    assert cut.startswith("Description of the video.")
    assert TRANSCRIPT_MARKER in cut
    assert len(cut) <= 300


def test_truncate_plain_content() -> None:
    assert truncate_content("abcdef", 3) == "abc"
    assert truncate_content("abc", 10) == "abc"


def test_everything_fits_in_large_budget() -> None:
    articles = [_article(i) for i in range(5)]
    prompt = build_prompt(articles, PromptSettings(token_budget=100_000))

    assert len(prompt.articles) == 5
    assert prompt.dropped == 0
    assert prompt.estimated_tokens <= 100_000
    assert "[0] SOURCE: Source" in prompt.user_prompt


def test_prompt_never_exceeds_budget_and_keeps_highest_priority() -> None:
    articles = [_article(i, "tier_3" if i % 2 else "tier_1", content_len=4000) for i in range(20)]
    settings = PromptSettings(token_budget=6000, max_article_chars=6000)

    prompt = build_prompt(articles, settings)

    assert prompt.estimated_tokens <= settings.token_budget
    assert 0 < len(prompt.articles) < 20
    assert prompt.dropped == 20 - len(prompt.articles)
    assert prompt.articles[0].source_tier == "tier_1"


def test_partial_article_admitted_when_room_remains() -> None:
    base = build_prompt([], PromptSettings(token_budget=100_000)).estimated_tokens
    full = _article(1, content_len=8000)
    budget = base + MIN_PARTIAL_TOKENS + 300

    prompt = build_prompt([full], PromptSettings(token_budget=budget, max_article_chars=8000))

    assert len(prompt.articles) == 1
    assert 0 < len(prompt.articles[0].content) < 8000
    assert prompt.estimated_tokens <= budget


def test_articles_truncated_to_max_chars() -> None:
    prompt = build_prompt([_article(1, content_len=9000)], PromptSettings(max_article_chars=6000))
    assert len(prompt.articles[0].content) == 6000


def test_frame_larger_than_budget_raises() -> None:
    with pytest.raises(BudgetError, match="token budget"):
        build_prompt([_article(1)], PromptSettings(token_budget=10))


def test_empty_article_list_builds_frame_only() -> None:
    prompt = build_prompt([], PromptSettings())
    assert prompt.articles == []
    assert "Analyze these 0 articles" in prompt.user_prompt
