"""Single-call, budget-aware analysis of a digest's articles."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from contentintel.analysis.parser import ParsedRecommendation, parse_recommendations
from contentintel.analysis.prompt import ArticleForAnalysis, Prompt, PromptSettings, build_prompt
from contentintel.llm.client import ClaudeClient

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    recommendations: list[ParsedRecommendation] = field(default_factory=list)
    prompt: Prompt | None = None
    raw_text: str = ""


class Analyzer:
    """Build one prompt, call the model once, parse the response."""

    def __init__(self, client: ClaudeClient) -> None:
        self._client = client

    def build_prompt(self, articles: list[ArticleForAnalysis], settings: PromptSettings) -> Prompt:
        return build_prompt(articles, settings)

    def call_model(self, user_prompt: str, system_prompt: str) -> str:
        """The only external call of the analysis stage."""
        logger.info("Calling model (prompt: %d chars)", len(user_prompt))
        return self._client.generate(
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )

    def parse(self, raw_text: str, articles: list[ArticleForAnalysis]) -> list[ParsedRecommendation]:
        return parse_recommendations(raw_text, articles)

    def analyze(
        self, articles: list[ArticleForAnalysis], settings: PromptSettings
    ) -> AnalysisResult:
        if not articles:
            logger.info("No articles to analyze, skipping model call")
            return AnalysisResult()

        prompt = self.build_prompt(articles, settings)
        logger.info(
            "Analyzing %d articles (%d dropped for budget, ~%d tokens of %d)",
            len(prompt.articles),
            prompt.dropped,
            prompt.estimated_tokens,
            settings.token_budget,
        )
        raw_text = self.call_model(prompt.user_prompt, prompt.system_prompt)
        recommendations = self.parse(raw_text, prompt.articles)
        logger.info("Extracted %d recommendations", len(recommendations))
        return AnalysisResult(recommendations=recommendations, prompt=prompt, raw_text=raw_text)
