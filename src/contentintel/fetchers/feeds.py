"""Syndication (RSS/Atom) and podcast feed fetchers."""

from __future__ import annotations

import feedparser

from contentintel.errors import FetchError
from contentintel.fetchers.base import (
    FetchedArticle,
    Fetcher,
    SourceLike,
    html_to_text,
    parse_date,
)


class RssFetcher(Fetcher):
    """Parse an RSS/Atom feed into articles."""

    method = "rss"

    def _fetch(self, source: SourceLike) -> list[FetchedArticle]:
        feed = self._load_feed(source)
        return [
            FetchedArticle(
                url=entry.get("link") or source.url,
                title=entry.get("title") or "Untitled",
                content=self._entry_content(entry),
                published_at=parse_date(entry.get("published") or entry.get("updated")),
            )
            for entry in feed.entries
        ]

    def _load_feed(self, source: SourceLike) -> feedparser.FeedParserDict:
        # Download with httpx so the per-source timeout applies
        resp = self._client.get(source.url)
        resp.raise_for_status()
        feed = feedparser.parse(resp.content)
        if feed.bozo and not feed.entries:
            raise FetchError(
                f"Malformed feed: {feed.get('bozo_exception')}", source=source.name
            )
        return feed

    @staticmethod
    def _entry_content(entry: feedparser.FeedParserDict) -> str:
        if entry.get("content"):
            return html_to_text(entry["content"][0].get("value", ""))
        return html_to_text(entry.get("summary", ""))


class PodcastFetcher(RssFetcher):
    """Podcast feeds: prefer show notes over the short summary."""

    method = "podcast"

    @staticmethod
    def _entry_content(entry: feedparser.FeedParserDict) -> str:
        encoded = ""
        if entry.get("content"):
            encoded = html_to_text(entry["content"][0].get("value", ""))
        return (
            encoded
            or html_to_text(entry.get("itunes_summary", ""))
            or html_to_text(entry.get("summary", ""))
        )

    def _fetch(self, source: SourceLike) -> list[FetchedArticle]:
        articles = super()._fetch(source)
        for article in articles:
            if article.title == "Untitled":
                article.title = "Untitled Episode"
        return articles
