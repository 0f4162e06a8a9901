"""Map fetch methods to fetcher strategies sharing one HTTP client."""

from __future__ import annotations

import httpx

from contentintel.config import Settings
from contentintel.fetchers.base import Fetcher
from contentintel.fetchers.feeds import PodcastFetcher, RssFetcher
from contentintel.fetchers.social import RedditFetcher, YouTubeFetcher
from contentintel.fetchers.webpage import WebPageFetcher


class FetcherRegistry:
    """Owns the shared ``httpx.Client`` and one fetcher per method."""

    def __init__(self, fetchers: dict[str, Fetcher], client: httpx.Client | None = None) -> None:
        self._fetchers = fetchers
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> FetcherRegistry:
        client = httpx.Client(
            timeout=settings.fetch_timeout_seconds,
            headers={"User-Agent": settings.user_agent},
            follow_redirects=True,
        )
        limit = settings.max_articles_per_source
        fetchers: list[Fetcher] = [
            RssFetcher(client, limit),
            PodcastFetcher(client, limit),
            YouTubeFetcher(client, settings.youtube_api_key, limit),
            RedditFetcher(client, limit),
            WebPageFetcher(client, limit),
        ]
        return cls({f.method: f for f in fetchers}, client=client)

    @property
    def methods(self) -> list[str]:
        return sorted(self._fetchers)

    def get(self, method: str) -> Fetcher | None:
        return self._fetchers.get(method)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()


FETCH_METHODS = ("rss", "podcast", "youtube", "reddit", "webpage")
