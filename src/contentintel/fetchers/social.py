"""Video-channel (YouTube) and community-forum (Reddit) fetchers."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

import httpx

from contentintel.errors import FetchError
from contentintel.fetchers.base import FetchedArticle, Fetcher, SourceLike, parse_date

logger = logging.getLogger(__name__)

YOUTUBE_SEARCH_URL = "https://www.googleapis.com/youtube/v3/search"
REDDIT_BASE = "https://www.reddit.com"

_SUBREDDIT_RE = re.compile(r"/r/([^/?#]+)")


class YouTubeFetcher(Fetcher):
    """List a channel's latest uploads through the YouTube Data API."""

    method = "youtube"

    def __init__(self, client: httpx.Client, api_key: str, max_articles: int = 10) -> None:
        super().__init__(client, max_articles)
        self._api_key = api_key

    def _fetch(self, source: SourceLike) -> list[FetchedArticle]:
        if not self._api_key:
            logger.warning("YOUTUBE_API_KEY not set, skipping %s", source.name)
            return []
        channel_id = source.fetch_config.get("channelId")
        if not channel_id:
            logger.warning("No channelId in fetch config for %s", source.name)
            return []

        resp = self._client.get(
            YOUTUBE_SEARCH_URL,
            params={
                "key": self._api_key,
                "channelId": channel_id,
                "part": "snippet",
                "order": "date",
                "maxResults": self._max_articles,
                "type": "video",
            },
        )
        resp.raise_for_status()

        articles: list[FetchedArticle] = []
        for item in resp.json().get("items", []):
            video_id = item.get("id", {}).get("videoId")
            snippet = item.get("snippet", {})
            if not video_id:
                continue
            articles.append(
                FetchedArticle(
                    url=f"https://www.youtube.com/watch?v={video_id}",
                    title=snippet.get("title") or "Untitled Video",
                    content=snippet.get("description") or "",
                    published_at=parse_date(snippet.get("publishedAt")),
                )
            )
        return articles


class RedditFetcher(Fetcher):
    """Hot posts from a subreddit's public JSON listing."""

    method = "reddit"

    def _fetch(self, source: SourceLike) -> list[FetchedArticle]:
        subreddit = source.fetch_config.get("subreddit") or self._subreddit_from_url(source.url)
        if not subreddit:
            raise FetchError("Cannot determine subreddit", source=source.name)

        resp = self._client.get(
            f"{REDDIT_BASE}/r/{subreddit}/hot.json",
            params={"limit": 20},
        )
        resp.raise_for_status()
        children = resp.json().get("data", {}).get("children", [])

        articles: list[FetchedArticle] = []
        for child in children:
            post = child.get("data", {})
            if post.get("stickied"):
                continue
            created = post.get("created_utc")
            articles.append(
                FetchedArticle(
                    url=f"{REDDIT_BASE}{post.get('permalink', '')}",
                    title=post.get("title") or "Untitled",
                    content=post.get("selftext") or post.get("title") or "",
                    published_at=(
                        datetime.fromtimestamp(created, tz=timezone.utc).replace(tzinfo=None)
                        if created
                        else None
                    ),
                )
            )
        return articles

    @staticmethod
    def _subreddit_from_url(url: str) -> str:
        match = _SUBREDDIT_RE.search(url)
        return match.group(1) if match else ""
