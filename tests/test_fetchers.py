"""Tests for the fetch strategies."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime

import httpx

from contentintel.fetchers.base import (
    FetchedArticle,
    content_hash,
    filter_recent,
    html_to_text,
    most_recent,
    parse_date,
)
from contentintel.fetchers.feeds import PodcastFetcher, RssFetcher
from contentintel.fetchers.registry import FetcherRegistry
from contentintel.fetchers.social import RedditFetcher, YouTubeFetcher
from contentintel.fetchers.webpage import WebPageFetcher

RSS = """<?xml version="1.0"?>
<rss version="2.0"><channel><title>Feed</title>
<item><title>Older</title><link>https://f.example.com/1</link>
<description>&lt;p&gt;First &lt;b&gt;post&lt;/b&gt;&lt;/p&gt;</description>
<pubDate>Mon, 02 Feb 2026 10:00:00 GMT</pubDate></item>
<item><title>Newer</title><link>https://f.example.com/2</link>
<description>Second post</description>
<pubDate>Tue, 24 Feb 2026 10:00:00 GMT</pubDate></item>
<item><link>https://f.example.com/3</link><description>No title</description></item>
</channel></rss>"""

PODCAST = """<?xml version="1.0"?>
<rss version="2.0" xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd"><channel>
<item><itunes:summary>Episode notes</itunes:summary><link>https://p.example.com/1</link>
<pubDate>Tue, 24 Feb 2026 10:00:00 GMT</pubDate></item>
</channel></rss>"""


@dataclass
class Src:
    name: str
    url: str
    config: dict = field(default_factory=dict)

    @property
    def fetch_config(self) -> dict:
        return self.config


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def _serve(body: str, status: int = 200, content_type: str = "text/xml"):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text=body, headers={"content-type": content_type})

    return handler


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_html_to_text_strips_markup() -> None:
    assert html_to_text("<p>Hello <b>world</b></p>") == "Hello world"
    assert html_to_text("") == ""


def test_parse_date_normalizes_to_naive_utc() -> None:
    assert parse_date("2026-02-24T12:00:00+02:00") == datetime(2026, 2, 24, 10, 0)
    assert parse_date("not a date") is None
    assert parse_date(None) is None


def test_most_recent_prefers_dated_newest() -> None:
    items = [
        FetchedArticle("u1", "a", "c", None),
        FetchedArticle("u2", "b", "c", datetime(2026, 1, 1)),
        FetchedArticle("u3", "c", "c", datetime(2026, 2, 1)),
    ]
    assert [i.url for i in most_recent(items, 2)] == ["u3", "u2"]


def test_filter_recent_keeps_undated() -> None:
    now = datetime(2026, 3, 1)
    items = [
        FetchedArticle("old", "a", "c", datetime(2025, 12, 1)),
        FetchedArticle("new", "b", "c", datetime(2026, 2, 1)),
        FetchedArticle("undated", "c", "c", None),
    ]
    assert [i.url for i in filter_recent(items, 45, now)] == ["new", "undated"]


def test_content_hash_stable() -> None:
    assert content_hash("abc") == content_hash("abc")
    assert len(content_hash("abc")) == 64


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


def test_rss_fetcher_parses_and_orders() -> None:
    fetcher = RssFetcher(_client(_serve(RSS)), max_articles=10)

    articles = fetcher.fetch(Src("Feed", "https://f.example.com/feed"))

    assert [a.title for a in articles] == ["Newer", "Older", "Untitled"]
    assert articles[1].content == "First post"
    assert articles[0].published_at == datetime(2026, 2, 24, 10, 0)


def test_rss_fetcher_caps_articles() -> None:
    fetcher = RssFetcher(_client(_serve(RSS)), max_articles=1)
    assert [a.title for a in fetcher.fetch(Src("Feed", "https://f.example.com/feed"))] == ["Newer"]


def test_fetcher_returns_empty_on_http_error() -> None:
    fetcher = RssFetcher(_client(_serve("nope", status=503)))
    assert fetcher.fetch(Src("Feed", "https://f.example.com/feed")) == []


def test_fetcher_returns_empty_on_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    assert RssFetcher(_client(handler)).fetch(Src("Feed", "https://f.example.com/feed")) == []


def test_podcast_fetcher_uses_show_notes() -> None:
    articles = PodcastFetcher(_client(_serve(PODCAST))).fetch(Src("Pod", "https://p.example.com/rss"))

    assert len(articles) == 1
    assert articles[0].title == "Untitled Episode"
    assert articles[0].content == "Episode notes"


def test_youtube_fetcher_without_key_returns_nothing() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    fetcher = YouTubeFetcher(_client(handler), api_key="")
    assert fetcher.fetch(Src("YT", "https://youtube.com/c/x", {"channelId": "abc"})) == []
    assert calls == []


def test_youtube_fetcher_lists_videos() -> None:
    payload = {
        "items": [
            {
                "id": {"videoId": "v1"},
                "snippet": {
                    "title": "New video",
                    "description": "About GBP",
                    "publishedAt": "2026-02-20T08:00:00Z",
                },
            },
            {"id": {}, "snippet": {"title": "Playlist"}},
        ]
    }

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["channelId"] == "abc"
        assert request.url.params["key"] == "k"
        return httpx.Response(200, json=payload)

    articles = YouTubeFetcher(_client(handler), api_key="k").fetch(
        Src("YT", "https://youtube.com/c/x", {"channelId": "abc"})
    )

    assert [(a.url, a.title) for a in articles] == [
        ("https://www.youtube.com/watch?v=v1", "New video")
    ]


def test_reddit_fetcher_skips_stickied_and_reads_subreddit_from_url() -> None:
    payload = {
        "data": {
            "children": [
                {"data": {"title": "Rules", "stickied": True, "permalink": "/r/SEO/1"}},
                {
                    "data": {
                        "title": "Ranking drop",
                        "selftext": "Anyone else?",
                        "permalink": "/r/SEO/comments/2",
                        "created_utc": 1771840800,
                    }
                },
            ]
        }
    }
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(200, content=json.dumps(payload).encode())

    articles = RedditFetcher(_client(handler)).fetch(Src("Reddit", "https://www.reddit.com/r/SEO/"))

    assert seen == ["/r/SEO/hot.json"]
    assert [a.title for a in articles] == ["Ranking drop"]
    assert articles[0].url == "https://www.reddit.com/r/SEO/comments/2"
    assert articles[0].content == "Anyone else?"


def test_webpage_fetcher_extracts_main_content() -> None:
    html = """<html><head><title>Changelog</title><script>var x;</script></head>
    <body><nav>Menu</nav><article><h1>March update</h1><p>New features shipped.</p></article>
    <footer>Footer</footer></body></html>"""

    articles = WebPageFetcher(_client(_serve(html, content_type="text/html"))).fetch(
        Src("Page", "https://w.example.com/changelog")
    )

    assert len(articles) == 1
    assert articles[0].title == "Changelog"
    assert "New features shipped." in articles[0].content
    assert "Menu" not in articles[0].content
    assert "var x" not in articles[0].content


def test_registry_from_settings_knows_every_method(settings) -> None:
    registry = FetcherRegistry.from_settings(settings)
    try:
        assert registry.methods == ["podcast", "reddit", "rss", "webpage", "youtube"]
        assert registry.get("rss") is not None
        assert registry.get("fax") is None
    finally:
        registry.close()
