"""Shared fetcher contract and helpers."""

from __future__ import annotations

import hashlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol

import httpx
from bs4 import BeautifulSoup
from dateutil import parser as dateparser

from contentintel.errors import FetchError

logger = logging.getLogger(__name__)


class SourceLike(Protocol):
    """The subset of ``Source`` a fetcher reads."""

    name: str
    url: str

    @property
    def fetch_config(self) -> dict: ...


@dataclass
class FetchedArticle:
    """A normalized article returned by any fetcher."""

    url: str
    title: str
    content: str
    published_at: datetime | None = None

    @property
    def content_hash(self) -> str:
        return content_hash(self.content or self.url)


class Fetcher(ABC):
    """One fetch strategy. ``fetch`` never raises for network or parse errors."""

    method: str = ""

    def __init__(self, client: httpx.Client, max_articles: int = 10) -> None:
        self._client = client
        self._max_articles = max_articles

    def fetch(self, source: SourceLike) -> list[FetchedArticle]:
        """Return at most ``max_articles`` of the source's most recent items."""
        try:
            items = self._fetch(source)
        except (httpx.HTTPError, FetchError, ValueError, KeyError, TypeError) as exc:
            logger.warning("%s fetch failed for %s: %s", self.method, source.name, exc)
            return []
        return most_recent(items, self._max_articles)

    @abstractmethod
    def _fetch(self, source: SourceLike) -> list[FetchedArticle]:
        """Fetch and normalize items; may raise on failure."""
        ...


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode()).hexdigest()


def html_to_text(html: str) -> str:
    """Strip markup and collapse whitespace."""
    if not html:
        return ""
    text = BeautifulSoup(html, "html.parser").get_text(separator=" ")
    return " ".join(text.split())


def parse_date(value: object) -> datetime | None:
    """Parse a feed/API date into a naive UTC datetime, or None."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = dateparser.parse(str(value))
        except (ValueError, TypeError, OverflowError):
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def most_recent(items: list[FetchedArticle], limit: int) -> list[FetchedArticle]:
    """Newest first, undated items last (stable), bounded to ``limit``."""
    dated = sorted(
        (i for i in items if i.published_at is not None),
        key=lambda i: i.published_at,
        reverse=True,
    )
    undated = [i for i in items if i.published_at is None]
    return (dated + undated)[:limit]


def filter_recent(
    items: list[FetchedArticle], lookback_days: int, now: datetime
) -> list[FetchedArticle]:
    """Drop items with a known publish date older than the lookback window."""
    cutoff = now - timedelta(days=lookback_days)
    return [i for i in items if i.published_at is None or i.published_at >= cutoff]
