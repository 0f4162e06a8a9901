"""CRUD over configured content sources."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlmodel import Session, select

from contentintel.errors import InvalidActionError, NotFoundError
from contentintel.fetchers.registry import FETCH_METHODS, FetcherRegistry
from contentintel.sources.catalog import DEFAULT_SOURCES
from contentintel.storage.models import Source, Tier
from contentintel.storage.settings import get_pipeline_settings

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 200
PREVIEW_ARTICLES = 5

_UPDATABLE = {"name", "url", "tier", "category", "fetch_method", "fetch_config", "active"}


@dataclass
class ArticlePreview:
    title: str
    url: str
    published_at: datetime | None
    preview: str


@dataclass
class SourceTestReport:
    source_name: str
    fetch_method: str
    articles_found: int
    previews: list[ArticlePreview] = field(default_factory=list)


def _validate(tier: str | None = None, fetch_method: str | None = None) -> None:
    if tier is not None and tier not in {t.value for t in Tier}:
        raise InvalidActionError(f"Unknown tier '{tier}' (expected tier_1, tier_2 or tier_3)")
    if fetch_method is not None and fetch_method not in FETCH_METHODS:
        raise InvalidActionError(
            f"Unknown fetch method '{fetch_method}' (expected one of {', '.join(FETCH_METHODS)})"
        )


def get_source(session: Session, source_id: int) -> Source:
    source = session.get(Source, source_id)
    if source is None:
        raise NotFoundError(f"Source {source_id} not found")
    return source


def list_sources(session: Session) -> list[Source]:
    return list(session.exec(select(Source).order_by(Source.tier, Source.name)).all())


def active_sources(session: Session) -> list[Source]:
    return list(
        session.exec(
            select(Source).where(Source.active == True).order_by(Source.tier, Source.name)  # noqa: E712
        ).all()
    )


def create_source(
    session: Session,
    name: str,
    url: str,
    tier: str = Tier.TIER_3.value,
    category: str = "general",
    fetch_method: str = "rss",
    fetch_config: dict | None = None,
) -> Source:
    if not name.strip() or not url.strip():
        raise InvalidActionError("Source name and url are required")
    _validate(tier, fetch_method)
    source = Source(
        name=name.strip(),
        url=url.strip(),
        tier=tier,
        category=category,
        fetch_method=fetch_method,
        fetch_config_json=json.dumps(fetch_config or {}),
    )
    session.add(source)
    session.commit()
    session.refresh(source)
    logger.info("Added source %s (%s, %s)", source.name, source.tier, source.fetch_method)
    return source


def update_source(session: Session, source_id: int, **changes: object) -> Source:
    unknown = set(changes) - _UPDATABLE
    if unknown:
        raise InvalidActionError(f"Cannot update: {', '.join(sorted(unknown))}")
    _validate(changes.get("tier"), changes.get("fetch_method"))

    source = get_source(session, source_id)
    for key, value in changes.items():
        if value is None:
            continue
        if key == "fetch_config":
            source.fetch_config_json = json.dumps(value)
        else:
            setattr(source, key, value)
    session.add(source)
    session.commit()
    session.refresh(source)
    return source


def delete_source(session: Session, source_id: int) -> None:
    """Remove a source. Fetch results already stored keep their rows."""
    source = get_source(session, source_id)
    session.delete(source)
    session.commit()
    logger.info("Deleted source %s", source.name)


def seed_sources(session: Session) -> int:
    """Insert catalog sources missing by name; returns how many were added."""
    existing = set(session.exec(select(Source.name)).all())
    added = 0
    for entry in DEFAULT_SOURCES:
        if entry["name"] in existing:
            continue
        session.add(
            Source(
                name=entry["name"],
                url=entry["url"],
                tier=entry["tier"],
                category=entry["category"],
                fetch_method=entry["fetch_method"],
                fetch_config_json=json.dumps(entry.get("fetch_config", {})),
            )
        )
        added += 1
    session.commit()
    get_pipeline_settings(session)
    logger.info("Seeded %d sources (%d already present)", added, len(DEFAULT_SOURCES) - added)
    return added


def test_source(session: Session, source_id: int, fetchers: FetcherRegistry) -> SourceTestReport:
    """Fetch one source without touching any digest."""
    source = get_source(session, source_id)
    fetcher = fetchers.get(source.fetch_method)
    if fetcher is None:
        raise InvalidActionError(f"Unknown fetch method '{source.fetch_method}'")

    articles = fetcher.fetch(source)
    return SourceTestReport(
        source_name=source.name,
        fetch_method=source.fetch_method,
        articles_found=len(articles),
        previews=[
            ArticlePreview(a.title, a.url, a.published_at, a.content[:PREVIEW_CHARS])
            for a in articles[:PREVIEW_ARTICLES]
        ],
    )


# Keep pytest from collecting the function above when imported into tests.
test_source.__test__ = False
