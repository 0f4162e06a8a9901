"""Shared test fixtures."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from sqlmodel import Session

from contentintel.analysis.analyzer import Analyzer
from contentintel.config import Settings
from contentintel.delivery.digest import DigestDelivery
from contentintel.delivery.documents import DocBlock
from contentintel.delivery.relay import DeliveryQueue
from contentintel.errors import DeliveryError
from contentintel.fetchers.base import FetchedArticle
from contentintel.fetchers.registry import FetcherRegistry
from contentintel.llm.client import ClaudeClient
from contentintel.pipeline.orchestrator import DigestOrchestrator
from contentintel.storage.database import SessionFactory, session_factory
from contentintel.storage.models import Source
from contentintel.storage.settings import update_pipeline_settings

NOW = datetime(2026, 3, 1, 9, 0)


@pytest.fixture
def tmp_data_dir(tmp_path: Path) -> Path:
    """Create a temporary data directory structure."""
    (tmp_path / "reports").mkdir()
    return tmp_path


@pytest.fixture
def settings(tmp_data_dir: Path) -> Settings:
    """Create test settings with temporary paths."""
    return Settings(
        anthropic_api_key="test-key-not-real",
        model="claude-sonnet-4-20250514",
        max_tokens=1024,
        temperature=0.3,
        db_path=tmp_data_dir / "test.db",
        reports_dir=tmp_data_dir / "reports",
        fetch_join_timeout_seconds=5.0,
        delivery_timeout_seconds=5.0,
        relay_min_interval_seconds=0.0,
    )


@pytest.fixture
def sessions(settings: Settings) -> SessionFactory:
    return session_factory(settings.db_path)


@pytest.fixture
def session(sessions: SessionFactory):
    with sessions() as s:
        yield s


@pytest.fixture
def mock_claude_client(settings: Settings) -> ClaudeClient:
    """Create a ClaudeClient with a mocked Anthropic SDK."""
    client = ClaudeClient(settings)
    # Replace the internal Anthropic client with a mock
    mock_anthropic = MagicMock()
    client._client = mock_anthropic
    return client


def make_mock_response(text: str, input_tokens: int = 100, output_tokens: int = 200):
    """Helper to create a mock Anthropic API response."""
    mock_response = MagicMock()
    mock_response.content = [MagicMock(text=text)]
    mock_response.usage.input_tokens = input_tokens
    mock_response.usage.output_tokens = output_tokens
    mock_response.stop_reason = "end_turn"
    return mock_response


def recommendations_json(*recs: dict) -> str:
    return json.dumps({"recommendations": list(recs)})


def make_rec(title: str, impact: str = "high", indices: list[int] | None = None, **extra) -> dict:
    rec = {
        "category": "GBP",
        "title": title,
        "summary": f"{title} summary.",
        "details": (
            "CURRENT APPROACH: Manual.\n"
            "WHAT'S CHANGING: Something.\n"
            "RECOMMENDED ADJUSTMENT:\n1. First step\n2. Second step"
        ),
        "impact": impact,
        "citationIndices": indices if indices is not None else [0],
        "citationExcerpts": ["quote"],
    }
    rec.update(extra)
    return rec


def make_articles(prefix: str, count: int, published_at: datetime | None = None) -> list[FetchedArticle]:
    return [
        FetchedArticle(
            url=f"https://{prefix}.example.com/{i}",
            title=f"{prefix} article {i}",
            content=f"{prefix} body text number {i}",
            published_at=published_at or datetime(2026, 2, 20),
        )
        for i in range(count)
    ]


def add_source(
    session: Session,
    name: str,
    fetch_method: str = "rss",
    tier: str = "tier_2",
    category: str = "GBP",
    active: bool = True,
) -> Source:
    source = Source(
        name=name,
        url=f"https://{name.lower().replace(' ', '-')}.example.com/feed",
        tier=tier,
        category=category,
        fetch_method=fetch_method,
        active=active,
    )
    session.add(source)
    session.commit()
    session.refresh(source)
    return source


class FakeFetcher:
    """Returns canned articles per source name; an Exception value is raised."""

    def __init__(self, method: str, results: dict[str, object] | None = None) -> None:
        self.method = method
        self.results = results or {}
        self.calls: list[str] = []

    def fetch(self, source) -> list[FetchedArticle]:
        self.calls.append(source.name)
        result = self.results.get(source.name, [])
        if isinstance(result, Exception):
            raise result
        return list(result)


class RecordingDocuments:
    """In-memory document service."""

    def __init__(self, fail: bool = False, texts: dict[str, str] | None = None) -> None:
        self.fail = fail
        self.texts = texts or {}
        self.created: list[tuple[str, list[DocBlock], str | None]] = []
        self.appended: list[tuple[str, str]] = []

    def create_document(self, title: str, blocks: list[DocBlock], folder_id: str | None = None) -> str:
        if self.fail:
            raise DeliveryError("document service unavailable")
        self.created.append((title, blocks, folder_id))
        return f"https://docs.google.com/document/d/doc{len(self.created)}/edit"

    def append_to_document(self, document_id: str, text: str) -> None:
        if self.fail:
            raise DeliveryError("document service unavailable")
        self.appended.append((document_id, text))

    def get_document_text(self, document_id: str) -> str:
        if self.fail or document_id not in self.texts:
            raise DeliveryError(f"Document not found: {document_id}")
        return self.texts[document_id]


class RecordingRelay:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.messages: list[tuple[str, str]] = []

    def post_message(self, channel_id: str, text: str) -> None:
        if self.fail:
            raise DeliveryError("relay down")
        self.messages.append((channel_id, text))


@pytest.fixture
def fetchers() -> dict[str, FakeFetcher]:
    return {m: FakeFetcher(m) for m in ("rss", "podcast", "youtube", "reddit", "webpage")}


@pytest.fixture
def documents() -> RecordingDocuments:
    return RecordingDocuments()


@pytest.fixture
def relay() -> RecordingRelay:
    return RecordingRelay()


@pytest.fixture
def relay_queue(relay: RecordingRelay):
    queue = DeliveryQueue(relay, maxsize=10, min_interval=0.0)
    yield queue
    queue.close()


@pytest.fixture
def orchestrator(
    settings: Settings,
    sessions: SessionFactory,
    mock_claude_client: ClaudeClient,
    fetchers: dict[str, FakeFetcher],
    documents: RecordingDocuments,
    relay_queue: DeliveryQueue,
) -> DigestOrchestrator:
    """Orchestrator over fakes, with the pipeline enabled for ``NOW``."""
    with sessions() as s:
        update_pipeline_settings(s, enabled=True, run_day_of_month=NOW.day, relay_channel_id="ops")
    return DigestOrchestrator(
        sessions=sessions,
        fetchers=FetcherRegistry(dict(fetchers)),
        analyzer=Analyzer(mock_claude_client),
        delivery=DigestDelivery(sessions, documents, relay_queue),
        settings=settings,
        relay_queue=relay_queue,
        documents=documents,
        clock=lambda: NOW,
    )
