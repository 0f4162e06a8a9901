"""Tests for digest rendering, document export and the relay queue."""

from __future__ import annotations

import base64
import threading
import time

from contentintel.delivery.digest import DigestDelivery
from contentintel.delivery.documents import (
    DocBlock,
    FileDocumentService,
    build_document_service,
    build_insert_requests,
    document_plain_text,
    extract_doc_id,
    markdown_to_blocks,
)
from contentintel.delivery.relay import DeliveryQueue, fit_message
from contentintel.delivery.render import render_digest_document, render_summary
from contentintel.storage.models import Citation, Digest, Recommendation
from contentintel.storage.settings import update_pipeline_settings
from tests.conftest import RecordingDocuments, RecordingRelay


def _digest() -> Digest:
    return Digest(
        id=1,
        period="2026-03",
        status="delivering",
        sources_fetched=12,
        recommendations_generated=7,
        task_drafts_created=5,
        sop_drafts_created=1,
    )


def _recs() -> list[Recommendation]:
    recs = []
    for i in range(7):
        recs.append(
            Recommendation(
                id=i + 1,
                digest_id=1,
                category="GBP" if i % 2 else "LSA",
                title=f"Rec {i}",
                summary=f"Summary {i}",
                details="Details",
                impact="high" if i < 6 else "low",
                confidence="verified" if i % 2 == 0 else "estimated",
                source_count=1,
                citations=[Citation(source_name="Google", source_url="https://g.example.com", excerpt="quote")],
            )
        )
    return recs


def test_summary_counts_and_top_five() -> None:
    text = render_summary(_digest(), _recs(), "https://docs.example.com/d/1", top_n=5)

    assert "Content Intelligence Report: 2026-03" in text
    assert "Sources analyzed: 12" in text
    assert "High-impact: 6 | Verified: 4" in text
    assert "[V] Rec 0" in text
    assert "[E] Rec 1" in text
    assert "Rec 4" in text
    assert "Rec 5" not in text
    assert 'href="https://docs.example.com/d/1"' in text


def test_summary_without_document_link() -> None:
    assert "View Full Report" not in render_summary(_digest(), _recs(), None)


def test_document_has_sections() -> None:
    blocks = render_digest_document(_digest(), _recs())
    headings = [b.text for b in blocks if b.style.startswith("HEADING")]

    assert headings[0] == "Content Intelligence Report"
    assert "Executive Summary" in headings
    assert "High-Impact Changes" in headings


def test_markdown_to_blocks() -> None:
    blocks = markdown_to_blocks("# Title\n\nBody line\nmore\n\n## Section\ntext")
    assert [(b.text, b.style) for b in blocks] == [
        ("Title", "HEADING_1"),
        ("Body line\nmore", "NORMAL_TEXT"),
        ("Section", "HEADING_2"),
        ("text", "NORMAL_TEXT"),
    ]


def test_insert_requests_track_indices() -> None:
    requests = build_insert_requests([DocBlock("Title", "HEADING_1"), DocBlock("Body")])

    assert requests[0]["insertText"] == {"location": {"index": 1}, "text": "Title\n"}
    assert requests[1]["updateParagraphStyle"]["range"] == {"startIndex": 1, "endIndex": 7}
    assert requests[2]["insertText"]["location"]["index"] == 7


def test_extract_doc_id() -> None:
    assert extract_doc_id("https://docs.google.com/document/d/abc_123/edit") == "abc_123"
    assert extract_doc_id("abc_123") == "abc_123"


def test_file_document_service_round_trip(tmp_path) -> None:
    service = FileDocumentService(tmp_path)

    url = service.create_document("Report 2026-03", [DocBlock("Report", "HEADING_1"), DocBlock("Body")], "sops")
    service.append_to_document(url, "\nAppended")

    path = next((tmp_path / "sops").glob("*.md"))
    assert url == path.resolve().as_uri()
    assert path.read_text().startswith("# Report\n\nBody\n")
    assert path.read_text().endswith("Appended")


def test_file_document_service_handles_spaces_in_path(tmp_path) -> None:
    service = FileDocumentService(tmp_path / "shared reports")

    url = service.create_document("GBP SOP", [DocBlock("GBP SOP", "HEADING_1")], "sop docs")
    service.append_to_document(url, "\nUpdated")

    assert "%20" in url
    assert service.get_document_text(url) == "# GBP SOP\n\nUpdated"


def test_document_plain_text_joins_text_runs() -> None:
    doc = {
        "body": {
            "content": [
                {"sectionBreak": {}},
                {"paragraph": {"elements": [{"textRun": {"content": "Title\n"}}]}},
                {"paragraph": {"elements": [{"textRun": {"content": "Body "}}, {"textRun": {"content": "text\n"}}]}},
            ]
        }
    }
    assert document_plain_text(doc) == "Title\nBody text\n"


def test_malformed_google_key_falls_back_to_files(settings) -> None:
    for key in (base64.b64encode(b"{}").decode(), "not base64 at all", base64.b64encode(b"[1]").decode()):
        configured = settings.model_copy(update={"google_service_account_key": key})
        assert isinstance(build_document_service(configured), FileDocumentService)


def test_delivery_sets_url_and_queues_summary(sessions, session, relay_queue, relay) -> None:
    update_pipeline_settings(session, relay_channel_id="ops", drive_folder_id="folder-9")
    digest = Digest(period="2026-03", status="delivering", sources_fetched=3)
    session.add(digest)
    session.commit()
    documents = RecordingDocuments()

    url = DigestDelivery(sessions, documents, relay_queue).deliver(digest.id)

    assert url == "https://docs.google.com/document/d/doc1/edit"
    assert documents.created[0][0] == "Content Intelligence Report: 2026-03"
    assert documents.created[0][2] == "folder-9"
    session.refresh(digest)
    assert digest.google_doc_url == url
    assert relay_queue.flush(timeout=5)
    assert relay.messages[0][0] == "ops"


def test_delivery_without_channel_skips_relay(sessions, session, relay_queue, relay) -> None:
    digest = Digest(period="2026-03", status="delivering")
    session.add(digest)
    session.commit()

    DigestDelivery(sessions, RecordingDocuments(), relay_queue).deliver(digest.id)

    assert relay_queue.flush(timeout=5)
    assert relay.messages == []


def test_delivery_never_raises(sessions) -> None:
    assert DigestDelivery(sessions, RecordingDocuments(fail=True), None).deliver(12345) is None


# ---------------------------------------------------------------------------
# DeliveryQueue
# ---------------------------------------------------------------------------


def test_queue_flush_delivers_in_order() -> None:
    relay = RecordingRelay()
    queue = DeliveryQueue(relay, maxsize=10, min_interval=0.0)
    try:
        for i in range(5):
            assert queue.enqueue("c", f"m{i}")
        assert queue.flush(timeout=5)
        assert [text for _, text in relay.messages] == ["m0", "m1", "m2", "m3", "m4"]
        assert queue.sent == 5
    finally:
        queue.close()


def test_queue_counts_failures_and_keeps_going() -> None:
    relay = RecordingRelay(fail=True)
    queue = DeliveryQueue(relay, maxsize=10, min_interval=0.0)
    try:
        queue.enqueue("c", "one")
        queue.enqueue("c", "two")
        assert queue.flush(timeout=5)
        assert queue.failed == 2
    finally:
        queue.close()


def test_queue_full_drops_without_blocking() -> None:
    release = threading.Event()

    class SlowRelay:
        def post_message(self, channel_id: str, text: str) -> None:
            release.wait(5)

    queue = DeliveryQueue(SlowRelay(), maxsize=1, min_interval=0.0)
    try:
        queue.enqueue("c", "first")
        time.sleep(0.1)  # dispatcher picks up "first" and blocks
        assert queue.enqueue("c", "second")
        start = time.monotonic()
        assert queue.enqueue("c", "third") is False
        assert time.monotonic() - start < 1
        assert queue.flush(timeout=0.05) is False
    finally:
        release.set()
        queue.close()


def test_closed_queue_rejects_messages() -> None:
    queue = DeliveryQueue(RecordingRelay(), maxsize=2, min_interval=0.0)
    queue.close()
    assert queue.enqueue("c", "late") is False


def test_fit_message_cuts_at_line_boundary() -> None:
    text = "\n".join(f"<b>Item {i}</b> &amp; more" for i in range(400))

    fitted = fit_message(text, limit=4096)

    assert len(fitted) <= 4096
    assert fitted.endswith("\n[...]")
    assert fitted.count("<b>") == fitted.count("</b>")
    assert fit_message("short") == "short"


def test_fit_message_single_line_never_splits_a_tag() -> None:
    assert fit_message("a" * 90 + "<b>bold</b>", limit=100) == "a" * 90 + "\n[...]"
    assert fit_message("a" * 88 + "&amp;&amp;&amp;", limit=100) == "a" * 88 + "&amp;\n[...]"
