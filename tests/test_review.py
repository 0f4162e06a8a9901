"""Tests for digest browsing and one-shot draft review."""

from __future__ import annotations

import json
from datetime import datetime, timedelta

import pytest
from sqlmodel import select

from contentintel.errors import DeliveryError, InvalidActionError, NotFoundError
from contentintel.pipeline.review import (
    apply_sop_draft,
    approve_task_draft,
    bulk_approve_task_drafts,
    dismiss_sop_draft,
    edit_sop_draft,
    get_digest,
    list_digests,
    list_task_drafts,
    reject_task_draft,
    update_block,
)
from contentintel.pipeline.stores import SqlTaskStore, SqlTemplateStore
from contentintel.storage.models import (
    Citation,
    Digest,
    Recommendation,
    SopDraft,
    Task,
    TaskDraft,
    TemplateSet,
)
from tests.conftest import RecordingDocuments


@pytest.fixture
def digest(session) -> Digest:
    digest = Digest(period="2026-03", status="completed")
    session.add(digest)
    session.commit()
    rec = Recommendation(
        digest_id=digest.id,
        title="Update categories",
        category="GBP",
        citations=[Citation(source_name="Google", source_url="https://g.example.com")],
    )
    session.add(rec)
    session.commit()
    for i in range(3):
        session.add(
            TaskDraft(
                digest_id=digest.id,
                recommendation_id=rec.id,
                title=f"Task {i}",
                suggested_priority="high",
                suggested_due_in_days=7,
            )
        )
    session.add(
        SopDraft(
            digest_id=digest.id,
            recommendation_id=rec.id,
            draft_type="new",
            sop_title="GBP SOP",
            after_content="# GBP SOP\n\n## Update categories\n\nDo the thing.",
            description="High-impact change",
        )
    )
    session.add(
        SopDraft(
            digest_id=digest.id,
            recommendation_id=rec.id,
            draft_type="edit",
            sop_title="Ads Playbook",
            sop_doc_id="doc-9",
            after_content="## Bid changes",
            description="Bidding update",
        )
    )
    session.commit()
    return digest


def _drafts(session, digest: Digest) -> list[TaskDraft]:
    return list_task_drafts(session, digest.id)


def _sop(session, draft_type: str) -> SopDraft:
    return session.exec(select(SopDraft).where(SopDraft.draft_type == draft_type)).one()


def test_list_digests_paginates_newest_first(session) -> None:
    for month in (1, 2, 3):
        session.add(Digest(period=f"2026-0{month}", created_at=datetime(2026, month, 1)))
    session.commit()

    page, total = list_digests(session, page=1, limit=2)
    second, _ = list_digests(session, page=2, limit=2)

    assert total == 3
    assert [d.period for d in page] == ["2026-03", "2026-02"]
    assert [d.period for d in second] == ["2026-01"]


def test_get_digest_loads_recommendations(session, digest: Digest) -> None:
    loaded = get_digest(session, digest.id)
    assert loaded.recommendations[0].citations[0].source_name == "Google"

    with pytest.raises(NotFoundError):
        get_digest(session, 999)


def test_approve_creates_task_once(session, digest: Digest) -> None:
    draft = _drafts(session, digest)[0]

    approved = approve_task_draft(session, SqlTaskStore(), draft.id, "proj-1", assignee_ids=["u1"])

    assert approved.status == "approved"
    assert approved.reviewed_at is not None
    task = session.get(Task, approved.task_id)
    assert task.project_id == "proj-1"
    assert task.priority == "high"
    assert json.loads(task.assignee_ids_json) == ["u1"]
    assert abs(task.due_date - (datetime.now() + timedelta(days=7))) < timedelta(minutes=1)

    with pytest.raises(InvalidActionError, match="already approved"):
        approve_task_draft(session, SqlTaskStore(), draft.id, "proj-1")
    assert len(session.exec(select(Task)).all()) == 1


def test_approve_requires_project(session, digest: Digest) -> None:
    draft = _drafts(session, digest)[0]
    with pytest.raises(InvalidActionError, match="project_id"):
        approve_task_draft(session, SqlTaskStore(), draft.id, "")
    assert session.get(TaskDraft, draft.id).status == "pending"


def test_approve_with_explicit_due_date(session, digest: Digest) -> None:
    draft = _drafts(session, digest)[0]
    due = datetime(2026, 4, 1)

    approved = approve_task_draft(session, SqlTaskStore(), draft.id, "proj-1", due_date=due)

    assert session.get(Task, approved.task_id).due_date == due


def test_failed_task_creation_leaves_draft_pending(session, digest: Digest) -> None:
    class BrokenStore:
        def create_task(self, *args, **kwargs) -> int:
            raise RuntimeError("task store down")

    draft = _drafts(session, digest)[0]
    with pytest.raises(RuntimeError):
        approve_task_draft(session, BrokenStore(), draft.id, "proj-1")

    session.expire_all()
    assert session.get(TaskDraft, draft.id).status == "pending"


def test_bulk_approve_skips_non_pending(session, digest: Digest) -> None:
    first, second, third = _drafts(session, digest)
    reject_task_draft(session, second.id)

    result = bulk_approve_task_drafts(
        session, SqlTaskStore(), [first.id, second.id, third.id, 999], "proj-1"
    )

    assert result.approved == [first.id, third.id]
    assert result.skipped == [second.id, 999]
    assert len(session.exec(select(Task)).all()) == 2


def test_reject_is_one_shot(session, digest: Digest) -> None:
    draft = _drafts(session, digest)[0]
    assert reject_task_draft(session, draft.id).status == "rejected"
    with pytest.raises(InvalidActionError):
        reject_task_draft(session, draft.id)
    with pytest.raises(NotFoundError):
        reject_task_draft(session, 999)


def test_apply_new_sop_requires_folder(session, digest: Digest) -> None:
    draft = _sop(session, "new")
    with pytest.raises(InvalidActionError, match="SOP folder"):
        apply_sop_draft(session, RecordingDocuments(), draft.id, None)


def test_apply_new_sop_creates_document(session, digest: Digest) -> None:
    documents = RecordingDocuments()
    draft = _sop(session, "new")

    applied = apply_sop_draft(session, documents, draft.id, "folder-1")

    assert applied.status == "applied"
    assert applied.applied_at is not None
    assert applied.sop_doc_id == "https://docs.google.com/document/d/doc1/edit"
    title, blocks, folder = documents.created[0]
    assert (title, folder) == ("GBP SOP", "folder-1")
    assert blocks[0].style == "HEADING_1"
    with pytest.raises(InvalidActionError):
        apply_sop_draft(session, documents, draft.id, "folder-1")


def test_applied_new_sop_becomes_topic_association(session, digest: Digest) -> None:
    apply_sop_draft(session, RecordingDocuments(), _sop(session, "new").id, "folder-1")

    association = SqlTemplateStore().find_association(session, "gbp")

    assert association is not None
    assert association.doc_id == "https://docs.google.com/document/d/doc1/edit"


def test_apply_new_sop_links_template_set(session, digest: Digest) -> None:
    template_set = TemplateSet(name="GBP Setup", category="GBP")
    session.add(template_set)
    session.commit()
    draft = _sop(session, "new")
    draft.template_set_id = template_set.id
    session.add(draft)
    session.commit()

    apply_sop_draft(session, RecordingDocuments(), draft.id, "folder-1")

    session.refresh(template_set)
    assert template_set.strategy_doc_id == "https://docs.google.com/document/d/doc1/edit"


def test_apply_edit_appends_dated_block(session, digest: Digest) -> None:
    documents = RecordingDocuments()
    draft = _sop(session, "edit")

    apply_sop_draft(session, documents, draft.id)

    doc_id, text = documents.appended[0]
    assert doc_id == "doc-9"
    assert "Content Intelligence Update (" in text
    assert text.index("Bidding update") < text.index("## Bid changes")


def test_document_failure_leaves_sop_pending(session, digest: Digest) -> None:
    draft = _sop(session, "edit")
    with pytest.raises(DeliveryError):
        apply_sop_draft(session, RecordingDocuments(fail=True), draft.id)
    session.expire_all()
    assert session.get(SopDraft, draft.id).status == "pending"


def test_dismiss_and_edit_are_pending_only(session, digest: Digest) -> None:
    draft = _sop(session, "edit")

    assert edit_sop_draft(session, draft.id, "## Revised").after_content == "## Revised"
    with pytest.raises(InvalidActionError):
        edit_sop_draft(session, draft.id, "   ")

    assert dismiss_sop_draft(session, draft.id).status == "dismissed"
    with pytest.raises(InvalidActionError):
        edit_sop_draft(session, draft.id, "## Again")
    with pytest.raises(InvalidActionError):
        dismiss_sop_draft(session, draft.id)


def test_update_block_format() -> None:
    block = update_block("Why", "What", today=datetime(2026, 3, 5))
    assert block == "\n\n--- Content Intelligence Update (2026-03-05) ---\nWhy\n\nWhat\n"
