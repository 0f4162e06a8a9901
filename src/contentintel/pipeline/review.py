"""Operator review of digests and the drafts they produced.

Every action is one-shot: only ``pending`` drafts can be approved,
rejected, applied, dismissed or edited.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.orm import selectinload
from sqlmodel import Session, func, select

from contentintel.delivery.documents import DocumentService, markdown_to_blocks
from contentintel.errors import InvalidActionError, NotFoundError
from contentintel.pipeline.stores import TaskStore
from contentintel.storage.models import (
    Digest,
    DraftStatus,
    Recommendation,
    SopDraft,
    SopDraftStatus,
    SopDraftType,
    TaskDraft,
    TemplateSet,
)

logger = logging.getLogger(__name__)

UPDATE_BANNER = "Content Intelligence Update"


@dataclass
class BulkApproval:
    approved: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)


# ----------------------------------------------------------------------
# Digests
# ----------------------------------------------------------------------


def list_digests(session: Session, page: int = 1, limit: int = 20) -> tuple[list[Digest], int]:
    """Newest first, paginated from page 1."""
    page = max(page, 1)
    limit = max(limit, 1)
    total = session.exec(select(func.count(Digest.id))).one()
    digests = session.exec(
        select(Digest)
        .order_by(Digest.created_at.desc(), Digest.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    return list(digests), total


def get_digest(session: Session, digest_id: int) -> Digest:
    """The digest with recommendations and their citations loaded."""
    digest = session.exec(
        select(Digest)
        .where(Digest.id == digest_id)
        .options(selectinload(Digest.recommendations).selectinload(Recommendation.citations))
    ).first()
    if digest is None:
        raise NotFoundError(f"Digest {digest_id} not found")
    return digest


# ----------------------------------------------------------------------
# Task drafts
# ----------------------------------------------------------------------


def list_task_drafts(
    session: Session, digest_id: int | None = None, status: str | None = None
) -> list[TaskDraft]:
    query = select(TaskDraft)
    if digest_id is not None:
        query = query.where(TaskDraft.digest_id == digest_id)
    if status is not None:
        query = query.where(TaskDraft.status == status)
    return list(session.exec(query.order_by(TaskDraft.id)).all())


def _pending_task_draft(session: Session, draft_id: int) -> TaskDraft:
    draft = session.get(TaskDraft, draft_id)
    if draft is None:
        raise NotFoundError(f"Task draft {draft_id} not found")
    if draft.status != DraftStatus.PENDING.value:
        raise InvalidActionError(f"Task draft {draft_id} already {draft.status}")
    return draft


def _approve(
    session: Session,
    task_store: TaskStore,
    draft: TaskDraft,
    project_id: str,
    due_date: datetime | None,
    assignee_ids: list[str] | None,
) -> None:
    now = datetime.now()
    task_id = task_store.create_task(
        session,
        project_id=project_id,
        title=draft.title,
        description=draft.description,
        priority=draft.suggested_priority,
        due_date=due_date or now + timedelta(days=draft.suggested_due_in_days),
        assignee_ids=assignee_ids,
    )
    draft.status = DraftStatus.APPROVED.value
    draft.task_id = task_id
    draft.reviewed_at = now
    session.add(draft)


def approve_task_draft(
    session: Session,
    task_store: TaskStore,
    draft_id: int,
    project_id: str,
    due_date: datetime | None = None,
    assignee_ids: list[str] | None = None,
) -> TaskDraft:
    """Create the task and mark the draft approved in one transaction."""
    if not project_id:
        raise InvalidActionError("project_id is required to approve a task draft")
    draft = _pending_task_draft(session, draft_id)
    try:
        _approve(session, task_store, draft, project_id, due_date, assignee_ids)
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(draft)
    logger.info("Approved task draft %d as task %s", draft_id, draft.task_id)
    return draft


def bulk_approve_task_drafts(
    session: Session, task_store: TaskStore, draft_ids: list[int], project_id: str
) -> BulkApproval:
    """Approve every pending draft in ``draft_ids``; others are skipped."""
    if not project_id:
        raise InvalidActionError("project_id is required to approve task drafts")
    result = BulkApproval()
    for draft_id in draft_ids:
        draft = session.get(TaskDraft, draft_id)
        if draft is None or draft.status != DraftStatus.PENDING.value:
            result.skipped.append(draft_id)
            continue
        try:
            _approve(session, task_store, draft, project_id, None, None)
            session.commit()
        except Exception:
            session.rollback()
            raise
        result.approved.append(draft_id)
    logger.info("Bulk approved %d drafts, skipped %d", len(result.approved), len(result.skipped))
    return result


def reject_task_draft(session: Session, draft_id: int) -> TaskDraft:
    draft = _pending_task_draft(session, draft_id)
    draft.status = DraftStatus.REJECTED.value
    draft.reviewed_at = datetime.now()
    session.add(draft)
    session.commit()
    session.refresh(draft)
    return draft


# ----------------------------------------------------------------------
# SOP drafts
# ----------------------------------------------------------------------


def list_sop_drafts(
    session: Session, digest_id: int | None = None, status: str | None = None
) -> list[SopDraft]:
    query = select(SopDraft)
    if digest_id is not None:
        query = query.where(SopDraft.digest_id == digest_id)
    if status is not None:
        query = query.where(SopDraft.status == status)
    return list(session.exec(query.order_by(SopDraft.id)).all())


def _pending_sop_draft(session: Session, draft_id: int) -> SopDraft:
    draft = session.get(SopDraft, draft_id)
    if draft is None:
        raise NotFoundError(f"SOP draft {draft_id} not found")
    if draft.status != SopDraftStatus.PENDING.value:
        raise InvalidActionError(f"SOP draft {draft_id} already {draft.status}")
    return draft


def update_block(description: str, after_content: str, today: datetime | None = None) -> str:
    """The dated section appended to an existing SOP document."""
    day = (today or datetime.now()).strftime("%Y-%m-%d")
    return f"\n\n--- {UPDATE_BANNER} ({day}) ---\n{description}\n\n{after_content}\n"


def apply_sop_draft(
    session: Session,
    documents: DocumentService,
    draft_id: int,
    sop_folder_id: str | None = None,
) -> SopDraft:
    """Write the draft to its document; the draft stays pending if that fails."""
    draft = _pending_sop_draft(session, draft_id)

    if draft.draft_type == SopDraftType.NEW.value:
        if not sop_folder_id:
            raise InvalidActionError("SOP folder not configured in settings")
        doc_url = documents.create_document(
            draft.sop_title or "Untitled SOP",
            markdown_to_blocks(draft.after_content),
            sop_folder_id,
        )
        draft.sop_doc_id = doc_url
        if draft.template_set_id is not None:
            template_set = session.get(TemplateSet, draft.template_set_id)
            if template_set is not None and not template_set.strategy_doc_id:
                template_set.strategy_doc_id = doc_url
                session.add(template_set)
    else:
        if not draft.sop_doc_id:
            raise InvalidActionError(f"SOP draft {draft_id} has no document to edit")
        documents.append_to_document(
            draft.sop_doc_id, update_block(draft.description, draft.after_content)
        )

    draft.status = SopDraftStatus.APPLIED.value
    draft.applied_at = datetime.now()
    session.add(draft)
    session.commit()
    session.refresh(draft)
    logger.info("Applied %s SOP draft %d to %s", draft.draft_type, draft_id, draft.sop_doc_id)
    return draft


def dismiss_sop_draft(session: Session, draft_id: int) -> SopDraft:
    draft = _pending_sop_draft(session, draft_id)
    draft.status = SopDraftStatus.DISMISSED.value
    session.add(draft)
    session.commit()
    session.refresh(draft)
    return draft


def edit_sop_draft(session: Session, draft_id: int, after_content: str) -> SopDraft:
    if not after_content or not after_content.strip():
        raise InvalidActionError("after_content must not be empty")
    draft = _pending_sop_draft(session, draft_id)
    draft.after_content = after_content
    session.add(draft)
    session.commit()
    session.refresh(draft)
    return draft
