"""Task and template stores backed by the local database.

The pipeline only depends on the two protocols; the SQL implementations
work inside the caller's session so that task creation and draft
approval share one transaction.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Protocol

from sqlmodel import Session, select

from contentintel.drafts.generator import SopAssociation
from contentintel.storage.models import (
    SopDraft,
    SopDraftStatus,
    SopDraftType,
    Task,
    TemplateSet,
)


class TaskStore(Protocol):
    def create_task(
        self,
        session: Session,
        project_id: str,
        title: str,
        description: str,
        priority: str,
        due_date: datetime,
        assignee_ids: list[str] | None = None,
    ) -> int: ...


class TemplateStore(Protocol):
    def find_association(self, session: Session, topic: str) -> SopAssociation | None: ...


class SqlTaskStore:
    """Creates ``Task`` rows; the caller commits."""

    def create_task(
        self,
        session: Session,
        project_id: str,
        title: str,
        description: str,
        priority: str,
        due_date: datetime,
        assignee_ids: list[str] | None = None,
    ) -> int:
        task = Task(
            project_id=project_id,
            title=title,
            description=description,
            priority=priority,
            due_date=due_date,
            assignee_ids_json=json.dumps(assignee_ids or []),
        )
        session.add(task)
        session.flush()
        return task.id


def _topic_key(value: str) -> str:
    return " ".join((value or "").lower().split())


class SqlTemplateStore:
    """Read-only lookup of the SOP document linked to a topic.

    A template set matches when its category equals the topic (case and
    whitespace insensitive). Its ``strategy_doc_id`` wins; otherwise the
    newest applied ``new`` SOP draft for that template set or topic supplies
    the document created earlier.
    """

    def find_association(self, session: Session, topic: str) -> SopAssociation | None:
        key = _topic_key(topic)
        template_set = next(
            (
                ts
                for ts in session.exec(
                    select(TemplateSet).where(TemplateSet.active == True)  # noqa: E712
                    .order_by(TemplateSet.id)
                ).all()
                if _topic_key(ts.category) == key
            ),
            None,
        )

        if template_set is not None and template_set.strategy_doc_id:
            return SopAssociation(template_set.name, template_set.id, template_set.strategy_doc_id)

        applied = self._applied_document(session, key, template_set)
        if template_set is not None:
            return SopAssociation(template_set.name, template_set.id, applied)
        if applied:
            return SopAssociation(f"{topic} SOP", None, applied)
        return None

    @staticmethod
    def _applied_document(
        session: Session, key: str, template_set: TemplateSet | None
    ) -> str | None:
        query = (
            select(SopDraft)
            .where(SopDraft.status == SopDraftStatus.APPLIED.value)
            .where(SopDraft.draft_type == SopDraftType.NEW.value)
            .where(SopDraft.sop_doc_id != None)  # noqa: E711
            .order_by(SopDraft.applied_at.desc())
        )
        for draft in session.exec(query).all():
            if template_set is not None and draft.template_set_id == template_set.id:
                return draft.sop_doc_id
            if template_set is None and _topic_key(draft.sop_title or "") == f"{key} sop":
                return draft.sop_doc_id
        return None
