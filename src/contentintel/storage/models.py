"""SQLModel database models."""

# No postponed annotations here: SQLModel resolves Relationship targets
# from the runtime annotation strings.

import json
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, Relationship, SQLModel


class Tier(str, Enum):
    TIER_1 = "tier_1"
    TIER_2 = "tier_2"
    TIER_3 = "tier_3"


class DigestStatus(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    DELIVERING = "delivering"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DigestStatus.COMPLETED, DigestStatus.FAILED)


class Impact(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Confidence(str, Enum):
    ESTIMATED = "estimated"
    VERIFIED = "verified"


class DraftStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SopDraftStatus(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    DISMISSED = "dismissed"


class SopDraftType(str, Enum):
    NEW = "new"
    EDIT = "edit"


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


_CASCADE = {"cascade": "all, delete-orphan"}


class Source(SQLModel, table=True):
    """A configured content source."""

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    url: str
    tier: str = Tier.TIER_3.value
    category: str = "general"
    fetch_method: str = "rss"  # rss | podcast | youtube | reddit | webpage
    fetch_config_json: str = "{}"
    active: bool = True
    last_fetched_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def fetch_config(self) -> dict:
        try:
            value = json.loads(self.fetch_config_json or "{}")
        except json.JSONDecodeError:
            return {}
        return value if isinstance(value, dict) else {}


class PipelineSettings(SQLModel, table=True):
    """Operator-editable pipeline settings (single row)."""

    id: int | None = Field(default=None, primary_key=True)
    enabled: bool = False
    run_day_of_month: int = 1
    token_budget: int = 100_000
    relay_channel_id: str = ""
    drive_folder_id: str = ""
    sop_folder_id: str = ""
    retention_months: int = 6
    draft_min_impact: str = Impact.MEDIUM.value
    draft_min_confidence: str = Confidence.ESTIMATED.value
    sop_min_impact: str = Impact.HIGH.value
    updated_at: datetime = Field(default_factory=datetime.now)


class Digest(SQLModel, table=True):
    """One pipeline run's output container."""

    id: int | None = Field(default=None, primary_key=True)
    period: str = Field(index=True)  # e.g. "2025-11"
    status: str = DigestStatus.PENDING.value
    sources_fetched: int = 0
    recommendations_generated: int = 0
    task_drafts_created: int = 0
    sop_drafts_created: int = 0
    error_message: str | None = None
    google_doc_url: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    completed_at: datetime | None = None

    fetch_results: list["FetchResult"] = Relationship(
        back_populates="digest", sa_relationship_kwargs=_CASCADE
    )
    recommendations: list["Recommendation"] = Relationship(
        back_populates="digest", sa_relationship_kwargs=_CASCADE
    )
    task_drafts: list["TaskDraft"] = Relationship(
        back_populates="digest", sa_relationship_kwargs=_CASCADE
    )
    sop_drafts: list["SopDraft"] = Relationship(
        back_populates="digest", sa_relationship_kwargs=_CASCADE
    )


class FetchResult(SQLModel, table=True):
    """One article found for a digest. Immutable once written."""

    id: int | None = Field(default=None, primary_key=True)
    digest_id: int = Field(foreign_key="digest.id", index=True)
    source_id: int | None = Field(default=None, foreign_key="source.id")
    url: str
    title: str
    content: str = ""
    content_hash: str = Field(default="", index=True)
    published_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.now)

    digest: Optional["Digest"] = Relationship(back_populates="fetch_results")
    source: Optional["Source"] = Relationship()


class Recommendation(SQLModel, table=True):
    """An AI-extracted, citation-backed suggestion."""

    id: int | None = Field(default=None, primary_key=True)
    digest_id: int = Field(foreign_key="digest.id", index=True)
    category: str = "General"
    title: str
    summary: str = ""
    details: str = ""
    impact: str = Impact.MEDIUM.value
    confidence: str = Confidence.ESTIMATED.value
    source_count: int = 0
    created_at: datetime = Field(default_factory=datetime.now)

    digest: Optional["Digest"] = Relationship(back_populates="recommendations")
    citations: list["Citation"] = Relationship(
        back_populates="recommendation", sa_relationship_kwargs=_CASCADE
    )


class Citation(SQLModel, table=True):
    """Pointer from a recommendation back to the article that justified it."""

    id: int | None = Field(default=None, primary_key=True)
    recommendation_id: int = Field(foreign_key="recommendation.id", index=True)
    fetch_result_id: int | None = Field(default=None, foreign_key="fetchresult.id")
    source_name: str
    source_url: str
    excerpt: str = ""

    recommendation: Optional["Recommendation"] = Relationship(back_populates="citations")


class TaskDraft(SQLModel, table=True):
    """A proposed task awaiting operator review."""

    id: int | None = Field(default=None, primary_key=True)
    digest_id: int = Field(foreign_key="digest.id", index=True)
    recommendation_id: int = Field(foreign_key="recommendation.id", index=True)
    title: str
    description: str = ""
    suggested_priority: str = "medium"  # urgent | high | medium | low
    suggested_due_in_days: int = 14
    status: str = DraftStatus.PENDING.value
    task_id: int | None = None
    reviewed_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.now)

    digest: Optional["Digest"] = Relationship(back_populates="task_drafts")


class SopDraft(SQLModel, table=True):
    """A proposed new SOP document or an edit to an existing one."""

    id: int | None = Field(default=None, primary_key=True)
    digest_id: int = Field(foreign_key="digest.id", index=True)
    recommendation_id: int = Field(foreign_key="recommendation.id", index=True)
    draft_type: str = SopDraftType.NEW.value
    sop_title: str | None = None
    sop_doc_id: str | None = None
    template_set_id: int | None = None
    before_content: str | None = None
    after_content: str = ""
    description: str = ""
    status: str = SopDraftStatus.PENDING.value
    applied_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.now)

    digest: Optional["Digest"] = Relationship(back_populates="sop_drafts")


class JobRun(SQLModel, table=True):
    """Append-only record of one job attempt."""

    id: int | None = Field(default=None, primary_key=True)
    job_name: str = Field(index=True)
    started_at: datetime = Field(default_factory=datetime.now)
    completed_at: datetime | None = None
    status: str = JobStatus.RUNNING.value
    details_json: str = "{}"

    @property
    def details(self) -> dict:
        try:
            return json.loads(self.details_json or "{}")
        except json.JSONDecodeError:
            return {}


class Task(SQLModel, table=True):
    """Work item in the local task store."""

    id: int | None = Field(default=None, primary_key=True)
    project_id: str = Field(index=True)
    title: str
    description: str = ""
    priority: str = "medium"
    due_date: datetime | None = None
    assignee_ids_json: str = "[]"
    created_at: datetime = Field(default_factory=datetime.now)


class TemplateSet(SQLModel, table=True):
    """Group of task templates, optionally linked to a strategy/SOP document."""

    id: int | None = Field(default=None, primary_key=True)
    name: str
    description: str | None = None
    category: str = Field(default="", index=True)
    strategy_doc_id: str | None = None
    active: bool = True
