"""Read and update the persisted pipeline settings row."""

from __future__ import annotations

from datetime import datetime

from sqlmodel import Session, select

from contentintel.errors import InvalidActionError
from contentintel.storage.models import Confidence, Impact, PipelineSettings

EDITABLE_FIELDS = {
    "enabled": bool,
    "run_day_of_month": int,
    "token_budget": int,
    "relay_channel_id": str,
    "drive_folder_id": str,
    "sop_folder_id": str,
    "retention_months": int,
    "draft_min_impact": str,
    "draft_min_confidence": str,
    "sop_min_impact": str,
}


def get_pipeline_settings(session: Session) -> PipelineSettings:
    """Return the settings row, creating it with defaults on first use."""
    settings = session.exec(select(PipelineSettings)).first()
    if settings is None:
        settings = PipelineSettings()
        session.add(settings)
        session.commit()
        session.refresh(settings)
    return settings


def update_pipeline_settings(session: Session, **changes: object) -> PipelineSettings:
    """Apply ``changes`` to the settings row after validating them."""
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise InvalidActionError(f"Unknown settings: {', '.join(sorted(unknown))}")

    day = changes.get("run_day_of_month")
    if day is not None and not 1 <= int(day) <= 31:
        raise InvalidActionError("run_day_of_month must be between 1 and 31")
    budget = changes.get("token_budget")
    if budget is not None and int(budget) <= 0:
        raise InvalidActionError("token_budget must be positive")
    for key in ("draft_min_impact", "sop_min_impact"):
        if key in changes and changes[key] not in {i.value for i in Impact}:
            raise InvalidActionError(f"{key} must be one of low, medium, high")
    if "draft_min_confidence" in changes and changes["draft_min_confidence"] not in {
        c.value for c in Confidence
    }:
        raise InvalidActionError("draft_min_confidence must be estimated or verified")

    settings = get_pipeline_settings(session)
    for key, value in changes.items():
        if value is not None:
            setattr(settings, key, EDITABLE_FIELDS[key](value))
    settings.updated_at = datetime.now()
    session.add(settings)
    session.commit()
    session.refresh(settings)
    return settings
