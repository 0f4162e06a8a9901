"""Retention cleanup of stored article content."""

from __future__ import annotations

import logging
from datetime import datetime

from dateutil.relativedelta import relativedelta
from sqlmodel import select

from contentintel.pipeline.jobs import CLEANUP_JOB, JobHistory
from contentintel.storage.database import SessionFactory
from contentintel.storage.models import Citation, FetchResult
from contentintel.storage.settings import get_pipeline_settings

logger = logging.getLogger(__name__)


def run_cleanup(sessions: SessionFactory, now: datetime | None = None) -> int:
    """Delete fetch results older than the retention window.

    Citations keep their copied source name, url and excerpt; only their
    link to the deleted article is cleared. Digests, recommendations and
    drafts are never removed. Returns the number of articles deleted.
    """
    jobs = JobHistory(sessions)
    now = now or datetime.now()

    with sessions() as session:
        retention_months = get_pipeline_settings(session).retention_months
    cutoff = now - relativedelta(months=retention_months)
    run = jobs.start(CLEANUP_JOB, {"retention_months": retention_months, "cutoff": cutoff})

    try:
        with sessions() as session:
            expired = session.exec(select(FetchResult).where(FetchResult.created_at < cutoff)).all()
            expired_ids = [row.id for row in expired]
            if expired_ids:
                for citation in session.exec(
                    select(Citation).where(Citation.fetch_result_id.in_(expired_ids))
                ).all():
                    citation.fetch_result_id = None
                    session.add(citation)
                session.flush()
                for row in expired:
                    session.delete(row)
            session.commit()
    except Exception as exc:
        jobs.fail(run.id, str(exc))
        raise

    logger.info("Deleted %d fetch results older than %s", len(expired_ids), cutoff.date())
    jobs.complete(run.id, {"deleted_fetch_results": len(expired_ids)})
    return len(expired_ids)
