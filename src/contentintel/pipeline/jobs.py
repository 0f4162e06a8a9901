"""Append-only job run history."""

from __future__ import annotations

import json
from datetime import datetime

from sqlmodel import select

from contentintel.errors import InvalidActionError, NotFoundError
from contentintel.storage.database import SessionFactory
from contentintel.storage.models import JobRun, JobStatus

PIPELINE_JOB = "content_intelligence_pipeline"
CLEANUP_JOB = "content_cleanup"


class JobHistory:
    """One row per attempt; a finished row is never touched again."""

    def __init__(self, sessions: SessionFactory) -> None:
        self._sessions = sessions

    def start(self, job_name: str, details: dict | None = None) -> JobRun:
        with self._sessions() as session:
            run = JobRun(job_name=job_name, details_json=json.dumps(details or {}, default=str))
            session.add(run)
            session.commit()
            session.refresh(run)
            return run

    def complete(self, run_id: int, details: dict | None = None) -> JobRun:
        return self._finish(run_id, JobStatus.COMPLETED, details or {})

    def fail(self, run_id: int, error: str, details: dict | None = None) -> JobRun:
        return self._finish(run_id, JobStatus.FAILED, {**(details or {}), "error": error})

    def recent(self, job_name: str = PIPELINE_JOB, limit: int = 20) -> list[JobRun]:
        with self._sessions() as session:
            return list(
                session.exec(
                    select(JobRun)
                    .where(JobRun.job_name == job_name)
                    .order_by(JobRun.started_at.desc(), JobRun.id.desc())
                    .limit(limit)
                ).all()
            )

    def _finish(self, run_id: int, status: JobStatus, details: dict) -> JobRun:
        with self._sessions() as session:
            run = session.get(JobRun, run_id)
            if run is None:
                raise NotFoundError(f"Job run {run_id} not found")
            if run.status != JobStatus.RUNNING:
                raise InvalidActionError(f"Job run {run_id} already {run.status}")
            merged = {**run.details, **details}
            run.status = status.value
            run.completed_at = datetime.now()
            run.details_json = json.dumps(merged, default=str)
            session.add(run)
            session.commit()
            session.refresh(run)
            return run
