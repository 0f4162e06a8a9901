"""Monthly digest pipeline: a persisted state machine over one Digest row.

pending -> fetching -> analyzing -> generating -> delivering -> completed,
with ``failed`` reachable from every non-terminal stage. Each stage
commits its own output before the status moves on, so a failed digest can
be inspected and retried.
"""

from __future__ import annotations

import contextvars
import dataclasses
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout, wait
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.orm import selectinload
from sqlmodel import Session, func, select

from contentintel.analysis.analyzer import Analyzer
from contentintel.analysis.prompt import ArticleForAnalysis, PromptSettings
from contentintel.config import Settings
from contentintel.delivery.digest import DigestDelivery
from contentintel.delivery.documents import DocumentService, build_document_service
from contentintel.delivery.relay import DeliveryQueue, build_relay_queue
from contentintel.drafts.generator import DraftRules, SopAssociation, draft_for_recommendation
from contentintel.errors import DeliveryError, FetchError, InvalidActionError, NotFoundError
from contentintel.fetchers.base import FetchedArticle, filter_recent
from contentintel.fetchers.registry import FetcherRegistry
from contentintel.llm.client import ClaudeClient
from contentintel.llm.prompts import render
from contentintel.log import digest_context
from contentintel.pipeline.jobs import PIPELINE_JOB, JobHistory
from contentintel.pipeline.stores import SqlTemplateStore, TemplateStore
from contentintel.sources.registry import active_sources
from contentintel.storage.database import SessionFactory, session_factory
from contentintel.storage.models import (
    Citation,
    Digest,
    DigestStatus,
    DraftStatus,
    FetchResult,
    JobRun,
    JobStatus,
    Recommendation,
    SopDraft,
    SopDraftStatus,
    Source,
    TaskDraft,
)
from contentintel.storage.settings import get_pipeline_settings

logger = logging.getLogger(__name__)

TRANSITIONS: dict[DigestStatus, frozenset[DigestStatus]] = {
    DigestStatus.PENDING: frozenset({DigestStatus.FETCHING, DigestStatus.FAILED}),
    DigestStatus.FETCHING: frozenset({DigestStatus.ANALYZING, DigestStatus.FAILED}),
    DigestStatus.ANALYZING: frozenset({DigestStatus.GENERATING, DigestStatus.FAILED}),
    DigestStatus.GENERATING: frozenset({DigestStatus.DELIVERING, DigestStatus.FAILED}),
    DigestStatus.DELIVERING: frozenset({DigestStatus.COMPLETED, DigestStatus.FAILED}),
    DigestStatus.FAILED: frozenset({DigestStatus.PENDING}),
    DigestStatus.COMPLETED: frozenset(),
}

IN_FLIGHT = tuple(s.value for s in DigestStatus if not s.is_terminal)


def period_for(moment: datetime) -> str:
    return moment.strftime("%Y-%m")


class DigestOrchestrator:
    """Creates digests and drives them through the pipeline stages."""

    def __init__(
        self,
        sessions: SessionFactory,
        fetchers: FetcherRegistry,
        analyzer: Analyzer,
        delivery: DigestDelivery,
        settings: Settings,
        jobs: JobHistory | None = None,
        templates: TemplateStore | None = None,
        relay_queue: DeliveryQueue | None = None,
        documents: DocumentService | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._sessions = sessions
        self._fetchers = fetchers
        self._analyzer = analyzer
        self._delivery = delivery
        self._settings = settings
        self._jobs = jobs or JobHistory(sessions)
        self._templates = templates or SqlTemplateStore()
        self._relay_queue = relay_queue
        self._documents = documents
        self._clock = clock
        self._stages: dict[DigestStatus, Callable[[int], DigestStatus]] = {
            DigestStatus.PENDING: lambda _digest_id: DigestStatus.FETCHING,
            DigestStatus.FETCHING: self.run_fetching,
            DigestStatus.ANALYZING: self.run_analyzing,
            DigestStatus.GENERATING: self.run_generating,
            DigestStatus.DELIVERING: self.run_delivering,
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> DigestOrchestrator:
        """Wire the production collaborators from ``settings``."""
        sessions = session_factory(settings.db_path)
        relay_queue = build_relay_queue(settings)
        documents = build_document_service(settings)
        delivery = DigestDelivery(sessions, documents, relay_queue, settings.summary_top_n)
        return cls(
            sessions=sessions,
            fetchers=FetcherRegistry.from_settings(settings),
            analyzer=Analyzer(ClaudeClient(settings)),
            delivery=delivery,
            settings=settings,
            relay_queue=relay_queue,
            documents=documents,
        )

    def close(self) -> None:
        """Release HTTP clients and drain pending relay messages."""
        self._fetchers.close()
        if self._relay_queue is not None:
            self._relay_queue.close()

    def __enter__(self) -> DigestOrchestrator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run(self, force: bool = False) -> Digest | None:
        """Start this month's digest. Returns None when a gate skips the run.

        Unforced runs require the pipeline to be enabled, today to be the
        configured run day, and no completed digest for the period. A digest
        already in flight for the period always blocks a new one, unless it
        is stale and gets failed by ``recover_stale`` first.
        """
        self.recover_stale()
        now = self._clock()
        period = period_for(now)
        with self._sessions() as session:
            pipeline = get_pipeline_settings(session)
            if not force and not pipeline.enabled:
                logger.info("Pipeline disabled, skipping")
                return None
            if not force and now.day != pipeline.run_day_of_month:
                logger.info(
                    "Today is day %d, pipeline runs on day %d, skipping",
                    now.day,
                    pipeline.run_day_of_month,
                )
                return None

            in_flight = session.exec(
                select(Digest).where(Digest.period == period).where(Digest.status.in_(IN_FLIGHT))
            ).first()
            if in_flight is not None:
                logger.warning(
                    "Digest %d for %s is already %s, not starting another",
                    in_flight.id,
                    period,
                    in_flight.status,
                )
                return None

            if not force:
                done = session.exec(
                    select(Digest)
                    .where(Digest.period == period)
                    .where(Digest.status == DigestStatus.COMPLETED.value)
                ).first()
                if done is not None:
                    logger.info("Digest for %s already completed (id %d), skipping", period, done.id)
                    return None

            digest = Digest(period=period, created_at=now)
            session.add(digest)
            session.commit()
            session.refresh(digest)

        logger.info("Created digest %d for %s", digest.id, period)
        job = self._jobs.start(PIPELINE_JOB, {"digest_id": digest.id, "force": force})
        return self._execute(digest.id, job.id)

    def retry(self, digest_id: int) -> Digest:
        """Re-run a failed digest from fetching, discarding its partial output."""
        self.recover_stale()
        with self._sessions() as session:
            digest = self._load(session, digest_id)
            if digest.status != DigestStatus.FAILED.value:
                raise InvalidActionError(
                    f"Digest {digest_id} is {digest.status}; only failed digests can be retried"
                )
            if self._has_reviewed_drafts(session, digest_id):
                raise InvalidActionError(
                    f"Digest {digest_id} has reviewed drafts and cannot be retried"
                )

        job = self._jobs.start(PIPELINE_JOB, {"digest_id": digest_id, "retry": True})
        with self._sessions() as session:
            digest = self._load(session, digest_id)
            self._clear_outputs(session, digest_id)
            self._check_transition(digest, DigestStatus.PENDING)
            digest.status = DigestStatus.PENDING.value
            digest.error_message = None
            digest.google_doc_url = None
            digest.completed_at = None
            digest.sources_fetched = 0
            digest.recommendations_generated = 0
            digest.task_drafts_created = 0
            digest.sop_drafts_created = 0
            session.add(digest)
            session.commit()

        logger.info("Retrying digest %d", digest_id)
        return self._execute(digest_id, job.id)

    def recover_stale(self) -> list[int]:
        """Fail in-flight digests left behind by a process that died mid-run.

        A digest is stale when neither it nor its newest running pipeline
        job has been started within ``stale_run_minutes``. Stale digests
        move to ``failed`` and their running jobs are failed, which makes
        them retryable. Returns the recovered digest ids.
        """
        cutoff = self._clock() - timedelta(minutes=self._settings.stale_run_minutes)
        with self._sessions() as session:
            digests = session.exec(select(Digest).where(Digest.status.in_(IN_FLIGHT))).all()
            if not digests:
                return []
            running: dict[int, list[JobRun]] = {}
            for job in session.exec(
                select(JobRun)
                .where(JobRun.job_name == PIPELINE_JOB)
                .where(JobRun.status == JobStatus.RUNNING.value)
            ).all():
                digest_id = job.details.get("digest_id")
                if isinstance(digest_id, int):
                    running.setdefault(digest_id, []).append(job)

        recovered = []
        for digest in digests:
            jobs = running.get(digest.id, [])
            last_started = max((job.started_at for job in jobs), default=digest.created_at)
            if last_started > cutoff:
                continue
            message = (
                f"Interrupted while {digest.status}: no progress since "
                f"{last_started:%Y-%m-%d %H:%M}"
            )
            with digest_context(digest.id):
                logger.warning("Marking stale digest failed. %s", message)
                self._transition(digest.id, DigestStatus.FAILED, error_message=message)
                for job in jobs:
                    self._jobs.fail(job.id, message, {"digest_id": digest.id, "stage": digest.status})
                self._alert_failure(digest.id, message)
            recovered.append(digest.id)
        return recovered

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _execute(self, digest_id: int, job_run_id: int) -> Digest:
        with digest_context(digest_id):
            with self._sessions() as session:
                status = DigestStatus(self._load(session, digest_id).status)

            while not status.is_terminal:
                handler = self._stages[status]
                logger.info("Stage %s", status.value)
                try:
                    next_status = handler(digest_id)
                    self._transition(digest_id, next_status)
                except Exception as exc:
                    self._fail(digest_id, job_run_id, status, exc)
                    break
                status = next_status
            else:
                with self._sessions() as session:
                    digest = self._load(session, digest_id)
                self._jobs.complete(job_run_id, self._summary(digest))
                logger.info(
                    "Digest completed: %d sources, %d recommendations, %d task drafts, %d SOP drafts",
                    digest.sources_fetched,
                    digest.recommendations_generated,
                    digest.task_drafts_created,
                    digest.sop_drafts_created,
                )

        with self._sessions() as session:
            return self._load(session, digest_id)

    def _transition(self, digest_id: int, to: DigestStatus, **fields: object) -> None:
        with self._sessions() as session:
            digest = self._load(session, digest_id)
            self._check_transition(digest, to)
            digest.status = to.value
            if to is DigestStatus.COMPLETED:
                digest.completed_at = self._clock()
            for key, value in fields.items():
                setattr(digest, key, value)
            session.add(digest)
            session.commit()

    @staticmethod
    def _check_transition(digest: Digest, to: DigestStatus) -> None:
        current = DigestStatus(digest.status)
        if to not in TRANSITIONS[current]:
            raise InvalidActionError(
                f"Digest {digest.id} cannot move from {current.value} to {to.value}"
            )

    def _fail(self, digest_id: int, job_run_id: int, stage: DigestStatus, exc: Exception) -> None:
        message = str(exc) or exc.__class__.__name__
        logger.error("Stage %s failed: %s", stage.value, message, exc_info=exc)
        self._transition(digest_id, DigestStatus.FAILED, error_message=message)
        self._jobs.fail(job_run_id, message, {"digest_id": digest_id, "stage": stage.value})
        self._alert_failure(digest_id, message)

    def _alert_failure(self, digest_id: int, message: str) -> None:
        if self._relay_queue is None:
            return
        with self._sessions() as session:
            digest = self._load(session, digest_id)
            channel_id = get_pipeline_settings(session).relay_channel_id
        if not channel_id:
            return
        text = render("failure_alert.j2", digest_id=digest_id, period=digest.period, error=message)
        if not self._relay_queue.enqueue(channel_id, text):
            logger.warning("Failure alert for digest %d was not queued", digest_id)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def run_fetching(self, digest_id: int) -> DigestStatus:
        """Fetch every active source concurrently and store new articles."""
        with self._sessions() as session:
            sources = active_sources(session)
        if not sources:
            logger.warning("No active sources configured")

        results = self._fetch_all(sources)
        now = self._clock()

        with self._sessions() as session:
            digest = self._load(session, digest_id)
            seen = set(
                session.exec(
                    select(FetchResult.content_hash).where(FetchResult.digest_id == digest_id)
                ).all()
            )
            contributing = 0
            stored = 0
            for source in sources:
                if source.id not in results:
                    continue
                articles = filter_recent(results[source.id], self._settings.lookback_days, now)
                if articles:
                    contributing += 1
                for article in articles:
                    if article.content_hash in seen:
                        continue
                    seen.add(article.content_hash)
                    session.add(self._fetch_result(digest_id, source.id, article))
                    stored += 1
                row = session.get(Source, source.id)
                if row is not None:
                    row.last_fetched_at = now
                    session.add(row)

            digest.sources_fetched = contributing
            session.add(digest)
            session.commit()

        logger.info("Stored %d articles from %d of %d sources", stored, contributing, len(sources))
        return DigestStatus.ANALYZING

    def run_analyzing(self, digest_id: int) -> DigestStatus:
        """One model call over the digest's articles; results saved atomically."""
        with self._sessions() as session:
            existing = session.exec(
                select(func.count(Recommendation.id)).where(Recommendation.digest_id == digest_id)
            ).one()
            if existing:
                logger.info("Digest already has %d recommendations, skipping analysis", existing)
                return DigestStatus.GENERATING

            rows = session.exec(
                select(FetchResult)
                .where(FetchResult.digest_id == digest_id)
                .options(selectinload(FetchResult.source))
                .order_by(FetchResult.id)
            ).all()
            articles = [self._article_for_analysis(row) for row in rows]
            pipeline = get_pipeline_settings(session)
            prompt_settings = PromptSettings(
                token_budget=pipeline.token_budget,
                max_article_chars=self._settings.max_article_chars,
            )

        result = self._analyzer.analyze(articles, prompt_settings)

        with self._sessions() as session:
            digest = self._load(session, digest_id)
            for rec in result.recommendations:
                session.add(
                    Recommendation(
                        digest_id=digest_id,
                        category=rec.category,
                        title=rec.title,
                        summary=rec.summary,
                        details=rec.details,
                        impact=rec.impact,
                        confidence=rec.confidence,
                        source_count=rec.source_count,
                        citations=[
                            Citation(
                                fetch_result_id=c.fetch_result_id,
                                source_name=c.source_name,
                                source_url=c.source_url,
                                excerpt=c.excerpt,
                            )
                            for c in rec.citations
                        ],
                    )
                )
            digest.recommendations_generated = len(result.recommendations)
            session.add(digest)
            session.commit()
        return DigestStatus.GENERATING

    def run_generating(self, digest_id: int) -> DigestStatus:
        """Draft tasks and SOP changes for recommendations not yet drafted."""
        with self._sessions() as session:
            digest = self._load(session, digest_id)
            pipeline = get_pipeline_settings(session)
            rules = DraftRules(
                min_impact=pipeline.draft_min_impact,
                min_confidence=pipeline.draft_min_confidence,
                sop_min_impact=pipeline.sop_min_impact,
            )
            recommendations = session.exec(
                select(Recommendation)
                .where(Recommendation.digest_id == digest_id)
                .options(selectinload(Recommendation.citations))
                .order_by(Recommendation.id)
            ).all()
            drafted = set(
                session.exec(
                    select(TaskDraft.recommendation_id).where(TaskDraft.digest_id == digest_id)
                ).all()
            ) | set(
                session.exec(
                    select(SopDraft.recommendation_id).where(SopDraft.digest_id == digest_id)
                ).all()
            )

            associations: dict[str, SopAssociation | None] = {}
            for rec in recommendations:
                if rec.id in drafted:
                    continue
                if rec.category not in associations:
                    associations[rec.category] = self._with_document_text(
                        self._templates.find_association(session, rec.category)
                    )
                bundle = draft_for_recommendation(rec, rules, associations[rec.category])
                for task in bundle.tasks:
                    session.add(
                        TaskDraft(
                            digest_id=digest_id,
                            recommendation_id=rec.id,
                            title=task.title,
                            description=task.description,
                            suggested_priority=task.suggested_priority,
                            suggested_due_in_days=task.suggested_due_in_days,
                        )
                    )
                if bundle.sop is not None:
                    session.add(
                        SopDraft(
                            digest_id=digest_id,
                            recommendation_id=rec.id,
                            draft_type=bundle.sop.draft_type,
                            sop_title=bundle.sop.sop_title,
                            sop_doc_id=bundle.sop.sop_doc_id,
                            template_set_id=bundle.sop.template_set_id,
                            before_content=bundle.sop.before_content,
                            after_content=bundle.sop.after_content,
                            description=bundle.sop.description,
                        )
                    )
            session.flush()

            digest.task_drafts_created = self._count(session, TaskDraft, digest_id)
            digest.sop_drafts_created = self._count(session, SopDraft, digest_id)
            session.add(digest)
            session.commit()
        return DigestStatus.DELIVERING

    def run_delivering(self, digest_id: int) -> DigestStatus:
        """Best-effort export; the digest completes whatever happens here."""
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="deliver")
        try:
            future = executor.submit(
                contextvars.copy_context().run, self._delivery.deliver, digest_id
            )
            future.result(timeout=self._settings.delivery_timeout_seconds)
        except FutureTimeout:
            logger.warning(
                "Delivery still running after %.0fs, completing digest without it",
                self._settings.delivery_timeout_seconds,
            )
        except Exception:
            logger.exception("Delivery failed")
        finally:
            executor.shutdown(wait=False)
        return DigestStatus.COMPLETED

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _fetch_all(self, sources: list[Source]) -> dict[int, list[FetchedArticle]]:
        """Fan out one task per source; failures and stragglers are excluded."""
        results: dict[int, list[FetchedArticle]] = {}
        if not sources:
            return results

        executor = ThreadPoolExecutor(
            max_workers=max(1, min(self._settings.fetch_concurrency, len(sources))),
            thread_name_prefix="fetch",
        )
        try:
            futures = {
                executor.submit(contextvars.copy_context().run, self._fetch_one, source): source
                for source in sources
            }
            done, not_done = wait(futures, timeout=self._settings.fetch_join_timeout_seconds)
            for future in not_done:
                future.cancel()
                logger.warning("Timed out fetching %s", futures[future].name)
            for future in done:
                source = futures[future]
                try:
                    results[source.id] = future.result()
                except Exception as exc:
                    logger.warning("Fetch failed for %s: %s", source.name, exc)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return results

    def _fetch_one(self, source: Source) -> list[FetchedArticle]:
        fetcher = self._fetchers.get(source.fetch_method)
        if fetcher is None:
            raise FetchError(f"Unknown fetch method '{source.fetch_method}'", source=source.name)
        articles = fetcher.fetch(source)
        logger.info("%s: %d articles", source.name, len(articles))
        return articles

    def _with_document_text(self, association: SopAssociation | None) -> SopAssociation | None:
        """Attach the current text of the associated SOP so edits can quote it."""
        if association is None or not association.doc_id or self._documents is None:
            return association
        try:
            text = self._documents.get_document_text(association.doc_id)
        except (DeliveryError, OSError) as exc:
            logger.warning("Could not read SOP document %s: %s", association.doc_id, exc)
            return association
        return dataclasses.replace(association, document_text=text)

    @staticmethod
    def _fetch_result(digest_id: int, source_id: int, article: FetchedArticle) -> FetchResult:
        return FetchResult(
            digest_id=digest_id,
            source_id=source_id,
            url=article.url,
            title=article.title,
            content=article.content,
            content_hash=article.content_hash,
            published_at=article.published_at,
        )

    @staticmethod
    def _article_for_analysis(row: FetchResult) -> ArticleForAnalysis:
        source = row.source
        return ArticleForAnalysis(
            id=row.id,
            url=row.url,
            title=row.title,
            content=row.content,
            source_name=source.name if source else "Unknown source",
            source_tier=source.tier if source else "tier_3",
            category=source.category if source else "general",
            published_at=row.published_at,
        )

    @staticmethod
    def _load(session: Session, digest_id: int) -> Digest:
        digest = session.get(Digest, digest_id)
        if digest is None:
            raise NotFoundError(f"Digest {digest_id} not found")
        return digest

    @staticmethod
    def _count(session: Session, model: type, digest_id: int) -> int:
        return session.exec(
            select(func.count(model.id)).where(model.digest_id == digest_id)
        ).one()

    @staticmethod
    def _has_reviewed_drafts(session: Session, digest_id: int) -> bool:
        reviewed_task = session.exec(
            select(TaskDraft.id)
            .where(TaskDraft.digest_id == digest_id)
            .where(TaskDraft.status != DraftStatus.PENDING.value)
        ).first()
        reviewed_sop = session.exec(
            select(SopDraft.id)
            .where(SopDraft.digest_id == digest_id)
            .where(SopDraft.status != SopDraftStatus.PENDING.value)
        ).first()
        return reviewed_task is not None or reviewed_sop is not None

    @staticmethod
    def _clear_outputs(session: Session, digest_id: int) -> None:
        """Delete drafts, recommendations (with citations) and fetch results."""
        for model in (TaskDraft, SopDraft):
            for row in session.exec(select(model).where(model.digest_id == digest_id)).all():
                session.delete(row)
        for rec in session.exec(
            select(Recommendation).where(Recommendation.digest_id == digest_id)
        ).all():
            session.delete(rec)
        session.flush()
        for row in session.exec(select(FetchResult).where(FetchResult.digest_id == digest_id)).all():
            session.delete(row)
        session.flush()

    @staticmethod
    def _summary(digest: Digest) -> dict:
        return {
            "digest_id": digest.id,
            "period": digest.period,
            "sources_fetched": digest.sources_fetched,
            "recommendations_generated": digest.recommendations_generated,
            "task_drafts_created": digest.task_drafts_created,
            "sop_drafts_created": digest.sop_drafts_created,
            "google_doc_url": digest.google_doc_url,
        }
