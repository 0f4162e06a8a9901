"""Best-effort delivery of a finished digest."""

from __future__ import annotations

import logging

from sqlalchemy.orm import selectinload
from sqlmodel import select

from contentintel.delivery.documents import DocumentService
from contentintel.delivery.relay import DeliveryQueue
from contentintel.delivery.render import document_title, render_digest_document, render_summary
from contentintel.storage.database import SessionFactory
from contentintel.storage.models import Digest, Recommendation
from contentintel.storage.settings import get_pipeline_settings

logger = logging.getLogger(__name__)


class DigestDelivery:
    """Export the digest to a document, then post a summary to the relay.

    Each step is independent and logged on failure; ``deliver`` itself
    never raises, so delivery can never fail a completed run.
    """

    def __init__(
        self,
        sessions: SessionFactory,
        documents: DocumentService | None,
        relay_queue: DeliveryQueue | None,
        top_n: int = 5,
    ) -> None:
        self._sessions = sessions
        self._documents = documents
        self._relay_queue = relay_queue
        self._top_n = top_n

    def deliver(self, digest_id: int) -> str | None:
        """Returns the document URL when one was created."""
        try:
            with self._sessions() as session:
                digest = session.get(Digest, digest_id)
                if digest is None:
                    logger.error("Cannot deliver digest %s: not found", digest_id)
                    return None
                recommendations = session.exec(
                    select(Recommendation)
                    .where(Recommendation.digest_id == digest_id)
                    .options(selectinload(Recommendation.citations))
                    .order_by(Recommendation.id)
                ).all()
                settings = get_pipeline_settings(session)
                folder_id = settings.drive_folder_id or None
                channel_id = settings.relay_channel_id
        except Exception:
            logger.exception("Failed to load digest %s for delivery", digest_id)
            return None

        document_url = self._create_document(digest, recommendations, folder_id)
        self._post_summary(digest, recommendations, document_url, channel_id)
        return document_url

    def _create_document(
        self, digest: Digest, recommendations: list[Recommendation], folder_id: str | None
    ) -> str | None:
        if self._documents is None:
            logger.info("No document service configured, skipping report")
            return None
        try:
            url = self._documents.create_document(
                document_title(digest),
                render_digest_document(digest, recommendations),
                folder_id,
            )
            with self._sessions() as session:
                row = session.get(Digest, digest.id)
                row.google_doc_url = url
                session.add(row)
                session.commit()
        except Exception:
            logger.exception("Failed to create digest document")
            return None
        logger.info("Digest document created: %s", url)
        return url

    def _post_summary(
        self,
        digest: Digest,
        recommendations: list[Recommendation],
        document_url: str | None,
        channel_id: str,
    ) -> None:
        if not channel_id or self._relay_queue is None:
            return
        try:
            summary = render_summary(digest, recommendations, document_url, self._top_n)
            if not self._relay_queue.enqueue(channel_id, summary):
                logger.warning("Digest summary was not queued for %s", channel_id)
        except Exception:
            logger.exception("Failed to queue digest summary")
