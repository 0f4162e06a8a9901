"""Document export: Google Docs, or markdown files when Google is not configured."""

from __future__ import annotations

import base64
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Protocol
from urllib.parse import unquote, urlparse

from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import Error as GoogleApiClientError
from googleapiclient.errors import HttpError

from contentintel.errors import DeliveryError

logger = logging.getLogger(__name__)

HEADING_STYLES = ("HEADING_1", "HEADING_2", "HEADING_3")
NORMAL_TEXT = "NORMAL_TEXT"

GOOGLE_SCOPES = [
    "https://www.googleapis.com/auth/documents",
    "https://www.googleapis.com/auth/drive",
]

_DOC_ID_RE = re.compile(r"/document/d/([a-zA-Z0-9_-]+)")
_MD_HEADING_RE = re.compile(r"^(#{1,3})\s+(.+)$")


@dataclass
class DocBlock:
    """One paragraph of structured document content."""

    text: str
    style: str = NORMAL_TEXT


class DocumentService(Protocol):
    def create_document(
        self, title: str, blocks: list[DocBlock], folder_id: str | None = None
    ) -> str: ...

    def append_to_document(self, document_id: str, text: str) -> None: ...

    def get_document_text(self, document_id: str) -> str: ...


def extract_doc_id(url_or_id: str) -> str:
    """Return the document id from a Docs URL, or the input unchanged."""
    match = _DOC_ID_RE.search(url_or_id or "")
    return match.group(1) if match else url_or_id


def markdown_to_blocks(markdown: str) -> list[DocBlock]:
    """Split ``#``/``##``/``###`` markdown into heading and body blocks."""
    blocks: list[DocBlock] = []
    paragraph: list[str] = []

    def flush() -> None:
        text = "\n".join(paragraph).strip()
        if text:
            blocks.append(DocBlock(text))
        paragraph.clear()

    for line in markdown.splitlines():
        heading = _MD_HEADING_RE.match(line)
        if heading:
            flush()
            blocks.append(DocBlock(heading.group(2).strip(), HEADING_STYLES[len(heading.group(1)) - 1]))
        elif line.strip():
            paragraph.append(line)
        else:
            flush()
    flush()
    return blocks


def build_insert_requests(blocks: list[DocBlock], start_index: int = 1) -> list[dict]:
    """Docs API batchUpdate requests that write ``blocks`` in order."""
    requests: list[dict] = []
    index = start_index
    for block in blocks:
        text = block.text if block.text.endswith("\n") else block.text + "\n"
        end = index + len(text)
        requests.append({"insertText": {"location": {"index": index}, "text": text}})
        if block.style in HEADING_STYLES:
            requests.append(
                {
                    "updateParagraphStyle": {
                        "range": {"startIndex": index, "endIndex": end},
                        "paragraphStyle": {"namedStyleType": block.style},
                        "fields": "namedStyleType",
                    }
                }
            )
        index = end
    return requests


class GoogleDocsService:
    """Create and append to Google Docs with a service account."""

    def __init__(self, service_account_key_b64: str) -> None:
        try:
            info = json.loads(base64.b64decode(service_account_key_b64).decode("utf-8"))
        except (ValueError, UnicodeDecodeError) as exc:
            raise DeliveryError("GOOGLE_SERVICE_ACCOUNT_KEY is not valid base64 JSON") from exc
        if not isinstance(info, dict):
            raise DeliveryError("GOOGLE_SERVICE_ACCOUNT_KEY must decode to a JSON object")
        credentials = service_account.Credentials.from_service_account_info(
            info, scopes=GOOGLE_SCOPES
        )
        self._docs = build("docs", "v1", credentials=credentials, cache_discovery=False)
        self._drive = build("drive", "v3", credentials=credentials, cache_discovery=False)

    def create_document(
        self, title: str, blocks: list[DocBlock], folder_id: str | None = None
    ) -> str:
        try:
            created = self._docs.documents().create(body={"title": title}).execute()
            doc_id = created["documentId"]

            if folder_id:
                try:
                    self._drive.files().update(
                        fileId=doc_id, addParents=folder_id, fields="id, parents"
                    ).execute()
                except HttpError as exc:
                    logger.warning("Failed to move document %s to folder: %s", doc_id, exc)

            requests = build_insert_requests(blocks)
            if requests:
                self._docs.documents().batchUpdate(
                    documentId=doc_id, body={"requests": requests}
                ).execute()
        except HttpError as exc:
            raise DeliveryError(f"Google Docs create failed: {exc}") from exc

        return f"https://docs.google.com/document/d/{doc_id}/edit"

    def append_to_document(self, document_id: str, text: str) -> None:
        doc_id = extract_doc_id(document_id)
        try:
            doc = self._docs.documents().get(documentId=doc_id).execute()
            content = doc.get("body", {}).get("content", [])
            if not content:
                raise DeliveryError(f"Could not read body of document {doc_id}")
            end_index = content[-1].get("endIndex", 1)
            self._docs.documents().batchUpdate(
                documentId=doc_id,
                body={
                    "requests": [
                        {
                            "insertText": {
                                "location": {"index": max(end_index - 1, 1)},
                                "text": text,
                            }
                        }
                    ]
                },
            ).execute()
        except HttpError as exc:
            raise DeliveryError(f"Google Docs append failed: {exc}") from exc

    def get_document_text(self, document_id: str) -> str:
        doc_id = extract_doc_id(document_id)
        try:
            doc = self._docs.documents().get(documentId=doc_id).execute()
        except HttpError as exc:
            raise DeliveryError(f"Google Docs read failed: {exc}") from exc
        return document_plain_text(doc)

    def list_documents(self, folder_id: str) -> list[dict]:
        """Documents in a Drive folder, as ``{"id", "name"}`` dicts."""
        try:
            res = self._drive.files().list(
                q=(
                    f"'{folder_id}' in parents and "
                    "mimeType='application/vnd.google-apps.document' and trashed=false"
                ),
                fields="files(id, name)",
                orderBy="name",
            ).execute()
        except HttpError as exc:
            raise DeliveryError(f"Google Drive list failed: {exc}") from exc
        return [{"id": f["id"], "name": f["name"]} for f in res.get("files", [])]


class FileDocumentService:
    """Write documents as markdown files under ``root``."""

    def __init__(self, root: Path) -> None:
        self._root = root

    def create_document(
        self, title: str, blocks: list[DocBlock], folder_id: str | None = None
    ) -> str:
        folder = self._root / folder_id if folder_id else self._root
        folder.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        slug = re.sub(r"[^a-z0-9]+", "_", title.lower()).strip("_")[:60]
        path = folder / f"{timestamp}_{slug}.md"

        lines = []
        for block in blocks:
            if block.style in HEADING_STYLES:
                lines.append("#" * (HEADING_STYLES.index(block.style) + 1) + " " + block.text.strip())
            else:
                lines.append(block.text.rstrip("\n"))
            lines.append("")
        path.write_text("\n".join(lines))
        return path.resolve().as_uri()

    def append_to_document(self, document_id: str, text: str) -> None:
        path = self._path_for(document_id)
        if not path.exists():
            raise DeliveryError(f"Document not found: {document_id}")
        with path.open("a") as fh:
            fh.write(text)

    def get_document_text(self, document_id: str) -> str:
        path = self._path_for(document_id)
        if not path.exists():
            raise DeliveryError(f"Document not found: {document_id}")
        return path.read_text()

    def _path_for(self, document_id: str) -> Path:
        if document_id.startswith("file://"):
            return Path(unquote(urlparse(document_id).path))
        path = Path(document_id)
        return path if path.is_absolute() else self._root / path


def document_plain_text(doc: dict) -> str:
    """Concatenate the text runs of a Docs API document resource."""
    parts: list[str] = []
    for element in doc.get("body", {}).get("content", []):
        for run in element.get("paragraph", {}).get("elements", []):
            parts.append(run.get("textRun", {}).get("content", ""))
    return "".join(parts)


def build_document_service(settings) -> DocumentService:
    """Google Docs when a service account is configured, else local markdown.

    A key that cannot be turned into a working client is logged and the
    local markdown service is used instead, so a bad credential never
    stops a run.
    """
    if settings.google_service_account_key:
        try:
            return GoogleDocsService(settings.google_service_account_key)
        except (DeliveryError, GoogleAuthError, GoogleApiClientError, ValueError) as exc:
            logger.error(
                "Google Docs unavailable (%s), writing reports to %s", exc, settings.reports_dir
            )
            return FileDocumentService(settings.reports_dir)
    logger.info("GOOGLE_SERVICE_ACCOUNT_KEY not set, writing reports to %s", settings.reports_dir)
    return FileDocumentService(settings.reports_dir)
