"""Knowledge-base ingestion.

A base class owns a list of source documents (uploaded files, pasted URLs,
pasted text, audio recordings). Ingesting one:

    1. show a ``pending`` placeholder, then ``processing``
    2. upload the raw bytes to org-<organisation_id>-uploads
    3. insert the ``documents`` row (status ``queued``)
    4. invoke the processing function for the document

From then on the row moves queued → processing → completed | error and
every change arrives through the change feed; KnowledgeBaseList folds
those changes into the local list (last write wins, newest first).
"""

from __future__ import annotations

import mimetypes
import re
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Literal

import structlog

from classroom.backend.functions import FunctionInvocationError, FunctionRegistry, get_function_registry
from classroom.backend.realtime import Change
from classroom.backend.storage import BucketStore, StorageError, get_bucket_store
from classroom.db import documents_repository

logger = structlog.get_logger(__name__)

ItemType = Literal["file", "url", "text", "youtube", "audio_recording"]
ItemStatus = Literal["pending", "processing", "queued", "completed", "error"]

PROCESS_DOCUMENT = "process-document"
PROCESS_TEXTFILE = "kb-process-textfile"

MAX_FILENAME_LENGTH = 200
URL_NAME_PREVIEW = 50


class KnowledgeBaseError(Exception):
    """Ingestion or deletion of a knowledge-base document failed."""

    pass


@dataclass
class KnowledgeBaseItem:
    """One row of the knowledge-base list."""

    id: str
    name: str
    type: ItemType
    status: ItemStatus
    created_at: str
    source_info: str
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def bucket_name(organisation_id: str) -> str:
    return f"org-{organisation_id}-uploads"


def is_youtube_url(url: str) -> bool:
    return "youtube.com" in url or "youtu.be" in url


def sanitize_filename(filename: str) -> str:
    """Make a filename safe for an object path.

    Keeps [A-Za-z0-9._-], turns whitespace into underscores, collapses
    dot runs and -/_ runs, drops a leading dot and caps the length at
    200 characters while keeping the extension.
    """
    sanitized = re.sub(r"\s+", "_", filename)
    sanitized = re.sub(r"[^a-zA-Z0-9._-]", "", sanitized)
    sanitized = re.sub(r"\.{2,}", ".", sanitized)
    sanitized = re.sub(r"[-_]{2,}", "_", sanitized)

    if sanitized.startswith(".") and len(sanitized) > 1:
        sanitized = sanitized[1:]

    if len(sanitized) > MAX_FILENAME_LENGTH:
        match = re.search(r"(\.[^.]+)$", sanitized)
        extension = match.group(1) if match else ""
        stem = sanitized[: len(sanitized) - len(extension)] if extension else sanitized
        sanitized = stem[: MAX_FILENAME_LENGTH - len(extension)] + extension

    return sanitized or "sanitized_filename"


def item_from_document(row: dict[str, Any]) -> KnowledgeBaseItem:
    """Map a ``documents`` row to a list item."""
    metadata = row.get("metadata") or {}
    file_type = row.get("file_type")

    item_type: ItemType = "file"
    source_info = file_type or "Unknown file type"

    original_url = metadata.get("originalUrl")
    if file_type == "application/json" and original_url:
        source_info = original_url
        item_type = "youtube" if is_youtube_url(original_url) else "url"
    elif file_type and file_type.startswith("audio/"):
        item_type = "audio_recording"
    elif file_type == "text/plain" and metadata.get("source") == "pasted_text":
        item_type = "text"
        source_info = "Pasted text snippet"

    return KnowledgeBaseItem(
        id=row["id"],
        name=row.get("file_name") or "Untitled",
        type=item_type,
        status=row.get("status", "queued"),
        created_at=row.get("created_at") or "",
        source_info=source_info,
        error_message=metadata.get("processing_error") or None,
    )


def _sort_key(item: KnowledgeBaseItem) -> datetime:
    try:
        parsed = datetime.fromisoformat(item.created_at)
    except ValueError:
        return datetime.min.replace(tzinfo=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class KnowledgeBaseList:
    """Local view of a base class's documents, kept in sync by changes."""

    def __init__(self, items: list[KnowledgeBaseItem] | None = None):
        self.items: list[KnowledgeBaseItem] = list(items or [])
        self._sort()

    @classmethod
    def from_documents(cls, rows: list[dict[str, Any]]) -> "KnowledgeBaseList":
        return cls([item_from_document(r) for r in rows])

    def _sort(self) -> None:
        self.items.sort(key=_sort_key, reverse=True)

    def get(self, item_id: str) -> KnowledgeBaseItem | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def ids(self) -> list[str]:
        return [item.id for item in self.items]

    def apply_change(self, change: Change | dict[str, Any]) -> None:
        """Fold a realtime change into the list.

        INSERT adds the row unless it is already present, UPDATE replaces
        it, DELETE removes it.
        """
        if isinstance(change, Change):
            event_type, new, old = change.event_type, change.new, change.old
        else:
            event_type = change.get("eventType") or change.get("event_type")
            new, old = change.get("new"), change.get("old")

        if event_type == "INSERT" and new:
            item = item_from_document(new)
            if self.get(item.id) is None:
                self.items.append(item)
                self._sort()
        elif event_type == "UPDATE" and new:
            item = item_from_document(new)
            self.items = [item if existing.id == item.id else existing for existing in self.items]
            self._sort()
        elif event_type == "DELETE" and old:
            self.items = [existing for existing in self.items if existing.id != old.get("id")]

    # -- optimistic placeholders -------------------------------------------

    def add_placeholder(self, name: str, item_type: ItemType, source_info: str) -> KnowledgeBaseItem:
        item = KnowledgeBaseItem(
            id=str(uuid.uuid4()),
            name=name,
            type=item_type,
            status="pending",
            created_at=datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            source_info=source_info,
        )
        self.items.insert(0, item)
        return item

    def set_status(self, item_id: str, status: ItemStatus, error_message: str | None = None) -> None:
        item = self.get(item_id)
        if item is not None:
            item.status = status
            if error_message is not None:
                item.error_message = error_message

    def replace(self, placeholder_id: str, item: KnowledgeBaseItem) -> None:
        """Swap a placeholder for the stored row, dropping any duplicate."""
        self.items = [
            existing for existing in self.items if existing.id not in (placeholder_id, item.id)
        ]
        self.items.append(item)
        self._sort()


class KnowledgeBaseIngestor:
    """Adds documents to one base class's knowledge base.

    Args:
        base_class: Row with at least ``id`` and ``organisation_id``
        uploaded_by: User recorded as the uploader
        items: Optional local list that receives placeholders
    """

    def __init__(
        self,
        base_class: dict[str, Any],
        uploaded_by: str | None = None,
        items: KnowledgeBaseList | None = None,
        store: BucketStore | None = None,
        functions: FunctionRegistry | None = None,
    ):
        if not base_class.get("id") or not base_class.get("organisation_id"):
            raise KnowledgeBaseError("Base class or organisation information is missing.")
        self.base_class_id: str = base_class["id"]
        self.organisation_id: str = base_class["organisation_id"]
        self.uploaded_by = uploaded_by
        self.items = items if items is not None else KnowledgeBaseList()
        self.store = store or get_bucket_store()
        self.functions = functions or get_function_registry()

    @property
    def bucket(self) -> str:
        return bucket_name(self.organisation_id)

    def _object_path(self, file_name: str) -> str:
        return f"base_class_documents/{self.base_class_id}/{file_name}"

    def add_file(
        self,
        file_name: str,
        data: bytes,
        content_type: str | None = None,
    ) -> KnowledgeBaseItem:
        """Upload a file and queue it for processing.

        Raises:
            KnowledgeBaseError: If the upload or the record insert fails
        """
        content_type = content_type or mimetypes.guess_type(file_name)[0] or "application/octet-stream"
        placeholder = self.items.add_placeholder(file_name, "file", content_type)
        self.items.set_status(placeholder.id, "processing")

        path = self._object_path(f"{uuid.uuid4()}-{sanitize_filename(file_name)}")
        try:
            self.store.upload(self.bucket, path, data, content_type)
            row = documents_repository.insert_document(
                base_class_id=self.base_class_id,
                organisation_id=self.organisation_id,
                uploaded_by=self.uploaded_by,
                file_name=file_name,
                file_type=content_type,
                file_size=len(data),
                storage_path=path,
                metadata={"original_filename": file_name, "client_side_id": placeholder.id},
            )
        except StorageError as e:
            self.items.set_status(placeholder.id, "error", str(e))
            logger.error("kb_upload_failed", file_name=file_name, error=str(e))
            raise KnowledgeBaseError(f"Storage upload failed: {e}") from e

        self.items.replace(placeholder.id, item_from_document(row))

        is_text = content_type == "text/plain" or file_name.endswith(".txt")
        function = PROCESS_TEXTFILE if is_text else PROCESS_DOCUMENT
        return self._invoke(function, row["id"])

    def add_pasted(self, value: str) -> KnowledgeBaseItem:
        """Add a pasted URL (http/https) or a pasted text snippet.

        Raises:
            KnowledgeBaseError: If the input is empty or storing it fails
        """
        if not value.strip():
            raise KnowledgeBaseError("Input is empty. Please paste a URL or some text.")

        is_url = value.startswith("http://") or value.startswith("https://")
        preview = value[:100] + ("..." if len(value) > 100 else "")
        if is_url:
            item_type: ItemType = "youtube" if is_youtube_url(value) else "url"
            placeholder = self.items.add_placeholder(preview, item_type, preview)
        else:
            placeholder = self.items.add_placeholder("Pasted Text Snippet", "text", preview)
        self.items.set_status(placeholder.id, "processing")

        if is_url:
            name = f"URL - {value[:URL_NAME_PREVIEW]}{'...' if len(value) > URL_NAME_PREVIEW else ''}"
            row = documents_repository.insert_document(
                base_class_id=self.base_class_id,
                organisation_id=self.organisation_id,
                uploaded_by=self.uploaded_by,
                file_name=name,
                file_type="application/json",
                file_size=None,
                storage_path=None,
                metadata={
                    "originalUrl": value,
                    "source": "youtube_url" if item_type == "youtube" else "pasted_url",
                },
            )
            function = PROCESS_DOCUMENT
        else:
            data = value.encode("utf-8")
            path = self._object_path(f"pasted-text-{uuid.uuid4()}.txt")
            try:
                self.store.upload(self.bucket, path, data, "text/plain")
            except StorageError as e:
                self.items.set_status(placeholder.id, "error", str(e))
                raise KnowledgeBaseError(f"Storage upload failed for pasted text: {e}") from e
            row = documents_repository.insert_document(
                base_class_id=self.base_class_id,
                organisation_id=self.organisation_id,
                uploaded_by=self.uploaded_by,
                file_name="Pasted Text Snippet",
                file_type="text/plain",
                file_size=len(data),
                storage_path=path,
                metadata={"source": "pasted_text"},
            )
            function = PROCESS_TEXTFILE

        self.items.replace(placeholder.id, item_from_document(row))
        return self._invoke(function, row["id"])

    def add_recording(self, data: bytes, content_type: str = "audio/wav") -> KnowledgeBaseItem:
        """Upload an audio recording for transcription."""
        recording_id = uuid.uuid4()
        file_name = f"recorded-audio-{recording_id}.wav"
        placeholder = self.items.add_placeholder(file_name, "audio_recording", content_type)
        self.items.set_status(placeholder.id, "processing")

        path = self._object_path(file_name)
        try:
            self.store.upload(self.bucket, path, data, content_type)
        except StorageError as e:
            self.items.set_status(placeholder.id, "error", str(e))
            raise KnowledgeBaseError(f"Storage upload failed for recording: {e}") from e

        row = documents_repository.insert_document(
            base_class_id=self.base_class_id,
            organisation_id=self.organisation_id,
            uploaded_by=self.uploaded_by,
            file_name=file_name,
            file_type=content_type,
            file_size=len(data),
            storage_path=path,
            metadata={"source": "audio_recording", "original_filename": file_name},
        )
        self.items.replace(placeholder.id, item_from_document(row))
        return self._invoke(PROCESS_DOCUMENT, row["id"])

    def _invoke(self, function: str, document_id: str) -> KnowledgeBaseItem:
        """Run the processing function; a failed invocation marks the row error."""
        logger.info("kb_processing_invoked", function=function, document_id=document_id)
        try:
            self.functions.invoke(function, {"documentId": document_id})
        except FunctionInvocationError as e:
            logger.error("kb_ingest_failed", function=function, document_id=document_id, error=str(e))
            documents_repository.update_document_status(
                document_id,
                "error",
                {"processing_error": f"Function invocation failed: {e}"},
            )

        row = documents_repository.get_document(document_id)
        item = item_from_document(row)  # type: ignore[arg-type]
        self.items.replace(item.id, item)
        return item


def delete_document(document_id: str, store: BucketStore | None = None) -> None:
    """Remove a document's stored object and its record.

    Raises:
        KnowledgeBaseError: If the document does not exist
    """
    row = documents_repository.get_document(document_id)
    if row is None:
        raise KnowledgeBaseError(f"Document not found: {document_id}")

    if row.get("storage_path"):
        store = store or get_bucket_store()
        store.remove(bucket_name(row["organisation_id"]), [row["storage_path"]])

    documents_repository.delete_document_record(document_id)
    logger.info("kb_document_deleted", document_id=document_id)
