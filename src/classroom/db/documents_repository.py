"""Repository functions for knowledge-base documents and their chunks.

Every write to ``documents`` is published on the change feed so that open
knowledge-base views can reconcile without re-fetching.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

import structlog

from classroom.backend.realtime import get_change_feed
from classroom.db.database import get_db

logger = structlog.get_logger(__name__)

DOCUMENT_STATUSES: tuple[str, ...] = ("queued", "processing", "completed", "error")


def _row_to_dict(row: sqlite3.Row) -> dict[str, Any]:
    data = dict(row)
    data["metadata"] = json.loads(data.get("metadata") or "{}")
    return data


def insert_document(
    base_class_id: str,
    organisation_id: str,
    file_name: str,
    file_type: str | None,
    file_size: int | None,
    storage_path: str | None,
    uploaded_by: str | None = None,
    status: str = "queued",
    metadata: dict[str, Any] | None = None,
    document_id: str | None = None,
) -> dict[str, Any]:
    """Insert a document metadata row and publish the INSERT."""
    document_id = document_id or str(uuid.uuid4())
    created_at = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO documents (
                id, base_class_id, organisation_id, uploaded_by, file_name,
                file_type, file_size, storage_path, status, metadata, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                document_id,
                base_class_id,
                organisation_id,
                uploaded_by,
                file_name,
                file_type,
                file_size,
                storage_path,
                status,
                json.dumps(metadata or {}),
                created_at,
            ),
        )

    document = get_document(document_id)
    logger.info("documents.inserted", document_id=document_id, file_name=file_name)
    get_change_feed().publish("documents", "INSERT", new=document)
    return document  # type: ignore[return-value]


def get_document(document_id: str) -> dict[str, Any] | None:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM documents WHERE id = ?", (document_id,)).fetchone()
    return _row_to_dict(row) if row else None


def list_documents(base_class_id: str) -> list[dict[str, Any]]:
    """Documents of a base class, newest first."""
    with get_db() as conn:
        rows = conn.execute(
            "SELECT * FROM documents WHERE base_class_id = ? ORDER BY created_at DESC",
            (base_class_id,),
        ).fetchall()
    return [_row_to_dict(r) for r in rows]


def update_document_status(
    document_id: str,
    status: str,
    metadata_update: dict[str, Any] | None = None,
) -> dict[str, Any] | None:
    """Set status and merge metadata keys. Publishes the UPDATE.

    Returns:
        Updated row, or None if the document no longer exists
    """
    if status not in DOCUMENT_STATUSES:
        raise ValueError(f"Invalid document status: {status}")

    old = get_document(document_id)
    if old is None:
        logger.warning("documents.update_missing", document_id=document_id, status=status)
        return None

    metadata = {**old["metadata"], **(metadata_update or {})}
    with get_db() as conn:
        conn.execute(
            "UPDATE documents SET status = ?, metadata = ? WHERE id = ?",
            (status, json.dumps(metadata), document_id),
        )

    new = get_document(document_id)
    logger.info("documents.status_changed", document_id=document_id, old=old["status"], new=status)
    get_change_feed().publish("documents", "UPDATE", new=new, old=old)
    return new


def delete_document_record(document_id: str) -> dict[str, Any] | None:
    """Delete a document row (chunks cascade). Publishes the DELETE.

    Returns:
        The deleted row, or None if it did not exist
    """
    old = get_document(document_id)
    if old is None:
        return None

    with get_db() as conn:
        conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))

    logger.info("documents.deleted", document_id=document_id)
    get_change_feed().publish("documents", "DELETE", old=old)
    return old


def replace_chunks(document_id: str, chunks: Iterable[tuple[str, int]]) -> int:
    """Replace the chunks of a document.

    Args:
        document_id: Owner document
        chunks: (content, token_count) pairs in order

    Returns:
        Number of chunks stored
    """
    rows = [(document_id, idx, content, tokens) for idx, (content, tokens) in enumerate(chunks)]
    with get_db() as conn:
        conn.execute("DELETE FROM document_chunks WHERE document_id = ?", (document_id,))
        conn.executemany(
            """
            INSERT INTO document_chunks (document_id, chunk_index, content, token_count)
            VALUES (?, ?, ?, ?)
            """,
            rows,
        )
    return len(rows)


def list_chunks(document_id: str) -> list[dict[str, Any]]:
    with get_db() as conn:
        rows = conn.execute(
            """
            SELECT chunk_index, content, token_count FROM document_chunks
            WHERE document_id = ? ORDER BY chunk_index
            """,
            (document_id,),
        ).fetchall()
    return [dict(r) for r in rows]
