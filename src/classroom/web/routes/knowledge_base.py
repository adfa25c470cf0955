"""Knowledge-base endpoints: documents of a base class and their changes."""

import asyncio
import json
from typing import AsyncGenerator

import structlog
from fastapi import APIRouter, File, Form, HTTPException, UploadFile, status
from fastapi.responses import StreamingResponse

from classroom.backend.realtime import Change, get_change_feed
from classroom.core.knowledge_base import (
    KnowledgeBaseError,
    KnowledgeBaseIngestor,
    KnowledgeBaseList,
    delete_document,
)
from classroom.db import documents_repository
from classroom.db.gradebook_repository import get_base_class
from classroom.web.schemas import DocumentListResponse, PasteRequest

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/teach/base-classes", tags=["knowledge-base"])

KEEPALIVE_SECONDS = 30.0


def _base_class(base_class_id: str) -> dict:
    base_class = get_base_class(base_class_id)
    if base_class is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Base class '{base_class_id}' not found",
        )
    return base_class


@router.get("/{base_class_id}/documents", response_model=DocumentListResponse)
def list_documents(base_class_id: str) -> DocumentListResponse:
    """Knowledge-base items, newest first."""
    _base_class(base_class_id)
    items = KnowledgeBaseList.from_documents(documents_repository.list_documents(base_class_id))
    documents = [item.to_dict() for item in items.items]
    return DocumentListResponse(documents=documents, count=len(documents))


@router.post("/{base_class_id}/documents", status_code=status.HTTP_201_CREATED)
def upload_document(
    base_class_id: str,
    file: UploadFile = File(...),
    uploaded_by: str | None = Form(default=None),
    recording: bool = Form(default=False),
) -> dict:
    """Upload a file or an audio recording and process it."""
    ingestor = KnowledgeBaseIngestor(_base_class(base_class_id), uploaded_by=uploaded_by)
    data = file.file.read()
    try:
        if recording:
            item = ingestor.add_recording(data, file.content_type or "audio/wav")
        else:
            item = ingestor.add_file(file.filename or "upload", data, file.content_type)
    except KnowledgeBaseError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return item.to_dict()


@router.post("/{base_class_id}/documents/paste", status_code=status.HTTP_201_CREATED)
def paste(base_class_id: str, request: PasteRequest) -> dict:
    """Add a pasted URL or text snippet."""
    ingestor = KnowledgeBaseIngestor(_base_class(base_class_id), uploaded_by=request.uploaded_by)
    try:
        item = ingestor.add_pasted(request.value)
    except KnowledgeBaseError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return item.to_dict()


@router.delete("/{base_class_id}/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_document(base_class_id: str, document_id: str) -> None:
    row = documents_repository.get_document(document_id)
    if row is None or row["base_class_id"] != base_class_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Document '{document_id}' not found",
        )
    try:
        delete_document(document_id)
    except KnowledgeBaseError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


async def _change_generator(
    base_class_id: str,
    idle_timeout: float | None,
) -> AsyncGenerator[str, None]:
    """Relay ``documents`` changes of one base class as SSE."""
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[Change] = asyncio.Queue()

    subscription = get_change_feed().subscribe(
        "documents",
        lambda change: loop.call_soon_threadsafe(queue.put_nowait, change),
        filter_column="base_class_id",
        filter_value=base_class_id,
    )
    logger.info("document_changes_stream_opened", base_class_id=base_class_id)

    wait = KEEPALIVE_SECONDS if idle_timeout is None else idle_timeout
    try:
        yield ": subscribed\n\n"
        while True:
            try:
                change = await asyncio.wait_for(queue.get(), timeout=wait)
            except asyncio.TimeoutError:
                if idle_timeout is not None:
                    return
                yield ": keepalive\n\n"
                continue
            yield f"event: change\ndata: {json.dumps(change.to_dict())}\n\n"
    finally:
        subscription.close()
        logger.info("document_changes_stream_closed", base_class_id=base_class_id)


@router.get("/{base_class_id}/documents/changes")
def stream_changes(base_class_id: str, idle_timeout: float | None = None) -> StreamingResponse:
    """Stream INSERT/UPDATE/DELETE changes of the base class's documents.

    With ``idle_timeout`` the stream ends after that many seconds without
    a change; otherwise it stays open and sends keepalive comments.
    """
    _base_class(base_class_id)
    return StreamingResponse(
        _change_generator(base_class_id, idle_timeout),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
