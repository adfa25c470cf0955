"""Content generation endpoints.

Lesson content streams its progress as server-sent events; mind maps run
as background jobs that clients poll through the generation-status route.
"""

from typing import AsyncGenerator

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from classroom.core.generation_jobs import (
    JobConflictError,
    build_progress_update,
    run_mind_map_job,
    start_mind_map_job,
)
from classroom.core.lesson_generation import get_content_status, stream_generate_all_lessons
from classroom.core.progress_stream import encode_event
from classroom.db import jobs_repository
from classroom.db.gradebook_repository import get_base_class
from classroom.llm.client import LLMClient
from classroom.web.schemas import JobResponse, MindMapRequest

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["generation"])


def get_llm_client() -> LLMClient:
    """LLM client used by the generation routes (overridable in tests)."""
    return LLMClient()


def _base_class(base_class_id: str) -> dict:
    base_class = get_base_class(base_class_id)
    if base_class is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Base class '{base_class_id}' not found",
        )
    return base_class


async def _lesson_event_generator(base_class_id: str, client: LLMClient) -> AsyncGenerator[str, None]:
    async for event in stream_generate_all_lessons(base_class_id, client=client):
        yield encode_event(event)


@router.get("/api/teach/base-classes/{base_class_id}/content-status")
def content_status(base_class_id: str) -> dict:
    """How many lessons already have content."""
    _base_class(base_class_id)
    return get_content_status(base_class_id)


@router.post("/api/teach/base-classes/{base_class_id}/generate-all-lessons-content")
def generate_all_lessons_content(
    base_class_id: str,
    client: LLMClient = Depends(get_llm_client),
) -> StreamingResponse:
    """Generate content for every lesson that has none.

    The response is a ``data: <json>`` stream of ``start``, ``progress``
    and ``complete`` events.
    """
    _base_class(base_class_id)
    return StreamingResponse(
        _lesson_event_generator(base_class_id, client),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post(
    "/api/teach/base-classes/{base_class_id}/mind-map",
    response_model=JobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def create_mind_map(
    base_class_id: str,
    background_tasks: BackgroundTasks,
    request: MindMapRequest | None = None,
    client: LLMClient = Depends(get_llm_client),
) -> JobResponse:
    """Queue a mind-map job and run it after the response is sent."""
    base_class = _base_class(base_class_id)
    regenerate = request.regenerate if request is not None else False
    try:
        job = start_mind_map_job(base_class_id, regenerate=regenerate)
    except JobConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    background_tasks.add_task(run_mind_map_job, job["id"], base_class["name"], client)
    return JobResponse(job_id=job["id"], status=job["status"])


@router.get("/api/knowledge-base/generation-status/{job_id}")
def generation_status(job_id: str) -> dict:
    """Polling view of a generation job."""
    job = jobs_repository.get_job(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job '{job_id}' not found",
        )
    update = build_progress_update(job)
    payload = update.to_dict()
    payload["finished"] = update.finished
    if job["status"] == "completed":
        payload["result"] = job["result_data"].get("mind_map")
    return payload
