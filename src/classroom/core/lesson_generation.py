"""Lesson content generation.

Fills lessons that have no content yet with LLM-written sections and
reports progress as typed events:

    start     → how many lessons will be generated, how many were skipped
    progress  → one per finished lesson (success or failed)
    complete  → overall status and counts

Lessons are generated concurrently (generation.concurrency); a failed
lesson is reported in its progress event and not retried.
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

import structlog

from classroom.config.app_config import load_app_config
from classroom.core.progress_stream import (
    CompleteEvent,
    GenerationEvent,
    ProgressEvent,
    StartEvent,
)
from classroom.db import documents_repository, lessons_repository
from classroom.llm.client import LLMClient, LLMError

logger = structlog.get_logger(__name__)

NOTHING_TO_PROCESS = "No lessons needed processing."
MAX_CONTEXT_CHARS = 6000

SYSTEM_PROMPT_LESSON = """You are an experienced teacher writing lesson content for a course.
Write clear, accurate material at the level implied by the course and lesson titles.

Answer ONLY with JSON in this format:
{
  "sections": [
    {"title": "Section title", "content": "Markdown body of the section"}
  ]
}

Write between 3 and 6 sections. Start with an introduction and end with a short summary."""

USER_PROMPT_LESSON = """Course path: {path_title}
Lesson: {title}
Lesson description: {description}

{context_block}Write the lesson sections."""


class GenerationError(Exception):
    """Lesson content could not be generated."""

    pass


def needs_content(lesson: dict[str, Any]) -> bool:
    content = lesson.get("content")
    return not content or not content.get("sections")


def overall_status(successful: int, failed: int, total: int) -> str:
    """Summary status sent in the ``complete`` event."""
    if failed == 0 and successful == total:
        return "All successful"
    if successful > 0 and failed > 0:
        return "Completed with some failures"
    if successful > 0 and failed == 0:
        return "All processed tasks successful"
    if failed > 0 and successful == 0 and total > 0:
        return "All failed"
    if total == 0:
        return "No lessons were processed"
    return "Unknown"


def knowledge_context(base_class_id: str, max_chars: int = MAX_CONTEXT_CHARS) -> str:
    """Leading chunks of the base class's processed documents."""
    parts: list[str] = []
    used = 0
    for document in documents_repository.list_documents(base_class_id):
        if document["status"] != "completed":
            continue
        for chunk in documents_repository.list_chunks(document["id"]):
            if used + len(chunk["content"]) > max_chars:
                return "\n\n".join(parts)
            parts.append(chunk["content"])
            used += len(chunk["content"])
    return "\n\n".join(parts)


def generate_lesson_content(
    lesson: dict[str, Any],
    client: LLMClient,
    context: str = "",
) -> dict[str, Any]:
    """Ask the LLM for the sections of one lesson.

    Returns:
        {"sections": [{"title": ..., "content": ...}, ...]}

    Raises:
        GenerationError: If the LLM fails or returns no usable sections
    """
    context_block = f"Source material:\n<<<\n{context}\n>>>\n\n" if context else ""
    user_prompt = USER_PROMPT_LESSON.format(
        path_title=lesson.get("path_title") or "(none)",
        title=lesson["title"],
        description=lesson.get("description") or "(none)",
        context_block=context_block,
    )

    try:
        result = client.simple_json(SYSTEM_PROMPT_LESSON, user_prompt)
    except LLMError as e:
        raise GenerationError(f"LLM error: {e}") from e

    sections = [
        {"title": str(s.get("title", "")).strip(), "content": str(s.get("content", "")).strip()}
        for s in result.get("sections", [])
        if isinstance(s, dict) and s.get("content")
    ]
    if not sections:
        raise GenerationError("LLM returned no lesson sections")

    return {"sections": sections}


def get_content_status(base_class_id: str) -> dict[str, Any]:
    """How many lessons of a base class already have content."""
    lessons = lessons_repository.list_lessons(base_class_id)
    with_content = sum(1 for lesson in lessons if not needs_content(lesson))
    return {
        "hasExistingContent": with_content > 0,
        "allLessonsHaveContent": bool(lessons) and with_content == len(lessons),
        "totalLessons": len(lessons),
        "lessonsWithContent": with_content,
        "lessonsNeedingContent": len(lessons) - with_content,
    }


def _generate_and_save(lesson: dict[str, Any], client: LLMClient, context: str) -> None:
    content = generate_lesson_content(lesson, client, context)
    lessons_repository.set_lesson_content(lesson["id"], content)


async def stream_generate_all_lessons(
    base_class_id: str,
    client: LLMClient | None = None,
    concurrency: int | None = None,
) -> AsyncIterator[GenerationEvent]:
    """Generate every lesson without content, yielding progress events."""
    lessons = await asyncio.to_thread(lessons_repository.list_lessons, base_class_id)
    to_process = [lesson for lesson in lessons if needs_content(lesson)]
    skipped = len(lessons) - len(to_process)
    total = len(to_process)

    logger.info(
        "lesson_generation_started",
        base_class_id=base_class_id,
        to_process=total,
        skipped=skipped,
    )
    yield StartEvent(total_to_process=total, skipped=skipped)

    if total == 0:
        yield CompleteEvent(overall_status=NOTHING_TO_PROCESS, skipped_count=skipped)
        return

    if client is None:
        client = await asyncio.to_thread(LLMClient)
    context = await asyncio.to_thread(knowledge_context, base_class_id)
    semaphore = asyncio.Semaphore(concurrency or load_app_config().generation.concurrency)

    async def run(lesson: dict[str, Any]) -> tuple[dict[str, Any], str | None]:
        async with semaphore:
            try:
                await asyncio.to_thread(_generate_and_save, lesson, client, context)
            except Exception as e:
                logger.error("lesson_generation_failed", lesson_id=lesson["id"], error=str(e))
                return lesson, str(e)
            return lesson, None

    tasks = [asyncio.create_task(run(lesson)) for lesson in to_process]
    successful = failed = processed = 0
    for finished in asyncio.as_completed(tasks):
        lesson, error = await finished
        processed += 1
        if error is None:
            successful += 1
        else:
            failed += 1
        yield ProgressEvent(
            lesson_id=lesson["id"],
            lesson_title=lesson["title"],
            status="success" if error is None else "failed",
            processed_count=processed,
            total_lessons_to_process=total,
            error=error,
        )

    status = overall_status(successful, failed, total)
    logger.info(
        "lesson_generation_finished",
        base_class_id=base_class_id,
        status=status,
        successful=successful,
        failed=failed,
        skipped=skipped,
    )
    yield CompleteEvent(
        overall_status=status,
        successful_count=successful,
        failed_count=failed,
        skipped_count=skipped,
    )
