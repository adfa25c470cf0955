"""Polling-mode generation jobs (mind maps).

A job row carries a list of tasks; clients poll the job and turn it into
a ProgressUpdate until the job reaches ``completed`` or ``failed``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from classroom.db import jobs_repository, lessons_repository
from classroom.llm.client import LLMClient

logger = structlog.get_logger(__name__)

MIND_MAP_JOB = "mind_map"
TERMINAL_STATUSES = ("completed", "failed")

MIND_MAP_TASKS = ("collect_lesson_content", "generate_mind_map", "save_mind_map")

SYSTEM_PROMPT_MIND_MAP = """You build study mind maps from course material.

Answer ONLY with JSON in this format:
{
  "center": {"label": "Course topic"},
  "branches": [
    {"label": "Main idea", "children": [{"label": "Supporting concept"}]}
  ]
}

Use 4 to 7 branches with 2 to 5 children each. Labels are short (max 8 words)."""

USER_PROMPT_MIND_MAP = """Course: {course_name}

Lesson material:
<<<
{material}
>>>"""

MAX_MATERIAL_CHARS = 12000


class JobConflictError(Exception):
    """A completed job of this type already exists."""

    pass


class JobNotFoundError(Exception):
    pass


def is_terminal(status: str | None) -> bool:
    return status in TERMINAL_STATUSES


@dataclass
class ProgressUpdate:
    """What a polling client shows for a job."""

    job_id: str
    status: str
    overall_progress: int
    current_phase: str
    phase_description: str
    detailed_message: str
    estimated_time_remaining: str
    live_message: dict[str, Any] | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def finished(self) -> bool:
        return is_terminal(self.status)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _detailed_message(tasks: list[dict[str, Any]]) -> str:
    total = len(tasks)
    if total == 0:
        return "Setting up course generation..."

    finished = sum(1 for t in tasks if t.get("status") in ("completed", "failed"))
    running = [t for t in tasks if t.get("status") == "running"]

    if running:
        task_type = running[0].get("type")
        if task_type:
            return f"Generating {task_type.replace('_', ' ')} ({finished}/{total} completed)"
        return f"Processing tasks ({finished}/{total} completed)"
    if finished == 0:
        return f"Starting course generation ({total} tasks queued)"
    return f"Processing course content ({finished}/{total} completed)"


def build_progress_update(job: dict[str, Any]) -> ProgressUpdate:
    """Derive the progress shown for a job row."""
    result = job.get("result_data") or {}
    tasks = job.get("tasks") or []

    total = len(tasks)
    finished = sum(1 for t in tasks if t.get("status") in ("completed", "failed"))
    task_progress = round(finished / total * 100) if total > 0 else 0

    detailed = result.get("detailed_message")
    if not detailed or detailed == "Initializing...":
        detailed = _detailed_message(tasks)

    return ProgressUpdate(
        job_id=job["id"],
        status=job.get("status", "queued"),
        overall_progress=job.get("progress_percentage") or task_progress,
        current_phase=result.get("current_phase") or "processing",
        phase_description=result.get("phase_description") or "Generating course content",
        detailed_message=detailed,
        estimated_time_remaining=result.get("estimated_time_remaining") or "Calculating...",
        live_message=result.get("live_message"),
    )


def get_mind_map(base_class_id: str) -> dict[str, Any] | None:
    """The latest generated mind map of a base class, if any."""
    job = jobs_repository.find_latest_job(base_class_id, MIND_MAP_JOB, status="completed")
    if job is None:
        return None
    return job["result_data"].get("mind_map")


def start_mind_map_job(base_class_id: str, regenerate: bool = False) -> dict[str, Any]:
    """Queue a mind-map job for a base class.

    Raises:
        JobConflictError: If a mind map exists and regenerate is False
    """
    if get_mind_map(base_class_id) is not None and not regenerate:
        raise JobConflictError("A mind map already exists for this base class")

    tasks = [{"id": name, "type": name, "status": "queued"} for name in MIND_MAP_TASKS]
    job = jobs_repository.create_job(base_class_id, MIND_MAP_JOB, tasks)
    logger.info("mind_map_job_queued", job_id=job["id"], base_class_id=base_class_id)
    return job


def _set_task(job_id: str, tasks: list[dict[str, Any]], name: str, status: str) -> None:
    for task in tasks:
        if task["id"] == name:
            task["status"] = status
    jobs_repository.update_job(job_id, status="running", tasks=tasks)


def _lesson_material(base_class_id: str) -> str:
    parts = []
    for lesson in lessons_repository.list_lessons(base_class_id):
        parts.append(f"## {lesson['title']}")
        if lesson.get("description"):
            parts.append(lesson["description"])
        for section in (lesson.get("content") or {}).get("sections", []):
            parts.append(f"### {section.get('title', '')}\n{section.get('content', '')}")
    return "\n\n".join(parts)[:MAX_MATERIAL_CHARS]


def run_mind_map_job(job_id: str, course_name: str, client: LLMClient | None = None) -> dict[str, Any]:
    """Execute a queued mind-map job to completion.

    Failures end the job as ``failed`` with the error in result_data.

    Raises:
        JobNotFoundError: If the job does not exist
    """
    job = jobs_repository.get_job(job_id)
    if job is None:
        raise JobNotFoundError(f"Job not found: {job_id}")

    tasks = job["tasks"]
    jobs_repository.update_job(
        job_id,
        status="running",
        result_data={"current_phase": "processing", "detailed_message": "Initializing..."},
    )

    current = MIND_MAP_TASKS[0]
    try:
        _set_task(job_id, tasks, current, "running")
        material = _lesson_material(job["base_class_id"])
        if not material.strip():
            raise ValueError("The base class has no lessons to map")
        _set_task(job_id, tasks, current, "completed")

        current = MIND_MAP_TASKS[1]
        _set_task(job_id, tasks, current, "running")
        client = client or LLMClient()
        mind_map = client.simple_json(
            SYSTEM_PROMPT_MIND_MAP,
            USER_PROMPT_MIND_MAP.format(course_name=course_name, material=material),
        )
        if not isinstance(mind_map, dict) or not mind_map.get("branches"):
            raise ValueError("LLM returned a mind map without branches")
        _set_task(job_id, tasks, current, "completed")

        current = MIND_MAP_TASKS[2]
        _set_task(job_id, tasks, current, "running")
        _set_task(job_id, tasks, current, "completed")
    except Exception as e:
        _set_task(job_id, tasks, current, "failed")
        logger.error("mind_map_job_failed", job_id=job_id, task=current, error=str(e))
        return jobs_repository.update_job(  # type: ignore[return-value]
            job_id,
            status="failed",
            result_data={
                "current_phase": "failed",
                "detailed_message": f"Mind map generation failed: {e}",
                "error": str(e),
                "live_message": {
                    "message": str(e),
                    "level": "error",
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
            },
        )

    logger.info("mind_map_job_completed", job_id=job_id, branches=len(mind_map["branches"]))
    return jobs_repository.update_job(  # type: ignore[return-value]
        job_id,
        status="completed",
        progress_percentage=100,
        result_data={
            "current_phase": "completed",
            "phase_description": "Mind map ready",
            "detailed_message": "Mind map generated",
            "estimated_time_remaining": "0s",
            "mind_map": mind_map,
        },
    )
