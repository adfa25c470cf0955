"""Repository functions for generation jobs (polling-mode progress)."""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

import structlog

from classroom.db.database import get_db

logger = structlog.get_logger(__name__)

JOB_STATUSES: tuple[str, ...] = ("queued", "running", "completed", "failed")


def _row_to_job(row: sqlite3.Row) -> dict[str, Any]:
    data = dict(row)
    data["tasks"] = json.loads(data["tasks"] or "[]")
    data["result_data"] = json.loads(data["result_data"] or "{}")
    return data


def create_job(
    base_class_id: str,
    job_type: str,
    tasks: list[dict[str, Any]] | None = None,
    job_id: str | None = None,
) -> dict[str, Any]:
    job_id = job_id or str(uuid.uuid4())
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO generation_jobs (id, base_class_id, job_type, status, tasks)
            VALUES (?, ?, ?, 'queued', ?)
            """,
            (job_id, base_class_id, job_type, json.dumps(tasks or [])),
        )
    logger.info("jobs.created", job_id=job_id, job_type=job_type)
    return get_job(job_id)  # type: ignore[return-value]


def get_job(job_id: str) -> dict[str, Any] | None:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM generation_jobs WHERE id = ?", (job_id,)).fetchone()
    return _row_to_job(row) if row else None


def update_job(
    job_id: str,
    status: str | None = None,
    progress_percentage: int | None = None,
    tasks: list[dict[str, Any]] | None = None,
    result_data: dict[str, Any] | None = None,
) -> dict[str, Any] | None:
    """Update the given job columns (None leaves a column unchanged)."""
    if status is not None and status not in JOB_STATUSES:
        raise ValueError(f"Invalid job status: {status}")

    updates: dict[str, Any] = {"updated_at": datetime.now(timezone.utc).isoformat()}
    if status is not None:
        updates["status"] = status
    if progress_percentage is not None:
        updates["progress_percentage"] = progress_percentage
    if tasks is not None:
        updates["tasks"] = json.dumps(tasks)
    if result_data is not None:
        updates["result_data"] = json.dumps(result_data, ensure_ascii=False)

    columns = ", ".join(f"{name} = ?" for name in updates)
    with get_db() as conn:
        conn.execute(
            f"UPDATE generation_jobs SET {columns} WHERE id = ?",
            (*updates.values(), job_id),
        )
    return get_job(job_id)


def find_latest_job(base_class_id: str, job_type: str, status: str | None = None) -> dict[str, Any] | None:
    """Most recent job of a type for a base class, optionally by status."""
    query = "SELECT * FROM generation_jobs WHERE base_class_id = ? AND job_type = ?"
    params: list[Any] = [base_class_id, job_type]
    if status is not None:
        query += " AND status = ?"
        params.append(status)
    query += " ORDER BY created_at DESC, rowid DESC LIMIT 1"

    with get_db() as conn:
        row = conn.execute(query, params).fetchone()
    return _row_to_job(row) if row else None
