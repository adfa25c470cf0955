"""Repository functions for lessons, assessments and learner progress."""

from __future__ import annotations

import json
import sqlite3
import uuid
from typing import Any

import structlog

from classroom.core.progress import (
    COMPLETED_ASSESSMENT_STATUSES,
    COMPLETED_LESSON_STATUSES,
    PathProgress,
    calculate_overall_progress,
)
from classroom.db.database import get_db

logger = structlog.get_logger(__name__)


def _row_to_lesson(row: sqlite3.Row) -> dict[str, Any]:
    data = dict(row)
    data["content"] = json.loads(data["content"]) if data.get("content") else None
    return data


def create_lesson(
    base_class_id: str,
    title: str,
    description: str = "",
    path_title: str = "",
    order_index: int = 0,
    content: dict[str, Any] | None = None,
    lesson_id: str | None = None,
) -> dict[str, Any]:
    lesson_id = lesson_id or str(uuid.uuid4())
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO lessons (id, base_class_id, path_title, title, description, order_index, content)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                lesson_id,
                base_class_id,
                path_title,
                title,
                description,
                order_index,
                json.dumps(content) if content is not None else None,
            ),
        )
    logger.debug("lessons.created", lesson_id=lesson_id, base_class_id=base_class_id)
    return get_lesson(lesson_id)  # type: ignore[return-value]


def get_lesson(lesson_id: str) -> dict[str, Any] | None:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM lessons WHERE id = ?", (lesson_id,)).fetchone()
    return _row_to_lesson(row) if row else None


def list_lessons(base_class_id: str) -> list[dict[str, Any]]:
    with get_db() as conn:
        rows = conn.execute(
            "SELECT * FROM lessons WHERE base_class_id = ? ORDER BY order_index, created_at",
            (base_class_id,),
        ).fetchall()
    return [_row_to_lesson(r) for r in rows]


def set_lesson_content(lesson_id: str, content: dict[str, Any]) -> None:
    with get_db() as conn:
        conn.execute(
            "UPDATE lessons SET content = ? WHERE id = ?",
            (json.dumps(content, ensure_ascii=False), lesson_id),
        )
    logger.info("lessons.content_saved", lesson_id=lesson_id, sections=len(content.get("sections", [])))


def create_assessment(
    base_class_id: str,
    title: str,
    lesson_id: str | None = None,
    assessment_id: str | None = None,
) -> dict[str, Any]:
    assessment_id = assessment_id or str(uuid.uuid4())
    with get_db() as conn:
        conn.execute(
            "INSERT INTO assessments (id, base_class_id, lesson_id, title) VALUES (?, ?, ?, ?)",
            (assessment_id, base_class_id, lesson_id, title),
        )
    return {"id": assessment_id, "base_class_id": base_class_id, "lesson_id": lesson_id, "title": title}


def record_progress(
    user_id: str,
    item_type: str,
    item_id: str,
    status: str,
    progress_percentage: float = 0,
) -> None:
    """Insert or update a learner's progress on a lesson or assessment."""
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO progress (user_id, item_type, item_id, status, progress_percentage, updated_at)
            VALUES (?, ?, ?, ?, ?, datetime('now'))
            ON CONFLICT(user_id, item_type, item_id) DO UPDATE SET
                status = excluded.status,
                progress_percentage = excluded.progress_percentage,
                updated_at = excluded.updated_at
            """,
            (user_id, item_type, item_id, status, progress_percentage),
        )


def get_base_class_progress(user_id: str, base_class_id: str) -> PathProgress:
    """Overall progress of a learner through a base class."""
    with get_db() as conn:
        total_lessons = conn.execute(
            "SELECT COUNT(*) FROM lessons WHERE base_class_id = ?", (base_class_id,)
        ).fetchone()[0]
        total_assessments = conn.execute(
            "SELECT COUNT(*) FROM assessments WHERE base_class_id = ?", (base_class_id,)
        ).fetchone()[0]

        lesson_marks = ",".join("?" for _ in COMPLETED_LESSON_STATUSES)
        completed_lessons = conn.execute(
            f"""
            SELECT COUNT(*) FROM progress p
            JOIN lessons l ON l.id = p.item_id
            WHERE p.user_id = ? AND p.item_type = 'lesson'
              AND l.base_class_id = ? AND p.status IN ({lesson_marks})
            """,
            (user_id, base_class_id, *COMPLETED_LESSON_STATUSES),
        ).fetchone()[0]

        assessment_marks = ",".join("?" for _ in COMPLETED_ASSESSMENT_STATUSES)
        completed_assessments = conn.execute(
            f"""
            SELECT COUNT(*) FROM progress p
            JOIN assessments a ON a.id = p.item_id
            WHERE p.user_id = ? AND p.item_type = 'assessment'
              AND a.base_class_id = ? AND p.status IN ({assessment_marks})
            """,
            (user_id, base_class_id, *COMPLETED_ASSESSMENT_STATUSES),
        ).fetchone()[0]

    return calculate_overall_progress(
        total_lessons=total_lessons,
        completed_lessons=completed_lessons,
        total_assessments=total_assessments,
        completed_assessments=completed_assessments,
    )
