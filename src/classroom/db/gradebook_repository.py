"""Repository functions for the gradebook tables.

Covers class structure (base classes, instances, roster), assignments,
grades, gradebook settings and standards, plus load_gradebook() which
assembles everything the grid renders for one class instance.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

import structlog

from classroom.core.grade_statistics import calculate_grade_statistics
from classroom.core.models import Assignment, Grade, GradebookData, StudentSummary
from classroom.db.database import get_db

logger = structlog.get_logger(__name__)

DEFAULT_GRADEBOOK_SETTINGS: dict[str, Any] = {
    "grading_scale": "percentage",
    "show_points": True,
    "show_percentages": True,
    "allow_late_submissions": True,
    "late_penalty": 0,
}

_ASSIGNMENT_FIELDS = (
    "name",
    "description",
    "type",
    "category",
    "points_possible",
    "due_date",
    "order_index",
)


class GradebookError(Exception):
    """Gradebook persistence error."""

    pass


class NotFoundError(GradebookError):
    """Referenced row does not exist."""

    pass


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# CLASS STRUCTURE
# =============================================================================


def create_base_class(
    organisation_id: str,
    name: str,
    description: str = "",
    base_class_id: str | None = None,
) -> dict[str, Any]:
    base_class_id = base_class_id or str(uuid.uuid4())
    with get_db() as conn:
        conn.execute(
            "INSERT INTO base_classes (id, organisation_id, name, description) VALUES (?, ?, ?, ?)",
            (base_class_id, organisation_id, name, description),
        )
    logger.debug("base_classes.created", base_class_id=base_class_id)
    return get_base_class(base_class_id)  # type: ignore[return-value]


def get_base_class(base_class_id: str) -> dict[str, Any] | None:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM base_classes WHERE id = ?", (base_class_id,)).fetchone()
    return dict(row) if row else None


def create_class_instance(
    base_class_id: str,
    name: str,
    enrollment_code: str | None = None,
    instance_id: str | None = None,
) -> dict[str, Any]:
    """Create a class instance of a base class.

    Raises:
        NotFoundError: If the base class does not exist
    """
    if get_base_class(base_class_id) is None:
        raise NotFoundError(f"Base class not found: {base_class_id}")

    instance_id = instance_id or str(uuid.uuid4())
    enrollment_code = enrollment_code or uuid.uuid4().hex[:8].upper()
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO class_instances (id, base_class_id, name, enrollment_code)
            VALUES (?, ?, ?, ?)
            """,
            (instance_id, base_class_id, name, enrollment_code),
        )
    logger.debug("class_instances.created", instance_id=instance_id, base_class_id=base_class_id)
    return get_class_instance(instance_id)  # type: ignore[return-value]


def get_class_instance(instance_id: str) -> dict[str, Any] | None:
    with get_db() as conn:
        row = conn.execute(
            """
            SELECT ci.*, bc.organisation_id, bc.name AS base_class_name
            FROM class_instances ci
            JOIN base_classes bc ON bc.id = ci.base_class_id
            WHERE ci.id = ?
            """,
            (instance_id,),
        ).fetchone()
    if row is None:
        return None
    data = dict(row)
    data["settings"] = json.loads(data["settings"] or "{}")
    return data


def add_profile(
    user_id: str,
    first_name: str,
    last_name: str,
    email: str,
    avatar_url: str | None = None,
) -> None:
    """Insert or update a user profile."""
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO profiles (user_id, first_name, last_name, email, avatar_url)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                first_name = excluded.first_name,
                last_name = excluded.last_name,
                email = excluded.email,
                avatar_url = excluded.avatar_url
            """,
            (user_id, first_name, last_name, email, avatar_url),
        )


def enroll_student(class_instance_id: str, user_id: str, role: str = "student") -> None:
    with get_db() as conn:
        conn.execute(
            """
            INSERT OR IGNORE INTO rosters (class_instance_id, user_id, role)
            VALUES (?, ?, ?)
            """,
            (class_instance_id, user_id, role),
        )
    logger.debug("rosters.enrolled", class_instance_id=class_instance_id, user_id=user_id)


def list_students(class_instance_id: str) -> list[dict[str, Any]]:
    """Students on the roster, ordered by last name then first name."""
    with get_db() as conn:
        rows = conn.execute(
            """
            SELECT p.user_id, p.first_name, p.last_name, p.email, p.avatar_url
            FROM rosters r
            JOIN profiles p ON p.user_id = r.user_id
            WHERE r.class_instance_id = ? AND r.role = 'student'
            ORDER BY p.last_name, p.first_name
            """,
            (class_instance_id,),
        ).fetchall()
    return [dict(r) for r in rows]


# =============================================================================
# ASSIGNMENTS
# =============================================================================


def _linked_standard_ids(conn: sqlite3.Connection, assignment_ids: list[str]) -> dict[str, list[str]]:
    """Standard ids linked to each assignment, in standard code order."""
    if not assignment_ids:
        return {}
    placeholders = ", ".join("?" for _ in assignment_ids)
    rows = conn.execute(
        f"""
        SELECT s.assignment_id, s.standard_id
        FROM assignment_standards s
        LEFT JOIN standards st ON st.id = s.standard_id
        WHERE s.assignment_id IN ({placeholders})
        ORDER BY st.code, s.standard_id
        """,
        assignment_ids,
    ).fetchall()
    linked: dict[str, list[str]] = {}
    for row in rows:
        linked.setdefault(row["assignment_id"], []).append(row["standard_id"])
    return linked


def _row_to_assignment(row: sqlite3.Row, standard_ids: list[str] | None = None) -> Assignment:
    return Assignment(
        id=row["id"],
        class_instance_id=row["class_instance_id"],
        name=row["name"],
        points_possible=row["points_possible"],
        type=row["type"],
        category=row["category"],
        description=row["description"],
        due_date=row["due_date"],
        order_index=row["order_index"],
        created_at=row["created_at"],
        standard_ids=standard_ids or [],
    )


def create_assignment(
    class_instance_id: str,
    name: str,
    points_possible: float = 100.0,
    type: str = "homework",
    category: str = "",
    description: str = "",
    due_date: str | None = None,
    order_index: int | None = None,
    assignment_id: str | None = None,
) -> Assignment:
    """Create an assignment column.

    New assignments go last unless order_index is given.
    """
    assignment_id = assignment_id or str(uuid.uuid4())
    with get_db() as conn:
        if order_index is None:
            row = conn.execute(
                "SELECT COALESCE(MAX(order_index) + 1, 0) FROM assignments WHERE class_instance_id = ?",
                (class_instance_id,),
            ).fetchone()
            order_index = row[0]

        conn.execute(
            """
            INSERT INTO assignments (
                id, class_instance_id, name, description, type, category,
                points_possible, due_date, order_index, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                assignment_id,
                class_instance_id,
                name,
                description,
                type,
                category,
                points_possible,
                due_date,
                order_index,
                _now(),
            ),
        )

    logger.info("assignments.created", assignment_id=assignment_id, name=name)
    return get_assignment(assignment_id)  # type: ignore[return-value]


def get_assignment(assignment_id: str) -> Assignment | None:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM assignments WHERE id = ?", (assignment_id,)).fetchone()
        if row is None:
            return None
        linked = _linked_standard_ids(conn, [assignment_id])
    return _row_to_assignment(row, linked.get(assignment_id))


def list_assignments(class_instance_id: str) -> list[Assignment]:
    with get_db() as conn:
        rows = conn.execute(
            """
            SELECT * FROM assignments
            WHERE class_instance_id = ?
            ORDER BY order_index, created_at
            """,
            (class_instance_id,),
        ).fetchall()
        linked = _linked_standard_ids(conn, [r["id"] for r in rows])
    return [_row_to_assignment(r, linked.get(r["id"])) for r in rows]


def update_assignment(assignment_id: str, **updates: Any) -> Assignment:
    """Update assignment columns.

    Raises:
        GradebookError: If an unknown column is given
        NotFoundError: If the assignment does not exist
    """
    unknown = set(updates) - set(_ASSIGNMENT_FIELDS)
    if unknown:
        raise GradebookError(f"Cannot update assignment fields: {', '.join(sorted(unknown))}")

    if get_assignment(assignment_id) is None:
        raise NotFoundError(f"Assignment not found: {assignment_id}")

    if updates:
        columns = ", ".join(f"{name} = ?" for name in updates)
        with get_db() as conn:
            conn.execute(
                f"UPDATE assignments SET {columns} WHERE id = ?",
                (*updates.values(), assignment_id),
            )
        logger.info("assignments.updated", assignment_id=assignment_id, fields=sorted(updates))

    return get_assignment(assignment_id)  # type: ignore[return-value]


def delete_assignment(assignment_id: str) -> bool:
    """Delete an assignment and its grades.

    Returns:
        True if a row was deleted
    """
    with get_db() as conn:
        cursor = conn.execute("DELETE FROM assignments WHERE id = ?", (assignment_id,))
    deleted = cursor.rowcount > 0
    logger.info("assignments.deleted", assignment_id=assignment_id, deleted=deleted)
    return deleted


def reorder_assignment(assignment_id: str, new_index: int) -> list[Assignment]:
    """Move an assignment to a new position and renumber the class.

    Returns:
        The assignments in their new order

    Raises:
        NotFoundError: If the assignment does not exist
    """
    moving = get_assignment(assignment_id)
    if moving is None:
        raise NotFoundError(f"Assignment not found: {assignment_id}")

    ordered = [a for a in list_assignments(moving.class_instance_id) if a.id != assignment_id]
    new_index = max(0, min(new_index, len(ordered)))
    ordered.insert(new_index, moving)

    with get_db() as conn:
        for index, assignment in enumerate(ordered):
            if assignment.order_index != index:
                conn.execute(
                    "UPDATE assignments SET order_index = ? WHERE id = ?",
                    (index, assignment.id),
                )
                assignment.order_index = index

    logger.info("assignments.reordered", assignment_id=assignment_id, new_index=new_index)
    return ordered


# =============================================================================
# GRADES
# =============================================================================


def _row_to_grade(row: sqlite3.Row) -> Grade:
    return Grade(
        id=row["id"],
        student_id=row["student_id"],
        assignment_id=row["assignment_id"],
        class_instance_id=row["class_instance_id"],
        points_earned=row["points_earned"],
        percentage=row["percentage"],
        letter_grade=row["letter_grade"],
        status=row["status"],
        feedback=row["feedback"],
        submitted_at=row["submitted_at"],
        graded_at=row["graded_at"],
        graded_by=row["graded_by"],
        updated_at=row["updated_at"],
    )


def get_grade(student_id: str, assignment_id: str) -> Grade | None:
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM grades WHERE student_id = ? AND assignment_id = ?",
            (student_id, assignment_id),
        ).fetchone()
    return _row_to_grade(row) if row else None


def list_grades(class_instance_id: str) -> list[Grade]:
    with get_db() as conn:
        rows = conn.execute(
            "SELECT * FROM grades WHERE class_instance_id = ?",
            (class_instance_id,),
        ).fetchall()
    return [_row_to_grade(r) for r in rows]


def upsert_grade(grade: Grade) -> Grade:
    """Insert or update the grade of (student, assignment).

    Raises:
        NotFoundError: If the assignment does not exist
    """
    grade_id = grade.id or str(uuid.uuid4())
    try:
        with get_db() as conn:
            conn.execute(
                """
                INSERT INTO grades (
                    id, student_id, assignment_id, class_instance_id,
                    points_earned, percentage, letter_grade, status, feedback,
                    submitted_at, graded_at, graded_by, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(student_id, assignment_id) DO UPDATE SET
                    points_earned = excluded.points_earned,
                    percentage = excluded.percentage,
                    letter_grade = excluded.letter_grade,
                    status = excluded.status,
                    feedback = COALESCE(excluded.feedback, grades.feedback),
                    submitted_at = COALESCE(excluded.submitted_at, grades.submitted_at),
                    graded_at = excluded.graded_at,
                    graded_by = excluded.graded_by,
                    updated_at = excluded.updated_at
                """,
                (
                    grade_id,
                    grade.student_id,
                    grade.assignment_id,
                    grade.class_instance_id,
                    grade.points_earned,
                    grade.percentage,
                    grade.letter_grade,
                    grade.status,
                    grade.feedback,
                    grade.submitted_at,
                    grade.graded_at,
                    grade.graded_by,
                    _now(),
                ),
            )
    except sqlite3.IntegrityError as e:
        raise NotFoundError(f"Assignment not found: {grade.assignment_id}") from e

    logger.info(
        "grades.upserted",
        student_id=grade.student_id,
        assignment_id=grade.assignment_id,
        status=grade.status,
    )
    return get_grade(grade.student_id, grade.assignment_id)  # type: ignore[return-value]


def delete_grade(student_id: str, assignment_id: str) -> bool:
    """Delete a grade. Returns True if a row was deleted."""
    with get_db() as conn:
        cursor = conn.execute(
            "DELETE FROM grades WHERE student_id = ? AND assignment_id = ?",
            (student_id, assignment_id),
        )
    deleted = cursor.rowcount > 0
    logger.info(
        "grades.deleted", student_id=student_id, assignment_id=assignment_id, deleted=deleted
    )
    return deleted


# =============================================================================
# SETTINGS
# =============================================================================


def get_gradebook_settings(class_instance_id: str) -> dict[str, Any]:
    """Stored settings merged over the defaults."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT settings FROM gradebook_settings WHERE class_instance_id = ?",
            (class_instance_id,),
        ).fetchone()
    stored = json.loads(row["settings"]) if row else {}
    return {**DEFAULT_GRADEBOOK_SETTINGS, **stored}


def upsert_gradebook_settings(class_instance_id: str, settings: dict[str, Any]) -> dict[str, Any]:
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO gradebook_settings (class_instance_id, settings, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(class_instance_id) DO UPDATE SET
                settings = excluded.settings,
                updated_at = excluded.updated_at
            """,
            (class_instance_id, json.dumps(settings), _now()),
        )
    logger.info("gradebook_settings.saved", class_instance_id=class_instance_id)
    return get_gradebook_settings(class_instance_id)


# =============================================================================
# STANDARDS
# =============================================================================


def create_standard(
    organisation_id: str,
    code: str,
    description: str = "",
    standard_id: str | None = None,
) -> dict[str, Any]:
    standard_id = standard_id or str(uuid.uuid4())
    with get_db() as conn:
        conn.execute(
            "INSERT INTO standards (id, organisation_id, code, description) VALUES (?, ?, ?, ?)",
            (standard_id, organisation_id, code, description),
        )
    return {"id": standard_id, "organisation_id": organisation_id, "code": code, "description": description}


def list_standards(organisation_id: str) -> list[dict[str, Any]]:
    with get_db() as conn:
        rows = conn.execute(
            "SELECT id, organisation_id, code, description FROM standards WHERE organisation_id = ? ORDER BY code",
            (organisation_id,),
        ).fetchall()
    return [dict(r) for r in rows]


def link_assignment_to_standards(assignment_id: str, standard_ids: list[str]) -> Assignment:
    """Replace the standards linked to an assignment.

    Raises:
        NotFoundError: If the assignment or one of the standards does not exist
    """
    standard_ids = list(dict.fromkeys(standard_ids))
    with get_db() as conn:
        if conn.execute("SELECT 1 FROM assignments WHERE id = ?", (assignment_id,)).fetchone() is None:
            raise NotFoundError(f"Assignment not found: {assignment_id}")
        if standard_ids:
            placeholders = ", ".join("?" for _ in standard_ids)
            found = {
                r["id"]
                for r in conn.execute(
                    f"SELECT id FROM standards WHERE id IN ({placeholders})", standard_ids
                ).fetchall()
            }
            missing = [sid for sid in standard_ids if sid not in found]
            if missing:
                raise NotFoundError(f"Standard not found: {', '.join(missing)}")
        conn.execute("DELETE FROM assignment_standards WHERE assignment_id = ?", (assignment_id,))
        conn.executemany(
            "INSERT INTO assignment_standards (assignment_id, standard_id) VALUES (?, ?)",
            [(assignment_id, sid) for sid in standard_ids],
        )

    logger.info("assignments.standards_linked", assignment_id=assignment_id, standards=len(standard_ids))
    return get_assignment(assignment_id)  # type: ignore[return-value]


# =============================================================================
# ASSEMBLED VIEW
# =============================================================================


def _standards_with_links(organisation_id: str, assignments: list[Assignment]) -> list[dict[str, Any]]:
    """Organisation standards, each with the ids of the linked assignments of this class."""
    standards = list_standards(organisation_id)
    for standard in standards:
        standard["assignment_ids"] = [a.id for a in assignments if standard["id"] in a.standard_ids]
    return standards


def load_gradebook(class_instance_id: str) -> GradebookData:
    """Assemble the gradebook of a class instance.

    Raises:
        NotFoundError: If the class instance does not exist
    """
    instance = get_class_instance(class_instance_id)
    if instance is None:
        raise NotFoundError(f"Class instance not found: {class_instance_id}")

    assignments = list_assignments(class_instance_id)
    grades = list_grades(class_instance_id)

    students = []
    for row in list_students(class_instance_id):
        stats = calculate_grade_statistics(row["user_id"], grades, assignments)
        students.append(
            StudentSummary(
                id=row["user_id"],
                name=f"{row['first_name']} {row['last_name']}".strip(),
                email=row["email"],
                avatar_url=row["avatar_url"],
                overall_grade=stats.overall_grade,
                grade_letter=stats.grade_letter,
                missing_assignments=stats.missing_assignments,
                late_assignments=stats.late_assignments,
                mastery_level=stats.mastery_level,
            )
        )

    data = GradebookData(
        students=students,
        assignments=assignments,
        grades={g.key: g for g in grades},
        standards=_standards_with_links(instance["organisation_id"], assignments),
        settings=get_gradebook_settings(class_instance_id),
    )
    logger.debug(
        "gradebook.loaded",
        class_instance_id=class_instance_id,
        students=len(students),
        assignments=len(assignments),
        grades=len(grades),
    )
    return data
