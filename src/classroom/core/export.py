"""Gradebook export (CSV and JSON).

CSV layout:
    Student, Email, <assignment names in column order...>, Overall Grade
    one row per student; a cell is the points earned or "N/A".
"""

from __future__ import annotations

import csv
import io
import json
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Literal

import structlog

from classroom.core.analytics import calculate_analytics
from classroom.core.grade_entry import format_number
from classroom.core.models import GradebookData, StudentSummary

logger = structlog.get_logger(__name__)

ExportFormat = Literal["csv", "json"]
DateRange = Literal["all", "current_term", "last_month", "custom"]
SUPPORTED_FORMATS: tuple[str, ...] = ("csv", "json")

NOT_AVAILABLE = "N/A"


class ExportError(Exception):
    """Error producing an export file."""

    pass


@dataclass
class ExportOptions:
    """Which sections go into a JSON export."""

    grades: bool = True
    students: bool = True
    assignments: bool = True
    feedback: bool = False
    analytics: bool = False
    standards: bool = False


def _overall_cell(student: StudentSummary) -> str:
    if student.grade_letter == NOT_AVAILABLE:
        return NOT_AVAILABLE
    return format_number(student.overall_grade)


def csv_header(data: GradebookData) -> list[str]:
    return ["Student", "Email", *[a.name for a in data.assignments], "Overall Grade"]


def csv_rows(data: GradebookData) -> list[list[str]]:
    rows = []
    for student in data.students:
        cells = []
        for assignment in data.assignments:
            grade = data.get_grade(student.id, assignment.id)
            if grade is None or grade.points_earned is None:
                cells.append(NOT_AVAILABLE)
            else:
                cells.append(format_number(grade.points_earned))
        rows.append([student.name, student.email, *cells, _overall_cell(student)])
    return rows


def export_csv(data: GradebookData) -> str:
    """Render the gradebook as CSV text."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(csv_header(data))
    writer.writerows(csv_rows(data))
    return buffer.getvalue()


def export_json(
    data: GradebookData,
    class_name: str,
    options: ExportOptions | None = None,
    date_range: DateRange = "all",
) -> str:
    """Render the selected gradebook sections as indented JSON."""
    options = options or ExportOptions()

    analytics = None
    if options.analytics:
        overview = calculate_analytics(data).overview
        analytics = {
            "classAverage": overview.class_average,
            "totalStudents": overview.total_students,
            "totalAssignments": len(data.assignments),
        }

    payload: dict[str, Any] = {
        "classInstance": class_name,
        "exportDate": datetime.now(timezone.utc).isoformat(),
        "dateRange": date_range,
        "students": [s.to_dict() for s in data.students] if options.students else [],
        "assignments": [a.to_dict() for a in data.assignments] if options.assignments else [],
        "grades": {k: g.to_dict() for k, g in data.grades.items()} if options.grades else {},
        "analytics": analytics,
        "standards": list(data.standards) if options.standards else [],
        "feedback": (
            [g.to_dict() for g in data.grades.values() if g.feedback] if options.feedback else []
        ),
    }
    return json.dumps(payload, indent=2, ensure_ascii=False)


def export_filename(class_name: str, fmt: str, today: date | None = None) -> str:
    """Download filename: <Class_Name>_gradebook_<YYYY-MM-DD>.<fmt>."""
    today = today or datetime.now(timezone.utc).date()
    safe_name = re.sub(r"\s+", "_", class_name)
    return f"{safe_name}_gradebook_{today.isoformat()}.{fmt}"


def export_gradebook(
    data: GradebookData,
    class_name: str,
    fmt: str,
    options: ExportOptions | None = None,
    date_range: DateRange = "all",
) -> tuple[str, str, str]:
    """Produce an export.

    Returns:
        Tuple of (filename, media type, content)

    Raises:
        ExportError: If the format is not supported
    """
    if fmt not in SUPPORTED_FORMATS:
        raise ExportError(
            f"Unsupported export format '{fmt}' (expected one of: {', '.join(SUPPORTED_FORMATS)})"
        )

    if fmt == "csv":
        content = export_csv(data)
        media_type = "text/csv"
    else:
        content = export_json(data, class_name, options, date_range)
        media_type = "application/json"

    filename = export_filename(class_name, fmt)
    logger.info(
        "gradebook.exported",
        format=fmt,
        students=len(data.students),
        assignments=len(data.assignments),
        filename=filename,
    )
    return filename, media_type, content
