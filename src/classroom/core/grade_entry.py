"""Grade cell entry.

Translates what a teacher types into a gradebook cell into a normalized
grade record, and back into the text shown in the cell.

The active view mode decides how the typed value is read:
- percentage: "85" → percentage 85, points derived from points_possible
- points: "17" → points_earned 17, percentage derived from points_possible
- letter: "b+" → letter_grade "B+"

An empty cell means "remove the grade".
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

from classroom.core.models import Grade

ViewMode = Literal["percentage", "points", "letter"]
VIEW_MODES: tuple[str, ...] = ("percentage", "points", "letter")

# Leading number, like a lenient parseFloat ("85", "85.5%", "17 pts")
_NUMBER_PREFIX = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


class GradeEntryError(Exception):
    """Error translating a cell value into a grade."""

    pass


@dataclass
class GradeEntry:
    """Normalized values parsed from one cell edit."""

    points_earned: float | None = None
    percentage: float | None = None
    letter_grade: str | None = None


@dataclass
class CellDisplay:
    """What a grid cell shows and the raw value put in its editor."""

    display: str
    value: str
    tone: Literal["success", "info", "warning", "danger", "muted", "default"] = "default"


def round_half_up(value: float, digits: int = 2) -> float:
    """Round half away from zero for positives (matches Math.round semantics)."""
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def _parse_number(text: str) -> float | None:
    match = _NUMBER_PREFIX.match(text)
    if not match:
        return None
    number = float(match.group(1))
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def parse_grade_cell(
    value: str,
    view_mode: ViewMode,
    points_possible: float | None,
) -> GradeEntry | None:
    """Parse an edited cell value.

    Args:
        value: Raw text typed in the cell
        view_mode: Active grid view mode
        points_possible: Points the assignment is worth (None if unknown)

    Returns:
        GradeEntry with the normalized values, or None when the cell was
        cleared (the existing grade should be deleted).

    Raises:
        GradeEntryError: If view_mode is unknown
    """
    if view_mode not in VIEW_MODES:
        raise GradeEntryError(f"Unknown view mode: {view_mode!r}")

    text = value.strip()
    if not text:
        return None

    entry = GradeEntry()

    if view_mode == "percentage":
        pct = _parse_number(text)
        if pct is not None and 0 <= pct <= 100:
            entry.percentage = pct
            if points_possible:
                entry.points_earned = round_half_up((pct / 100) * points_possible)
    elif view_mode == "points":
        pts = _parse_number(text)
        if pts is not None and pts >= 0:
            entry.points_earned = pts
            if points_possible and points_possible > 0:
                entry.percentage = round_half_up((pts / points_possible) * 100)
    else:
        entry.letter_grade = text.upper()

    return entry


def build_grade(
    entry: GradeEntry,
    student_id: str,
    assignment_id: str,
    class_instance_id: str,
    graded_by: str | None = None,
) -> Grade:
    """Turn a parsed entry into the graded row sent to the upsert."""
    return Grade(
        student_id=student_id,
        assignment_id=assignment_id,
        class_instance_id=class_instance_id,
        points_earned=entry.points_earned,
        percentage=entry.percentage,
        letter_grade=entry.letter_grade,
        status="graded",
        graded_at=datetime.now(timezone.utc).isoformat(),
        graded_by=graded_by,
    )


def _percentage_tone(percentage: float) -> str:
    if percentage >= 90:
        return "success"
    if percentage >= 80:
        return "info"
    if percentage >= 70:
        return "warning"
    return "danger"


def format_grade_cell(
    grade: Grade | None,
    points_possible: float,
    view_mode: ViewMode,
) -> CellDisplay:
    """Render a grade for the grid in the given view mode."""
    if grade is None:
        return CellDisplay(display="-", value="", tone="muted")

    if grade.status == "missing":
        return CellDisplay(display="Missing", value="", tone="danger")

    if grade.status == "late":
        value = format_number(grade.percentage) if grade.percentage is not None else ""
        return CellDisplay(display="Late", value=value, tone="warning")

    if grade.status == "excused":
        return CellDisplay(display="Excused", value="", tone="muted")

    if view_mode == "percentage" and grade.percentage is not None:
        text = format_number(grade.percentage)
        return CellDisplay(display=f"{text}%", value=text, tone=_percentage_tone(grade.percentage))

    if view_mode == "points" and grade.points_earned is not None:
        text = format_number(grade.points_earned)
        return CellDisplay(display=f"{text}/{format_number(points_possible)}", value=text)

    if view_mode == "letter" and grade.letter_grade:
        return CellDisplay(display=grade.letter_grade, value=grade.letter_grade)

    return CellDisplay(display="-", value="", tone="muted")
