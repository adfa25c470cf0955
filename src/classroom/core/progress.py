"""Learning-path progress.

Lessons weigh 80% and assessments 20% when a path has both; when only one
kind exists it counts for the whole.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from classroom.core.grade_entry import round_half_up

PathStatus = Literal["not_started", "in_progress", "completed"]

LESSON_WEIGHT = 0.8
ASSESSMENT_WEIGHT = 0.2

# Progress rows in these states count as done
COMPLETED_LESSON_STATUSES = ("completed",)
COMPLETED_ASSESSMENT_STATUSES = ("completed", "passed")


@dataclass
class PathProgress:
    progress_percentage: int
    status: PathStatus
    completed_lessons: int
    total_lessons: int
    completed_assessments: int
    total_assessments: int


def calculate_overall_progress(
    total_lessons: int,
    completed_lessons: int,
    total_assessments: int,
    completed_assessments: int,
) -> PathProgress:
    """Blend lesson and assessment completion into one percentage."""
    lesson_pct = (completed_lessons / total_lessons) * 100 if total_lessons > 0 else 0.0
    assessment_pct = (
        (completed_assessments / total_assessments) * 100 if total_assessments > 0 else 0.0
    )

    if total_lessons > 0 and total_assessments > 0:
        overall = lesson_pct * LESSON_WEIGHT + assessment_pct * ASSESSMENT_WEIGHT
    elif total_lessons > 0:
        overall = lesson_pct
    elif total_assessments > 0:
        overall = assessment_pct
    else:
        overall = 0.0

    percentage = int(round_half_up(overall, 0))

    status: PathStatus = "not_started"
    if percentage >= 100:
        status = "completed"
    elif percentage > 0:
        status = "in_progress"

    return PathProgress(
        progress_percentage=percentage,
        status=status,
        completed_lessons=completed_lessons,
        total_lessons=total_lessons,
        completed_assessments=completed_assessments,
        total_assessments=total_assessments,
    )
