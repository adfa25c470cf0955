"""Per-student grade statistics.

Overall grade is the points-weighted average over graded rows only:
sum(points_earned) / sum(points_possible of the graded assignments).
"""

from __future__ import annotations

from typing import Iterable

from classroom.core.grade_entry import round_half_up
from classroom.core.models import Assignment, Grade, GradeStatistics, MasteryLevel

# (minimum percentage, letter), highest first
LETTER_SCALE: list[tuple[float, str]] = [
    (97, "A+"),
    (93, "A"),
    (90, "A-"),
    (87, "B+"),
    (83, "B"),
    (80, "B-"),
    (77, "C+"),
    (73, "C"),
    (70, "C-"),
    (67, "D+"),
    (63, "D"),
    (60, "D-"),
]


def letter_for_percentage(percentage: float) -> str:
    """Letter grade for an overall percentage."""
    for minimum, letter in LETTER_SCALE:
        if percentage >= minimum:
            return letter
    return "F"


def mastery_for_percentage(percentage: float) -> MasteryLevel:
    """Four-point mastery level for an overall percentage."""
    if percentage >= 90:
        return "advanced"
    if percentage >= 80:
        return "proficient"
    if percentage >= 70:
        return "approaching"
    return "below"


def calculate_grade_statistics(
    student_id: str,
    grades: Iterable[Grade],
    assignments: list[Assignment],
) -> GradeStatistics:
    """Compute overall grade, letter, missing/late counts and mastery.

    Args:
        student_id: Student whose rows are considered
        grades: All grade rows of the class (other students are ignored)
        assignments: Assignments of the class

    Returns:
        GradeStatistics for the student
    """
    student_rows = [g for g in grades if g.student_id == student_id]
    graded = [g for g in student_rows if g.status == "graded"]

    if not graded:
        return GradeStatistics(
            overall_grade=0.0,
            grade_letter="N/A",
            missing_assignments=len(assignments),
            late_assignments=0,
            mastery_level="below",
        )

    points_by_assignment = {a.id: a.points_possible for a in assignments}
    total_points = sum(g.points_earned or 0 for g in graded)
    total_possible = sum(points_by_assignment.get(g.assignment_id) or 0 for g in graded)

    overall = (total_points / total_possible) * 100 if total_possible > 0 else 0.0

    return GradeStatistics(
        overall_grade=round_half_up(overall),
        grade_letter=letter_for_percentage(overall),
        missing_assignments=sum(1 for g in student_rows if g.status == "missing"),
        late_assignments=sum(1 for g in student_rows if g.status == "late"),
        mastery_level=mastery_for_percentage(overall),
    )
