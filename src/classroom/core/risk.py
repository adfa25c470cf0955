"""Student risk classification and grid filters."""

from __future__ import annotations

from typing import Iterable, Literal

from classroom.core.models import StudentSummary

RiskLevel = Literal["high", "medium", "low"]
StudentFilter = Literal["all", "at-risk", "excelling"]

HIGH_RISK_GRADE = 60
MEDIUM_RISK_GRADE = 75
HIGH_RISK_MISSING = 3
MEDIUM_RISK_MISSING = 1


def classify_risk(overall_grade: float | None, missing_assignments: int | None) -> RiskLevel:
    """Classify a student's risk level.

    high:   grade below 60% or more than 3 missing assignments
    medium: grade below 75% or more than 1 missing assignment
    low:    otherwise

    Missing values count as 0.
    """
    grade = overall_grade or 0
    missing = missing_assignments or 0

    if grade < HIGH_RISK_GRADE or missing > HIGH_RISK_MISSING:
        return "high"
    if grade < MEDIUM_RISK_GRADE or missing > MEDIUM_RISK_MISSING:
        return "medium"
    return "low"


def _matches_search(student: StudentSummary, search: str) -> bool:
    needle = search.lower()
    return needle in student.name.lower() or needle in student.email.lower()


def filter_students(
    students: Iterable[StudentSummary],
    filter_by: StudentFilter = "all",
    search: str = "",
) -> list[StudentSummary]:
    """Apply the grid's search box and quick filter.

    at-risk:   grade below 75% or more than one missing assignment
    excelling: grade of 90% or more and nothing missing
    """
    result = []
    for student in students:
        if search and not _matches_search(student, search):
            continue

        grade = student.overall_grade or 0
        missing = student.missing_assignments or 0

        if filter_by == "at-risk" and not (grade < 75 or missing > 1):
            continue
        if filter_by == "excelling" and not (grade >= 90 and missing == 0):
            continue

        result.append(student)
    return result
