"""Gradebook data records.

Plain dataclasses mirroring the rows the gradebook reads (assignments,
grades, roster students) plus the assembled view used by the grid,
analytics and export.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

GradeStatus = Literal["graded", "missing", "late", "excused", "pending"]
MasteryLevel = Literal["below", "approaching", "proficient", "advanced"]


def grade_key(student_id: str, assignment_id: str) -> str:
    """Composite key used to look up a grade in the grid."""
    return f"{student_id}-{assignment_id}"


@dataclass
class Assignment:
    """An assignment column in the gradebook."""

    id: str
    class_instance_id: str
    name: str
    points_possible: float = 100.0
    type: str = "homework"
    category: str = ""
    description: str = ""
    due_date: str | None = None
    order_index: int = 0
    created_at: str = ""
    standard_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Grade:
    """A single student × assignment grade row."""

    student_id: str
    assignment_id: str
    class_instance_id: str
    id: str = ""
    points_earned: float | None = None
    percentage: float | None = None
    letter_grade: str | None = None
    status: GradeStatus = "graded"
    feedback: str | None = None
    submitted_at: str | None = None
    graded_at: str | None = None
    graded_by: str | None = None
    updated_at: str | None = None

    @property
    def key(self) -> str:
        return grade_key(self.student_id, self.assignment_id)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class GradeStatistics:
    """Per-student figures derived from the grade rows."""

    overall_grade: float
    grade_letter: str
    missing_assignments: int
    late_assignments: int
    mastery_level: MasteryLevel


@dataclass
class StudentSummary:
    """A roster row enriched with computed grade statistics."""

    id: str
    name: str
    email: str
    avatar_url: str | None = None
    overall_grade: float = 0.0
    grade_letter: str = "N/A"
    missing_assignments: int = 0
    late_assignments: int = 0
    mastery_level: MasteryLevel = "below"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class GradebookData:
    """Everything the gradebook views render for one class instance."""

    students: list[StudentSummary] = field(default_factory=list)
    assignments: list[Assignment] = field(default_factory=list)
    grades: dict[str, Grade] = field(default_factory=dict)
    standards: list[dict[str, Any]] = field(default_factory=list)
    settings: dict[str, Any] | None = None

    def get_grade(self, student_id: str, assignment_id: str) -> Grade | None:
        return self.grades.get(grade_key(student_id, assignment_id))

    def to_dict(self) -> dict[str, Any]:
        return {
            "students": [s.to_dict() for s in self.students],
            "assignments": [a.to_dict() for a in self.assignments],
            "grades": {k: g.to_dict() for k, g in self.grades.items()},
            "standards": self.standards,
            "settings": self.settings,
        }
