"""Class analytics over an assembled gradebook.

Simple aggregation arithmetic: class average, completion and grading
progress, grade distribution and per-assignment-type averages.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from classroom.core.grade_entry import round_half_up
from classroom.core.models import GradebookData, Grade


@dataclass
class AnalyticsOverview:
    total_students: int = 0
    class_average: float = 0.0
    completion_rate: float = 0.0
    at_risk_students: int = 0
    excelling_students: int = 0
    grading_progress: float = 0.0


@dataclass
class DistributionBucket:
    grade: str
    count: int
    percentage: float


@dataclass
class AssignmentTypeAverage:
    type: str
    average: float
    count: int


@dataclass
class ClassAnalytics:
    """Analytics dashboard figures for one class instance."""

    overview: AnalyticsOverview = field(default_factory=AnalyticsOverview)
    grade_distribution: list[DistributionBucket] = field(default_factory=list)
    assignment_types: list[AssignmentTypeAverage] = field(default_factory=list)
    standards: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# (letter, lower bound inclusive, upper bound exclusive)
_DISTRIBUTION = [
    ("A", 90, None),
    ("B", 80, 90),
    ("C", 70, 80),
    ("D", 60, 70),
    ("F", None, 60),
]


def _has_submission(grade: Grade | None) -> bool:
    return grade is not None and grade.points_earned is not None and grade.status != "missing"


def calculate_analytics(data: GradebookData) -> ClassAnalytics:
    """Compute the analytics dashboard for a gradebook.

    Returns zeroed figures when there are no students or no assignments.
    """
    students = data.students
    assignments = data.assignments

    if not students or not assignments:
        return ClassAnalytics(standards=list(data.standards))

    student_grades = [s.overall_grade or 0 for s in students]
    class_average = sum(student_grades) / len(student_grades)

    cells = [data.get_grade(s.id, a.id) for s in students for a in assignments]
    total_possible = len(cells)

    submitted = sum(1 for g in cells if _has_submission(g))
    graded = sum(1 for g in cells if g is not None and g.points_earned is not None and g.graded_at)

    completion_rate = (submitted / total_possible) * 100 if total_possible else 0.0
    grading_progress = (graded / total_possible) * 100 if total_possible else 0.0

    distribution = []
    for letter, low, high in _DISTRIBUTION:
        count = sum(
            1
            for avg in student_grades
            if (low is None or avg >= low) and (high is None or avg < high)
        )
        distribution.append(
            DistributionBucket(
                grade=letter,
                count=count,
                percentage=round_half_up((count / len(students)) * 100, 1),
            )
        )

    # type -> (running total of assignment averages, number of assignments)
    by_type: dict[str, list[float]] = {}
    for assignment in assignments:
        percentages = []
        for student in students:
            grade = data.get_grade(student.id, assignment.id)
            if not _has_submission(grade):
                continue
            if assignment.points_possible > 0:
                percentages.append((grade.points_earned / assignment.points_possible) * 100)
            else:
                percentages.append(0.0)

        if not percentages:
            continue

        average = sum(percentages) / len(percentages)
        totals = by_type.setdefault(assignment.type or "Assignment", [0.0, 0])
        totals[0] += average
        totals[1] += 1

    assignment_types = [
        AssignmentTypeAverage(type=t, average=round_half_up(total / count, 1), count=int(count))
        for t, (total, count) in by_type.items()
    ]

    return ClassAnalytics(
        overview=AnalyticsOverview(
            total_students=len(students),
            class_average=round_half_up(class_average, 1),
            completion_rate=round_half_up(completion_rate, 1),
            at_risk_students=sum(1 for avg in student_grades if avg < 70),
            excelling_students=sum(1 for avg in student_grades if avg >= 90),
            grading_progress=round_half_up(grading_progress, 1),
        ),
        grade_distribution=distribution,
        assignment_types=assignment_types,
        standards=list(data.standards),
    )
