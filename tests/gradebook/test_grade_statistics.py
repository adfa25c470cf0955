"""Tests for per-student grade statistics."""

import pytest

from classroom.core.grade_statistics import (
    calculate_grade_statistics,
    letter_for_percentage,
    mastery_for_percentage,
)
from classroom.core.models import Assignment, Grade


def _assignments():
    return [
        Assignment(id="a1", class_instance_id="ci", name="HW", points_possible=20),
        Assignment(id="a2", class_instance_id="ci", name="Quiz", points_possible=50),
        Assignment(id="a3", class_instance_id="ci", name="Essay", points_possible=30),
    ]


class TestLetterScale:
    @pytest.mark.parametrize(
        "percentage,letter",
        [
            (100, "A+"),
            (97, "A+"),
            (96.99, "A"),
            (93, "A"),
            (90, "A-"),
            (89.99, "B+"),
            (83, "B"),
            (80, "B-"),
            (77, "C+"),
            (73, "C"),
            (70, "C-"),
            (67, "D+"),
            (63, "D"),
            (60, "D-"),
            (59.99, "F"),
            (0, "F"),
        ],
    )
    def test_letter_boundaries(self, percentage, letter):
        assert letter_for_percentage(percentage) == letter

    @pytest.mark.parametrize(
        "percentage,level",
        [(95, "advanced"), (90, "advanced"), (85, "proficient"), (70, "approaching"), (69.9, "below")],
    )
    def test_mastery_levels(self, percentage, level):
        assert mastery_for_percentage(percentage) == level


class TestCalculateGradeStatistics:
    """Tests for calculate_grade_statistics()."""

    def test_points_weighted_average(self):
        """18/20 and 40/50 -> 58/70 = 82.86%."""
        grades = [
            Grade("s1", "a1", "ci", points_earned=18),
            Grade("s1", "a2", "ci", points_earned=40),
        ]
        stats = calculate_grade_statistics("s1", grades, _assignments())

        assert stats.overall_grade == 82.86
        assert stats.grade_letter == "B"
        assert stats.mastery_level == "proficient"

    def test_only_graded_rows_count(self):
        """Missing and late rows are counted but excluded from the average."""
        grades = [
            Grade("s1", "a1", "ci", points_earned=20),
            Grade("s1", "a2", "ci", status="missing"),
            Grade("s1", "a3", "ci", points_earned=10, status="late"),
        ]
        stats = calculate_grade_statistics("s1", grades, _assignments())

        assert stats.overall_grade == 100.0
        assert stats.missing_assignments == 1
        assert stats.late_assignments == 1

    def test_other_students_ignored(self):
        grades = [
            Grade("s1", "a1", "ci", points_earned=10),
            Grade("s2", "a1", "ci", points_earned=20),
        ]
        stats = calculate_grade_statistics("s1", grades, _assignments())
        assert stats.overall_grade == 50.0

    def test_no_graded_rows(self):
        """Nothing graded -> N/A with every assignment counted as missing."""
        stats = calculate_grade_statistics("s1", [], _assignments())

        assert stats.overall_grade == 0.0
        assert stats.grade_letter == "N/A"
        assert stats.missing_assignments == 3
        assert stats.late_assignments == 0
        assert stats.mastery_level == "below"

    def test_graded_row_without_points_counts_as_zero(self):
        grades = [
            Grade("s1", "a1", "ci", points_earned=None, letter_grade="B"),
            Grade("s1", "a2", "ci", points_earned=50),
        ]
        stats = calculate_grade_statistics("s1", grades, _assignments())
        assert stats.overall_grade == round(50 / 70 * 100, 2)

    def test_zero_points_possible(self):
        assignments = [Assignment(id="a1", class_instance_id="ci", name="Bonus", points_possible=0)]
        grades = [Grade("s1", "a1", "ci", points_earned=5)]
        stats = calculate_grade_statistics("s1", grades, assignments)

        assert stats.overall_grade == 0.0
        assert stats.grade_letter == "F"
