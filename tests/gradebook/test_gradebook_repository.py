"""Tests for the gradebook repository."""

import pytest

from classroom.core.models import Grade
from classroom.db import gradebook_repository as repo


class TestAssignments:
    """Tests for assignment CRUD and ordering."""

    def test_new_assignments_go_last(self, gradebook_class):
        created = repo.create_assignment(gradebook_class["id"], "Essay", points_possible=30)
        assert created.order_index == 2
        names = [a.name for a in repo.list_assignments(gradebook_class["id"])]
        assert names == ["Homework 1", "Quiz 1", "Essay"]

    def test_update(self, gradebook_class):
        updated = repo.update_assignment("a-hw", name="Homework 1b", points_possible=25)
        assert updated.name == "Homework 1b"
        assert updated.points_possible == 25

    def test_update_unknown_field(self, gradebook_class):
        with pytest.raises(repo.GradebookError, match="Cannot update"):
            repo.update_assignment("a-hw", class_instance_id="other")

    def test_update_missing_assignment(self, gradebook_class):
        with pytest.raises(repo.NotFoundError):
            repo.update_assignment("nope", name="x")

    def test_reorder(self, gradebook_class):
        repo.create_assignment(gradebook_class["id"], "Essay", assignment_id="a-essay")
        ordered = repo.reorder_assignment("a-essay", 0)

        assert [a.id for a in ordered] == ["a-essay", "a-hw", "a-quiz"]
        assert [a.order_index for a in ordered] == [0, 1, 2]
        assert [a.id for a in repo.list_assignments(gradebook_class["id"])] == [
            "a-essay",
            "a-hw",
            "a-quiz",
        ]

    def test_reorder_clamps_index(self, gradebook_class):
        ordered = repo.reorder_assignment("a-hw", 99)
        assert [a.id for a in ordered] == ["a-quiz", "a-hw"]

    def test_delete_cascades_grades(self, gradebook_class):
        assert repo.delete_assignment("a-hw") is True
        assert repo.get_grade("s-ana", "a-hw") is None
        assert repo.delete_assignment("a-hw") is False


class TestGrades:
    """Tests for grade upserts."""

    def test_upsert_updates_existing_row(self, gradebook_class):
        before = repo.get_grade("s-ana", "a-hw")
        after = repo.upsert_grade(
            Grade("s-ana", "a-hw", gradebook_class["id"], points_earned=20, percentage=100)
        )

        assert after.id == before.id
        assert after.points_earned == 20
        assert len([g for g in repo.list_grades(gradebook_class["id"]) if g.key == "s-ana-a-hw"]) == 1

    def test_upsert_keeps_feedback_when_not_given(self, gradebook_class):
        repo.upsert_grade(Grade("s-zoe", "a-hw", gradebook_class["id"], points_earned=5, feedback="Late start"))
        repo.upsert_grade(Grade("s-zoe", "a-hw", gradebook_class["id"], points_earned=8))
        assert repo.get_grade("s-zoe", "a-hw").feedback == "Late start"

    def test_upsert_unknown_assignment(self, gradebook_class):
        with pytest.raises(repo.NotFoundError):
            repo.upsert_grade(Grade("s-ana", "missing-assignment", gradebook_class["id"], points_earned=1))

    def test_delete_grade(self, gradebook_class):
        assert repo.delete_grade("s-ana", "a-hw") is True
        assert repo.delete_grade("s-ana", "a-hw") is False


class TestSettings:
    def test_defaults(self, gradebook_class):
        settings = repo.get_gradebook_settings(gradebook_class["id"])
        assert settings == repo.DEFAULT_GRADEBOOK_SETTINGS

    def test_stored_values_merge_over_defaults(self, gradebook_class):
        repo.upsert_gradebook_settings(gradebook_class["id"], {"late_penalty": 10})
        settings = repo.get_gradebook_settings(gradebook_class["id"])

        assert settings["late_penalty"] == 10
        assert settings["grading_scale"] == "percentage"


class TestLoadGradebook:
    """Tests for load_gradebook()."""

    def test_students_with_statistics(self, gradebook_class):
        data = repo.load_gradebook(gradebook_class["id"])
        by_id = {s.id: s for s in data.students}

        assert [s.name for s in data.students] == ["Ana Alvarez", "Luis Baker", "Zoe Carter"]
        assert (by_id["s-ana"].overall_grade, by_id["s-ana"].grade_letter) == (90.0, "A-")
        assert by_id["s-luis"].overall_grade == 60.0
        assert by_id["s-luis"].missing_assignments == 1
        assert by_id["s-zoe"].grade_letter == "N/A"
        assert by_id["s-zoe"].missing_assignments == 2

    def test_grades_keyed_by_student_and_assignment(self, gradebook_class):
        data = repo.load_gradebook(gradebook_class["id"])
        assert data.get_grade("s-ana", "a-quiz").points_earned == 45
        assert data.get_grade("s-zoe", "a-quiz") is None

    def test_standards_from_organisation(self, gradebook_class):
        repo.create_standard("org-1", "LS1.A", "Structure and function")
        repo.create_standard("org-2", "OTHER")
        data = repo.load_gradebook(gradebook_class["id"])
        assert [s["code"] for s in data.standards] == ["LS1.A"]

    def test_unknown_instance(self):
        with pytest.raises(repo.NotFoundError):
            repo.load_gradebook("nope")

    def test_class_instance_requires_base_class(self):
        with pytest.raises(repo.NotFoundError):
            repo.create_class_instance("nope", "Orphan")


class TestStandardLinks:
    """Tests for linking assignments to organisation standards."""

    @pytest.fixture
    def standards(self, gradebook_class):
        repo.create_standard("org-1", "LS1.B", "Growth and development", standard_id="std-b")
        repo.create_standard("org-1", "LS1.A", "Structure and function", standard_id="std-a")
        repo.create_standard("org-1", "LS2.A", "Ecosystems", standard_id="std-c")

    def test_new_assignment_has_no_links(self, gradebook_class):
        assert repo.get_assignment("a-hw").standard_ids == []

    def test_link_and_read_back(self, standards):
        linked = repo.link_assignment_to_standards("a-hw", ["std-b", "std-a", "std-b"])

        assert linked.standard_ids == ["std-a", "std-b"]
        assert repo.get_assignment("a-hw").standard_ids == ["std-a", "std-b"]
        by_id = {a.id: a for a in repo.list_assignments("ci-1")}
        assert by_id["a-hw"].standard_ids == ["std-a", "std-b"]
        assert by_id["a-quiz"].standard_ids == []
        assert by_id["a-hw"].to_dict()["standard_ids"] == ["std-a", "std-b"]

    def test_relink_replaces(self, standards):
        repo.link_assignment_to_standards("a-hw", ["std-a", "std-b"])

        relinked = repo.link_assignment_to_standards("a-hw", ["std-c"])

        assert relinked.standard_ids == ["std-c"]
        assert repo.get_assignment("a-hw").standard_ids == ["std-c"]

    def test_empty_list_clears(self, standards):
        repo.link_assignment_to_standards("a-hw", ["std-a"])
        assert repo.link_assignment_to_standards("a-hw", []).standard_ids == []

    def test_unknown_standard_keeps_existing_links(self, standards):
        repo.link_assignment_to_standards("a-hw", ["std-a"])

        with pytest.raises(repo.NotFoundError, match="std-x"):
            repo.link_assignment_to_standards("a-hw", ["std-b", "std-x"])

        assert repo.get_assignment("a-hw").standard_ids == ["std-a"]

    def test_unknown_assignment(self, standards):
        with pytest.raises(repo.NotFoundError):
            repo.link_assignment_to_standards("nope", ["std-a"])

    def test_gradebook_standards_carry_assignment_ids(self, standards):
        repo.link_assignment_to_standards("a-hw", ["std-a"])
        repo.link_assignment_to_standards("a-quiz", ["std-a", "std-c"])

        data = repo.load_gradebook("ci-1")

        by_code = {s["code"]: s["assignment_ids"] for s in data.standards}
        assert by_code == {"LS1.A": ["a-hw", "a-quiz"], "LS1.B": [], "LS2.A": ["a-quiz"]}
