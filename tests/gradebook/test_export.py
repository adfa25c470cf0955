"""Tests for gradebook export."""

import csv
import io
import json
from datetime import date

import pytest

from classroom.core.export import (
    ExportError,
    ExportOptions,
    export_csv,
    export_filename,
    export_gradebook,
    export_json,
)
from classroom.db import gradebook_repository as repo


@pytest.fixture
def data(gradebook_class):
    return repo.load_gradebook(gradebook_class["id"])


class TestExportCsv:
    """Tests for export_csv()."""

    def test_header(self, data):
        rows = list(csv.reader(io.StringIO(export_csv(data))))
        assert rows[0] == ["Student", "Email", "Homework 1", "Quiz 1", "Overall Grade"]

    def test_rows(self, data):
        rows = list(csv.reader(io.StringIO(export_csv(data))))

        assert rows[1] == ["Ana Alvarez", "ana@school.test", "18", "45", "90"]
        assert rows[2] == ["Luis Baker", "luis@school.test", "12", "N/A", "60"]
        assert rows[3] == ["Zoe Carter", "zoe@school.test", "N/A", "N/A", "N/A"]

    def test_name_with_comma_is_quoted(self, gradebook_class):
        repo.add_profile("s-ana", "Ana", "Alvarez, Jr.", "ana@school.test")
        text = export_csv(repo.load_gradebook(gradebook_class["id"]))
        assert '"Ana Alvarez, Jr."' in text


class TestExportJson:
    """Tests for export_json()."""

    def test_default_sections(self, data):
        payload = json.loads(export_json(data, "Biology 101 - Fall"))

        assert payload["classInstance"] == "Biology 101 - Fall"
        assert payload["dateRange"] == "all"
        assert len(payload["students"]) == 3
        assert len(payload["assignments"]) == 2
        assert "s-ana-a-hw" in payload["grades"]
        assert payload["analytics"] is None
        assert payload["standards"] == []
        assert payload["feedback"] == []

    def test_analytics_section(self, data):
        payload = json.loads(export_json(data, "Bio", ExportOptions(analytics=True)))
        assert payload["analytics"] == {
            "classAverage": 50.0,
            "totalStudents": 3,
            "totalAssignments": 2,
        }

    def test_excluded_sections_are_empty(self, data):
        options = ExportOptions(grades=False, students=False, assignments=False)
        payload = json.loads(export_json(data, "Bio", options))

        assert payload["students"] == []
        assert payload["assignments"] == []
        assert payload["grades"] == {}

    def test_feedback_section(self, gradebook_class):
        from classroom.core.models import Grade

        repo.upsert_grade(
            Grade("s-zoe", "a-hw", gradebook_class["id"], points_earned=10, feedback="Show work")
        )
        data = repo.load_gradebook(gradebook_class["id"])
        payload = json.loads(export_json(data, "Bio", ExportOptions(feedback=True)))

        assert [f["feedback"] for f in payload["feedback"]] == ["Show work"]

    def test_standards_section_lists_linked_assignments(self, gradebook_class):
        repo.create_standard("org-1", "LS1.A", "Structure and function", standard_id="std-a")
        repo.link_assignment_to_standards("a-quiz", ["std-a"])
        data = repo.load_gradebook(gradebook_class["id"])

        payload = json.loads(export_json(data, "Bio", ExportOptions(standards=True)))

        [standard] = payload["standards"]
        assert standard["code"] == "LS1.A"
        assert standard["assignment_ids"] == ["a-quiz"]
        quiz = next(a for a in payload["assignments"] if a["id"] == "a-quiz")
        assert quiz["standard_ids"] == ["std-a"]


class TestExportGradebook:
    def test_filename(self):
        name = export_filename("Biology 101 - Fall", "csv", today=date(2024, 3, 5))
        assert name == "Biology_101_-_Fall_gradebook_2024-03-05.csv"

    def test_csv_media_type(self, data):
        filename, media_type, content = export_gradebook(data, "Bio", "csv")

        assert filename.endswith(".csv")
        assert media_type == "text/csv"
        assert content.startswith("Student,Email")

    def test_json_media_type(self, data):
        _, media_type, content = export_gradebook(data, "Bio", "json")
        assert media_type == "application/json"
        assert json.loads(content)["classInstance"] == "Bio"

    def test_unsupported_format(self, data):
        with pytest.raises(ExportError, match="Unsupported export format"):
            export_gradebook(data, "Bio", "xlsx")
