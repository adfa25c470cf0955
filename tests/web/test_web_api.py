"""Tests for the classroom Web API."""

import csv
import inspect
import io
import json
import threading
import time

import pytest
from fastapi.routing import APIRoute
from fastapi.testclient import TestClient

from classroom.backend.realtime import get_change_feed
from classroom.core.progress_stream import track_stream
from classroom.db import documents_repository, lessons_repository
from classroom.db import gradebook_repository as repo
from classroom.web.api import create_app
from classroom.web.routes.generation import get_llm_client

MIND_MAP = {"center": {"label": "Biology"}, "branches": [{"label": "Cells", "children": []}]}


@pytest.fixture
def app(mock_llm_client):
    app = create_app()
    app.dependency_overrides[get_llm_client] = lambda: mock_llm_client
    return app


@pytest.fixture
def client(app):
    """Create test client with the LLM client mocked."""
    return TestClient(app)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_only_health_check_runs_on_the_event_loop(app):
    """Handlers that touch the database are plain functions run in the threadpool."""
    coroutine_paths = {
        route.path
        for route in app.routes
        if isinstance(route, APIRoute) and inspect.iscoroutinefunction(route.endpoint)
    }
    assert coroutine_paths == {"/health"}


class TestGradebookGrid:
    """Tests for GET /api/teach/gradebook/{instance_id}."""

    def test_grid(self, client, gradebook_class):
        response = client.get("/api/teach/gradebook/ci-1")
        assert response.status_code == 200

        data = response.json()
        assert [s["name"] for s in data["students"]] == ["Ana Alvarez", "Luis Baker", "Zoe Carter"]
        assert [a["id"] for a in data["assignments"]] == ["a-hw", "a-quiz"]
        assert data["grades"]["s-ana-a-hw"]["points_earned"] == 18
        assert data["settings"]["grading_scale"] == "percentage"

    def test_filter_at_risk(self, client, gradebook_class):
        data = client.get("/api/teach/gradebook/ci-1", params={"filter_by": "at-risk"}).json()
        assert [s["id"] for s in data["students"]] == ["s-luis", "s-zoe"]

    def test_search(self, client, gradebook_class):
        data = client.get("/api/teach/gradebook/ci-1", params={"search": "zoe@"}).json()
        assert [s["id"] for s in data["students"]] == ["s-zoe"]

    def test_unknown_instance(self, client):
        assert client.get("/api/teach/gradebook/nope").status_code == 404


class TestGradeCells:
    """Tests for grade cell PUT/DELETE."""

    def test_percentage_entry(self, client, gradebook_class):
        response = client.put(
            "/api/teach/gradebook/ci-1/grades/s-zoe/a-hw",
            json={"value": "75", "view_mode": "percentage", "graded_by": "t-1"},
        )
        assert response.status_code == 200

        body = response.json()
        assert body["deleted"] is False
        assert body["display"] == "75%"
        assert body["grade"]["points_earned"] == 15
        assert body["grade"]["graded_by"] == "t-1"

    def test_points_entry(self, client, gradebook_class):
        body = client.put(
            "/api/teach/gradebook/ci-1/grades/s-luis/a-quiz",
            json={"value": "40", "view_mode": "points"},
        ).json()

        assert body["display"] == "40/50"
        assert body["grade"]["percentage"] == 80
        assert body["grade"]["status"] == "graded"

    def test_empty_value_deletes(self, client, gradebook_class):
        body = client.put(
            "/api/teach/gradebook/ci-1/grades/s-ana/a-hw", json={"value": "  "}
        ).json()

        assert body == {"deleted": True, "grade": None, "display": "-"}
        grid = client.get("/api/teach/gradebook/ci-1").json()
        assert "s-ana-a-hw" not in grid["grades"]

    def test_assignment_of_other_class(self, client, gradebook_class):
        response = client.put("/api/teach/gradebook/ci-1/grades/s-ana/nope", json={"value": "10"})
        assert response.status_code == 404

    def test_delete(self, client, gradebook_class):
        assert client.delete("/api/teach/gradebook/ci-1/grades/s-ana/a-hw").status_code == 204
        assert client.delete("/api/teach/gradebook/ci-1/grades/s-ana/a-hw").status_code == 404


class TestGradebookViews:
    def test_settings_merge(self, client, gradebook_class):
        response = client.put("/api/teach/gradebook/ci-1/settings", json={"late_penalty": 5})
        assert response.status_code == 200
        assert response.json()["late_penalty"] == 5

        settings = client.get("/api/teach/gradebook/ci-1/settings").json()
        assert settings["late_penalty"] == 5
        assert settings["show_points"] is True

    def test_invalid_settings(self, client, gradebook_class):
        response = client.put("/api/teach/gradebook/ci-1/settings", json={"late_penalty": 500})
        assert response.status_code == 422

    def test_export_csv(self, client, gradebook_class):
        response = client.get("/api/teach/gradebook/ci-1/export", params={"format": "csv"})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert 'filename="Biology_101_-_Fall_gradebook_' in response.headers["content-disposition"]

        rows = list(csv.reader(io.StringIO(response.text)))
        assert rows[0][-1] == "Overall Grade"
        assert rows[3] == ["Zoe Carter", "zoe@school.test", "N/A", "N/A", "N/A"]

    def test_export_json_with_analytics(self, client, gradebook_class):
        response = client.get(
            "/api/teach/gradebook/ci-1/export",
            params={"format": "json", "include_analytics": "true"},
        )
        payload = response.json()
        assert payload["classInstance"] == "Biology 101 - Fall"
        assert payload["analytics"]["classAverage"] == 50.0

    def test_export_unsupported_format(self, client, gradebook_class):
        response = client.get("/api/teach/gradebook/ci-1/export", params={"format": "pdf"})
        assert response.status_code == 400

    def test_analytics(self, client, gradebook_class):
        data = client.get("/api/teach/gradebook/ci-1/analytics").json()
        assert data["overview"]["class_average"] == 50.0
        assert data["overview"]["at_risk_students"] == 2

    def test_risk(self, client, gradebook_class):
        data = client.get("/api/teach/gradebook/ci-1/risk").json()
        levels = {s["student_id"]: s["risk"] for s in data["students"]}
        assert levels == {"s-ana": "low", "s-luis": "medium", "s-zoe": "high"}


class TestAssignments:
    """Tests for /api/teach/assignments."""

    def test_list(self, client, gradebook_class):
        data = client.get("/api/teach/assignments", params={"class_instance_id": "ci-1"}).json()
        assert data["count"] == 2

    def test_create(self, client, gradebook_class):
        response = client.post(
            "/api/teach/assignments",
            json={"class_instance_id": "ci-1", "name": "Lab report", "points_possible": 30, "type": "lab"},
        )
        assert response.status_code == 201
        assert response.json()["order_index"] == 2

    def test_create_for_unknown_instance(self, client):
        response = client.post("/api/teach/assignments", json={"class_instance_id": "nope", "name": "X"})
        assert response.status_code == 404

    def test_create_rejects_zero_points(self, client, gradebook_class):
        response = client.post(
            "/api/teach/assignments", json={"class_instance_id": "ci-1", "name": "X", "points_possible": 0}
        )
        assert response.status_code == 422

    def test_update_and_reorder(self, client, gradebook_class):
        response = client.patch("/api/teach/assignments/a-quiz", json={"name": "Quiz A", "order_index": 0})
        assert response.status_code == 200
        assert response.json()["name"] == "Quiz A"
        assert response.json()["order_index"] == 0

        data = client.get("/api/teach/assignments", params={"class_instance_id": "ci-1"}).json()
        assert [a["id"] for a in data["assignments"]] == ["a-quiz", "a-hw"]

    def test_create_with_standards(self, client, gradebook_class):
        repo.create_standard("org-1", "LS1.A", standard_id="std-a")

        response = client.post(
            "/api/teach/assignments",
            json={"class_instance_id": "ci-1", "name": "Lab report", "standard_ids": ["std-a"]},
        )

        assert response.status_code == 201
        assert response.json()["standard_ids"] == ["std-a"]
        assert repo.get_assignment(response.json()["id"]).standard_ids == ["std-a"]

    def test_create_with_unknown_standard(self, client, gradebook_class):
        response = client.post(
            "/api/teach/assignments",
            json={"class_instance_id": "ci-1", "name": "Lab report", "standard_ids": ["std-x"]},
        )

        assert response.status_code == 404
        assert [a.name for a in repo.list_assignments("ci-1")] == ["Homework 1", "Quiz 1"]

    def test_update_relinks_standards(self, client, gradebook_class):
        repo.create_standard("org-1", "LS1.A", standard_id="std-a")
        repo.create_standard("org-1", "LS2.A", standard_id="std-c")
        repo.link_assignment_to_standards("a-hw", ["std-a"])

        response = client.patch("/api/teach/assignments/a-hw", json={"standard_ids": ["std-c"]})
        assert response.status_code == 200
        assert response.json()["standard_ids"] == ["std-c"]

        renamed = client.patch("/api/teach/assignments/a-hw", json={"name": "Homework A"})
        assert renamed.json()["standard_ids"] == ["std-c"]

        listed = client.get("/api/teach/assignments", params={"class_instance_id": "ci-1"}).json()
        assert listed["assignments"][0]["standard_ids"] == ["std-c"]

    def test_update_with_unknown_standard(self, client, gradebook_class):
        response = client.patch("/api/teach/assignments/a-hw", json={"standard_ids": ["std-x"]})
        assert response.status_code == 404

    def test_update_unknown(self, client):
        assert client.patch("/api/teach/assignments/nope", json={"name": "X"}).status_code == 404

    def test_delete(self, client, gradebook_class):
        assert client.delete("/api/teach/assignments/a-hw").status_code == 204
        assert client.delete("/api/teach/assignments/a-hw").status_code == 404


class TestDocuments:
    """Tests for the knowledge-base document endpoints."""

    def test_paste_text_is_processed(self, client, base_class):
        response = client.post(
            "/api/teach/base-classes/bc-1/documents/paste",
            json={"value": "Photosynthesis turns light into sugar.", "uploaded_by": "t-1"},
        )
        assert response.status_code == 201
        item = response.json()
        assert item["type"] == "text"
        assert item["status"] == "completed"

        chunks = documents_repository.list_chunks(item["id"])
        assert chunks[0]["content"] == "Photosynthesis turns light into sugar."

    def test_upload_text_file(self, client, base_class):
        response = client.post(
            "/api/teach/base-classes/bc-1/documents",
            files={"file": ("notes.txt", b"# Cells\nCells divide.\n", "text/plain")},
            data={"uploaded_by": "t-1"},
        )
        assert response.status_code == 201
        assert response.json()["name"] == "notes.txt"
        assert response.json()["status"] == "completed"

    def test_list_newest_first(self, client, base_class):
        client.post("/api/teach/base-classes/bc-1/documents/paste", json={"value": "first"})
        client.post("/api/teach/base-classes/bc-1/documents/paste", json={"value": "second"})

        data = client.get("/api/teach/base-classes/bc-1/documents").json()
        assert data["count"] == 2
        created = [d["created_at"] for d in data["documents"]]
        assert created == sorted(created, reverse=True)

    def test_delete(self, client, base_class):
        item = client.post("/api/teach/base-classes/bc-1/documents/paste", json={"value": "text"}).json()

        assert client.delete(f"/api/teach/base-classes/bc-1/documents/{item['id']}").status_code == 204
        assert client.get("/api/teach/base-classes/bc-1/documents").json()["count"] == 0
        assert client.delete(f"/api/teach/base-classes/bc-1/documents/{item['id']}").status_code == 404

    def test_unknown_base_class(self, client):
        response = client.post("/api/teach/base-classes/nope/documents/paste", json={"value": "x"})
        assert response.status_code == 404

    def test_empty_paste_rejected(self, client, base_class):
        response = client.post("/api/teach/base-classes/bc-1/documents/paste", json={"value": "   "})
        assert response.status_code == 400

    def test_change_stream(self, client, base_class):
        """A document inserted while the stream is open arrives as a change event."""

        def insert_when_subscribed():
            deadline = time.monotonic() + 5
            while get_change_feed().subscriber_count == 0 and time.monotonic() < deadline:
                time.sleep(0.01)
            documents_repository.insert_document("bc-1", "org-1", "live.txt", "text/plain", 1, None)

        worker = threading.Thread(target=insert_when_subscribed)
        worker.start()
        response = client.get(
            "/api/teach/base-classes/bc-1/documents/changes", params={"idle_timeout": 1.0}
        )
        worker.join()

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.text.startswith(": subscribed\n\n")
        data_line = next(line for line in response.text.splitlines() if line.startswith("data: "))
        change = json.loads(data_line[len("data: ") :])
        assert change["eventType"] == "INSERT"
        assert change["new"]["file_name"] == "live.txt"
        assert get_change_feed().subscriber_count == 0

    def test_change_stream_zero_idle_timeout_ends_at_once(self, client, base_class):
        started = time.monotonic()

        response = client.get(
            "/api/teach/base-classes/bc-1/documents/changes", params={"idle_timeout": 0}
        )

        assert response.status_code == 200
        assert response.text == ": subscribed\n\n"
        assert time.monotonic() - started < 5
        assert get_change_feed().subscriber_count == 0


class TestGeneration:
    """Tests for the generation endpoints."""

    @pytest.fixture
    def lessons(self, base_class):
        lessons_repository.create_lesson("bc-1", "Cells", order_index=0)
        lessons_repository.create_lesson("bc-1", "Mitosis", order_index=1)
        return base_class

    def test_content_status(self, client, lessons):
        data = client.get("/api/teach/base-classes/bc-1/content-status").json()
        assert data["lessonsNeedingContent"] == 2

    def test_generate_all_lessons_stream(self, client, lessons):
        response = client.post("/api/teach/base-classes/bc-1/generate-all-lessons-content")

        assert response.status_code == 200
        assert response.headers["cache-control"] == "no-cache"
        tracker = track_stream([response.content])
        assert tracker.total_to_process == 2
        assert tracker.processed == 2
        assert tracker.summary.type == "success"
        assert client.get("/api/teach/base-classes/bc-1/content-status").json()["allLessonsHaveContent"]

    def test_mind_map_job(self, client, lessons, mock_llm_client):
        lessons_repository.set_lesson_content(
            lessons_repository.list_lessons("bc-1")[0]["id"],
            {"sections": [{"title": "Intro", "content": "Cells."}]},
        )
        mock_llm_client.simple_json.return_value = MIND_MAP

        response = client.post("/api/teach/base-classes/bc-1/mind-map")
        assert response.status_code == 202
        job_id = response.json()["job_id"]

        status = client.get(f"/api/knowledge-base/generation-status/{job_id}").json()
        assert status["status"] == "completed"
        assert status["finished"] is True
        assert status["overall_progress"] == 100
        assert status["result"] == MIND_MAP

        conflict = client.post("/api/teach/base-classes/bc-1/mind-map", json={"regenerate": False})
        assert conflict.status_code == 409
        again = client.post("/api/teach/base-classes/bc-1/mind-map", json={"regenerate": True})
        assert again.status_code == 202

    def test_unknown_job(self, client):
        assert client.get("/api/knowledge-base/generation-status/nope").status_code == 404


class TestProgress:
    def test_progress(self, client, base_class):
        lesson = lessons_repository.create_lesson("bc-1", "Cells")
        lessons_repository.record_progress("u-1", "lesson", lesson["id"], "completed", 100)

        data = client.get("/api/progress/base-classes/bc-1/users/u-1").json()
        assert data["progress_percentage"] == 100
        assert data["status"] == "completed"

    def test_unknown_base_class(self, client):
        assert client.get("/api/progress/base-classes/nope/users/u-1").status_code == 404
