"""Tests for the classroom HTTP client."""

import json

import httpx
import pytest

from classroom.client import (
    BackendConnectionError,
    BackendResponseError,
    ClassroomClient,
)
from classroom.core.knowledge_base import KnowledgeBaseList
from classroom.core.progress_stream import CompleteEvent, ProgressEvent, StartEvent, encode_event


def _client(handler, **kwargs):
    return ClassroomClient(
        base_url="http://api.test", transport=httpx.MockTransport(handler), **kwargs
    )


def _document(doc_id, created_at, status="queued"):
    return {
        "id": doc_id,
        "file_name": f"{doc_id}.txt",
        "file_type": "text/plain",
        "status": status,
        "created_at": created_at,
        "metadata": {},
        "base_class_id": "bc-1",
    }


class TestRequests:
    def test_bearer_token(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"students": []})

        with _client(handler, api_key="secret") as client:
            client.get_gradebook("ci-1")
        assert seen["auth"] == "Bearer secret"

    def test_api_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("CLASSROOM_API_KEY", "from-env")
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={})

        _client(handler).get_analytics("ci-1")
        assert seen["auth"] == "Bearer from-env"

    def test_error_detail(self):
        def handler(request):
            return httpx.Response(404, json={"detail": "Class instance 'x' not found"})

        with pytest.raises(BackendResponseError) as exc_info:
            _client(handler).get_gradebook("x")
        assert exc_info.value.status_code == 404
        assert exc_info.value.detail == "Class instance 'x' not found"
        assert exc_info.value.url.startswith("http://api.test/api/teach/gradebook/x")

    def test_non_json_error(self):
        with pytest.raises(BackendResponseError) as exc_info:
            _client(lambda request: httpx.Response(502, text="Bad gateway")).get_risk("ci-1")
        assert exc_info.value.detail == "Bad gateway"

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        with pytest.raises(BackendConnectionError):
            _client(handler).get_analytics("ci-1")

    def test_set_grade_body(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"deleted": False, "display": "17/20"})

        result = _client(handler).set_grade("ci-1", "s-1", "a-1", "17", view_mode="points")

        assert seen["path"] == "/api/teach/gradebook/ci-1/grades/s-1/a-1"
        assert seen["body"] == {"value": "17", "view_mode": "points"}
        assert result["display"] == "17/20"

    def test_clear_grade_no_content(self):
        _client(lambda request: httpx.Response(204)).clear_grade("ci-1", "s-1", "a-1")

    def test_export_filename(self):
        def handler(request):
            assert request.url.params["format"] == "csv"
            assert request.url.params["include_analytics"] == "true"
            return httpx.Response(
                200,
                text="Student,Email\n",
                headers={"content-disposition": 'attachment; filename="Bio_gradebook_2024-01-01.csv"'},
            )

        filename, content = _client(handler).export_gradebook("ci-1", "csv", include_analytics=True)
        assert filename == "Bio_gradebook_2024-01-01.csv"
        assert content == "Student,Email\n"

    def test_upload_document(self, tmp_path):
        notes = tmp_path / "notes.txt"
        notes.write_text("hello")
        seen = {}

        def handler(request):
            seen["content_type"] = request.headers["content-type"]
            seen["body"] = request.content
            return httpx.Response(201, json={"id": "d1", "status": "completed"})

        item = _client(handler).upload_document("bc-1", notes, "text/plain")

        assert item["id"] == "d1"
        assert seen["content_type"].startswith("multipart/form-data")
        assert b'filename="notes.txt"' in seen["body"]


class TestLessonGenerationStream:
    """Tests for stream_lesson_generation()."""

    def test_tracks_events(self):
        body = "".join(
            encode_event(e)
            for e in [
                StartEvent(total_to_process=2),
                ProgressEvent("l1", "Cells", "success", processed_count=1, total_lessons_to_process=2),
                ProgressEvent("l2", "Mitosis", "failed", processed_count=2, error="boom"),
                CompleteEvent("Completed with some failures", successful_count=1, failed_count=1),
            ]
        )

        def handler(request):
            assert request.method == "POST"
            return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

        seen = []
        tracker = _client(handler).stream_lesson_generation("bc-1", on_event=lambda e, t: seen.append(e.type))

        assert seen == ["start", "progress", "progress", "complete"]
        assert tracker.completed is True
        assert tracker.summary.type == "warning"
        assert tracker.details[1].error == "boom"

    def test_stream_without_complete(self):
        body = encode_event(StartEvent(total_to_process=3))
        tracker = _client(lambda r: httpx.Response(200, text=body)).stream_lesson_generation("bc-1")

        assert tracker.finished is True
        assert tracker.completed is False
        assert tracker.message == "Stream finished by server."

    def test_stream_error_status(self):
        def handler(request):
            return httpx.Response(404, json={"detail": "Base class 'bc-x' not found"})

        with pytest.raises(BackendResponseError) as exc_info:
            _client(handler).stream_lesson_generation("bc-x")
        assert exc_info.value.detail == "Base class 'bc-x' not found"


class TestPollJobProgress:
    def test_polls_until_terminal(self):
        statuses = iter(["queued", "running", "completed"])

        def handler(request):
            return httpx.Response(200, json={"job_id": "j1", "status": next(statuses)})

        sleeps, updates = [], []
        final = _client(handler).poll_job_progress(
            "j1", interval=2.5, on_update=lambda u: updates.append(u["status"]), sleep=sleeps.append
        )

        assert final["status"] == "completed"
        assert updates == ["queued", "running", "completed"]
        assert sleeps == [2.5, 2.5]

    def test_failed_is_terminal(self):
        final = _client(lambda r: httpx.Response(200, json={"status": "failed"})).poll_job_progress(
            "j1", sleep=lambda s: pytest.fail("should not sleep")
        )
        assert final["status"] == "failed"

    def test_default_interval_from_config(self):
        statuses = iter(["running", "completed"])
        sleeps = []
        _client(lambda r: httpx.Response(200, json={"status": next(statuses)})).poll_job_progress(
            "j1", sleep=sleeps.append
        )
        assert sleeps == [5.0]


class TestWatchDocuments:
    """Tests for watch_documents()."""

    def test_folds_changes_into_list(self):
        inserted = _document("d2", "2024-02-01T00:00:00")
        updated = _document("d1", "2024-01-01T00:00:00", status="completed")
        stream = (
            ": subscribed\n\n"
            f"event: change\ndata: {json.dumps({'eventType': 'INSERT', 'new': inserted})}\n\n"
            ": keepalive\n\n"
            f"event: change\ndata: {json.dumps({'eventType': 'UPDATE', 'new': updated})}\n\n"
        )

        def handler(request):
            if request.url.path.endswith("/changes"):
                assert request.url.params["idle_timeout"] == "1.0"
                return httpx.Response(200, text=stream)
            return httpx.Response(200, json={"documents": [_document("d1", "2024-01-01T00:00:00")], "count": 1})

        changes = []
        items = _client(handler).watch_documents(
            "bc-1", idle_timeout=1.0, on_change=lambda change, items: changes.append(change["eventType"])
        )

        assert changes == ["INSERT", "UPDATE"]
        assert items.ids() == ["d2", "d1"]
        assert items.get("d1").status == "completed"

    def test_given_list_and_bad_json(self):
        stream = "event: change\ndata: {broken\n\nevent: change\ndata: " + json.dumps(
            {"eventType": "DELETE", "old": {"id": "d1"}}
        )
        items = KnowledgeBaseList.from_documents([_document("d1", "2024-01-01T00:00:00")])

        result = _client(lambda r: httpx.Response(200, text=stream)).watch_documents("bc-1", items=items)

        assert result is items
        assert items.ids() == []
