"""HTTP client for the classroom API.

Wraps ``httpx.Client`` with:
- base URL and optional Bearer token from the ``backend`` config section
- domain errors for transport failures and non-2xx responses
- incremental readers for the two event streams (lesson generation
  progress and knowledge-base document changes)
- a polling loop for background generation jobs
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Callable

import httpx
import structlog

from classroom.config.app_config import load_app_config
from classroom.core.knowledge_base import KnowledgeBaseList
from classroom.core.progress_stream import GenerationEvent, GenerationTracker, SSEDecoder

logger = structlog.get_logger(__name__)

TERMINAL_JOB_STATUSES = ("completed", "failed")


class BackendError(Exception):
    """Error talking to the classroom API."""

    pass


class BackendConnectionError(BackendError):
    """The API could not be reached."""

    pass


class BackendResponseError(BackendError):
    """The API answered with an error status."""

    def __init__(self, status_code: int, detail: str, url: str = ""):
        self.status_code = status_code
        self.detail = detail
        self.url = url
        super().__init__(f"API {status_code}: {detail} ({url})")


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return response.text[:200]


class ClassroomClient:
    """Synchronous client for the classroom Web API."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: API root (defaults to backend.base_url from config)
            api_key: Bearer token (defaults to the backend api_key_env variable)
            timeout: Request timeout in seconds
            transport: Custom httpx transport
        """
        backend = load_app_config().backend
        self.base_url = (base_url or backend.base_url).rstrip("/")
        api_key = api_key or backend.get_api_key()

        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._http = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout or backend.timeout, read=None),
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "ClassroomClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # -- plumbing ------------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        start = time.time()
        try:
            response = self._http.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise BackendConnectionError(f"Could not reach {self.base_url}: {e}") from e

        logger.debug(
            "api_request",
            method=method,
            path=path,
            status=response.status_code,
            latency_ms=int((time.time() - start) * 1000),
        )
        if response.status_code >= 400:
            raise BackendResponseError(response.status_code, _detail(response), str(response.url))
        return response

    def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self._request(method, path, **kwargs)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def _iter_stream(self, method: str, path: str, **kwargs: Any):
        """Yield raw body chunks of a streamed response."""
        try:
            with self._http.stream(method, path, **kwargs) as response:
                if response.status_code >= 400:
                    response.read()
                    raise BackendResponseError(
                        response.status_code, _detail(response), str(response.url)
                    )
                yield from response.iter_bytes()
        except httpx.TransportError as e:
            raise BackendConnectionError(f"Stream from {self.base_url} failed: {e}") from e

    # -- gradebook -----------------------------------------------------------

    def get_gradebook(self, instance_id: str, filter_by: str = "all", search: str = "") -> dict[str, Any]:
        return self._json(
            "GET",
            f"/api/teach/gradebook/{instance_id}",
            params={"filter_by": filter_by, "search": search},
        )

    def set_grade(
        self,
        instance_id: str,
        student_id: str,
        assignment_id: str,
        value: str,
        view_mode: str = "percentage",
    ) -> dict[str, Any]:
        """Send an edited cell; an empty value deletes the grade."""
        return self._json(
            "PUT",
            f"/api/teach/gradebook/{instance_id}/grades/{student_id}/{assignment_id}",
            json={"value": value, "view_mode": view_mode},
        )

    def clear_grade(self, instance_id: str, student_id: str, assignment_id: str) -> None:
        self._request(
            "DELETE",
            f"/api/teach/gradebook/{instance_id}/grades/{student_id}/{assignment_id}",
        )

    def export_gradebook(self, instance_id: str, fmt: str = "csv", **options: bool) -> tuple[str, str]:
        """Download an export.

        Returns:
            Tuple of (filename, content)
        """
        params: dict[str, Any] = {"format": fmt, **options}
        response = self._request("GET", f"/api/teach/gradebook/{instance_id}/export", params=params)
        disposition = response.headers.get("content-disposition", "")
        filename = f"gradebook.{fmt}"
        if "filename=" in disposition:
            filename = disposition.split("filename=", 1)[1].strip('"')
        return filename, response.text

    def get_analytics(self, instance_id: str) -> dict[str, Any]:
        return self._json("GET", f"/api/teach/gradebook/{instance_id}/analytics")

    def get_risk(self, instance_id: str) -> dict[str, Any]:
        return self._json("GET", f"/api/teach/gradebook/{instance_id}/risk")

    # -- knowledge base ------------------------------------------------------

    def list_documents(self, base_class_id: str) -> list[dict[str, Any]]:
        return self._json("GET", f"/api/teach/base-classes/{base_class_id}/documents")["documents"]

    def upload_document(
        self,
        base_class_id: str,
        path: Path,
        content_type: str | None = None,
        recording: bool = False,
    ) -> dict[str, Any]:
        files = {"file": (path.name, path.read_bytes(), content_type or "application/octet-stream")}
        return self._json(
            "POST",
            f"/api/teach/base-classes/{base_class_id}/documents",
            files=files,
            data={"recording": str(recording).lower()},
        )

    def paste(self, base_class_id: str, value: str) -> dict[str, Any]:
        return self._json(
            "POST",
            f"/api/teach/base-classes/{base_class_id}/documents/paste",
            json={"value": value},
        )

    def delete_document(self, base_class_id: str, document_id: str) -> None:
        self._request("DELETE", f"/api/teach/base-classes/{base_class_id}/documents/{document_id}")

    def watch_documents(
        self,
        base_class_id: str,
        items: KnowledgeBaseList | None = None,
        idle_timeout: float | None = None,
        on_change: Callable[[dict[str, Any], KnowledgeBaseList], None] | None = None,
    ) -> KnowledgeBaseList:
        """Follow document changes and fold them into a local list.

        Starts from the current documents unless ``items`` is given. Returns
        when the server closes the stream.
        """
        if items is None:
            items = KnowledgeBaseList.from_documents(self.list_documents(base_class_id))

        params = {"idle_timeout": idle_timeout} if idle_timeout is not None else None
        decoder = SSEDecoder()

        def handle(events) -> None:
            for sse in events:
                if sse.event != "change":
                    continue
                try:
                    change = json.loads(sse.data)
                except json.JSONDecodeError:
                    logger.warning("document_change_bad_json", data=sse.data[:200])
                    continue
                items.apply_change(change)
                if on_change is not None:
                    on_change(change, items)

        for chunk in self._iter_stream(
            "GET", f"/api/teach/base-classes/{base_class_id}/documents/changes", params=params
        ):
            handle(decoder.feed(chunk))
        handle(decoder.flush())
        return items

    # -- generation ----------------------------------------------------------

    def content_status(self, base_class_id: str) -> dict[str, Any]:
        return self._json("GET", f"/api/teach/base-classes/{base_class_id}/content-status")

    def stream_lesson_generation(
        self,
        base_class_id: str,
        on_event: Callable[[GenerationEvent, GenerationTracker], None] | None = None,
    ) -> GenerationTracker:
        """Start lesson generation and follow its event stream to the end."""
        tracker = GenerationTracker()
        path = f"/api/teach/base-classes/{base_class_id}/generate-all-lessons-content"
        for chunk in self._iter_stream("POST", path):
            for event in tracker.feed(chunk):
                if on_event is not None:
                    on_event(event, tracker)
        tracker.finish_stream()

        logger.info(
            "lesson_generation_stream_finished",
            base_class_id=base_class_id,
            processed=tracker.processed,
            completed=tracker.completed,
        )
        return tracker

    def start_mind_map(self, base_class_id: str, regenerate: bool = False) -> dict[str, Any]:
        return self._json(
            "POST",
            f"/api/teach/base-classes/{base_class_id}/mind-map",
            json={"regenerate": regenerate},
        )

    def get_job_progress(self, job_id: str) -> dict[str, Any]:
        return self._json("GET", f"/api/knowledge-base/generation-status/{job_id}")

    def poll_job_progress(
        self,
        job_id: str,
        interval: float | None = None,
        on_update: Callable[[dict[str, Any]], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> dict[str, Any]:
        """Poll a job until it is ``completed`` or ``failed``.

        Returns:
            The last progress update
        """
        interval = load_app_config().generation.poll_interval_seconds if interval is None else interval
        while True:
            update = self.get_job_progress(job_id)
            if on_update is not None:
                on_update(update)
            if update.get("status") in TERMINAL_JOB_STATUSES:
                logger.info("job_poll_finished", job_id=job_id, status=update["status"])
                return update
            sleep(interval)

    # -- progress ------------------------------------------------------------

    def get_progress(self, base_class_id: str, user_id: str) -> dict[str, Any]:
        return self._json("GET", f"/api/progress/base-classes/{base_class_id}/users/{user_id}")
