"""Generation progress stream.

Long-running generation endpoints answer with a server-sent-events stream.
Each event carries one JSON object tagged by ``type``:

    data: {"type": "start", "totalToProcess": 3, "skipped": 1}

    data: {"type": "progress", "processedCount": 1, "lessonId": "l1", ...}

    data: {"type": "complete", "overallStatus": "All successful", ...}

Producers may also set an ``event:`` field; it is used as the type when
the JSON object has none.

This module holds both sides:
- encode_event(): producer side, one SSE block per event
- SSEDecoder: incremental decoder, chunk boundaries may fall anywhere
  (mid-line, mid-object, between \\r and \\n, inside a UTF-8 sequence)
- GenerationTracker: folds events into progress bar / per-item state
"""

from __future__ import annotations

import codecs
import json
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Literal, Union

import structlog

logger = structlog.get_logger(__name__)

SummaryType = Literal["success", "warning", "error", "info"]

# overallStatus values sent by the producer → summary severity
OVERALL_STATUS_TYPES: dict[str, SummaryType] = {
    "All successful": "success",
    "All processed tasks successful": "success",
    "Completed with some failures": "warning",
    "All failed": "error",
}


# =============================================================================
# SSE WIRE FORMAT
# =============================================================================


@dataclass
class ServerSentEvent:
    """One dispatched SSE block."""

    data: str
    event: str = "message"
    id: str | None = None


class SSEDecoder:
    """Incremental server-sent-events decoder.

    Usage:
        decoder = SSEDecoder()
        for chunk in response.iter_bytes():
            for event in decoder.feed(chunk):
                ...
        for event in decoder.flush():
            ...
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._data: list[str] = []
        self._event = ""
        self._last_id: str | None = None
        self.retry_ms: int | None = None

    def feed(self, chunk: str | bytes) -> list[ServerSentEvent]:
        """Consume a chunk and return the events it completed."""
        if isinstance(chunk, bytes):
            chunk = self._utf8.decode(chunk)
        self._buffer += chunk
        return self._drain(final=False)

    def flush(self) -> list[ServerSentEvent]:
        """End of stream: process the remaining partial line and event.

        A final event without its terminating blank line is still
        dispatched.
        """
        self._buffer += self._utf8.decode(b"", final=True)
        events = self._drain(final=True)
        if self._buffer:
            self._process_line(self._buffer, events)
            self._buffer = ""
        self._dispatch(events)
        return events

    def _drain(self, final: bool) -> list[ServerSentEvent]:
        events: list[ServerSentEvent] = []
        while True:
            idx_n = self._buffer.find("\n")
            idx_r = self._buffer.find("\r")
            if idx_n < 0 and idx_r < 0:
                break

            if idx_r >= 0 and (idx_n < 0 or idx_r < idx_n):
                # A trailing \r may be the first half of \r\n
                if idx_r == len(self._buffer) - 1 and not final:
                    break
                end = idx_r
                skip = 2 if self._buffer[idx_r + 1 : idx_r + 2] == "\n" else 1
            else:
                end = idx_n
                skip = 1

            line = self._buffer[:end]
            self._buffer = self._buffer[end + skip :]
            self._process_line(line, events)
        return events

    def _process_line(self, line: str, events: list[ServerSentEvent]) -> None:
        if line == "":
            self._dispatch(events)
            return
        if line.startswith(":"):
            return

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "data":
            self._data.append(value)
        elif name == "event":
            self._event = value
        elif name == "id":
            if "\0" not in value:
                self._last_id = value
        elif name == "retry":
            if value.isdigit():
                self.retry_ms = int(value)

    def _dispatch(self, events: list[ServerSentEvent]) -> None:
        if self._data:
            events.append(
                ServerSentEvent(
                    data="\n".join(self._data),
                    event=self._event or "message",
                    id=self._last_id,
                )
            )
        self._data = []
        self._event = ""


# =============================================================================
# TYPED EVENTS
# =============================================================================


@dataclass
class StartEvent:
    total_to_process: int
    skipped: int = 0

    type: str = field(default="start", init=False)

    def to_payload(self) -> dict[str, Any]:
        return {"type": "start", "totalToProcess": self.total_to_process, "skipped": self.skipped}


@dataclass
class ProgressEvent:
    lesson_id: str
    lesson_title: str
    status: str
    processed_count: int | None = None
    total_lessons_to_process: int | None = None
    current_lesson_index: int | None = None
    error: str | None = None

    type: str = field(default="progress", init=False)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": "progress",
            "processedCount": self.processed_count,
            "totalLessonsToProcess": self.total_lessons_to_process,
            "lessonId": self.lesson_id,
            "lessonTitle": self.lesson_title,
            "status": self.status,
        }
        if self.current_lesson_index is not None:
            payload["currentLessonIndex"] = self.current_lesson_index
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass
class CompleteEvent:
    overall_status: str
    successful_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0

    type: str = field(default="complete", init=False)

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": "complete",
            "overallStatus": self.overall_status,
            "successfulCount": self.successful_count,
            "failedCount": self.failed_count,
            "skippedCount": self.skipped_count,
        }


GenerationEvent = Union[StartEvent, ProgressEvent, CompleteEvent]


def _int_or_none(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_generation_event(
    payload: dict[str, Any], event_name: str | None = None
) -> GenerationEvent | None:
    """Build a typed event from a decoded JSON object.

    The ``type`` field wins; the SSE event name is used when it is absent.
    Unknown types return None.
    """
    event_type = payload.get("type") or event_name

    if event_type == "start":
        return StartEvent(
            total_to_process=_int_or_none(payload.get("totalToProcess")) or 0,
            skipped=_int_or_none(payload.get("skipped")) or 0,
        )
    if event_type == "progress":
        return ProgressEvent(
            lesson_id=str(payload.get("lessonId", "unknown")),
            lesson_title=str(payload.get("lessonTitle", "")),
            status=str(payload.get("status", "")),
            processed_count=_int_or_none(payload.get("processedCount")),
            total_lessons_to_process=_int_or_none(payload.get("totalLessonsToProcess")),
            current_lesson_index=_int_or_none(payload.get("currentLessonIndex")),
            error=payload.get("error"),
        )
    if event_type == "complete":
        return CompleteEvent(
            overall_status=str(payload.get("overallStatus", "Unknown")),
            successful_count=_int_or_none(payload.get("successfulCount")) or 0,
            failed_count=_int_or_none(payload.get("failedCount")) or 0,
            skipped_count=_int_or_none(payload.get("skippedCount")) or 0,
        )
    return None


def encode_event(event: GenerationEvent) -> str:
    """Serialize an event as one SSE block."""
    data = json.dumps(event.to_payload(), ensure_ascii=False)
    return f"data: {data}\n\n"


# =============================================================================
# TRACKER
# =============================================================================


@dataclass
class LessonProgressDetail:
    lesson_id: str
    lesson_title: str
    status: str
    error: str | None = None


@dataclass
class GenerationSummary:
    message: str
    type: SummaryType


@dataclass
class GenerationTracker:
    """Client-side state of one generation run.

    Feed raw chunks with feed() or typed events with apply(). Once a
    ``complete`` event has been applied, later events are ignored.
    """

    total_to_process: int = 0
    skipped: int = 0
    processed: int = 0
    progress: float = 0.0
    details: list[LessonProgressDetail] = field(default_factory=list)
    message: str | None = None
    summary: GenerationSummary | None = None
    finished: bool = False
    completed: bool = False
    parse_errors: int = 0

    def __post_init__(self) -> None:
        self._decoder = SSEDecoder()

    # -- raw stream ---------------------------------------------------------

    def feed(self, chunk: str | bytes) -> list[GenerationEvent]:
        """Decode a chunk of the stream and apply every completed event."""
        return self._apply_sse(self._decoder.feed(chunk))

    def finish_stream(self) -> None:
        """Mark the end of the HTTP body."""
        self._apply_sse(self._decoder.flush())
        if not self.completed:
            self.message = "Stream finished by server."
        if self.summary is None:
            self.summary = GenerationSummary(
                message="Generation process ended. Check details.", type="info"
            )
        self.finished = True

    def _apply_sse(self, sse_events: list[ServerSentEvent]) -> list[GenerationEvent]:
        applied = []
        for sse in sse_events:
            try:
                payload = json.loads(sse.data)
            except json.JSONDecodeError:
                self.parse_errors += 1
                self.message = "Error processing generation updates from stream."
                logger.warning("generation_stream_bad_json", data=sse.data[:200])
                continue

            if not isinstance(payload, dict):
                self.parse_errors += 1
                continue

            event = parse_generation_event(payload, sse.event)
            if event is None:
                logger.debug("generation_stream_unknown_event", event=sse.event)
                continue
            if self.apply(event):
                applied.append(event)
        return applied

    # -- typed events -------------------------------------------------------

    def apply(self, event: GenerationEvent) -> bool:
        """Apply one event. Returns False when it was ignored."""
        if self.completed:
            return False

        if isinstance(event, StartEvent):
            self._on_start(event)
        elif isinstance(event, ProgressEvent):
            self._on_progress(event)
        elif isinstance(event, CompleteEvent):
            self._on_complete(event)
        else:
            return False
        return True

    def _on_start(self, event: StartEvent) -> None:
        self.total_to_process = event.total_to_process
        self.skipped = event.skipped
        self.message = (
            f"Preparing to process {event.total_to_process} lessons "
            f"(skipped {event.skipped} already existing)."
        )
        if event.total_to_process == 0 and event.skipped > 0:
            self.summary = GenerationSummary(
                message=(
                    f"No new lessons to process. {event.skipped} lessons already have content."
                ),
                type="info",
            )
            self.finished = True
        elif event.total_to_process == 0:
            self.summary = GenerationSummary(
                message="No lessons found to process or all were skipped.", type="info"
            )
            self.finished = True

    def _on_progress(self, event: ProgressEvent) -> None:
        if event.processed_count:
            processed = event.processed_count
        elif event.current_lesson_index is not None:
            processed = event.current_lesson_index + 1
        else:
            processed = self.processed + 1

        self.processed = processed
        self.progress = (processed / self.total_to_process) * 100 if self.total_to_process > 0 else 0.0
        self.message = f"Processed {processed} of {self.total_to_process} lessons..."

        detail = LessonProgressDetail(
            lesson_id=event.lesson_id,
            lesson_title=event.lesson_title,
            status=event.status,
            error=event.error,
        )
        for idx, existing in enumerate(self.details):
            if existing.lesson_id == event.lesson_id:
                self.details[idx] = detail
                break
        else:
            self.details.append(detail)

    def _on_complete(self, event: CompleteEvent) -> None:
        self.message = "Generation process completed."
        self.summary = GenerationSummary(
            message=(
                f"Status: {event.overall_status}. Successful: {event.successful_count}, "
                f"Failed: {event.failed_count}, Skipped: {event.skipped_count}."
            ),
            type=OVERALL_STATUS_TYPES.get(event.overall_status, "info"),
        )
        self.progress = 100.0
        self.finished = True
        self.completed = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_to_process": self.total_to_process,
            "skipped": self.skipped,
            "processed": self.processed,
            "progress": self.progress,
            "details": [asdict(d) for d in self.details],
            "message": self.message,
            "summary": asdict(self.summary) if self.summary else None,
            "finished": self.finished,
            "completed": self.completed,
        }


def track_stream(chunks: Iterable[str | bytes]) -> GenerationTracker:
    """Run a whole stream through a fresh tracker."""
    tracker = GenerationTracker()
    for chunk in chunks:
        tracker.feed(chunk)
    tracker.finish_stream()
    return tracker
