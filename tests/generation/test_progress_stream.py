"""Tests for the generation progress stream (SSE decoding and tracking)."""

import json

import pytest

from classroom.core.progress_stream import (
    CompleteEvent,
    GenerationTracker,
    ProgressEvent,
    SSEDecoder,
    StartEvent,
    encode_event,
    parse_generation_event,
    track_stream,
)


def _stream(*payloads):
    return "".join(f"data: {json.dumps(p)}\n\n" for p in payloads)


FULL_RUN = _stream(
    {"type": "start", "totalToProcess": 2, "skipped": 1},
    {
        "type": "progress",
        "processedCount": 1,
        "totalLessonsToProcess": 2,
        "lessonId": "l1",
        "lessonTitle": "Cells",
        "status": "success",
    },
    {
        "type": "progress",
        "processedCount": 2,
        "totalLessonsToProcess": 2,
        "lessonId": "l2",
        "lessonTitle": "Mitosis",
        "status": "failed",
        "error": "LLM error: timeout",
    },
    {
        "type": "complete",
        "overallStatus": "Completed with some failures",
        "successfulCount": 1,
        "failedCount": 1,
        "skippedCount": 1,
    },
)


class TestSSEDecoder:
    """Tests for SSEDecoder."""

    def test_single_event(self):
        events = SSEDecoder().feed('data: {"a": 1}\n\n')
        assert len(events) == 1
        assert events[0].data == '{"a": 1}'
        assert events[0].event == "message"

    def test_event_name_and_id(self):
        events = SSEDecoder().feed("event: change\nid: 7\ndata: x\n\n")
        assert (events[0].event, events[0].id, events[0].data) == ("change", "7", "x")

    def test_multiline_data_joined(self):
        events = SSEDecoder().feed("data: one\ndata: two\n\n")
        assert events[0].data == "one\ntwo"

    def test_crlf_and_cr_line_endings(self):
        decoder = SSEDecoder()
        events = decoder.feed("data: a\r\n\r\ndata: b\r\rdata: c\n\n")
        assert [e.data for e in events] == ["a", "b", "c"]

    def test_comments_ignored(self):
        events = SSEDecoder().feed(": keepalive\n\n: subscribed\ndata: x\n\n")
        assert [e.data for e in events] == ["x"]

    def test_retry_field(self):
        decoder = SSEDecoder()
        decoder.feed("retry: 3000\n\n")
        assert decoder.retry_ms == 3000

    def test_no_space_after_colon(self):
        events = SSEDecoder().feed("data:x\n\n")
        assert events[0].data == "x"

    def test_incomplete_event_waits(self):
        decoder = SSEDecoder()
        assert decoder.feed("data: partial") == []
        assert [e.data for e in decoder.feed("\n\n")] == ["partial"]

    def test_flush_dispatches_unterminated_event(self):
        decoder = SSEDecoder()
        assert decoder.feed("data: last") == []
        assert [e.data for e in decoder.flush()] == ["last"]

    def test_split_utf8_sequence(self):
        raw = 'data: {"title": "Célula"}\n\n'.encode("utf-8")
        cut = raw.index("é".encode("utf-8")) + 1
        decoder = SSEDecoder()
        events = decoder.feed(raw[:cut]) + decoder.feed(raw[cut:])
        assert json.loads(events[0].data)["title"] == "Célula"

    def test_every_split_point_gives_same_events(self):
        """Chunk boundaries can fall anywhere, including mid-object and between \\r and \\n."""
        text = FULL_RUN.replace("\n", "\r\n")
        expected = [e.data for e in SSEDecoder().feed(text)]
        assert len(expected) == 4

        for cut in range(1, len(text)):
            decoder = SSEDecoder()
            events = decoder.feed(text[:cut]) + decoder.feed(text[cut:]) + decoder.flush()
            assert [e.data for e in events] == expected, f"split at {cut}"


class TestParseGenerationEvent:
    def test_type_field_wins(self):
        event = parse_generation_event({"type": "start", "totalToProcess": 3}, "progress")
        assert isinstance(event, StartEvent)
        assert event.total_to_process == 3

    def test_event_name_fallback(self):
        event = parse_generation_event({"overallStatus": "All successful"}, "complete")
        assert isinstance(event, CompleteEvent)

    def test_unknown_type(self):
        assert parse_generation_event({"type": "heartbeat"}) is None

    def test_progress_defaults(self):
        event = parse_generation_event({"type": "progress"})
        assert event.lesson_id == "unknown"
        assert event.processed_count is None

    def test_encode_roundtrip_payload(self):
        block = encode_event(ProgressEvent("l1", "Cells", "success", processed_count=1, total_lessons_to_process=2))
        assert block.startswith("data: ") and block.endswith("\n\n")
        payload = json.loads(block[len("data: ") :])
        assert payload["lessonId"] == "l1"
        assert "error" not in payload


class TestGenerationTracker:
    """Tests for GenerationTracker."""

    def test_full_run(self):
        tracker = track_stream([FULL_RUN])

        assert tracker.total_to_process == 2
        assert tracker.skipped == 1
        assert tracker.processed == 2
        assert tracker.progress == 100.0
        assert [d.status for d in tracker.details] == ["success", "failed"]
        assert tracker.details[1].error == "LLM error: timeout"
        assert tracker.summary.type == "warning"
        assert tracker.summary.message == (
            "Status: Completed with some failures. Successful: 1, Failed: 1, Skipped: 1."
        )
        assert tracker.completed is True
        assert tracker.message == "Generation process completed."

    def test_progress_percentage(self):
        tracker = GenerationTracker()
        tracker.feed(_stream({"type": "start", "totalToProcess": 4, "skipped": 0}))
        tracker.feed(_stream({"type": "progress", "processedCount": 1, "lessonId": "l1", "status": "success"}))

        assert tracker.progress == 25.0
        assert tracker.message == "Processed 1 of 4 lessons..."

    def test_processed_from_lesson_index(self):
        tracker = GenerationTracker()
        tracker.apply(StartEvent(total_to_process=4))
        tracker.apply(ProgressEvent("l3", "Three", "success", current_lesson_index=2))
        assert tracker.processed == 3

    def test_processed_increments_without_counts(self):
        tracker = GenerationTracker()
        tracker.apply(StartEvent(total_to_process=2))
        tracker.apply(ProgressEvent("l1", "One", "success"))
        tracker.apply(ProgressEvent("l2", "Two", "success"))
        assert tracker.processed == 2

    def test_repeated_lesson_replaces_detail(self):
        tracker = GenerationTracker()
        tracker.apply(StartEvent(total_to_process=1))
        tracker.apply(ProgressEvent("l1", "One", "processing", processed_count=1))
        tracker.apply(ProgressEvent("l1", "One", "success", processed_count=1))

        assert len(tracker.details) == 1
        assert tracker.details[0].status == "success"

    def test_events_after_complete_ignored(self):
        tracker = GenerationTracker()
        tracker.apply(CompleteEvent("All successful", successful_count=1))
        assert tracker.apply(ProgressEvent("l9", "Late", "success")) is False
        assert tracker.details == []

    @pytest.mark.parametrize(
        "status,summary_type",
        [
            ("All successful", "success"),
            ("All processed tasks successful", "success"),
            ("Completed with some failures", "warning"),
            ("All failed", "error"),
            ("Something else", "info"),
        ],
    )
    def test_summary_type(self, status, summary_type):
        tracker = GenerationTracker()
        tracker.apply(CompleteEvent(status))
        assert tracker.summary.type == summary_type

    def test_nothing_to_process_but_skipped(self):
        tracker = GenerationTracker()
        tracker.apply(StartEvent(total_to_process=0, skipped=3))

        assert tracker.finished is True
        assert tracker.summary.type == "info"
        assert tracker.summary.message == "No new lessons to process. 3 lessons already have content."

    def test_nothing_at_all(self):
        tracker = GenerationTracker()
        tracker.apply(StartEvent(total_to_process=0))
        assert tracker.summary.message == "No lessons found to process or all were skipped."

    def test_stream_ends_without_complete(self):
        tracker = track_stream([_stream({"type": "start", "totalToProcess": 2})])

        assert tracker.finished is True
        assert tracker.completed is False
        assert tracker.message == "Stream finished by server."
        assert tracker.summary.message == "Generation process ended. Check details."

    def test_bad_json_is_counted_and_skipped(self):
        tracker = GenerationTracker()
        tracker.feed("data: {not json}\n\n")
        tracker.feed(_stream({"type": "start", "totalToProcess": 1}))

        assert tracker.parse_errors == 1
        assert tracker.total_to_process == 1

    def test_bytes_chunks(self):
        tracker = track_stream([FULL_RUN[:50].encode(), FULL_RUN[50:].encode()])
        assert tracker.completed is True

    def test_to_dict(self):
        data = track_stream([FULL_RUN]).to_dict()
        assert data["summary"]["type"] == "warning"
        assert len(data["details"]) == 2
