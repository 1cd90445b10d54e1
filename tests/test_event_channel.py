"""Unit tests for the ingestion event channel."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import json

import pytest
from pydantic import ValidationError
from services.event_channel import EventChannel, RecordingSink, format_sse


class TestEventChannel:
    """Test suite for EventChannel."""

    def test_events_reach_sink(self):
        sink = RecordingSink()
        channel = EventChannel(sink)

        channel.status("parsing_pdf", "Parsing PDF...")
        channel.log("Parsed 3 pages", "success")
        channel.progress(1, 3)

        assert [k for k, _ in sink.events] == ["status", "log", "progress"]
        assert sink.of_kind("log") == [{"message": "Parsed 3 pages", "level": "success"}]
        assert channel.terminated is False

    def test_batch_saved_uses_camel_case(self):
        sink = RecordingSink()
        channel = EventChannel(sink)

        channel.send("batch_saved", chunk_ids=["a", "b"], batch_index=0)

        assert sink.of_kind("batch_saved") == [{"chunkIds": ["a", "b"], "batchIndex": 0}]

    def test_item_event(self):
        sink = RecordingSink()
        channel = EventChannel(sink)

        channel.send("item", index=0, type="question", data={"content": "Q1"}, warnings=["No reference answer"])

        assert sink.of_kind("item")[0]["warnings"] == ["No reference answer"]

    def test_unknown_kind(self):
        channel = EventChannel(RecordingSink())

        with pytest.raises(ValueError, match="Unknown event kind"):
            channel.send("chunk", data={})

    def test_invalid_payload(self):
        channel = EventChannel(RecordingSink())

        with pytest.raises(ValidationError):
            channel.status("uploading", "not a stage")
        with pytest.raises(ValidationError):
            channel.progress(-1, 3)

    def test_only_first_terminal_event_is_sent(self):
        """Test a run never emits more than one complete or error event."""
        sink = RecordingSink()
        channel = EventChannel(sink)

        channel.complete("Done!")
        channel.error("Processing ended unexpectedly", "EXTRACTION_ERROR")

        assert channel.terminal_event == "status"
        assert sink.of_kind("error") == []
        assert sink.of_kind("status") == [{"stage": "complete", "message": "Done!"}]

    def test_error_is_terminal(self):
        channel = EventChannel(RecordingSink())

        channel.status("extracting", "AI extracting content...")
        assert channel.terminated is False

        channel.error("Failed to extract content from PDF", "EXTRACTION_ERROR")
        assert channel.terminal_event == "error"

    def test_recording_sink_echo(self):
        lines = []
        channel = EventChannel(RecordingSink(echo=lines.append))

        channel.progress(2, 5)

        assert lines == ["event: progress\ndata: {\"current\": 2, \"total\": 5}\n\n"]


class TestFormatSse:

    def test_wire_format(self):
        text = format_sse("error", {"message": "bad", "code": "SAVE_ERROR"})

        assert text.startswith("event: error\ndata: ")
        assert text.endswith("\n\n")
        assert json.loads(text.split("data: ", 1)[1]) == {"message": "bad", "code": "SAVE_ERROR"}
