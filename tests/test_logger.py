"""Unit tests for the JSON log formatter."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import json
import logging

from logger import JSONFormatter


def _record(message, **extra):
    record = logging.LogRecord("pipelines.base", logging.WARNING, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:

    def test_basic_fields(self):
        data = json.loads(JSONFormatter().format(_record("Dedup kept 2/3")))

        assert data["level"] == "WARNING"
        assert data["logger"] == "pipelines.base"
        assert data["message"] == "Dedup kept 2/3"
        assert data["timestamp"].endswith("Z")

    def test_context_fields(self):
        record = _record("Saved batch", document_id="doc-1", pipeline="lecture", batch_index=0, unrelated="x")

        data = json.loads(JSONFormatter().format(record))

        assert data["document_id"] == "doc-1"
        assert data["pipeline"] == "lecture"
        assert data["batch_index"] == 0
        assert "unrelated" not in data
        assert "error_code" not in data
