"""
Typed server-to-client event channel for ingestion progress.

Pipelines talk to the client only through ``EventChannel.send``. The set of
event kinds and their payload shapes is fixed; payloads are validated and
serialized with the camelCase keys the UI reads.
"""
import json
import logging
from typing import Any, Callable, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class StatusEvent(BaseModel):
    stage: Literal["parsing_pdf", "extracting", "embedding", "complete", "error"]
    message: str


class LogEvent(BaseModel):
    message: str
    level: Literal["info", "success", "warning", "error"] = "info"


class ItemEvent(BaseModel):
    index: int = Field(ge=0)
    type: Literal["knowledge_point", "question"]
    data: Dict[str, Any]
    warnings: List[str] = Field(default_factory=list)


class ProgressEvent(BaseModel):
    current: int = Field(ge=0)
    total: int = Field(ge=0)


class BatchSavedEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chunk_ids: List[str] = Field(alias="chunkIds")
    batch_index: int = Field(alias="batchIndex", ge=0)


class ErrorEvent(BaseModel):
    message: str
    code: str


EVENT_MODELS: Dict[str, Type[BaseModel]] = {
    "status": StatusEvent,
    "log": LogEvent,
    "item": ItemEvent,
    "progress": ProgressEvent,
    "batch_saved": BatchSavedEvent,
    "error": ErrorEvent,
}

EventSink = Callable[[str, Dict[str, Any]], None]


def format_sse(kind: str, data: Dict[str, Any]) -> str:
    """Render one event in server-sent events wire format."""
    return f"event: {kind}\ndata: {json.dumps(data, default=str)}\n\n"


class EventChannel:
    """Validates pipeline events and forwards them to a sink."""

    def __init__(self, sink: EventSink):
        """
        Args:
            sink: Callable receiving ``(kind, payload_dict)`` for every event
        """
        self._sink = sink
        self.terminal_event: Optional[str] = None

    @property
    def terminated(self) -> bool:
        """True once a ``status: complete`` or ``error`` event was sent."""
        return self.terminal_event is not None

    def send(self, kind: str, **payload: Any) -> Dict[str, Any]:
        """
        Validate and emit one event.

        Raises:
            ValueError: If ``kind`` is not a known event kind
            pydantic.ValidationError: If the payload does not match its kind
        """
        model = EVENT_MODELS.get(kind)
        if model is None:
            raise ValueError(f"Unknown event kind: {kind}")

        data = model(**payload).model_dump(by_alias=True)

        if kind == "error" or (kind == "status" and data["stage"] == "complete"):
            if self.terminated:
                logger.warning(
                    f"Dropping second terminal event '{kind}' after '{self.terminal_event}'"
                )
                return data
            self.terminal_event = kind

        self._sink(kind, data)
        return data

    # Convenience wrappers used throughout the pipelines

    def status(self, stage: str, message: str) -> None:
        self.send("status", stage=stage, message=message)

    def log(self, message: str, level: str = "info") -> None:
        self.send("log", message=message, level=level)

    def progress(self, current: int, total: int) -> None:
        self.send("progress", current=current, total=total)

    def error(self, message: str, code: str) -> None:
        self.send("error", message=message, code=code)

    def complete(self, message: str) -> None:
        self.send("status", stage="complete", message=message)


class RecordingSink:
    """Sink that keeps every event in memory; used by the CLI and tests."""

    def __init__(self, echo: Optional[Callable[[str], None]] = None):
        self.events: List[tuple] = []
        self._echo = echo

    def __call__(self, kind: str, data: Dict[str, Any]) -> None:
        self.events.append((kind, data))
        if self._echo is not None:
            self._echo(format_sse(kind, data))

    def of_kind(self, kind: str) -> List[Dict[str, Any]]:
        return [data for k, data in self.events if k == kind]
