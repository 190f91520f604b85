"""
Knowledge feature: progress events and sinks.

Every pipeline stage may push structured status events into a ProgressSink.
Events form a closed union discriminated by `type`, so the UI (or a test) can
dispatch on the kind without guessing at payload shapes. Sinks are
fire-and-forget: `emit` never blocks and never raises into the pipeline.
"""

import asyncio
import logging
from typing import Annotated, AsyncIterator, Callable, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

logger = logging.getLogger(__name__)


# ── Event kinds ──────────────────────────────────────────

class ProgressEvent(BaseModel):
    type: Literal["progress"] = "progress"
    stage: str
    percent: float = Field(ge=0, le=100)
    message: str = ""


class ChunkCreatedEvent(BaseModel):
    type: Literal["chunk_created"] = "chunk_created"
    index: int
    content: str  # preview only


class LogEvent(BaseModel):
    type: Literal["log"] = "log"
    level: Literal["info", "warning", "error"] = "info"
    message: str


class SimilarityDebugEvent(BaseModel):
    type: Literal["similarity"] = "similarity"
    content: str
    score: float
    threshold: float


class HydeGeneratedEvent(BaseModel):
    type: Literal["hyde-generated"] = "hyde-generated"
    content: str


class ReactEvaluationEvent(BaseModel):
    type: Literal["react-evaluation"] = "react-evaluation"
    chunk_id: int
    is_relevant: bool
    reasoning: str
    content: str
    quotes: list[str] = []


class CompleteEvent(BaseModel):
    type: Literal["complete"] = "complete"
    message: str = ""
    data: dict = {}


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    stage: str
    message: str


PipelineEvent = Annotated[
    Union[
        ProgressEvent,
        ChunkCreatedEvent,
        LogEvent,
        SimilarityDebugEvent,
        HydeGeneratedEvent,
        ReactEvaluationEvent,
        CompleteEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

pipeline_event_adapter = TypeAdapter(PipelineEvent)


def preview(text: str, length: int = 40) -> str:
    """Shorten content for event payloads."""
    text = " ".join(text.split())
    return text if len(text) <= length else text[:length] + "..."


# ── Sinks ────────────────────────────────────────────────

class ProgressSink:
    """Base sink. Subclasses implement `_deliver`; delivery errors are logged, never raised."""

    def emit(self, event: BaseModel) -> None:
        try:
            self._deliver(event)
        except Exception as e:
            logger.warning(f"⚠️ Progress sink dropped {getattr(event, 'type', '?')} event: {e}")

    def _deliver(self, event: BaseModel) -> None:
        raise NotImplementedError


class NullProgressSink(ProgressSink):
    """Default sink for headless runs."""

    def emit(self, event: BaseModel) -> None:
        return None


NULL_SINK = NullProgressSink()


def ensure_sink(sink: ProgressSink | None) -> ProgressSink:
    return sink if sink is not None else NULL_SINK


class CollectingProgressSink(ProgressSink):
    """Keeps every event in memory (audit trail for a single request)."""

    def __init__(self):
        self.events: list[BaseModel] = []

    def _deliver(self, event: BaseModel) -> None:
        self.events.append(event)

    def of_type(self, event_cls: type[BaseModel]) -> list:
        return [e for e in self.events if isinstance(e, event_cls)]


class CallbackProgressSink(ProgressSink):
    """Forwards each event to a plain callable."""

    def __init__(self, callback: Callable[[BaseModel], None]):
        self.callback = callback

    def _deliver(self, event: BaseModel) -> None:
        self.callback(event)


class QueueProgressSink(ProgressSink):
    """Bridges pipeline events to an async consumer (e.g. a streaming HTTP response).

    Uses put_nowait so a slow consumer can never stall the pipeline; when the
    queue is full the event is dropped and logged.
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = 1000):
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    def _deliver(self, event: BaseModel) -> None:
        self.queue.put_nowait(event)

    def close(self) -> None:
        try:
            self.queue.put_nowait(self._CLOSED)
        except asyncio.QueueFull:
            # Make room for the sentinel; the consumer must be able to stop
            self.queue.get_nowait()
            self.queue.put_nowait(self._CLOSED)

    async def stream(self) -> AsyncIterator[BaseModel]:
        while True:
            item = await self.queue.get()
            if item is self._CLOSED:
                return
            yield item
