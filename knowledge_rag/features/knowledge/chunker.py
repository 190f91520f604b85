"""
Knowledge feature: agentic semantic chunking.

Raw text is first cut into large windows that fit the model's context, then
each window is re-split by the LLM into semantically complete chunks. Windows
run in groups of at most `concurrency` calls; a failing window only loses its
own chunks.
"""

import asyncio
import logging

from langchain_text_splitters import RecursiveCharacterTextSplitter

from knowledge_rag.core.capabilities import StructuredGenerator
from knowledge_rag.features.knowledge.events import (
    ChunkCreatedEvent,
    LogEvent,
    ProgressEvent,
    ProgressSink,
    ensure_sink,
    preview,
)
from knowledge_rag.features.knowledge.prompts import CHUNKING_SYSTEM_PROMPT, CHUNKING_USER_TEMPLATE
from knowledge_rag.features.knowledge.schemas import ChunkingResult

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = 20_000
DEFAULT_CONCURRENCY = 5


def split_windows(text: str, window_size: int = DEFAULT_WINDOW_SIZE) -> list[str]:
    """Cheap, non-semantic pre-split so each window fits one generation call.

    Prefers paragraph, line and sentence boundaries; falls back to raw
    characters, so no window is longer than `window_size`.
    """
    if window_size <= 0:
        raise ValueError(f"window_size must be positive, got {window_size}")
    if not text.strip():
        return []
    if len(text) <= window_size:
        return [text]

    splitter = RecursiveCharacterTextSplitter(
        chunk_size=window_size,
        chunk_overlap=0,
        separators=["\n\n", "\n", ". ", " ", ""],
    )
    return [w for w in splitter.split_text(text) if w.strip()]


class AgenticChunker:
    """Splits text into semantic chunks with a structured-generation model."""

    def __init__(
        self,
        generator: StructuredGenerator,
        window_size: int = DEFAULT_WINDOW_SIZE,
        concurrency: int = DEFAULT_CONCURRENCY,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.generator = generator
        self.window_size = window_size
        self.concurrency = concurrency

    async def chunk(self, text: str, progress: ProgressSink | None = None) -> list[str]:
        """Return the semantic chunks of `text`, in document order.

        Never returns an empty list for non-blank input: if every window
        fails, the whole input becomes a single chunk.
        """
        sink = ensure_sink(progress)
        windows = split_windows(text, self.window_size)
        if not windows:
            return []

        total = len(windows)
        logger.info(f"✂️ Chunking {len(text)} chars in {total} window(s), concurrency={self.concurrency}")
        sink.emit(LogEvent(message=f"Chunking {total} window(s)..."))

        results: list[list[str]] = []
        for start in range(0, total, self.concurrency):
            group = windows[start:start + self.concurrency]
            # Next group starts only after this one completes
            group_results = await asyncio.gather(
                *(self._chunk_window(start + i, window, sink) for i, window in enumerate(group))
            )
            results.extend(group_results)

            done = start + len(group)
            sink.emit(ProgressEvent(
                stage="chunk",
                percent=round(done / total * 100, 1),
                message=f"Chunked {done}/{total} windows",
            ))

        chunks = [chunk for window_chunks in results for chunk in window_chunks]
        if not chunks:
            logger.warning("⚠️ Every chunking window failed, falling back to a single chunk")
            sink.emit(LogEvent(level="warning", message="Chunking failed, using the whole text as one chunk"))
            chunks = [text.strip()]

        for index, chunk in enumerate(chunks):
            sink.emit(ChunkCreatedEvent(index=index, content=preview(chunk)))

        logger.info(f"✅ Produced {len(chunks)} chunks from {total} window(s)")
        return chunks

    async def _chunk_window(self, index: int, window: str, sink: ProgressSink) -> list[str]:
        """Chunk one window. Failures are contained here and yield no chunks."""
        try:
            result = await self.generator.generate_structured(
                CHUNKING_SYSTEM_PROMPT,
                CHUNKING_USER_TEMPLATE.format(window=window),
                ChunkingResult,
            )
        except Exception as e:
            logger.error(f"❌ Chunking window {index} failed: {e}")
            sink.emit(LogEvent(level="error", message=f"Window {index} failed: {e}"))
            return []

        chunks = [c.strip() for c in result.chunks if c and c.strip()]
        if not chunks:
            # A successful call must not silently drop the window
            logger.warning(f"⚠️ Window {index} returned no chunks, keeping it whole")
            chunks = [window.strip()]
        return chunks
