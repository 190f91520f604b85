"""
Knowledge feature: ingestion and retrieval pipeline.

  ingest:   text -> Resource -> AgenticChunker -> Embedder -> VectorIndex
  retrieve: query -> HyDE -> RecallStage -> RelevanceFilter -> annotated chunks

Status lifecycle per document: `processing` is claimed once at the start and
exactly one terminal status is written at the end, whatever happens in
between (stage failure, timeout or cancellation).
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, TypeVar

from knowledge_rag.core.capabilities import CapabilitySet
from knowledge_rag.core.exceptions import (
    DocumentBusyError,
    DocumentNotFoundError,
    NoContentError,
    PipelineError,
)
from knowledge_rag.features.knowledge.chunker import AgenticChunker
from knowledge_rag.features.knowledge.document_store import DocumentStore
from knowledge_rag.features.knowledge.embedding import Embedder
from knowledge_rag.features.knowledge.events import (
    CompleteEvent,
    ErrorEvent,
    LogEvent,
    ProgressEvent,
    ProgressSink,
    ensure_sink,
)
from knowledge_rag.features.knowledge.query_expander import HydeQueryExpander
from knowledge_rag.features.knowledge.recall import RecallStage
from knowledge_rag.features.knowledge.relevance import RelevanceFilter, to_annotated
from knowledge_rag.features.knowledge.schemas import (
    AnnotatedChunk,
    DocumentStatus,
    EmbeddingRecord,
    GraphLink,
    GraphNode,
    IngestReport,
    KnowledgeGraph,
)
from knowledge_rag.features.knowledge.vector_store import VectorIndex

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PipelineConfig:
    window_size: int = 20_000
    concurrency: int = 5
    dimensions: int = 1536
    top_k: int = 10
    min_similarity: float = 0.3
    ingest_timeout: float | None = 300.0

    @classmethod
    def from_settings(cls, settings) -> "PipelineConfig":
        return cls(
            window_size=settings.CHUNK_WINDOW_SIZE,
            concurrency=settings.CHUNK_CONCURRENCY,
            dimensions=settings.EMBEDDING_DIMENSIONS,
            top_k=settings.RETRIEVAL_TOP_K,
            min_similarity=settings.RETRIEVAL_MIN_SIMILARITY,
            ingest_timeout=settings.INGEST_TIMEOUT_SECONDS,
        )


async def _stage(name: str, awaitable: Awaitable[T]) -> T:
    """Await one stage, wrapping any failure with the stage name."""
    try:
        return await awaitable
    except PipelineError:
        raise
    except Exception as e:
        logger.error(f"❌ Stage '{name}' failed: {e}")
        raise PipelineError(name, e) from e


class KnowledgePipeline:
    """Owns the pipeline stages and the two public entry points."""

    def __init__(
        self,
        capabilities: CapabilitySet,
        index: VectorIndex,
        documents: DocumentStore,
        config: PipelineConfig | None = None,
    ):
        self.config = config or PipelineConfig()
        self.index = index
        self.documents = documents
        self.chunker = AgenticChunker(
            capabilities.structured,
            window_size=self.config.window_size,
            concurrency=self.config.concurrency,
        )
        self.embedder = Embedder(capabilities.embedder, dimensions=self.config.dimensions)
        self.expander = HydeQueryExpander(capabilities.text, self.embedder)
        self.recall_stage = RecallStage(index)
        self.relevance = RelevanceFilter(capabilities.structured)

    # ── Ingestion ────────────────────────────────────────

    async def ingest(
        self,
        document_text: str,
        document_id: str,
        owner_id: str,
        progress: ProgressSink | None = None,
    ) -> IngestReport:
        """Chunk, embed and index `document_text` for `document_id`.

        Raises:
            DocumentNotFoundError: Unknown document, or owned by someone else.
            DocumentBusyError: Another run already holds the document.
            PipelineError: Any fatal stage failure (status is set to `failed`).
        """
        sink = ensure_sink(progress)
        if not owner_id:
            raise PipelineError("authorize", "owner_id is required")

        await self._claim(document_id, owner_id)

        logger.info(f"🚀 Ingesting document {document_id} for owner {owner_id}")
        state: dict[str, str | None] = {"resource_id": None}
        try:
            report = await asyncio.wait_for(
                self._run_ingest(document_text, document_id, owner_id, sink, state),
                timeout=self.config.ingest_timeout,
            )
            await _stage("finalize", self.documents.set_status(document_id, DocumentStatus.PROCESSED))
        except asyncio.TimeoutError as e:
            error = PipelineError("timeout", f"Ingestion exceeded {self.config.ingest_timeout}s")
            await self._fail(document_id, state, sink, error)
            raise error from e
        except asyncio.CancelledError:
            await self._fail(document_id, state, sink, PipelineError("cancelled", "Ingestion was cancelled"))
            raise
        except PipelineError as e:
            await self._fail(document_id, state, sink, e)
            raise
        except Exception as e:
            error = PipelineError("ingest", e)
            await self._fail(document_id, state, sink, error)
            raise error from e

        sink.emit(CompleteEvent(
            message="Resource successfully created and embedded.",
            data=report.model_dump(),
        ))
        logger.info(f"🎉 Document {document_id} processed: {report.chunk_count} chunks")
        return report

    async def _claim(self, document_id: str, owner_id: str) -> None:
        """Move an owned document to `processing`, or raise."""
        document = await _stage("claim", self.documents.get(document_id))
        if document is None or document.owner_id != owner_id:
            raise DocumentNotFoundError(document_id)
        if not await _stage("claim", self.documents.claim(document_id)):
            raise DocumentBusyError(document_id)

    async def fail_unclaimed(
        self,
        document_id: str,
        owner_id: str,
        error: PipelineError,
        progress: ProgressSink | None = None,
    ) -> None:
        """Record a failure that happened before ingestion could start (e.g. text extraction).

        Goes through the same claim as `ingest`, so a document another run is
        processing is never marked failed underneath it.

        Raises:
            DocumentNotFoundError: Unknown document, or owned by someone else.
            DocumentBusyError: Another run already holds the document.
        """
        sink = ensure_sink(progress)
        await self._claim(document_id, owner_id)
        await self._fail(document_id, {"resource_id": None}, sink, error)

    async def _run_ingest(
        self,
        document_text: str,
        document_id: str,
        owner_id: str,
        sink: ProgressSink,
        state: dict,
    ) -> IngestReport:
        if not document_text or not document_text.strip():
            raise NoContentError(document_id)

        sink.emit(ProgressEvent(stage="ingest", percent=0, message="Saving raw resource..."))
        resource = await _stage(
            "persist", self.documents.create_resource(document_id, owner_id, document_text)
        )
        state["resource_id"] = resource.id

        sink.emit(LogEvent(message="Generating semantic chunks..."))
        chunks = await _stage("chunk", self.chunker.chunk(document_text, sink))

        sink.emit(LogEvent(message=f"Embedding {len(chunks)} chunks..."))
        embedded = await _stage("embed", self.embedder.embed(chunks))

        records = [
            EmbeddingRecord(owner_id=owner_id, content=e.content, vector=e.vector, source_ref=resource.id)
            for e in embedded
        ]
        sink.emit(LogEvent(message=f"Saving {len(records)} embeddings..."))
        await _stage("index", self.index.upsert_many(records))
        sink.emit(ProgressEvent(stage="ingest", percent=100, message="Embeddings saved"))

        return IngestReport(
            document_id=document_id,
            resource_id=resource.id,
            chunk_count=len(chunks),
            embedding_count=len(records),
        )

    async def _fail(self, document_id: str, state: dict, sink: ProgressSink, error: PipelineError) -> None:
        """Undo partial writes (embeddings, then the resource) and mark the document failed."""
        logger.error(f"❌ Ingestion of {document_id} failed at '{error.stage}': {error.detail}")
        resource_id = state.get("resource_id")
        if resource_id:
            try:
                await self.index.delete_by_source(resource_id)
            except Exception as cleanup_error:
                logger.error(f"❌ Could not remove embeddings of resource {resource_id}: {cleanup_error}")
            try:
                await self.documents.delete_resource(resource_id)
            except Exception as cleanup_error:
                logger.error(f"❌ Could not remove resource {resource_id}: {cleanup_error}")
        try:
            await self.documents.set_status(document_id, DocumentStatus.FAILED)
        except Exception as status_error:
            logger.error(f"❌ Could not mark document {document_id} as failed: {status_error}")
        sink.emit(ErrorEvent(stage=error.stage, message=error.detail or error.message))

    # ── Retrieval ────────────────────────────────────────

    async def retrieve(
        self,
        query: str,
        owner_id: str,
        progress: ProgressSink | None = None,
        k: int | None = None,
        min_similarity: float | None = None,
    ) -> list[AnnotatedChunk]:
        """Answer rows for `query` from `owner_id`'s knowledge base.

        Returns an empty list without an owner id (fail closed) or when recall
        finds nothing; the relevance filter is not called in that case.
        """
        sink = ensure_sink(progress)
        if not owner_id:
            logger.error("🚫 Retrieval called without owner_id")
            sink.emit(ErrorEvent(stage="authorize", message="owner_id is required"))
            return []
        query = (query or "").strip()
        if not query:
            return []

        k = self.config.top_k if k is None else k
        min_similarity = self.config.min_similarity if min_similarity is None else min_similarity

        try:
            vector = await _stage("expand", self.expander.expand(query, sink))
            candidates = await _stage(
                "recall", self.recall_stage.recall(vector, owner_id, k, min_similarity, sink)
            )
            if not candidates:
                sink.emit(CompleteEvent(message="No relevant content found", data={"count": 0}))
                return []
            verdicts = await _stage("filter", self.relevance.filter(query, candidates, sink))
        except PipelineError as e:
            sink.emit(ErrorEvent(stage=e.stage, message=str(e.detail)))
            raise

        results = to_annotated(verdicts)
        sink.emit(CompleteEvent(
            message=f"{len(results)} of {len(candidates)} candidates relevant",
            data={"count": len(results)},
        ))
        return results

    # ── Deletion ─────────────────────────────────────────

    async def delete_document(self, document_id: str, owner_id: str) -> bool:
        """Delete a document with its resources and their embeddings."""
        document = await self.documents.get(document_id, owner_id)
        if document is None:
            return False
        for resource in await self.documents.list_resources(document_id, owner_id):
            removed = await self.index.delete_by_source(resource.id)
            logger.info(f"🗑️ Removed {removed} embeddings of resource {resource.id}")
        return await self.documents.delete(document_id, owner_id)

    # ── Graph view ───────────────────────────────────────

    async def knowledge_graph(self, owner_id: str) -> KnowledgeGraph:
        """Documents and their resources as nodes, linked document -> resource."""
        documents = await self.documents.list_for_owner(owner_id)
        resources = await self.documents.list_resources_for_owner(owner_id)

        nodes = [GraphNode(id=d.id, name=d.name or "Untitled File", type="file", val=10) for d in documents]
        nodes.extend(
            GraphNode(
                id=r.id,
                name=r.content[:20] + "...",
                type="resource",
                val=5,
                full_content=r.content,
            )
            for r in resources
        )
        links = [GraphLink(source=r.document_id, target=r.id) for r in resources]
        return KnowledgeGraph(nodes=nodes, links=links)
