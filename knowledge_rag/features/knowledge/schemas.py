"""
Knowledge feature: data model and request/response schemas.
"""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class DocumentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


TERMINAL_STATUSES = {DocumentStatus.PROCESSED, DocumentStatus.FAILED}


class Document(BaseModel):
    """An uploaded source file and its processing lifecycle."""
    id: str
    owner_id: str
    name: str = "No Name Given"
    url: str | None = None  # storage path inside the bucket
    mime_type: str = "application/pdf"
    status: DocumentStatus = DocumentStatus.PENDING
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class Resource(BaseModel):
    """The raw text extracted from a Document in one ingestion run."""
    id: str
    document_id: str
    owner_id: str
    content: str

    model_config = ConfigDict(from_attributes=True, frozen=True)


class EmbeddedChunk(BaseModel):
    content: str
    vector: list[float]


class EmbeddingRecord(BaseModel):
    """One row of the vector index."""
    owner_id: str
    content: str
    vector: list[float]
    source_ref: str  # resource id


class RetrievalCandidate(BaseModel):
    content: str
    similarity: float
    owner_id: str
    source_ref: str | None = None


class RelevanceVerdict(BaseModel):
    chunk_id: int  # index into the candidate list
    is_relevant: bool
    reasoning: str
    quotes: list[str] = []
    content: str
    similarity: float


class AnnotatedChunk(BaseModel):
    """A retrieval answer row."""
    content: str
    reasoning: str
    quotes: list[str] = []
    similarity: float


class IngestReport(BaseModel):
    document_id: str
    resource_id: str
    chunk_count: int
    embedding_count: int


# ── Structured generation schemas ────────────────────────

class ChunkingResult(BaseModel):
    """Semantic chunks extracted verbatim from one text window."""
    chunks: list[str] = Field(
        description="Semantically complete chunks, copied verbatim from the input, in reading order."
    )


class ChunkEvaluation(BaseModel):
    chunk_id: int = Field(description="The [index] of the chunk being evaluated.")
    is_relevant: bool = Field(description="True only if the chunk helps answer the query.")
    reasoning: str = Field(description="One or two sentences explaining the verdict.")
    quotes: list[str] = Field(
        default_factory=list,
        description="Exact spans copied from the chunk that support the answer. Empty if not relevant.",
    )


class RelevanceAssessment(BaseModel):
    evaluations: list[ChunkEvaluation]


# ── API schemas ──────────────────────────────────────────

class DocumentResponse(BaseModel):
    id: str
    name: str
    url: str | None = None
    mime_type: str
    status: DocumentStatus
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    include_trace: bool = True


class SearchResponse(BaseModel):
    status: str = "success"
    results: list[AnnotatedChunk]
    trace: list[dict] = []


class BulkDeleteRequest(BaseModel):
    ids: list[str]


class BulkDeleteResponse(BaseModel):
    deleted_count: int
    failed_count: int
    deleted_ids: list[str]
    failed_ids: list[str]


class GraphNode(BaseModel):
    id: str
    name: str
    type: Literal["file", "resource"]
    val: int  # node size hint for the graph view
    full_content: str | None = None


class GraphLink(BaseModel):
    source: str  # document id
    target: str  # resource id


class KnowledgeGraph(BaseModel):
    nodes: list[GraphNode] = []
    links: list[GraphLink] = []
