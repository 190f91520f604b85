"""
Knowledge feature: Vector Index backends.

The pipeline only depends on the VectorIndex protocol. Production uses
Supabase + pgvector (cosine distance via the `match_embeddings` RPC, see
migrations/); the in-memory index serves local runs and tests.

Every query is owner-scoped: the owner id is part of the query itself, not an
optional filter.
"""

import asyncio
import logging
import math
from typing import Protocol

from supabase import Client

from knowledge_rag.features.knowledge.schemas import EmbeddingRecord, RetrievalCandidate

logger = logging.getLogger(__name__)


class VectorIndex(Protocol):
    async def upsert(self, owner_id: str, content: str, vector: list[float], source_ref: str) -> None: ...

    async def upsert_many(self, records: list[EmbeddingRecord]) -> int: ...

    async def query(
        self, owner_id: str, vector: list[float], k: int, min_similarity: float
    ) -> list[RetrievalCandidate]: ...

    async def delete_by_source(self, source_ref: str) -> int: ...


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """1 - cosine distance. Zero vectors have similarity 0."""
    if len(a) != len(b):
        raise ValueError(f"Vector size mismatch: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class InMemoryVectorIndex:
    """Brute-force cosine index kept in process memory."""

    def __init__(self):
        self.records: list[EmbeddingRecord] = []
        self._lock = asyncio.Lock()

    async def upsert(self, owner_id: str, content: str, vector: list[float], source_ref: str) -> None:
        await self.upsert_many([
            EmbeddingRecord(owner_id=owner_id, content=content, vector=vector, source_ref=source_ref)
        ])

    async def upsert_many(self, records: list[EmbeddingRecord]) -> int:
        async with self._lock:
            self.records.extend(records)
        return len(records)

    async def query(
        self, owner_id: str, vector: list[float], k: int, min_similarity: float
    ) -> list[RetrievalCandidate]:
        scored = []
        for record in self.records:
            if record.owner_id != owner_id:
                continue
            similarity = cosine_similarity(record.vector, vector)
            if similarity > min_similarity:
                scored.append(RetrievalCandidate(
                    content=record.content,
                    similarity=similarity,
                    owner_id=record.owner_id,
                    source_ref=record.source_ref,
                ))
        scored.sort(key=lambda c: c.similarity, reverse=True)
        return scored[:k]

    async def delete_by_source(self, source_ref: str) -> int:
        async with self._lock:
            before = len(self.records)
            self.records = [r for r in self.records if r.source_ref != source_ref]
            return before - len(self.records)


class SupabaseVectorIndex:
    """pgvector-backed index on the `embeddings` table.

    The Supabase client is synchronous, so every call runs in a worker thread
    to keep the event loop free.
    """

    def __init__(
        self,
        db: Client,
        table: str = "embeddings",
        match_rpc: str = "match_embeddings",
        batch_size: int = 50,
    ):
        self.db = db
        self.table = table
        self.match_rpc = match_rpc
        self.batch_size = batch_size

    async def upsert(self, owner_id: str, content: str, vector: list[float], source_ref: str) -> None:
        await self.upsert_many([
            EmbeddingRecord(owner_id=owner_id, content=content, vector=vector, source_ref=source_ref)
        ])

    async def upsert_many(self, records: list[EmbeddingRecord]) -> int:
        rows = [
            {
                "resource_id": r.source_ref,
                "user_id": r.owner_id,
                "content": r.content,
                "embedding": r.vector,
            }
            for r in records
        ]
        # Insert in batches so the request body stays small
        for i in range(0, len(rows), self.batch_size):
            batch = rows[i:i + self.batch_size]
            insert = asyncio.ensure_future(
                asyncio.to_thread(lambda b=batch: self.db.table(self.table).insert(b).execute())
            )
            try:
                await asyncio.shield(insert)
            except asyncio.CancelledError:
                # The worker thread cannot be interrupted; let its write land
                # so the caller's cleanup runs after it, not before
                await asyncio.wait({insert})
                raise
        logger.info(f"✅ Inserted {len(rows)} embeddings into {self.table}")
        return len(rows)

    async def query(
        self, owner_id: str, vector: list[float], k: int, min_similarity: float
    ) -> list[RetrievalCandidate]:
        result = await asyncio.to_thread(
            lambda: self.db.rpc(
                self.match_rpc,
                {
                    "query_embedding": vector,
                    "match_owner_id": owner_id,
                    "match_count": k,
                    "min_similarity": min_similarity,
                },
            ).execute()
        )
        return [
            RetrievalCandidate(
                content=row["content"],
                similarity=float(row["similarity"]),
                owner_id=row["user_id"],
                source_ref=row.get("resource_id"),
            )
            for row in (result.data or [])
        ]

    async def delete_by_source(self, source_ref: str) -> int:
        result = await asyncio.to_thread(
            lambda: self.db.table(self.table).delete().eq("resource_id", source_ref).execute()
        )
        return len(result.data or [])
