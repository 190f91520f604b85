"""
Knowledge feature: Recall stage.
Pulls a deliberately wide candidate set from the vector index for the
relevance filter to narrow down.
"""

import logging

from knowledge_rag.features.knowledge.events import (
    ProgressSink,
    SimilarityDebugEvent,
    ensure_sink,
    preview,
)
from knowledge_rag.features.knowledge.schemas import RetrievalCandidate
from knowledge_rag.features.knowledge.vector_store import VectorIndex

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 10
DEFAULT_MIN_SIMILARITY = 0.3


class RecallStage:

    def __init__(self, index: VectorIndex):
        self.index = index

    async def recall(
        self,
        query_vector: list[float],
        owner_id: str,
        k: int = DEFAULT_TOP_K,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
        progress: ProgressSink | None = None,
    ) -> list[RetrievalCandidate]:
        """Top-k candidates owned by `owner_id` with similarity > min_similarity.

        Owner scoping fails closed: without an owner id nothing is returned, and
        any row the backend hands back for another owner is dropped.
        """
        sink = ensure_sink(progress)
        if not owner_id:
            logger.error("🚫 Recall called without owner_id, returning no candidates")
            return []
        if k <= 0:
            return []

        rows = await self.index.query(owner_id, query_vector, k, min_similarity)

        candidates = []
        for row in rows:
            if row.owner_id != owner_id:
                logger.error(f"🚫 Vector index leaked a row of another owner (source={row.source_ref}), dropping it")
                continue
            if row.similarity <= min_similarity:
                continue
            candidates.append(row)

        candidates.sort(key=lambda c: c.similarity, reverse=True)
        candidates = candidates[:k]

        for candidate in candidates:
            sink.emit(SimilarityDebugEvent(
                content=preview(candidate.content, 50),
                score=round(candidate.similarity, 4),
                threshold=min_similarity,
            ))

        logger.info(f"🔎 Recalled {len(candidates)} candidate(s) above {min_similarity}")
        return candidates
