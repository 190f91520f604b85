"""
Knowledge feature: Embedder.
Wraps the batch embedding capability and validates its output so every
vector written to the index has the same dimensionality.
"""

import logging

from knowledge_rag.core.capabilities import BatchEmbedder
from knowledge_rag.core.exceptions import EmbeddingDimensionError
from knowledge_rag.features.knowledge.schemas import EmbeddedChunk

logger = logging.getLogger(__name__)


class Embedder:
    """Turns chunks into (content, vector) pairs with one batched call."""

    def __init__(self, embedder: BatchEmbedder, dimensions: int = 1536):
        self.embedder = embedder
        self.dimensions = dimensions

    async def embed(self, chunks: list[str]) -> list[EmbeddedChunk]:
        """Embed all chunks, preserving order.

        Raises:
            EmbeddingDimensionError: If the capability returns the wrong number
                of vectors or a vector of the wrong size.
            Exception: Any capability failure propagates unchanged.
        """
        if not chunks:
            return []

        vectors = await self.embedder.embed_batch(chunks)
        if len(vectors) != len(chunks):
            raise EmbeddingDimensionError(len(chunks), len(vectors), what="count")

        for i, vector in enumerate(vectors):
            if len(vector) != self.dimensions:
                logger.error(f"❌ Vector {i} has {len(vector)} dims, expected {self.dimensions}")
                raise EmbeddingDimensionError(self.dimensions, len(vector))

        logger.info(f"✅ Embedded {len(chunks)} chunks ({self.dimensions} dims)")
        return [
            EmbeddedChunk(content=chunk, vector=list(vector))
            for chunk, vector in zip(chunks, vectors)
        ]

    async def embed_one(self, text: str) -> list[float]:
        """Embed a single text (query side)."""
        [embedded] = await self.embed([text])
        return embedded.vector
