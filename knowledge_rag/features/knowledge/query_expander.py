"""
Knowledge feature: HyDE query expansion.

A raw question sits far from document prose in embedding space. We ask the
LLM for a short hypothetical passage that *looks like* a relevant document and
embed that instead, with the same Embedder used at ingestion time.
"""

import logging

from knowledge_rag.core.capabilities import TextGenerator
from knowledge_rag.features.knowledge.embedding import Embedder
from knowledge_rag.features.knowledge.events import HydeGeneratedEvent, ProgressSink, ensure_sink
from knowledge_rag.features.knowledge.prompts import HYDE_SYSTEM_PROMPT

logger = logging.getLogger(__name__)


class HydeQueryExpander:

    def __init__(self, generator: TextGenerator, embedder: Embedder):
        self.generator = generator
        self.embedder = embedder

    async def hypothesize(self, query: str) -> str:
        """Write the hypothetical passage. Falls back to the query if the model returns nothing."""
        hypothetical = await self.generator.generate(HYDE_SYSTEM_PROMPT, query)
        return hypothetical.strip() or query

    async def expand(self, query: str, progress: ProgressSink | None = None) -> list[float]:
        sink = ensure_sink(progress)
        hypothetical = await self.hypothesize(query)
        logger.info(f"🔮 HyDE passage ({len(hypothetical)} chars) for query: {query[:60]}")
        sink.emit(HydeGeneratedEvent(content=hypothetical))
        return await self.embedder.embed_one(hypothetical)
