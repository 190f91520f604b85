"""
Knowledge feature: ReAct relevance filter.

One structured-generation call sees the query and every recalled candidate,
reasons about each, and returns a verdict with supporting quotes. The model's
answer is normalised so callers always get exactly one verdict per candidate,
in candidate order.
"""

import logging

from knowledge_rag.core.capabilities import StructuredGenerator
from knowledge_rag.features.knowledge.events import ProgressSink, ReactEvaluationEvent, ensure_sink
from knowledge_rag.features.knowledge.prompts import RELEVANCE_SYSTEM_PROMPT, build_relevance_prompt
from knowledge_rag.features.knowledge.schemas import (
    AnnotatedChunk,
    ChunkEvaluation,
    RelevanceAssessment,
    RelevanceVerdict,
    RetrievalCandidate,
)

logger = logging.getLogger(__name__)

NOT_EVALUATED_REASON = "Not evaluated by the model; discarded."


def _normalize_ws(text: str) -> str:
    return " ".join(text.split())


def verbatim_quotes(quotes: list[str], content: str) -> list[str]:
    """Keep only quotes that actually occur in `content` (whitespace-insensitive)."""
    haystack = _normalize_ws(content)
    kept = []
    for quote in quotes:
        needle = _normalize_ws(quote)
        if needle and needle in haystack:
            kept.append(quote.strip())
    return kept


class RelevanceFilter:

    def __init__(self, generator: StructuredGenerator):
        self.generator = generator

    async def filter(
        self,
        query: str,
        candidates: list[RetrievalCandidate],
        progress: ProgressSink | None = None,
    ) -> list[RelevanceVerdict]:
        """Evaluate every candidate. Generation failures propagate to the caller."""
        sink = ensure_sink(progress)
        if not candidates:
            return []

        assessment = await self.generator.generate_structured(
            RELEVANCE_SYSTEM_PROMPT,
            build_relevance_prompt(query, [c.content for c in candidates]),
            RelevanceAssessment,
        )

        by_index: dict[int, ChunkEvaluation] = {}
        for evaluation in assessment.evaluations:
            if not 0 <= evaluation.chunk_id < len(candidates):
                logger.warning(f"⚠️ Relevance model returned unknown chunk_id {evaluation.chunk_id}")
                continue
            # First verdict for an index wins
            by_index.setdefault(evaluation.chunk_id, evaluation)

        verdicts = []
        for index, candidate in enumerate(candidates):
            evaluation = by_index.get(index)
            if evaluation is None:
                verdict = RelevanceVerdict(
                    chunk_id=index,
                    is_relevant=False,
                    reasoning=NOT_EVALUATED_REASON,
                    content=candidate.content,
                    similarity=candidate.similarity,
                )
            else:
                quotes = verbatim_quotes(evaluation.quotes, candidate.content)
                if len(quotes) < len(evaluation.quotes):
                    logger.debug(f"Dropped {len(evaluation.quotes) - len(quotes)} non-verbatim quote(s) for chunk {index}")
                verdict = RelevanceVerdict(
                    chunk_id=index,
                    is_relevant=evaluation.is_relevant,
                    reasoning=evaluation.reasoning,
                    quotes=quotes if evaluation.is_relevant else [],
                    content=candidate.content,
                    similarity=candidate.similarity,
                )
            verdicts.append(verdict)
            sink.emit(ReactEvaluationEvent(
                chunk_id=verdict.chunk_id,
                is_relevant=verdict.is_relevant,
                reasoning=verdict.reasoning,
                content=verdict.content,
                quotes=verdict.quotes,
            ))

        relevant = sum(v.is_relevant for v in verdicts)
        logger.info(f"🧠 Relevance filter kept {relevant}/{len(verdicts)} candidate(s)")
        return verdicts


def to_annotated(verdicts: list[RelevanceVerdict]) -> list[AnnotatedChunk]:
    """Final answer rows: relevant verdicts only, recall similarity preserved."""
    return [
        AnnotatedChunk(
            content=v.content,
            reasoning=v.reasoning,
            quotes=v.quotes,
            similarity=v.similarity,
        )
        for v in verdicts
        if v.is_relevant
    ]
