"""Tests for the ReAct relevance filter."""

import pytest

from knowledge_rag.core.exceptions import StructuredOutputError
from knowledge_rag.features.knowledge.events import CollectingProgressSink, ReactEvaluationEvent
from knowledge_rag.features.knowledge.prompts import build_relevance_prompt
from knowledge_rag.features.knowledge.relevance import (
    NOT_EVALUATED_REASON,
    RelevanceFilter,
    to_annotated,
    verbatim_quotes,
)
from knowledge_rag.features.knowledge.schemas import (
    ChunkEvaluation,
    RelevanceAssessment,
    RetrievalCandidate,
)

from tests.conftest import FakeStructuredGenerator


def candidate(content: str, similarity: float = 0.8) -> RetrievalCandidate:
    return RetrievalCandidate(content=content, similarity=similarity, owner_id="u")


def assessment(*evaluations: ChunkEvaluation):
    return lambda prompt: RelevanceAssessment(evaluations=list(evaluations))


class TestVerbatimQuotes:
    def test_keeps_exact_substrings(self):
        content = "Qubits can be in superposition. They are fragile."
        assert verbatim_quotes(["They are fragile."], content) == ["They are fragile."]

    def test_ignores_whitespace_differences(self):
        content = "Qubits can be\nin  superposition."
        assert verbatim_quotes(["Qubits can be in superposition."], content) == [
            "Qubits can be in superposition."
        ]

    def test_drops_paraphrases_and_blanks(self):
        content = "Qubits can be in superposition."
        assert verbatim_quotes(["Qubits are superposed.", "  "], content) == []


class TestRelevanceFilter:
    @pytest.mark.asyncio
    async def test_empty_candidates_skip_model(self, structured):
        assert await RelevanceFilter(structured).filter("query", []) == []
        assert structured.calls == []

    @pytest.mark.asyncio
    async def test_one_verdict_per_candidate_in_order(self, structured):
        candidates = [
            candidate("Quantum computers use qubits.", 0.9),
            candidate("The cat sat on the mat.", 0.4),
        ]
        sink = CollectingProgressSink()

        verdicts = await RelevanceFilter(structured).filter("what is a qubit?", candidates, sink)

        assert [v.chunk_id for v in verdicts] == [0, 1]
        assert [v.is_relevant for v in verdicts] == [True, False]
        assert verdicts[0].quotes == ["Quantum computers use qubits."]
        assert verdicts[0].similarity == 0.9
        assert verdicts[1].quotes == []
        assert len(sink.of_type(ReactEvaluationEvent)) == 2
        [prompt] = structured.calls_for("RelevanceAssessment")
        assert prompt == build_relevance_prompt("what is a qubit?", [c.content for c in candidates])

    @pytest.mark.asyncio
    async def test_missing_verdicts_are_not_relevant(self):
        generator = FakeStructuredGenerator(relevance_handler=assessment(
            ChunkEvaluation(chunk_id=1, is_relevant=True, reasoning="ok", quotes=["B."]),
        ))
        verdicts = await RelevanceFilter(generator).filter("q", [candidate("A."), candidate("B.")])

        assert verdicts[0].is_relevant is False
        assert verdicts[0].reasoning == NOT_EVALUATED_REASON
        assert verdicts[1].is_relevant is True

    @pytest.mark.asyncio
    async def test_unknown_and_duplicate_ids(self):
        generator = FakeStructuredGenerator(relevance_handler=assessment(
            ChunkEvaluation(chunk_id=7, is_relevant=True, reasoning="phantom"),
            ChunkEvaluation(chunk_id=-1, is_relevant=True, reasoning="phantom"),
            ChunkEvaluation(chunk_id=0, is_relevant=False, reasoning="first"),
            ChunkEvaluation(chunk_id=0, is_relevant=True, reasoning="second"),
        ))
        verdicts = await RelevanceFilter(generator).filter("q", [candidate("A.")])

        assert len(verdicts) == 1
        assert verdicts[0].reasoning == "first"
        assert verdicts[0].is_relevant is False

    @pytest.mark.asyncio
    async def test_non_verbatim_quotes_are_dropped(self):
        generator = FakeStructuredGenerator(relevance_handler=assessment(
            ChunkEvaluation(
                chunk_id=0,
                is_relevant=True,
                reasoning="explains qubits",
                quotes=["Qubits hold superpositions.", "Qubits are made up."],
            ),
        ))
        verdicts = await RelevanceFilter(generator).filter(
            "q", [candidate("Qubits hold superpositions. They decohere quickly.")]
        )

        assert verdicts[0].quotes == ["Qubits hold superpositions."]

    @pytest.mark.asyncio
    async def test_generation_failure_propagates(self):
        generator = FakeStructuredGenerator(
            relevance_handler=lambda prompt: StructuredOutputError("RelevanceAssessment", "bad json")
        )
        with pytest.raises(StructuredOutputError):
            await RelevanceFilter(generator).filter("q", [candidate("A.")])


class TestToAnnotated:
    @pytest.mark.asyncio
    async def test_keeps_relevant_rows_with_similarity(self, structured):
        verdicts = await RelevanceFilter(structured).filter(
            "python function",
            [candidate("A python function returns a value.", 0.71), candidate("Cats purr.", 0.5)],
        )

        [row] = to_annotated(verdicts)
        assert row.content == "A python function returns a value."
        assert row.similarity == 0.71
        assert row.quotes == ["A python function returns a value."]
        assert row.reasoning
