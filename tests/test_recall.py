"""Tests for owner-scoped recall."""

import random

import pytest

from knowledge_rag.features.knowledge.events import CollectingProgressSink, SimilarityDebugEvent
from knowledge_rag.features.knowledge.recall import RecallStage
from knowledge_rag.features.knowledge.schemas import EmbeddingRecord, RetrievalCandidate
from knowledge_rag.features.knowledge.vector_store import InMemoryVectorIndex

from tests.conftest import DIMS, topic_vector


def unit(axis: int, dims: int = DIMS) -> list[float]:
    vector = [0.0] * dims
    vector[axis] = 1.0
    return vector


class LeakyIndex:
    """A backend that ignores the owner filter and the floor."""

    def __init__(self, rows: list[RetrievalCandidate]):
        self.rows = rows

    async def query(self, owner_id, vector, k, min_similarity):
        return list(self.rows)


class TestRecallStage:
    @pytest.mark.asyncio
    async def test_owner_isolation(self):
        index = InMemoryVectorIndex()
        text = "The cat sat on the mat."
        await index.upsert("user-a", text, topic_vector(text), "res-a")
        await index.upsert("user-b", text, topic_vector(text), "res-b")

        candidates = await RecallStage(index).recall(topic_vector("cat"), "user-b")

        assert [c.source_ref for c in candidates] == ["res-b"]
        assert all(c.owner_id == "user-b" for c in candidates)

    @pytest.mark.asyncio
    async def test_missing_owner_returns_nothing(self):
        index = InMemoryVectorIndex()
        await index.upsert("user-a", "cat", unit(0), "res-a")

        assert await RecallStage(index).recall(unit(0), "") == []

    @pytest.mark.asyncio
    async def test_non_positive_k_returns_nothing(self):
        index = InMemoryVectorIndex()
        await index.upsert("user-a", "cat", unit(0), "res-a")

        assert await RecallStage(index).recall(unit(0), "user-a", k=0) == []

    @pytest.mark.asyncio
    async def test_floor_is_strict(self):
        index = InMemoryVectorIndex()
        await index.upsert("u", "exact", unit(0), "r")
        await index.upsert("u", "orthogonal", unit(1), "r")

        candidates = await RecallStage(index).recall(unit(0), "u", min_similarity=1.0)
        assert candidates == []

        candidates = await RecallStage(index).recall(unit(0), "u", min_similarity=0.0)
        assert [c.content for c in candidates] == ["exact"]

    @pytest.mark.asyncio
    async def test_drops_rows_leaked_by_backend(self):
        rows = [
            RetrievalCandidate(content="mine", similarity=0.5, owner_id="u1"),
            RetrievalCandidate(content="theirs", similarity=0.9, owner_id="u2"),
            RetrievalCandidate(content="weak", similarity=0.3, owner_id="u1"),
        ]
        candidates = await RecallStage(LeakyIndex(rows)).recall(unit(0), "u1")

        assert [c.content for c in candidates] == ["mine"]

    @pytest.mark.asyncio
    async def test_random_corpus_properties(self):
        rng = random.Random(7)
        index = InMemoryVectorIndex()
        owners = ["alice", "bob", "carol"]
        for i in range(120):
            vector = [rng.uniform(-1, 1) for _ in range(DIMS)]
            await index.upsert(rng.choice(owners), f"chunk {i}", vector, f"res-{i}")

        stage = RecallStage(index)
        for _ in range(10):
            query = [rng.uniform(-1, 1) for _ in range(DIMS)]
            owner = rng.choice(owners)
            k = rng.randint(1, 15)
            floor = rng.uniform(0.0, 0.6)

            candidates = await stage.recall(query, owner, k=k, min_similarity=floor)

            assert len(candidates) <= k
            assert all(c.owner_id == owner for c in candidates)
            assert all(c.similarity > floor for c in candidates)
            scores = [c.similarity for c in candidates]
            assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_emits_similarity_per_candidate(self):
        index = InMemoryVectorIndex()
        await index.upsert_many([
            EmbeddingRecord(owner_id="u", content="The cat sat.", vector=topic_vector("cat"), source_ref="r"),
            EmbeddingRecord(owner_id="u", content="Cats purr.", vector=topic_vector("cats cat"), source_ref="r"),
        ])
        sink = CollectingProgressSink()

        candidates = await RecallStage(index).recall(topic_vector("cat"), "u", progress=sink)

        events = sink.of_type(SimilarityDebugEvent)
        assert len(events) == len(candidates) == 2
        assert all(e.threshold == 0.3 for e in events)
