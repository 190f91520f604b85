"""Shared fixtures: env defaults and deterministic capability doubles."""

import asyncio
import os
import re

# Settings require these; set before anything imports knowledge_rag.config
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("LLM_API_KEY", "test-llm-key")

import pytest

from knowledge_rag.core.capabilities import CapabilitySet
from knowledge_rag.features.knowledge.document_store import InMemoryDocumentStore
from knowledge_rag.features.knowledge.pipeline import KnowledgePipeline, PipelineConfig
from knowledge_rag.features.knowledge.schemas import (
    ChunkEvaluation,
    ChunkingResult,
    RelevanceAssessment,
)
from knowledge_rag.features.knowledge.vector_store import InMemoryVectorIndex

DIMS = 8

TOPICS = {
    0: ("cat", "cats", "kitten"),
    1: ("quantum", "qubit", "qubits"),
    2: ("python", "code", "function"),
}


def topic_of(text: str) -> int:
    words = re.findall(r"[a-z]+", text.lower())
    for axis, keywords in TOPICS.items():
        if any(w in keywords for w in words):
            return axis
    return DIMS - 1


def topic_vector(text: str, dims: int = DIMS) -> list[float]:
    """Bag-of-topics vector: one axis per topic plus a small shared baseline."""
    words = re.findall(r"[a-z]+", text.lower())
    vector = [0.0] * dims
    for axis, keywords in TOPICS.items():
        vector[axis] = float(sum(w in keywords for w in words))
    vector[dims - 1] = 0.1
    return vector


def window_from_prompt(user_prompt: str) -> str:
    match = re.search(r"<text>\n(.*)\n</text>", user_prompt, re.S)
    return match.group(1) if match else user_prompt


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in re.findall(r"[^.!?]+[.!?]+", text) if s.strip()]


def group_by_topic(window: str) -> list[str]:
    """Fake semantic chunking: consecutive sentences on the same topic form one chunk."""
    chunks: list[list[str]] = []
    last_topic = None
    for sentence in split_sentences(window) or [window.strip()]:
        topic = topic_of(sentence)
        if chunks and topic == last_topic:
            chunks[-1].append(sentence)
        else:
            chunks.append([sentence])
        last_topic = topic
    return [" ".join(group) for group in chunks]


def relevant_by_topic(user_prompt: str) -> RelevanceAssessment:
    """Fake ReAct filter: a chunk is relevant when it shares the query's topic."""
    query = user_prompt.split("\n", 1)[0].removeprefix("Query: ")
    query_topic = topic_of(query)
    evaluations = []
    for match in re.finditer(r"\[(\d+)\]\n(.*?)(?=\n\n\[\d+\]\n|\Z)", user_prompt, re.S):
        index, content = int(match.group(1)), match.group(2)
        relevant = topic_of(content) == query_topic
        evaluations.append(ChunkEvaluation(
            chunk_id=index,
            is_relevant=relevant,
            reasoning="Same topic as the query." if relevant else "Different topic.",
            quotes=split_sentences(content)[:1] if relevant else [],
        ))
    return RelevanceAssessment(evaluations=evaluations)


class FakeStructuredGenerator:
    """Dispatches on the requested schema; records calls and peak concurrency."""

    def __init__(self, chunk_handler=None, relevance_handler=None, delay: float = 0.0):
        self.chunk_handler = chunk_handler or (lambda window: ChunkingResult(chunks=group_by_topic(window)))
        self.relevance_handler = relevance_handler or relevant_by_topic
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def generate_structured(self, system_prompt, user_prompt, schema):
        self.calls.append((schema.__name__, user_prompt))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if schema is ChunkingResult:
                result = self.chunk_handler(window_from_prompt(user_prompt))
            elif schema is RelevanceAssessment:
                result = self.relevance_handler(user_prompt)
            else:
                raise AssertionError(f"unexpected schema {schema}")
            if isinstance(result, BaseException):
                raise result
            return result
        finally:
            self.in_flight -= 1

    def calls_for(self, schema_name: str) -> list[str]:
        return [prompt for name, prompt in self.calls if name == schema_name]


class FakeTextGenerator:
    def __init__(self, response: str | None = None, error: Exception | None = None):
        self.response = response
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def generate(self, system_prompt, user_prompt):
        self.calls.append((system_prompt, user_prompt))
        if self.error:
            raise self.error
        return self.response if self.response is not None else f"A document about {user_prompt}"


class FakeEmbedder:
    def __init__(self, dims: int = DIMS, fixed: list[float] | None = None, error: Exception | None = None):
        self.dims = dims
        self.fixed = fixed
        self.error = error
        self.calls: list[list[str]] = []

    async def embed_batch(self, texts):
        self.calls.append(list(texts))
        if self.error:
            raise self.error
        if self.fixed is not None:
            return [list(self.fixed) for _ in texts]
        return [topic_vector(t, self.dims) for t in texts]


@pytest.fixture
def structured():
    return FakeStructuredGenerator()


@pytest.fixture
def text_generator():
    return FakeTextGenerator()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def capabilities(text_generator, structured, embedder):
    return CapabilitySet(text=text_generator, structured=structured, embedder=embedder)


@pytest.fixture
def vector_index():
    return InMemoryVectorIndex()


@pytest.fixture
def document_store():
    return InMemoryDocumentStore()


@pytest.fixture
def pipeline_config():
    return PipelineConfig(window_size=20_000, concurrency=5, dimensions=DIMS, ingest_timeout=5.0)


@pytest.fixture
def pipeline(capabilities, vector_index, document_store, pipeline_config):
    return KnowledgePipeline(capabilities, vector_index, document_store, pipeline_config)
