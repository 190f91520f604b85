"""
Capability clients: the three external AI capabilities the pipeline consumes.

  - TextGenerator        generate(system, user) -> str
  - StructuredGenerator  generate_structured(system, user, schema) -> schema instance
  - BatchEmbedder        embed_batch(texts) -> list[vector]

Pipeline components receive a CapabilitySet through their constructor, so tests
can swap in deterministic doubles without touching module globals.
"""

import logging
from dataclasses import dataclass
from typing import Protocol, TypeVar, runtime_checkable

from langchain_core.embeddings import Embeddings
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, ValidationError

from knowledge_rag.core.exceptions import StructuredOutputError

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


@runtime_checkable
class TextGenerator(Protocol):
    async def generate(self, system_prompt: str, user_prompt: str) -> str: ...


@runtime_checkable
class StructuredGenerator(Protocol):
    async def generate_structured(
        self, system_prompt: str, user_prompt: str, schema: type[SchemaT]
    ) -> SchemaT: ...


@runtime_checkable
class BatchEmbedder(Protocol):
    async def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


@dataclass(frozen=True)
class CapabilitySet:
    """The capabilities one pipeline instance talks to."""
    text: TextGenerator
    structured: StructuredGenerator
    embedder: BatchEmbedder


def extract_text(content) -> str:
    """Flatten a chat model's message content (str or list of parts) to plain text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(item["text"])
            elif isinstance(item, str):
                parts.append(item)
        return "\n".join(parts)
    return str(content)


class LangChainTextGenerator:
    """TextGenerator backed by a LangChain chat model."""

    def __init__(self, llm: BaseChatModel):
        self.llm = llm

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        response = await self.llm.ainvoke(
            [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]
        )
        return extract_text(response.content).strip()


class LangChainStructuredGenerator:
    """StructuredGenerator backed by `with_structured_output`.

    Raises StructuredOutputError when the model output cannot be parsed into
    the requested schema, so callers never see a partially-typed object.
    """

    def __init__(self, llm: BaseChatModel):
        self.llm = llm

    async def generate_structured(
        self, system_prompt: str, user_prompt: str, schema: type[SchemaT]
    ) -> SchemaT:
        structured_llm = self.llm.with_structured_output(schema)
        try:
            result = await structured_llm.ainvoke(
                [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]
            )
        except ValidationError as e:
            raise StructuredOutputError(schema.__name__, str(e)) from e

        if isinstance(result, dict):
            try:
                result = schema.model_validate(result)
            except ValidationError as e:
                raise StructuredOutputError(schema.__name__, str(e)) from e

        if not isinstance(result, schema):
            raise StructuredOutputError(
                schema.__name__, f"model returned {type(result).__name__}"
            )
        return result


class LangChainBatchEmbedder:
    """BatchEmbedder backed by a LangChain Embeddings model."""

    def __init__(self, embeddings: Embeddings, dimensions: int):
        self.embeddings = embeddings
        self.dimensions = dimensions

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        # Newlines hurt embedding quality for some providers
        inputs = [t.replace("\n", " ") for t in texts]
        vectors = await self.embeddings.aembed_documents(inputs)
        # Gemini returns 3072 dims; truncate to the index dimensionality
        return [list(v[: self.dimensions]) for v in vectors]


def create_capabilities() -> CapabilitySet:
    """Build the LangChain-backed capability set from env configuration."""
    from knowledge_rag.config import get_settings
    from knowledge_rag.core.llm_provider import create_embeddings, create_llm

    settings = get_settings()
    llm = create_llm()
    logger.info(
        f"🤖 Capabilities: LLM {settings.LLM_PROVIDER}/{settings.LLM_MODEL}, "
        f"embeddings {settings.EMBEDDING_PROVIDER}/{settings.EMBEDDING_MODEL}"
    )
    return CapabilitySet(
        text=LangChainTextGenerator(llm),
        structured=LangChainStructuredGenerator(llm),
        embedder=LangChainBatchEmbedder(create_embeddings(), settings.EMBEDDING_DIMENSIONS),
    )
