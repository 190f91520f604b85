"""
Provider-agnostic model factory for the knowledge pipeline.

Chat model (chunking, HyDE, relevance filter):
  LLM_PROVIDER=openai | gemini | groq
  LLM_MODEL=gpt-4o-mini | gemini-2.0-flash | llama-3.1-70b-versatile

Embedding model (ingestion and query side share it):
  EMBEDDING_PROVIDER=openai | gemini
  EMBEDDING_MODEL=text-embedding-3-small | text-embedding-004

Changing the embedding model invalidates every stored vector; re-ingest
all documents after switching.
"""

import logging

from langchain_core.embeddings import Embeddings
from langchain_core.language_models import BaseChatModel

from knowledge_rag.config import get_settings

logger = logging.getLogger(__name__)

SUPPORTED_LLM_PROVIDERS = ("openai", "gemini", "groq")
SUPPORTED_EMBEDDING_PROVIDERS = ("openai", "gemini")


def create_llm() -> BaseChatModel:
    """Create the chat model used by every generation step.

    Raises:
        ValueError: If provider is not supported.
    """
    settings = get_settings()
    common = {
        "model": settings.LLM_MODEL,
        "temperature": settings.LLM_TEMPERATURE,
        "timeout": settings.LLM_TIMEOUT_SECONDS,
        "max_retries": settings.LLM_MAX_RETRIES,
    }

    match settings.LLM_PROVIDER:
        case "openai":
            from langchain_openai import ChatOpenAI

            return ChatOpenAI(api_key=settings.LLM_API_KEY, **common)

        case "gemini":
            from langchain_google_genai import ChatGoogleGenerativeAI

            return ChatGoogleGenerativeAI(google_api_key=settings.LLM_API_KEY, **common)

        case "groq":
            from langchain_groq import ChatGroq

            return ChatGroq(api_key=settings.LLM_API_KEY, **common)

        case _:
            raise ValueError(
                f"Unknown LLM provider: '{settings.LLM_PROVIDER}'. "
                f"Supported: {', '.join(SUPPORTED_LLM_PROVIDERS)}"
            )


def create_embeddings() -> Embeddings:
    """Create the embedding model.

    OpenAI models are asked for EMBEDDING_DIMENSIONS directly; Gemini vectors
    are truncated by the capability client instead.
    """
    settings = get_settings()
    api_key = settings.EMBEDDING_API_KEY or settings.LLM_API_KEY

    match settings.EMBEDDING_PROVIDER:
        case "openai":
            from langchain_openai import OpenAIEmbeddings

            return OpenAIEmbeddings(
                model=settings.EMBEDDING_MODEL,
                api_key=api_key,
                dimensions=settings.EMBEDDING_DIMENSIONS,
                max_retries=settings.LLM_MAX_RETRIES,
            )

        case "gemini":
            from langchain_google_genai import GoogleGenerativeAIEmbeddings

            if settings.EMBEDDING_DIMENSIONS > 768:
                logger.warning(
                    f"⚠️ {settings.EMBEDDING_MODEL} may return fewer than "
                    f"{settings.EMBEDDING_DIMENSIONS} dims; ingestion will reject short vectors"
                )
            return GoogleGenerativeAIEmbeddings(
                model=f"models/{settings.EMBEDDING_MODEL}",
                google_api_key=api_key,
            )

        case _:
            raise ValueError(
                f"Unknown embedding provider: '{settings.EMBEDDING_PROVIDER}'. "
                f"Supported: {', '.join(SUPPORTED_EMBEDDING_PROVIDERS)}"
            )
