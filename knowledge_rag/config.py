"""
Application configuration using Pydantic Settings.
All config is loaded from environment variables / .env file.
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    # ── App ──────────────────────────────────────────────
    APP_NAME: str = "knowledge-rag"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"  # comma-separated

    # ── Supabase ─────────────────────────────────────────
    SUPABASE_URL: str
    SUPABASE_KEY: str  # anon/public key
    SUPABASE_SERVICE_KEY: str = ""  # service_role key (for admin ops)
    STORAGE_BUCKET: str = "knowledge-base"
    DOCUMENTS_TABLE: str = "documents"
    RESOURCES_TABLE: str = "resources"
    EMBEDDINGS_TABLE: str = "embeddings"
    MATCH_EMBEDDINGS_RPC: str = "match_embeddings"

    # ── Security ─────────────────────────────────────────
    JWT_SECRET_KEY: str  # JWT signing key (tokens are issued by the auth service)
    JWT_ALGORITHM: str = "HS256"

    # ── LLM (Provider-Agnostic) ──────────────────────────
    LLM_PROVIDER: str = "openai"  # openai | gemini | groq
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_API_KEY: str = ""
    LLM_TEMPERATURE: float = 0.0  # chunking must copy text verbatim
    LLM_TIMEOUT_SECONDS: float = 120.0
    LLM_MAX_RETRIES: int = 2

    # ── Embedding ────────────────────────────────────────
    EMBEDDING_PROVIDER: str = "openai"  # openai | gemini
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_API_KEY: str = ""  # falls back to LLM_API_KEY
    EMBEDDING_DIMENSIONS: int = 1536  # must match the vector column

    # ── Chunking ─────────────────────────────────────────
    CHUNK_WINDOW_SIZE: int = 20_000  # characters per pre-split window
    CHUNK_CONCURRENCY: int = 5  # windows in flight at once

    # ── Retrieval ────────────────────────────────────────
    RETRIEVAL_TOP_K: int = 10  # wider than the final answer set on purpose
    RETRIEVAL_MIN_SIMILARITY: float = 0.3

    # ── Ingestion ────────────────────────────────────────
    INGEST_TIMEOUT_SECONDS: float = 300.0
    MAX_UPLOAD_MB: int = 50
    VECTOR_INSERT_BATCH_SIZE: int = 50

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
    }


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance (singleton)."""
    return Settings()
