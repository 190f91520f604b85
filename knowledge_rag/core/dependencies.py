"""
FastAPI dependency injection functions.
"""

from functools import lru_cache

from fastapi import Depends, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from knowledge_rag.config import get_settings
from knowledge_rag.core.database import get_supabase_client
from knowledge_rag.core.exceptions import InvalidTokenError, app_error_to_http
from knowledge_rag.core.security import decode_access_token
from knowledge_rag.features.knowledge.pipeline import KnowledgePipeline

# Bearer token scheme for Swagger UI
bearer_scheme = HTTPBearer()


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> str:
    """Dependency: extract and validate user_id from JWT token.

    Returns:
        str: The user's UUID as string.

    Raises:
        HTTPException 401: If token is invalid or expired.
    """
    payload = decode_access_token(credentials.credentials)
    user_id = payload.get("sub") if payload else None
    if not user_id:
        raise app_error_to_http(
            InvalidTokenError(),
            status_code=status.HTTP_401_UNAUTHORIZED,
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user_id


def get_storage():
    """Dependency: the Storage bucket holding uploaded files."""
    settings = get_settings()
    return get_supabase_client().storage.from_(settings.STORAGE_BUCKET)


@lru_cache
def get_pipeline() -> KnowledgePipeline:
    """Dependency: the shared knowledge pipeline (Supabase + LangChain backed)."""
    from knowledge_rag.core.capabilities import create_capabilities
    from knowledge_rag.features.knowledge.document_store import SupabaseDocumentStore
    from knowledge_rag.features.knowledge.pipeline import PipelineConfig
    from knowledge_rag.features.knowledge.vector_store import SupabaseVectorIndex

    settings = get_settings()
    db = get_supabase_client()
    return KnowledgePipeline(
        capabilities=create_capabilities(),
        index=SupabaseVectorIndex(
            db,
            table=settings.EMBEDDINGS_TABLE,
            match_rpc=settings.MATCH_EMBEDDINGS_RPC,
            batch_size=settings.VECTOR_INSERT_BATCH_SIZE,
        ),
        documents=SupabaseDocumentStore(
            db,
            documents_table=settings.DOCUMENTS_TABLE,
            resources_table=settings.RESOURCES_TABLE,
        ),
        config=PipelineConfig.from_settings(settings),
    )
