"""
Database connections: Supabase client setup.
"""

from functools import lru_cache
from supabase import create_client, Client

from knowledge_rag.config import get_settings


@lru_cache
def get_supabase_client() -> Client:
    """Get the Supabase client (singleton).

    Uses the service_role key when configured so background ingestion can
    write embeddings; every query is still scoped by user_id in code.
    """
    settings = get_settings()
    key = settings.SUPABASE_SERVICE_KEY or settings.SUPABASE_KEY
    return create_client(settings.SUPABASE_URL, key)
