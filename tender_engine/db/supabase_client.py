"""Supabase client for the job store and market data tables."""

from functools import lru_cache

from supabase import Client, create_client

from tender_engine.core.config import get_settings


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """
    Service-role Supabase client (cached singleton).

    Raises:
        RuntimeError: If the client cannot be created
    """
    settings = get_settings()
    try:
        return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    except Exception as e:
        raise RuntimeError(f"Failed to initialize Supabase client: {e}") from e
