"""
Supabase client factory.

A new client is created for each request or task invocation and handed to the
stores explicitly; nothing here is cached at module level.
"""
from supabase import create_client, Client

from journal_engine.core.config import settings
from journal_engine.core.logging import logger


def create_supabase_client() -> Client:
    """
    Create and return a Supabase client authenticated with the service key.
    """
    try:
        logger.debug("Creating Supabase client")
        return create_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
    except Exception as e:
        logger.exception(f"Failed to create Supabase client: {e}")
        # Re-raise to allow proper error handling at the API level
        raise
