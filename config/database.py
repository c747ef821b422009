"""
Database connection management.

Provides the Supabase client singleton used by every service.
The pipeline runs server-side only, so the service role key is preferred
when it is configured (pending_messages is locked down by RLS).
"""

from supabase import create_client, Client
from functools import lru_cache
import structlog

from config.settings import settings

logger = structlog.get_logger(__name__)


class SupabaseConnectionError(Exception):
    """Failed to connect to Supabase."""
    pass


@lru_cache()
def get_supabase_client() -> Client:
    """
    Get cached Supabase client instance.

    Uses lru_cache to ensure only one client is created per process.
    Call get_supabase_client.cache_clear() to reconnect.

    Returns:
        Client: Supabase client

    Raises:
        SupabaseConnectionError: If connection fails
    """
    key = settings.supabase_service_key or settings.supabase_key

    try:
        logger.info(
            "connecting_to_supabase",
            url=settings.supabase_url[:30] + "...",  # Log partial URL only
            service_role=bool(settings.supabase_service_key)
        )

        client = create_client(settings.supabase_url, key)

        logger.info("supabase_connected", status="success")

        return client

    except Exception as e:
        logger.error(
            "supabase_connection_failed",
            error=str(e),
            error_type=type(e).__name__
        )
        raise SupabaseConnectionError(f"Failed to connect to Supabase: {e}") from e


# ===================
# HELPER FUNCTIONS
# ===================

def check_connection() -> dict:
    """
    Check database connection health.

    Returns:
        dict: Connection status with details
    """
    try:
        client = get_supabase_client()

        markets = client.table("markets").select("id", count="exact").execute()
        pending = client.table("pending_messages").select("id", count="exact").execute()

        return {
            "status": "healthy",
            "markets_count": markets.count,
            "pending_messages_count": pending.count
        }

    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e)
        }
