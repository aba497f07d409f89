"""
Centralized Supabase client.

The service-role client bypasses RLS and is only ever used server-side.
"""

import logging
from typing import Optional

from supabase import Client, create_client

from app.config import get_settings
from app.utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

_supabase_service: Optional[Client] = None


def get_supabase_service() -> Client:
    """Get or create the service-role Supabase client."""
    global _supabase_service
    if _supabase_service is None:
        settings = get_settings()
        if not settings.supabase_url or not settings.supabase_service_key:
            raise ConfigurationError(
                "Supabase not configured",
                "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set.",
            )
        _supabase_service = create_client(settings.supabase_url, settings.supabase_service_key)
        logger.info("[Database] Supabase service client initialized")
    return _supabase_service
