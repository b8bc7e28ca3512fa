"""Supabase client factory for the embedding worker."""

import logging
from functools import lru_cache
from typing import Optional

from supabase import Client, ClientOptions, create_client

from .config import SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY, INVOKE_TIMEOUT_SECONDS
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


@lru_cache()
def get_supabase_client(
    url: Optional[str] = None,
    key: Optional[str] = None,
    function_timeout: int = INVOKE_TIMEOUT_SECONDS
) -> Client:
    """Get a service-role Supabase client (cached).

    The service role bypasses RLS, which the queue table requires.

    Args:
        url: Project URL (defaults to config)
        key: Service role key (defaults to config)
        function_timeout: Seconds before an edge function call is abandoned

    Returns:
        Supabase client instance
    """
    url = url or SUPABASE_URL
    key = key or SUPABASE_SERVICE_ROLE_KEY
    if not url or not key:
        raise ConfigurationError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required")

    try:
        client = create_client(
            url, key,
            options=ClientOptions(function_client_timeout=function_timeout)
        )
        logger.info(f"Supabase client created for {url}")
        return client
    except Exception as e:
        logger.error(f"Failed to create Supabase client: {e}")
        raise
