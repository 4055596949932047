"""
Supabase Client
===============
Thin wrapper that provides a configured Supabase client for the
sync orchestrator and the streak service.

Uses the service_role key (not the anon key) because the backend
writes resolved sessions and streak counters on behalf of the
authenticated user.
"""

from functools import lru_cache

from supabase import Client, create_client

from fitproof.config import get_settings


@lru_cache
def get_supabase_client() -> Client:
    settings = get_settings()
    return create_client(settings.supabase_url, settings.supabase_service_key)
