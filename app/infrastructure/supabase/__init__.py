"""Remote store integration package (PostgREST tables, RPC and auth)."""

from app.infrastructure.supabase.client import (
    SupabaseClient,
    close_supabase_client,
    get_supabase_client,
    initialize_supabase_client,
)
from app.infrastructure.supabase.config import supabase_settings
from app.infrastructure.supabase.exceptions import (
    SupabaseConnectionError,
    SupabaseError,
    SupabaseNotFoundError,
    SupabaseOperationError,
)

__all__ = [
    "SupabaseClient",
    "SupabaseConnectionError",
    "SupabaseError",
    "SupabaseNotFoundError",
    "SupabaseOperationError",
    "close_supabase_client",
    "get_supabase_client",
    "initialize_supabase_client",
    "supabase_settings",
]
