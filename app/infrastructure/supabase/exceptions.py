"""Supabase-specific exceptions for error handling."""

from typing import Any


class SupabaseError(Exception):
    """Base exception for remote store operations."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class SupabaseConnectionError(SupabaseError):
    """Raised when connection to the remote store fails."""

    pass


class SupabaseNotFoundError(SupabaseError):
    """Raised when a single-row query matched no rows (PGRST116)."""

    def __init__(self, table: str, filters: dict[str, str] | None = None):
        super().__init__(
            f"No row in {table} matching {filters or {}}",
            {"table": table, "filters": filters or {}},
        )
        self.table = table
        self.filters = filters or {}


class SupabaseOperationError(SupabaseError):
    """Raised when a PostgREST, RPC or auth call fails (non-2xx response)."""

    def __init__(self, status_code: int, message: str, payload: dict | None = None):
        super().__init__(message, {"status_code": status_code, "payload": payload})
        self.status_code = status_code
        self.payload = payload or {}

    @property
    def code(self) -> str | None:
        """PostgREST error code (e.g. ``PGRST116``, ``23505``) if present."""
        return self.payload.get("code")
