"""Async client for the hosted data platform (PostgREST, RPC and auth).

This module provides an async HTTP client for the remote relational store,
with built-in retry logic, OpenTelemetry tracing, and proper error handling.
"""

import json
from collections.abc import Sequence
from typing import Any

import httpx
from opentelemetry import trace
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.infrastructure.supabase.config import supabase_settings
from app.infrastructure.supabase.exceptions import (
    SupabaseConnectionError,
    SupabaseNotFoundError,
    SupabaseOperationError,
)
from app.infrastructure.supabase.filters import Filter

tracer = trace.get_tracer(__name__)

NO_ROWS_CODE = "PGRST116"

_retry_transient = retry(
    stop=stop_after_attempt(supabase_settings.SUPABASE_RETRY_ATTEMPTS),
    wait=wait_exponential(
        multiplier=supabase_settings.SUPABASE_RETRY_DELAY,
        min=supabase_settings.SUPABASE_RETRY_DELAY,
        max=5,
    ),
    retry=retry_if_exception_type(SupabaseConnectionError),
    reraise=True,
)


class SupabaseClient:
    """Async remote store client with retry and OpenTelemetry tracing.

    This client provides table reads and writes plus RPC calls with:
    - Automatic retry on transient failures (connect errors, timeouts)
    - OpenTelemetry distributed tracing
    - Proper error handling with custom exceptions

    Example:
        ```python
        client = SupabaseClient("https://project.supabase.co", api_key="...")
        rows = await client.select("profiles", filters=[eq("role", "physician")])
        await client.close()
        ```
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Project URL. Defaults to settings.
            api_key: Service or anon key sent as ``apikey`` and bearer. Defaults to settings.
            timeout: Request timeout in seconds. Defaults to settings.
            transport: Optional httpx transport (used by tests).
        """
        if base_url is None or api_key is None:
            from app.core.config import settings

            base_url = base_url or str(settings.SUPABASE_URL)
            api_key = api_key or settings.SUPABASE_SERVICE_KEY or settings.SUPABASE_ANON_KEY

        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout or supabase_settings.SUPABASE_TIMEOUT
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "apikey": self.api_key,
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                    "Accept-Profile": supabase_settings.SUPABASE_SCHEMA,
                    "Content-Profile": supabase_settings.SUPABASE_SCHEMA,
                },
            )
        return self._client

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: Sequence[tuple[str, str]] | None = None,
        payload: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send a request, mapping transport failures to SupabaseConnectionError."""
        client = await self._get_client()
        try:
            return await client.request(
                method,
                path,
                params=list(params or []),
                content=json.dumps(payload, default=str) if payload is not None else None,
                headers=headers,
            )
        except httpx.ConnectError as e:
            raise SupabaseConnectionError(f"Failed to connect to remote store: {e}")
        except httpx.TimeoutException as e:
            raise SupabaseConnectionError(f"Remote store request timed out: {e}")

    # =========================================================================
    # Table reads
    # =========================================================================

    @_retry_transient
    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: Sequence[Filter] = (),
        order: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Select rows from a table.

        Args:
            table: Table name
            columns: PostgREST select expression, embedded joins allowed
            filters: Filter pairs built with ``app.infrastructure.supabase.filters``
            order: Order expression, e.g. ``"created_at.desc"``
            limit: Maximum number of rows

        Returns:
            List of rows (possibly empty)

        Raises:
            SupabaseConnectionError: If connection to the store fails
            SupabaseOperationError: If the store returns an error
        """
        with tracer.start_as_current_span(f"supabase_select_{table}") as span:
            span.set_attribute("db.table", table)
            params = self._build_params(columns, filters, order, limit)
            try:
                response = await self._send("GET", f"/rest/v1/{table}", params=params)
            except SupabaseConnectionError as e:
                span.record_exception(e)
                raise

            if response.status_code == 200:
                rows = response.json()
                span.set_attribute("db.rows", len(rows))
                return rows

            self._handle_error_response(response, span)

    @_retry_transient
    async def select_one(
        self,
        table: str,
        columns: str = "*",
        filters: Sequence[Filter] = (),
        required: bool = False,
    ) -> dict[str, Any] | None:
        """Select exactly one row.

        Args:
            table: Table name
            columns: PostgREST select expression
            filters: Filter pairs
            required: Raise instead of returning None when no row matches

        Returns:
            The row, or None when nothing matched and ``required`` is False

        Raises:
            SupabaseNotFoundError: If no row matched and ``required`` is True
            SupabaseOperationError: If the store returns an error
        """
        with tracer.start_as_current_span(f"supabase_select_one_{table}") as span:
            span.set_attribute("db.table", table)
            params = self._build_params(columns, filters, None, None)
            try:
                response = await self._send(
                    "GET",
                    f"/rest/v1/{table}",
                    params=params,
                    headers={"Accept": "application/vnd.pgrst.object+json"},
                )
            except SupabaseConnectionError as e:
                span.record_exception(e)
                raise

            if response.status_code == 200:
                return response.json()

            if self._error_code(response) == NO_ROWS_CODE:
                span.add_event("No rows found")
                if required:
                    raise SupabaseNotFoundError(table, dict(filters))
                return None

            self._handle_error_response(response, span)

    @_retry_transient
    async def count(self, table: str, filters: Sequence[Filter] = ()) -> int:
        """Count rows with ``Prefer: count=exact``.

        Returns:
            Exact row count parsed from the ``Content-Range`` header
        """
        with tracer.start_as_current_span(f"supabase_count_{table}") as span:
            span.set_attribute("db.table", table)
            params = self._build_params("id", filters, None, None)
            try:
                response = await self._send(
                    "HEAD",
                    f"/rest/v1/{table}",
                    params=params,
                    headers={"Prefer": "count=exact"},
                )
            except SupabaseConnectionError as e:
                span.record_exception(e)
                raise

            if response.status_code in (200, 206):
                content_range = response.headers.get("content-range", "*/0")
                total = content_range.rsplit("/", 1)[-1]
                count = int(total) if total.isdigit() else 0
                span.set_attribute("db.count", count)
                return count

            self._handle_error_response(response, span)

    # =========================================================================
    # Table writes
    # =========================================================================

    async def insert(
        self,
        table: str,
        rows: dict[str, Any] | list[dict[str, Any]],
        *,
        retry_transient: bool = True,
    ) -> list[dict[str, Any]]:
        """Insert one or many rows and return the stored representation.

        Args:
            table: Target table
            rows: One row or a batch
            retry_transient: Replay on connect errors and timeouts. Pass False for
                writes that must not be duplicated: a timed-out request may
                already have been committed.
        """
        if retry_transient:
            return await _retry_transient(self._insert)(table, rows)
        return await self._insert(table, rows)

    async def _insert(
        self, table: str, rows: dict[str, Any] | list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        with tracer.start_as_current_span(f"supabase_insert_{table}") as span:
            span.set_attribute("db.table", table)
            span.set_attribute("db.rows", len(rows) if isinstance(rows, list) else 1)
            try:
                response = await self._send(
                    "POST",
                    f"/rest/v1/{table}",
                    payload=rows,
                    headers={"Prefer": "return=representation"},
                )
            except SupabaseConnectionError as e:
                span.record_exception(e)
                raise

            if response.status_code in (200, 201):
                span.add_event("Rows inserted")
                return response.json() if response.content else []

            self._handle_error_response(response, span)

    @_retry_transient
    async def update(
        self, table: str, values: dict[str, Any], filters: Sequence[Filter]
    ) -> list[dict[str, Any]]:
        """Update the rows matching ``filters`` (last write wins)."""
        if not filters:
            raise ValueError("Refusing to update a whole table without filters")

        with tracer.start_as_current_span(f"supabase_update_{table}") as span:
            span.set_attribute("db.table", table)
            try:
                response = await self._send(
                    "PATCH",
                    f"/rest/v1/{table}",
                    params=list(filters),
                    payload=values,
                    headers={"Prefer": "return=representation"},
                )
            except SupabaseConnectionError as e:
                span.record_exception(e)
                raise

            if response.status_code in (200, 204):
                rows = response.json() if response.content else []
                span.set_attribute("db.rows", len(rows))
                return rows

            self._handle_error_response(response, span)

    @_retry_transient
    async def upsert(
        self,
        table: str,
        rows: dict[str, Any] | list[dict[str, Any]],
        on_conflict: str | None = None,
    ) -> list[dict[str, Any]]:
        """Insert or merge rows on their primary key (or ``on_conflict`` columns)."""
        with tracer.start_as_current_span(f"supabase_upsert_{table}") as span:
            span.set_attribute("db.table", table)
            params = [("on_conflict", on_conflict)] if on_conflict else []
            try:
                response = await self._send(
                    "POST",
                    f"/rest/v1/{table}",
                    params=params,
                    payload=rows,
                    headers={"Prefer": "resolution=merge-duplicates,return=representation"},
                )
            except SupabaseConnectionError as e:
                span.record_exception(e)
                raise

            if response.status_code in (200, 201):
                return response.json() if response.content else []

            self._handle_error_response(response, span)

    # =========================================================================
    # RPC and auth
    # =========================================================================

    async def rpc(
        self,
        function: str,
        params: dict[str, Any] | None = None,
        *,
        retry_transient: bool = True,
    ) -> Any:
        """Call a server-side function.

        Args:
            function: Function name under /rest/v1/rpc
            params: JSON arguments
            retry_transient: Replay on connect errors and timeouts. Pass False for
                non-idempotent functions (payments).

        Returns:
            The decoded JSON result (primitive, row or list of rows)
        """
        if retry_transient:
            return await _retry_transient(self._rpc)(function, params)
        return await self._rpc(function, params)

    async def _rpc(self, function: str, params: dict[str, Any] | None = None) -> Any:
        with tracer.start_as_current_span(f"supabase_rpc_{function}") as span:
            span.set_attribute("db.rpc", function)
            try:
                response = await self._send(
                    "POST", f"/rest/v1/rpc/{function}", payload=params or {}
                )
            except SupabaseConnectionError as e:
                span.record_exception(e)
                raise

            if response.status_code in (200, 204):
                return response.json() if response.content else None

            self._handle_error_response(response, span)

    @_retry_transient
    async def get_user(self, access_token: str) -> dict[str, Any] | None:
        """Resolve an end-user access token through ``/auth/v1/user``.

        Returns:
            The auth user payload, or None if the token is rejected
        """
        with tracer.start_as_current_span("supabase_get_user") as span:
            try:
                response = await self._send(
                    "GET",
                    "/auth/v1/user",
                    headers={"Authorization": f"Bearer {access_token}"},
                )
            except SupabaseConnectionError as e:
                span.record_exception(e)
                raise

            if response.status_code == 200:
                user = response.json()
                span.set_attribute("auth.user_id", user.get("id", ""))
                return user

            if response.status_code in (401, 403):
                span.add_event("Token rejected")
                return None

            self._handle_error_response(response, span)

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _build_params(
        columns: str,
        filters: Sequence[Filter],
        order: str | None,
        limit: int | None,
    ) -> list[tuple[str, str]]:
        params: list[tuple[str, str]] = [("select", columns)]
        params.extend(filters)
        if order:
            params.append(("order", order))
        if limit is not None:
            params.append(("limit", str(limit)))
        return params

    @staticmethod
    def _error_code(response: httpx.Response) -> str | None:
        try:
            return response.json().get("code")
        except (json.JSONDecodeError, AttributeError):
            return None

    def _handle_error_response(self, response: httpx.Response, span: trace.Span) -> None:
        """Handle non-success HTTP responses.

        Args:
            response: HTTP response from the remote store
            span: Current OpenTelemetry span

        Raises:
            SupabaseOperationError: Always raised with error details
        """
        try:
            payload = response.json()
        except json.JSONDecodeError:
            payload = {"message": response.text}
        if not isinstance(payload, dict):
            payload = {"message": str(payload)}

        error_msg = payload.get("message") or (
            f"Remote store operation failed with status {response.status_code}"
        )
        span.set_attribute("db.error_status", response.status_code)
        span.add_event("Remote operation failed", {"status_code": response.status_code})

        raise SupabaseOperationError(
            status_code=response.status_code,
            message=error_msg,
            payload=payload,
        )

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client:
            await self._client.aclose()
            self._client = None


# =============================================================================
# Singleton Pattern - Module-level remote store client
# =============================================================================

_supabase_client: SupabaseClient | None = None


def get_supabase_client() -> SupabaseClient:
    """Get the singleton client instance.

    Returns:
        SupabaseClient: The initialized client

    Raises:
        RuntimeError: If client has not been initialized (app not started)
    """
    if _supabase_client is None:
        raise RuntimeError(
            "Supabase client not initialized. Ensure the application lifespan has started properly."
        )
    return _supabase_client


async def initialize_supabase_client(
    base_url: str | None = None,
    api_key: str | None = None,
    timeout: float | None = None,
) -> SupabaseClient:
    """Initialize the singleton client during application startup."""
    global _supabase_client
    _supabase_client = SupabaseClient(base_url=base_url, api_key=api_key, timeout=timeout)
    return _supabase_client


async def close_supabase_client() -> None:
    """Close the singleton client during application shutdown."""
    global _supabase_client
    if _supabase_client is not None:
        await _supabase_client.close()
        _supabase_client = None
