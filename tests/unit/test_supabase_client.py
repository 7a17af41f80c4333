"""Tests unitaires du client du backend distant (transport httpx simulé)."""

import json

import httpx
import pytest

from app.infrastructure.supabase import (
    SupabaseClient,
    SupabaseConnectionError,
    SupabaseNotFoundError,
    SupabaseOperationError,
)
from app.infrastructure.supabase.filters import eq, gte, in_, is_, lte


def _client(handler) -> SupabaseClient:
    return SupabaseClient(
        "http://supabase.test", api_key="service-key", transport=httpx.MockTransport(handler)
    )


class TestSelect:
    """Tests des lectures PostgREST."""

    @pytest.mark.asyncio
    async def test_select_builds_query(self):
        """Les filtres, l'ordre et la limite deviennent des paramètres de requête."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["params"] = request.url.params.multi_items()
            seen["apikey"] = request.headers["apikey"]
            return httpx.Response(200, json=[{"id": "1"}])

        client = _client(handler)
        rows = await client.select(
            "appointments",
            "id, status",
            [gte("appointment_date", "2026-01-01"), lte("appointment_date", "2026-01-31")],
            order="created_at.desc",
            limit=10,
        )
        await client.close()

        assert rows == [{"id": "1"}]
        assert seen["path"] == "/rest/v1/appointments"
        assert seen["apikey"] == "service-key"
        assert seen["params"] == [
            ("select", "id, status"),
            ("appointment_date", "gte.2026-01-01"),
            ("appointment_date", "lte.2026-01-31"),
            ("order", "created_at.desc"),
            ("limit", "10"),
        ]

    @pytest.mark.asyncio
    async def test_select_one_no_rows(self):
        """PGRST116 donne None, ou SupabaseNotFoundError si la ligne est requise."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["accept"] == "application/vnd.pgrst.object+json"
            return httpx.Response(406, json={"code": "PGRST116", "message": "no rows"})

        client = _client(handler)

        assert await client.select_one("profiles", filters=[eq("id", "x")]) is None
        with pytest.raises(SupabaseNotFoundError) as exc_info:
            await client.select_one("profiles", filters=[eq("id", "x")], required=True)
        assert exc_info.value.table == "profiles"

    @pytest.mark.asyncio
    async def test_count_from_content_range(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "HEAD"
            assert request.headers["prefer"] == "count=exact"
            return httpx.Response(206, headers={"content-range": "0-9/42"})

        assert await _client(handler).count("profiles") == 42

    @pytest.mark.asyncio
    async def test_error_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"code": "42703", "message": "column does not exist"})

        with pytest.raises(SupabaseOperationError) as exc_info:
            await _client(handler).select("profiles")
        assert exc_info.value.status_code == 400
        assert exc_info.value.code == "42703"
        assert exc_info.value.message == "column does not exist"

    @pytest.mark.asyncio
    async def test_connection_errors_are_retried(self):
        """Les erreurs de connexion sont rejouées puis remontées."""
        attempts = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            attempts["count"] += 1
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(SupabaseConnectionError):
            await _client(handler).select("profiles")
        assert attempts["count"] == 3


class TestWrites:
    """Tests des écritures et des RPC."""

    @pytest.mark.asyncio
    async def test_update_requires_filters(self):
        client = _client(lambda request: httpx.Response(200, json=[]))

        with pytest.raises(ValueError):
            await client.update("profiles", {"is_active": False}, [])

    @pytest.mark.asyncio
    async def test_update_sends_filters_and_payload(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["params"] = request.url.params.multi_items()
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=[{"id": "u1", "is_active": False}])

        rows = await _client(handler).update(
            "profiles", {"is_active": False}, [eq("id", "u1"), is_("deleted_at", None)]
        )

        assert rows == [{"id": "u1", "is_active": False}]
        assert seen["method"] == "PATCH"
        assert seen["params"] == [("id", "eq.u1"), ("deleted_at", "is.null")]
        assert seen["body"] == {"is_active": False}

    @pytest.mark.asyncio
    async def test_upsert_on_conflict(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = request.url.params.multi_items()
            seen["prefer"] = request.headers["prefer"]
            return httpx.Response(201, json=[{"setting_key": "k"}])

        await _client(handler).upsert("system_settings", {"setting_key": "k"}, "setting_key")

        assert seen["params"] == [("on_conflict", "setting_key")]
        assert "resolution=merge-duplicates" in seen["prefer"]

    @pytest.mark.asyncio
    async def test_rpc_returns_json(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/rest/v1/rpc/calculate_compliance_score"
            assert json.loads(request.content) == {"hospital_uuid": "h1"}
            return httpx.Response(200, json=87.5)

        result = await _client(handler).rpc("calculate_compliance_score", {"hospital_uuid": "h1"})

        assert result == 87.5

    @pytest.mark.asyncio
    async def test_rpc_without_retry_is_sent_once(self):
        """Un timeout sur un RPC non idempotent n'est pas rejoué."""
        attempts = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            attempts["count"] += 1
            if attempts["count"] == 1:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, json=True)

        with pytest.raises(SupabaseConnectionError):
            await _client(handler).rpc(
                "process_consultation_payment", {"session_uuid": "s1"}, retry_transient=False
            )
        assert attempts["count"] == 1

    @pytest.mark.asyncio
    async def test_rpc_timeout_retried_by_default(self):
        attempts = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            attempts["count"] += 1
            if attempts["count"] == 1:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, json=87.5)

        result = await _client(handler).rpc("calculate_compliance_score", {"hospital_uuid": "h1"})

        assert result == 87.5
        assert attempts["count"] == 2

    @pytest.mark.asyncio
    async def test_insert_without_retry_is_sent_once(self):
        attempts = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            attempts["count"] += 1
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(SupabaseConnectionError):
            await _client(handler).insert(
                "notifications", [{"user_id": "u1"}], retry_transient=False
            )
        assert attempts["count"] == 1

    @pytest.mark.asyncio
    async def test_in_filter_encoding(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = request.url.params.multi_items()
            return httpx.Response(200, json=[])

        await _client(handler).select("profiles", "id", [in_("id", ["a", "b"])])

        assert ("id", "in.(a,b)") in seen["params"]


class TestGetUser:
    @pytest.mark.asyncio
    async def test_valid_token(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["authorization"] == "Bearer user-token"
            return httpx.Response(200, json={"id": "u1", "email": "a@b.sn"})

        assert await _client(handler).get_user("user-token") == {"id": "u1", "email": "a@b.sn"}

    @pytest.mark.asyncio
    async def test_rejected_token(self):
        assert await _client(lambda request: httpx.Response(401)).get_user("bad") is None
