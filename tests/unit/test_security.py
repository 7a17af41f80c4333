"""Tests unitaires pour le module de securite.

Ce module teste l'extraction du token, la verification aupres du service
d'authentification distant, les controles d'acces bases sur les roles (RBAC)
et l'authentification des WebSockets.
"""

from unittest.mock import Mock

import pytest
from fastapi import HTTPException, Request, WebSocketException
from fastapi.security import HTTPAuthorizationCredentials

from app.core.security import (
    User,
    extract_token,
    get_current_user,
    get_websocket_user,
    require_roles,
    resolve_user,
)
from tests.fakes import FakeStore

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def auth_store():
    """Backend avec un admin, un admin d'hopital et un compte suspendu."""
    store = FakeStore(
        {
            "profiles": [
                {"id": "admin-1", "email": "admin@africare.sn", "role": "admin", "is_active": True},
                {
                    "id": "hadmin-1",
                    "email": "direction@hopital.sn",
                    "role": "hospital_admin",
                    "hospital_id": "h-1",
                    "is_active": True,
                },
                {"id": "suspended-1", "role": "physician", "is_active": False},
            ]
        }
    )
    store.users_by_token = {
        "admin-token": {"id": "admin-1", "email": "admin@africare.sn"},
        "hadmin-token": {"id": "hadmin-1"},
        "suspended-token": {"id": "suspended-1"},
        "orphan-token": {"id": "orphan-1", "email": "orphan@example.sn"},
    }
    return store


@pytest.fixture
def mock_request():
    request = Mock(spec=Request)
    request.query_params = {}
    request.cookies = {}
    return request


# =============================================================================
# Extraction du token
# =============================================================================


class TestExtractToken:
    """Priorite: header Authorization, puis ?token=, puis cookie auth_token."""

    @pytest.mark.asyncio
    async def test_header_has_priority(self, mock_request):
        mock_request.query_params = {"token": "from-query"}
        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="from-header")

        assert await extract_token(mock_request, credentials) == "from-header"

    @pytest.mark.asyncio
    async def test_query_then_cookie(self, mock_request):
        mock_request.query_params = {"token": "from-query"}
        mock_request.cookies = {"auth_token": "from-cookie"}
        assert await extract_token(mock_request, None) == "from-query"

        mock_request.query_params = {}
        assert await extract_token(mock_request, None) == "from-cookie"

    @pytest.mark.asyncio
    async def test_missing_token(self, mock_request):
        with pytest.raises(HTTPException) as exc_info:
            await extract_token(mock_request, None)

        assert exc_info.value.status_code == 401
        assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}


# =============================================================================
# Verification du token
# =============================================================================


class TestResolveUser:
    @pytest.mark.asyncio
    async def test_role_from_profile(self, auth_store):
        user = await resolve_user(auth_store, "hadmin-token")

        assert user.id == "hadmin-1"
        assert user.role == "hospital_admin"
        assert user.hospital_id == "h-1"
        assert user.email == "direction@hopital.sn"

    @pytest.mark.asyncio
    async def test_user_without_profile_is_patient(self, auth_store):
        user = await resolve_user(auth_store, "orphan-token")

        assert user.role == "patient"
        assert user.email == "orphan@example.sn"

    @pytest.mark.asyncio
    async def test_invalid_token(self, auth_store):
        with pytest.raises(HTTPException) as exc_info:
            await resolve_user(auth_store, "unknown")

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_auth_service_down(self, auth_store):
        auth_store.fail_on.add("get_user")

        with pytest.raises(HTTPException) as exc_info:
            await resolve_user(auth_store, "admin-token")

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_suspended_account_rejected(self, auth_store):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user("suspended-token", auth_store)

        assert exc_info.value.status_code == 403
        assert exc_info.value.detail == "Account suspended"


# =============================================================================
# Controle d'acces
# =============================================================================


class TestRequireRoles:
    @pytest.mark.asyncio
    async def test_any_role_is_enough(self):
        checker = require_roles("hospital_admin", "admin")
        user = User(id="u1", role="admin")

        assert await checker(current_user=user) is user

    @pytest.mark.asyncio
    async def test_wrong_role(self):
        checker = require_roles("admin")

        with pytest.raises(HTTPException) as exc_info:
            await checker(current_user=User(id="u1", role="physician"))

        assert exc_info.value.status_code == 403
        assert "admin" in exc_info.value.detail


class TestHospitalAccess:
    def test_own_hospital(self):
        user = User(id="u1", role="hospital_admin", hospital_id="h-1")

        assert user.verify_hospital_access("h-1") == "hospital_admin"

    def test_platform_admin_supervision(self):
        assert User(id="u1", role="admin").verify_hospital_access("h-9") == "admin_supervision"

    def test_other_hospital_forbidden(self):
        user = User(id="u1", role="hospital_admin", hospital_id="h-1")

        with pytest.raises(HTTPException) as exc_info:
            user.verify_hospital_access("h-2")

        assert exc_info.value.status_code == 403


# =============================================================================
# WebSocket
# =============================================================================


def _websocket(query: dict | None = None, cookies: dict | None = None) -> Mock:
    websocket = Mock()
    websocket.query_params = query or {}
    websocket.cookies = cookies or {}
    return websocket


class TestWebsocketUser:
    @pytest.mark.asyncio
    async def test_token_from_query(self, auth_store):
        user = await get_websocket_user(_websocket({"token": "admin-token"}), auth_store)

        assert user.is_admin

    @pytest.mark.asyncio
    async def test_token_from_cookie(self, auth_store):
        websocket = _websocket(cookies={"auth_token": "hadmin-token"})

        assert (await get_websocket_user(websocket, auth_store)).id == "hadmin-1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, "unknown", "suspended-token"])
    async def test_policy_violation(self, auth_store, token):
        websocket = _websocket({"token": token} if token else None)

        with pytest.raises(WebSocketException) as exc_info:
            await get_websocket_user(websocket, auth_store)

        assert exc_info.value.code == 1008
