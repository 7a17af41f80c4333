import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, WebSocket, WebSocketException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from opentelemetry import trace
from pydantic import BaseModel

from app.core.dependencies import get_supabase_client
from app.infrastructure.supabase import SupabaseClient, SupabaseError
from app.infrastructure.supabase.filters import eq

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Security scheme for Bearer token (optional so query/cookie fallbacks are reachable)
security_scheme = HTTPBearer(auto_error=False)

PROFILE_COLUMNS = "id, email, role, first_name, last_name, hospital_id, is_active"


class User(BaseModel):
    id: str  # Auth user ID (= profiles.id)
    email: str | None = None
    role: str = "patient"
    first_name: str | None = None
    last_name: str | None = None
    hospital_id: str | None = None
    is_active: bool = True

    @property
    def is_admin(self) -> bool:
        """Check si l'utilisateur est administrateur plateforme."""
        return self.role == "admin"

    def is_owner(self, resource_owner_id: str) -> bool:
        """Check si l'utilisateur est le propriétaire de la ressource."""
        return self.id == resource_owner_id

    def verify_hospital_access(self, hospital_id: str) -> str:
        """
        Vérifie l'accès à un hôpital et retourne la raison pour traçabilité.

        Returns:
            "hospital_admin" si l'utilisateur administre cet hôpital
            "admin_supervision" si admin plateforme

        Raises:
            HTTPException 403 sinon
        """
        if self.role == "hospital_admin" and self.hospital_id == hospital_id:
            return "hospital_admin"

        if self.is_admin:
            return "admin_supervision"

        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Accès refusé : cet hôpital n'est pas rattaché à votre compte",
        )


async def extract_token(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)] = None,
) -> str:
    """
    Extract the access token from multiple sources.

    Token extraction priority:
    1. Authorization header: Bearer <token> (standard for HTTP requests)
    2. Query parameter: ?token=<token> (for WebSocket/EventSource)
    3. Cookie: auth_token (alternative for browsers)

    Raises:
        HTTPException: If no token found in any source
    """
    if credentials:
        logger.debug("Token extracted from Authorization header")
        return credentials.credentials

    token = request.query_params.get("token")
    if token:
        logger.debug("Token extracted from query parameter")
        return token

    token = request.cookies.get("auth_token")
    if token:
        logger.debug("Token extracted from cookie")
        return token

    logger.warning("No authentication token found in request")
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required. Provide token via Authorization header, query parameter, or cookie.",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def resolve_user(client: SupabaseClient, token: str) -> User:
    """
    Verify an access token against the remote auth endpoint and load the profile.

    The role comes from ``profiles.role``; a user without profile keeps the
    least privileged role.
    """
    with tracer.start_as_current_span("verify_access_token") as span:
        try:
            auth_user = await client.get_user(token)
        except SupabaseError as e:
            logger.error(f"Token verification failed: {e}")
            span.set_attribute("auth.error", True)
            span.set_attribute("auth.error_detail", str(e))
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Authentication service unavailable",
            ) from e

        if auth_user is None or not auth_user.get("id"):
            span.set_attribute("auth.error", True)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token",
                headers={"WWW-Authenticate": "Bearer"},
            )

        user_id = auth_user["id"]
        span.set_attribute("auth.user_id", user_id)

        try:
            profile = await client.select_one("profiles", PROFILE_COLUMNS, [eq("id", user_id)])
        except SupabaseError as e:
            logger.error(f"Failed to load profile for {user_id}: {e}")
            span.record_exception(e)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Authentication service unavailable",
            ) from e

        profile = profile or {}
        user = User(
            id=user_id,
            email=profile.get("email") or auth_user.get("email"),
            role=profile.get("role") or "patient",
            first_name=profile.get("first_name"),
            last_name=profile.get("last_name"),
            hospital_id=profile.get("hospital_id"),
            is_active=profile.get("is_active", True) is not False,
        )
        span.set_attribute("auth.role", user.role)
        return user


async def get_current_user(
    token: Annotated[str, Depends(extract_token)],
    client: Annotated[SupabaseClient, Depends(get_supabase_client)],
) -> User:
    """Get current user from a verified access token."""
    with tracer.start_as_current_span("get_current_user") as span:
        user = await resolve_user(client, token)
        if not user.is_active:
            logger.warning(f"Inactive user rejected: {user.id}")
            span.set_attribute("auth.inactive", True)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Account suspended",
            )
        logger.info(f"User authenticated: {user.id} ({user.role})")
        return user


def require_roles(*roles: str):
    """
    Dependency factory for role-based access control.

    Args:
        *roles: One or more role names; the user needs ANY of them.

    Examples:
        @router.get("/audit-log", dependencies=[Depends(require_roles("admin"))])

        @router.get("/{hospital_id}/waitlist")
        async def waitlist(user: User = Depends(require_roles("hospital_admin", "admin"))): ...
    """

    async def role_checker(current_user: User = Depends(get_current_user)) -> User:
        with tracer.start_as_current_span("check_user_roles") as span:
            span.set_attribute("auth.required_roles", ",".join(roles))
            span.set_attribute("auth.user_id", current_user.id)
            span.set_attribute("auth.user_role", current_user.role)

            if current_user.role not in roles:
                logger.warning(
                    f"Access denied for user {current_user.id}. "
                    f"Required roles: {roles}. User role: {current_user.role}"
                )
                span.set_attribute("auth.access_denied", True)
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Access denied. Required roles: {', '.join(roles)}",
                )

            span.set_attribute("auth.access_granted", True)
            return current_user

    return role_checker


# Convenience dependencies for common role checks
async def get_current_admin(current_user: User = Depends(require_roles("admin"))) -> User:
    """Get current user with admin role validation."""
    return current_user


async def get_current_hospital_admin(
    current_user: User = Depends(require_roles("hospital_admin", "admin")),
) -> User:
    """Get current user with hospital admin (or platform admin) role validation."""
    return current_user


async def get_websocket_user(
    websocket: WebSocket,
    client: Annotated[SupabaseClient, Depends(get_supabase_client)],
) -> User:
    """
    Authentifie une connexion WebSocket (``?token=`` ou cookie ``auth_token``).

    Raises:
        WebSocketException: 1008 si le token est absent, invalide ou le compte suspendu
    """
    token = websocket.query_params.get("token") or websocket.cookies.get("auth_token")
    if not token:
        raise WebSocketException(
            code=status.WS_1008_POLICY_VIOLATION, reason="Authentication required"
        )
    try:
        user = await resolve_user(client, token)
    except HTTPException as e:
        raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason=str(e.detail)) from e
    if not user.is_active:
        raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason="Account suspended")
    return user
