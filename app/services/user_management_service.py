"""Service de gestion des utilisateurs (activation, suspension, verification)."""

import logging

from opentelemetry import trace

from app.core.exceptions import ResourceNotFoundError
from app.infrastructure.supabase import SupabaseClient
from app.infrastructure.supabase.filters import eq
from app.schemas.admin import Profile
from app.services.audit_service import log_admin_action
from app.services.remote import degrade_on_remote_error, remote_errors

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

PROFILES_TABLE = "profiles"


@degrade_on_remote_error()
async def fetch_users(client: SupabaseClient) -> list[Profile]:
    """Profils, les plus recents d'abord."""
    rows = await client.select(PROFILES_TABLE, "*", order="created_at.desc")
    return [Profile.model_validate(row) for row in rows]


async def _update_profile(
    client: SupabaseClient, user_id: str, values: dict, operation: str
) -> Profile:
    with remote_errors(operation):
        rows = await client.update(PROFILES_TABLE, values, [eq("id", user_id)])
    if not rows:
        raise ResourceNotFoundError("User", user_id)
    return Profile.model_validate(rows[0])


async def update_user_status(
    client: SupabaseClient,
    user_id: str,
    is_active: bool,
    admin_id: str | None = None,
) -> Profile:
    """
    Active ou suspend un utilisateur puis trace l'action.

    Raises:
        ResourceNotFoundError: Si l'utilisateur n'existe pas
        RemoteServiceError: Si la mise a jour echoue
    """
    with tracer.start_as_current_span("update_user_status") as span:
        span.set_attribute("user.id", user_id)
        span.set_attribute("user.is_active", is_active)

        profile = await _update_profile(
            client, user_id, {"is_active": is_active}, "update user status"
        )
        action_type = "user_activation" if is_active else "user_suspension"
        logger.info(f"User {user_id}: {action_type}")

        await log_admin_action(
            client,
            action_type,
            admin_id=admin_id,
            target_user_id=user_id,
            details={"previous_status": not is_active, "new_status": is_active},
        )
        return profile


async def approve_verification(
    client: SupabaseClient, user_id: str, admin_id: str | None = None
) -> Profile:
    """
    Marque le profil comme verifie puis trace l'action.

    Raises:
        ResourceNotFoundError: Si l'utilisateur n'existe pas
        RemoteServiceError: Si la mise a jour echoue
    """
    with tracer.start_as_current_span("approve_verification") as span:
        span.set_attribute("user.id", user_id)

        profile = await _update_profile(
            client, user_id, {"verification_status": "verified"}, "approve verification"
        )
        logger.info(f"User {user_id} verified")

        await log_admin_action(
            client,
            "user_verification",
            admin_id=admin_id,
            target_user_id=user_id,
            details={"verification_status": "approved"},
        )
        return profile
