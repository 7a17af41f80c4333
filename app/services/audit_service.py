"""Service du journal d'audit administrateur.

- ``log_admin_action``: trace une action via le RPC ``log_admin_action``
- ``fetch_audit_log``: dernieres actions jointes a l'admin et a l'utilisateur cible

Il n'y a pas de transaction entre une mutation et sa trace d'audit: un echec
de journalisation apres une mutation reussie est loggue, jamais annule.
"""

import logging
from typing import Any

from opentelemetry import trace

from app.core.config import settings
from app.infrastructure.supabase import SupabaseClient, SupabaseError
from app.schemas.admin import AdminAction
from app.services.remote import degrade_on_remote_error

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

AUDIT_COLUMNS = (
    "*, "
    "admin:profiles!admin_actions_admin_id_fkey(first_name, last_name, email), "
    "target_user:profiles!admin_actions_target_user_id_fkey(first_name, last_name, email)"
)


async def log_admin_action(
    client: SupabaseClient,
    action_type: str,
    admin_id: str | None = None,
    target_user_id: str | None = None,
    target_resource_type: str | None = None,
    target_resource_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> str | None:
    """
    Trace une action administrateur.

    L'identifiant de l'admin est ajoute aux details (``admin_id``) car le
    service appelle le RPC avec sa propre cle.

    Returns:
        Identifiant de l'entree d'audit, ou None si la journalisation a echoue
    """
    with tracer.start_as_current_span("log_admin_action") as span:
        span.set_attribute("audit.action_type", action_type)
        if admin_id:
            span.set_attribute("audit.admin_id", admin_id)

        action_details = dict(details or {})
        if admin_id:
            action_details["admin_id"] = admin_id

        params: dict[str, Any] = {
            "action_type_param": action_type,
            "action_details_param": action_details,
        }
        if target_user_id:
            params["target_user_id_param"] = target_user_id
        if target_resource_type:
            params["target_resource_type_param"] = target_resource_type
        if target_resource_id:
            params["target_resource_id_param"] = target_resource_id

        try:
            return await client.rpc("log_admin_action", params)
        except SupabaseError as e:
            logger.error(f"Failed to log admin action '{action_type}': {e}")
            span.record_exception(e)
            return None


@degrade_on_remote_error()
async def fetch_audit_log(client: SupabaseClient, limit: int | None = None) -> list[AdminAction]:
    """Dernieres actions administrateur, les plus recentes d'abord."""
    with tracer.start_as_current_span("fetch_audit_log"):
        rows = await client.select(
            "admin_actions",
            AUDIT_COLUMNS,
            order="created_at.desc",
            limit=limit or settings.DASHBOARD_ROW_LIMIT,
        )
        return [AdminAction.model_validate(row) for row in rows]
