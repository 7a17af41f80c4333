"""Service des parametres systeme."""

import logging
from typing import Any

from opentelemetry import trace

from app.infrastructure.supabase import SupabaseClient
from app.schemas.admin import SystemSetting
from app.services.audit_service import log_admin_action
from app.services.remote import degrade_on_remote_error, remote_errors

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

SETTINGS_TABLE = "system_settings"


@degrade_on_remote_error()
async def fetch_settings(client: SupabaseClient) -> list[SystemSetting]:
    rows = await client.select(SETTINGS_TABLE, "*", order="category")
    return [SystemSetting.model_validate(row) for row in rows]


async def upsert_setting(
    client: SupabaseClient,
    setting_key: str,
    setting_value: Any,
    category: str = "general",
    description: str | None = None,
    admin_id: str | None = None,
) -> SystemSetting:
    """
    Cree ou remplace un parametre (conflit sur ``setting_key``) puis trace l'action.

    Raises:
        RemoteServiceError: Si l'ecriture echoue
    """
    with tracer.start_as_current_span("upsert_system_setting") as span:
        span.set_attribute("setting.key", setting_key)

        with remote_errors("update setting"):
            rows = await client.upsert(
                SETTINGS_TABLE,
                {
                    "setting_key": setting_key,
                    "setting_value": setting_value,
                    "category": category,
                    "description": description,
                },
                on_conflict="setting_key",
            )

        logger.info(f"System setting '{setting_key}' updated")
        await log_admin_action(
            client,
            "system_setting_update",
            admin_id=admin_id,
            details={"setting_key": setting_key, "action": "updated"},
        )
        if rows:
            return SystemSetting.model_validate(rows[0])
        return SystemSetting(
            setting_key=setting_key,
            setting_value=setting_value,
            category=category,
            description=description,
        )
