"""Service du journal d'activite utilisateur.

Les 100 dernieres activites sont mises en cache; chaque INSERT temps reel sur
``user_activity_logs`` invalide le cache pour forcer un rechargement.
"""

import json
import logging
from typing import Any

from opentelemetry import trace

from app.core.cache import cache_delete, cache_get, cache_key_recent_activity, cache_set
from app.core.config import settings
from app.core.realtime import subscribe
from app.core.realtime_interface import change_channel
from app.infrastructure.supabase import SupabaseClient
from app.schemas.admin import UserActivityLog
from app.services.remote import degrade_on_remote_error

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

ACTIVITY_TABLE = "user_activity_logs"
ACTIVITY_COLUMNS = (
    "*, user:profiles!user_activity_logs_user_id_fkey(first_name, last_name, email, role)"
)


@degrade_on_remote_error()
async def fetch_recent_activity(client: SupabaseClient) -> list[UserActivityLog]:
    """Dernieres activites utilisateur, les plus recentes d'abord (cache-aside)."""
    cache_key = cache_key_recent_activity()
    cached = await cache_get(cache_key)
    if cached:
        return [UserActivityLog.model_validate(row) for row in json.loads(cached)]

    with tracer.start_as_current_span("fetch_recent_activity") as span:
        rows = await client.select(
            ACTIVITY_TABLE,
            ACTIVITY_COLUMNS,
            order="created_at.desc",
            limit=settings.DASHBOARD_ROW_LIMIT,
        )
        span.set_attribute("activity.count", len(rows))

    activities = [UserActivityLog.model_validate(row) for row in rows]
    await cache_set(
        cache_key,
        json.dumps([activity.model_dump(mode="json") for activity in activities]),
        ttl=settings.CACHE_TTL_DEFAULT,
    )
    return activities


@subscribe(change_channel(ACTIVITY_TABLE), event_types=frozenset({"INSERT"}))
async def on_activity_inserted(event: dict[str, Any]) -> None:
    """Nouvelle activite: le prochain chargement relit la table."""
    new = event.get("new") or {}
    logger.debug(f"New activity {new.get('activity_type')} for user {new.get('user_id')}")
    await cache_delete(cache_key_recent_activity())
