"""Resolution des noms de profils pour les listes hospitalieres."""

from collections.abc import Iterable
from typing import Any

from app.infrastructure.supabase import SupabaseClient
from app.infrastructure.supabase.filters import in_


async def fetch_profiles_by_ids(
    client: SupabaseClient,
    ids: Iterable[str | None],
    columns: str = "id, first_name, last_name, phone, role",
) -> dict[str, dict[str, Any]]:
    """Profils indexes par id; une liste vide ne declenche aucun appel."""
    unique_ids = sorted({profile_id for profile_id in ids if profile_id})
    if not unique_ids:
        return {}
    rows = await client.select("profiles", columns, [in_("id", unique_ids)])
    return {row["id"]: row for row in rows}


def display_name(profile: dict[str, Any] | None, fallback: str) -> str:
    """``"Prenom Nom"`` ou ``fallback`` si le profil est absent ou sans nom."""
    if not profile:
        return fallback
    name = f"{profile.get('first_name') or ''} {profile.get('last_name') or ''}".strip()
    return name or fallback
