"""Service de la file d'attente patients d'un hopital."""

import logging
from collections import Counter
from collections.abc import Sequence
from datetime import UTC, datetime

from opentelemetry import trace

from app.core.exceptions import ResourceNotFoundError
from app.core.realtime_interface import (
    RealtimeBusInterface,
    RealtimeHandler,
    Subscription,
    change_channel,
)
from app.infrastructure.supabase import SupabaseClient
from app.infrastructure.supabase.filters import eq
from app.schemas.hospital import (
    WaitlistCreate,
    WaitlistEntry,
    WaitlistStatus,
    WaitlistSummary,
)
from app.services.profile_lookup import display_name, fetch_profiles_by_ids
from app.services.remote import degrade_on_remote_error, remote_errors

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

WAITLIST_TABLE = "patient_waitlist"
DEFAULT_WAIT_MINUTES = 30


@degrade_on_remote_error()
async def fetch_waitlist(client: SupabaseClient, hospital_id: str) -> list[WaitlistEntry]:
    """File d'attente dans l'ordre d'arrivee, avec nom et telephone du patient."""
    with tracer.start_as_current_span("fetch_waitlist") as span:
        span.set_attribute("hospital.id", hospital_id)
        rows = await client.select(
            WAITLIST_TABLE, "*", [eq("hospital_id", hospital_id)], order="created_at.asc"
        )
        profiles = await fetch_profiles_by_ids(client, (row.get("patient_id") for row in rows))

    entries = []
    for row in rows:
        profile = profiles.get(row.get("patient_id"))
        entries.append(
            WaitlistEntry.model_validate(
                {
                    **row,
                    "estimated_wait_time": row.get("estimated_wait_time") or 0,
                    "patient_name": display_name(profile, "Unknown Patient"),
                    "patient_phone": (profile or {}).get("phone") or "",
                }
            )
        )
    return entries


async def add_to_waitlist(
    client: SupabaseClient,
    hospital_id: str,
    entry: WaitlistCreate,
    bus: RealtimeBusInterface | None = None,
) -> WaitlistEntry:
    """
    Ajoute un patient a la file d'attente.

    Raises:
        RemoteServiceError: Si l'insertion echoue
    """
    values = entry.model_dump()
    if values["estimated_wait_time"] is None:
        values["estimated_wait_time"] = DEFAULT_WAIT_MINUTES

    with tracer.start_as_current_span("add_to_waitlist") as span:
        span.set_attribute("hospital.id", hospital_id)
        with remote_errors("add patient to waitlist"):
            rows = await client.insert(WAITLIST_TABLE, {**values, "hospital_id": hospital_id})

    row = rows[0]
    logger.info(f"Patient {entry.patient_id} added to waitlist of hospital {hospital_id}")
    if bus is not None:
        await bus.publish_change(WAITLIST_TABLE, "INSERT", new=row)
    return WaitlistEntry.model_validate(row)


async def update_entry_status(
    client: SupabaseClient,
    hospital_id: str,
    entry_id: str,
    status: WaitlistStatus,
    now: datetime | None = None,
    bus: RealtimeBusInterface | None = None,
) -> WaitlistEntry:
    """
    Change le statut d'une entree.

    ``called_at`` n'est renseigne que pour ``called``, ``completed_at`` que pour
    ``completed``; ils sont remis a null sinon.

    Raises:
        ResourceNotFoundError: Si l'entree n'existe pas dans cet hopital
        RemoteServiceError: Si la mise a jour echoue
    """
    now = now or datetime.now(UTC)
    values = {
        "status": status,
        "called_at": now.isoformat() if status == "called" else None,
        "completed_at": now.isoformat() if status == "completed" else None,
    }

    with tracer.start_as_current_span("update_waitlist_status") as span:
        span.set_attribute("waitlist.entry_id", entry_id)
        span.set_attribute("waitlist.status", status)
        with remote_errors("update waitlist status"):
            rows = await client.update(
                WAITLIST_TABLE, values, [eq("id", entry_id), eq("hospital_id", hospital_id)]
            )

    if not rows:
        raise ResourceNotFoundError("Waitlist entry", entry_id)
    if bus is not None:
        await bus.publish_change(WAITLIST_TABLE, "UPDATE", new=rows[0])
    return WaitlistEntry.model_validate(rows[0])


def waitlist_position_summary(entries: Sequence[WaitlistEntry]) -> WaitlistSummary:
    """Comptes par statut et par priorite."""
    return WaitlistSummary(
        total=len(entries),
        by_status=dict(Counter(entry.status for entry in entries)),
        by_priority=dict(Counter(entry.priority for entry in entries)),
    )


async def subscribe_waitlist_changes(
    bus: RealtimeBusInterface, hospital_id: str, handler: RealtimeHandler
) -> Subscription:
    """Abonne ``handler`` aux changements de la file d'attente d'un hopital."""
    return await bus.subscribe(
        change_channel(WAITLIST_TABLE), handler, row_filter=eq("hospital_id", hospital_id)
    )
