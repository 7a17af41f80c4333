"""Service d'analytique systeme et hospitaliere.

Les compteurs sont mis en cache Redis (``CACHE_TTL_ANALYTICS``); une panne du
cache ne fait que forcer un recalcul.
"""

import asyncio
import logging
from collections import Counter
from datetime import UTC, date, datetime
from typing import Any

from opentelemetry import trace

from app.core.cache import (
    cache_get,
    cache_key_hospital_analytics,
    cache_key_system_analytics,
    cache_set,
)
from app.core.config import settings
from app.infrastructure.supabase import SupabaseClient
from app.infrastructure.supabase.filters import eq
from app.schemas.analytics import (
    HospitalAnalytics,
    MonthlyAppointments,
    PhysicianWorkload,
    SystemAnalytics,
)
from app.services.remote import degrade_on_remote_error, remote_errors

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

MONTHS_OF_HISTORY = 6


def _empty_system_analytics() -> SystemAnalytics:
    return SystemAnalytics(
        total_users=0,
        total_appointments=0,
        appointments_today=0,
        pending_verifications=0,
        total_documents=0,
        last_updated=datetime.now(UTC),
    )


@degrade_on_remote_error(default_factory=_empty_system_analytics)
async def get_system_analytics(
    client: SupabaseClient, today: date | None = None
) -> SystemAnalytics:
    """
    Compteurs globaux du dashboard administrateur.

    Returns:
        SystemAnalytics (compteurs a zero si le backend est indisponible)
    """
    cache_key = cache_key_system_analytics()
    cached = await cache_get(cache_key)
    if cached:
        return SystemAnalytics.model_validate_json(cached)

    today = today or datetime.now(UTC).date()
    with tracer.start_as_current_span("get_system_analytics"):
        (
            total_users,
            total_appointments,
            appointments_today,
            pending_verifications,
            total_documents,
        ) = await asyncio.gather(
            client.count("profiles"),
            client.count("appointments"),
            client.count("appointments", [eq("appointment_date", today.isoformat())]),
            client.count("profiles", [eq("verification_status", "pending")]),
            client.count("documents"),
        )

    analytics = SystemAnalytics(
        total_users=total_users,
        total_appointments=total_appointments,
        appointments_today=appointments_today,
        pending_verifications=pending_verifications,
        total_documents=total_documents,
        last_updated=datetime.now(UTC),
    )
    await cache_set(cache_key, analytics.model_dump_json(), ttl=settings.CACHE_TTL_ANALYTICS)
    return analytics


# =============================================================================
# Analytique hospitaliere
# =============================================================================


def last_month_keys(today: date, months: int = MONTHS_OF_HISTORY) -> list[str]:
    """Cles ``YYYY-MM`` des ``months`` derniers mois, du plus ancien au courant."""
    keys = []
    for offset in range(months - 1, -1, -1):
        year, month = divmod(today.year * 12 + today.month - 1 - offset, 12)
        keys.append(f"{year:04d}-{month + 1:02d}")
    return keys


def bucket_monthly_appointments(
    appointments: list[dict[str, Any]], today: date
) -> list[MonthlyAppointments]:
    """Rendez-vous par mois sur les six derniers mois; les autres sont ignores."""
    keys = last_month_keys(today)
    counts = Counter(
        str(appointment.get("appointment_date") or "")[:7] for appointment in appointments
    )
    return [MonthlyAppointments(month=key, count=counts.get(key, 0)) for key in keys]


def count_by_status(appointments: list[dict[str, Any]]) -> dict[str, int]:
    """Repartition par statut, ``pending`` par defaut."""
    return dict(Counter(appointment.get("status") or "pending" for appointment in appointments))


def physician_workload(
    appointments: list[dict[str, Any]], physicians: list[dict[str, Any]]
) -> list[PhysicianWorkload]:
    """Charge par medecin actif, tri decroissant."""
    counts = Counter(appointment.get("physician_id") for appointment in appointments)
    workload = [
        PhysicianWorkload(
            physician_id=physician["id"],
            name=f"{physician.get('first_name') or ''} {physician.get('last_name') or ''}".strip(),
            appointments=counts.get(physician["id"], 0),
        )
        for physician in physicians
    ]
    return sorted(workload, key=lambda item: item.appointments, reverse=True)


async def hospital_analytics(
    client: SupabaseClient, hospital_id: str, today: date | None = None
) -> HospitalAnalytics:
    """
    Analytique d'un hopital.

    Le RPC ``generate_hospital_analytics`` rafraichit les agregats cote serveur,
    les series sont ensuite calculees localement.

    Raises:
        RemoteServiceError: Si le backend est indisponible
    """
    cache_key = cache_key_hospital_analytics(hospital_id)
    cached = await cache_get(cache_key)
    if cached:
        return HospitalAnalytics.model_validate_json(cached)

    today = today or datetime.now(UTC).date()
    with tracer.start_as_current_span("hospital_analytics") as span:
        span.set_attribute("hospital.id", hospital_id)

        with remote_errors("load hospital analytics"):
            summary = await client.rpc(
                "generate_hospital_analytics", {"hospital_uuid": hospital_id}
            )
            appointments, physicians, emergencies = await asyncio.gather(
                client.select(
                    "appointments",
                    "id, status, appointment_date, physician_id, created_at",
                    [eq("hospital_id", hospital_id)],
                ),
                client.select(
                    "profiles",
                    "id, first_name, last_name",
                    [
                        eq("hospital_id", hospital_id),
                        eq("role", "physician"),
                        eq("is_active", True),
                    ],
                ),
                client.select(
                    "emergency_requests",
                    "id, severity, status, created_at",
                    [eq("hospital_id", hospital_id)],
                ),
            )

    analytics = HospitalAnalytics(
        hospital_id=hospital_id,
        total_appointments=len(appointments),
        summary=summary if isinstance(summary, dict) else {},
        monthly_appointments=bucket_monthly_appointments(appointments, today),
        appointments_by_status=count_by_status(appointments),
        physician_workload=physician_workload(appointments, physicians),
        active_physicians=len(physicians),
        emergencies=len(emergencies),
        generated_at=datetime.now(UTC),
    )
    await cache_set(cache_key, analytics.model_dump_json(), ttl=settings.CACHE_TTL_ANALYTICS)
    return analytics
