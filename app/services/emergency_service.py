"""Service des urgences: supervision administrateur, diffusion d'alertes et
coordination hospitaliere.
"""

import logging

from opentelemetry import trace

from app.core.config import settings
from app.core.exceptions import BroadcastValidationError, ResourceNotFoundError
from app.core.realtime_interface import (
    RealtimeBusInterface,
    RealtimeHandler,
    Subscription,
    change_channel,
)
from app.infrastructure.supabase import SupabaseClient
from app.infrastructure.supabase.filters import eq
from app.schemas.admin import (
    EmergencyBroadcast,
    EmergencyRequest,
    EmergencyStatus,
)
from app.schemas.hospital import HospitalEmergency
from app.services.audit_service import log_admin_action
from app.services.remote import degrade_on_remote_error, remote_errors

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

EMERGENCY_TABLE = "emergency_requests"
EMERGENCY_COLUMNS = (
    "*, "
    "patient:profiles!emergency_requests_patient_id_fkey(first_name, last_name, email, phone), "
    "assigned_physician:profiles!emergency_requests_assigned_physician_id_fkey"
    "(first_name, last_name, email)"
)
HOSPITAL_EMERGENCY_COLUMNS = (
    "*, patient:profiles!emergency_requests_patient_id_fkey(first_name, last_name, phone)"
)


# =============================================================================
# Supervision administrateur
# =============================================================================


@degrade_on_remote_error()
async def fetch_emergency_requests(client: SupabaseClient) -> list[EmergencyRequest]:
    """Dernieres demandes d'urgence avec patient et medecin assigne."""
    rows = await client.select(
        EMERGENCY_TABLE,
        EMERGENCY_COLUMNS,
        order="created_at.desc",
        limit=settings.EMERGENCY_ROW_LIMIT,
    )
    return [EmergencyRequest.model_validate(row) for row in rows]


async def update_emergency_status(
    client: SupabaseClient,
    emergency_id: str,
    status: EmergencyStatus,
    hospital_id: str | None = None,
    bus: RealtimeBusInterface | None = None,
) -> None:
    """
    Met a jour le statut d'une demande d'urgence.

    Avec ``hospital_id``, la mise a jour est restreinte aux urgences de cet hopital.

    Raises:
        ResourceNotFoundError: Si aucune demande ne correspond
        RemoteServiceError: Si la mise a jour echoue
    """
    with tracer.start_as_current_span("update_emergency_status") as span:
        span.set_attribute("emergency.id", emergency_id)
        span.set_attribute("emergency.status", status)

        filters = [eq("id", emergency_id)]
        if hospital_id:
            filters.append(eq("hospital_id", hospital_id))

        with remote_errors("update emergency status"):
            rows = await client.update(EMERGENCY_TABLE, {"status": status}, filters)

        if not rows:
            raise ResourceNotFoundError("Emergency request", emergency_id)

        logger.info(f"Emergency {emergency_id} moved to {status}")
        if bus is not None:
            await bus.publish_change(EMERGENCY_TABLE, "UPDATE", new=rows[0])


async def broadcast_alert(
    client: SupabaseClient,
    alert: EmergencyBroadcast,
    admin_id: str | None = None,
) -> int:
    """
    Diffuse une alerte: une notification par utilisateur actif cible.

    Args:
        client: Client Supabase
        alert: Titre, message, role cible (``all`` = tous) et type
        admin_id: Admin a l'origine de la diffusion

    Returns:
        Nombre de destinataires

    Raises:
        BroadcastValidationError: Si le titre ou le message est vide
        RemoteServiceError: Si la lecture des cibles ou l'insertion echoue
    """
    if not alert.title.strip() or not alert.message.strip():
        raise BroadcastValidationError()

    with tracer.start_as_current_span("broadcast_emergency_alert") as span:
        span.set_attribute("broadcast.target_role", alert.target_role)

        filters = [eq("is_active", True)]
        if alert.target_role != "all":
            filters.append(eq("role", alert.target_role))

        with remote_errors("broadcast emergency alert"):
            targets = await client.select("profiles", "id", filters)
            notifications = [
                {
                    "user_id": target["id"],
                    "title": alert.title,
                    "message": alert.message,
                    "type": alert.type,
                }
                for target in targets
            ]
            if notifications:
                await client.insert("notifications", notifications, retry_transient=False)

        recipients_count = len(notifications)
        span.set_attribute("broadcast.recipients", recipients_count)
        logger.info(f"Emergency alert broadcast to {recipients_count} users ({alert.target_role})")

        await log_admin_action(
            client,
            "emergency_broadcast",
            admin_id=admin_id,
            details={
                "title": alert.title,
                "message": alert.message,
                "target_role": alert.target_role,
                "recipients_count": recipients_count,
            },
        )
        return recipients_count


# =============================================================================
# Coordination hospitaliere
# =============================================================================


@degrade_on_remote_error()
async def fetch_hospital_emergencies(
    client: SupabaseClient, hospital_id: str
) -> list[HospitalEmergency]:
    """Urgences d'un hopital, les plus recentes d'abord."""
    rows = await client.select(
        EMERGENCY_TABLE,
        HOSPITAL_EMERGENCY_COLUMNS,
        [eq("hospital_id", hospital_id)],
        order="created_at.desc",
    )
    return [HospitalEmergency.model_validate(row) for row in rows]


async def assign_physician(
    client: SupabaseClient,
    emergency_id: str,
    hospital_id: str,
    bus: RealtimeBusInterface | None = None,
) -> HospitalEmergency:
    """
    Assigne le premier medecin actif de l'hopital a une urgence.

    Raises:
        ResourceNotFoundError: Si aucun medecin actif n'est disponible
            ou si l'urgence n'existe pas
        RemoteServiceError: Si l'assignation echoue
    """
    with tracer.start_as_current_span("assign_emergency_physician") as span:
        span.set_attribute("emergency.id", emergency_id)
        span.set_attribute("hospital.id", hospital_id)

        with remote_errors("assign physician"):
            physicians = await client.select(
                "profiles",
                "id",
                [eq("hospital_id", hospital_id), eq("role", "physician"), eq("is_active", True)],
                limit=1,
            )
            if not physicians:
                raise ResourceNotFoundError("Available physician", hospital_id)

            physician_id = physicians[0]["id"]
            rows = await client.update(
                EMERGENCY_TABLE,
                {"assigned_physician_id": physician_id, "status": "assigned"},
                [eq("id", emergency_id), eq("hospital_id", hospital_id)],
            )

        if not rows:
            raise ResourceNotFoundError("Emergency request", emergency_id)

        logger.info(f"Physician {physician_id} assigned to emergency {emergency_id}")
        if bus is not None:
            await bus.publish_change(EMERGENCY_TABLE, "UPDATE", new=rows[0])
        return HospitalEmergency.model_validate(rows[0])


async def subscribe_emergency_changes(
    bus: RealtimeBusInterface, hospital_id: str, handler: RealtimeHandler
) -> Subscription:
    """Abonne ``handler`` aux changements des urgences d'un hopital."""
    return await bus.subscribe(
        change_channel(EMERGENCY_TABLE), handler, row_filter=eq("hospital_id", hospital_id)
    )
