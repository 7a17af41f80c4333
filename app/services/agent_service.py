"""Service des agents: suivi des patients assistes."""

import logging

from opentelemetry import trace

from app.infrastructure.supabase import SupabaseClient
from app.infrastructure.supabase.filters import eq
from app.schemas.agent import AssistedPatient
from app.services.remote import degrade_on_remote_error, remote_errors

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

ASSISTED_TABLE = "agent_assisted_patients"
ASSISTED_COLUMNS = (
    "*, patient:profiles!agent_assisted_patients_patient_id_fkey"
    "(first_name, last_name, email, phone)"
)


@degrade_on_remote_error()
async def fetch_assisted_patients(client: SupabaseClient, agent_id: str) -> list[AssistedPatient]:
    """Patients assistes par l'agent, les plus recents d'abord."""
    rows = await client.select(
        ASSISTED_TABLE, ASSISTED_COLUMNS, [eq("agent_id", agent_id)], order="created_at.desc"
    )
    return [AssistedPatient.model_validate(row) for row in rows]


async def register_assisted_patient(
    client: SupabaseClient,
    agent_id: str,
    patient_id: str,
    assistance_type: str,
    description: str | None = None,
) -> AssistedPatient:
    """
    Enregistre une assistance d'agent aupres d'un patient.

    Raises:
        RemoteServiceError: Si l'insertion echoue
    """
    with tracer.start_as_current_span("register_assisted_patient") as span:
        span.set_attribute("agent.id", agent_id)
        span.set_attribute("assistance.type", assistance_type)
        with remote_errors("register assisted patient"):
            rows = await client.insert(
                ASSISTED_TABLE,
                {
                    "agent_id": agent_id,
                    "patient_id": patient_id,
                    "assistance_type": assistance_type,
                    "description": description,
                    "status": "active",
                },
            )
    logger.info(f"Agent {agent_id} registered assistance for patient {patient_id}")
    return AssistedPatient.model_validate(rows[0])
