"""Endpoints API du module agent (patients assistés)."""

from fastapi import APIRouter, Depends, HTTPException, status

from app.core.dependencies import get_supabase_client
from app.core.security import User, require_roles
from app.infrastructure.supabase import SupabaseClient
from app.schemas.agent import AssistedPatient, AssistedPatientCreate
from app.services import agent_service

router = APIRouter()


def _ensure_agent_access(agent_id: str, user: User) -> None:
    if not (user.is_admin or user.is_owner(agent_id)):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Accès refusé : ces patients ne sont pas suivis par votre compte",
        )


@router.get(
    "/{agent_id}/patients",
    response_model=list[AssistedPatient],
    summary="Patients assistés par un agent",
)
async def list_assisted_patients(
    agent_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
    current_user: User = Depends(require_roles("agent", "admin")),
) -> list[AssistedPatient]:
    """
    Liste les patients assistés, les plus récents d'abord.

    Permissions requises : l'agent lui-même ou role 'admin'
    """
    _ensure_agent_access(agent_id, current_user)
    return await agent_service.fetch_assisted_patients(client, agent_id)


@router.post(
    "/{agent_id}/patients",
    response_model=AssistedPatient,
    status_code=status.HTTP_201_CREATED,
    summary="Enregistrer une assistance patient",
)
async def register_assisted_patient(
    agent_id: str,
    request: AssistedPatientCreate,
    client: SupabaseClient = Depends(get_supabase_client),
    current_user: User = Depends(require_roles("agent", "admin")),
) -> AssistedPatient:
    _ensure_agent_access(agent_id, current_user)
    return await agent_service.register_assisted_patient(
        client,
        agent_id,
        request.patient_id,
        request.assistance_type,
        request.description,
    )
