"""Schémas Pydantic pour le module agent (patients assistés)."""

from datetime import datetime

from pydantic import BaseModel, Field

from app.schemas.admin import ProfileSummary
from app.schemas.utils import Description, NonEmptyStr


class AssistedPatient(BaseModel):
    id: str
    agent_id: str
    patient_id: str
    assistance_type: str
    description: str | None = None
    status: str | None = None
    created_at: datetime | None = None
    patient: ProfileSummary | None = None


class AssistedPatientCreate(BaseModel):
    patient_id: NonEmptyStr
    assistance_type: NonEmptyStr = Field(
        ..., description="Type d'assistance (booking, transport, ...)"
    )
    description: Description | None = None
