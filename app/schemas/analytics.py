"""Schémas Pydantic pour l'analytique système et hospitalière."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class SystemAnalytics(BaseModel):
    """Compteurs globaux du dashboard administrateur."""

    total_users: int = Field(..., ge=0, description="Nombre total de profils")
    total_appointments: int = Field(..., ge=0, description="Nombre total de rendez-vous")
    appointments_today: int = Field(..., ge=0, description="Rendez-vous créés aujourd'hui")
    pending_verifications: int = Field(..., ge=0, description="Profils en attente de vérification")
    total_documents: int = Field(..., ge=0, description="Nombre de documents")
    last_updated: datetime = Field(..., description="Date de calcul des compteurs")


class MonthlyAppointments(BaseModel):
    month: str = Field(..., description="Mois au format YYYY-MM")
    count: int = Field(0, ge=0)


class PhysicianWorkload(BaseModel):
    physician_id: str
    name: str
    appointments: int = Field(0, ge=0)


class HospitalAnalytics(BaseModel):
    """Analytique d'un hôpital (RPC + agrégations locales)."""

    hospital_id: str
    total_appointments: int = 0
    summary: dict[str, Any] = Field(
        default_factory=dict, description="Résultat brut de generate_hospital_analytics"
    )
    monthly_appointments: list[MonthlyAppointments] = Field(default_factory=list)
    appointments_by_status: dict[str, int] = Field(default_factory=dict)
    physician_workload: list[PhysicianWorkload] = Field(default_factory=list)
    active_physicians: int = 0
    emergencies: int = 0
    generated_at: datetime
