"""Schémas Pydantic pour les sessions de consultation et leurs salles.

Les lignes proviennent du store distant (``consultation_sessions``,
``consultation_rooms``); les colonnes inconnues sont ignorées.
"""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class SessionStatus(str, Enum):
    """Statuts observés d'une session de consultation."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    EXPIRED = "expired"


PaymentStatus = Literal["pending", "paid"]
RoomStatus = Literal["waiting", "active"]


class ParticipantProfile(BaseModel):
    """Profil minimal d'un participant (jointure ``profiles``)."""

    first_name: str = Field("Unknown", description="Prénom")
    last_name: str = Field("", description="Nom")


class PhysicianProfile(ParticipantProfile):
    """Profil du médecin avec sa spécialité."""

    specialization: str = Field("General Practice", description="Spécialité médicale")


class ConsultationSession(BaseModel):
    """Ligne ``consultation_sessions``."""

    id: str
    patient_id: str
    physician_id: str
    status: SessionStatus = SessionStatus.SCHEDULED
    session_type: str = Field("video", description="video, audio ou chat")
    consultation_rate: float = Field(0, ge=0, description="Tarif de la consultation")
    started_at: datetime | None = None
    ended_at: datetime | None = None
    duration_minutes: int | None = Field(None, ge=0)
    payment_status: PaymentStatus = "pending"
    appointment_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SessionWithParticipants(ConsultationSession):
    """Session enrichie des profils patient et médecin."""

    patient: ParticipantProfile = Field(default_factory=ParticipantProfile)
    physician: PhysicianProfile = Field(default_factory=PhysicianProfile)


class ConsultationRoom(BaseModel):
    """Ligne ``consultation_rooms`` (1:1 avec la session)."""

    id: str | None = None
    session_id: str
    room_token: str
    room_status: RoomStatus = "waiting"
    patient_joined: bool = False
    physician_joined: bool = False
    created_at: datetime | None = None


class SessionTransitionResponse(BaseModel):
    """Réponse des endpoints de démarrage / fin de session."""

    session: ConsultationSession
    payment_processed: bool = Field(
        False, description="True si le paiement a été déclenché et accepté à la fin"
    )
    formatted_duration: str | None = Field(None, description="Durée lisible (ex: 1h 5m)")


class SessionHealth(BaseModel):
    """Résultat d'un contrôle de santé de session."""

    session_id: str
    healthy: bool
    issues: list[str] = Field(default_factory=list)
    checked_at: datetime


class RecoveryStatus(str, Enum):
    RECOVERED = "recovered"
    HEALTHY = "healthy"
    FAILED = "failed"


class RecoveryResult(BaseModel):
    """Résultat typé d'une tentative de récupération de session."""

    session_id: str
    status: RecoveryStatus
    actions: list[str] = Field(default_factory=list, description="Réparations effectuées")
    attempts: int = Field(0, ge=0)
    error: str | None = None


class ScheduledSessionState(BaseModel):
    """État calculé d'une session programmée (prête, expirée, rappel)."""

    session_id: str
    is_ready: bool
    is_expired: bool
    needs_reminder: bool
    minutes_until_start: int | None = None


class ExpirySweepResult(BaseModel):
    expired_session_ids: list[str] = Field(default_factory=list)
    checked: int = 0


ConnectionStatus = Literal["disconnected", "connecting", "connected"]
HealthStatus = Literal["healthy", "warning", "error"]


class SessionLiveState(BaseModel):
    """Instantané diffusé aux clients abonnés à une session."""

    session: SessionWithParticipants | None = None
    connection_status: ConnectionStatus = "disconnected"
    health_status: HealthStatus = "healthy"
    elapsed_seconds: int = Field(0, ge=0, description="Durée écoulée depuis started_at")
    formatted_elapsed: str = "0:00"


class SessionDuration(BaseModel):
    """Durée d'une session terminée ou écoulée d'une session en cours."""

    session_id: str
    duration_minutes: int = Field(..., ge=0)
    formatted_duration: str = Field(..., description="Durée lisible (ex: 1h 5m)")
