"""Schémas Pydantic pour les dashboards d'administration.

Ce module couvre le journal d'audit, les rapports de conformité, les urgences,
les litiges financiers, l'activité utilisateur, la gestion des utilisateurs et
les paramètres système.
"""

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from app.schemas.utils import NonEmptyStr

UserRole = Literal["admin", "hospital_admin", "agent", "physician", "patient"]
DisputeStatus = Literal["pending", "under_review", "resolved", "rejected"]
DisputeResolution = Literal["resolved", "rejected"]
EmergencyStatus = Literal["pending", "assigned", "responded", "resolved"]
NotificationType = Literal["emergency", "warning", "info", "maintenance"]
ReportType = Literal["user_activity", "data_access", "security_audit", "financial_audit"]


class ProfileSummary(BaseModel):
    """Projection ``profiles`` utilisée dans les jointures."""

    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    role: str | None = None
    phone: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class Profile(ProfileSummary):
    """Ligne ``profiles`` complète telle qu'affichée en gestion des utilisateurs."""

    id: str
    is_active: bool = True
    verification_status: str | None = None
    specialization: str | None = None
    created_at: datetime | None = None


# =============================================================================
# Journal d'audit
# =============================================================================


class AdminAction(BaseModel):
    """Ligne ``admin_actions`` jointe à l'admin et à l'utilisateur cible."""

    id: str
    admin_id: str | None = None
    action_type: str
    target_user_id: str | None = None
    target_resource_type: str | None = None
    target_resource_id: str | None = None
    action_details: dict[str, Any] = Field(default_factory=dict)
    ip_address: str | None = None
    created_at: datetime | None = None
    admin: ProfileSummary | None = None
    target_user: ProfileSummary | None = None


# =============================================================================
# Rapports de conformité
# =============================================================================


class ComplianceReportRequest(BaseModel):
    report_type: ReportType = Field(..., description="Type de rapport à générer")


class ComplianceReport(BaseModel):
    id: str
    report_type: str
    report_data: dict[str, Any] = Field(default_factory=dict)
    date_range_start: date | None = None
    date_range_end: date | None = None
    generated_by: str | None = None
    created_at: datetime | None = None


# =============================================================================
# Urgences
# =============================================================================


class EmergencyBroadcast(BaseModel):
    """Alerte d'urgence diffusée aux utilisateurs actifs."""

    title: str = Field("", description="Titre de l'alerte")
    message: str = Field("", description="Message de l'alerte")
    target_role: Literal["all", "admin", "hospital_admin", "agent", "physician", "patient"] = "all"
    type: NotificationType = "emergency"


class BroadcastResult(BaseModel):
    recipients_count: int = Field(..., ge=0, description="Nombre de notifications créées")


class EmergencyRequest(BaseModel):
    """Ligne ``emergency_requests`` avec jointures patient / médecin assigné."""

    id: str
    patient_id: str | None = None
    hospital_id: str | None = None
    emergency_type: str | None = None
    description: str | None = None
    severity: str | None = None
    contact_phone: str | None = None
    location_latitude: float | None = None
    location_longitude: float | None = None
    status: EmergencyStatus = "pending"
    assigned_physician_id: str | None = None
    created_at: datetime | None = None
    patient: ProfileSummary | None = None
    assigned_physician: ProfileSummary | None = None


class EmergencyStatusUpdate(BaseModel):
    status: EmergencyStatus


# =============================================================================
# Litiges financiers
# =============================================================================


class FinancialDispute(BaseModel):
    id: str
    user_id: str | None = None
    dispute_type: str
    amount: float | None = None
    description: str | None = None
    status: DisputeStatus = "pending"
    resolution_notes: str | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    created_at: datetime | None = None
    user: ProfileSummary | None = None
    resolver: ProfileSummary | None = None


class DisputeResolutionRequest(BaseModel):
    resolution: DisputeResolution
    notes: str = Field("", max_length=2000, description="Notes de résolution")


# =============================================================================
# Activité utilisateur
# =============================================================================


class UserActivityLog(BaseModel):
    id: str
    user_id: str | None = None
    activity_type: str
    activity_details: dict[str, Any] = Field(default_factory=dict)
    ip_address: str | None = None
    created_at: datetime | None = None
    user: ProfileSummary | None = None


# =============================================================================
# Gestion des utilisateurs et paramètres
# =============================================================================


class UserStatusUpdate(BaseModel):
    is_active: bool


class SystemSetting(BaseModel):
    id: str | None = None
    setting_key: str
    setting_value: Any = None
    category: str | None = None
    description: str | None = None
    updated_at: datetime | None = None


class SystemSettingUpsert(BaseModel):
    setting_key: NonEmptyStr
    setting_value: Any
    category: str = "general"
    description: str | None = None
