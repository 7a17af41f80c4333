"""Schémas Pydantic pour les opérations hospitalières.

File d'attente patients, plannings et présence du personnel, conformité,
données financières et urgences rattachées à un hôpital.
"""

from datetime import date, datetime, time
from typing import Any, Literal

from pydantic import BaseModel, Field

from app.schemas.admin import ProfileSummary

WaitlistPriority = Literal["low", "medium", "high", "urgent"]
WaitlistStatus = Literal["waiting", "called", "in_progress", "completed", "cancelled"]
ComplianceStatus = Literal["compliant", "non_compliant", "pending"]
AlertSeverity = Literal["low", "medium", "high", "critical"]
AttendanceAction = Literal["check_in", "check_out"]
ScheduleStatus = Literal["scheduled", "confirmed", "cancelled"]
TransactionType = Literal["revenue", "expense", "payment"]
HospitalEmergencyStatus = Literal["pending", "assigned", "responded", "resolved"]


# =============================================================================
# File d'attente
# =============================================================================


class WaitlistEntry(BaseModel):
    id: str
    hospital_id: str | None = None
    patient_id: str
    department: str
    priority: WaitlistPriority = "medium"
    status: WaitlistStatus = "waiting"
    reason: str | None = None
    estimated_wait_time: int = 0
    called_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
    patient_name: str = "Unknown Patient"
    patient_phone: str = ""


class WaitlistCreate(BaseModel):
    patient_id: str = Field(..., min_length=1)
    department: str = Field(..., min_length=1)
    priority: WaitlistPriority = "medium"
    reason: str | None = None
    estimated_wait_time: int | None = Field(None, ge=0, description="Attente estimée en minutes")


class WaitlistStatusUpdate(BaseModel):
    status: WaitlistStatus


class WaitlistSummary(BaseModel):
    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    by_priority: dict[str, int] = Field(default_factory=dict)


# =============================================================================
# Plannings et présence
# =============================================================================


class StaffSchedule(BaseModel):
    id: str
    hospital_id: str | None = None
    staff_id: str
    department: str
    shift_type: str
    start_date: date
    end_date: date
    start_time: time
    end_time: time
    status: ScheduleStatus = "scheduled"
    is_recurring: bool | None = None
    recurrence_pattern: str | None = None
    notes: str | None = None
    staff_name: str = "Unknown Staff"
    staff_role: str = "staff"


class StaffScheduleCreate(BaseModel):
    staff_id: str = Field(..., min_length=1)
    department: str = Field(..., min_length=1)
    shift_type: str = Field(..., min_length=1)
    start_date: date
    end_date: date
    start_time: time
    end_time: time
    is_recurring: bool = False
    recurrence_pattern: str | None = None
    notes: str | None = None


class StaffScheduleUpdate(BaseModel):
    department: str | None = None
    shift_type: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    status: ScheduleStatus | None = None
    notes: str | None = None


class AttendanceRequest(BaseModel):
    schedule_id: str
    staff_id: str
    action: AttendanceAction


class AttendanceRecord(BaseModel):
    id: str | None = None
    schedule_id: str | None = None
    staff_id: str
    status: str | None = None
    check_in_time: datetime | None = None
    check_out_time: datetime | None = None
    notes: str | None = None
    staff_name: str = "Unknown Staff"


# =============================================================================
# Conformité
# =============================================================================


class ComplianceItem(BaseModel):
    id: str
    hospital_id: str
    compliance_type: str
    status: ComplianceStatus = "pending"
    score: float | None = None
    last_assessment_date: date | None = None
    next_assessment_due: date | None = None
    assessed_by: str | None = None
    assessment_details: dict[str, Any] | None = None
    violations: list[Any] | None = None
    corrective_actions: list[Any] | None = None


class ComplianceStatusUpdate(BaseModel):
    status: ComplianceStatus
    score: float | None = Field(None, ge=0, le=100)
    violations: list[Any] | None = None
    corrective_actions: list[Any] | None = None


class ComplianceAlert(BaseModel):
    id: str
    hospital_id: str
    alert_type: str
    compliance_type: str | None = None
    title: str
    message: str
    severity: AlertSeverity = "medium"
    compliance_score: float | None = None
    due_date: date | None = None
    is_resolved: bool = False
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    created_at: datetime | None = None


class ComplianceSummary(BaseModel):
    compliant: int = 0
    non_compliant: int = 0
    pending: int = 0
    average_score: int = 0
    total_items: int = 0
    alert_count: int = 0


class ComplianceScore(BaseModel):
    hospital_id: str
    score: float


# =============================================================================
# Finances
# =============================================================================


class FinancialRecord(BaseModel):
    id: str
    hospital_id: str
    transaction_type: TransactionType
    category: str
    amount: float
    currency: str | None = None
    description: str | None = None
    reference_id: str | None = None
    fiscal_month: str | None = None
    transaction_date: date | None = None
    metadata: dict[str, Any] | None = None


class FinancialRecordCreate(BaseModel):
    transaction_type: TransactionType
    category: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    currency: str = "XOF"
    description: str | None = None
    reference_id: str | None = None
    transaction_date: date


class FinancialAlert(BaseModel):
    id: str
    hospital_id: str
    alert_type: str
    title: str
    message: str
    severity: AlertSeverity = "medium"
    current_value: float | None = None
    threshold_value: float | None = None
    is_resolved: bool = False
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    created_at: datetime | None = None


class FinancialSummary(BaseModel):
    total_revenue: float = 0
    total_expenses: float = 0
    net_income: float = 0
    transaction_count: int = 0
    alert_count: int = 0


# =============================================================================
# Urgences hospitalières
# =============================================================================


class HospitalEmergency(BaseModel):
    id: str
    hospital_id: str | None = None
    patient_id: str | None = None
    emergency_type: str | None = None
    severity: str | None = None
    description: str | None = None
    contact_phone: str | None = None
    location_latitude: float | None = None
    location_longitude: float | None = None
    status: HospitalEmergencyStatus = "pending"
    assigned_physician_id: str | None = None
    created_at: datetime | None = None
    patient: ProfileSummary | None = None


class HospitalEmergencyStatusUpdate(BaseModel):
    status: Literal["pending", "responded", "resolved"]
