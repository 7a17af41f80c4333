"""Endpoints API des dashboards d'administration.

Journal d'audit, rapports de conformité, urgences, litiges financiers,
activité utilisateur, analytique système, gestion des utilisateurs et
paramètres système. Toutes les routes exigent le role 'admin'.
"""

from fastapi import APIRouter, Depends, Query, status

from app.core.dependencies import get_realtime_bus, get_supabase_client
from app.core.realtime_interface import RealtimeBusInterface
from app.core.security import User, get_current_admin
from app.infrastructure.supabase import SupabaseClient
from app.schemas import build_responses, read_responses
from app.schemas.admin import (
    AdminAction,
    BroadcastResult,
    ComplianceReport,
    ComplianceReportRequest,
    DisputeResolutionRequest,
    EmergencyBroadcast,
    EmergencyRequest,
    EmergencyStatusUpdate,
    FinancialDispute,
    Profile,
    SystemSetting,
    SystemSettingUpsert,
    UserActivityLog,
    UserStatusUpdate,
)
from app.schemas.analytics import SystemAnalytics
from app.services import (
    activity_service,
    analytics_service,
    audit_service,
    compliance_report_service,
    dispute_service,
    emergency_service,
    settings_service,
    user_management_service,
)
from app.services.dashboard_filters import (
    ALL,
    filter_activities,
    filter_admin_actions,
    filter_disputes,
    filter_profiles,
)

router = APIRouter(dependencies=[Depends(get_current_admin)])


# =============================================================================
# Journal d'audit
# =============================================================================


@router.get(
    "/audit-log",
    response_model=list[AdminAction],
    summary="Journal d'audit administrateur",
    description="100 dernières actions, filtrables par recherche et type d'action",
)
async def get_audit_log(
    search: str = Query("", description="Recherche sur type d'action et emails"),
    action_type: str = Query(ALL, description="Type d'action ('all' = tous)"),
    client: SupabaseClient = Depends(get_supabase_client),
) -> list[AdminAction]:
    actions = await audit_service.fetch_audit_log(client)
    return filter_admin_actions(actions, search, action_type)


# =============================================================================
# Rapports de conformité
# =============================================================================


@router.get(
    "/compliance-reports",
    response_model=list[ComplianceReport],
    summary="Rapports de conformité générés",
)
async def list_compliance_reports(
    client: SupabaseClient = Depends(get_supabase_client),
) -> list[ComplianceReport]:
    return await compliance_report_service.fetch_reports(client)


@router.post(
    "/compliance-reports",
    response_model=ComplianceReport,
    status_code=status.HTTP_201_CREATED,
    summary="Générer un rapport de conformité",
    description="Rapport couvrant le dernier mois",
)
async def generate_compliance_report(
    request: ComplianceReportRequest,
    client: SupabaseClient = Depends(get_supabase_client),
    current_user: User = Depends(get_current_admin),
) -> ComplianceReport:
    return await compliance_report_service.generate_report(
        client, request.report_type, generated_by=current_user.id
    )


# =============================================================================
# Urgences
# =============================================================================


@router.get(
    "/emergency/requests",
    response_model=list[EmergencyRequest],
    summary="Demandes d'urgence récentes",
)
async def list_emergency_requests(
    client: SupabaseClient = Depends(get_supabase_client),
) -> list[EmergencyRequest]:
    return await emergency_service.fetch_emergency_requests(client)


@router.patch(
    "/emergency/requests/{emergency_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Changer le statut d'une demande d'urgence",
    responses=read_responses,
)
async def update_emergency_request_status(
    emergency_id: str,
    update: EmergencyStatusUpdate,
    client: SupabaseClient = Depends(get_supabase_client),
    bus: RealtimeBusInterface = Depends(get_realtime_bus),
) -> None:
    await emergency_service.update_emergency_status(client, emergency_id, update.status, bus=bus)


@router.post(
    "/emergency/broadcast",
    response_model=BroadcastResult,
    summary="Diffuser une alerte d'urgence",
    description="Crée une notification par utilisateur actif du role ciblé",
)
async def broadcast_emergency_alert(
    alert: EmergencyBroadcast,
    client: SupabaseClient = Depends(get_supabase_client),
    current_user: User = Depends(get_current_admin),
) -> BroadcastResult:
    recipients = await emergency_service.broadcast_alert(client, alert, admin_id=current_user.id)
    return BroadcastResult(recipients_count=recipients)


# =============================================================================
# Litiges financiers
# =============================================================================


@router.get(
    "/disputes",
    response_model=list[FinancialDispute],
    summary="Litiges financiers",
)
async def list_disputes(
    search: str = Query("", description="Recherche sur type, email et nom"),
    status_filter: str = Query(ALL, alias="status", description="Statut ('all' = tous)"),
    client: SupabaseClient = Depends(get_supabase_client),
) -> list[FinancialDispute]:
    disputes = await dispute_service.fetch_disputes(client)
    return filter_disputes(disputes, search, status_filter)


@router.post(
    "/disputes/{dispute_id}/resolve",
    response_model=FinancialDispute,
    summary="Résoudre ou rejeter un litige",
    responses=read_responses,
)
async def resolve_dispute(
    dispute_id: str,
    request: DisputeResolutionRequest,
    client: SupabaseClient = Depends(get_supabase_client),
    current_user: User = Depends(get_current_admin),
) -> FinancialDispute:
    return await dispute_service.resolve_dispute(
        client, dispute_id, request.resolution, request.notes, admin_id=current_user.id
    )


# =============================================================================
# Activité et analytique
# =============================================================================


@router.get(
    "/activity",
    response_model=list[UserActivityLog],
    summary="Activité utilisateur récente",
)
async def list_user_activity(
    search: str = Query("", description="Recherche sur type d'activité, email et nom"),
    activity_type: str = Query(ALL, description="Type d'activité ('all' = tous)"),
    role: str = Query(ALL, description="Role de l'utilisateur ('all' = tous)"),
    client: SupabaseClient = Depends(get_supabase_client),
) -> list[UserActivityLog]:
    activities = await activity_service.fetch_recent_activity(client)
    return filter_activities(activities, search, activity_type, role)


@router.get(
    "/analytics",
    response_model=SystemAnalytics,
    summary="Compteurs système",
)
async def get_system_analytics(
    client: SupabaseClient = Depends(get_supabase_client),
) -> SystemAnalytics:
    return await analytics_service.get_system_analytics(client)


# =============================================================================
# Utilisateurs et paramètres
# =============================================================================


@router.get(
    "/users",
    response_model=list[Profile],
    summary="Lister les utilisateurs",
)
async def list_users(
    search: str = Query("", description="Recherche sur email et nom"),
    role: str = Query(ALL, description="Role ('all' = tous)"),
    client: SupabaseClient = Depends(get_supabase_client),
) -> list[Profile]:
    profiles = await user_management_service.fetch_users(client)
    return filter_profiles(profiles, search, role)


@router.patch(
    "/users/{user_id}/status",
    response_model=Profile,
    summary="Activer ou suspendre un utilisateur",
    responses=read_responses,
)
async def update_user_status(
    user_id: str,
    update: UserStatusUpdate,
    client: SupabaseClient = Depends(get_supabase_client),
    current_user: User = Depends(get_current_admin),
) -> Profile:
    return await user_management_service.update_user_status(
        client, user_id, update.is_active, admin_id=current_user.id
    )


@router.post(
    "/users/{user_id}/verify",
    response_model=Profile,
    summary="Approuver la vérification d'un utilisateur",
    responses=read_responses,
)
async def approve_user_verification(
    user_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
    current_user: User = Depends(get_current_admin),
) -> Profile:
    return await user_management_service.approve_verification(
        client, user_id, admin_id=current_user.id
    )


@router.get(
    "/settings",
    response_model=list[SystemSetting],
    summary="Paramètres système",
)
async def list_settings(
    client: SupabaseClient = Depends(get_supabase_client),
) -> list[SystemSetting]:
    return await settings_service.fetch_settings(client)


@router.put(
    "/settings",
    response_model=SystemSetting,
    summary="Créer ou mettre à jour un paramètre système",
    responses=build_responses(503),
)
async def upsert_setting(
    setting: SystemSettingUpsert,
    client: SupabaseClient = Depends(get_supabase_client),
    current_user: User = Depends(get_current_admin),
) -> SystemSetting:
    return await settings_service.upsert_setting(
        client,
        setting.setting_key,
        setting.setting_value,
        category=setting.category,
        description=setting.description,
        admin_id=current_user.id,
    )
