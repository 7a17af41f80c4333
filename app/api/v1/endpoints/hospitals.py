"""Endpoints API des opérations hospitalières.

File d'attente, plannings et présence, conformité, finances, analytique et
urgences d'un hôpital. Accès : administrateur de l'hôpital ou admin plateforme.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from datetime import date
from typing import Any

from fastapi import (
    APIRouter,
    Depends,
    Query,
    WebSocket,
    WebSocketDisconnect,
    WebSocketException,
    status,
)

from app.core.dependencies import get_realtime_bus, get_supabase_client
from app.core.realtime_interface import RealtimeBusInterface, RealtimeHandler, Subscription
from app.core.security import User, get_current_hospital_admin, get_websocket_user
from app.infrastructure.supabase import SupabaseClient
from app.schemas import build_responses, read_responses
from app.schemas.analytics import HospitalAnalytics
from app.schemas.hospital import (
    AttendanceRecord,
    AttendanceRequest,
    ComplianceAlert,
    ComplianceItem,
    ComplianceScore,
    ComplianceStatusUpdate,
    ComplianceSummary,
    FinancialAlert,
    FinancialRecord,
    FinancialRecordCreate,
    FinancialSummary,
    HospitalEmergency,
    HospitalEmergencyStatusUpdate,
    StaffSchedule,
    StaffScheduleCreate,
    StaffScheduleUpdate,
    WaitlistCreate,
    WaitlistEntry,
    WaitlistStatusUpdate,
    WaitlistSummary,
)
from app.services import (
    analytics_service,
    emergency_service,
    hospital_compliance_service,
    hospital_financial_service,
    staff_schedule_service,
    waitlist_service,
)

logger = logging.getLogger(__name__)

router = APIRouter()


async def hospital_access(
    hospital_id: str,
    current_user: User = Depends(get_current_hospital_admin),
) -> User:
    """Vérifie que l'utilisateur administre l'hôpital demandé (ou est admin)."""
    current_user.verify_hospital_access(hospital_id)
    return current_user


# =============================================================================
# File d'attente
# =============================================================================


@router.get(
    "/{hospital_id}/waitlist",
    response_model=list[WaitlistEntry],
    summary="File d'attente des patients",
    dependencies=[Depends(hospital_access)],
)
async def get_waitlist(
    hospital_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
) -> list[WaitlistEntry]:
    return await waitlist_service.fetch_waitlist(client, hospital_id)


@router.get(
    "/{hospital_id}/waitlist/summary",
    response_model=WaitlistSummary,
    summary="Répartition de la file d'attente",
    dependencies=[Depends(hospital_access)],
)
async def get_waitlist_summary(
    hospital_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
) -> WaitlistSummary:
    entries = await waitlist_service.fetch_waitlist(client, hospital_id)
    return waitlist_service.waitlist_position_summary(entries)


@router.post(
    "/{hospital_id}/waitlist",
    response_model=WaitlistEntry,
    status_code=status.HTTP_201_CREATED,
    summary="Ajouter un patient à la file d'attente",
    dependencies=[Depends(hospital_access)],
)
async def add_to_waitlist(
    hospital_id: str,
    entry: WaitlistCreate,
    client: SupabaseClient = Depends(get_supabase_client),
    bus: RealtimeBusInterface = Depends(get_realtime_bus),
) -> WaitlistEntry:
    return await waitlist_service.add_to_waitlist(client, hospital_id, entry, bus=bus)


@router.patch(
    "/{hospital_id}/waitlist/{entry_id}",
    response_model=WaitlistEntry,
    summary="Changer le statut d'une entrée",
    responses=read_responses,
    dependencies=[Depends(hospital_access)],
)
async def update_waitlist_entry(
    hospital_id: str,
    entry_id: str,
    update: WaitlistStatusUpdate,
    client: SupabaseClient = Depends(get_supabase_client),
    bus: RealtimeBusInterface = Depends(get_realtime_bus),
) -> WaitlistEntry:
    return await waitlist_service.update_entry_status(
        client, hospital_id, entry_id, update.status, bus=bus
    )


async def _stream_changes(
    websocket: WebSocket,
    bus: RealtimeBusInterface,
    subscribe: Callable[[RealtimeHandler], Awaitable[Subscription]],
) -> None:
    """Transmet au client chaque evenement de changement jusqu'a sa deconnexion."""
    changes: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=100)

    async def forward(event: dict[str, Any]) -> None:
        if changes.full():
            changes.get_nowait()
        changes.put_nowait(event)

    async def pump() -> None:
        while True:
            await websocket.send_json(await changes.get())

    subscription = await subscribe(forward)
    sender = asyncio.create_task(pump())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Change stream client disconnected")
    finally:
        sender.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sender
        await bus.unsubscribe(subscription)


def _ensure_websocket_hospital_access(user: User, hospital_id: str) -> None:
    if not (user.is_admin or (user.role == "hospital_admin" and user.hospital_id == hospital_id)):
        raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason="Access denied")


@router.websocket("/{hospital_id}/waitlist/stream")
async def stream_waitlist_changes(
    websocket: WebSocket,
    hospital_id: str,
    bus: RealtimeBusInterface = Depends(get_realtime_bus),
    current_user: User = Depends(get_websocket_user),
):
    """Transmet les changements de la file d'attente de l'hôpital."""
    _ensure_websocket_hospital_access(current_user, hospital_id)
    await websocket.accept()
    await _stream_changes(
        websocket,
        bus,
        lambda handler: waitlist_service.subscribe_waitlist_changes(bus, hospital_id, handler),
    )


# =============================================================================
# Plannings et présence
# =============================================================================


@router.get(
    "/{hospital_id}/schedules",
    response_model=list[StaffSchedule],
    summary="Plannings du personnel",
    dependencies=[Depends(hospital_access)],
)
async def get_schedules(
    hospital_id: str,
    start_date: date = Query(..., description="Premier jour (inclus)"),
    end_date: date | None = Query(None, description="Dernier jour (inclus), start_date par défaut"),
    client: SupabaseClient = Depends(get_supabase_client),
) -> list[StaffSchedule]:
    return await staff_schedule_service.fetch_schedules(client, hospital_id, start_date, end_date)


@router.post(
    "/{hospital_id}/schedules",
    response_model=StaffSchedule,
    status_code=status.HTTP_201_CREATED,
    summary="Créer un planning",
    dependencies=[Depends(hospital_access)],
)
async def create_schedule(
    hospital_id: str,
    schedule: StaffScheduleCreate,
    client: SupabaseClient = Depends(get_supabase_client),
) -> StaffSchedule:
    return await staff_schedule_service.create_schedule(client, hospital_id, schedule)


@router.patch(
    "/{hospital_id}/schedules/{schedule_id}",
    response_model=StaffSchedule,
    summary="Modifier un planning",
    responses=read_responses,
    dependencies=[Depends(hospital_access)],
)
async def update_schedule(
    hospital_id: str,
    schedule_id: str,
    changes: StaffScheduleUpdate,
    client: SupabaseClient = Depends(get_supabase_client),
) -> StaffSchedule:
    return await staff_schedule_service.update_schedule(client, hospital_id, schedule_id, changes)


@router.get(
    "/{hospital_id}/attendance",
    response_model=list[AttendanceRecord],
    summary="Présence du personnel pour un jour",
    dependencies=[Depends(hospital_access)],
)
async def get_attendance(
    hospital_id: str,
    day: date = Query(..., description="Jour consulté"),
    client: SupabaseClient = Depends(get_supabase_client),
) -> list[AttendanceRecord]:
    return await staff_schedule_service.fetch_attendance(client, hospital_id, day)


@router.post(
    "/{hospital_id}/attendance",
    response_model=AttendanceRecord,
    summary="Pointer l'arrivée ou le départ",
    dependencies=[Depends(hospital_access)],
)
async def mark_attendance(
    hospital_id: str,
    request: AttendanceRequest,
    client: SupabaseClient = Depends(get_supabase_client),
) -> AttendanceRecord:
    return await staff_schedule_service.mark_attendance(
        client, request.schedule_id, request.staff_id, request.action
    )


# =============================================================================
# Conformité
# =============================================================================


@router.get(
    "/{hospital_id}/compliance",
    response_model=list[ComplianceItem],
    summary="Suivi de conformité",
    dependencies=[Depends(hospital_access)],
)
async def get_compliance_items(
    hospital_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
) -> list[ComplianceItem]:
    return await hospital_compliance_service.fetch_compliance_items(client, hospital_id)


@router.get(
    "/{hospital_id}/compliance/alerts",
    response_model=list[ComplianceAlert],
    summary="Alertes de conformité non résolues",
    dependencies=[Depends(hospital_access)],
)
async def get_compliance_alerts(
    hospital_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
) -> list[ComplianceAlert]:
    return await hospital_compliance_service.fetch_compliance_alerts(client, hospital_id)


@router.get(
    "/{hospital_id}/compliance/summary",
    response_model=ComplianceSummary,
    summary="Synthèse de conformité",
    dependencies=[Depends(hospital_access)],
)
async def get_compliance_summary(
    hospital_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
) -> ComplianceSummary:
    items, alerts = await asyncio.gather(
        hospital_compliance_service.fetch_compliance_items(client, hospital_id),
        hospital_compliance_service.fetch_compliance_alerts(client, hospital_id),
    )
    return hospital_compliance_service.compliance_summary(items, alerts)


@router.get(
    "/{hospital_id}/compliance/score",
    response_model=ComplianceScore,
    summary="Score global de conformité",
    responses=build_responses(503),
    dependencies=[Depends(hospital_access)],
)
async def get_compliance_score(
    hospital_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
) -> ComplianceScore:
    return await hospital_compliance_service.calculate_compliance_score(client, hospital_id)


@router.patch(
    "/{hospital_id}/compliance/{compliance_id}",
    response_model=ComplianceItem,
    summary="Enregistrer une évaluation de conformité",
    responses=read_responses,
)
async def update_compliance_status(
    hospital_id: str,
    compliance_id: str,
    update: ComplianceStatusUpdate,
    client: SupabaseClient = Depends(get_supabase_client),
    current_user: User = Depends(hospital_access),
) -> ComplianceItem:
    return await hospital_compliance_service.update_compliance_status(
        client, hospital_id, compliance_id, update, assessed_by=current_user.id
    )


@router.post(
    "/{hospital_id}/compliance/alerts/{alert_id}/resolve",
    response_model=ComplianceAlert,
    summary="Résoudre une alerte de conformité",
    responses=read_responses,
)
async def resolve_compliance_alert(
    hospital_id: str,
    alert_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
    current_user: User = Depends(hospital_access),
) -> ComplianceAlert:
    return await hospital_compliance_service.resolve_compliance_alert(
        client, hospital_id, alert_id, resolved_by=current_user.id
    )


# =============================================================================
# Finances
# =============================================================================


@router.get(
    "/{hospital_id}/financial",
    response_model=list[FinancialRecord],
    summary="Transactions récentes",
    dependencies=[Depends(hospital_access)],
)
async def get_financial_data(
    hospital_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
) -> list[FinancialRecord]:
    return await hospital_financial_service.fetch_financial_data(client, hospital_id)


@router.get(
    "/{hospital_id}/financial/alerts",
    response_model=list[FinancialAlert],
    summary="Alertes financières non résolues",
    dependencies=[Depends(hospital_access)],
)
async def get_financial_alerts(
    hospital_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
) -> list[FinancialAlert]:
    return await hospital_financial_service.fetch_financial_alerts(client, hospital_id)


@router.get(
    "/{hospital_id}/financial/summary",
    response_model=FinancialSummary,
    summary="Synthèse financière du mois courant",
    dependencies=[Depends(hospital_access)],
)
async def get_financial_summary(
    hospital_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
) -> FinancialSummary:
    records, alerts = await asyncio.gather(
        hospital_financial_service.fetch_financial_data(client, hospital_id),
        hospital_financial_service.fetch_financial_alerts(client, hospital_id),
    )
    return hospital_financial_service.financial_summary(records, alerts)


@router.post(
    "/{hospital_id}/financial",
    response_model=FinancialRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Enregistrer une transaction",
    dependencies=[Depends(hospital_access)],
)
async def add_transaction(
    hospital_id: str,
    transaction: FinancialRecordCreate,
    client: SupabaseClient = Depends(get_supabase_client),
) -> FinancialRecord:
    return await hospital_financial_service.add_transaction(client, hospital_id, transaction)


@router.post(
    "/{hospital_id}/financial/alerts/{alert_id}/resolve",
    response_model=FinancialAlert,
    summary="Résoudre une alerte financière",
    responses=read_responses,
)
async def resolve_financial_alert(
    hospital_id: str,
    alert_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
    current_user: User = Depends(hospital_access),
) -> FinancialAlert:
    return await hospital_financial_service.resolve_financial_alert(
        client, hospital_id, alert_id, resolved_by=current_user.id
    )


# =============================================================================
# Analytique et urgences
# =============================================================================


@router.get(
    "/{hospital_id}/analytics",
    response_model=HospitalAnalytics,
    summary="Analytique de l'hôpital",
    responses=build_responses(503),
    dependencies=[Depends(hospital_access)],
)
async def get_hospital_analytics(
    hospital_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
) -> HospitalAnalytics:
    return await analytics_service.hospital_analytics(client, hospital_id)


@router.get(
    "/{hospital_id}/emergencies",
    response_model=list[HospitalEmergency],
    summary="Urgences de l'hôpital",
    dependencies=[Depends(hospital_access)],
)
async def get_hospital_emergencies(
    hospital_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
) -> list[HospitalEmergency]:
    return await emergency_service.fetch_hospital_emergencies(client, hospital_id)


@router.patch(
    "/{hospital_id}/emergencies/{emergency_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Changer le statut d'une urgence",
    responses=read_responses,
    dependencies=[Depends(hospital_access)],
)
async def update_hospital_emergency_status(
    hospital_id: str,
    emergency_id: str,
    update: HospitalEmergencyStatusUpdate,
    client: SupabaseClient = Depends(get_supabase_client),
    bus: RealtimeBusInterface = Depends(get_realtime_bus),
) -> None:
    await emergency_service.update_emergency_status(
        client, emergency_id, update.status, hospital_id=hospital_id, bus=bus
    )


@router.post(
    "/{hospital_id}/emergencies/{emergency_id}/assign",
    response_model=HospitalEmergency,
    summary="Assigner un médecin disponible",
    responses=read_responses,
    dependencies=[Depends(hospital_access)],
)
async def assign_emergency_physician(
    hospital_id: str,
    emergency_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
    bus: RealtimeBusInterface = Depends(get_realtime_bus),
) -> HospitalEmergency:
    return await emergency_service.assign_physician(client, emergency_id, hospital_id, bus=bus)


@router.websocket("/{hospital_id}/emergencies/stream")
async def stream_emergency_changes(
    websocket: WebSocket,
    hospital_id: str,
    bus: RealtimeBusInterface = Depends(get_realtime_bus),
    current_user: User = Depends(get_websocket_user),
):
    """Transmet les changements des demandes d'urgence de l'hôpital."""
    _ensure_websocket_hospital_access(current_user, hospital_id)
    await websocket.accept()
    await _stream_changes(
        websocket,
        bus,
        lambda handler: emergency_service.subscribe_emergency_changes(bus, hospital_id, handler),
    )
