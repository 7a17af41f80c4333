"""Endpoints API du cycle de vie des sessions de consultation.

Lecture, demarrage, fin, recuperation et sante d'une session, plus deux flux
WebSocket: l'etat temps reel de la session et le relais de signalisation WebRTC.
"""

import asyncio
import contextlib
import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    WebSocket,
    WebSocketDisconnect,
    WebSocketException,
    status,
)
from pydantic import ValidationError

from app.core.dependencies import get_realtime_bus, get_supabase_client
from app.core.exceptions import SessionNotFoundError
from app.core.realtime_interface import RealtimeBusInterface
from app.core.security import User, get_current_admin, get_current_user, get_websocket_user
from app.infrastructure.supabase import SupabaseClient
from app.schemas import build_responses, read_responses, session_responses
from app.schemas.consultation import (
    ConsultationSession,
    ExpirySweepResult,
    RecoveryResult,
    ScheduledSessionState,
    SessionDuration,
    SessionHealth,
    SessionStatus,
    SessionTransitionResponse,
    SessionWithParticipants,
)
from app.schemas.signaling import ParticipantRole
from app.services import session_recovery, session_scheduler, session_service
from app.services.session_logger import SessionLogger
from app.services.session_sync import SessionStateStore
from app.services.signaling import relay_client_signal, signaling_channel

logger = logging.getLogger(__name__)

router = APIRouter()


def participant_role(session: ConsultationSession, user: User) -> ParticipantRole | None:
    """Role de l'utilisateur dans la session, None s'il n'y participe pas."""
    if user.id == session.patient_id:
        return "patient"
    if user.id == session.physician_id:
        return "physician"
    return None


def _ensure_access(session: ConsultationSession, user: User) -> None:
    if participant_role(session, user) is None and not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Accès refusé : vous ne participez pas à cette session",
        )


def _ensure_participant(session: ConsultationSession, user: User) -> ParticipantRole:
    role = participant_role(session, user)
    if role is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Seuls les participants peuvent modifier la session",
        )
    return role


@router.get(
    "/scheduled",
    response_model=list[ScheduledSessionState],
    summary="Sessions programmées de l'utilisateur",
    description="Disponibilité, expiration et rappel de chaque session programmée",
)
async def list_scheduled_sessions(
    client: SupabaseClient = Depends(get_supabase_client),
    current_user: User = Depends(get_current_user),
) -> list[ScheduledSessionState]:
    sessions = await session_scheduler.fetch_scheduled_sessions(
        client, current_user.id, current_user.role
    )
    now = datetime.now(UTC)
    return [session_scheduler.describe_scheduled_session(session, now) for session in sessions]


@router.post(
    "/scheduled/expire",
    response_model=ExpirySweepResult,
    summary="Expirer les sessions programmées dépassées",
    dependencies=[Depends(get_current_admin)],
)
async def expire_scheduled_sessions(
    client: SupabaseClient = Depends(get_supabase_client),
    bus: RealtimeBusInterface = Depends(get_realtime_bus),
) -> ExpirySweepResult:
    """
    Lance immédiatement le balayage d'expiration.

    Permissions requises : role 'admin'
    """
    return await session_scheduler.expire_stale_sessions(client, bus=bus)


@router.get(
    "/{session_id}",
    response_model=SessionWithParticipants,
    summary="Récupérer une session",
    description="Session avec les profils patient et médecin",
    responses=read_responses,
)
async def get_session(
    session_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
    current_user: User = Depends(get_current_user),
) -> SessionWithParticipants:
    session = await session_service.fetch_session_data(client, session_id)
    _ensure_access(session, current_user)
    return session


@router.post(
    "/{session_id}/start",
    response_model=SessionTransitionResponse,
    summary="Démarrer une session",
    responses=session_responses,
)
async def start_session(
    session_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
    bus: RealtimeBusInterface = Depends(get_realtime_bus),
    current_user: User = Depends(get_current_user),
) -> SessionTransitionResponse:
    """
    Démarre une session programmée (scheduled -> in_progress).

    Permissions requises : participant de la session
    """
    session = await session_service.get_session(client, session_id)
    role = _ensure_participant(session, current_user)

    started = await session_service.start_session(client, session, current_user.id, bus=bus)
    await SessionLogger(client).log_session_start(session_id, current_user.id, role)
    return SessionTransitionResponse(session=started)


@router.post(
    "/{session_id}/end",
    response_model=SessionTransitionResponse,
    summary="Terminer une session",
    responses=session_responses,
)
async def end_session(
    session_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
    bus: RealtimeBusInterface = Depends(get_realtime_bus),
    current_user: User = Depends(get_current_user),
) -> SessionTransitionResponse:
    """
    Termine une session en cours, calcule sa durée et déclenche le paiement.

    Permissions requises : participant de la session
    """
    session = await session_service.get_session(client, session_id)
    _ensure_participant(session, current_user)

    completed = await session_service.end_session(client, session, current_user.id, bus=bus)
    await SessionLogger(client).log_session_end(
        session_id, current_user.id, completed.duration_minutes
    )
    return SessionTransitionResponse(
        session=completed,
        payment_processed=(
            completed.payment_status == "paid" and session.payment_status == "pending"
        ),
        formatted_duration=session_service.format_duration_minutes(completed.duration_minutes or 0),
    )


@router.get(
    "/{session_id}/duration",
    response_model=SessionDuration,
    summary="Durée formatée d'une session",
    responses=read_responses,
)
async def get_session_duration(
    session_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
    current_user: User = Depends(get_current_user),
) -> SessionDuration:
    """Durée enregistrée d'une session terminée, ou écoulée d'une session en cours."""
    session = await session_service.get_session(client, session_id)
    _ensure_access(session, current_user)

    minutes = session.duration_minutes or 0
    if session.status == SessionStatus.IN_PROGRESS and session.started_at is not None:
        minutes = session_service.calculate_session_duration(session.started_at, datetime.now(UTC))
    return SessionDuration(
        session_id=session_id,
        duration_minutes=minutes,
        formatted_duration=session_service.format_duration_minutes(minutes),
    )


@router.post(
    "/{session_id}/recover",
    response_model=RecoveryResult,
    summary="Réparer une session",
    description="Recrée la salle manquante avec backoff exponentiel borné",
    responses=build_responses(404, 503),
)
async def recover_session(
    session_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
    current_user: User = Depends(get_current_user),
) -> RecoveryResult:
    session = await session_service.get_session(client, session_id)
    _ensure_access(session, current_user)
    return await session_recovery.recover_session(client, session_id, current_user.id)


@router.get(
    "/{session_id}/health",
    response_model=SessionHealth,
    summary="Contrôle de santé d'une session",
    responses=read_responses,
)
async def get_session_health(
    session_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
    current_user: User = Depends(get_current_user),
) -> SessionHealth:
    session = await session_service.get_session(client, session_id)
    _ensure_access(session, current_user)
    return await session_recovery.check_session_health(client, session_id)


# =============================================================================
# Flux WebSocket
# =============================================================================


async def _load_for_websocket(
    client: SupabaseClient, session_id: str, user: User
) -> ConsultationSession:
    try:
        session = await session_service.get_session(client, session_id)
    except SessionNotFoundError as e:
        raise WebSocketException(
            code=status.WS_1008_POLICY_VIOLATION, reason="Session not found"
        ) from e
    if participant_role(session, user) is None and not user.is_admin:
        raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason="Not a participant")
    return session


@router.websocket("/{session_id}/live")
async def session_live_state(
    websocket: WebSocket,
    session_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
    bus: RealtimeBusInterface = Depends(get_realtime_bus),
    current_user: User = Depends(get_websocket_user),
):
    """Pousse un instantané de la session à chaque changement temps réel."""
    await _load_for_websocket(client, session_id, current_user)
    await websocket.accept()

    session_logger = SessionLogger(client)
    store = SessionStateStore(session_id, bus, session_logger)
    queue = store.listen()
    await store.start(initial=await session_service.fetch_session_data(client, session_id))
    health = await session_recovery.check_session_health(client, session_id)
    store.set_health(health.healthy)

    async def pump() -> None:
        while True:
            snapshot = await queue.get()
            await websocket.send_json(snapshot.model_dump(mode="json"))

    sender = asyncio.create_task(pump())
    try:
        # Le client n'envoie rien; la lecture detecte la deconnexion
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info(f"Live state client left session {session_id}")
    finally:
        sender.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sender
        store.forget(queue)
        await store.stop()


@router.websocket("/{session_id}/signaling")
async def signaling_relay(
    websocket: WebSocket,
    session_id: str,
    client: SupabaseClient = Depends(get_supabase_client),
    bus: RealtimeBusInterface = Depends(get_realtime_bus),
    current_user: User = Depends(get_websocket_user),
):
    """
    Relais de signalisation WebRTC entre un navigateur et le canal ``webrtc_<id>``.

    Les messages du client sont valides et diffusés avec son identité; les
    messages des autres participants lui sont transmis tels quels.
    """
    session = await _load_for_websocket(client, session_id, current_user)
    role = participant_role(session, current_user)
    if role is None:
        raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason="Not a participant")
    await websocket.accept()

    outbound: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=100)

    async def forward(data: dict[str, Any]) -> None:
        if (data.get("payload") or {}).get("from_user") == current_user.id:
            return
        if outbound.full():
            outbound.get_nowait()
        outbound.put_nowait(data)

    async def pump() -> None:
        while True:
            await websocket.send_json(await outbound.get())

    subscription = await bus.subscribe(signaling_channel(session_id), forward)
    sender = asyncio.create_task(pump())
    try:
        while True:
            raw = await websocket.receive_json()
            try:
                await relay_client_signal(bus, session_id, current_user.id, role, raw)
            except ValidationError as e:
                logger.warning(f"Invalid signaling message from {current_user.id}: {e}")
                await websocket.send_json({"error": "invalid signaling message"})
    except WebSocketDisconnect:
        logger.info(f"Signaling client {current_user.id} left session {session_id}")
    finally:
        sender.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sender
        await bus.unsubscribe(subscription)
