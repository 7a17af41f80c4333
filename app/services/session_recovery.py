"""Service de recuperation des sessions incoherentes.

Deux classes d'incoherence sont reparees en recreant la salle de consultation
(``room_<sessionId>``):
- session ``in_progress`` sans salle -> salle ``active``
- session ``scheduled`` de type video sans salle -> salle ``waiting``

Les tentatives sont rejouees avec un backoff exponentiel borne; l'echec
terminal est un resultat type (``RecoveryResult``) plutot qu'une recursion.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from app.core.config import settings
from app.core.exceptions import RecoveryFailedError, SessionNotFoundError
from app.core.retry import run_with_bounded_backoff
from app.infrastructure.supabase import SupabaseClient, SupabaseError, SupabaseNotFoundError
from app.infrastructure.supabase.filters import eq
from app.schemas.consultation import (
    ConsultationSession,
    RecoveryResult,
    RecoveryStatus,
    SessionHealth,
    SessionStatus,
)

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

ROOMS_TABLE = "consultation_rooms"


def room_token(session_id: str) -> str:
    """Jeton deterministe de la salle d'une session."""
    return f"room_{session_id}"


def required_room_status(session: ConsultationSession) -> str | None:
    """
    Statut de la salle a recreer si elle manque, None si aucune salle n'est requise.
    """
    if session.status == SessionStatus.IN_PROGRESS:
        return "active"
    if session.status == SessionStatus.SCHEDULED and session.session_type == "video":
        return "waiting"
    return None


async def _load_session(client: SupabaseClient, session_id: str) -> ConsultationSession:
    try:
        row = await client.select_one(
            "consultation_sessions", "*", [eq("id", session_id)], required=True
        )
    except SupabaseNotFoundError as e:
        raise SessionNotFoundError(session_id) from e
    return ConsultationSession.model_validate(row)


async def _repair_once(
    client: SupabaseClient, session_id: str, user_id: str | None
) -> list[str]:
    """Une tentative de reparation; renvoie la liste des actions effectuees."""
    actions: list[str] = []

    session = await _load_session(client, session_id)
    room = await client.select_one(ROOMS_TABLE, "*", [eq("session_id", session_id)])

    status = required_room_status(session)
    if room is None and status is not None:
        logger.info(f"Creating missing consultation room for session {session_id} ({status})")
        await client.insert(
            ROOMS_TABLE,
            {"session_id": session_id, "room_token": room_token(session_id), "room_status": status},
        )
        actions.append(f"created_room:{status}")

    return actions


async def _record_recovery(client: SupabaseClient, session_id: str, user_id: str | None) -> None:
    try:
        await client.insert(
            "performance_metrics",
            {
                "user_id": user_id or None,
                "metric_type": "session_recovery",
                "metric_value": 1,
                "recorded_at": datetime.now(UTC).isoformat(),
            },
        )
    except SupabaseError as e:
        logger.error(f"Failed to log recovery for session {session_id}: {e}")


async def attempt_recovery(
    client: SupabaseClient,
    session_id: str,
    user_id: str | None = None,
    *,
    max_retries: int | None = None,
    retry_delay: float | None = None,
    max_delay: float | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RecoveryResult:
    """
    Tente de reparer une session avec backoff exponentiel borne.

    Une session inexistante n'est pas rejouee: SessionNotFoundError est levee
    immediatement. Les erreurs distantes sont rejouees jusqu'a ``max_retries``
    tentatives au total.

    Returns:
        RecoveryResult (recovered, healthy ou failed)

    Raises:
        SessionNotFoundError: Si la session n'existe pas
    """
    with tracer.start_as_current_span("attempt_session_recovery") as span:
        span.set_attribute("session.id", session_id)

        if retry_delay is None:
            retry_delay = settings.SESSION_RECOVERY_RETRY_DELAY_SECONDS
        if max_delay is None:
            max_delay = settings.SESSION_RECOVERY_MAX_DELAY_SECONDS

        outcome = await run_with_bounded_backoff(
            lambda: _repair_once(client, session_id, user_id),
            max_attempts=max_retries or settings.SESSION_RECOVERY_MAX_RETRIES,
            initial_delay=retry_delay,
            max_delay=max_delay,
            exceptions=(SupabaseError,),
            sleep=sleep,
        )
        span.set_attribute("recovery.attempts", outcome.attempts)

        if not outcome.succeeded:
            span.set_status(Status(StatusCode.ERROR, "Session recovery failed"))
            return RecoveryResult(
                session_id=session_id,
                status=RecoveryStatus.FAILED,
                attempts=outcome.attempts,
                error=str(outcome.error) if outcome.error else None,
            )

        actions = outcome.value or []
        status = RecoveryStatus.RECOVERED if actions else RecoveryStatus.HEALTHY
        if actions:
            await _record_recovery(client, session_id, user_id)
        span.set_attribute("recovery.status", status.value)
        logger.info(f"Session {session_id} recovery finished: {status.value} {actions}")
        return RecoveryResult(
            session_id=session_id, status=status, actions=actions, attempts=outcome.attempts
        )


async def recover_session(
    client: SupabaseClient,
    session_id: str,
    user_id: str | None = None,
    **options,
) -> RecoveryResult:
    """
    Comme ``attempt_recovery`` mais leve une erreur sur echec terminal.

    Raises:
        SessionNotFoundError: Si la session n'existe pas
        RecoveryFailedError: Si toutes les tentatives ont echoue
    """
    result = await attempt_recovery(client, session_id, user_id, **options)
    if result.status == RecoveryStatus.FAILED:
        logger.error(f"Max recovery attempts reached for session {session_id}")
        raise RecoveryFailedError(session_id, result.attempts, reason=result.error)
    return result


async def check_session_health(client: SupabaseClient, session_id: str) -> SessionHealth:
    """
    Controle de sante d'une session.

    Saine si la session existe et, pour une session video non terminee, si sa
    salle existe. Un resultat non sain est un avertissement, jamais une exception.
    """
    with tracer.start_as_current_span("check_session_health") as span:
        span.set_attribute("session.id", session_id)
        issues: list[str] = []

        try:
            session = await client.select_one(
                "consultation_sessions", "status, session_type", [eq("id", session_id)]
            )
            if session is None:
                issues.append("Session not found")
            elif session.get("session_type") == "video" and session.get("status") != "completed":
                room = await client.select_one(ROOMS_TABLE, "id", [eq("session_id", session_id)])
                if room is None:
                    issues.append("Missing consultation room")
        except SupabaseError as e:
            logger.error(f"Health check error for session {session_id}: {e}")
            issues.append(f"Health check failed: {e}")

        healthy = not issues
        span.set_attribute("session.healthy", healthy)
        if not healthy:
            logger.warning(f"Session {session_id} unhealthy: {issues}")
        return SessionHealth(
            session_id=session_id, healthy=healthy, issues=issues, checked_at=datetime.now(UTC)
        )
