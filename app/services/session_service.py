"""Service metier du cycle de vie des sessions de consultation.

Les transitions passent par les RPC securises du backend distant
(``start_consultation_session_secure`` / ``end_consultation_session_secure``)
qui renvoient un booleen: ``false`` signifie "non autorise ou etat invalide".

Machine a etats (monotone):
    scheduled -> in_progress -> completed
    scheduled -> expired
"""

import asyncio
import logging
import math
from datetime import UTC, datetime

from opentelemetry import trace

from app.core.exceptions import (
    InvalidSessionStateError,
    MissingStartTimeError,
    SessionNotFoundError,
    SessionTransitionError,
)
from app.core.realtime_interface import RealtimeBusInterface
from app.infrastructure.supabase import SupabaseClient, SupabaseError, SupabaseNotFoundError
from app.infrastructure.supabase.filters import eq
from app.schemas.consultation import (
    ConsultationSession,
    ParticipantProfile,
    PhysicianProfile,
    SessionStatus,
    SessionWithParticipants,
)
from app.services.remote import remote_errors

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

SESSIONS_TABLE = "consultation_sessions"

ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.SCHEDULED: frozenset({SessionStatus.IN_PROGRESS, SessionStatus.EXPIRED}),
    SessionStatus.IN_PROGRESS: frozenset({SessionStatus.COMPLETED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.EXPIRED: frozenset(),
}

def reachable_statuses(current: SessionStatus) -> frozenset[SessionStatus]:
    """Statuts atteignables depuis ``current`` en suivant ALLOWED_TRANSITIONS."""
    reached: set[SessionStatus] = set()
    pending = list(ALLOWED_TRANSITIONS[current])
    while pending:
        status = pending.pop()
        if status not in reached:
            reached.add(status)
            pending.extend(ALLOWED_TRANSITIONS[status])
    return frozenset(reached)


def validate_transition(
    current: SessionStatus, target: SessionStatus, session_id: str | None = None
) -> None:
    """
    Verifie qu'une transition de statut est autorisee.

    Raises:
        SessionTransitionError: Si la transition n'est pas dans ALLOWED_TRANSITIONS
    """
    if target not in ALLOWED_TRANSITIONS[current]:
        raise SessionTransitionError(current.value, target.value, session_id=session_id)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def calculate_session_duration(started_at: datetime, ended_at: datetime) -> int:
    """Duree en minutes entieres entre deux instants, jamais negative."""
    elapsed = (_as_utc(ended_at) - _as_utc(started_at)).total_seconds()
    return max(0, math.floor(elapsed / 60))


def format_duration_minutes(minutes: int) -> str:
    """Formate une duree en minutes: ``"1h 5m"`` ou ``"45m"``."""
    hours, mins = divmod(minutes, 60)
    return f"{hours}h {mins}m" if hours > 0 else f"{mins}m"


def format_elapsed_seconds(seconds: int) -> str:
    """Formate un chronometre: ``"1:02:03"`` ou ``"2:03"``."""
    hours, remainder = divmod(max(0, seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


async def _publish_session_update(
    bus: RealtimeBusInterface | None, session: ConsultationSession
) -> None:
    if bus is None:
        return
    try:
        await bus.publish_change(
            SESSIONS_TABLE, "UPDATE", new=session.model_dump(mode="json", exclude_none=True)
        )
    except Exception as e:
        logger.warning(f"Failed to publish session change for {session.id}: {e}")


async def get_session(client: SupabaseClient, session_id: str) -> ConsultationSession:
    """
    Recupere la ligne brute d'une session.

    Raises:
        SessionNotFoundError: Si la session n'existe pas
        RemoteServiceError: Si le backend distant est indisponible
    """
    with remote_errors("load session"):
        try:
            row = await client.select_one(
                SESSIONS_TABLE, "*", [eq("id", session_id)], required=True
            )
        except SupabaseNotFoundError as e:
            raise SessionNotFoundError(session_id) from e
    return ConsultationSession.model_validate(row)


def _profile_or_default(model, row, session_id: str):
    """Construit un profil depuis une ligne, ou la valeur par defaut si absente."""
    if isinstance(row, SupabaseError):
        logger.warning(f"{model.__name__} unavailable for session {session_id}: {row}")
        return model()
    if isinstance(row, BaseException):
        raise row
    if not row:
        return model()
    return model.model_validate({k: v for k, v in row.items() if v is not None})


async def fetch_session_data(client: SupabaseClient, session_id: str) -> SessionWithParticipants:
    """
    Recupere une session et les profils de ses deux participants.

    Les profils manquants sont remplaces par des valeurs par defaut
    ("Unknown", "General Practice").

    Args:
        client: Client du backend distant
        session_id: Identifiant de la session

    Returns:
        Session enrichie des profils patient et medecin

    Raises:
        SessionNotFoundError: Si la session n'existe pas
    """
    with tracer.start_as_current_span("fetch_session_data") as span:
        span.set_attribute("session.id", session_id)

        session = await get_session(client, session_id)

        patient_row, physician_row = await asyncio.gather(
            client.select_one("profiles", "first_name, last_name", [eq("id", session.patient_id)]),
            client.select_one(
                "profiles",
                "first_name, last_name, specialization",
                [eq("id", session.physician_id)],
            ),
            return_exceptions=True,
        )

        patient = _profile_or_default(ParticipantProfile, patient_row, session_id)
        physician = _profile_or_default(PhysicianProfile, physician_row, session_id)

        return SessionWithParticipants(
            **session.model_dump(), patient=patient, physician=physician
        )


async def start_session(
    client: SupabaseClient,
    session: ConsultationSession,
    user_id: str,
    now: datetime | None = None,
    bus: RealtimeBusInterface | None = None,
) -> ConsultationSession:
    """
    Demarre une session programmee.

    Pattern:
    1. Verifier la transition scheduled -> in_progress
    2. Appeler le RPC securise
    3. Retourner une copie in_progress avec started_at=now

    Raises:
        SessionTransitionError: Si la session n'est pas programmee
        InvalidSessionStateError: Si le RPC renvoie false
    """
    with tracer.start_as_current_span("start_session") as span:
        span.set_attribute("session.id", session.id)
        span.set_attribute("session.user_id", user_id)

        validate_transition(session.status, SessionStatus.IN_PROGRESS, session.id)

        with remote_errors("start session"):
            accepted = await client.rpc(
                "start_consultation_session_secure",
                {"session_uuid": session.id, "user_uuid": user_id},
            )
        if not accepted:
            span.add_event("Start rejected by remote store")
            raise InvalidSessionStateError("start", session.id)

        started = session.model_copy(
            update={"status": SessionStatus.IN_PROGRESS, "started_at": now or datetime.now(UTC)}
        )
        span.add_event("Session demarree")
        logger.info(f"Session {session.id} started by {user_id}")

        await _publish_session_update(bus, started)
        return started


async def process_consultation_payment(
    client: SupabaseClient, session: ConsultationSession
) -> bool:
    """Declenche le paiement d'une consultation terminee (RPC ``process_consultation_payment``)."""
    result = await client.rpc(
        "process_consultation_payment",
        {
            "session_uuid": session.id,
            "patient_uuid": session.patient_id,
            "physician_uuid": session.physician_id,
            "amount": session.consultation_rate,
        },
        retry_transient=False,
    )
    return bool(result)


async def end_session(
    client: SupabaseClient,
    session: ConsultationSession,
    user_id: str,
    now: datetime | None = None,
    bus: RealtimeBusInterface | None = None,
) -> ConsultationSession:
    """
    Termine une session en cours et calcule sa duree.

    Pattern:
    1. Verifier la transition in_progress -> completed
    2. Refuser une session sans started_at (MissingStartTimeError)
    3. Calculer duration_minutes = floor((now - started_at) / 60s)
    4. Appeler le RPC securise puis persister ended_at / duration_minutes
    5. Declencher le paiement si payment_status == "pending"

    Returns:
        Copie terminee de la session (payment_status="paid" si le paiement a abouti)

    Raises:
        SessionTransitionError: Si la session n'est pas en cours
        MissingStartTimeError: Si started_at est absent
        InvalidSessionStateError: Si le RPC renvoie false
    """
    with tracer.start_as_current_span("end_session") as span:
        span.set_attribute("session.id", session.id)
        span.set_attribute("session.user_id", user_id)

        validate_transition(session.status, SessionStatus.COMPLETED, session.id)
        if session.started_at is None:
            raise MissingStartTimeError(session.id)

        ended_at = now or datetime.now(UTC)
        duration = calculate_session_duration(session.started_at, ended_at)
        span.set_attribute("session.duration_minutes", duration)

        with remote_errors("end session"):
            accepted = await client.rpc(
                "end_consultation_session_secure",
                {"session_uuid": session.id, "user_uuid": user_id},
            )
            if not accepted:
                span.add_event("End rejected by remote store")
                raise InvalidSessionStateError("end", session.id)

            await client.update(
                SESSIONS_TABLE,
                {"ended_at": ended_at, "duration_minutes": duration},
                [eq("id", session.id)],
            )

        completed = session.model_copy(
            update={
                "status": SessionStatus.COMPLETED,
                "ended_at": ended_at,
                "duration_minutes": duration,
            }
        )

        if session.payment_status == "pending":
            try:
                if await process_consultation_payment(client, completed):
                    completed = completed.model_copy(update={"payment_status": "paid"})
                    span.add_event("Paiement traite")
            except SupabaseError as e:
                # La session reste terminee; le paiement pourra etre rejoue
                logger.error(f"Payment processing failed for session {session.id}: {e}")
                span.record_exception(e)

        logger.info(f"Session {session.id} ended by {user_id} after {duration} min")
        await _publish_session_update(bus, completed)
        return completed


async def expire_session(
    client: SupabaseClient,
    session: ConsultationSession,
    bus: RealtimeBusInterface | None = None,
) -> ConsultationSession:
    """
    Marque une session programmee comme expiree.

    Raises:
        SessionTransitionError: Si la session n'est pas programmee
        InvalidSessionStateError: Si la ligne a change de statut entre-temps
    """
    with tracer.start_as_current_span("expire_session") as span:
        span.set_attribute("session.id", session.id)
        validate_transition(session.status, SessionStatus.EXPIRED, session.id)

        with remote_errors("expire session"):
            rows = await client.update(
                SESSIONS_TABLE,
                {"status": SessionStatus.EXPIRED.value},
                [eq("id", session.id), eq("status", SessionStatus.SCHEDULED.value)],
            )

        if not rows:
            # Demarree (ou deja expiree) par l'autre participant
            raise InvalidSessionStateError("expire", session.id)

        expired = session.model_copy(update={"status": SessionStatus.EXPIRED})
        await _publish_session_update(bus, expired)
        return expired
