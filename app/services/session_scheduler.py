"""Gestion des sessions programmees (disponibilite, rappels, expiration).

Une session programmee devient disponible ``SCHEDULED_SESSION_READY_MINUTES``
avant son heure (``created_at``) et expire ``SCHEDULED_SESSION_EXPIRY_MINUTES``
apres si elle n'a pas demarre. Le balayage d'expiration tourne periodiquement
via APScheduler.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Literal

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from opentelemetry import trace

from app.core.config import settings
from app.core.realtime_interface import RealtimeBusInterface
from app.infrastructure.supabase import SupabaseClient, SupabaseError
from app.infrastructure.supabase.filters import eq
from app.schemas.consultation import (
    ConsultationSession,
    ExpirySweepResult,
    ScheduledSessionState,
    SessionStatus,
)
from app.services.session_service import SESSIONS_TABLE

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

SessionAvailability = Literal["not_ready", "ready", "expired"]


def _reference_time(session: ConsultationSession) -> datetime | None:
    if session.created_at is None:
        return None
    created_at = session.created_at
    return created_at if created_at.tzinfo is not None else created_at.replace(tzinfo=UTC)


def ready_at(session: ConsultationSession) -> datetime | None:
    """Instant a partir duquel la session peut etre rejointe."""
    reference = _reference_time(session)
    if reference is None:
        return None
    return reference - timedelta(minutes=settings.SCHEDULED_SESSION_READY_MINUTES)


def is_session_ready(session: ConsultationSession, now: datetime) -> bool:
    """Une session sans rendez-vous est toujours prete."""
    if not session.appointment_id:
        return True
    opens_at = ready_at(session)
    return opens_at is None or now >= opens_at


def is_session_expired(session: ConsultationSession, now: datetime) -> bool:
    """Session programmee dont l'heure est depassee de plus de EXPIRY_MINUTES."""
    reference = _reference_time(session)
    if session.status != SessionStatus.SCHEDULED or reference is None:
        return False
    return now > reference + timedelta(minutes=settings.SCHEDULED_SESSION_EXPIRY_MINUTES)


def time_until_ready(session: ConsultationSession, now: datetime) -> timedelta:
    opens_at = ready_at(session)
    if opens_at is None:
        return timedelta(0)
    return max(timedelta(0), opens_at - now)


def needs_reminder(session: ConsultationSession, now: datetime) -> bool:
    """Vrai si la session s'ouvre dans moins de REMINDER_MINUTES et n'a pas demarre."""
    if session.status != SessionStatus.SCHEDULED or session.started_at is not None:
        return False
    remaining = time_until_ready(session, now)
    reminder_window = timedelta(minutes=settings.SCHEDULED_SESSION_REMINDER_MINUTES)
    return timedelta(0) < remaining <= reminder_window


def session_availability(session: ConsultationSession, now: datetime) -> SessionAvailability:
    if is_session_expired(session, now):
        return "expired"
    if is_session_ready(session, now):
        return "ready"
    return "not_ready"


def describe_scheduled_session(
    session: ConsultationSession, now: datetime
) -> ScheduledSessionState:
    remaining = time_until_ready(session, now)
    return ScheduledSessionState(
        session_id=session.id,
        is_ready=is_session_ready(session, now),
        is_expired=is_session_expired(session, now),
        needs_reminder=needs_reminder(session, now),
        minutes_until_start=int(remaining.total_seconds() // 60),
    )


async def fetch_scheduled_sessions(
    client: SupabaseClient,
    user_id: str | None = None,
    role: str | None = None,
) -> list[ConsultationSession]:
    """Sessions programmees, eventuellement restreintes a un participant."""
    filters = [eq("status", SessionStatus.SCHEDULED.value)]
    if user_id:
        column = "patient_id" if role == "patient" else "physician_id"
        filters.append(eq(column, user_id))
    rows = await client.select(SESSIONS_TABLE, "*", filters, order="created_at.asc")
    return [ConsultationSession.model_validate(row) for row in rows]


async def expire_stale_sessions(
    client: SupabaseClient,
    user_id: str | None = None,
    role: str | None = None,
    now: datetime | None = None,
    bus: RealtimeBusInterface | None = None,
) -> ExpirySweepResult:
    """
    Passe en ``expired`` les sessions programmees dont le delai est depasse.

    Returns:
        ExpirySweepResult avec les identifiants expires
    """
    now = now or datetime.now(UTC)
    with tracer.start_as_current_span("expire_stale_sessions") as span:
        sessions = await fetch_scheduled_sessions(client, user_id, role)
        expired_ids: list[str] = []

        for session in sessions:
            if is_session_expired(session, now):
                try:
                    rows = await client.update(
                        SESSIONS_TABLE,
                        {"status": SessionStatus.EXPIRED.value},
                        [eq("id", session.id), eq("status", SessionStatus.SCHEDULED.value)],
                    )
                except SupabaseError as e:
                    logger.error(f"Failed to expire session {session.id}: {e}")
                    span.record_exception(e)
                    continue
                if not rows:
                    logger.info(f"Session {session.id} left scheduled state, not expired")
                    continue
                expired_ids.append(session.id)
                if bus is not None:
                    await bus.publish_change(
                        SESSIONS_TABLE,
                        "UPDATE",
                        new={"id": session.id, "status": SessionStatus.EXPIRED.value},
                    )
            elif needs_reminder(session, now):
                logger.info(f"Session {session.id} starts soon, reminder due")

        span.set_attribute("sessions.checked", len(sessions))
        span.set_attribute("sessions.expired", len(expired_ids))
        if expired_ids:
            logger.info(f"Expired {len(expired_ids)} scheduled session(s): {expired_ids}")
        return ExpirySweepResult(expired_session_ids=expired_ids, checked=len(sessions))


class SessionScheduler:
    """
    Planificateur du balayage d'expiration (APScheduler).

    Example:
        ```python
        scheduler = SessionScheduler(client, bus)
        scheduler.start()
        ...
        scheduler.shutdown()
        ```
    """

    JOB_ID = "expire_stale_sessions"

    def __init__(
        self,
        client: SupabaseClient,
        bus: RealtimeBusInterface | None = None,
        interval_seconds: int | None = None,
    ):
        self.client = client
        self.bus = bus
        self.interval_seconds = interval_seconds or settings.SCHEDULED_SESSION_POLL_SECONDS
        self.scheduler = AsyncIOScheduler(timezone=UTC)

    async def run_sweep(self) -> ExpirySweepResult | None:
        try:
            return await expire_stale_sessions(self.client, bus=self.bus)
        except SupabaseError as e:
            logger.warning(f"Scheduled session sweep skipped: {e}")
            return None

    def start(self) -> None:
        self.scheduler.add_job(
            self.run_sweep,
            "interval",
            seconds=self.interval_seconds,
            id=self.JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(f"Scheduler des sessions démarré (intervalle {self.interval_seconds}s)")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler des sessions arrêté")
