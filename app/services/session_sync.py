"""Synchronisation temps reel de l'etat d'une session.

``SessionStateStore`` est un reducer explicite des evenements de changement
de ``consultation_sessions``:
- les evenements plus anciens que le dernier applique (``commit_timestamp``)
  pour la meme ligne sont ignores
- un UPDATE vers un statut non atteignable depuis le statut courant
  (ex: completed -> scheduled, in_progress -> expired) est ignore
- les profils patient / medecin detenus localement sont preserves
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

from app.core.realtime_interface import RealtimeBusInterface, Subscription, change_channel
from app.infrastructure.supabase.filters import eq
from app.schemas.consultation import (
    ConnectionStatus,
    HealthStatus,
    SessionLiveState,
    SessionStatus,
    SessionWithParticipants,
)
from app.services.session_logger import SessionLogger
from app.services.session_service import (
    SESSIONS_TABLE,
    format_elapsed_seconds,
    reachable_statuses,
)

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable commit_timestamp: {value!r}")
        return None
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def is_status_regression(current: SessionStatus, candidate: SessionStatus) -> bool:
    """True si ``candidate`` n'est pas atteignable depuis ``current`` (recul ou bifurcation)."""
    if candidate == current:
        return False
    return candidate not in reachable_statuses(current)


class SessionStateStore:
    """
    Etat local d'une session maintenu a partir des evenements temps reel.

    Example:
        ```python
        store = SessionStateStore(session_id, bus)
        await store.start(initial=await fetch_session_data(client, session_id))
        queue = store.listen()
        snapshot = await queue.get()
        await store.stop()
        ```
    """

    def __init__(
        self,
        session_id: str,
        bus: RealtimeBusInterface,
        session_logger: SessionLogger | None = None,
    ):
        self.session_id = session_id
        self.bus = bus
        self.session_logger = session_logger
        self.state: SessionWithParticipants | None = None
        self.connection_status: ConnectionStatus = "disconnected"
        self.health_status: HealthStatus = "healthy"
        self._last_applied: dict[str, datetime] = {}
        self._subscription: Subscription | None = None
        self._listeners: list[asyncio.Queue[SessionLiveState]] = []

    # ------------------------------------------------------------------
    # Cycle de vie
    # ------------------------------------------------------------------

    async def start(self, initial: SessionWithParticipants | None = None) -> None:
        """Charge l'etat initial et s'abonne aux changements de la ligne."""
        if initial is not None:
            self.state = initial
        self.connection_status = "connecting"
        try:
            self._subscription = await self.bus.subscribe(
                change_channel(SESSIONS_TABLE),
                self.handle_event,
                row_filter=eq("id", self.session_id),
            )
        except Exception as e:
            self.connection_status = "disconnected"
            logger.error(f"Realtime subscription failed for session {self.session_id}: {e}")
            if self.session_logger is not None:
                await self.session_logger.log_connection_issue(
                    self.session_id, "", "Real-time subscription failed"
                )
            raise
        self.connection_status = "connected"
        logger.info(f"Realtime monitoring started for session {self.session_id}")
        self._notify()

    async def stop(self) -> None:
        """Retire l'abonnement temps reel."""
        if self._subscription is not None:
            await self.bus.unsubscribe(self._subscription)
            self._subscription = None
        self.connection_status = "disconnected"
        logger.info(f"Realtime monitoring stopped for session {self.session_id}")
        self._notify()

    # ------------------------------------------------------------------
    # Reducer
    # ------------------------------------------------------------------

    def apply(self, event: dict[str, Any]) -> bool:
        """
        Applique un evenement de changement a l'etat local.

        Args:
            event: ``{eventType, new, old, commit_timestamp}``

        Returns:
            True si l'etat a change, False si l'evenement a ete ignore
        """
        event_type = event.get("eventType")
        new = event.get("new") or {}
        old = event.get("old") or {}
        row_id = new.get("id") or old.get("id")
        if row_id != self.session_id:
            return False

        committed_at = _parse_timestamp(event.get("commit_timestamp"))
        last = self._last_applied.get(row_id)
        if committed_at is not None and last is not None and committed_at < last:
            logger.debug(f"Stale {event_type} discarded for session {row_id}")
            return False

        if event_type == "DELETE":
            self.state = None
        elif event_type == "INSERT" and self.state is None:
            self.state = SessionWithParticipants.model_validate(new)
        elif event_type in ("INSERT", "UPDATE"):
            if self.state is None:
                return False
            if not self._merge(new):
                return False
        else:
            return False

        if committed_at is not None:
            self._last_applied[row_id] = committed_at
        return True

    def _merge(self, row: dict[str, Any]) -> bool:
        candidate_status = row.get("status")
        if candidate_status is not None:
            try:
                candidate = SessionStatus(candidate_status)
            except ValueError:
                logger.warning(f"Unknown session status ignored: {candidate_status}")
                return False
            if is_status_regression(self.state.status, candidate):
                logger.warning(
                    f"Status regression {self.state.status.value} -> {candidate.value} "
                    f"discarded for session {self.session_id}"
                )
                return False

        merged = {
            **self.state.model_dump(),
            **row,
            "patient": self.state.patient,
            "physician": self.state.physician,
        }
        self.state = SessionWithParticipants.model_validate(merged)
        return True

    async def handle_event(self, event: dict[str, Any]) -> None:
        """Handler temps reel: journalise, applique et notifie les ecouteurs."""
        if self.session_logger is not None:
            await self.session_logger.log_realtime_event(
                self.session_id, str(event.get("eventType")), event
            )
        if self.apply(event):
            self._notify()

    # ------------------------------------------------------------------
    # Lecture
    # ------------------------------------------------------------------

    def set_health(self, healthy: bool | None) -> None:
        """Met a jour l'etat de sante (None = erreur de chargement)."""
        if healthy is None:
            self.health_status = "error"
        else:
            self.health_status = "healthy" if healthy else "warning"
        self._notify()

    def elapsed_seconds(self, now: datetime | None = None) -> int:
        """Secondes ecoulees pour une session en cours, 0 sinon."""
        if (
            self.state is None
            or self.state.status != SessionStatus.IN_PROGRESS
            or self.state.started_at is None
        ):
            return 0
        started_at = self.state.started_at
        if started_at.tzinfo is None:
            started_at = started_at.replace(tzinfo=UTC)
        return max(0, int(((now or datetime.now(UTC)) - started_at).total_seconds()))

    def snapshot(self, now: datetime | None = None) -> SessionLiveState:
        elapsed = self.elapsed_seconds(now)
        return SessionLiveState(
            session=self.state,
            connection_status=self.connection_status,
            health_status=self.health_status,
            elapsed_seconds=elapsed,
            formatted_elapsed=format_elapsed_seconds(elapsed),
        )

    def listen(self) -> asyncio.Queue[SessionLiveState]:
        """Retourne une file recevant un instantane a chaque changement."""
        queue: asyncio.Queue[SessionLiveState] = asyncio.Queue(maxsize=100)
        self._listeners.append(queue)
        return queue

    def forget(self, queue: asyncio.Queue[SessionLiveState]) -> None:
        if queue in self._listeners:
            self._listeners.remove(queue)

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for queue in self._listeners:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(snapshot)
