"""Journal structure des sessions de consultation.

Chaque entree produit un log Python. Les entrees critiques (niveau ``error``
ou categorie ``session_lifecycle``) sont en plus persistees dans
``performance_metrics`` sous la forme ``metric_type="log_<categorie>"``.
"""

import logging
from collections import deque
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from app.infrastructure.supabase import SupabaseClient, SupabaseError

logger = logging.getLogger(__name__)

LogLevel = Literal["info", "warn", "error", "debug"]
LogCategory = Literal["session_lifecycle", "video_call", "realtime", "user_action", "system_error"]

HISTORY_SIZE = 100

_PY_LEVELS: dict[str, int] = {
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "debug": logging.DEBUG,
}


class SessionLogEntry(BaseModel):
    level: LogLevel
    category: LogCategory
    message: str
    session_id: str | None = None
    user_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


def should_persist(level: LogLevel, category: LogCategory) -> bool:
    """Seules les erreurs et le cycle de vie des sessions sont persistes."""
    return level == "error" or category == "session_lifecycle"


class SessionLogger:
    """
    Journal des evenements de session avec historique borne.

    Example:
        ```python
        session_logger = SessionLogger(client)
        await session_logger.log_session_start(session_id, user_id, "physician")
        ```
    """

    def __init__(self, client: SupabaseClient | None = None, history_size: int = HISTORY_SIZE):
        self.client = client
        self.history: deque[SessionLogEntry] = deque(maxlen=history_size)

    async def log(
        self,
        level: LogLevel,
        category: LogCategory,
        message: str,
        metadata: dict[str, Any] | None = None,
        session_id: str | None = None,
        user_id: str | None = None,
    ) -> SessionLogEntry:
        entry = SessionLogEntry(
            level=level,
            category=category,
            message=message,
            session_id=session_id,
            user_id=user_id,
            metadata=metadata or {},
            timestamp=datetime.now(UTC),
        )
        self.history.append(entry)

        logger.log(
            _PY_LEVELS[level],
            f"[{category}] {message} (session={session_id}, user={user_id}) {entry.metadata}",
        )

        if self.client is not None and should_persist(level, category):
            await self._persist(entry)
        return entry

    async def _persist(self, entry: SessionLogEntry) -> None:
        try:
            await self.client.insert(
                "performance_metrics",
                {
                    "user_id": entry.user_id or None,
                    "metric_type": f"log_{entry.category}",
                    "metric_value": 0 if entry.level == "error" else 1,
                    "recorded_at": entry.timestamp.isoformat(),
                },
            )
        except SupabaseError as e:
            logger.error(f"Failed to store session log: {e}")

    async def log_session_start(self, session_id: str, user_id: str, user_role: str) -> None:
        await self.log(
            "info",
            "session_lifecycle",
            f"Session started by {user_role}",
            {"user_role": user_role},
            session_id,
            user_id,
        )

    async def log_session_end(
        self, session_id: str, user_id: str, duration: int | None = None
    ) -> None:
        await self.log(
            "info",
            "session_lifecycle",
            "Session ended",
            {"duration": duration},
            session_id,
            user_id,
        )

    async def log_video_call_start(self, session_id: str, user_id: str) -> None:
        await self.log("info", "video_call", "Video call started", {}, session_id, user_id)

    async def log_video_call_end(
        self, session_id: str, user_id: str, reason: str | None = None
    ) -> None:
        await self.log(
            "info", "video_call", "Video call ended", {"reason": reason}, session_id, user_id
        )

    async def log_connection_issue(self, session_id: str, user_id: str, issue: str) -> None:
        await self.log(
            "warn",
            "video_call",
            f"Connection issue: {issue}",
            {"issue": issue},
            session_id,
            user_id,
        )

    async def log_realtime_event(
        self, session_id: str, event: str, payload: dict[str, Any] | None = None
    ) -> None:
        await self.log(
            "debug",
            "realtime",
            f"Realtime event: {event}",
            {"event": event, "payload": payload},
            session_id,
        )

    async def log_user_action(
        self,
        session_id: str,
        user_id: str,
        action: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.log(
            "info",
            "user_action",
            f"User action: {action}",
            {"action": action, **(metadata or {})},
            session_id,
            user_id,
        )

    async def log_system_error(
        self,
        error: BaseException,
        context: str | None = None,
        session_id: str | None = None,
        user_id: str | None = None,
    ) -> None:
        await self.log(
            "error",
            "system_error",
            f"System error: {error}",
            {"error": str(error), "error_type": type(error).__name__, "context": context},
            session_id,
            user_id,
        )
