"""
Interface abstraite pour le bus temps réel.

Ce module définit le contrat que tout backend temps réel (Redis Pub/Sub,
bus mémoire de test, etc.) doit implémenter. Deux familles de messages y
circulent:

- les événements de changement de ligne (``realtime:<table>``), porteurs de
  ``{eventType, table, new, old, commit_timestamp}``;
- les messages broadcast nommés (ex: ``webrtc_<sessionId>``), porteurs de
  ``{event, payload}``.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from itertools import count
from typing import Any

from app.infrastructure.supabase.filters import Filter, matches

# Type alias pour les handlers temps réel
RealtimeHandler = Callable[[dict[str, Any]], Awaitable[None]]

_subscription_ids = count(1)


def change_channel(table: str) -> str:
    """Nom du canal portant les changements de ligne d'une table."""
    return f"realtime:{table}"


@dataclass(eq=False)
class Subscription:
    """
    Abonnement d'un handler à un canal.

    Attributes:
        channel: Nom du canal
        handler: Coroutine appelée avec la charge utile du message
        row_filter: Filtre ``column=eq.value`` appliqué aux événements de ligne
        event_types: Types d'événement acceptés (INSERT/UPDATE/DELETE), tous si vide
    """

    channel: str
    handler: RealtimeHandler
    row_filter: Filter | None = None
    event_types: frozenset[str] = frozenset()
    id: int = field(default_factory=lambda: next(_subscription_ids))

    def accepts(self, data: dict[str, Any]) -> bool:
        """Indique si la charge utile passe les filtres de l'abonnement."""
        event_type = data.get("eventType")
        if self.event_types and event_type not in self.event_types:
            return False
        if self.row_filter is None:
            return True
        row = data.get("new") or data.get("old") or {}
        return matches(row, self.row_filter)


class RealtimeBusInterface(ABC):
    """
    Interface abstraite pour un bus temps réel.

    Exemple d'implémentation:
        class RedisRealtimeBus(RealtimeBusInterface):
            async def publish(self, channel: str, data: dict) -> None:
                # Implémentation Redis Pub/Sub
                ...
    """

    @abstractmethod
    async def publish(self, channel: str, data: dict[str, Any]) -> None:
        """
        Publie une charge utile sur un canal.

        Args:
            channel: Nom du canal
            data: Charge utile JSON-sérialisable
        """

    @abstractmethod
    async def subscribe(
        self,
        channel: str,
        handler: RealtimeHandler,
        row_filter: Filter | None = None,
        event_types: frozenset[str] = frozenset(),
    ) -> Subscription:
        """
        Abonne dynamiquement un handler à un canal.

        Returns:
            Subscription à passer à ``unsubscribe``
        """

    @abstractmethod
    async def unsubscribe(self, subscription: Subscription) -> None:
        """Retire un abonnement. Sans effet s'il a déjà été retiré."""

    async def broadcast(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        """Publie un message broadcast ``{event, payload}``."""
        await self.publish(channel, {"event": event, "payload": payload})

    async def publish_change(
        self,
        table: str,
        event_type: str,
        new: dict[str, Any] | None = None,
        old: dict[str, Any] | None = None,
        commit_timestamp: str | None = None,
    ) -> None:
        """Publie un événement de changement de ligne sur ``realtime:<table>``."""
        await self.publish(
            change_channel(table),
            {
                "eventType": event_type,
                "table": table,
                "new": new or {},
                "old": old or {},
                "commit_timestamp": commit_timestamp or datetime.now(UTC).isoformat(),
            },
        )


__all__ = [
    "RealtimeBusInterface",
    "RealtimeHandler",
    "Subscription",
    "change_channel",
]
