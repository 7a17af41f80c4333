"""Faux en mémoire partagés par les tests.

- ``FakeStore``: même interface que ``SupabaseClient`` sur des tables en mémoire
- ``InMemoryBus``: bus temps réel à dispatch synchrone
- ``FakePeerConnection`` / ``FakeMediaProvider``: couche media WebRTC
"""

import copy
import itertools
import uuid
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any

from app.core.realtime_interface import RealtimeBusInterface, RealtimeHandler, Subscription
from app.infrastructure.supabase import (
    SupabaseConnectionError,
    SupabaseNotFoundError,
)
from app.infrastructure.supabase.filters import Filter, format_value, matches
from app.schemas.signaling import ConnectionState, SessionDescription
from app.services.signaling import MediaProvider, MediaStream, MediaTrack, PeerConnection


def _row_matches(row: dict[str, Any], flt: Filter) -> bool:
    column, condition = flt
    op, _, raw = condition.partition(".")
    if op in ("gte", "lte", "gt", "lt"):
        value = row.get(column)
        if value is None:
            return False
        actual = format_value(value)
        return {
            "gte": actual >= raw,
            "lte": actual <= raw,
            "gt": actual > raw,
            "lt": actual < raw,
        }[op]
    return matches(row, flt)


class FakeStore:
    """
    Backend distant en mémoire.

    ``fail_on`` contient des noms d'opérations (``"select"``, ``"update"``...)
    ou des couples ``(operation, table)`` qui lèvent SupabaseConnectionError.
    ``unretried`` liste les ``(operation, table)`` appelés avec ``retry_transient=False``.
    """

    def __init__(self, tables: dict[str, list[dict[str, Any]]] | None = None):
        self.tables: dict[str, list[dict[str, Any]]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self.rpc_results: dict[str, Any] = {}
        self.rpc_calls: list[tuple[str, dict[str, Any]]] = []
        self.users_by_token: dict[str, dict[str, Any]] = {}
        self.fail_on: set[Any] = set()
        self.calls: list[tuple[str, str]] = []
        self.unretried: list[tuple[str, str]] = []
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def table(self, name: str) -> list[dict[str, Any]]:
        return self.tables.setdefault(name, [])

    def _check(self, operation: str, table: str) -> None:
        self.calls.append((operation, table))
        if operation in self.fail_on or (operation, table) in self.fail_on:
            raise SupabaseConnectionError(f"{operation} on {table} failed")

    def _filtered(self, table: str, filters: Sequence[Filter]) -> list[dict[str, Any]]:
        return [
            row for row in self.table(table) if all(_row_matches(row, f) for f in filters)
        ]

    # ------------------------------------------------------------------
    # Interface SupabaseClient
    # ------------------------------------------------------------------

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: Sequence[Filter] = (),
        order: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        self._check("select", table)
        rows = self._filtered(table, filters)
        if order:
            column, _, direction = order.partition(".")
            rows = sorted(
                rows,
                key=lambda row: format_value(row.get(column)) if row.get(column) is not None else "",
                reverse=direction == "desc",
            )
        if limit is not None:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    async def select_one(
        self,
        table: str,
        columns: str = "*",
        filters: Sequence[Filter] = (),
        required: bool = False,
    ) -> dict[str, Any] | None:
        self._check("select_one", table)
        rows = self._filtered(table, filters)
        if not rows:
            if required:
                raise SupabaseNotFoundError(table, dict(filters))
            return None
        return copy.deepcopy(rows[0])

    async def count(self, table: str, filters: Sequence[Filter] = ()) -> int:
        self._check("count", table)
        return len(self._filtered(table, filters))

    async def insert(
        self,
        table: str,
        rows: dict[str, Any] | list[dict[str, Any]],
        *,
        retry_transient: bool = True,
    ) -> list[dict[str, Any]]:
        if not retry_transient:
            self.unretried.append(("insert", table))
        self._check("insert", table)
        inserted = []
        for row in rows if isinstance(rows, list) else [rows]:
            stored = {
                "id": str(uuid.UUID(int=next(self._ids))),
                "created_at": datetime.now(UTC).isoformat(),
                **row,
            }
            self.table(table).append(stored)
            inserted.append(copy.deepcopy(stored))
        return inserted

    async def update(
        self, table: str, values: dict[str, Any], filters: Sequence[Filter]
    ) -> list[dict[str, Any]]:
        if not filters:
            raise ValueError("Refusing to update a whole table without filters")
        self._check("update", table)
        updated = []
        for row in self._filtered(table, filters):
            row.update(values)
            updated.append(copy.deepcopy(row))
        return updated

    async def upsert(
        self,
        table: str,
        rows: dict[str, Any] | list[dict[str, Any]],
        on_conflict: str | None = None,
    ) -> list[dict[str, Any]]:
        self._check("upsert", table)
        key = on_conflict or "id"
        stored_rows = []
        for row in rows if isinstance(rows, list) else [rows]:
            existing = next(
                (r for r in self.table(table) if key in row and r.get(key) == row[key]), None
            )
            if existing is not None:
                existing.update(row)
                stored_rows.append(copy.deepcopy(existing))
            else:
                stored_rows.extend(await self.insert(table, row))
        return stored_rows

    async def rpc(
        self,
        function: str,
        params: dict[str, Any] | None = None,
        *,
        retry_transient: bool = True,
    ) -> Any:
        if not retry_transient:
            self.unretried.append(("rpc", function))
        self._check("rpc", function)
        self.rpc_calls.append((function, dict(params or {})))
        result = self.rpc_results.get(function)
        if isinstance(result, BaseException):
            raise result
        if callable(result):
            return result(params or {})
        return copy.deepcopy(result)

    async def get_user(self, access_token: str) -> dict[str, Any] | None:
        self._check("get_user", "auth")
        return self.users_by_token.get(access_token)

    async def close(self) -> None:
        return None

    def calls_to(self, function: str) -> list[dict[str, Any]]:
        return [params for name, params in self.rpc_calls if name == function]


class InMemoryBus(RealtimeBusInterface):
    """Bus temps réel en mémoire: ``publish`` exécute les handlers immédiatement."""

    def __init__(self) -> None:
        self.subscriptions: list[Subscription] = []
        self.published: list[tuple[str, dict[str, Any]]] = []
        self.fail_subscribe = False

    async def publish(self, channel: str, data: dict[str, Any]) -> None:
        self.published.append((channel, copy.deepcopy(data)))
        for subscription in list(self.subscriptions):
            if subscription.channel == channel and subscription.accepts(data):
                await subscription.handler(copy.deepcopy(data))

    async def subscribe(
        self,
        channel: str,
        handler: RealtimeHandler,
        row_filter: Filter | None = None,
        event_types: frozenset[str] = frozenset(),
    ) -> Subscription:
        if self.fail_subscribe:
            raise ConnectionError("Realtime unavailable")
        subscription = Subscription(channel, handler, row_filter, event_types)
        self.subscriptions.append(subscription)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self.subscriptions:
            self.subscriptions.remove(subscription)

    def events(self, channel: str) -> list[str]:
        """Noms des événements broadcast publiés sur un canal."""
        return [data.get("event") for name, data in self.published if name == channel]


# ============================================================================
# Couche media
# ============================================================================


class FakeTrack(MediaTrack):
    def __init__(self, kind: str, label: str = ""):
        self.kind = kind
        self.label = label or kind
        self.enabled = True
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class FakeMediaProvider(MediaProvider):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.streams: list[MediaStream] = []

    async def get_user_media(self, video: bool = True, audio: bool = True) -> MediaStream:
        if self.fail:
            raise PermissionError("Permission denied")
        tracks: list[MediaTrack] = []
        if video:
            tracks.append(FakeTrack("video", "camera"))
        if audio:
            tracks.append(FakeTrack("audio", "microphone"))
        stream = MediaStream(tracks)
        self.streams.append(stream)
        return stream

    async def get_display_media(self) -> MediaStream:
        if self.fail:
            raise PermissionError("Permission denied")
        stream = MediaStream([FakeTrack("video", "screen")])
        self.streams.append(stream)
        return stream


class FakePeerConnection(PeerConnection):
    """
    Connexion pair simulée.

    Passe ``connecting`` puis ``connected`` dès que les descriptions locale et
    distante sont toutes deux posées.
    """

    def __init__(self, stun_servers: list[str] | None = None, stats: list[dict] | None = None):
        self.stun_servers = stun_servers or []
        self.connection_state = ConnectionState.NEW
        self.on_state_change = None
        self.on_ice_candidate = None
        self.local_description: SessionDescription | None = None
        self._remote_description: SessionDescription | None = None
        self.candidates: list[dict[str, Any]] = []
        self.tracks: list[MediaTrack] = []
        self.replaced: list[tuple[str, MediaTrack]] = []
        self.stats = stats or []
        self.closed = False

    @property
    def remote_description(self) -> SessionDescription | None:
        return self._remote_description

    async def create_offer(self) -> SessionDescription:
        return SessionDescription(type="offer", sdp=f"v=0 offer {id(self)}")

    async def create_answer(self) -> SessionDescription:
        return SessionDescription(type="answer", sdp=f"v=0 answer {id(self)}")

    async def set_local_description(self, description: SessionDescription) -> None:
        self.local_description = description
        await self._maybe_connect()

    async def set_remote_description(self, description: SessionDescription) -> None:
        self._remote_description = description
        await self._maybe_connect()

    async def add_ice_candidate(self, candidate: dict[str, Any]) -> None:
        self.candidates.append(candidate)

    def add_track(self, track: MediaTrack, stream: MediaStream) -> None:
        self.tracks.append(track)

    async def replace_track(self, kind: str, track: MediaTrack) -> None:
        self.replaced.append((kind, track))

    async def get_stats(self) -> list[dict[str, Any]]:
        return list(self.stats)

    async def close(self) -> None:
        self.closed = True
        self.connection_state = ConnectionState.CLOSED

    async def set_state(self, state: ConnectionState) -> None:
        self.connection_state = state
        if self.on_state_change is not None:
            await self.on_state_change(state)

    async def _maybe_connect(self) -> None:
        if self.closed or self.connection_state != ConnectionState.NEW:
            return
        if self.local_description is None or self._remote_description is None:
            return
        await self.set_state(ConnectionState.CONNECTING)
        await self.set_state(ConnectionState.CONNECTED)


class PeerFactory:
    """Fabrique qui garde une trace des connexions créées."""

    def __init__(self, make: Callable[[list[str]], FakePeerConnection] = FakePeerConnection):
        self.make = make
        self.created: list[FakePeerConnection] = []

    def __call__(self, stun_servers: list[str]) -> FakePeerConnection:
        pc = self.make(stun_servers)
        self.created.append(pc)
        return pc
