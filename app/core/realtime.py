"""
Bus temps réel Redis Pub/Sub - core-consultation-admin.

Architecture :
- Redis Pub/Sub transporte les événements de changement de ligne
  (``realtime:<table>``) et les messages broadcast (``webrtc_<sessionId>``)
- Abonnements dynamiques: un canal Redis est ouvert au premier abonné et
  fermé au départ du dernier
- Pas de persistence garantie: un message publié sans abonné est perdu

Usage:
    from app.core.realtime import bus, subscribe

    @subscribe("realtime:user_activity_logs", event_types=frozenset({"INSERT"}))
    async def handle_activity(data: dict):
        ...

    await bus.broadcast("webrtc_42", "offer", {"sdp": "..."})
"""

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import redis.asyncio as redis
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from app.core.config import settings
from app.core.realtime_interface import RealtimeBusInterface, RealtimeHandler, Subscription
from app.core.retry import async_retry_with_backoff
from app.infrastructure.supabase.filters import Filter, parse_filter

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Handlers déclarés statiquement via @subscribe, attachés au démarrage
static_subscriptions: list[tuple[str, RealtimeHandler, Filter | None, frozenset[str]]] = []


class RedisRealtimeBus(RealtimeBusInterface):
    """Implémentation Redis Pub/Sub du bus temps réel."""

    def __init__(self) -> None:
        self.redis_client: redis.Redis | None = None
        self._pubsub: Any = None
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._consumer_task: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """Initialise le client Redis au démarrage."""
        self.redis_client = redis.from_url(
            settings.REDIS_URL,
            db=settings.REDIS_DB,
            decode_responses=True,
            socket_timeout=5.0,
            socket_connect_timeout=5.0,
        )
        await self.redis_client.ping()
        self._pubsub = self.redis_client.pubsub(ignore_subscribe_messages=True)
        logger.info(f"Redis client initialisé: {settings.REDIS_URL}")

    async def close(self) -> None:
        """Ferme le pubsub et le client Redis proprement."""
        await self.stop_consuming()
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("Redis client fermé")
        self._subscriptions.clear()

    @async_retry_with_backoff(max_attempts=3, min_wait_seconds=1, max_wait_seconds=4)
    async def _publish_raw(self, channel: str, message: str) -> int:
        if self.redis_client is None:
            raise RuntimeError("Redis client not initialized")
        return await self.redis_client.publish(channel, message)

    async def publish(self, channel: str, data: dict[str, Any]) -> None:
        """
        Publie une charge utile via Redis Pub/Sub.

        Args:
            channel: Nom du canal
            data: Charge utile JSON-sérialisable

        Raises:
            Exception: Si toutes les tentatives échouent
        """
        message_id = str(uuid.uuid4())
        envelope = {
            "id": message_id,
            "subject": channel,
            "timestamp": datetime.now(UTC).isoformat(),
            "data": data,
        }
        span_attributes = {
            "messaging.system": "redis",
            "messaging.destination": channel,
            "messaging.message.id": message_id,
        }

        with tracer.start_as_current_span(
            f"publish.{channel}", kind=trace.SpanKind.PRODUCER, attributes=span_attributes
        ) as span:
            try:
                receivers = await self._publish_raw(channel, json.dumps(envelope, default=str))
                span.set_attribute("messaging.receivers", receivers)
                logger.debug(f"Message publié sur '{channel}' avec ID: {message_id}")
            except Exception as e:
                error_msg = f"Échec définitif publication '{channel}': {e}"
                logger.error(error_msg, exc_info=True)
                span.set_status(Status(StatusCode.ERROR, error_msg))
                span.record_exception(e)
                raise

    async def subscribe(
        self,
        channel: str,
        handler: RealtimeHandler,
        row_filter: Filter | None = None,
        event_types: frozenset[str] = frozenset(),
    ) -> Subscription:
        subscription = Subscription(channel, handler, row_filter, event_types)
        async with self._lock:
            is_new_channel = channel not in self._subscriptions
            self._subscriptions.setdefault(channel, []).append(subscription)
            if is_new_channel and self._pubsub is not None:
                await self._pubsub.subscribe(channel)
                logger.info(f"Abonné au canal Redis: {channel}")
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        async with self._lock:
            channel_subs = self._subscriptions.get(subscription.channel, [])
            if subscription not in channel_subs:
                return
            channel_subs.remove(subscription)
            if not channel_subs:
                del self._subscriptions[subscription.channel]
                if self._pubsub is not None:
                    await self._pubsub.unsubscribe(subscription.channel)
                    logger.info(f"Désabonné du canal Redis: {subscription.channel}")

    async def dispatch(self, channel: str, raw: str) -> None:
        """Décode une enveloppe et exécute les handlers abonnés au canal."""
        try:
            envelope = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Erreur décodage JSON pour '{channel}': {e}")
            return

        data = envelope.get("data", {})
        span_attributes = {
            "messaging.system": "redis",
            "messaging.destination": channel,
            "messaging.message.id": envelope.get("id") or "",
        }

        with tracer.start_as_current_span(
            f"consume.{channel}", kind=trace.SpanKind.CONSUMER, attributes=span_attributes
        ) as span:
            handlers_executed = 0
            handlers_failed = 0
            for subscription in list(self._subscriptions.get(channel, [])):
                if not subscription.accepts(data):
                    continue
                try:
                    await subscription.handler(data)
                    handlers_executed += 1
                except Exception as e:
                    handlers_failed += 1
                    handler_name = getattr(subscription.handler, "__name__", subscription.id)
                    logger.error(
                        f"Erreur handler '{handler_name}' "
                        f"pour '{channel}': {e}",
                        exc_info=True,
                    )
                    span.record_exception(e)

            span.set_attributes(
                {"handlers.executed": handlers_executed, "handlers.failed": handlers_failed}
            )

    async def consume_messages(self) -> None:
        """
        Boucle de consommation Redis Pub/Sub.

        Utilise ``get_message`` avec timeout plutôt que ``listen()`` afin de
        rester active lorsque tous les canaux sont momentanément fermés.
        """
        try:
            while True:
                if self._pubsub is None or not self._pubsub.subscribed:
                    await asyncio.sleep(0.5)
                    continue
                message = await self._pubsub.get_message(timeout=1.0)
                if message and message.get("type") == "message":
                    await self.dispatch(message["channel"], message["data"])
        except asyncio.CancelledError:
            logger.info("Consommation Redis annulée")
            raise

    async def start_consuming(self) -> None:
        """Démarre la consommation d'événements Redis."""
        self._consumer_task = asyncio.create_task(
            self.consume_messages(), name="redis_realtime_consumer"
        )
        logger.info(f"Consommation Redis démarrée pour {len(self._subscriptions)} canal(aux)")

    async def stop_consuming(self) -> None:
        """Arrête la consommation d'événements Redis."""
        if self._consumer_task and not self._consumer_task.done():
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass
            logger.info("Consommation Redis arrêtée")
        self._consumer_task = None


# Bus global (créé au chargement, connecté dans le lifespan)
bus = RedisRealtimeBus()


def subscribe(
    channel: str,
    row_filter: str | None = None,
    event_types: frozenset[str] = frozenset(),
):
    """Décorateur pour enregistrer un handler statique sur un canal.

    Args:
        channel: Nom du canal (ex: ``realtime:user_activity_logs``)
        row_filter: Filtre optionnel au format ``column=eq.value``
        event_types: Types d'événement acceptés, tous si vide
    """
    parsed = parse_filter(row_filter) if row_filter else None

    def decorator(func: RealtimeHandler) -> RealtimeHandler:
        static_subscriptions.append((channel, func, parsed, event_types))
        logger.info(f"Handler '{func.__name__}' enregistré pour '{channel}'")
        return func

    return decorator


def get_bus() -> RealtimeBusInterface:
    """Retourne le bus temps réel pour injection de dépendance."""
    return bus


# Lifespan pour FastAPI
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Gestionnaire de cycle de vie FastAPI pour le bus temps réel."""
    await bus.connect()
    for channel, handler, row_filter, event_types in static_subscriptions:
        await bus.subscribe(channel, handler, row_filter, event_types)
    await bus.start_consuming()
    app.state.realtime_bus = bus
    logger.info(f"Bus temps réel initialisé (URL: {settings.REDIS_URL})")

    yield

    await bus.close()
    logger.info("Bus temps réel arrêté proprement")


__all__ = ["RedisRealtimeBus", "bus", "get_bus", "lifespan", "subscribe"]
