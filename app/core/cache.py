"""
Module de cache Redis pour core-consultation-admin.

Strategie Cache-Aside (Lazy Loading) avec TTL-only invalidation.
Les erreurs cache ne cassent jamais l'application (graceful degradation).

Usage:
    from app.core.cache import cache_get, cache_set, cache_key_system_analytics

    # Lecture cache
    cached = await cache_get(cache_key_system_analytics())
    if cached:
        return SystemAnalytics.model_validate_json(cached)

    # Ecriture cache
    await cache_set(cache_key_system_analytics(), response.model_dump_json(), ttl=60)
"""

import logging
import time

from opentelemetry import metrics

from app.core.config import settings

logger = logging.getLogger(__name__)

# OpenTelemetry Metrics
meter = metrics.get_meter("core-consultation-admin.cache")

cache_hits_counter = meter.create_counter(
    name="cache_hits_total",
    description="Total number of cache hits",
    unit="1",
)

cache_misses_counter = meter.create_counter(
    name="cache_misses_total",
    description="Total number of cache misses",
    unit="1",
)

cache_latency_histogram = meter.create_histogram(
    name="cache_latency_seconds",
    description="Cache operation latency in seconds",
    unit="s",
)


def _get_redis_client():
    """
    Recupere le client Redis du bus temps reel.

    Returns:
        Client Redis ou None si non initialise
    """
    from app.core.realtime import bus

    return bus.redis_client


def _extract_key_prefix(key: str) -> str:
    """Extrait le prefix de la cle pour les labels de metriques."""
    parts = key.split(":")
    if len(parts) >= 2:
        return parts[1]  # admin:activity:recent -> activity
    return "unknown"


def _available_client():
    """Retourne le client Redis si le cache est actif et initialise, sinon None."""
    if not settings.CACHE_ENABLED:
        return None
    redis_client = _get_redis_client()
    if not redis_client:
        logger.warning("Redis client non initialise, cache desactive")
    return redis_client


def _record_latency(operation: str, key_prefix: str, start_time: float) -> None:
    cache_latency_histogram.record(
        time.perf_counter() - start_time, {"operation": operation, "key_prefix": key_prefix}
    )


async def cache_get(key: str) -> str | None:
    """
    Lit une valeur depuis le cache Redis.

    Args:
        key: Cle du cache (ex: "admin:analytics:system")

    Returns:
        Valeur JSON ou None si non trouve/erreur

    Note:
        Les erreurs Redis sont loguees mais ne propagent pas (graceful degradation)
    """
    redis_client = _available_client()
    if redis_client is None:
        return None

    key_prefix = _extract_key_prefix(key)
    start_time = time.perf_counter()
    try:
        value = await redis_client.get(key)
    except Exception as e:
        # erreur cache = cache miss
        _record_latency("get", "error", start_time)
        cache_misses_counter.add(1, {"key_prefix": "error"})
        logger.warning(f"Cache GET error pour {key}: {e}")
        return None

    _record_latency("get", key_prefix, start_time)
    if not value:
        cache_misses_counter.add(1, {"key_prefix": key_prefix})
        logger.debug(f"Cache MISS: {key}")
        return None

    cache_hits_counter.add(1, {"key_prefix": key_prefix})
    logger.debug(f"Cache HIT: {key}")
    return value


async def cache_set(key: str, value: str, ttl: int | None = None) -> bool:
    """
    Ecrit une valeur dans le cache Redis avec TTL.

    Args:
        key: Cle du cache
        value: Valeur JSON a cacher
        ttl: Time-to-live en secondes (CACHE_TTL_DEFAULT si None)

    Returns:
        True si succes, False sinon
    """
    redis_client = _available_client()
    if redis_client is None:
        return False

    ttl = ttl or settings.CACHE_TTL_DEFAULT
    start_time = time.perf_counter()
    try:
        await redis_client.set(key, value, ex=ttl)
    except Exception as e:
        _record_latency("set", "error", start_time)
        logger.warning(f"Cache SET error pour {key}: {e}")
        return False

    _record_latency("set", _extract_key_prefix(key), start_time)
    logger.debug(f"Cache SET: {key} (TTL: {ttl}s)")
    return True


async def cache_delete(key: str) -> bool:
    """
    Supprime une cle du cache (invalidation sur evenement temps reel).

    Args:
        key: Cle a supprimer

    Returns:
        True si supprime, False sinon
    """
    redis_client = _available_client()
    if redis_client is None:
        return False

    start_time = time.perf_counter()
    try:
        await redis_client.delete(key)
    except Exception as e:
        _record_latency("delete", "error", start_time)
        logger.warning(f"Cache DELETE error pour {key}: {e}")
        return False

    _record_latency("delete", _extract_key_prefix(key), start_time)
    logger.debug(f"Cache DELETE: {key}")
    return True


# =============================================================================
# Cache Key Generators
# =============================================================================


def cache_key_system_analytics() -> str:
    """
    Genere la cle cache pour les compteurs globaux du dashboard admin.

    Returns:
        Cle "admin:analytics:system"
    """
    return "admin:analytics:system"


def cache_key_hospital_analytics(hospital_id: str) -> str:
    """
    Genere la cle cache pour l'analytique d'un hopital.

    Args:
        hospital_id: UUID de l'hopital

    Returns:
        Cle au format "admin:hospital-analytics:{id}"
    """
    return f"admin:hospital-analytics:{hospital_id}"


def cache_key_recent_activity() -> str:
    """
    Genere la cle cache pour le flux d'activite utilisateur recent.

    Returns:
        Cle "admin:activity:recent"
    """
    return "admin:activity:recent"


__all__ = [
    "cache_delete",
    "cache_get",
    "cache_key_hospital_analytics",
    "cache_key_recent_activity",
    "cache_key_system_analytics",
    "cache_set",
]
