"""Helpers partagés par les services pour les appels au backend distant.

- ``remote_errors``: traduit les erreurs du client distant en problème 503
  pour les mutations
- ``degrade_on_remote_error``: les lectures de dashboard renvoient une valeur
  vide (et loggent un warning) au lieu d'échouer
"""

import functools
import logging
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

from opentelemetry import trace

from app.core.exceptions import RemoteServiceError
from app.infrastructure.supabase import SupabaseError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@contextmanager
def remote_errors(operation: str) -> Iterator[None]:
    """
    Traduit ``SupabaseError`` en ``RemoteServiceError`` (503).

    Example:
        ```python
        with remote_errors("resolve dispute"):
            await client.update("financial_disputes", values, [eq("id", dispute_id)])
        ```
    """
    try:
        yield
    except SupabaseError as e:
        logger.error(f"Remote call failed during '{operation}': {e}")
        span = trace.get_current_span()
        span.record_exception(e)
        raise RemoteServiceError(detail=f"Failed to {operation}") from e


def degrade_on_remote_error(
    default_factory: Callable[[], Any] = list,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Décorateur pour les lectures de dashboard: une panne distante renvoie
    ``default_factory()`` et logge un warning.
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except SupabaseError as e:
                logger.warning(f"{func.__name__} degraded to empty result: {e}")
                return default_factory()

        return wrapper

    return decorator
