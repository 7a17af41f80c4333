"""Module de retry avec backoff exponentiel pour opérations asynchrones.

Ce module fournit des décorateurs et utilitaires pour retry automatique
avec backoff exponentiel, utile pour gérer les erreurs transitoires
(connexions réseau perdues, timeouts du backend distant, etc.).

``run_with_bounded_backoff`` renvoie un résultat typé au lieu de lever une
exception une fois les tentatives épuisées, ce qui permet à l'appelant de
décider lui-même du traitement de l'échec terminal.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryOutcome(Generic[T]):
    """
    Résultat d'une opération exécutée avec backoff borné.

    Attributes:
        succeeded: True si une tentative a réussi
        value: Valeur renvoyée par l'opération (None en cas d'échec)
        attempts: Nombre de tentatives effectuées
        error: Dernière exception levée si toutes les tentatives ont échoué
    """

    succeeded: bool
    value: T | None = None
    attempts: int = 0
    error: BaseException | None = None


def async_retry_with_backoff(
    max_attempts: int = 3,
    min_wait_seconds: float = 1,
    max_wait_seconds: float = 10,
    exceptions: tuple[type[Exception], ...] = (Exception,),
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Décorateur pour retry automatique avec backoff exponentiel (async).

    Args:
        max_attempts: Nombre maximum de tentatives (défaut: 3)
        min_wait_seconds: Attente minimale entre tentatives en secondes (défaut: 1)
        max_wait_seconds: Attente maximale entre tentatives en secondes (défaut: 10)
        exceptions: Tuple des exceptions qui déclenchent un retry

    Returns:
        Décorateur de fonction

    Example:
        ```python
        @async_retry_with_backoff(max_attempts=3, min_wait_seconds=2)
        async def push_metric(row: dict):
            await client.insert("performance_metrics", row)
        ```
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        return retry(
            retry=retry_if_exception_type(exceptions),
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(
                min=min_wait_seconds,
                max=max_wait_seconds,
            ),
            before_sleep=_log_retry_attempt,
            reraise=True,
        )(func)

    return decorator


def _log_retry_attempt(retry_state: Any) -> None:
    """
    Logger les tentatives de retry pour observabilité.

    Args:
        retry_state: État de la tentative de retry
    """
    exception = retry_state.outcome.exception()
    name = getattr(retry_state.fn, "__name__", "operation")
    logger.warning(
        f"Retry attempt {retry_state.attempt_number} after {retry_state.seconds_since_start:.2f}s "
        f"for {name} - Exception: {exception}"
    )


async def run_with_bounded_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 16.0,
    exceptions: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RetryOutcome[T]:
    """
    Exécute ``operation`` avec un backoff exponentiel borné.

    Les délais suivent ``initial_delay * 2**(n-1)`` plafonnés à ``max_delay``.
    Les exceptions hors de ``exceptions`` ne sont pas réessayées et se
    propagent telles quelles.

    Args:
        operation: Coroutine sans argument à exécuter
        max_attempts: Nombre maximum de tentatives (>= 1)
        initial_delay: Délai avant la deuxième tentative (secondes)
        max_delay: Plafond du délai entre deux tentatives (secondes)
        exceptions: Exceptions considérées comme transitoires
        sleep: Fonction d'attente (injectable pour les tests)

    Returns:
        RetryOutcome décrivant le succès ou l'échec terminal
    """
    attempts = 0
    retrying = AsyncRetrying(
        retry=retry_if_exception_type(exceptions),
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_exponential(multiplier=initial_delay, min=initial_delay, max=max_delay),
        before_sleep=_log_retry_attempt,
        sleep=sleep,
        reraise=False,
    )

    try:
        async for attempt_state in retrying:
            with attempt_state:
                attempts += 1
                value = await operation()
                return RetryOutcome(succeeded=True, value=value, attempts=attempts)
    except RetryError as e:
        last_error = e.last_attempt.exception()
        logger.error(f"Operation failed after {attempts} attempts: {last_error}")
        return RetryOutcome(succeeded=False, attempts=attempts, error=last_error)

    return RetryOutcome(succeeded=False, attempts=attempts)


__all__ = [
    "RetryOutcome",
    "async_retry_with_backoff",
    "run_with_bounded_backoff",
]
