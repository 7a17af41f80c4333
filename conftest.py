"""
Configuration pytest.

Les tests n'utilisent aucun service externe: le backend distant et le bus
temps réel sont remplacés par les faux en mémoire de ``tests/fakes.py``.
Les variables d'environnement ci-dessous permettent seulement de charger
``app.core.config.settings``.

Usage:
    pytest
    pytest tests/unit/test_signaling.py -v
"""

import os

import pytest

# Variables d'environnement pour les tests
# Respecte les variables déjà définies (ex: dans GitHub Actions)
TEST_ENV = {
    "SUPABASE_URL": os.getenv("SUPABASE_URL", "http://localhost:54321"),
    "SUPABASE_ANON_KEY": os.getenv("SUPABASE_ANON_KEY", "test-anon-key"),
    "SUPABASE_RETRY_DELAY": os.getenv("SUPABASE_RETRY_DELAY", "0.01"),
    "REDIS_URL": os.getenv("REDIS_URL", "redis://localhost:6380/0"),
    "ENVIRONMENT": os.getenv("ENVIRONMENT", "test"),
    "DEBUG": os.getenv("DEBUG", "false"),
    "SCHEDULER_ENABLED": os.getenv("SCHEDULER_ENABLED", "false"),
    # OpenTelemetry (test mode)
    "OTEL_SERVICE_NAME": os.getenv("OTEL_SERVICE_NAME", "core-consultation-admin-test"),
    "OTEL_EXPORTER_OTLP_ENDPOINT": os.getenv(
        "OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317"
    ),
    "OTEL_EXPORTER_OTLP_PROTOCOL": os.getenv("OTEL_EXPORTER_OTLP_PROTOCOL", "grpc"),
    "OTEL_EXPORTER_OTLP_INSECURE": os.getenv("OTEL_EXPORTER_OTLP_INSECURE", "true"),
    "OTEL_SDK_DISABLED": os.getenv("OTEL_SDK_DISABLED", "true"),
}

# Appliquer les variables d'environnement de test (ne remplace pas si déjà définies)
for key, value in TEST_ENV.items():
    if key not in os.environ:
        os.environ[key] = value


# ============================================================================
# Fixtures partagées
# ============================================================================


@pytest.fixture
def store():
    """Backend distant en mémoire."""
    from tests.fakes import FakeStore

    return FakeStore()


@pytest.fixture
def realtime_bus():
    """Bus temps réel en mémoire (dispatch synchrone)."""
    from tests.fakes import InMemoryBus

    return InMemoryBus()


@pytest.fixture
def no_sleep():
    """Fonction d'attente instantanée qui enregistre les délais demandés."""
    delays: list[float] = []

    async def _sleep(delay: float) -> None:
        delays.append(delay)

    _sleep.delays = delays
    return _sleep
