"""Tests unitaires de la récupération et du contrôle de santé des sessions."""

import pytest

from app.core.exceptions import RecoveryFailedError, SessionNotFoundError
from app.schemas.consultation import RecoveryStatus
from app.services.session_recovery import (
    ROOMS_TABLE,
    attempt_recovery,
    check_session_health,
    recover_session,
    room_token,
)
from tests.fakes import FakeStore


def _store(status: str = "in_progress", session_type: str = "video", rooms=None) -> FakeStore:
    return FakeStore(
        {
            "consultation_sessions": [
                {
                    "id": "session-1",
                    "patient_id": "patient-1",
                    "physician_id": "physician-1",
                    "status": status,
                    "session_type": session_type,
                }
            ],
            ROOMS_TABLE: rooms or [],
        }
    )


class TestAttemptRecovery:
    """Tests de la réparation des sessions incohérentes."""

    @pytest.mark.asyncio
    async def test_in_progress_without_room_gets_active_room(self, no_sleep):
        """Une session en cours sans salle obtient une salle active."""
        store = _store("in_progress")

        result = await attempt_recovery(store, "session-1", "physician-1", sleep=no_sleep)

        assert result.status == RecoveryStatus.RECOVERED
        assert result.actions == ["created_room:active"]
        rooms = store.tables[ROOMS_TABLE]
        assert len(rooms) == 1
        assert rooms[0]["room_token"] == "room_session-1"
        assert rooms[0]["room_status"] == "active"

    @pytest.mark.asyncio
    async def test_scheduled_video_gets_waiting_room(self, no_sleep):
        store = _store("scheduled", "video")

        result = await attempt_recovery(store, "session-1", sleep=no_sleep)

        assert result.status == RecoveryStatus.RECOVERED
        assert store.tables[ROOMS_TABLE][0]["room_status"] == "waiting"

    @pytest.mark.asyncio
    async def test_scheduled_chat_needs_no_room(self, no_sleep):
        store = _store("scheduled", "chat")

        result = await attempt_recovery(store, "session-1", sleep=no_sleep)

        assert result.status == RecoveryStatus.HEALTHY
        assert store.tables[ROOMS_TABLE] == []

    @pytest.mark.asyncio
    async def test_recovery_is_idempotent(self, no_sleep):
        """Deux récupérations successives ne créent pas de salle en double."""
        store = _store("in_progress")

        first = await attempt_recovery(store, "session-1", sleep=no_sleep)
        second = await attempt_recovery(store, "session-1", sleep=no_sleep)

        assert first.status == RecoveryStatus.RECOVERED
        assert second.status == RecoveryStatus.HEALTHY
        assert len(store.tables[ROOMS_TABLE]) == 1

    @pytest.mark.asyncio
    async def test_recovery_is_recorded_as_metric(self, no_sleep):
        store = _store("in_progress")

        await attempt_recovery(store, "session-1", "physician-1", sleep=no_sleep)

        metric = store.tables["performance_metrics"][0]
        assert metric["metric_type"] == "session_recovery"
        assert metric["user_id"] == "physician-1"

    @pytest.mark.asyncio
    async def test_healthy_session_records_no_metric(self, no_sleep):
        store = _store("in_progress", rooms=[{"id": "room-1", "session_id": "session-1"}])

        result = await attempt_recovery(store, "session-1", sleep=no_sleep)

        assert result.status == RecoveryStatus.HEALTHY
        assert "performance_metrics" not in store.tables

    @pytest.mark.asyncio
    async def test_failed_recovery_records_no_metric(self, no_sleep):
        store = _store("in_progress")
        store.fail_on.add(("insert", ROOMS_TABLE))

        result = await attempt_recovery(store, "session-1", max_retries=3, sleep=no_sleep)

        assert result.status == RecoveryStatus.FAILED
        assert "performance_metrics" not in store.tables

    @pytest.mark.asyncio
    async def test_metric_failure_does_not_fail_recovery(self, no_sleep):
        store = _store("in_progress")
        store.fail_on.add(("insert", "performance_metrics"))

        result = await attempt_recovery(store, "session-1", sleep=no_sleep)

        assert result.status == RecoveryStatus.RECOVERED

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried_with_backoff(self, no_sleep):
        """Les erreurs distantes sont rejouées avec des délais croissants bornés."""
        store = _store("in_progress")
        store.fail_on.add(("select_one", "consultation_sessions"))

        result = await attempt_recovery(
            store,
            "session-1",
            max_retries=4,
            retry_delay=2.0,
            max_delay=5.0,
            sleep=no_sleep,
        )

        assert result.status == RecoveryStatus.FAILED
        assert result.attempts == 4
        assert result.error is not None
        assert no_sleep.delays == [2.0, 4.0, 5.0]

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self, no_sleep):
        store = _store("in_progress")
        original = store.select_one
        failures = {"left": 1}

        async def flaky_select_one(table, *args, **kwargs):
            if table == "consultation_sessions" and failures["left"]:
                failures["left"] -= 1
                store.fail_on.add(("select_one", table))
                try:
                    return await original(table, *args, **kwargs)
                finally:
                    store.fail_on.discard(("select_one", table))
            return await original(table, *args, **kwargs)

        store.select_one = flaky_select_one

        result = await attempt_recovery(store, "session-1", sleep=no_sleep)

        assert result.status == RecoveryStatus.RECOVERED
        assert len(store.tables["performance_metrics"]) == 1
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_unknown_session_is_not_retried(self, no_sleep):
        store = _store()

        with pytest.raises(SessionNotFoundError):
            await attempt_recovery(store, "missing", sleep=no_sleep)
        assert no_sleep.delays == []


class TestRecoverSession:
    @pytest.mark.asyncio
    async def test_terminal_failure_raises(self, no_sleep):
        """L'échec terminal est une erreur typée, pas une récursion."""
        store = _store()
        store.fail_on.add(("select_one", "consultation_sessions"))

        with pytest.raises(RecoveryFailedError) as exc_info:
            await recover_session(store, "session-1", max_retries=2, sleep=no_sleep)
        assert exc_info.value.attempts == 2
        assert exc_info.value.status == 503


class TestCheckSessionHealth:
    """Tests du contrôle de santé."""

    @pytest.mark.asyncio
    async def test_healthy_with_room(self):
        store = _store(
            "in_progress",
            rooms=[{"id": "room-1", "session_id": "session-1", "room_token": room_token("session-1")}],
        )

        health = await check_session_health(store, "session-1")

        assert health.healthy
        assert health.issues == []

    @pytest.mark.asyncio
    async def test_missing_room(self):
        health = await check_session_health(_store("in_progress"), "session-1")

        assert not health.healthy
        assert health.issues == ["Missing consultation room"]

    @pytest.mark.asyncio
    async def test_completed_video_needs_no_room(self):
        health = await check_session_health(_store("completed"), "session-1")

        assert health.healthy

    @pytest.mark.asyncio
    async def test_unknown_session(self):
        health = await check_session_health(_store(), "missing")

        assert health.issues == ["Session not found"]

    @pytest.mark.asyncio
    async def test_remote_error_is_reported_not_raised(self):
        store = _store()
        store.fail_on.add("select_one")

        health = await check_session_health(store, "session-1")

        assert not health.healthy
        assert health.issues[0].startswith("Health check failed")
