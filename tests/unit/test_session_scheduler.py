"""Tests unitaires de la gestion des sessions programmées."""

from datetime import UTC, datetime, timedelta

import pytest

from app.schemas.consultation import ConsultationSession
from app.services.session_scheduler import (
    SessionScheduler,
    describe_scheduled_session,
    expire_stale_sessions,
    is_session_expired,
    is_session_ready,
    needs_reminder,
    session_availability,
)
from tests.fakes import FakeStore, InMemoryBus

NOW = datetime(2026, 3, 2, 14, 0, tzinfo=UTC)


def _scheduled(created_at: datetime, **overrides) -> ConsultationSession:
    data = {
        "id": "session-1",
        "patient_id": "patient-1",
        "physician_id": "physician-1",
        "status": "scheduled",
        "appointment_id": "appointment-1",
        "created_at": created_at,
    }
    data.update(overrides)
    return ConsultationSession.model_validate(data)


class TestAvailability:
    """Tests des fenêtres de disponibilité (ouverture 10 min avant, expiration 60 min après)."""

    def test_not_ready_long_before(self):
        session = _scheduled(NOW + timedelta(minutes=30))

        assert not is_session_ready(session, NOW)
        assert session_availability(session, NOW) == "not_ready"

    def test_ready_ten_minutes_before(self):
        session = _scheduled(NOW + timedelta(minutes=10))

        assert is_session_ready(session, NOW)
        assert session_availability(session, NOW) == "ready"

    def test_session_without_appointment_always_ready(self):
        session = _scheduled(NOW + timedelta(hours=5), appointment_id=None)

        assert is_session_ready(session, NOW)

    def test_expired_after_sixty_minutes(self):
        session = _scheduled(NOW - timedelta(minutes=61))

        assert is_session_expired(session, NOW)
        assert session_availability(session, NOW) == "expired"

    def test_not_expired_at_fifty_nine_minutes(self):
        assert not is_session_expired(_scheduled(NOW - timedelta(minutes=59)), NOW)

    def test_started_session_never_expires(self):
        session = _scheduled(NOW - timedelta(hours=3), status="in_progress")

        assert not is_session_expired(session, NOW)

    def test_reminder_window(self):
        """Rappel dû quand l'ouverture est dans moins de 5 minutes."""
        assert needs_reminder(_scheduled(NOW + timedelta(minutes=13)), NOW)
        assert not needs_reminder(_scheduled(NOW + timedelta(minutes=20)), NOW)
        assert not needs_reminder(_scheduled(NOW + timedelta(minutes=5)), NOW)

    def test_describe_scheduled_session(self):
        state = describe_scheduled_session(_scheduled(NOW + timedelta(minutes=25)), NOW)

        assert state.minutes_until_start == 15
        assert not state.is_ready
        assert not state.is_expired


class TestExpireStaleSessions:
    """Tests du balayage d'expiration."""

    @pytest.mark.asyncio
    async def test_expires_only_overdue_sessions(self):
        store = FakeStore(
            {
                "consultation_sessions": [
                    {
                        "id": "old",
                        "patient_id": "p",
                        "physician_id": "d",
                        "status": "scheduled",
                        "created_at": (NOW - timedelta(hours=2)).isoformat(),
                    },
                    {
                        "id": "soon",
                        "patient_id": "p",
                        "physician_id": "d",
                        "status": "scheduled",
                        "created_at": (NOW + timedelta(minutes=12)).isoformat(),
                    },
                    {
                        "id": "running",
                        "patient_id": "p",
                        "physician_id": "d",
                        "status": "in_progress",
                        "created_at": (NOW - timedelta(hours=2)).isoformat(),
                    },
                ]
            }
        )
        bus = InMemoryBus()

        result = await expire_stale_sessions(store, now=NOW, bus=bus)

        assert result.expired_session_ids == ["old"]
        assert result.checked == 2
        statuses = {row["id"]: row["status"] for row in store.tables["consultation_sessions"]}
        assert statuses == {"old": "expired", "soon": "scheduled", "running": "in_progress"}
        assert bus.published[0][1]["new"] == {"id": "old", "status": "expired"}

    @pytest.mark.asyncio
    async def test_restricted_to_participant(self):
        store = FakeStore(
            {
                "consultation_sessions": [
                    {
                        "id": "mine",
                        "patient_id": "patient-1",
                        "physician_id": "d",
                        "status": "scheduled",
                        "created_at": (NOW - timedelta(hours=2)).isoformat(),
                    },
                    {
                        "id": "other",
                        "patient_id": "patient-2",
                        "physician_id": "d",
                        "status": "scheduled",
                        "created_at": (NOW - timedelta(hours=2)).isoformat(),
                    },
                ]
            }
        )

        result = await expire_stale_sessions(store, "patient-1", "patient", now=NOW)

        assert result.expired_session_ids == ["mine"]

    @pytest.mark.asyncio
    async def test_update_failure_skips_session(self):
        store = FakeStore(
            {
                "consultation_sessions": [
                    {
                        "id": "old",
                        "patient_id": "p",
                        "physician_id": "d",
                        "status": "scheduled",
                        "created_at": (NOW - timedelta(hours=2)).isoformat(),
                    }
                ]
            }
        )
        store.fail_on.add("update")

        result = await expire_stale_sessions(store, now=NOW)

        assert result.expired_session_ids == []
        assert result.checked == 1

    @pytest.mark.asyncio
    async def test_session_started_during_sweep_is_kept(self):
        """Une session demarree entre la lecture et la mise a jour n'est pas expiree."""
        store = FakeStore(
            {
                "consultation_sessions": [
                    {
                        "id": "old",
                        "patient_id": "p",
                        "physician_id": "d",
                        "status": "scheduled",
                        "created_at": (NOW - timedelta(hours=2)).isoformat(),
                    }
                ]
            }
        )
        original_update = store.update

        async def started_meanwhile(table, values, filters):
            store.tables["consultation_sessions"][0]["status"] = "in_progress"
            return await original_update(table, values, filters)

        store.update = started_meanwhile
        bus = InMemoryBus()

        result = await expire_stale_sessions(store, now=NOW, bus=bus)

        assert result.expired_session_ids == []
        assert store.tables["consultation_sessions"][0]["status"] == "in_progress"
        assert bus.published == []


class TestSessionScheduler:
    @pytest.mark.asyncio
    async def test_run_sweep_swallows_remote_errors(self):
        store = FakeStore()
        store.fail_on.add("select")
        scheduler = SessionScheduler(store, interval_seconds=5)

        assert await scheduler.run_sweep() is None

    @pytest.mark.asyncio
    async def test_start_registers_interval_job(self):
        scheduler = SessionScheduler(FakeStore(), interval_seconds=5)

        scheduler.start()
        try:
            job = scheduler.scheduler.get_job(SessionScheduler.JOB_ID)
            assert job is not None
            assert job.trigger.interval == timedelta(seconds=5)
        finally:
            scheduler.shutdown()
