"""Tests unitaires du cycle de vie des sessions de consultation."""

from datetime import UTC, datetime, timedelta

import pytest

from app.core.exceptions import (
    InvalidSessionStateError,
    MissingStartTimeError,
    RemoteServiceError,
    SessionNotFoundError,
    SessionTransitionError,
)
from app.schemas.consultation import ConsultationSession, SessionStatus
from app.services.session_service import (
    SESSIONS_TABLE,
    calculate_session_duration,
    end_session,
    expire_session,
    fetch_session_data,
    format_duration_minutes,
    format_elapsed_seconds,
    get_session,
    start_session,
    validate_transition,
)
from tests.fakes import FakeStore, InMemoryBus

NOW = datetime(2026, 3, 2, 10, 30, tzinfo=UTC)


def _session(**overrides) -> ConsultationSession:
    data = {
        "id": "session-1",
        "patient_id": "patient-1",
        "physician_id": "physician-1",
        "status": "scheduled",
        "consultation_rate": 5000,
    }
    data.update(overrides)
    return ConsultationSession.model_validate(data)


@pytest.fixture
def store_with_session() -> FakeStore:
    store = FakeStore(
        {
            SESSIONS_TABLE: [
                {
                    "id": "session-1",
                    "patient_id": "patient-1",
                    "physician_id": "physician-1",
                    "status": "scheduled",
                    "session_type": "video",
                }
            ],
            "profiles": [
                {"id": "patient-1", "first_name": "Awa", "last_name": "Diop"},
                {
                    "id": "physician-1",
                    "first_name": "Moussa",
                    "last_name": "Ndiaye",
                    "specialization": "Cardiology",
                },
            ],
        }
    )
    store.rpc_results["start_consultation_session_secure"] = True
    store.rpc_results["end_consultation_session_secure"] = True
    store.rpc_results["process_consultation_payment"] = True
    return store


class TestDurationHelpers:
    """Tests des calculs et formats de durée."""

    def test_fifteen_minutes(self):
        """Une session de 15 minutes dure 15 minutes."""
        assert calculate_session_duration(NOW - timedelta(minutes=15), NOW) == 15

    def test_partial_minute_is_floored(self):
        """Les minutes incomplètes sont tronquées."""
        assert calculate_session_duration(NOW - timedelta(seconds=119), NOW) == 1

    def test_duration_never_negative(self):
        """Une fin antérieure au début donne 0."""
        assert calculate_session_duration(NOW, NOW - timedelta(minutes=5)) == 0

    def test_naive_datetimes_are_utc(self):
        """Les dates naïves sont interprétées en UTC."""
        started = datetime(2026, 3, 2, 10, 0)
        assert calculate_session_duration(started, NOW) == 30

    @pytest.mark.parametrize(
        "minutes,expected",
        [(0, "0m"), (45, "45m"), (60, "1h 0m"), (65, "1h 5m"), (135, "2h 15m")],
    )
    def test_format_duration_minutes(self, minutes, expected):
        assert format_duration_minutes(minutes) == expected

    @pytest.mark.parametrize(
        "seconds,expected",
        [(0, "0:00"), (65, "1:05"), (3723, "1:02:03"), (-5, "0:00")],
    )
    def test_format_elapsed_seconds(self, seconds, expected):
        assert format_elapsed_seconds(seconds) == expected


class TestTransitions:
    """Tests de la machine à états monotone."""

    @pytest.mark.parametrize(
        "current,target",
        [
            (SessionStatus.SCHEDULED, SessionStatus.IN_PROGRESS),
            (SessionStatus.SCHEDULED, SessionStatus.EXPIRED),
            (SessionStatus.IN_PROGRESS, SessionStatus.COMPLETED),
        ],
    )
    def test_allowed_transitions(self, current, target):
        validate_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (SessionStatus.COMPLETED, SessionStatus.SCHEDULED),
            (SessionStatus.COMPLETED, SessionStatus.IN_PROGRESS),
            (SessionStatus.IN_PROGRESS, SessionStatus.SCHEDULED),
            (SessionStatus.EXPIRED, SessionStatus.IN_PROGRESS),
            (SessionStatus.SCHEDULED, SessionStatus.COMPLETED),
        ],
    )
    def test_rejected_transitions(self, current, target):
        with pytest.raises(SessionTransitionError) as exc_info:
            validate_transition(current, target, "session-1")
        assert exc_info.value.status == 409


class TestFetchSessionData:
    """Tests du chargement d'une session avec ses participants."""

    @pytest.mark.asyncio
    async def test_session_with_profiles(self, store_with_session):
        """Les profils patient et médecin sont joints à la session."""
        session = await fetch_session_data(store_with_session, "session-1")

        assert session.patient.first_name == "Awa"
        assert session.physician.last_name == "Ndiaye"
        assert session.physician.specialization == "Cardiology"

    @pytest.mark.asyncio
    async def test_missing_profiles_use_defaults(self, store_with_session):
        """Un profil absent est remplacé par les valeurs par défaut."""
        store_with_session.tables["profiles"] = []

        session = await fetch_session_data(store_with_session, "session-1")

        assert session.patient.first_name == "Unknown"
        assert session.physician.first_name == "Unknown"
        assert session.physician.specialization == "General Practice"

    @pytest.mark.asyncio
    async def test_profile_failure_degrades_to_defaults(self, store_with_session):
        """Une erreur distante sur les profils n'empêche pas le chargement."""
        store_with_session.fail_on.add(("select_one", "profiles"))

        session = await fetch_session_data(store_with_session, "session-1")

        assert session.id == "session-1"
        assert session.patient.first_name == "Unknown"

    @pytest.mark.asyncio
    async def test_unknown_session(self, store_with_session):
        with pytest.raises(SessionNotFoundError):
            await fetch_session_data(store_with_session, "missing")

    @pytest.mark.asyncio
    async def test_remote_failure_is_service_unavailable(self, store_with_session):
        """Une panne du backend sur la session devient un 503."""
        store_with_session.fail_on.add(("select_one", SESSIONS_TABLE))

        with pytest.raises(RemoteServiceError) as exc_info:
            await get_session(store_with_session, "session-1")
        assert exc_info.value.status == 503


class TestStartSession:
    """Tests du démarrage d'une session."""

    @pytest.mark.asyncio
    async def test_start_scheduled_session(self, store_with_session):
        """Une session programmée passe en cours avec started_at=now."""
        bus = InMemoryBus()

        started = await start_session(store_with_session, _session(), "physician-1", NOW, bus)

        assert started.status == SessionStatus.IN_PROGRESS
        assert started.started_at == NOW
        assert store_with_session.calls_to("start_consultation_session_secure") == [
            {"session_uuid": "session-1", "user_uuid": "physician-1"}
        ]
        channel, event = bus.published[-1]
        assert channel == f"realtime:{SESSIONS_TABLE}"
        assert event["new"]["status"] == "in_progress"

    @pytest.mark.asyncio
    async def test_rpc_refusal(self, store_with_session):
        """Un RPC qui renvoie false lève InvalidSessionStateError."""
        store_with_session.rpc_results["start_consultation_session_secure"] = False

        with pytest.raises(InvalidSessionStateError) as exc_info:
            await start_session(store_with_session, _session(), "patient-1", NOW)
        assert "unauthorized or invalid state" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_cannot_restart_completed_session(self, store_with_session):
        with pytest.raises(SessionTransitionError):
            await start_session(store_with_session, _session(status="completed"), "p", NOW)
        assert store_with_session.rpc_calls == []


class TestEndSession:
    """Tests de la fin d'une session."""

    @pytest.mark.asyncio
    async def test_fifteen_minute_session(self, store_with_session):
        """Une session démarrée il y a 15 minutes se termine avec duration_minutes=15."""
        session = _session(status="in_progress", started_at=NOW - timedelta(minutes=15))

        completed = await end_session(store_with_session, session, "physician-1", NOW)

        assert completed.status == SessionStatus.COMPLETED
        assert completed.duration_minutes == 15
        assert completed.ended_at == NOW
        row = store_with_session.tables[SESSIONS_TABLE][0]
        assert row["duration_minutes"] == 15

    @pytest.mark.asyncio
    async def test_pending_payment_is_processed(self, store_with_session):
        """Le paiement est déclenché pour une session au paiement en attente."""
        session = _session(status="in_progress", started_at=NOW - timedelta(minutes=20))

        completed = await end_session(store_with_session, session, "physician-1", NOW)

        assert completed.payment_status == "paid"
        assert store_with_session.calls_to("process_consultation_payment") == [
            {
                "session_uuid": "session-1",
                "patient_uuid": "patient-1",
                "physician_uuid": "physician-1",
                "amount": 5000.0,
            }
        ]
        assert store_with_session.unretried == [("rpc", "process_consultation_payment")]

    @pytest.mark.asyncio
    async def test_payment_failure_keeps_session_completed(self, store_with_session):
        """Un échec de paiement ne fait pas échouer la fin de session."""
        store_with_session.fail_on.add(("rpc", "process_consultation_payment"))
        session = _session(status="in_progress", started_at=NOW - timedelta(minutes=20))

        completed = await end_session(store_with_session, session, "physician-1", NOW)

        assert completed.status == SessionStatus.COMPLETED
        assert completed.payment_status == "pending"

    @pytest.mark.asyncio
    async def test_paid_session_skips_payment(self, store_with_session):
        session = _session(
            status="in_progress", started_at=NOW - timedelta(minutes=5), payment_status="paid"
        )

        await end_session(store_with_session, session, "physician-1", NOW)

        assert store_with_session.calls_to("process_consultation_payment") == []

    @pytest.mark.asyncio
    async def test_missing_start_time(self, store_with_session):
        """Une session en cours sans started_at ne peut pas être terminée."""
        session = _session(status="in_progress")

        with pytest.raises(MissingStartTimeError):
            await end_session(store_with_session, session, "physician-1", NOW)
        assert store_with_session.calls_to("end_consultation_session_secure") == []

    @pytest.mark.asyncio
    async def test_cannot_end_scheduled_session(self, store_with_session):
        with pytest.raises(SessionTransitionError):
            await end_session(store_with_session, _session(), "physician-1", NOW)

    @pytest.mark.asyncio
    async def test_rpc_refusal_does_not_persist(self, store_with_session):
        """Un refus du RPC n'écrit ni ended_at ni duration_minutes."""
        store_with_session.rpc_results["end_consultation_session_secure"] = False
        session = _session(status="in_progress", started_at=NOW - timedelta(minutes=15))

        with pytest.raises(InvalidSessionStateError):
            await end_session(store_with_session, session, "physician-1", NOW)
        assert "duration_minutes" not in store_with_session.tables[SESSIONS_TABLE][0]


class TestExpireSession:
    @pytest.mark.asyncio
    async def test_expire_scheduled(self, store_with_session):
        expired = await expire_session(store_with_session, _session())

        assert expired.status == SessionStatus.EXPIRED
        assert store_with_session.tables[SESSIONS_TABLE][0]["status"] == "expired"

    @pytest.mark.asyncio
    async def test_cannot_expire_in_progress(self, store_with_session):
        with pytest.raises(SessionTransitionError):
            await expire_session(store_with_session, _session(status="in_progress"))

    @pytest.mark.asyncio
    async def test_stale_snapshot_of_started_session(self, store_with_session):
        """Une copie locale 'scheduled' perimee n'expire pas une session demarree."""
        store_with_session.tables[SESSIONS_TABLE][0]["status"] = "in_progress"
        bus = InMemoryBus()

        with pytest.raises(InvalidSessionStateError):
            await expire_session(store_with_session, _session(), bus)

        assert store_with_session.tables[SESSIONS_TABLE][0]["status"] == "in_progress"
        assert bus.published == []
