"""Service des plannings et de la presence du personnel hospitalier."""

import logging
from datetime import UTC, date, datetime

from opentelemetry import trace

from app.core.exceptions import ResourceNotFoundError, ValidationError
from app.infrastructure.supabase import SupabaseClient
from app.infrastructure.supabase.filters import eq, gte, in_, lte
from app.schemas.hospital import (
    AttendanceAction,
    AttendanceRecord,
    StaffSchedule,
    StaffScheduleCreate,
    StaffScheduleUpdate,
)
from app.services.profile_lookup import display_name, fetch_profiles_by_ids
from app.services.remote import degrade_on_remote_error, remote_errors

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

SCHEDULES_TABLE = "staff_schedules"
ATTENDANCE_TABLE = "staff_attendance"


def _with_staff(row: dict, profiles: dict[str, dict]) -> dict:
    profile = profiles.get(row.get("staff_id"))
    return {
        **row,
        "staff_name": display_name(profile, "Unknown Staff"),
        "staff_role": (profile or {}).get("role") or "staff",
    }


@degrade_on_remote_error()
async def fetch_schedules(
    client: SupabaseClient,
    hospital_id: str,
    start_date: date,
    end_date: date | None = None,
) -> list[StaffSchedule]:
    """
    Plannings qui chevauchent ``[start_date, end_date]``, tries par heure de debut.

    Un seul jour est interroge quand ``end_date`` est omis.
    """
    end_date = end_date or start_date
    with tracer.start_as_current_span("fetch_staff_schedules") as span:
        span.set_attribute("hospital.id", hospital_id)
        rows = await client.select(
            SCHEDULES_TABLE,
            "*",
            [
                eq("hospital_id", hospital_id),
                lte("start_date", end_date.isoformat()),
                gte("end_date", start_date.isoformat()),
            ],
            order="start_time.asc",
        )
        profiles = await fetch_profiles_by_ids(client, (row.get("staff_id") for row in rows))
    return [StaffSchedule.model_validate(_with_staff(row, profiles)) for row in rows]


async def create_schedule(
    client: SupabaseClient, hospital_id: str, schedule: StaffScheduleCreate
) -> StaffSchedule:
    """
    Cree un planning.

    Raises:
        ValidationError: Si la date de fin precede la date de debut
        RemoteServiceError: Si l'insertion echoue
    """
    if schedule.end_date < schedule.start_date:
        raise ValidationError(detail="end_date must not precede start_date")

    with tracer.start_as_current_span("create_staff_schedule") as span:
        span.set_attribute("hospital.id", hospital_id)
        with remote_errors("create schedule"):
            rows = await client.insert(
                SCHEDULES_TABLE,
                {
                    **schedule.model_dump(mode="json"),
                    "hospital_id": hospital_id,
                    "status": "scheduled",
                },
            )
    logger.info(f"Schedule created for staff {schedule.staff_id} in hospital {hospital_id}")
    return StaffSchedule.model_validate(rows[0])


async def update_schedule(
    client: SupabaseClient, hospital_id: str, schedule_id: str, changes: StaffScheduleUpdate
) -> StaffSchedule:
    """
    Met a jour les champs fournis d'un planning.

    Raises:
        ValidationError: Si aucun champ n'est fourni
        ResourceNotFoundError: Si le planning n'existe pas dans cet hopital
        RemoteServiceError: Si la mise a jour echoue
    """
    values = changes.model_dump(mode="json", exclude_unset=True)
    if not values:
        raise ValidationError(detail="No schedule field to update")

    with remote_errors("update schedule"):
        rows = await client.update(
            SCHEDULES_TABLE, values, [eq("id", schedule_id), eq("hospital_id", hospital_id)]
        )
    if not rows:
        raise ResourceNotFoundError("Schedule", schedule_id)
    return StaffSchedule.model_validate(rows[0])


@degrade_on_remote_error()
async def fetch_attendance(
    client: SupabaseClient, hospital_id: str, day: date
) -> list[AttendanceRecord]:
    """Presence du personnel pour les plannings du jour."""
    schedules = await client.select(
        SCHEDULES_TABLE,
        "id",
        [
            eq("hospital_id", hospital_id),
            lte("start_date", day.isoformat()),
            gte("end_date", day.isoformat()),
        ],
    )
    if not schedules:
        return []
    rows = await client.select(
        ATTENDANCE_TABLE, "*", [in_("schedule_id", [schedule["id"] for schedule in schedules])]
    )
    profiles = await fetch_profiles_by_ids(client, (row.get("staff_id") for row in rows))
    return [AttendanceRecord.model_validate(_with_staff(row, profiles)) for row in rows]


async def mark_attendance(
    client: SupabaseClient,
    schedule_id: str,
    staff_id: str,
    action: AttendanceAction,
    now: datetime | None = None,
) -> AttendanceRecord:
    """
    Pointe l'arrivee ou le depart d'un membre du personnel.

    Met a jour la ligne de presence (planning, membre) si elle existe,
    l'insere sinon.

    Raises:
        RemoteServiceError: Si l'ecriture echoue
    """
    now = now or datetime.now(UTC)
    if action == "check_in":
        values = {"check_in_time": now.isoformat(), "status": "checked_in"}
    else:
        values = {"check_out_time": now.isoformat(), "status": "checked_out"}

    with tracer.start_as_current_span("mark_attendance") as span:
        span.set_attribute("attendance.schedule_id", schedule_id)
        span.set_attribute("attendance.action", action)

        with remote_errors("mark attendance"):
            existing = await client.select_one(
                ATTENDANCE_TABLE,
                "id",
                [eq("schedule_id", schedule_id), eq("staff_id", staff_id)],
            )
            if existing:
                rows = await client.update(ATTENDANCE_TABLE, values, [eq("id", existing["id"])])
            else:
                rows = await client.insert(
                    ATTENDANCE_TABLE, {"schedule_id": schedule_id, "staff_id": staff_id, **values}
                )

    logger.info(f"Staff {staff_id} {action} on schedule {schedule_id}")
    return AttendanceRecord.model_validate(rows[0])
