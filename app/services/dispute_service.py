"""Service des litiges financiers."""

import logging
from datetime import UTC, datetime

from opentelemetry import trace

from app.core.exceptions import ResourceNotFoundError
from app.infrastructure.supabase import SupabaseClient
from app.infrastructure.supabase.filters import eq
from app.schemas.admin import DisputeResolution, FinancialDispute
from app.services.audit_service import log_admin_action
from app.services.remote import degrade_on_remote_error, remote_errors

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

DISPUTES_TABLE = "financial_disputes"
DISPUTE_COLUMNS = (
    "*, "
    "user:profiles!financial_disputes_user_id_fkey(first_name, last_name, email), "
    "resolver:profiles!financial_disputes_resolved_by_fkey(first_name, last_name)"
)


@degrade_on_remote_error()
async def fetch_disputes(client: SupabaseClient) -> list[FinancialDispute]:
    """Litiges avec l'utilisateur et l'admin resolveur, les plus recents d'abord."""
    rows = await client.select(DISPUTES_TABLE, DISPUTE_COLUMNS, order="created_at.desc")
    return [FinancialDispute.model_validate(row) for row in rows]


async def resolve_dispute(
    client: SupabaseClient,
    dispute_id: str,
    resolution: DisputeResolution,
    notes: str = "",
    admin_id: str | None = None,
    now: datetime | None = None,
) -> FinancialDispute:
    """
    Resout ou rejette un litige puis trace l'action.

    Raises:
        ResourceNotFoundError: Si le litige n'existe pas
        RemoteServiceError: Si la mise a jour echoue
    """
    now = now or datetime.now(UTC)

    with tracer.start_as_current_span("resolve_dispute") as span:
        span.set_attribute("dispute.id", dispute_id)
        span.set_attribute("dispute.resolution", resolution)

        with remote_errors("resolve dispute"):
            rows = await client.update(
                DISPUTES_TABLE,
                {
                    "status": resolution,
                    "resolution_notes": notes,
                    "resolved_by": admin_id,
                    "resolved_at": now.isoformat(),
                },
                [eq("id", dispute_id)],
            )

        if not rows:
            raise ResourceNotFoundError("Financial dispute", dispute_id)

        logger.info(f"Dispute {dispute_id} marked {resolution}")
        await log_admin_action(
            client,
            "financial_dispute_resolution",
            admin_id=admin_id,
            target_resource_type="financial_dispute",
            target_resource_id=dispute_id,
            details={"resolution": resolution, "notes": notes},
        )
        return FinancialDispute.model_validate(rows[0])
