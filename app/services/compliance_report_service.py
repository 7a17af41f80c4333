"""Service des rapports de conformite.

Un rapport couvre toujours le mois precedant sa generation. Seul le type
``user_activity`` calcule des metriques; les autres types n'enregistrent que
la plage de dates.
"""

import logging
from collections import Counter
from datetime import UTC, datetime, timedelta
from typing import Any

from opentelemetry import trace

from app.infrastructure.supabase import SupabaseClient
from app.infrastructure.supabase.filters import gte, lte
from app.schemas.admin import ComplianceReport, ReportType
from app.services.audit_service import log_admin_action
from app.services.remote import degrade_on_remote_error, remote_errors

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

REPORTS_TABLE = "compliance_reports"
REPORT_PERIOD = timedelta(days=30)


def _report_range(now: datetime) -> tuple[datetime, datetime]:
    """Plage ``[now - 1 mois, now]``."""
    return now - REPORT_PERIOD, now


@degrade_on_remote_error()
async def fetch_reports(client: SupabaseClient) -> list[ComplianceReport]:
    """Rapports generes, les plus recents d'abord."""
    rows = await client.select(REPORTS_TABLE, "*", order="created_at.desc")
    return [ComplianceReport.model_validate(row) for row in rows]


async def _user_activity_metrics(
    client: SupabaseClient, start: datetime, end: datetime
) -> dict[str, Any]:
    rows = await client.select(
        "user_activity_logs",
        "activity_type, created_at",
        [gte("created_at", start.isoformat()), lte("created_at", end.isoformat())],
    )
    breakdown = Counter(row.get("activity_type") or "unknown" for row in rows)
    return {
        "total_activities": len(rows),
        "activity_breakdown": dict(breakdown),
    }


async def generate_report(
    client: SupabaseClient,
    report_type: ReportType,
    generated_by: str | None = None,
    now: datetime | None = None,
) -> ComplianceReport:
    """
    Genere et enregistre un rapport de conformite.

    Args:
        client: Client Supabase
        report_type: Type de rapport
        generated_by: Admin a l'origine du rapport
        now: Instant de generation (injectable pour les tests)

    Returns:
        Le rapport enregistre

    Raises:
        RemoteServiceError: Si le calcul ou l'insertion echoue
    """
    now = now or datetime.now(UTC)
    start, end = _report_range(now)

    with tracer.start_as_current_span("generate_compliance_report") as span:
        span.set_attribute("report.type", report_type)

        with remote_errors("generate compliance report"):
            report_data: dict[str, Any] = {}
            if report_type == "user_activity":
                report_data = await _user_activity_metrics(client, start, end)
            report_data["date_range"] = {"start": start.isoformat(), "end": end.isoformat()}

            rows = await client.insert(
                REPORTS_TABLE,
                {
                    "report_type": report_type,
                    "report_data": report_data,
                    "date_range_start": start.date().isoformat(),
                    "date_range_end": end.date().isoformat(),
                    "generated_by": generated_by,
                },
            )

        report = ComplianceReport.model_validate(rows[0])
        span.set_attribute("report.id", report.id)
        logger.info(f"Compliance report {report.id} ({report_type}) generated")

        await log_admin_action(
            client,
            "compliance_report_generated",
            admin_id=generated_by,
            target_resource_type="compliance_report",
            target_resource_id=report.id,
            details={"report_type": report_type, "report_id": report.id},
        )
        return report
