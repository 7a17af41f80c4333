"""Service de suivi de la conformite d'un hopital."""

import logging
from collections import Counter
from collections.abc import Sequence
from datetime import UTC, date, datetime

from opentelemetry import trace

from app.core.exceptions import ResourceNotFoundError
from app.infrastructure.supabase import SupabaseClient
from app.infrastructure.supabase.filters import eq, is_
from app.schemas.hospital import (
    ComplianceAlert,
    ComplianceItem,
    ComplianceScore,
    ComplianceStatusUpdate,
    ComplianceSummary,
)
from app.services.remote import degrade_on_remote_error, remote_errors

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

TRACKING_TABLE = "hospital_compliance_tracking"
ALERTS_TABLE = "compliance_alerts"


def _normalize_item(row: dict) -> dict:
    return {
        **row,
        "violations": row.get("violations") if isinstance(row.get("violations"), list) else [],
        "corrective_actions": (
            row.get("corrective_actions") if isinstance(row.get("corrective_actions"), list) else []
        ),
        "assessment_details": row.get("assessment_details") or {},
    }


@degrade_on_remote_error()
async def fetch_compliance_items(client: SupabaseClient, hospital_id: str) -> list[ComplianceItem]:
    """Elements de conformite, derniere evaluation d'abord."""
    rows = await client.select(
        TRACKING_TABLE,
        "*",
        [eq("hospital_id", hospital_id)],
        order="last_assessment_date.desc",
    )
    return [ComplianceItem.model_validate(_normalize_item(row)) for row in rows]


@degrade_on_remote_error()
async def fetch_compliance_alerts(
    client: SupabaseClient, hospital_id: str
) -> list[ComplianceAlert]:
    """Alertes non resolues, les plus recentes d'abord."""
    rows = await client.select(
        ALERTS_TABLE,
        "*",
        [eq("hospital_id", hospital_id), is_("is_resolved", False)],
        order="created_at.desc",
    )
    return [ComplianceAlert.model_validate(row) for row in rows]


async def update_compliance_status(
    client: SupabaseClient,
    hospital_id: str,
    compliance_id: str,
    update: ComplianceStatusUpdate,
    assessed_by: str | None = None,
    today: date | None = None,
) -> ComplianceItem:
    """
    Enregistre une nouvelle evaluation (statut, date du jour, evaluateur).

    Score, violations et actions correctives ne sont ecrits que s'ils sont fournis.

    Raises:
        ResourceNotFoundError: Si l'element n'existe pas dans cet hopital
        RemoteServiceError: Si la mise a jour echoue
    """
    today = today or datetime.now(UTC).date()
    values = {
        "status": update.status,
        "last_assessment_date": today.isoformat(),
        "assessed_by": assessed_by,
    }
    if update.score is not None:
        values["score"] = update.score
    if update.violations is not None:
        values["violations"] = update.violations
    if update.corrective_actions is not None:
        values["corrective_actions"] = update.corrective_actions

    with tracer.start_as_current_span("update_compliance_status") as span:
        span.set_attribute("compliance.id", compliance_id)
        span.set_attribute("compliance.status", update.status)
        with remote_errors("update compliance status"):
            rows = await client.update(
                TRACKING_TABLE, values, [eq("id", compliance_id), eq("hospital_id", hospital_id)]
            )

    if not rows:
        raise ResourceNotFoundError("Compliance item", compliance_id)
    return ComplianceItem.model_validate(_normalize_item(rows[0]))


async def resolve_compliance_alert(
    client: SupabaseClient,
    hospital_id: str,
    alert_id: str,
    resolved_by: str | None = None,
    now: datetime | None = None,
) -> ComplianceAlert:
    """
    Marque une alerte comme resolue.

    Raises:
        ResourceNotFoundError: Si l'alerte n'existe pas dans cet hopital
        RemoteServiceError: Si la mise a jour echoue
    """
    now = now or datetime.now(UTC)
    with remote_errors("resolve compliance alert"):
        rows = await client.update(
            ALERTS_TABLE,
            {"is_resolved": True, "resolved_at": now.isoformat(), "resolved_by": resolved_by},
            [eq("id", alert_id), eq("hospital_id", hospital_id)],
        )
    if not rows:
        raise ResourceNotFoundError("Compliance alert", alert_id)
    logger.info(f"Compliance alert {alert_id} resolved")
    return ComplianceAlert.model_validate(rows[0])


async def calculate_compliance_score(client: SupabaseClient, hospital_id: str) -> ComplianceScore:
    """
    Score global calcule cote serveur (0 si le RPC ne renvoie rien).

    Raises:
        RemoteServiceError: Si le RPC echoue
    """
    with remote_errors("calculate compliance score"):
        score = await client.rpc(
            "calculate_hospital_compliance_score", {"hospital_uuid": hospital_id}
        )
    return ComplianceScore(hospital_id=hospital_id, score=float(score or 0))


def compliance_summary(
    items: Sequence[ComplianceItem], alerts: Sequence[ComplianceAlert]
) -> ComplianceSummary:
    """Comptes par statut, score moyen arrondi, total et nombre d'alertes."""
    statuses = Counter(item.status for item in items)
    scores = [item.score for item in items if item.score is not None]
    return ComplianceSummary(
        compliant=statuses.get("compliant", 0),
        non_compliant=statuses.get("non_compliant", 0),
        pending=statuses.get("pending", 0),
        average_score=round(sum(scores) / len(scores)) if scores else 0,
        total_items=len(items),
        alert_count=len(alerts),
    )
