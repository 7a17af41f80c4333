"""Service des donnees financieres d'un hopital."""

import logging
from collections.abc import Sequence
from datetime import UTC, date, datetime

from opentelemetry import trace

from app.core.config import settings
from app.core.exceptions import ResourceNotFoundError
from app.infrastructure.supabase import SupabaseClient
from app.infrastructure.supabase.filters import eq, is_
from app.schemas.hospital import (
    FinancialAlert,
    FinancialRecord,
    FinancialRecordCreate,
    FinancialSummary,
)
from app.services.remote import degrade_on_remote_error, remote_errors

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

FINANCIAL_TABLE = "hospital_financial_data"
ALERTS_TABLE = "financial_alerts"


def fiscal_month(day: date) -> str:
    return day.strftime("%Y-%m")


@degrade_on_remote_error()
async def fetch_financial_data(client: SupabaseClient, hospital_id: str) -> list[FinancialRecord]:
    """Dernieres transactions, la plus recente d'abord."""
    rows = await client.select(
        FINANCIAL_TABLE,
        "*",
        [eq("hospital_id", hospital_id)],
        order="transaction_date.desc",
        limit=settings.DASHBOARD_ROW_LIMIT,
    )
    return [FinancialRecord.model_validate(row) for row in rows]


@degrade_on_remote_error()
async def fetch_financial_alerts(client: SupabaseClient, hospital_id: str) -> list[FinancialAlert]:
    """Alertes financieres non resolues."""
    rows = await client.select(
        ALERTS_TABLE,
        "*",
        [eq("hospital_id", hospital_id), is_("is_resolved", False)],
        order="created_at.desc",
    )
    return [FinancialAlert.model_validate(row) for row in rows]


async def add_transaction(
    client: SupabaseClient, hospital_id: str, transaction: FinancialRecordCreate
) -> FinancialRecord:
    """
    Enregistre une transaction; ``fiscal_month`` est derive de sa date.

    Raises:
        RemoteServiceError: Si l'insertion echoue
    """
    with tracer.start_as_current_span("add_financial_transaction") as span:
        span.set_attribute("hospital.id", hospital_id)
        span.set_attribute("transaction.type", transaction.transaction_type)
        with remote_errors("add transaction"):
            rows = await client.insert(
                FINANCIAL_TABLE,
                {
                    **transaction.model_dump(mode="json"),
                    "hospital_id": hospital_id,
                    "fiscal_month": fiscal_month(transaction.transaction_date),
                },
            )
    logger.info(
        f"{transaction.transaction_type} of {transaction.amount} recorded for {hospital_id}"
    )
    return FinancialRecord.model_validate(rows[0])


async def resolve_financial_alert(
    client: SupabaseClient,
    hospital_id: str,
    alert_id: str,
    resolved_by: str | None = None,
    now: datetime | None = None,
) -> FinancialAlert:
    """
    Marque une alerte financiere comme resolue.

    Raises:
        ResourceNotFoundError: Si l'alerte n'existe pas dans cet hopital
        RemoteServiceError: Si la mise a jour echoue
    """
    now = now or datetime.now(UTC)
    with remote_errors("resolve financial alert"):
        rows = await client.update(
            ALERTS_TABLE,
            {"is_resolved": True, "resolved_at": now.isoformat(), "resolved_by": resolved_by},
            [eq("id", alert_id), eq("hospital_id", hospital_id)],
        )
    if not rows:
        raise ResourceNotFoundError("Financial alert", alert_id)
    return FinancialAlert.model_validate(rows[0])


def financial_summary(
    records: Sequence[FinancialRecord],
    alerts: Sequence[FinancialAlert],
    today: date | None = None,
) -> FinancialSummary:
    """Revenus, depenses et resultat net du mois fiscal courant."""
    current_month = fiscal_month(today or datetime.now(UTC).date())
    monthly = [record for record in records if record.fiscal_month == current_month]
    revenue = sum(record.amount for record in monthly if record.transaction_type == "revenue")
    expenses = sum(record.amount for record in monthly if record.transaction_type == "expense")
    return FinancialSummary(
        total_revenue=revenue,
        total_expenses=expenses,
        net_income=revenue - expenses,
        transaction_count=len(monthly),
        alert_count=len(alerts),
    )
