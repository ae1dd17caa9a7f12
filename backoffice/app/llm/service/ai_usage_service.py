"""AI usage reporting.

Aggregates ai_usage_records over an inclusive date range. Days are calendar
days in the configured timezone; the range defaults to the current month up
to today.
"""

from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.llm.crud.crud_llm_provider import ai_usage_dao
from backoffice.app.llm.schema.ai_usage import (
    AiUsageByModel,
    AiUsageByTenant,
    AiUsageDay,
    AiUsagePeriod,
    AiUsageTotals,
    GetAiUsageReport,
)
from backoffice.common.exception import errors
from backoffice.utils.timezone import timezone

MAX_REPORT_DAYS = 366


def _usage(row: Any) -> dict[str, Any]:
    input_tokens = int(row.input_tokens or 0)
    output_tokens = int(row.output_tokens or 0)
    return {
        'requests': int(row.requests or 0),
        'input_tokens': input_tokens,
        'output_tokens': output_tokens,
        'total_tokens': input_tokens + output_tokens,
        'cost_usd': float(Decimal(str(row.cost or 0)).quantize(Decimal('0.000001'), rounding=ROUND_HALF_UP)),
    }


def report_window(start_date: date | None, end_date: date | None) -> tuple[date, date]:
    """Resolve the requested dates to an inclusive (start, end) pair.

    Args:
        start_date: First day, defaults to the first day of the current month
        end_date: Last day, defaults to today

    Returns:
        (start, end) dates

    Raises:
        UnprocessableError: end before start, or a range longer than MAX_REPORT_DAYS
    """
    today = timezone.now().date()
    start = start_date or today.replace(day=1)
    end = end_date or today
    if end < start:
        raise errors.UnprocessableError(msg='end_date must be on or after start_date')
    if (end - start).days >= MAX_REPORT_DAYS:
        raise errors.UnprocessableError(msg=f'Reports cover at most {MAX_REPORT_DAYS} days')
    return start, end


def _day_start(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=timezone.tz_info)


class AiUsageService:
    """Usage reports for the admin panel."""

    @staticmethod
    async def get_report(
        db: AsyncSession,
        start_date: date | None = None,
        end_date: date | None = None,
        tenant_id: str | None = None,
    ) -> GetAiUsageReport:
        start, end = report_window(start_date, end_date)
        since, until = _day_start(start), _day_start(end + timedelta(days=1))

        totals = await ai_usage_dao.get_report_totals(db, since, until, tenant_id)
        by_model = await ai_usage_dao.get_report_by_model(db, since, until, tenant_id)
        by_tenant = await ai_usage_dao.get_report_by_tenant(db, since, until, tenant_id)
        daily = await ai_usage_dao.get_report_daily(db, since, until, tenant_id)

        return GetAiUsageReport(
            period=AiUsagePeriod(start=start, end=end),
            totals=AiUsageTotals(**_usage(totals)),
            by_model=[AiUsageByModel(model=row.model, **_usage(row)) for row in by_model],
            by_tenant=[
                AiUsageByTenant(tenant_id=row.tenant_id, tenant_name=row.tenant_name, **_usage(row)) for row in by_tenant
            ],
            daily=[AiUsageDay(date=row.day, **_usage(row)) for row in daily],
        )


ai_usage_service: AiUsageService = AiUsageService()
