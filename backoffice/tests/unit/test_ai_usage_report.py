"""Tests for the admin AI usage report.

Tests cover:
- Date range defaults and validation
- Aggregation of totals, models, tenants and days
"""

from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from backoffice.app.llm.service.ai_usage_service import MAX_REPORT_DAYS, ai_usage_service, report_window
from backoffice.common.exception import errors
from backoffice.utils.timezone import timezone

USAGE = 'backoffice.app.llm.service.ai_usage_service'


def usage_row(requests=0, input_tokens=0, output_tokens=0, cost='0', **extra):
    return SimpleNamespace(
        requests=requests, input_tokens=input_tokens, output_tokens=output_tokens, cost=Decimal(cost), **extra
    )


class TestReportWindow:
    """Tests for resolving the report dates."""

    def test_defaults_to_current_month(self):
        """Test no dates means the first of the month through today."""
        today = timezone.now().date()

        assert report_window(None, None) == (today.replace(day=1), today)

    def test_single_day(self):
        """Test start and end may be the same day."""
        day = date(2026, 3, 10)

        assert report_window(day, day) == (day, day)

    def test_end_before_start(self):
        """Test an inverted range is rejected."""
        with pytest.raises(errors.UnprocessableError):
            report_window(date(2026, 3, 10), date(2026, 3, 9))

    def test_range_too_long(self):
        """Test ranges past the maximum length are rejected."""
        start = date(2025, 1, 1)

        report_window(start, start + timedelta(days=MAX_REPORT_DAYS - 1))
        with pytest.raises(errors.UnprocessableError):
            report_window(start, start + timedelta(days=MAX_REPORT_DAYS))


class TestAiUsageReport:
    """Tests for the report aggregation."""

    @pytest.mark.asyncio
    async def test_report_sections(self, mock_db):
        """Test every section is built from its query and tokens are summed."""
        totals = usage_row(3, 1000, 500, '0.0120004')
        by_model = [usage_row(2, 800, 400, '0.01', model='gpt-4o'), usage_row(1, 200, 100, '0.002', model='gpt-4o-mini')]
        by_tenant = [usage_row(3, 1000, 500, '0.012', tenant_id='tenant-1', tenant_name='Acme')]
        daily = [usage_row(3, 1000, 500, '0.012', day=date(2026, 3, 2))]

        with patch(f'{USAGE}.ai_usage_dao.get_report_totals', AsyncMock(return_value=totals)) as mock_totals, \
             patch(f'{USAGE}.ai_usage_dao.get_report_by_model', AsyncMock(return_value=by_model)), \
             patch(f'{USAGE}.ai_usage_dao.get_report_by_tenant', AsyncMock(return_value=by_tenant)), \
             patch(f'{USAGE}.ai_usage_dao.get_report_daily', AsyncMock(return_value=daily)):
            report = await ai_usage_service.get_report(mock_db, date(2026, 3, 1), date(2026, 3, 31), 'tenant-1')

        assert report.period.start == date(2026, 3, 1)
        assert report.totals.total_tokens == 1500
        assert report.totals.cost_usd == 0.012
        assert [m.model for m in report.by_model] == ['gpt-4o', 'gpt-4o-mini']
        assert report.by_tenant[0].tenant_name == 'Acme'
        assert report.daily[0].date == date(2026, 3, 2)

        db, since, until, tenant_id = mock_totals.await_args.args
        assert (since.date(), until.date()) == (date(2026, 3, 1), date(2026, 4, 1))
        assert tenant_id == 'tenant-1'

    @pytest.mark.asyncio
    async def test_empty_period(self, mock_db):
        """Test a period without usage reports zeros instead of failing on NULL sums."""
        empty = usage_row(0, None, None, '0')

        with patch(f'{USAGE}.ai_usage_dao.get_report_totals', AsyncMock(return_value=empty)), \
             patch(f'{USAGE}.ai_usage_dao.get_report_by_model', AsyncMock(return_value=[])), \
             patch(f'{USAGE}.ai_usage_dao.get_report_by_tenant', AsyncMock(return_value=[])), \
             patch(f'{USAGE}.ai_usage_dao.get_report_daily', AsyncMock(return_value=[])):
            report = await ai_usage_service.get_report(mock_db)

        assert report.totals.requests == 0
        assert report.totals.total_tokens == 0
        assert report.by_model == []
