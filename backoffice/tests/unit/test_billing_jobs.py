"""Tests for the scheduled billing jobs.

Tests cover:
- Reminder threshold selection
- The reminder job and its notifier
- Plan credit replenishment
"""

from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from backoffice.app.billing.model import Invoice
from backoffice.src.billing.credits.replenishment import recently_replenished, replenish_plan_credits_job
from backoffice.src.billing.invoices.reminders import pick_reminder, send_invoice_reminders_job
from backoffice.utils.timezone import timezone

REMINDERS = 'backoffice.src.billing.invoices.reminders'
REPLENISH = 'backoffice.src.billing.credits.replenishment'


def make_invoice(days_until_due, sent=None, now=None):
    now = now or timezone.now()
    invoice = Invoice(tenant_id='tenant-1', amount=Decimal('99.90'), reminder_sent_at=dict(sent or {}))
    invoice.id = f'inv-{days_until_due}'
    invoice.due_date = now + timedelta(days=days_until_due)
    return invoice


def serve_invoices(invoices):
    """Patch the pending list and the per-invoice reload with ``invoices``."""
    by_id = {invoice.id: invoice for invoice in invoices}
    return (
        patch(f'{REMINDERS}.invoice_dao.get_pending_with_due_date', AsyncMock(return_value=list(invoices))),
        patch(f'{REMINDERS}.invoice_dao.select_model', AsyncMock(side_effect=lambda db, pk: by_id.get(pk))),
    )


class TestPickReminder:
    """Tests for reminder threshold selection."""

    def test_too_early(self):
        """Test nothing is sent more than ten days ahead."""
        assert pick_reminder(make_invoice(12), 12) is None

    def test_first_threshold(self):
        """Test ten days ahead sends the 10_days reminder."""
        assert pick_reminder(make_invoice(10), 10) == '10_days'

    def test_first_unsent_threshold_wins(self):
        """Test a missed earlier reminder is sent before the closer one."""
        assert pick_reminder(make_invoice(4), 4) == '10_days'

    def test_next_threshold_after_sent(self):
        """Test thresholds already sent are skipped."""
        assert pick_reminder(make_invoice(4, {'10_days': 'x'}), 4) == '5_days'

    def test_nothing_left_until_next_threshold(self):
        """Test no reminder between thresholds once earlier ones are sent."""
        assert pick_reminder(make_invoice(4, {'10_days': 'x', '5_days': 'x'}), 4) is None

    def test_due_today(self):
        """Test the due-day reminder."""
        sent = {'10_days': 'x', '5_days': 'x', '2_days': 'x'}
        assert pick_reminder(make_invoice(0, sent), 0) == 'due_today'

    def test_overdue_gets_none(self):
        """Test overdue invoices get no reminder."""
        assert pick_reminder(make_invoice(-1), -1) is None


class TestInvoiceRemindersJob:
    """Tests for the reminder job."""

    @pytest.mark.asyncio
    async def test_sends_and_records(self, session_factory):
        """Test due invoices are notified once and the reminder is recorded."""
        now = timezone.now()
        due = make_invoice(5, {'10_days': 'x'}, now=now)
        early = make_invoice(20, now=now)
        owner = SimpleNamespace(email='owner@acme.com')
        notifier = AsyncMock()

        pending, reload = serve_invoices([due, early])
        with pending, reload, \
             patch(f'{REMINDERS}.user_dao.get_tenant_owner', AsyncMock(return_value=owner)):
            stats = await send_invoice_reminders_job(now=now, notifier=notifier, session_factory=session_factory)

        assert stats == {'sent': 1, 'skipped': 1, 'failed': 0}
        notifier.assert_awaited_once()
        args = notifier.await_args.args
        assert args[1:] == (due, owner, '5_days', 5)
        assert due.reminder_sent_at['5_days'] == now.isoformat()
        assert '10_days' in due.reminder_sent_at
        assert early.reminder_sent_at == {}

    @pytest.mark.asyncio
    async def test_default_notifier_writes_execution_log(self, session_factory):
        """Test the default notifier records the reminder in the execution log."""
        now = timezone.now()
        invoice = make_invoice(2, {'10_days': 'x', '5_days': 'x'}, now=now)

        pending, reload = serve_invoices([invoice])
        with pending, reload, \
             patch(f'{REMINDERS}.user_dao.get_tenant_owner', AsyncMock(return_value=None)), \
             patch(f'{REMINDERS}.execution_log_service.info', AsyncMock()) as mock_info:
            await send_invoice_reminders_job(now=now, session_factory=session_factory)

        mock_info.assert_awaited_once()
        assert mock_info.await_args.args[1:3] == ('billing', 'invoice.reminder')
        assert mock_info.await_args.args[3]['reminder'] == '2_days'
        assert mock_info.await_args.kwargs['tenant_id'] == 'tenant-1'

    @pytest.mark.asyncio
    async def test_failed_delivery_does_not_stop_the_run(self, session_factory):
        """Test one failing notification is counted while the other invoices are still reminded."""
        now = timezone.now()
        invoices = [make_invoice(0, now=now), make_invoice(2, now=now), make_invoice(5, now=now)]
        notified = []

        async def notifier(db, invoice, owner, reminder, days_until_due):
            if invoice.id == 'inv-2':
                raise RuntimeError('smtp down')
            notified.append(invoice.id)

        pending, reload = serve_invoices(invoices)
        with pending, reload, patch(f'{REMINDERS}.user_dao.get_tenant_owner', AsyncMock(return_value=None)):
            stats = await send_invoice_reminders_job(now=now, notifier=notifier, session_factory=session_factory)

        assert stats == {'sent': 2, 'skipped': 0, 'failed': 1}
        assert notified == ['inv-0', 'inv-5']
        assert invoices[1].reminder_sent_at == {}
        assert session_factory.begin.call_count == 3


class TestReplenishPlanCredits:
    """Tests for plan credit replenishment."""

    def test_recently_replenished(self):
        """Test the minimum interval between replenishments."""
        now = timezone.now()

        assert recently_replenished(None, now, 25) is False
        assert recently_replenished(now - timedelta(days=3), now, 25) is True
        assert recently_replenished(now - timedelta(days=30), now, 25) is False

    @pytest.mark.asyncio
    async def test_replenishes_skips_and_continues_after_failure(self, session_factory):
        """Test one tenant failing does not stop the batch."""
        now = timezone.now()
        subscriptions = [
            SimpleNamespace(tenant_id='t-due', plan_id='plan-pro'),
            SimpleNamespace(tenant_id='t-recent', plan_id='plan-pro'),
            SimpleNamespace(tenant_id='t-free', plan_id='plan-free'),
            SimpleNamespace(tenant_id='t-broken', plan_id='plan-pro'),
        ]
        plans = {
            'plan-pro': SimpleNamespace(id='plan-pro', name='Pro', included_credits_brl=Decimal('20')),
            'plan-free': SimpleNamespace(id='plan-free', name='Free', included_credits_brl=Decimal('0')),
        }
        credits = {
            't-due': SimpleNamespace(plan_credits_reset_at=now - timedelta(days=31)),
            't-recent': SimpleNamespace(plan_credits_reset_at=now - timedelta(days=2)),
            't-broken': None,
        }

        async def replenish(db, tenant_id, plan):
            if tenant_id == 't-broken':
                raise RuntimeError('lock timeout')

        with patch(f'{REPLENISH}.subscription_dao.get_due_for_replenishment', AsyncMock(return_value=subscriptions)), \
             patch(f'{REPLENISH}.plan_dao.select_model', AsyncMock(side_effect=lambda db, pk: plans[pk])), \
             patch(f'{REPLENISH}.tenant_credit_dao.get_by_tenant', AsyncMock(side_effect=lambda db, t: credits.get(t))), \
             patch(f'{REPLENISH}.credit_manager.replenish_plan_credits', AsyncMock(side_effect=replenish)) as mock_replenish:
            stats = await replenish_plan_credits_job(now=now, session_factory=session_factory)

        assert stats == {'replenished': 1, 'skipped': 2, 'failed': 1}
        replenished = [call.args[1] for call in mock_replenish.await_args_list]
        assert replenished == ['t-due', 't-broken']
