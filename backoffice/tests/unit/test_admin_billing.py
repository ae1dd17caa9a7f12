"""Tests for admin billing operations.

Tests cover:
- Overview counts, MRR and monthly revenue
- Subscriber filters
- Manual invoice approval
- The pending Asaas invoice link
"""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from backoffice.app.billing.model import Invoice
from backoffice.app.billing.service.admin_billing_service import admin_billing_service
from backoffice.common.enums import InvoiceStatus, PaymentProvider, SubscriptionStatus
from backoffice.common.exception import errors
from backoffice.common.pagination import PageParams

ADMIN = 'backoffice.app.billing.service.admin_billing_service'


def scalar(value):
    result = MagicMock()
    result.scalar_one.return_value = value
    return result


def make_invoice(status=InvoiceStatus.pending, subscription_id='sub-1'):
    invoice = Invoice(tenant_id='tenant-1', amount=Decimal('199.90'), subscription_id=subscription_id, status=status)
    invoice.id = 'inv-1'
    return invoice


class TestOverview:
    """Tests for the billing overview."""

    @pytest.mark.asyncio
    async def test_counts_and_money(self, mock_db):
        """Test counts come from the subscription statuses and money is rounded to cents."""
        counts = {
            (SubscriptionStatus.active, SubscriptionStatus.trial, SubscriptionStatus.past_due): 12,
            (SubscriptionStatus.active,): 8,
            (SubscriptionStatus.trial,): 3,
            (SubscriptionStatus.past_due,): 1,
        }
        mock_db.execute = AsyncMock(side_effect=[scalar(Decimal('1598.999')), scalar(Decimal('0'))])

        with patch.object(admin_billing_service, '_count_subscriptions',
                          AsyncMock(side_effect=lambda db, *statuses: counts[statuses])), \
             patch(f'{ADMIN}.tenant_dao.count_blocked', AsyncMock(return_value=2)):
            overview = await admin_billing_service.get_overview(mock_db)

        assert overview.total_subscribers == 12
        assert overview.active_subscribers == 8
        assert overview.trial_subscribers == 3
        assert overview.past_due_subscribers == 1
        assert overview.blocked_tenants == 2
        assert overview.mrr == Decimal('1599.00')
        assert overview.revenue_this_month == Decimal('0.00')

    @pytest.mark.asyncio
    async def test_mrr_counts_active_subscriptions_only(self, mock_db):
        """Test MRR sums monthly plan prices of active subscriptions."""
        mock_db.execute = AsyncMock(side_effect=[scalar(Decimal('0')), scalar(Decimal('0'))])

        with patch.object(admin_billing_service, '_count_subscriptions', AsyncMock(return_value=0)), \
             patch(f'{ADMIN}.tenant_dao.count_blocked', AsyncMock(return_value=0)):
            await admin_billing_service.get_overview(mock_db)

        mrr_stmt = mock_db.execute.await_args_list[0].args[0]
        compiled = mrr_stmt.compile()
        assert 'price_monthly' in str(compiled)
        assert SubscriptionStatus.active in compiled.params.values()


class TestSubscriberFilters:
    """Tests for the subscriber listing filters."""

    async def listed_statement(self, mock_db, filter_by):
        with patch(f'{ADMIN}.paginate', AsyncMock(return_value=([], 0))) as mock_paginate:
            items, total = await admin_billing_service.get_subscribers(mock_db, PageParams(), filter_by=filter_by)

        assert (items, total) == ([], 0)
        return mock_paginate.await_args.args[1]

    @pytest.mark.asyncio
    async def test_blocked(self, mock_db):
        """Test the blocked filter checks the tenant flag."""
        stmt = await self.listed_statement(mock_db, 'blocked')

        assert 'is_blocked' in str(stmt)
        assert 'EXISTS' not in str(stmt)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ('filter_by', 'status'),
        [
            ('active', SubscriptionStatus.active),
            ('paid', SubscriptionStatus.active),
            ('overdue', SubscriptionStatus.past_due),
            ('trial', SubscriptionStatus.trial),
        ],
    )
    async def test_status_filters(self, mock_db, filter_by, status):
        """Test status filters and their aliases match on a subscription of that status."""
        stmt = await self.listed_statement(mock_db, filter_by)

        assert 'EXISTS' in str(stmt)
        assert status in stmt.compile().params.values()

    @pytest.mark.asyncio
    async def test_unknown_filter_lists_everyone(self, mock_db):
        """Test an unknown filter value adds no condition."""
        stmt = await self.listed_statement(mock_db, 'vip')

        assert 'EXISTS' not in str(stmt)
        assert 'is_blocked' not in str(stmt)


class TestApproveInvoice:
    """Tests for manual invoice approval."""

    @pytest.mark.asyncio
    async def test_pending_invoice_approved(self, mock_db):
        """Test approval pays the invoice, reactivates the subscription and unblocks the tenant."""
        invoice = make_invoice()
        subscription = SimpleNamespace(status=SubscriptionStatus.past_due)
        tenant = SimpleNamespace(id='tenant-1')

        with patch(f'{ADMIN}.invoice_dao.select_model', AsyncMock(return_value=invoice)), \
             patch(f'{ADMIN}.subscription_dao.select_model', AsyncMock(return_value=subscription)), \
             patch(f'{ADMIN}.tenant_dao.select_model', AsyncMock(return_value=tenant)), \
             patch(f'{ADMIN}.tenant_service.unblock') as mock_unblock, \
             patch(f'{ADMIN}.execution_log_service.audit', AsyncMock()) as mock_audit:
            result = await admin_billing_service.approve_invoice(mock_db, 'inv-1')

        assert result.status == InvoiceStatus.paid
        assert result.paid_at is not None
        assert subscription.status == SubscriptionStatus.active
        mock_unblock.assert_called_once_with(tenant)
        assert mock_audit.await_args.args[1] == 'admin.billing.approve_invoice'

    @pytest.mark.asyncio
    @pytest.mark.parametrize('status', [InvoiceStatus.paid, InvoiceStatus.cancelled, InvoiceStatus.failed])
    async def test_only_pending_invoices(self, mock_db, status):
        """Test invoices that are not pending cannot be approved."""
        invoice = make_invoice(status=status)

        with patch(f'{ADMIN}.invoice_dao.select_model', AsyncMock(return_value=invoice)):
            with pytest.raises(errors.UnprocessableError):
                await admin_billing_service.approve_invoice(mock_db, 'inv-1')

        assert invoice.status == status

    @pytest.mark.asyncio
    async def test_unknown_invoice(self, mock_db):
        """Test a missing invoice is 404."""
        with patch(f'{ADMIN}.invoice_dao.select_model', AsyncMock(return_value=None)):
            with pytest.raises(errors.NotFoundError):
                await admin_billing_service.approve_invoice(mock_db, 'missing')


class TestSendInvoiceLink:
    """Tests for the pending Asaas invoice link."""

    def patches(self, subscription, payments=None):
        gateway = AsyncMock()
        gateway.list_subscription_payments.return_value = {'data': payments or []}
        return gateway, (
            patch(f'{ADMIN}.tenant_service.get', AsyncMock(return_value=SimpleNamespace(id='tenant-1'))),
            patch(f'{ADMIN}.subscription_dao.get_current', AsyncMock(return_value=subscription)),
            patch(f'{ADMIN}.resolve_gateway', AsyncMock(return_value=gateway)),
            patch(f'{ADMIN}.execution_log_service.audit', AsyncMock()),
        )

    @pytest.mark.asyncio
    async def test_returns_pending_payment_link(self, mock_db):
        """Test the first pending payment's invoice link is returned and the gateway closed."""
        subscription = SimpleNamespace(external_id='sub_asaas_1', payment_provider=PaymentProvider.asaas)
        payments = [
            {'id': 'pay_1', 'status': 'RECEIVED', 'invoiceUrl': 'https://asaas.com/i/1'},
            {'id': 'pay_2', 'status': 'PENDING', 'invoiceUrl': 'https://asaas.com/i/2'},
        ]
        gateway, patchers = self.patches(subscription, payments)

        with patchers[0], patchers[1], patchers[2], patchers[3] as mock_audit:
            result = await admin_billing_service.send_invoice_link(mock_db, 'tenant-1')

        assert (result.payment_id, result.invoice_url) == ('pay_2', 'https://asaas.com/i/2')
        gateway.list_subscription_payments.assert_awaited_once_with('sub_asaas_1')
        gateway.aclose.assert_awaited_once()
        assert mock_audit.await_args.args[1] == 'admin.billing.send_invoice_link'

    @pytest.mark.asyncio
    async def test_bank_slip_fallback(self, mock_db):
        """Test the boleto URL is used when the payment has no invoice URL."""
        subscription = SimpleNamespace(external_id='sub_asaas_1', payment_provider=PaymentProvider.asaas)
        payments = [{'id': 'pay_3', 'status': 'PENDING', 'bankSlipUrl': 'https://asaas.com/b/3'}]
        _, patchers = self.patches(subscription, payments)

        with patchers[0], patchers[1], patchers[2], patchers[3]:
            result = await admin_billing_service.send_invoice_link(mock_db, 'tenant-1')

        assert result.invoice_url == 'https://asaas.com/b/3'

    @pytest.mark.asyncio
    async def test_no_pending_payment(self, mock_db):
        """Test 404 when every payment is already settled."""
        subscription = SimpleNamespace(external_id='sub_asaas_1', payment_provider=PaymentProvider.asaas)
        gateway, patchers = self.patches(subscription, [{'id': 'pay_1', 'status': 'RECEIVED'}])

        with patchers[0], patchers[1], patchers[2], patchers[3]:
            with pytest.raises(errors.NotFoundError):
                await admin_billing_service.send_invoice_link(mock_db, 'tenant-1')

        gateway.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize('subscription', [None, SimpleNamespace(external_id=None, payment_provider='asaas')])
    async def test_no_gateway_subscription(self, mock_db, subscription):
        """Test 404 when the tenant has nothing billed on a gateway."""
        gateway, patchers = self.patches(subscription)

        with patchers[0], patchers[1], patchers[2], patchers[3]:
            with pytest.raises(errors.NotFoundError):
                await admin_billing_service.send_invoice_link(mock_db, 'tenant-1')

        gateway.list_subscription_payments.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stripe_subscription_refused(self, mock_db):
        """Test Stripe subscribers are refused since Stripe sends its own invoices."""
        subscription = SimpleNamespace(external_id='sub_stripe_1', payment_provider=PaymentProvider.stripe)
        gateway, patchers = self.patches(subscription)

        with patchers[0], patchers[1], patchers[2], patchers[3]:
            with pytest.raises(errors.UnprocessableError):
                await admin_billing_service.send_invoice_link(mock_db, 'tenant-1')

        gateway.list_subscription_payments.assert_not_awaited()
