"""Tests for tenant subscriptions.

Tests cover:
- Plan changes and their gateway calls
- Checkout, including trial replacement and the first Asaas payment
- Cancellation
"""

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from backoffice.app.billing.model import Invoice, Subscription
from backoffice.app.billing.service.subscription_service import subscription_service
from backoffice.app.tenant.model import Plan, Tenant
from backoffice.common.enums import InvoiceStatus, PaymentProvider, SubscriptionStatus, TenantStatus
from backoffice.common.exception import errors
from backoffice.src.billing.external.asaas.client import AsaasClient
from backoffice.src.billing.shared.exceptions import PaymentError

SUBSCRIPTION = 'backoffice.app.billing.service.subscription_service'


def make_tenant(provider=PaymentProvider.asaas, customer_id='cus_1'):
    tenant = Tenant(name='Acme', slug='acme', billing_customer_id=customer_id, billing_provider=provider)
    tenant.id = 'tenant-1'
    return tenant


def make_plan(pk='plan-pro', features=None):
    plan = Plan(name='Pro', slug='pro', price_monthly=Decimal('199.90'), features=features or {})
    plan.id = pk
    return plan


def make_subscription(plan_id='plan-basic', status=SubscriptionStatus.active, external_id='sub_old', provider='asaas'):
    subscription = Subscription(
        tenant_id='tenant-1', plan_id=plan_id, status=status, payment_provider=provider, external_id=external_id
    )
    subscription.id = 'sub-local-1'
    return subscription


def make_gateway(spec=None, external_id='sub_new'):
    gateway = AsyncMock(spec=spec) if spec else AsyncMock()
    gateway.create_subscription.return_value = {'id': external_id}
    return gateway


def service_patches(current, plan, gateway):
    return (
        patch(f'{SUBSCRIPTION}.subscription_dao.get_current', AsyncMock(return_value=current)),
        patch(f'{SUBSCRIPTION}.plan_dao.select_model', AsyncMock(return_value=plan)),
        patch(f'{SUBSCRIPTION}.resolve_gateway', AsyncMock(return_value=gateway)),
        patch(f'{SUBSCRIPTION}.execution_log_service.audit', AsyncMock()),
    )


class TestChangePlan:
    """Tests for moving a tenant to another plan."""

    @pytest.mark.asyncio
    async def test_same_plan_rejected(self, mock_db):
        """Test changing to the current plan is refused before any gateway call."""
        gateway = make_gateway()
        current, plan, resolve, audit = service_patches(make_subscription(plan_id='plan-pro'), make_plan(), gateway)

        with current, plan, resolve as mock_resolve, audit:
            with pytest.raises(errors.UnprocessableError):
                await subscription_service.change_plan(mock_db, make_tenant(), 'plan-pro')

        mock_resolve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_inactive_plan_not_found(self, mock_db):
        """Test an inactive target plan is 404."""
        plan_row = make_plan()
        plan_row.is_active = False
        current, plan, resolve, audit = service_patches(None, plan_row, make_gateway())

        with current, plan, resolve, audit:
            with pytest.raises(errors.NotFoundError):
                await subscription_service.change_plan(mock_db, make_tenant(), 'plan-pro')

    @pytest.mark.asyncio
    async def test_old_subscription_cancel_failure_tolerated(self, mock_db):
        """Test a gateway failure cancelling the old subscription does not stop the change."""
        old = make_subscription()
        gateway = make_gateway()
        gateway.cancel_subscription.side_effect = PaymentError('already cancelled', provider='asaas')
        current, plan, resolve, audit = service_patches(old, make_plan(), gateway)

        with current, plan, resolve, audit as mock_audit:
            detail = await subscription_service.change_plan(mock_db, make_tenant(), 'plan-pro', 'PIX')

        gateway.cancel_subscription.assert_awaited_once_with('sub_old')
        assert old.is_cancelled
        assert old.cancelled_at is not None
        created = mock_db.add.call_args.args[0]
        assert (created.plan_id, created.external_id, created.status) == ('plan-pro', 'sub_new', 'active')
        assert detail.external_id == 'sub_new'
        assert gateway.create_subscription.await_args.kwargs['billing_type'] == 'PIX'
        assert gateway.create_subscription.await_args.kwargs['price_id'] is None
        gateway.aclose.assert_awaited_once()
        assert mock_audit.await_args.args[1] == 'subscription.change_plan'

    @pytest.mark.asyncio
    async def test_stays_on_current_provider(self, mock_db):
        """Test the new subscription uses the provider of the current one."""
        old = make_subscription(provider=PaymentProvider.stripe)
        gateway = make_gateway()
        current, plan, resolve, audit = service_patches(
            old, make_plan(features={'stripe_price_id': 'price_123'}), gateway
        )

        with current, plan, resolve as mock_resolve, audit:
            await subscription_service.change_plan(mock_db, make_tenant(provider=PaymentProvider.asaas), 'plan-pro')

        assert mock_resolve.await_args.args[1] == PaymentProvider.stripe
        assert gateway.create_subscription.await_args.kwargs['price_id'] == 'price_123'

    @pytest.mark.asyncio
    async def test_stripe_plan_needs_price_id(self, mock_db):
        """Test a Stripe tenant cannot move to a plan without stripe_price_id."""
        current, plan, resolve, audit = service_patches(None, make_plan(), make_gateway())

        with current, plan, resolve as mock_resolve, audit:
            with pytest.raises(errors.UnprocessableError):
                await subscription_service.change_plan(mock_db, make_tenant(provider=PaymentProvider.stripe), 'plan-pro')

        mock_resolve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_gateway_failure_closes_client(self, mock_db):
        """Test a failure creating the new subscription propagates and still closes the client."""
        gateway = make_gateway()
        gateway.create_subscription.side_effect = PaymentError('card declined', provider='asaas')
        current, plan, resolve, audit = service_patches(None, make_plan(), gateway)

        with current, plan, resolve, audit:
            with pytest.raises(PaymentError):
                await subscription_service.change_plan(mock_db, make_tenant(), 'plan-pro')

        gateway.aclose.assert_awaited_once()
        mock_db.add.assert_not_called()


class TestCreateSubscription:
    """Tests for checkout."""

    @pytest.mark.asyncio
    async def test_active_subscription_rejected(self, mock_db):
        """Test checkout is refused while a paid subscription exists."""
        current, plan, resolve, audit = service_patches(make_subscription(), make_plan(), make_gateway())

        with current, plan, resolve, audit:
            with pytest.raises(errors.UnprocessableError):
                await subscription_service.create_subscription(mock_db, make_tenant(), 'plan-pro')

    @pytest.mark.asyncio
    async def test_trial_replaced(self, mock_db):
        """Test the trial subscription is cancelled and the tenant activated."""
        trial = make_subscription(status=SubscriptionStatus.trial, external_id=None)
        tenant = make_tenant()
        tenant.status = TenantStatus.trial
        current, plan, resolve, audit = service_patches(trial, make_plan(), make_gateway())

        with current, plan, resolve, audit as mock_audit:
            result = await subscription_service.create_subscription(mock_db, tenant, 'plan-pro', 'BOLETO')

        assert trial.is_cancelled
        assert tenant.status == TenantStatus.active
        assert result['subscription'].external_id == 'sub_new'
        assert 'pix' not in result
        assert mock_audit.await_args.args[1] == 'subscription.created'

    @pytest.mark.asyncio
    async def test_tax_id_saved_for_customer_creation(self, mock_db):
        """Test the CPF/CNPJ is stored on the tenant and sent when the customer is created."""
        tenant = make_tenant(customer_id=None)
        gateway = make_gateway()
        gateway.create_customer.return_value = 'cus_new'
        current, plan, resolve, audit = service_patches(None, make_plan(), gateway)

        with current, plan, resolve, audit, \
             patch(f'{SUBSCRIPTION}.user_dao.get_tenant_owner', AsyncMock(return_value=None)):
            await subscription_service.create_subscription(mock_db, tenant, 'plan-pro', cpf_cnpj='12345678000190')

        assert tenant.get_setting('cpf_cnpj') == '12345678000190'
        assert gateway.create_customer.await_args.kwargs['tax_id'] == '12345678000190'
        assert tenant.billing_customer_id == 'cus_new'
        assert gateway.create_subscription.await_args.kwargs['customer_id'] == 'cus_new'

    @pytest.mark.asyncio
    async def test_first_asaas_payment_recorded(self, mock_db):
        """Test the first Asaas payment becomes a pending invoice and its PIX code is returned."""
        gateway = make_gateway(spec=AsaasClient)
        gateway.list_subscription_payments.return_value = {'data': [
            {'id': 'pay_1', 'value': 199.9, 'dueDate': '2026-02-10', 'invoiceUrl': 'https://asaas.com/i/pay_1'},
        ]}
        gateway.get_pix_qr_code.return_value = {'payload': '00020126', 'expirationDate': '2026-02-10 23:59:59'}
        current, plan, resolve, audit = service_patches(None, make_plan(), gateway)

        with current, plan, resolve, audit, \
             patch(f'{SUBSCRIPTION}.invoice_dao.get_by_external_id', AsyncMock(return_value=None)):
            result = await subscription_service.create_subscription(mock_db, make_tenant(), 'plan-pro', 'PIX')

        invoices = [call.args[0] for call in mock_db.add.call_args_list if isinstance(call.args[0], Invoice)]
        assert len(invoices) == 1
        assert (invoices[0].external_id, invoices[0].status) == ('pay_1', InvoiceStatus.pending)
        assert invoices[0].due_date.date().isoformat() == '2026-02-10'
        assert result['invoice_url'] == 'https://asaas.com/i/pay_1'
        assert result['pix'] == {'payload': '00020126', 'expiration_date': '2026-02-10 23:59:59'}
        gateway.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_first_payment_lookup_failure_is_not_fatal(self, mock_db):
        """Test checkout succeeds when the first Asaas payment cannot be fetched."""
        gateway = make_gateway(spec=AsaasClient)
        gateway.list_subscription_payments.side_effect = PaymentError('timeout', provider='asaas')
        current, plan, resolve, audit = service_patches(None, make_plan(), gateway)

        with current, plan, resolve, audit:
            result = await subscription_service.create_subscription(mock_db, make_tenant(), 'plan-pro', 'PIX')

        assert result['subscription'].external_id == 'sub_new'
        assert 'invoice_url' not in result


class TestCancel:
    """Tests for cancelling the current subscription."""

    @pytest.mark.asyncio
    async def test_no_subscription(self, mock_db):
        """Test 404 without a subscription."""
        with patch(f'{SUBSCRIPTION}.subscription_dao.get_current', AsyncMock(return_value=None)):
            with pytest.raises(errors.NotFoundError):
                await subscription_service.cancel(mock_db, make_tenant())

    @pytest.mark.asyncio
    async def test_already_cancelled(self, mock_db):
        """Test cancelling twice is refused."""
        cancelled = make_subscription(status=SubscriptionStatus.cancelled)

        with patch(f'{SUBSCRIPTION}.subscription_dao.get_current', AsyncMock(return_value=cancelled)):
            with pytest.raises(errors.UnprocessableError):
                await subscription_service.cancel(mock_db, make_tenant())

    @pytest.mark.asyncio
    async def test_cancelled_on_gateway_and_locally(self, mock_db):
        """Test the gateway subscription is cancelled before the local one."""
        subscription = make_subscription()
        gateway = make_gateway()
        current, plan, resolve, audit = service_patches(subscription, None, gateway)

        with current, plan, resolve, audit as mock_audit:
            await subscription_service.cancel(mock_db, make_tenant(), 'too expensive')

        gateway.cancel_subscription.assert_awaited_once_with('sub_old')
        gateway.aclose.assert_awaited_once()
        assert subscription.status == SubscriptionStatus.cancelled
        assert mock_audit.await_args.args[2]['reason'] == 'too expensive'

    @pytest.mark.asyncio
    async def test_gateway_failure_keeps_subscription(self, mock_db):
        """Test a gateway error leaves the local subscription active."""
        subscription = make_subscription()
        gateway = make_gateway()
        gateway.cancel_subscription.side_effect = PaymentError('unreachable', provider='asaas')
        current, plan, resolve, audit = service_patches(subscription, None, gateway)

        with current, plan, resolve, audit:
            with pytest.raises(PaymentError):
                await subscription_service.cancel(mock_db, make_tenant())

        assert subscription.status == SubscriptionStatus.active
