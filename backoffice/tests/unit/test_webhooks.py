"""Tests for webhook intake and the gateway event handlers.

Tests cover:
- Idempotency keys and token checks
- Asaas and Stripe intake (authentication and deduplication)
- Asaas credit purchase and subscription payment flows
- Stripe invoice and subscription events
"""

import hashlib
import hmac
import json
import time

from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from backoffice.app.billing.model import Invoice, Subscription, WebhookEvent
from backoffice.app.tenant.model import Tenant
from backoffice.src.billing.external.gateway import GatewayCredentials
from backoffice.src.billing.external.stripe.client import construct_webhook_event
from backoffice.src.billing.shared.exceptions import WebhookError
from backoffice.src.billing.webhooks import intake
from backoffice.src.billing.webhooks.asaas_processor import AsaasWebhookHandler, days_overdue, parse_due_date
from backoffice.src.billing.webhooks.stripe_processor import (
    StripeWebhookHandler,
    invoice_subscription_id,
    map_stripe_status,
)
from backoffice.utils.timezone import timezone

INTAKE = 'backoffice.src.billing.webhooks.intake'
ASAAS = 'backoffice.src.billing.webhooks.asaas_processor'
STRIPE = 'backoffice.src.billing.webhooks.stripe_processor'


def asaas_credentials(token='tok_123'):
    return GatewayCredentials('asaas', 'key', token, True)


def stripe_signature(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f'{timestamp}.{payload.decode()}'.encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f't={timestamp},v1={digest}'


class TestIntakeHelpers:
    """Tests for idempotency keys and token comparison."""

    def test_asaas_key(self):
        """Test the Asaas key combines event and payment id."""
        payload = {'event': 'PAYMENT_RECEIVED', 'payment': {'id': 'pay_1'}}

        assert intake.asaas_idempotency_key(payload) == 'asaas_PAYMENT_RECEIVED_pay_1'

    def test_stripe_key(self):
        """Test the Stripe key wraps the event id."""
        assert intake.stripe_idempotency_key('evt_1') == 'stripe_evt_1'

    def test_token_matches(self):
        """Test tokens must be configured and equal."""
        assert intake.token_matches('abc', 'abc') is True
        assert intake.token_matches('abc', 'abd') is False
        assert intake.token_matches('', '') is False
        assert intake.token_matches(None, 'abc') is False


class TestAsaasIntake:
    """Tests for Asaas webhook intake."""

    @pytest.mark.asyncio
    async def test_rejects_bad_token(self, mock_db):
        """Test a wrong access token is refused with 401."""
        with patch(f'{INTAKE}.get_gateway_credentials', AsyncMock(return_value=asaas_credentials())):
            with pytest.raises(WebhookError) as exc_info:
                await intake.receive_asaas(mock_db, {'event': 'PAYMENT_RECEIVED'}, 'wrong')

        assert exc_info.value.status_code == 401
        mock_db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_rejects_when_token_unconfigured(self, mock_db):
        """Test intake refuses everything while no token is configured."""
        with patch(f'{INTAKE}.get_gateway_credentials', AsyncMock(return_value=asaas_credentials(token=''))):
            with pytest.raises(WebhookError) as exc_info:
                await intake.receive_asaas(mock_db, {'event': 'PAYMENT_RECEIVED'}, '')

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_stores_new_event(self, mock_db):
        """Test a new event is stored unprocessed."""
        payload = {'event': 'PAYMENT_RECEIVED', 'payment': {'id': 'pay_1'}}
        with patch(f'{INTAKE}.get_gateway_credentials', AsyncMock(return_value=asaas_credentials())), \
             patch(f'{INTAKE}.webhook_event_dao.get_by_idempotency_key', AsyncMock(return_value=None)):
            result = await intake.receive_asaas(mock_db, payload, 'tok_123')

        assert result.to_response() == {'status': 'received'}
        assert result.event.idempotency_key == 'asaas_PAYMENT_RECEIVED_pay_1'
        assert result.event.external_id == 'pay_1'
        assert result.event.processed is False
        mock_db.add.assert_called_once_with(result.event)

    @pytest.mark.asyncio
    async def test_duplicate_is_acknowledged(self, mock_db):
        """Test a repeated event is acknowledged without storing it again."""
        payload = {'event': 'PAYMENT_RECEIVED', 'payment': {'id': 'pay_1'}}
        with patch(f'{INTAKE}.get_gateway_credentials', AsyncMock(return_value=asaas_credentials())), \
             patch(f'{INTAKE}.webhook_event_dao.get_by_idempotency_key', AsyncMock(return_value=object())):
            result = await intake.receive_asaas(mock_db, payload, 'tok_123')

        assert result.to_response() == {'status': 'already_processed'}
        assert result.event is None
        mock_db.add.assert_not_called()


class TestStripeIntake:
    """Tests for Stripe signature verification."""

    def test_valid_signature(self):
        """Test a correctly signed payload is parsed."""
        payload = json.dumps({
            'id': 'evt_1', 'object': 'event', 'type': 'invoice.paid',
            'data': {'object': {'id': 'in_1', 'object': 'invoice'}},
        }).encode()

        event = construct_webhook_event(payload, stripe_signature(payload, 'whsec_test'), 'whsec_test')

        assert event.id == 'evt_1'
        assert event.type == 'invoice.paid'

    def test_invalid_signature(self):
        """Test a payload signed with another secret is refused."""
        payload = b'{"id": "evt_1", "object": "event"}'

        with pytest.raises(WebhookError) as exc_info:
            construct_webhook_event(payload, stripe_signature(payload, 'whsec_other'), 'whsec_test')

        assert exc_info.value.status_code == 401

    def test_missing_secret(self):
        """Test intake refuses events while no signing secret is configured."""
        with pytest.raises(WebhookError):
            construct_webhook_event(b'{}', 't=1,v1=abc', None)

    def test_missing_header(self):
        """Test a request without the signature header is refused."""
        with pytest.raises(WebhookError):
            construct_webhook_event(b'{}', None, 'whsec_test')


class TestAsaasHelpers:
    """Tests for Asaas date helpers."""

    def test_parse_due_date(self):
        """Test Asaas dates are parsed in the configured timezone."""
        due = parse_due_date('2026-03-10')

        assert (due.year, due.month, due.day) == (2026, 3, 10)
        assert due.tzinfo is not None
        assert parse_due_date(None) is None

    def test_days_overdue(self):
        """Test overdue days count from the start of the due day."""
        now = timezone.now()

        assert days_overdue(now - timedelta(days=8), now) == 8
        assert days_overdue(now + timedelta(days=2), now) == 0
        assert days_overdue(None, now) == 0


class TestAsaasCreditPurchase:
    """Tests for credit purchase payments."""

    def pending(self, status='pending'):
        return SimpleNamespace(
            id='tx-1',
            tenant_id='tenant-1',
            description='Pacote 50',
            extra={'status': status, 'credit_amount_brl': '50.0000', 'package_id': 'pkg-1'},
        )

    @pytest.mark.asyncio
    async def test_payment_completes_purchase(self, mock_db):
        """Test a received payment credits the tenant and completes the purchase."""
        pending = self.pending()
        credited = SimpleNamespace(id='tx-2')
        with patch(f'{ASAAS}.credit_transaction_dao.get_for_update', AsyncMock(return_value=pending)), \
             patch(f'{ASAAS}.credit_manager.add_credits', AsyncMock(return_value=credited)) as mock_add, \
             patch(f'{ASAAS}.execution_log_service.credit', AsyncMock()):
            await AsaasWebhookHandler.handle_credit_purchase(mock_db, 'PAYMENT_RECEIVED', {'id': 'pay_1'}, 'tx-1')

        args = mock_add.await_args.args
        assert args[1:4] == ('tenant-1', Decimal('50.0000'), 'purchase')
        assert pending.extra['status'] == 'completed'
        assert pending.extra['credit_transaction_id'] == 'tx-2'

    @pytest.mark.asyncio
    async def test_completed_purchase_is_not_credited_twice(self, mock_db):
        """Test a repeated confirmation is ignored."""
        with patch(f'{ASAAS}.credit_transaction_dao.get_for_update', AsyncMock(return_value=self.pending('completed'))), \
             patch(f'{ASAAS}.credit_manager.add_credits', AsyncMock()) as mock_add:
            await AsaasWebhookHandler.handle_credit_purchase(mock_db, 'PAYMENT_CONFIRMED', {'id': 'pay_1'}, 'tx-1')

        mock_add.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_deliveries_credit_once(self, mock_db):
        """Test two deliveries of one payment serialize on the locked row and credit once."""
        pending = self.pending()
        mock_lock = AsyncMock(return_value=pending)
        with patch(f'{ASAAS}.credit_transaction_dao.get_for_update', mock_lock), \
             patch(f'{ASAAS}.credit_manager.add_credits', AsyncMock(return_value=SimpleNamespace(id='tx-2'))) as mock_add, \
             patch(f'{ASAAS}.execution_log_service.credit', AsyncMock()):
            await AsaasWebhookHandler.handle_credit_purchase(mock_db, 'PAYMENT_CONFIRMED', {'id': 'pay_1'}, 'tx-1')
            await AsaasWebhookHandler.handle_credit_purchase(mock_db, 'PAYMENT_RECEIVED', {'id': 'pay_1'}, 'tx-1')

        assert mock_lock.await_count == 2
        mock_add.assert_awaited_once()
        assert pending.extra['status'] == 'completed'

    @pytest.mark.asyncio
    @pytest.mark.parametrize('amount', [None, '0', '0.0000'])
    async def test_purchase_without_amount_is_skipped(self, mock_db, amount):
        """Test a paid purchase with no credit amount is logged and left pending."""
        pending = self.pending()
        pending.extra['credit_amount_brl'] = amount
        with patch(f'{ASAAS}.credit_transaction_dao.get_for_update', AsyncMock(return_value=pending)), \
             patch(f'{ASAAS}.credit_manager.add_credits', AsyncMock()) as mock_add, \
             patch(f'{ASAAS}.logger') as mock_logger:
            await AsaasWebhookHandler.handle_credit_purchase(mock_db, 'PAYMENT_RECEIVED', {'id': 'pay_1'}, 'tx-1')

        mock_add.assert_not_awaited()
        mock_logger.error.assert_called_once()
        assert pending.extra['status'] == 'pending'

    @pytest.mark.asyncio
    async def test_overdue_fails_pending_purchase(self, mock_db):
        """Test an overdue payment marks the purchase failed."""
        pending = self.pending()
        with patch(f'{ASAAS}.credit_transaction_dao.get_for_update', AsyncMock(return_value=pending)), \
             patch(f'{ASAAS}.execution_log_service.credit', AsyncMock()):
            await AsaasWebhookHandler.handle_credit_purchase(mock_db, 'PAYMENT_OVERDUE', {'id': 'pay_1'}, 'tx-1')

        assert pending.extra['status'] == 'failed'
        assert pending.extra['failure_reason'] == 'Payment overdue'

    @pytest.mark.asyncio
    async def test_refund_reverses_credit(self, mock_db):
        """Test a refund of a completed purchase removes the credit."""
        pending = self.pending('completed')
        with patch(f'{ASAAS}.credit_transaction_dao.get_for_update', AsyncMock(return_value=pending)), \
             patch(f'{ASAAS}.credit_manager.add_credits', AsyncMock()) as mock_add, \
             patch(f'{ASAAS}.execution_log_service.credit', AsyncMock()):
            await AsaasWebhookHandler.handle_credit_purchase(mock_db, 'PAYMENT_REFUNDED', {'id': 'pay_1'}, 'tx-1')

        args = mock_add.await_args.args
        assert args[2] == Decimal('-50.0000')
        assert args[3] == 'refund'
        assert pending.extra['status'] == 'refunded'

    @pytest.mark.asyncio
    async def test_routes_by_reference_prefix(self, mock_db):
        """Test credit_ references go to the purchase flow."""
        event = WebhookEvent(
            provider='asaas',
            event_type='PAYMENT_RECEIVED',
            idempotency_key='asaas_PAYMENT_RECEIVED_pay_1',
            payload={'event': 'PAYMENT_RECEIVED', 'payment': {'id': 'pay_1', 'externalReference': 'credit_tx-1'}},
        )
        with patch.object(AsaasWebhookHandler, 'handle_credit_purchase', AsyncMock()) as mock_purchase, \
             patch.object(AsaasWebhookHandler, 'handle_subscription_payment', AsyncMock()) as mock_subscription:
            await AsaasWebhookHandler.handle(mock_db, event)

        mock_purchase.assert_awaited_once()
        assert mock_purchase.await_args.args[-1] == 'tx-1'
        mock_subscription.assert_not_awaited()


class TestAsaasSubscriptionPayment:
    """Tests for subscription payments."""

    def setup_objects(self, due_days_ago=0):
        tenant = Tenant(name='Acme', slug='acme')
        tenant.id = 'tenant-1'
        subscription = Subscription(tenant_id='tenant-1', plan_id='plan-1', status='past_due', external_id='sub_1')
        subscription.id = 'sub-local'
        invoice = Invoice(tenant_id='tenant-1', amount=Decimal('99.90'), subscription_id='sub-local', external_id='pay_1')
        invoice.id = 'inv-1'
        invoice.due_date = timezone.now() - timedelta(days=due_days_ago)
        return tenant, subscription, invoice

    def event(self, event_type):
        return WebhookEvent(
            provider='asaas',
            event_type=event_type,
            idempotency_key=f'asaas_{event_type}_pay_1',
            payload={'event': event_type, 'payment': {'id': 'pay_1', 'subscription': 'sub_1'}},
        )

    async def run(self, db, event_type, tenant, subscription, invoice):
        event = self.event(event_type)
        with patch(f'{ASAAS}.subscription_dao.get_by_external_id', AsyncMock(return_value=subscription)), \
             patch(f'{ASAAS}.invoice_dao.get_by_external_id', AsyncMock(return_value=invoice)), \
             patch(f'{ASAAS}.tenant_dao.select_model', AsyncMock(return_value=tenant)), \
             patch(f'{ASAAS}.execution_log_service.webhook', AsyncMock()):
            await AsaasWebhookHandler.handle_subscription_payment(db, event, event_type, event.payload['payment'])

    @pytest.mark.asyncio
    async def test_received_activates_and_unblocks(self, mock_db):
        """Test a received payment pays the invoice and unblocks the tenant."""
        tenant, subscription, invoice = self.setup_objects()
        tenant.is_blocked = True
        tenant.blocked_reason = 'Payment overdue for 9 days'

        await self.run(mock_db, 'PAYMENT_RECEIVED', tenant, subscription, invoice)

        assert invoice.status == 'paid'
        assert invoice.paid_at is not None
        assert subscription.status == 'active'
        assert tenant.is_blocked is False
        assert tenant.blocked_reason is None

    @pytest.mark.asyncio
    async def test_confirmed_pays_without_activation(self, mock_db):
        """Test a confirmed payment only marks the invoice paid."""
        tenant, subscription, invoice = self.setup_objects()

        await self.run(mock_db, 'PAYMENT_CONFIRMED', tenant, subscription, invoice)

        assert invoice.status == 'paid'
        assert subscription.status == 'past_due'

    @pytest.mark.asyncio
    async def test_overdue_blocks_after_grace_period(self, mock_db):
        """Test a long-overdue invoice blocks the tenant."""
        tenant, subscription, invoice = self.setup_objects(due_days_ago=8)

        await self.run(mock_db, 'PAYMENT_OVERDUE', tenant, subscription, invoice)

        assert invoice.status == 'failed'
        assert subscription.status == 'past_due'
        assert tenant.is_blocked is True
        assert 'overdue' in tenant.blocked_reason

    @pytest.mark.asyncio
    async def test_overdue_within_grace_period(self, mock_db):
        """Test a recently overdue invoice does not block yet."""
        tenant, subscription, invoice = self.setup_objects(due_days_ago=2)

        await self.run(mock_db, 'PAYMENT_OVERDUE', tenant, subscription, invoice)

        assert subscription.status == 'past_due'
        assert tenant.is_blocked is False

    @pytest.mark.asyncio
    async def test_unknown_payment_is_ignored(self, mock_db):
        """Test payments matching nothing locally are skipped."""
        event = self.event('PAYMENT_RECEIVED')
        with patch(f'{ASAAS}.subscription_dao.get_by_external_id', AsyncMock(return_value=None)), \
             patch(f'{ASAAS}.invoice_dao.get_by_external_id', AsyncMock(return_value=None)):
            await AsaasWebhookHandler.handle_subscription_payment(
                mock_db, event, 'PAYMENT_RECEIVED', event.payload['payment']
            )

        mock_db.add.assert_not_called()


class TestStripeHandler:
    """Tests for Stripe events."""

    def test_invoice_subscription_id_layouts(self):
        """Test both invoice layouts resolve the subscription id."""
        assert invoice_subscription_id({'subscription': 'sub_1'}) == 'sub_1'
        assert invoice_subscription_id({'parent': {'subscription_details': {'subscription': 'sub_2'}}}) == 'sub_2'
        assert invoice_subscription_id({}) is None

    def test_status_map(self):
        """Test Stripe statuses map to local ones."""
        assert map_stripe_status('canceled') == 'cancelled'
        assert map_stripe_status('trialing') == 'trial'
        assert map_stripe_status('incomplete') is None

    @pytest.mark.asyncio
    async def test_invoice_paid(self, mock_db):
        """Test a paid invoice is stored in BRL and activates the subscription."""
        subscription = Subscription(tenant_id='tenant-1', plan_id='plan-1', status='past_due', external_id='sub_1')
        subscription.id = 'sub-local'
        data = {'id': 'in_1', 'subscription': 'sub_1', 'amount_paid': 9990, 'currency': 'brl'}
        with patch(f'{STRIPE}.subscription_dao.get_by_external_id', AsyncMock(return_value=subscription)), \
             patch(f'{STRIPE}.invoice_dao.get_by_external_id', AsyncMock(return_value=None)), \
             patch(f'{STRIPE}.tenant_dao.select_model', AsyncMock(return_value=None)):
            result = await StripeWebhookHandler.handle_invoice_paid(mock_db, data)

        invoice = mock_db.add.call_args.args[0]
        assert result is subscription
        assert subscription.status == 'active'
        assert invoice.amount == Decimal('99.90')
        assert invoice.currency == 'BRL'
        assert invoice.status == 'paid'

    @pytest.mark.asyncio
    async def test_subscription_updated_to_canceled(self, mock_db):
        """Test a canceled status cancels the local subscription."""
        subscription = Subscription(tenant_id='tenant-1', plan_id='plan-1', status='active', external_id='sub_1')
        with patch(f'{STRIPE}.subscription_dao.get_by_external_id', AsyncMock(return_value=subscription)):
            await StripeWebhookHandler.handle_subscription_updated(mock_db, {'id': 'sub_1', 'status': 'canceled'})

        assert subscription.status == 'cancelled'
        assert subscription.cancelled_at is not None

    @pytest.mark.asyncio
    async def test_unhandled_event_is_ignored(self, mock_db):
        """Test unknown event types are acknowledged without changes."""
        event = WebhookEvent(provider='stripe', event_type='charge.succeeded', idempotency_key='stripe_evt_9')

        await StripeWebhookHandler.handle(mock_db, event)

        mock_db.add.assert_not_called()
