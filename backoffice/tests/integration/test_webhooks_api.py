"""Integration tests for the gateway webhook routes.

Tests cover:
- Asaas intake acknowledged and scheduled for processing
- Duplicate deliveries acknowledged without processing
- Rejected tokens and malformed bodies
- Stripe signature failures
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from fastapi.testclient import TestClient

from backoffice.core.conf import settings
from backoffice.database.db import get_db, get_db_transaction
from backoffice.src.billing.shared.exceptions import WebhookError
from backoffice.src.billing.webhooks.intake import IntakeResult

ENDPOINTS = 'backoffice.src.billing.endpoints.webhooks'
ASAAS_URL = f'{settings.FASTAPI_API_V1_PATH}/webhooks/asaas'
STRIPE_URL = f'{settings.FASTAPI_API_V1_PATH}/webhooks/stripe'

PAYMENT_RECEIVED = {
    'event': 'PAYMENT_RECEIVED',
    'payment': {'id': 'pay_123', 'subscription': 'sub_abc', 'value': 99.9},
}


@pytest.fixture
def client(mock_db):
    from backoffice.core.registrar import register_app

    app = register_app()

    async def override_db():
        yield mock_db

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_db_transaction] = override_db
    return TestClient(app)


class TestAsaasWebhookRoute:
    """Tests for POST /webhooks/asaas."""

    def test_received_and_processed(self, client):
        """Test a new event is acknowledged and handed to the processor."""
        stored = IntakeResult(status='received', event=SimpleNamespace(id='evt-1'))
        with patch(f'{ENDPOINTS}.intake.receive_asaas', AsyncMock(return_value=stored)) as mock_receive, \
             patch(f'{ENDPOINTS}.process_webhook_event', AsyncMock()) as mock_process:
            response = client.post(ASAAS_URL, json=PAYMENT_RECEIVED, headers={'asaas-access-token': 'tok'})

        assert response.status_code == 200
        assert response.json() == {'status': 'received'}
        assert mock_receive.await_args.args[1:] == (PAYMENT_RECEIVED, 'tok')
        mock_process.assert_awaited_once_with('evt-1')

    def test_duplicate_not_processed(self, client):
        """Test a duplicate delivery is acknowledged only."""
        with patch(f'{ENDPOINTS}.intake.receive_asaas',
                   AsyncMock(return_value=IntakeResult(status='already_processed'))), \
             patch(f'{ENDPOINTS}.process_webhook_event', AsyncMock()) as mock_process:
            response = client.post(ASAAS_URL, json=PAYMENT_RECEIVED)

        assert response.json() == {'status': 'already_processed'}
        mock_process.assert_not_awaited()

    def test_invalid_token(self, client):
        """Test a wrong access token answers 401."""
        with patch(f'{ENDPOINTS}.intake.receive_asaas',
                   AsyncMock(side_effect=WebhookError('Invalid webhook token', status_code=401))):
            response = client.post(ASAAS_URL, json=PAYMENT_RECEIVED, headers={'asaas-access-token': 'bad'})

        assert response.status_code == 401
        assert response.json()['error'] == 'webhook_error'

    @pytest.mark.parametrize('body', [b'not json', b'[1, 2]'])
    def test_malformed_body(self, client, body):
        """Test non-object bodies answer 400 before intake."""
        with patch(f'{ENDPOINTS}.intake.receive_asaas', AsyncMock()) as mock_receive:
            response = client.post(ASAAS_URL, content=body, headers={'Content-Type': 'application/json'})

        assert response.status_code == 400
        mock_receive.assert_not_awaited()


class TestStripeWebhookRoute:
    """Tests for POST /webhooks/stripe."""

    def test_raw_body_forwarded(self, client):
        """Test the raw body and signature reach verification untouched."""
        body = b'{"id": "evt_1", "type": "invoice.paid"}'
        stored = IntakeResult(status='received', event=SimpleNamespace(id='evt-2'))
        with patch(f'{ENDPOINTS}.intake.receive_stripe', AsyncMock(return_value=stored)) as mock_receive, \
             patch(f'{ENDPOINTS}.process_webhook_event', AsyncMock()) as mock_process:
            response = client.post(STRIPE_URL, content=body, headers={'stripe-signature': 't=1,v1=abc'})

        assert response.status_code == 200
        assert mock_receive.await_args.args[1:] == (body, 't=1,v1=abc')
        mock_process.assert_awaited_once_with('evt-2')

    def test_bad_signature(self, client):
        """Test a failed signature check answers 401."""
        with patch(f'{ENDPOINTS}.intake.receive_stripe',
                   AsyncMock(side_effect=WebhookError('Invalid signature', status_code=401))):
            response = client.post(STRIPE_URL, content=b'{}', headers={'stripe-signature': 'bad'})

        assert response.status_code == 401


class TestIntakeCommitOrdering:
    """Tests the stored event is committed before processing starts."""

    def test_commit_precedes_processing(self, client, mock_db):
        """Test the background processor only runs after the intake commit."""
        order = []
        mock_db.commit = AsyncMock(side_effect=lambda: order.append('commit'))

        async def fake_process(event_id):
            order.append(f'process:{event_id}')

        stored = IntakeResult(status='received', event=SimpleNamespace(id='evt-3'))
        with patch(f'{ENDPOINTS}.intake.receive_asaas', AsyncMock(return_value=stored)), \
             patch(f'{ENDPOINTS}.process_webhook_event', fake_process):
            response = client.post(ASAAS_URL, json=PAYMENT_RECEIVED, headers={'asaas-access-token': 'tok'})

        assert response.status_code == 200
        assert order == ['commit', 'process:evt-3']

    def test_duplicate_still_committed(self, client, mock_db):
        """Test a duplicate delivery commits without scheduling work."""
        with patch(f'{ENDPOINTS}.intake.receive_stripe',
                   AsyncMock(return_value=IntakeResult(status='already_processed'))), \
             patch(f'{ENDPOINTS}.process_webhook_event', AsyncMock()) as mock_process:
            response = client.post(STRIPE_URL, content=b'{}', headers={'stripe-signature': 'sig'})

        assert response.json() == {'status': 'already_processed'}
        mock_db.commit.assert_awaited_once()
        mock_process.assert_not_awaited()

    def test_rejected_delivery_not_committed(self, client, mock_db):
        """Test an intake error leaves nothing committed."""
        with patch(f'{ENDPOINTS}.intake.receive_asaas',
                   AsyncMock(side_effect=WebhookError('Invalid webhook token', status_code=401))):
            client.post(ASAAS_URL, json=PAYMENT_RECEIVED, headers={'asaas-access-token': 'bad'})

        mock_db.commit.assert_not_awaited()
