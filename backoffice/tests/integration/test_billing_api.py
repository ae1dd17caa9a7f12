"""Integration tests for the tenant billing and internal API endpoints.

Endpoint functions are called directly with a mocked session, and the
internal routes are exercised through the FastAPI app with the session
dependencies overridden.

Tests cover:
- Subscription summary and invoice link endpoints
- Internal credit check and deduct routes behind X-Internal-Key
- Internal limit check
- Billing errors rendered with their status code
"""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from fastapi.testclient import TestClient

from backoffice.app.credit.schema.credit import CreditCheckResult, DeductCreditsResult
from backoffice.app.tenant.schema.tenant import LimitCheckResult
from backoffice.core.conf import settings
from backoffice.database.db import get_db, get_db_transaction
from backoffice.src.billing.shared.exceptions import InsufficientCreditsError

INTERNAL_KEY = 'internal-test-key'


@pytest.fixture
def client(mock_db):
    from backoffice.core.registrar import register_app

    app = register_app()

    async def override_db():
        yield mock_db

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_db_transaction] = override_db
    with patch.object(settings, 'INTERNAL_API_KEY', INTERNAL_KEY):
        yield TestClient(app)


class TestSubscriptionEndpoints:
    """Tests for the tenant subscription routes."""

    @pytest.fixture
    def user(self):
        return MagicMock(id='user-1', tenant_id='tenant-1', is_admin=False)

    @pytest.mark.asyncio
    async def test_get_subscription(self, mock_db, user):
        """Test the summary is built for the caller's tenant."""
        from backoffice.app.billing.api.v1.subscription import get_subscription

        tenant = SimpleNamespace(id='tenant-1')
        summary = MagicMock()
        with patch('backoffice.app.billing.api.v1.subscription.tenant_service.get_for_user',
                   AsyncMock(return_value=tenant)), \
             patch('backoffice.app.billing.api.v1.subscription.subscription_service.get_summary',
                   AsyncMock(return_value=summary)) as mock_summary:
            result = await get_subscription(db=mock_db, user=user)

        assert result is summary
        mock_summary.assert_awaited_once_with(mock_db, tenant)

    @pytest.mark.asyncio
    async def test_invoice_link_of_other_tenant(self, mock_db):
        """Test another tenant's invoice is reported as missing."""
        from backoffice.app.billing.service.subscription_service import subscription_service
        from backoffice.common.exception.errors import NotFoundError

        invoice = SimpleNamespace(id='inv-1', tenant_id='tenant-2', invoice_url='https://pay', status='pending')
        with patch('backoffice.app.billing.service.subscription_service.invoice_dao.select_model',
                   AsyncMock(return_value=invoice)):
            with pytest.raises(NotFoundError):
                await subscription_service.get_invoice_link(mock_db, SimpleNamespace(id='tenant-1'), 'inv-1')

    @pytest.mark.asyncio
    async def test_invoice_link(self, mock_db):
        """Test the payment link of an owned invoice."""
        from backoffice.app.billing.service.subscription_service import subscription_service

        invoice = SimpleNamespace(id='inv-1', tenant_id='tenant-1', invoice_url='https://pay', status='pending')
        with patch('backoffice.app.billing.service.subscription_service.invoice_dao.select_model',
                   AsyncMock(return_value=invoice)):
            result = await subscription_service.get_invoice_link(mock_db, SimpleNamespace(id='tenant-1'), 'inv-1')

        assert result == {'invoice_id': 'inv-1', 'invoice_url': 'https://pay', 'status': 'pending'}


class TestInternalCreditRoutes:
    """Tests for the service-to-service credit routes."""

    def test_missing_key_rejected(self, client):
        """Test requests without the internal key get 401."""
        response = client.get(f'{settings.FASTAPI_API_V1_PATH}/internal/credits/check/tenant-1')

        assert response.status_code == 401

    def test_check(self, client):
        """Test the balance check response."""
        result = CreditCheckResult(balance_brl=Decimal('12.5'), sufficient=True, block_on_zero=True)
        with patch('backoffice.app.credit.api.v1.internal.credit_service.check', AsyncMock(return_value=result)):
            response = client.get(
                f'{settings.FASTAPI_API_V1_PATH}/internal/credits/check/tenant-1',
                headers={'X-Internal-Key': INTERNAL_KEY},
            )

        assert response.status_code == 200
        assert response.json()['sufficient'] is True

    def test_deduct(self, client):
        """Test a deduction returns the new balance."""
        result = DeductCreditsResult(deducted=Decimal('0.0825'), balance_brl=Decimal('9.9175'), transaction_id='tx-1')
        with patch('backoffice.app.credit.api.v1.internal.credit_service.deduct',
                   AsyncMock(return_value=result)) as mock_deduct:
            response = client.post(
                f'{settings.FASTAPI_API_V1_PATH}/internal/credits/deduct',
                headers={'X-Internal-Key': INTERNAL_KEY},
                json={'tenant_id': 'tenant-1', 'cost_usd': '0.01', 'model': 'gpt-4o', 'total_tokens': 1500},
            )

        assert response.status_code == 200
        assert response.json()['transaction_id'] == 'tx-1'
        param = mock_deduct.await_args.args[1]
        assert param.cost_usd == Decimal('0.01')

    def test_deduct_insufficient(self, client):
        """Test an insufficient balance answers 402 with the shortfall."""
        with patch('backoffice.app.credit.api.v1.internal.credit_service.deduct',
                   AsyncMock(side_effect=InsufficientCreditsError(required=2.0, available=0.5))):
            response = client.post(
                f'{settings.FASTAPI_API_V1_PATH}/internal/credits/deduct',
                headers={'X-Internal-Key': INTERNAL_KEY},
                json={'tenant_id': 'tenant-1', 'cost_usd': '1', 'model': 'gpt-4o'},
            )

        body = response.json()
        assert response.status_code == 402
        assert body['error'] == 'insufficient_credits'
        assert body['shortfall'] == 1.5

    def test_deduct_negative_cost_rejected(self, client):
        """Test a negative cost fails validation."""
        response = client.post(
            f'{settings.FASTAPI_API_V1_PATH}/internal/credits/deduct',
            headers={'X-Internal-Key': INTERNAL_KEY},
            json={'tenant_id': 'tenant-1', 'cost_usd': '-1', 'model': 'gpt-4o'},
        )

        assert response.status_code == 422


class TestInternalLimitRoute:
    """Tests for the internal plan limit check."""

    def test_limit_check(self, client):
        """Test the limit check for an existing tenant."""
        result = LimitCheckResult(exceeded=True, limit=3, limit_key='users')
        with patch('backoffice.app.tenant.api.v1.internal.tenant_service.get', AsyncMock()), \
             patch('backoffice.app.tenant.api.v1.internal.check_limit',
                   AsyncMock(return_value=result)) as mock_check:
            response = client.post(
                f'{settings.FASTAPI_API_V1_PATH}/internal/tenants/tenant-1/limits/check',
                headers={'X-Internal-Key': INTERNAL_KEY},
                json={'limit_key': 'users', 'current_count': 3},
            )

        assert response.status_code == 200
        assert response.json()['exceeded'] is True
        assert mock_check.await_args.args[1:] == ('tenant-1', 'users', 3)


class TestHealth:
    """Tests for the health route."""

    def test_health(self, client):
        """Test the health route needs no authentication."""
        response = client.get('/health')

        assert response.status_code == 200
        assert response.json() == {'status': 'ok'}
