"""Tests for payment gateway credential management.

Tests cover:
- Secrets are masked in every response
- Updates only replace the secrets that were sent
- Connection tests against the configured gateway
"""

from unittest.mock import AsyncMock, patch

import pytest

from backoffice.app.gateway.model import PaymentGatewaySetting
from backoffice.app.gateway.schema.payment_gateway import UpdatePaymentGatewayParam
from backoffice.app.gateway.service.payment_gateway_service import gateway_detail, payment_gateway_service
from backoffice.common.exception import errors
from backoffice.common.security.encryption import secret_vault
from backoffice.src.billing.shared.exceptions import PaymentError

GATEWAY = 'backoffice.app.gateway.service.payment_gateway_service'


def make_row(provider='asaas', api_key='$aact_prod_000111222333444', webhook_secret='whsec_abcdef123456'):
    row = PaymentGatewaySetting(
        provider=provider,
        api_key_encrypted=secret_vault.encrypt(api_key) if api_key else None,
        webhook_secret_encrypted=secret_vault.encrypt(webhook_secret) if webhook_secret else None,
        is_active=True,
        sandbox=False,
    )
    row.id = f'gw-{provider}'
    return row


class TestGatewayDetail:
    """Tests for the masked view."""

    def test_secrets_are_masked(self):
        """Test keys are shown with head and tail only."""
        detail = gateway_detail(make_row())

        assert detail.api_key_masked == '$aact_pr...3444'
        assert detail.webhook_secret_masked == 'whsec_...3456'
        assert detail.has_api_key is True
        assert '$aact_prod_000111222333444' not in detail.model_dump_json()

    def test_missing_secrets(self):
        """Test an unconfigured gateway reports no key."""
        detail = gateway_detail(make_row(api_key=None, webhook_secret=None))

        assert detail.has_api_key is False
        assert detail.api_key_masked is None
        assert detail.webhook_secret_masked is None

    def test_undecryptable_secret(self):
        """Test a key encrypted under another key still shows as configured."""
        row = make_row()
        row.api_key_encrypted = 'not-a-fernet-token'

        assert gateway_detail(row).api_key_masked == '****configured'


class TestUpdateGateway:
    """Tests for updating gateway settings."""

    @pytest.mark.asyncio
    async def test_empty_secret_keeps_stored_one(self, mock_db):
        """Test only the sent secret is replaced."""
        row = make_row()
        stored_secret = row.webhook_secret_encrypted

        with patch(f'{GATEWAY}.payment_gateway_dao.get_by_provider', AsyncMock(return_value=row)), \
             patch(f'{GATEWAY}.execution_log_service.audit', AsyncMock()) as mock_audit:
            detail = await payment_gateway_service.update(
                mock_db, 'asaas', UpdatePaymentGatewayParam(api_key='$aact_prod_999888777666555', webhook_secret='')
            )

        assert secret_vault.decrypt(row.api_key_encrypted) == '$aact_prod_999888777666555'
        assert row.webhook_secret_encrypted == stored_secret
        assert detail.api_key_masked == '$aact_pr...6555'
        assert mock_audit.await_args.args[2] == {'provider': 'asaas', 'changes': ['api_key']}

    @pytest.mark.asyncio
    async def test_missing_row_is_created(self, mock_db):
        """Test the first update of a provider creates its row."""
        with patch(f'{GATEWAY}.payment_gateway_dao.get_by_provider', AsyncMock(return_value=None)), \
             patch(f'{GATEWAY}.execution_log_service.audit', AsyncMock()):
            detail = await payment_gateway_service.update(
                mock_db, 'stripe', UpdatePaymentGatewayParam(is_active=True, sandbox=True)
            )

        created = mock_db.add.call_args.args[0]
        assert created.provider == 'stripe'
        assert (detail.is_active, detail.sandbox, detail.has_api_key) == (True, True, False)

    @pytest.mark.asyncio
    async def test_unsupported_provider(self, mock_db):
        """Test providers other than asaas and stripe are rejected."""
        with pytest.raises(errors.UnprocessableError):
            await payment_gateway_service.update(mock_db, 'paypal', UpdatePaymentGatewayParam())


class TestCheckConnection:
    """Tests for the gateway connection test."""

    @pytest.mark.asyncio
    async def test_without_key(self, mock_db):
        """Test a gateway without a key fails without calling out."""
        with patch(f'{GATEWAY}.payment_gateway_dao.get_by_provider', AsyncMock(return_value=make_row(api_key=None))), \
             patch(f'{GATEWAY}.build_gateway') as mock_build:
            result = await payment_gateway_service.check_connection(mock_db, 'asaas')

        assert result.success is False
        mock_build.assert_not_called()

    @pytest.mark.asyncio
    async def test_success_passes_decrypted_credentials(self, mock_db):
        """Test the gateway is built from the decrypted credentials and closed."""
        gateway = AsyncMock()
        gateway.check_connection.return_value = {'account': 'Acme'}

        with patch(f'{GATEWAY}.payment_gateway_dao.get_by_provider', AsyncMock(return_value=make_row())), \
             patch(f'{GATEWAY}.build_gateway', return_value=gateway) as mock_build:
            result = await payment_gateway_service.check_connection(mock_db, 'asaas')

        credentials = mock_build.call_args.args[0]
        assert credentials.api_key == '$aact_prod_000111222333444'
        assert credentials.webhook_secret == 'whsec_abcdef123456'
        assert result.success is True
        assert result.details == {'account': 'Acme'}
        gateway.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_gateway_rejects(self, mock_db):
        """Test a gateway error is reported instead of raised."""
        gateway = AsyncMock()
        gateway.check_connection.side_effect = PaymentError('invalid access token', provider='asaas')

        with patch(f'{GATEWAY}.payment_gateway_dao.get_by_provider', AsyncMock(return_value=make_row())), \
             patch(f'{GATEWAY}.build_gateway', return_value=gateway):
            result = await payment_gateway_service.check_connection(mock_db, 'asaas')

        assert result.success is False
        assert 'invalid access token' in result.message
        gateway.aclose.assert_awaited_once()
