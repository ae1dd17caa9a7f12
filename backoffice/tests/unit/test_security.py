"""Tests for the security helpers and request guards."""

from types import SimpleNamespace
from unittest.mock import patch

import pytest

from cryptography.fernet import Fernet, InvalidToken

from backoffice.app.tenant.model import Tenant
from backoffice.common.exception.errors import AuthorizationError, ForbiddenError, TokenError
from backoffice.common.security.encryption import SecretVault, mask_encrypted, mask_secret
from backoffice.common.security.jwt import create_access_token, jwt_decode
from backoffice.common.security.permission import check_tenant_billing, require_admin, verify_internal_key
from backoffice.core.conf import settings
from backoffice.src.billing.shared.exceptions import TenantBlockedError
from backoffice.utils.timezone import timezone


def internal_request(key=None):
    headers = {'X-Internal-Key': key} if key is not None else {}
    return SimpleNamespace(headers=headers)


class TestSecretVault:
    """Tests for stored secret handling."""

    def test_encrypt_is_not_plaintext(self):
        """Test the stored token differs from the secret and decrypts back."""
        vault = SecretVault(Fernet.generate_key())

        token = vault.encrypt('sk-live-123')

        assert token != 'sk-live-123'
        assert vault.decrypt(token) == 'sk-live-123'

    def test_wrong_key_fails(self):
        """Test a token from another key is rejected."""
        token = SecretVault(Fernet.generate_key()).encrypt('sk-live-123')

        with pytest.raises(InvalidToken):
            SecretVault(Fernet.generate_key()).decrypt(token)

    def test_mask_secret(self):
        """Test masking keeps only the edges."""
        assert mask_secret('sk-ant-api03-abcdefgh') == 'sk-ant-a...efgh'
        assert mask_secret('$aact_1234567890', 6, 4) == '$aact_...7890'
        assert mask_secret('short') == '****'
        assert mask_secret(None) == '****'

    def test_mask_undecryptable(self):
        """Test a token that no longer decrypts is shown as configured."""
        assert mask_encrypted('not-a-fernet-token') == '****configured'
        assert mask_encrypted(None) is None


class TestInternalKey:
    """Tests for service-to-service authentication."""

    @pytest.mark.asyncio
    async def test_valid_key(self):
        """Test the configured key is accepted."""
        with patch.object(settings, 'INTERNAL_API_KEY', 'internal-secret'):
            await verify_internal_key(internal_request('internal-secret'))

    @pytest.mark.asyncio
    async def test_wrong_key(self):
        """Test a wrong key is refused."""
        with patch.object(settings, 'INTERNAL_API_KEY', 'internal-secret'):
            with pytest.raises(AuthorizationError):
                await verify_internal_key(internal_request('guess'))

    @pytest.mark.asyncio
    async def test_unconfigured_refuses_everything(self):
        """Test no requests pass while the key is not configured."""
        with patch.object(settings, 'INTERNAL_API_KEY', ''):
            with pytest.raises(AuthorizationError):
                await verify_internal_key(internal_request(''))


class TestBillingGuard:
    """Tests for the tenant billing guard."""

    @pytest.mark.asyncio
    async def test_blocked_tenant_gets_402(self, mock_db):
        """Test a blocked tenant is refused with payment required."""
        tenant = Tenant(name='Acme', slug='acme', is_blocked=True, blocked_reason='Payment overdue for 8 days')
        tenant.blocked_at = timezone.now()
        mock_db.get.return_value = tenant
        user = SimpleNamespace(is_admin=False, tenant_id='tenant-1')

        with pytest.raises(TenantBlockedError) as exc_info:
            await check_tenant_billing(user, mock_db)

        body = exc_info.value.to_dict()
        assert exc_info.value.status_code == 402
        assert body['error'] == 'payment_required'
        assert body['reason'] == 'Payment overdue for 8 days'

    @pytest.mark.asyncio
    async def test_active_tenant_passes(self, mock_db):
        """Test an unblocked tenant passes."""
        mock_db.get.return_value = Tenant(name='Acme', slug='acme')

        await check_tenant_billing(SimpleNamespace(is_admin=False, tenant_id='tenant-1'), mock_db)

    @pytest.mark.asyncio
    async def test_admin_bypasses(self, mock_db):
        """Test admins are never blocked."""
        await check_tenant_billing(SimpleNamespace(is_admin=True, tenant_id=None), mock_db)

        mock_db.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_require_admin(self):
        """Test non-admins are forbidden from admin routes."""
        with pytest.raises(ForbiddenError):
            await require_admin(SimpleNamespace(is_admin=False))


class TestAccessToken:
    """Tests for bearer token encoding."""

    def test_decode_returns_user(self):
        """Test a fresh token decodes to its subject."""
        token = create_access_token('user-1', role='owner')

        assert jwt_decode(token) == 'user-1'

    def test_expired_token(self):
        """Test an expired token is rejected."""
        token = create_access_token('user-1', expires_seconds=-60)

        with pytest.raises(TokenError) as exc_info:
            jwt_decode(token)

        assert exc_info.value.detail == 'Token expired'

    def test_tampered_token(self):
        """Test a token signed with another key is rejected."""
        with patch.object(settings, 'TOKEN_SECRET_KEY', 'another-secret-key-with-32-bytes!'):
            token = create_access_token('user-1')

        with pytest.raises(TokenError):
            jwt_decode(token)
