"""
Gateway Resolution

Maps a provider name to a configured gateway client. Credentials stored in
payment_gateway_settings (encrypted, managed by admins) take precedence over
the ASAAS_* / STRIPE_* environment settings.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from cryptography.fernet import InvalidToken
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.gateway.model import PaymentGatewaySetting
from backoffice.common.enums import PaymentProvider
from backoffice.common.security.encryption import secret_vault
from backoffice.core.conf import settings
from backoffice.src.billing.external.asaas.client import AsaasClient
from backoffice.src.billing.external.interfaces import BillingGatewayInterface
from backoffice.src.billing.external.stripe.client import StripeClient
from backoffice.src.billing.shared.exceptions import UnsupportedGatewayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayCredentials:
    provider: str
    api_key: str
    webhook_secret: Optional[str]
    sandbox: bool


def _env_credentials(provider: str) -> GatewayCredentials:
    if provider == PaymentProvider.asaas:
        return GatewayCredentials(provider, settings.ASAAS_API_KEY, settings.ASAAS_WEBHOOK_TOKEN, settings.ASAAS_SANDBOX)
    return GatewayCredentials(provider, settings.STRIPE_SECRET_KEY, settings.STRIPE_WEBHOOK_SECRET, False)


async def get_gateway_credentials(db: AsyncSession, provider: str) -> GatewayCredentials:
    """
    Resolve the credentials for a provider.

    Raises:
        UnsupportedGatewayError: provider is not asaas or stripe
    """
    if provider not in PaymentProvider.get_member_values():
        raise UnsupportedGatewayError(provider)

    env = _env_credentials(provider)

    result = await db.execute(select(PaymentGatewaySetting).where(PaymentGatewaySetting.provider == provider))
    row = result.scalars().first()
    if row is None or not row.is_active or not row.api_key_encrypted:
        return env

    try:
        api_key = secret_vault.decrypt(row.api_key_encrypted)
        webhook_secret = (
            secret_vault.decrypt(row.webhook_secret_encrypted) if row.webhook_secret_encrypted else env.webhook_secret
        )
    except InvalidToken:
        logger.error(f"[GATEWAY] Stored {provider} credentials cannot be decrypted, falling back to environment")
        return env

    return GatewayCredentials(provider, api_key, webhook_secret, row.sandbox)


def build_gateway(credentials: GatewayCredentials) -> BillingGatewayInterface:
    if credentials.provider == PaymentProvider.asaas:
        return AsaasClient(credentials.api_key, sandbox=credentials.sandbox)
    if credentials.provider == PaymentProvider.stripe:
        return StripeClient(credentials.api_key, credentials.webhook_secret)
    raise UnsupportedGatewayError(credentials.provider)


async def resolve_gateway(db: AsyncSession, provider: str) -> BillingGatewayInterface:
    """
    Get a ready-to-use gateway client for a provider.

    Raises:
        UnsupportedGatewayError: Unknown provider
        GatewayNotConfiguredError: No API key configured
    """
    credentials = await get_gateway_credentials(db, provider)
    return build_gateway(credentials)
