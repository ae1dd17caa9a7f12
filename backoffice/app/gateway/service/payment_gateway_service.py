from cryptography.fernet import InvalidToken
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.gateway.crud.crud_payment_gateway import payment_gateway_dao
from backoffice.app.gateway.model import PaymentGatewaySetting
from backoffice.app.gateway.schema.payment_gateway import (
    GatewayConnectionResult,
    GetPaymentGatewayDetail,
    UpdatePaymentGatewayParam,
)
from backoffice.app.log.service.execution_log_service import execution_log_service
from backoffice.app.tenant.model import User
from backoffice.common.enums import PaymentProvider
from backoffice.common.exception import errors
from backoffice.common.log import log
from backoffice.common.security.encryption import mask_encrypted, secret_vault
from backoffice.src.billing.external.gateway import GatewayCredentials, build_gateway
from backoffice.src.billing.shared.exceptions import BillingError

API_KEY_MASK = (8, 4)
WEBHOOK_SECRET_MASK = (6, 4)


def gateway_detail(row: PaymentGatewaySetting) -> GetPaymentGatewayDetail:
    return GetPaymentGatewayDetail(
        id=row.id,
        provider=row.provider,
        is_active=row.is_active,
        sandbox=row.sandbox,
        has_api_key=bool(row.api_key_encrypted),
        api_key_masked=mask_encrypted(row.api_key_encrypted, *API_KEY_MASK),
        has_webhook_secret=bool(row.webhook_secret_encrypted),
        webhook_secret_masked=mask_encrypted(row.webhook_secret_encrypted, *WEBHOOK_SECRET_MASK),
        metadata=row.extra or {},
        updated_time=row.updated_time,
    )


class PaymentGatewayService:
    """Payment gateway credential management"""

    @staticmethod
    def _check_provider(provider: str) -> None:
        if provider not in PaymentProvider.get_member_values():
            raise errors.UnprocessableError(msg=f'Unsupported provider: {provider}')

    async def _get_or_create(self, db: AsyncSession, provider: str) -> PaymentGatewaySetting:
        self._check_provider(provider)
        row = await payment_gateway_dao.get_by_provider(db, provider)
        if row is None:
            row = PaymentGatewaySetting(provider=provider, is_active=False, sandbox=False)
            db.add(row)
            await db.flush()
        return row

    async def get_list(self, db: AsyncSession) -> list[GetPaymentGatewayDetail]:
        """All gateway rows, creating the missing ones."""
        rows = {row.provider: row for row in await payment_gateway_dao.get_all(db)}
        for provider in PaymentProvider.get_member_values():
            if provider not in rows:
                rows[provider] = await self._get_or_create(db, provider)
        return [gateway_detail(rows[provider]) for provider in sorted(rows)]

    async def update(
        self,
        db: AsyncSession,
        provider: str,
        obj: UpdatePaymentGatewayParam,
        *,
        user: User | None = None,
        request: Request | None = None,
    ) -> GetPaymentGatewayDetail:
        """Update a gateway, encrypting only the secrets that were sent.

        Args:
            db: Database session.
            provider: ``asaas`` or ``stripe``.
            obj: New settings.
            user: Acting admin.
            request: Current request.

        Returns:
            The gateway settings with masked secrets.
        """
        row = await self._get_or_create(db, provider)
        changes = []
        if obj.api_key:
            row.api_key_encrypted = secret_vault.encrypt(obj.api_key)
            changes.append('api_key')
        if obj.webhook_secret:
            row.webhook_secret_encrypted = secret_vault.encrypt(obj.webhook_secret)
            changes.append('webhook_secret')
        if obj.is_active is not None:
            row.is_active = obj.is_active
            changes.append('is_active')
        if obj.sandbox is not None:
            row.sandbox = obj.sandbox
            changes.append('sandbox')
        await db.flush()

        await execution_log_service.audit(
            db,
            'admin.payment_gateway.updated',
            {'provider': provider, 'changes': changes},
            user_id=user.id if user else None,
            request=request,
        )
        return gateway_detail(row)

    async def check_connection(self, db: AsyncSession, provider: str) -> GatewayConnectionResult:
        self._check_provider(provider)
        row = await payment_gateway_dao.get_by_provider(db, provider)
        if row is None or not row.api_key_encrypted:
            return GatewayConnectionResult(success=False, message='API key not configured')

        try:
            credentials = GatewayCredentials(
                provider,
                secret_vault.decrypt(row.api_key_encrypted),
                secret_vault.decrypt(row.webhook_secret_encrypted or ''),
                row.sandbox,
            )
        except InvalidToken:
            return GatewayConnectionResult(success=False, message='Stored API key cannot be decrypted')

        gateway = build_gateway(credentials)
        try:
            details = await gateway.check_connection()
        except BillingError as e:
            log.warning(f'Payment gateway {provider} connection test failed: {e.message}')
            return GatewayConnectionResult(success=False, message=f'Connection failed: {e.message}')
        finally:
            await gateway.aclose()
        return GatewayConnectionResult(success=True, message=f'Connected to {provider}', details=details)


payment_gateway_service: PaymentGatewayService = PaymentGatewayService()
