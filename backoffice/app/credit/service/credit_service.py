"""Tenant-facing credit operations: balance view, ledger, package purchase and the internal usage endpoints."""

from decimal import Decimal

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.billing.crud.crud_subscription import subscription_dao
from backoffice.app.billing.service.subscription_service import subscription_service
from backoffice.app.credit.crud.crud_credit import credit_package_dao, credit_transaction_dao
from backoffice.app.credit.model import CreditPackage, CreditTransaction
from backoffice.app.credit.schema.credit import (
    CreditCheckResult,
    DeductCreditsParam,
    DeductCreditsResult,
    GetCreditBalance,
    GetCreditPackageDetail,
    GetCreditTransactionDetail,
    GetPurchaseResult,
)
from backoffice.app.llm.model import AiUsageRecord
from backoffice.app.log.service.execution_log_service import execution_log_service
from backoffice.app.tenant.crud.crud_plan import plan_dao
from backoffice.app.tenant.model import Tenant, User
from backoffice.common.enums import BillingType, CreditTransactionType, PaymentProvider, PurchaseStatus
from backoffice.common.exception import errors
from backoffice.common.log import log
from backoffice.common.pagination import PageParams, paginate
from backoffice.src.billing.credits.manager import credit_manager
from backoffice.src.billing.credits.settings import get_credit_pricing
from backoffice.src.billing.external.asaas.client import AsaasClient
from backoffice.src.billing.external.gateway import resolve_gateway
from backoffice.src.billing.shared.config import CREDIT_PURCHASE_REFERENCE_PREFIX, RECENT_TRANSACTIONS_LIMIT
from backoffice.src.billing.shared.exceptions import BillingError, PaymentError

ZERO = Decimal('0')


class CreditService:
    """Credit balance, purchases and usage charges for one tenant"""

    @staticmethod
    async def get_balance(db: AsyncSession, tenant: Tenant) -> GetCreditBalance:
        """Build the balance view shown on the credits page.

        Args:
            db: Database session.
            tenant: Tenant whose balance is shown.

        Returns:
            Plan and add-on balances, exhaustion flags and the latest ledger entries.
        """
        snapshot = await credit_manager.get_snapshot(db, tenant.id)
        pricing = await get_credit_pricing(db)
        subscription = await subscription_dao.get_current(db, tenant.id)
        plan = await plan_dao.select_model(db, subscription.plan_id) if subscription else None

        plan_balance = snapshot['plan_balance_brl']
        addon_balance = snapshot['addon_balance_brl']
        total = plan_balance + addon_balance
        plan_included = Decimal(str(plan.included_credits_brl)) if plan else ZERO
        exhausted = plan_balance <= ZERO and plan_included > ZERO
        recent = await credit_transaction_dao.get_recent(db, tenant.id, RECENT_TRANSACTIONS_LIMIT)

        return GetCreditBalance(
            plan_balance=plan_balance,
            addon_balance=addon_balance,
            total_balance=total,
            plan_credits_granted=snapshot['plan_credits_granted_brl'],
            plan_included=plan_included,
            plan_credits_exhausted=exhausted,
            needs_addon_purchase=exhausted and addon_balance <= ZERO,
            plan_resets_at=subscription.current_period_end if subscription else None,
            total_purchased=snapshot['total_purchased_brl'],
            total_consumed=snapshot['total_consumed_brl'],
            low_balance=total <= pricing.min_balance_warning_brl,
            recent_transactions=[GetCreditTransactionDetail.model_validate(t) for t in recent],
        )

    @staticmethod
    async def get_transactions(
        db: AsyncSession, tenant: Tenant, params: PageParams, type: str | None = None
    ) -> tuple[list[CreditTransaction], int]:
        stmt = credit_transaction_dao.get_list_select(tenant_id=tenant.id, type=type)
        items, total = await paginate(db, stmt, params)
        return list(items), total

    @staticmethod
    async def get_packages(db: AsyncSession) -> list[CreditPackage]:
        return list(await credit_package_dao.get_list(db, active_only=True))

    async def purchase(
        self,
        db: AsyncSession,
        tenant: Tenant,
        package_id: str,
        billing_type: str = BillingType.undefined,
        *,
        user: User | None = None,
        request: Request | None = None,
    ) -> GetPurchaseResult:
        """Start a credit package purchase.

        A pending ledger entry is written first and its id is used as the Asaas
        payment reference. The credits are granted later by the payment webhook.

        Args:
            db: Database session.
            tenant: Buying tenant.
            package_id: Credit package to buy.
            billing_type: Asaas billing type (PIX, BOLETO, CREDIT_CARD or UNDEFINED).
            user: Acting user, recorded in the audit log.
            request: Current request, recorded in the audit log.

        Returns:
            The pending transaction id and the payment links.

        Raises:
            NotFoundError: If the package does not exist or is inactive.
            PaymentError: If the gateway rejects the payment. The pending entry is removed.
        """
        package = await credit_package_dao.select_model(db, package_id)
        if not package or not package.is_active:
            raise errors.NotFoundError(msg='Credit package not found')

        balance = await credit_manager.get_balance(db, tenant.id, use_cache=False)
        transaction = CreditTransaction(
            tenant_id=tenant.id,
            type=CreditTransactionType.purchase,
            amount_brl=ZERO,
            balance_after_brl=balance,
            description=f'Credit purchase: {package.name}',
            reference_type='credit_package',
            reference_id=package.id,
            extra={
                'status': PurchaseStatus.pending,
                'package_id': package.id,
                'price_brl': str(package.price_brl),
                'credit_amount_brl': str(package.credit_amount_brl),
            },
        )
        db.add(transaction)
        await db.flush()

        gateway = await resolve_gateway(db, PaymentProvider.asaas)
        try:
            if not isinstance(gateway, AsaasClient):
                raise PaymentError('Credit purchases require Asaas', provider=PaymentProvider.asaas)
            customer_id = await subscription_service.ensure_customer(db, gateway, tenant)
            payment = await gateway.create_payment(
                customer_id,
                package.price_brl,
                f'Créditos AiYou - {package.name}',
                f'{CREDIT_PURCHASE_REFERENCE_PREFIX}{transaction.id}',
                billing_type=billing_type,
            )
            pix_payload = None
            if billing_type == BillingType.pix:
                pix_payload = (await gateway.get_pix_qr_code(payment['id'])).get('payload')
        except BillingError as e:
            log.error(f'Credit purchase failed for tenant {tenant.id}: {e.message}')
            await db.delete(transaction)
            await db.flush()
            raise PaymentError(f'Failed to create payment: {e.message}', provider=PaymentProvider.asaas)
        finally:
            await gateway.aclose()

        transaction.extra = {
            **transaction.extra,
            'asaas_payment_id': payment.get('id'),
            'invoice_url': payment.get('invoiceUrl'),
            'pix_payload': pix_payload,
            'bank_slip_url': payment.get('bankSlipUrl'),
            'billing_type': billing_type,
        }
        await db.flush()

        await execution_log_service.audit(
            db,
            'credits.purchase',
            {'package_id': package.id, 'transaction_id': transaction.id, 'price_brl': str(package.price_brl)},
            tenant_id=tenant.id,
            user_id=user.id if user else None,
            request=request,
        )
        return GetPurchaseResult(
            transaction_id=transaction.id,
            package=GetCreditPackageDetail.model_validate(package),
            asaas_payment_id=payment.get('id'),
            invoice_url=payment.get('invoiceUrl'),
            pix_payload=pix_payload,
            bank_slip_url=payment.get('bankSlipUrl'),
        )

    @staticmethod
    async def check(db: AsyncSession, tenant_id: str) -> CreditCheckResult:
        """Whether the tenant may keep using the assistant."""
        pricing = await get_credit_pricing(db)
        return CreditCheckResult(
            balance_brl=await credit_manager.get_balance(db, tenant_id),
            sufficient=await credit_manager.has_sufficient_balance(db, tenant_id),
            block_on_zero=pricing.block_on_zero_balance,
        )

    @staticmethod
    async def deduct(db: AsyncSession, obj: DeductCreditsParam) -> DeductCreditsResult:
        """Record one LLM call and charge its cost against the tenant balance.

        Args:
            db: Database session.
            obj: Usage reported by the orchestrator.

        Returns:
            The amount deducted and the resulting balance.
        """
        total_tokens = obj.total_tokens or obj.input_tokens + obj.output_tokens
        db.add(
            AiUsageRecord(
                tenant_id=obj.tenant_id,
                model=obj.model,
                llm_provider_id=obj.llm_provider_id,
                input_tokens=obj.input_tokens,
                output_tokens=obj.output_tokens,
                cost_usd=obj.cost_usd,
                reference_id=obj.ai_decision_id,
            )
        )
        transaction = await credit_manager.deduct_credits(
            db,
            obj.tenant_id,
            obj.cost_usd,
            total_tokens=total_tokens,
            model=obj.model,
            reference_id=obj.ai_decision_id,
        )
        if transaction is None:
            await db.flush()
            return DeductCreditsResult(
                deducted=ZERO, balance_brl=await credit_manager.get_balance(db, obj.tenant_id, use_cache=False)
            )
        return DeductCreditsResult(
            deducted=-transaction.amount_brl,
            balance_brl=transaction.balance_after_brl,
            transaction_id=transaction.id,
        )

credit_service: CreditService = CreditService()
