"""Tenant subscriptions.

Checkout, plan changes and cancellation against the tenant's payment gateway
(Asaas or Stripe). Services flush only; a gateway failure raises and the
request transaction rolls back the local changes.
"""

from typing import Any

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.billing.crud.crud_invoice import invoice_dao
from backoffice.app.billing.crud.crud_subscription import subscription_dao
from backoffice.app.billing.model import Invoice, Subscription
from backoffice.app.billing.schema.subscription import (
    GetSubscriptionDetail,
    GetSubscriptionSummary,
    SubscriptionPlanInfo,
)
from backoffice.app.log.service.execution_log_service import execution_log_service
from backoffice.app.tenant.crud.crud_plan import plan_dao
from backoffice.app.tenant.crud.crud_tenant import user_dao
from backoffice.app.tenant.model import Plan, Tenant, User
from backoffice.app.tenant.service.limit_service import get_plan_limit
from backoffice.common.enums import InvoiceStatus, PaymentProvider, SubscriptionStatus, TenantStatus
from backoffice.common.exception import errors
from backoffice.common.log import log
from backoffice.common.pagination import PageParams, paginate
from backoffice.src.billing.external.asaas.client import AsaasClient
from backoffice.src.billing.external.gateway import resolve_gateway
from backoffice.src.billing.external.interfaces import BillingGatewayInterface
from backoffice.src.billing.shared.config import SUBSCRIPTION_LIMIT_KEYS
from backoffice.src.billing.shared.exceptions import BillingError
from backoffice.utils.timezone import timezone


def subscription_detail(subscription: Subscription | None) -> GetSubscriptionDetail | None:
    if subscription is None:
        return None
    detail = GetSubscriptionDetail.model_validate(subscription)
    detail.days_until_renewal = subscription.days_until_renewal
    return detail


def plan_info(plan: Plan | None) -> SubscriptionPlanInfo | None:
    return SubscriptionPlanInfo.model_validate(plan) if plan is not None else None


def plan_description(plan: Plan) -> str:
    return f'Plano {plan.name} - AiYou Assist'


class SubscriptionService:
    """Subscription operations for the current tenant."""

    @staticmethod
    async def get_summary(db: AsyncSession, tenant: Tenant) -> GetSubscriptionSummary:
        """Current subscription, plan, usage and limits of a tenant."""
        subscription = await subscription_dao.get_current(db, tenant.id)
        plan = await plan_dao.select_model(db, subscription.plan_id) if subscription else None
        limits = {key: await get_plan_limit(db, plan, key) for key in SUBSCRIPTION_LIMIT_KEYS}
        return GetSubscriptionSummary(
            subscription=subscription_detail(subscription),
            plan=plan_info(plan),
            usage={'users': await user_dao.count_by_tenant(db, tenant.id)},
            limits=limits,
            is_blocked=bool(tenant.is_blocked),
            blocked_reason=tenant.blocked_reason,
        )

    @staticmethod
    async def get_invoices(db: AsyncSession, tenant: Tenant, params: PageParams) -> tuple[list[Invoice], int]:
        """Invoices of the current subscription, empty without one."""
        subscription = await subscription_dao.get_current(db, tenant.id)
        if subscription is None:
            return [], 0
        stmt = invoice_dao.get_list_select(tenant_id=tenant.id, subscription_id=subscription.id)
        items, total = await paginate(db, stmt, params)
        return list(items), total

    @staticmethod
    async def get_invoice_link(db: AsyncSession, tenant: Tenant, invoice_id: str) -> dict[str, Any]:
        invoice = await invoice_dao.select_model(db, invoice_id)
        if not invoice or invoice.tenant_id != tenant.id:
            raise errors.NotFoundError(msg='Invoice not found')
        if not invoice.invoice_url:
            raise errors.NotFoundError(msg='Invoice has no payment link')
        return {'invoice_id': invoice.id, 'invoice_url': invoice.invoice_url, 'status': invoice.status}

    @staticmethod
    async def ensure_customer(db: AsyncSession, gateway: BillingGatewayInterface, tenant: Tenant) -> str:
        """Return the tenant's gateway customer id, creating the customer on first use."""
        if tenant.billing_customer_id:
            return tenant.billing_customer_id

        owner = await user_dao.get_tenant_owner(db, tenant.id)
        customer_id = await gateway.create_customer(
            tenant_id=tenant.id,
            name=tenant.name,
            email=owner.email if owner else None,
            tax_id=tenant.get_setting('cpf_cnpj'),
        )
        tenant.billing_customer_id = customer_id
        await db.flush()
        return customer_id

    @staticmethod
    def _stripe_price_id(provider: str, plan: Plan) -> str | None:
        if provider != PaymentProvider.stripe:
            return None
        price_id = (plan.features or {}).get('stripe_price_id')
        if not price_id:
            raise errors.UnprocessableError(msg='Plan has no Stripe configuration')
        return price_id

    @staticmethod
    async def _get_active_plan(db: AsyncSession, plan_id: str) -> Plan:
        plan = await plan_dao.select_model(db, plan_id)
        if not plan or not plan.is_active:
            raise errors.NotFoundError(msg='Plan not found')
        return plan

    @staticmethod
    def _new_subscription(tenant: Tenant, plan: Plan, provider: str, external_id: str | None) -> Subscription:
        now = timezone.now()
        return Subscription(
            tenant_id=tenant.id,
            plan_id=plan.id,
            status=SubscriptionStatus.active,
            payment_provider=provider,
            external_id=external_id,
            current_period_start=now,
            current_period_end=timezone.add_months(now, 1),
        )

    async def change_plan(
        self,
        db: AsyncSession,
        tenant: Tenant,
        plan_id: str,
        billing_type: str = 'UNDEFINED',
        *,
        user: User | None = None,
        request: Request | None = None,
    ) -> GetSubscriptionDetail:
        """Move the tenant to another plan.

        The old gateway subscription is cancelled (a failure there is logged and
        tolerated) and a new one is created on the same provider.

        Args:
            db: Database session
            tenant: Current tenant
            plan_id: Target plan id
            billing_type: Asaas billing type (PIX, BOLETO, CREDIT_CARD, UNDEFINED)
            user: Acting user for the audit entry
            request: Current request for the audit entry

        Returns:
            The new subscription

        Raises:
            UnprocessableError: Already on the plan, or a Stripe plan without stripe_price_id
            NotFoundError: Unknown or inactive plan
        """
        current = await subscription_dao.get_current(db, tenant.id)
        plan = await self._get_active_plan(db, plan_id)
        if current and current.plan_id == plan.id and not current.is_cancelled:
            raise errors.UnprocessableError(msg='You are already on this plan')

        provider = current.payment_provider if current else (tenant.billing_provider or PaymentProvider.asaas)
        price_id = self._stripe_price_id(provider, plan)

        gateway = await resolve_gateway(db, provider)
        try:
            customer_id = await self.ensure_customer(db, gateway, tenant)

            if current and current.external_id and not current.is_cancelled:
                try:
                    await gateway.cancel_subscription(current.external_id)
                except BillingError as e:
                    log.warning(f'Failed to cancel old subscription {current.external_id} on {provider}: {e.message}')
            if current and not current.is_cancelled:
                current.cancel()

            external = await gateway.create_subscription(
                customer_id=customer_id,
                tenant_id=tenant.id,
                description=plan_description(plan),
                value=plan.price_monthly,
                price_id=price_id,
                billing_type=billing_type,
            )
        finally:
            await gateway.aclose()

        subscription = self._new_subscription(tenant, plan, provider, external.get('id'))
        db.add(subscription)
        await db.flush()

        log.info(f'Tenant {tenant.id} changed plan to {plan.name} via {provider}')
        await execution_log_service.audit(
            db,
            'subscription.change_plan',
            {'plan_id': plan.id, 'plan_name': plan.name, 'provider': provider},
            tenant_id=tenant.id,
            user_id=user.id if user else None,
            request=request,
        )
        return subscription_detail(subscription)

    async def create_subscription(
        self,
        db: AsyncSession,
        tenant: Tenant,
        plan_id: str,
        billing_type: str = 'PIX',
        cpf_cnpj: str | None = None,
        *,
        user: User | None = None,
        request: Request | None = None,
    ) -> dict[str, Any]:
        """First paid subscription (checkout). A trial subscription is replaced.

        Returns:
            The subscription, plus the first Asaas invoice link and PIX data when available
        """
        current = await subscription_dao.get_current(db, tenant.id)
        if current and current.status in (SubscriptionStatus.active, SubscriptionStatus.past_due):
            raise errors.UnprocessableError(msg='You already have an active subscription, use change plan instead')

        plan = await self._get_active_plan(db, plan_id)
        provider = tenant.billing_provider or PaymentProvider.asaas
        price_id = self._stripe_price_id(provider, plan)

        if cpf_cnpj:
            tenant.settings = {**(tenant.settings or {}), 'cpf_cnpj': cpf_cnpj}

        response: dict[str, Any] = {}
        gateway = await resolve_gateway(db, provider)
        try:
            customer_id = await self.ensure_customer(db, gateway, tenant)
            if current and current.status == SubscriptionStatus.trial:
                current.cancel()

            external = await gateway.create_subscription(
                customer_id=customer_id,
                tenant_id=tenant.id,
                description=plan_description(plan),
                value=plan.price_monthly,
                price_id=price_id,
                billing_type=billing_type,
            )
            subscription = self._new_subscription(tenant, plan, provider, external.get('id'))
            db.add(subscription)
            await db.flush()

            if isinstance(gateway, AsaasClient):
                response.update(await self._first_asaas_payment(db, gateway, tenant, subscription, billing_type))
        finally:
            await gateway.aclose()

        tenant.status = TenantStatus.active
        await db.flush()

        await execution_log_service.audit(
            db,
            'subscription.created',
            {'plan_id': plan.id, 'plan_name': plan.name, 'provider': provider, 'billing_type': billing_type},
            tenant_id=tenant.id,
            user_id=user.id if user else None,
            request=request,
        )
        response['subscription'] = subscription_detail(subscription)
        return response

    @staticmethod
    async def _first_asaas_payment(
        db: AsyncSession, asaas: AsaasClient, tenant: Tenant, subscription: Subscription, billing_type: str
    ) -> dict[str, Any]:
        """Record the first Asaas payment as an invoice and fetch its PIX QR code."""
        result: dict[str, Any] = {}
        try:
            payments = await asaas.list_subscription_payments(subscription.external_id)
        except BillingError as e:
            log.warning(f'Failed to fetch first payment for subscription {subscription.external_id}: {e.message}')
            return result

        first = (payments.get('data') or [None])[0]
        if not first:
            return result

        if not await invoice_dao.get_by_external_id(db, first['id']):
            db.add(
                Invoice(
                    tenant_id=tenant.id,
                    amount=first.get('value') or 0,
                    subscription_id=subscription.id,
                    external_id=first['id'],
                    status=InvoiceStatus.pending,
                    due_date=timezone.from_str(first['dueDate'], '%Y-%m-%d') if first.get('dueDate') else None,
                    invoice_url=first.get('invoiceUrl'),
                )
            )
            await db.flush()

        if first.get('invoiceUrl'):
            result['invoice_url'] = first['invoiceUrl']
        if billing_type == 'PIX':
            try:
                pix = await asaas.get_pix_qr_code(first['id'])
                result['pix'] = {'payload': pix.get('payload'), 'expiration_date': pix.get('expirationDate')}
            except BillingError as e:
                log.warning(f'Failed to fetch PIX QR code for payment {first["id"]}: {e.message}')
        return result

    @staticmethod
    async def cancel(
        db: AsyncSession,
        tenant: Tenant,
        reason: str | None = None,
        *,
        user: User | None = None,
        request: Request | None = None,
    ) -> None:
        """Cancel the current subscription on the gateway and locally.

        Args:
            db: Database session
            tenant: Current tenant
            reason: Free-text reason kept in the audit entry
            user: Acting user for the audit entry
            request: Current request for the audit entry

        Raises:
            NotFoundError: No subscription
            UnprocessableError: Already cancelled
        """
        subscription = await subscription_dao.get_current(db, tenant.id)
        if subscription is None:
            raise errors.NotFoundError(msg='No active subscription')
        if subscription.is_cancelled:
            raise errors.UnprocessableError(msg='Subscription is already cancelled')

        if subscription.external_id:
            gateway = await resolve_gateway(db, subscription.payment_provider)
            try:
                await gateway.cancel_subscription(subscription.external_id)
            finally:
                await gateway.aclose()

        subscription.cancel()
        await db.flush()

        await execution_log_service.audit(
            db,
            'subscription.cancel',
            {'reason': reason, 'subscription_id': subscription.id},
            tenant_id=tenant.id,
            user_id=user.id if user else None,
            request=request,
        )


subscription_service: SubscriptionService = SubscriptionService()
