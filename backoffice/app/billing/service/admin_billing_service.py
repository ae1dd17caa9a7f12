"""Admin billing operations.

Overview metrics, subscriber listings and financial detail, manual invoice
approval, credit grants and the pending-invoice link for Asaas subscribers.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from fastapi import Request
from sqlalchemy import exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.billing.crud.crud_event import billing_event_dao
from backoffice.app.billing.crud.crud_invoice import invoice_dao
from backoffice.app.billing.crud.crud_subscription import subscription_dao
from backoffice.app.billing.model import BillingEvent, Invoice, Subscription
from backoffice.app.billing.schema.admin_billing import (
    GetBillingOverview,
    GetSubscriberDetail,
    GetSubscriberFinancialDetail,
    GetSubscriberItem,
    SendInvoiceLinkResult,
)
from backoffice.app.billing.schema.subscription import GetBillingEventDetail, GetInvoiceDetail
from backoffice.app.billing.service.subscription_service import plan_info, subscription_detail
from backoffice.app.credit.crud.crud_credit import credit_transaction_dao
from backoffice.app.credit.schema.credit import GetCreditTransactionDetail
from backoffice.app.log.service.execution_log_service import execution_log_service
from backoffice.app.tenant.crud.crud_plan import plan_dao
from backoffice.app.tenant.crud.crud_tenant import tenant_dao, user_dao
from backoffice.app.tenant.model import Plan, Tenant, User
from backoffice.app.tenant.schema.tenant import GetTenantDetail
from backoffice.app.tenant.service.tenant_service import tenant_service
from backoffice.common.enums import CreditTransactionType, InvoiceStatus, PaymentProvider, SubscriptionStatus
from backoffice.common.exception import errors
from backoffice.common.log import log
from backoffice.common.pagination import PageParams, paginate
from backoffice.src.billing.credits.manager import credit_manager
from backoffice.src.billing.external.gateway import resolve_gateway
from backoffice.utils.timezone import timezone

CENT = Decimal('0.01')
DETAIL_HISTORY_LIMIT = 50
ASAAS_PENDING_STATUS = 'PENDING'

# subscriber filter -> subscription status
SUBSCRIBER_FILTER_STATUS = {
    'active': SubscriptionStatus.active,
    'paid': SubscriptionStatus.active,
    'past_due': SubscriptionStatus.past_due,
    'overdue': SubscriptionStatus.past_due,
    'trial': SubscriptionStatus.trial,
}


def _money(value: Any) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


class AdminBillingService:
    """Billing operations for platform admins."""

    @staticmethod
    async def _count_subscriptions(db: AsyncSession, *statuses: str) -> int:
        stmt = select(func.count()).select_from(Subscription).where(Subscription.status.in_(statuses))
        return (await db.execute(stmt)).scalar_one()

    async def get_overview(self, db: AsyncSession) -> GetBillingOverview:
        """Subscription counts, blocked tenants, MRR and revenue this month.

        MRR is the sum of monthly plan prices over active subscriptions.
        """
        mrr_stmt = (
            select(func.coalesce(func.sum(Plan.price_monthly), 0))
            .select_from(Subscription)
            .join(Plan, Plan.id == Subscription.plan_id)
            .where(Subscription.status == SubscriptionStatus.active)
        )
        revenue_stmt = select(func.coalesce(func.sum(Invoice.amount), 0)).where(
            Invoice.status == InvoiceStatus.paid,
            Invoice.paid_at >= timezone.start_of_month(),
        )
        return GetBillingOverview(
            total_subscribers=await self._count_subscriptions(
                db, SubscriptionStatus.active, SubscriptionStatus.trial, SubscriptionStatus.past_due
            ),
            active_subscribers=await self._count_subscriptions(db, SubscriptionStatus.active),
            trial_subscribers=await self._count_subscriptions(db, SubscriptionStatus.trial),
            past_due_subscribers=await self._count_subscriptions(db, SubscriptionStatus.past_due),
            blocked_tenants=await tenant_dao.count_blocked(db),
            mrr=_money((await db.execute(mrr_stmt)).scalar_one()),
            revenue_this_month=_money((await db.execute(revenue_stmt)).scalar_one()),
        )

    @staticmethod
    async def _subscriber_parts(db: AsyncSession, tenant: Tenant) -> dict[str, Any]:
        subscription = await subscription_dao.get_current(db, tenant.id)
        plan = await plan_dao.select_model(db, subscription.plan_id) if subscription else None
        return {
            'tenant': GetTenantDetail.model_validate(tenant),
            'subscription': subscription_detail(subscription),
            'plan': plan_info(plan),
        }

    async def get_subscribers(
        self,
        db: AsyncSession,
        params: PageParams,
        *,
        filter_by: str | None = None,
        search: str | None = None,
    ) -> tuple[list[GetSubscriberItem], int]:
        """Page through tenants with their current subscription.

        Args:
            db: Database session
            params: Page parameters
            filter_by: active|paid, past_due|overdue, blocked or trial
            search: Substring of the tenant name or slug

        Returns:
            (items, total)
        """
        stmt = tenant_dao.get_search_select(search)
        if filter_by == 'blocked':
            stmt = stmt.where(Tenant.is_blocked.is_(True))
        elif filter_by in SUBSCRIBER_FILTER_STATUS:
            stmt = stmt.where(
                exists().where(
                    Subscription.tenant_id == Tenant.id,
                    Subscription.status == SUBSCRIBER_FILTER_STATUS[filter_by],
                )
            )

        tenants, total = await paginate(db, stmt, params)
        items = []
        for tenant in tenants:
            parts = await self._subscriber_parts(db, tenant)
            items.append(GetSubscriberItem(**parts, users_count=await user_dao.count_by_tenant(db, tenant.id)))
        return items, total

    async def get_subscriber(self, db: AsyncSession, tenant_id: str) -> GetSubscriberDetail:
        tenant = await tenant_service.get(db, tenant_id)
        parts = await self._subscriber_parts(db, tenant)
        invoices = await db.execute(invoice_dao.get_list_select(tenant_id=tenant.id).limit(DETAIL_HISTORY_LIMIT))
        events = await db.execute(billing_event_dao.get_list_select(tenant_id=tenant.id).limit(DETAIL_HISTORY_LIMIT))
        return GetSubscriberDetail(
            **parts,
            invoices=[GetInvoiceDetail.model_validate(i) for i in invoices.scalars().all()],
            events=[GetBillingEventDetail.model_validate(e) for e in events.scalars().all()],
        )

    async def get_subscriber_financial(self, db: AsyncSession, tenant_id: str) -> GetSubscriberFinancialDetail:
        """Credit balance, invoices, ledger and lifetime revenue of one subscriber."""
        tenant = await tenant_service.get(db, tenant_id)
        parts = await self._subscriber_parts(db, tenant)
        invoices = (
            await db.execute(invoice_dao.get_list_select(tenant_id=tenant.id).limit(DETAIL_HISTORY_LIMIT))
        ).scalars().all()
        transactions = await credit_transaction_dao.get_recent(db, tenant.id, DETAIL_HISTORY_LIMIT)
        revenue_stmt = select(func.coalesce(func.sum(Invoice.amount), 0)).where(
            Invoice.tenant_id == tenant.id, Invoice.status == InvoiceStatus.paid
        )
        return GetSubscriberFinancialDetail(
            **parts,
            credits=await credit_manager.get_snapshot(db, tenant.id),
            invoices=[GetInvoiceDetail.model_validate(i) for i in invoices],
            credit_transactions=[
                GetCreditTransactionDetail.model_validate(t).model_dump(by_alias=True) for t in transactions
            ],
            total_revenue=_money((await db.execute(revenue_stmt)).scalar_one()),
            total_credit_purchases=_money(
                await credit_transaction_dao.sum_amount(db, tenant.id, CreditTransactionType.purchase)
            ),
        )

    @staticmethod
    async def approve_invoice(
        db: AsyncSession, pk: str, *, user: User | None = None, request: Request | None = None
    ) -> Invoice:
        """Mark a pending invoice paid by hand.

        Also reactivates the invoice's subscription and unblocks the tenant.

        Args:
            db: Database session
            pk: Invoice id
            user: Acting admin
            request: Current request for the audit entry

        Returns:
            The paid invoice

        Raises:
            NotFoundError: Unknown invoice
            UnprocessableError: The invoice is not pending
        """
        invoice = await invoice_dao.select_model(db, pk)
        if not invoice:
            raise errors.NotFoundError(msg='Invoice not found')
        if invoice.status != InvoiceStatus.pending:
            raise errors.UnprocessableError(msg='Only pending invoices can be approved')

        invoice.mark_as_paid()
        if invoice.subscription_id:
            subscription = await subscription_dao.select_model(db, invoice.subscription_id)
            if subscription:
                subscription.status = SubscriptionStatus.active
        tenant = await tenant_dao.select_model(db, invoice.tenant_id)
        if tenant:
            tenant_service.unblock(tenant)
        await db.flush()

        log.info(f'Invoice {invoice.id} approved manually by {user.id if user else "system"}')
        await execution_log_service.audit(
            db,
            'admin.billing.approve_invoice',
            {'invoice_id': invoice.id, 'amount': str(invoice.amount)},
            tenant_id=invoice.tenant_id,
            user_id=user.id if user else None,
            request=request,
        )
        return invoice

    @staticmethod
    async def send_invoice_link(
        db: AsyncSession, tenant_id: str, *, user: User | None = None, request: Request | None = None
    ) -> SendInvoiceLinkResult:
        """Find the pending Asaas payment of a subscriber and return its payment link.

        Args:
            db: Database session
            tenant_id: Subscriber tenant id
            user: Acting admin
            request: Current request for the audit entry

        Returns:
            The payment link and Asaas payment id

        Raises:
            NotFoundError: No subscription, or no pending payment on Asaas
            UnprocessableError: The subscription is not billed through Asaas
        """
        tenant = await tenant_service.get(db, tenant_id)
        subscription = await subscription_dao.get_current(db, tenant.id)
        if subscription is None or not subscription.external_id:
            raise errors.NotFoundError(msg='Tenant has no gateway subscription')
        if subscription.payment_provider != PaymentProvider.asaas:
            raise errors.UnprocessableError(msg='Invoice links can only be sent for Asaas subscriptions')

        asaas = await resolve_gateway(db, PaymentProvider.asaas)
        try:
            payments = await asaas.list_subscription_payments(subscription.external_id)
        finally:
            await asaas.aclose()

        pending = next((p for p in payments.get('data') or [] if p.get('status') == ASAAS_PENDING_STATUS), None)
        if pending is None:
            raise errors.NotFoundError(msg='No pending invoice found')

        invoice_url = pending.get('invoiceUrl') or pending.get('bankSlipUrl')
        await execution_log_service.audit(
            db,
            'admin.billing.send_invoice_link',
            {'payment_id': pending['id'], 'invoice_url': invoice_url},
            tenant_id=tenant.id,
            user_id=user.id if user else None,
            request=request,
        )
        return SendInvoiceLinkResult(message='Invoice link generated', invoice_url=invoice_url, payment_id=pending['id'])

    @staticmethod
    async def grant_credits(
        db: AsyncSession,
        tenant_id: str,
        amount: Decimal,
        description: str,
        *,
        user: User | None = None,
        request: Request | None = None,
    ) -> dict[str, Any]:
        tenant = await tenant_service.get(db, tenant_id)
        transaction = await credit_manager.add_credits(
            db,
            tenant.id,
            amount,
            CreditTransactionType.manual_credit,
            description,
            reference_type='admin_grant',
            reference_id=user.id if user else None,
            metadata={'granted_by': user.id if user else None},
        )
        await execution_log_service.audit(
            db,
            'admin.billing.grant_credits',
            {'amount': str(amount), 'description': description, 'transaction_id': transaction.id},
            tenant_id=tenant.id,
            user_id=user.id if user else None,
            request=request,
        )
        return {'transaction_id': transaction.id, 'balance_brl': transaction.balance_after_brl}

    @staticmethod
    async def get_invoices(
        db: AsyncSession,
        params: PageParams,
        *,
        status: str | None = None,
        tenant_id: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> tuple[list[Invoice], int]:
        stmt = invoice_dao.get_list_select(tenant_id=tenant_id, status=status)
        if date_from:
            stmt = stmt.where(Invoice.created_time >= date_from)
        if date_to:
            stmt = stmt.where(Invoice.created_time <= date_to)
        items, total = await paginate(db, stmt, params)
        return list(items), total

    @staticmethod
    async def get_events(
        db: AsyncSession,
        params: PageParams,
        *,
        provider: str | None = None,
        event_type: str | None = None,
        tenant_id: str | None = None,
    ) -> tuple[list[BillingEvent], int]:
        stmt = billing_event_dao.get_list_select(tenant_id=tenant_id, provider=provider, event_type=event_type)
        items, total = await paginate(db, stmt, params)
        return list(items), total


admin_billing_service: AdminBillingService = AdminBillingService()
