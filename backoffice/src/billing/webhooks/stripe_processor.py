"""
Stripe Webhook Handler

Applies stored Stripe events. The stored payload is event.data.object.

Handled events:
- invoice.paid
- invoice.payment_failed
- customer.subscription.deleted
- customer.subscription.updated
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.billing.crud.crud_invoice import invoice_dao
from backoffice.app.billing.crud.crud_subscription import subscription_dao
from backoffice.app.billing.model import BillingEvent, Invoice, Subscription, WebhookEvent
from backoffice.app.tenant.crud.crud_tenant import tenant_dao
from backoffice.app.tenant.service.tenant_service import tenant_service
from backoffice.common.enums import InvoiceStatus, PaymentProvider, SubscriptionStatus
from backoffice.utils.timezone import timezone

logger = logging.getLogger(__name__)

CENTS = Decimal('100')

# Stripe subscription status -> local status; anything else is left unchanged
STRIPE_STATUS_MAP = {
    'active': SubscriptionStatus.active,
    'past_due': SubscriptionStatus.past_due,
    'canceled': SubscriptionStatus.cancelled,
    'trialing': SubscriptionStatus.trial,
    'paused': SubscriptionStatus.paused,
}


def invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    """Subscription id of an invoice, for both the legacy and the parent-based layout."""
    if invoice.get('subscription'):
        return invoice['subscription']
    details = (invoice.get('parent') or {}).get('subscription_details') or {}
    return details.get('subscription')


def map_stripe_status(status: Optional[str]) -> Optional[str]:
    return STRIPE_STATUS_MAP.get(status)


class StripeWebhookHandler:
    """Handler for Stripe webhook events."""

    @classmethod
    async def handle(cls, db: AsyncSession, event: WebhookEvent) -> None:
        handlers = {
            'invoice.paid': cls.handle_invoice_paid,
            'invoice.payment_failed': cls.handle_invoice_failed,
            'customer.subscription.deleted': cls.handle_subscription_deleted,
            'customer.subscription.updated': cls.handle_subscription_updated,
        }
        handler = handlers.get(event.event_type)
        if handler is None:
            logger.debug(f"[STRIPE] Ignoring unhandled event type {event.event_type}")
            return

        subscription = await handler(db, event.payload or {})
        if subscription is not None:
            cls._record(db, event, subscription.tenant_id)
        await db.flush()

    @staticmethod
    def _record(db: AsyncSession, event: WebhookEvent, tenant_id: str) -> None:
        db.add(
            BillingEvent(
                tenant_id=tenant_id,
                event_type=event.event_type,
                provider=PaymentProvider.stripe,
                external_id=event.external_id,
                payload=event.payload,
                processed_at=timezone.now(),
                idempotency_key=event.idempotency_key,
            )
        )

    @staticmethod
    async def _find_subscription(db: AsyncSession, external_id: Optional[str]) -> Optional[Subscription]:
        if not external_id:
            return None
        subscription = await subscription_dao.get_by_external_id(db, external_id)
        if subscription is None:
            logger.warning(f"[STRIPE] No local subscription for {external_id}")
        return subscription

    @staticmethod
    async def _upsert_invoice(
        db: AsyncSession, subscription: Subscription, data: Dict[str, Any], status: str, amount_field: str
    ) -> Invoice:
        invoice = await invoice_dao.get_by_external_id(db, data['id'])
        if invoice is None:
            invoice = Invoice(
                tenant_id=subscription.tenant_id,
                amount=Decimal('0'),
                subscription_id=subscription.id,
                external_id=data['id'],
            )
            db.add(invoice)

        invoice.amount = Decimal(str(data.get(amount_field) or 0)) / CENTS
        invoice.currency = (data.get('currency') or 'brl').upper()
        invoice.invoice_url = data.get('hosted_invoice_url') or invoice.invoice_url
        invoice.status = status
        if status == InvoiceStatus.paid:
            invoice.mark_as_paid()
        return invoice

    # =========================================================================
    # INVOICES
    # =========================================================================

    @classmethod
    async def handle_invoice_paid(cls, db: AsyncSession, data: Dict[str, Any]) -> Optional[Subscription]:
        """
        Record a paid invoice, activate the subscription and unblock the tenant.

        Args:
            db: Database session
            data: Stripe invoice object

        Returns:
            The local subscription, or None when it is unknown
        """
        subscription = await cls._find_subscription(db, invoice_subscription_id(data))
        if subscription is None:
            return None

        await cls._upsert_invoice(db, subscription, data, InvoiceStatus.paid, 'amount_paid')
        subscription.status = SubscriptionStatus.active

        tenant = await tenant_dao.select_model(db, subscription.tenant_id)
        if tenant is not None and tenant_service.unblock(tenant):
            logger.info(f"[STRIPE] Tenant {tenant.id} unblocked after payment")

        logger.info(f"[STRIPE] Invoice {data.get('id')} paid for tenant {subscription.tenant_id}")
        return subscription

    @classmethod
    async def handle_invoice_failed(cls, db: AsyncSession, data: Dict[str, Any]) -> Optional[Subscription]:
        subscription = await cls._find_subscription(db, invoice_subscription_id(data))
        if subscription is None:
            return None

        await cls._upsert_invoice(db, subscription, data, InvoiceStatus.failed, 'amount_due')
        subscription.status = SubscriptionStatus.past_due
        logger.warning(f"[STRIPE] Invoice {data.get('id')} payment failed for tenant {subscription.tenant_id}")
        return subscription

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    @classmethod
    async def handle_subscription_deleted(cls, db: AsyncSession, data: Dict[str, Any]) -> Optional[Subscription]:
        subscription = await cls._find_subscription(db, data.get('id'))
        if subscription is None:
            return None
        subscription.cancel()
        logger.info(f"[STRIPE] Subscription {subscription.external_id} cancelled")
        return subscription

    @classmethod
    async def handle_subscription_updated(cls, db: AsyncSession, data: Dict[str, Any]) -> Optional[Subscription]:
        subscription = await cls._find_subscription(db, data.get('id'))
        if subscription is None:
            return None

        status = map_stripe_status(data.get('status'))
        if status is not None and status != subscription.status:
            logger.info(f"[STRIPE] Subscription {subscription.external_id}: {subscription.status} -> {status}")
            if status == SubscriptionStatus.cancelled:
                subscription.cancel()
            else:
                subscription.status = status
        return subscription
