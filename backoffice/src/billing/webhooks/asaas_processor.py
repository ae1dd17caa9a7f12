"""
Asaas Webhook Handler

Applies stored Asaas payment events.

Payments whose externalReference starts with ``credit_`` belong to credit
package purchases and are routed to the purchase flow. Everything else is a
subscription payment:

    PAYMENT_CREATED                      upsert a pending invoice
    PAYMENT_CONFIRMED                    invoice paid
    PAYMENT_RECEIVED                     invoice paid, subscription active, tenant unblocked
    PAYMENT_OVERDUE                      invoice failed, subscription past_due, block after N days
    PAYMENT_DELETED                      invoice cancelled
    PAYMENT_REFUNDED                     invoice refunded
    PAYMENT_CREDIT_CARD_CAPTURE_REFUSED  warning only
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.billing.crud.crud_invoice import invoice_dao
from backoffice.app.billing.crud.crud_subscription import subscription_dao
from backoffice.app.billing.model import BillingEvent, Invoice, Subscription, WebhookEvent
from backoffice.app.credit.crud.crud_credit import credit_transaction_dao
from backoffice.app.log.service.execution_log_service import execution_log_service
from backoffice.app.tenant.crud.crud_tenant import tenant_dao
from backoffice.app.tenant.service.tenant_service import tenant_service
from backoffice.common.enums import (
    CreditTransactionType,
    InvoiceStatus,
    LogSeverity,
    PaymentProvider,
    PurchaseStatus,
    SubscriptionStatus,
)
from backoffice.core.conf import settings
from backoffice.src.billing.credits.manager import credit_manager
from backoffice.src.billing.shared.config import CREDIT_PURCHASE_REFERENCE_PREFIX
from backoffice.utils.timezone import timezone

logger = logging.getLogger(__name__)

PAYMENT_CREATED = 'PAYMENT_CREATED'
PAYMENT_CONFIRMED = 'PAYMENT_CONFIRMED'
PAYMENT_RECEIVED = 'PAYMENT_RECEIVED'
PAYMENT_OVERDUE = 'PAYMENT_OVERDUE'
PAYMENT_DELETED = 'PAYMENT_DELETED'
PAYMENT_REFUNDED = 'PAYMENT_REFUNDED'
PAYMENT_CREDIT_CARD_CAPTURE_REFUSED = 'PAYMENT_CREDIT_CARD_CAPTURE_REFUSED'

PAID_EVENTS = (PAYMENT_CONFIRMED, PAYMENT_RECEIVED)
FAILED_PURCHASE_EVENTS = (PAYMENT_OVERDUE, PAYMENT_DELETED)

INVOICE_STATUS_BY_EVENT = {
    PAYMENT_CONFIRMED: InvoiceStatus.paid,
    PAYMENT_RECEIVED: InvoiceStatus.paid,
    PAYMENT_OVERDUE: InvoiceStatus.failed,
    PAYMENT_DELETED: InvoiceStatus.cancelled,
    PAYMENT_REFUNDED: InvoiceStatus.refunded,
}


def parse_due_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return timezone.from_str(value, '%Y-%m-%d')


def days_overdue(due_date: Optional[datetime], now: Optional[datetime] = None) -> int:
    """Whole days between the due date and today, 0 when not yet due."""
    if due_date is None:
        return 0
    delta = timezone.start_of_day(now) - timezone.start_of_day(due_date)
    return max(0, delta.days)


class AsaasWebhookHandler:
    """Handler for Asaas payment webhooks."""

    @classmethod
    async def handle(cls, db: AsyncSession, event: WebhookEvent) -> None:
        payload = event.payload or {}
        event_type = payload.get('event') or event.event_type
        payment = payload.get('payment') or {}
        reference = payment.get('externalReference') or ''

        logger.info(f"[ASAAS] Processing {event_type} for payment {payment.get('id')}")

        if reference.startswith(CREDIT_PURCHASE_REFERENCE_PREFIX):
            await cls.handle_credit_purchase(db, event_type, payment, reference[len(CREDIT_PURCHASE_REFERENCE_PREFIX):])
            return

        await cls.handle_subscription_payment(db, event, event_type, payment)

    # =========================================================================
    # CREDIT PURCHASES
    # =========================================================================

    @classmethod
    async def handle_credit_purchase(
        cls, db: AsyncSession, event_type: str, payment: Dict[str, Any], transaction_id: str
    ) -> None:
        """
        Complete, fail or refund a pending credit purchase.

        The pending row is locked before its status is read, so concurrent
        deliveries of the same payment apply it once.

        Args:
            db: Database session
            event_type: Asaas event name
            payment: Asaas payment object
            transaction_id: Pending purchase transaction id from the externalReference
        """
        pending = await credit_transaction_dao.get_for_update(db, transaction_id)
        if pending is None:
            logger.warning(f"[ASAAS] Credit purchase transaction {transaction_id} not found")
            return

        metadata = dict(pending.extra or {})
        status = metadata.get('status')
        credit_amount = Decimal(str(metadata.get('credit_amount_brl') or 0))

        if event_type in PAID_EVENTS:
            if status == PurchaseStatus.completed:
                logger.info(f"[ASAAS] Credit purchase {transaction_id} already completed, skipping")
                return
            if credit_amount <= 0:
                logger.error(f"[ASAAS] Credit purchase {transaction_id} has no credit amount, skipping")
                return

            credited = await credit_manager.add_credits(
                db,
                pending.tenant_id,
                credit_amount,
                CreditTransactionType.purchase,
                pending.description or 'Credit purchase',
                reference_type='credit_purchase',
                reference_id=pending.id,
                metadata={'asaas_payment_id': payment.get('id'), 'package_id': metadata.get('package_id')},
            )
            pending.extra = {
                **metadata,
                'status': PurchaseStatus.completed,
                'completed_at': timezone.now().isoformat(),
                'credit_transaction_id': credited.id,
            }
            await execution_log_service.credit(
                db,
                'credits.purchase_completed',
                {'transaction_id': pending.id, 'amount_brl': str(credit_amount)},
                tenant_id=pending.tenant_id,
            )

        elif event_type in FAILED_PURCHASE_EVENTS:
            if status != PurchaseStatus.pending:
                return
            pending.extra = {
                **metadata,
                'status': PurchaseStatus.failed,
                'failed_at': timezone.now().isoformat(),
                'failure_reason': 'Payment overdue' if event_type == PAYMENT_OVERDUE else 'Payment deleted',
            }
            await execution_log_service.credit(
                db,
                'credits.purchase_failed',
                {'transaction_id': pending.id, 'event': event_type},
                tenant_id=pending.tenant_id,
                severity=LogSeverity.warning,
            )

        elif event_type == PAYMENT_REFUNDED:
            if status != PurchaseStatus.completed:
                return
            await credit_manager.add_credits(
                db,
                pending.tenant_id,
                -credit_amount,
                CreditTransactionType.refund,
                f"Refund: {pending.description or 'credit purchase'}",
                reference_type='credit_purchase',
                reference_id=pending.id,
                metadata={'asaas_payment_id': payment.get('id')},
            )
            pending.extra = {**metadata, 'status': PurchaseStatus.refunded, 'refunded_at': timezone.now().isoformat()}
            await execution_log_service.credit(
                db,
                'credits.purchase_refunded',
                {'transaction_id': pending.id, 'amount_brl': str(credit_amount)},
                tenant_id=pending.tenant_id,
                severity=LogSeverity.warning,
            )

        await db.flush()

    # =========================================================================
    # SUBSCRIPTION PAYMENTS
    # =========================================================================

    @classmethod
    async def handle_subscription_payment(
        cls, db: AsyncSession, event: WebhookEvent, event_type: str, payment: Dict[str, Any]
    ) -> None:
        payment_id = payment.get('id')
        subscription = None
        if payment.get('subscription'):
            subscription = await subscription_dao.get_by_external_id(db, payment['subscription'])

        invoice = await invoice_dao.get_by_external_id(db, payment_id) if payment_id else None
        if subscription is None and invoice is not None and invoice.subscription_id:
            subscription = await subscription_dao.select_model(db, invoice.subscription_id)

        tenant_id = subscription.tenant_id if subscription else (invoice.tenant_id if invoice else None)
        if tenant_id is None:
            logger.warning(f"[ASAAS] No subscription or invoice found for payment {payment_id}, ignoring {event_type}")
            return

        db.add(
            BillingEvent(
                tenant_id=tenant_id,
                event_type=event_type,
                provider=PaymentProvider.asaas,
                external_id=payment_id,
                payload=event.payload,
                processed_at=timezone.now(),
                idempotency_key=event.idempotency_key,
            )
        )

        if event_type == PAYMENT_CREDIT_CARD_CAPTURE_REFUSED:
            logger.warning(f"[ASAAS] Credit card capture refused for payment {payment_id} (tenant {tenant_id})")
            await execution_log_service.webhook(
                db,
                PaymentProvider.asaas,
                'payment.capture_refused',
                {'payment_id': payment_id},
                severity=LogSeverity.warning,
                tenant_id=tenant_id,
            )
            await db.flush()
            return

        if event_type == PAYMENT_CREATED:
            invoice = await cls._upsert_invoice(db, invoice, tenant_id, subscription, payment)
        elif invoice is None and event_type in INVOICE_STATUS_BY_EVENT:
            invoice = await cls._upsert_invoice(db, None, tenant_id, subscription, payment)

        if event_type in PAID_EVENTS:
            invoice.mark_as_paid()
        elif event_type in INVOICE_STATUS_BY_EVENT:
            invoice.status = INVOICE_STATUS_BY_EVENT[event_type]

        if event_type == PAYMENT_RECEIVED:
            await cls._activate(db, subscription, tenant_id)
        elif event_type == PAYMENT_OVERDUE:
            await cls._handle_overdue(db, subscription, tenant_id, invoice)

        await db.flush()
        logger.info(f"[ASAAS] Applied {event_type} for tenant {tenant_id}")

    @staticmethod
    async def _upsert_invoice(
        db: AsyncSession,
        invoice: Optional[Invoice],
        tenant_id: str,
        subscription: Optional[Subscription],
        payment: Dict[str, Any],
    ) -> Invoice:
        if invoice is None:
            invoice = Invoice(
                tenant_id=tenant_id,
                amount=Decimal(str(payment.get('value') or 0)),
                subscription_id=subscription.id if subscription else None,
                external_id=payment.get('id'),
                status=InvoiceStatus.pending,
            )
            db.add(invoice)
        else:
            invoice.amount = Decimal(str(payment.get('value') or invoice.amount))
        invoice.due_date = parse_due_date(payment.get('dueDate')) or invoice.due_date
        invoice.invoice_url = payment.get('invoiceUrl') or invoice.invoice_url
        await db.flush()
        return invoice

    @staticmethod
    async def _activate(db: AsyncSession, subscription: Optional[Subscription], tenant_id: str) -> None:
        if subscription is not None:
            subscription.status = SubscriptionStatus.active
        tenant = await tenant_dao.select_model(db, tenant_id)
        if tenant is not None and tenant_service.unblock(tenant):
            logger.info(f"[ASAAS] Tenant {tenant_id} unblocked after payment")

    @staticmethod
    async def _handle_overdue(
        db: AsyncSession, subscription: Optional[Subscription], tenant_id: str, invoice: Invoice
    ) -> None:
        if subscription is not None:
            subscription.status = SubscriptionStatus.past_due

        overdue = days_overdue(invoice.due_date)
        if overdue < settings.ASAAS_OVERDUE_BLOCK_DAYS:
            return

        tenant = await tenant_dao.select_model(db, tenant_id)
        if tenant is None or tenant.is_blocked:
            return
        tenant_service.block(tenant, f'Payment overdue for {overdue} days')
        logger.warning(f"[ASAAS] Tenant {tenant_id} blocked, invoice {invoice.id} overdue for {overdue} days")
        await execution_log_service.webhook(
            db,
            PaymentProvider.asaas,
            'tenant.blocked_overdue',
            {'invoice_id': invoice.id, 'days_overdue': overdue},
            severity=LogSeverity.warning,
            tenant_id=tenant_id,
        )
