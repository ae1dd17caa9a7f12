"""
Stripe API Client Wrapper

Provides a circuit-breaker-protected interface to the Stripe API for
subscription billing. Credentials are passed per request so the key stored in
payment_gateway_settings can differ from the environment.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import stripe

from backoffice.common.enums import PaymentProvider
from backoffice.core.conf import settings
from backoffice.src.billing.external.circuit_breaker import GatewayCircuitBreaker, build_breaker
from backoffice.src.billing.external.interfaces import BillingGatewayInterface
from backoffice.src.billing.external.stripe.idempotency import generate_idempotency_key
from backoffice.src.billing.shared.exceptions import GatewayNotConfiguredError, PaymentError, WebhookError

logger = logging.getLogger(__name__)

stripe_circuit_breaker = build_breaker('stripe_api', (stripe.StripeError,))


class StripeClient(BillingGatewayInterface):
    """
    Stripe gateway client.

    Usage:
        client = StripeClient(api_key, webhook_secret)
        subscription = await client.create_subscription(customer_id='cus_...', price_id='price_...', ...)
    """

    provider = PaymentProvider.stripe.value

    def __init__(
        self,
        api_key: str,
        webhook_secret: Optional[str] = None,
        *,
        circuit_breaker: Optional[GatewayCircuitBreaker] = None,
    ):
        if not api_key:
            raise GatewayNotConfiguredError(self.provider)
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self._breaker = circuit_breaker or stripe_circuit_breaker

    async def _call(self, func, *args, **kwargs) -> Any:
        try:
            return await self._breaker.safe_call(func, *args, api_key=self.api_key, **kwargs)
        except stripe.StripeError as e:
            logger.error(f"[STRIPE] {getattr(func, '__qualname__', func)} failed: {e}")
            raise PaymentError(
                getattr(e, 'user_message', None) or str(e),
                provider=self.provider,
                gateway_status=getattr(e, 'http_status', None),
            )

    # -------------------------------------------------------------------------
    # Customers
    # -------------------------------------------------------------------------

    async def create_customer(self, *, tenant_id: str, name: str, email: Optional[str], tax_id: Optional[str] = None) -> str:
        customer = await self._call(
            stripe.Customer.create_async,
            name=name,
            email=email,
            metadata={'tenant_id': tenant_id},
            idempotency_key=generate_idempotency_key('customer_create', tenant_id),
        )
        logger.info(f"[STRIPE] Created customer {customer.id} for tenant {tenant_id}")
        return customer.id

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    async def create_subscription(
        self,
        *,
        customer_id: str,
        tenant_id: str,
        description: str,
        value: Decimal,
        price_id: Optional[str] = None,
        billing_type: str = 'UNDEFINED',
    ) -> Dict[str, Any]:
        if not price_id:
            raise PaymentError("Plan has no Stripe price configured", provider=self.provider)

        subscription = await self._call(
            stripe.Subscription.create_async,
            customer=customer_id,
            items=[{'price': price_id}],
            description=description,
            metadata={'tenant_id': tenant_id},
            idempotency_key=generate_idempotency_key('subscription_create', tenant_id, price_id),
        )
        return {'id': subscription.id, 'status': subscription.status}

    async def get_subscription(self, external_id: str) -> Any:
        return await self._call(stripe.Subscription.retrieve_async, external_id)

    async def cancel_subscription(self, external_id: str) -> Dict[str, Any]:
        subscription = await self._call(stripe.Subscription.cancel_async, external_id)
        logger.info(f"[STRIPE] Cancelled subscription {external_id}")
        return {'id': subscription.id, 'status': subscription.status}

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    async def list_invoices(self, customer_id: str, limit: int = 20) -> List[Any]:
        invoices = await self._call(stripe.Invoice.list_async, customer=customer_id, limit=limit)
        return list(invoices.data)

    async def get_invoice(self, invoice_id: str) -> Any:
        return await self._call(stripe.Invoice.retrieve_async, invoice_id)

    # -------------------------------------------------------------------------
    # Account
    # -------------------------------------------------------------------------

    async def check_connection(self) -> Dict[str, Any]:
        balance = await self._call(stripe.Balance.retrieve_async)
        return {'livemode': balance.livemode}

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    def construct_event(self, payload: bytes, signature: Optional[str]) -> stripe.Event:
        return construct_webhook_event(payload, signature, self.webhook_secret)


def construct_webhook_event(payload: bytes, signature: Optional[str], webhook_secret: Optional[str]) -> stripe.Event:
    """
    Verify a webhook signature and parse the event.

    Only the signing secret is needed, so intake works without an API key.

    Raises:
        WebhookError: Missing secret, missing header, bad payload or bad signature (401)
    """
    if not webhook_secret:
        raise WebhookError("Stripe webhook secret not configured", status_code=401)
    if not signature:
        raise WebhookError("Missing stripe-signature header", status_code=401)

    try:
        return stripe.Webhook.construct_event(
            payload,
            signature,
            webhook_secret,
            tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        )
    except ValueError as e:
        logger.error(f"[STRIPE] Invalid webhook payload: {e}")
        raise WebhookError("Invalid payload", status_code=401)
    except stripe.SignatureVerificationError as e:
        logger.error(f"[STRIPE] Invalid webhook signature: {e}")
        raise WebhookError("Invalid signature", status_code=401)
