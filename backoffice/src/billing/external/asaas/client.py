"""
Asaas API Client

Async httpx client for the Asaas v3 API. Every request carries the
access_token header; non-2xx responses raise PaymentError with the Asaas
error description so callers can surface it.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from backoffice.common.enums import PaymentProvider
from backoffice.core.conf import settings
from backoffice.src.billing.external.circuit_breaker import GatewayCircuitBreaker, build_breaker
from backoffice.src.billing.external.interfaces import BillingGatewayInterface
from backoffice.src.billing.shared.exceptions import GatewayNotConfiguredError, PaymentError

logger = logging.getLogger(__name__)

asaas_circuit_breaker = build_breaker('asaas_api', (httpx.TransportError, PaymentError))


def asaas_base_url(sandbox: bool) -> str:
    return settings.ASAAS_SANDBOX_URL if sandbox else settings.ASAAS_PRODUCTION_URL


class AsaasClient(BillingGatewayInterface):
    """
    Asaas gateway client.

    Usage:
        async with AsaasClient(api_key, sandbox=True) as asaas:
            payment = await asaas.create_payment(customer_id, Decimal('49.90'), 'Pacote', 'credit_123')
    """

    provider = PaymentProvider.asaas.value

    def __init__(
        self,
        api_key: str,
        sandbox: bool = True,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        circuit_breaker: Optional[GatewayCircuitBreaker] = None,
    ):
        if not api_key:
            raise GatewayNotConfiguredError(self.provider)

        self._http = httpx.AsyncClient(
            base_url=asaas_base_url(sandbox),
            headers={
                'access_token': api_key,
                'Content-Type': 'application/json',
            },
            timeout=timeout or settings.ASAAS_TIMEOUT_SECONDS,
            transport=transport,
        )
        self._breaker = circuit_breaker or asaas_circuit_breaker

    async def __aenter__(self) -> 'AsaasClient':
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        return await self._breaker.safe_call(self._send, method, path, **kwargs)

    async def _send(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        response = await self._http.request(method, path, **kwargs)

        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = {}
            errors = body.get('errors') or []
            message = errors[0].get('description') if errors else response.text or 'Asaas request failed'
            logger.error(f"[ASAAS] {method} {path} failed ({response.status_code}): {body or response.text}")
            raise PaymentError(message, provider=self.provider, gateway_status=response.status_code)

        if not response.content:
            return {}
        return response.json()

    # -------------------------------------------------------------------------
    # Customers
    # -------------------------------------------------------------------------

    async def create_customer(self, *, tenant_id: str, name: str, email: Optional[str], tax_id: Optional[str] = None) -> str:
        customer = await self._request('POST', '/customers', json={
            'name': name,
            'cpfCnpj': tax_id,
            'email': email,
            'externalReference': tenant_id,
        })
        logger.info(f"[ASAAS] Created customer {customer.get('id')} for tenant {tenant_id}")
        return customer['id']

    async def get_customer(self, customer_id: str) -> Dict[str, Any]:
        return await self._request('GET', f'/customers/{customer_id}')

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
        return await self._request('POST', '/subscriptions', json={
            'customer': customer_id,
            'billingType': billing_type,
            'value': float(value),
            'cycle': 'MONTHLY',
            'nextDueDate': date.today().isoformat(),
            'description': description,
            'externalReference': tenant_id,
        })

    async def get_subscription(self, external_id: str) -> Dict[str, Any]:
        return await self._request('GET', f'/subscriptions/{external_id}')

    async def list_subscription_payments(self, external_id: str) -> Dict[str, Any]:
        return await self._request('GET', f'/subscriptions/{external_id}/payments')

    async def cancel_subscription(self, external_id: str) -> Dict[str, Any]:
        result = await self._request('DELETE', f'/subscriptions/{external_id}')
        logger.info(f"[ASAAS] Cancelled subscription {external_id}")
        return result

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    async def create_payment(
        self,
        customer_id: str,
        value: Decimal,
        description: str,
        external_reference: str,
        billing_type: str = 'UNDEFINED',
        due_in_days: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Create a one-off charge, used for credit packages."""
        due_days = settings.CREDIT_PURCHASE_DUE_DAYS if due_in_days is None else due_in_days
        return await self._request('POST', '/payments', json={
            'customer': customer_id,
            'billingType': billing_type,
            'value': float(value),
            'description': description,
            'externalReference': external_reference,
            'dueDate': (date.today() + timedelta(days=due_days)).isoformat(),
        })

    async def get_payment(self, payment_id: str) -> Dict[str, Any]:
        return await self._request('GET', f'/payments/{payment_id}')

    async def get_pix_qr_code(self, payment_id: str) -> Dict[str, Any]:
        return await self._request('GET', f'/payments/{payment_id}/pixQrCode')

    # -------------------------------------------------------------------------
    # Account
    # -------------------------------------------------------------------------

    async def check_connection(self) -> Dict[str, Any]:
        balance = await self._request('GET', '/finance/balance')
        return {'balance': balance.get('balance')}
