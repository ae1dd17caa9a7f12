"""
Webhook Intake

Authenticates incoming gateway webhooks, deduplicates them by idempotency key
and stores them as webhook_events rows. Processing happens afterwards, in a
background task (see processor.py).

Idempotency keys:
- Asaas:  asaas_{event}_{payment.id}
- Stripe: stripe_{event.id}
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.billing.crud.crud_event import webhook_event_dao
from backoffice.app.billing.model import WebhookEvent
from backoffice.common.enums import PaymentProvider
from backoffice.src.billing.external.gateway import get_gateway_credentials
from backoffice.src.billing.external.stripe.client import construct_webhook_event
from backoffice.src.billing.shared.exceptions import WebhookError

logger = logging.getLogger(__name__)

STATUS_RECEIVED = 'received'
STATUS_ALREADY_PROCESSED = 'already_processed'


@dataclass
class IntakeResult:
    """Outcome of storing a webhook. event is None for duplicates."""
    status: str
    event: Optional[WebhookEvent] = None

    def to_response(self) -> Dict[str, Any]:
        return {'status': self.status}


def asaas_idempotency_key(payload: Dict[str, Any]) -> str:
    payment = payload.get('payment') or {}
    return f"asaas_{payload.get('event')}_{payment.get('id')}"


def stripe_idempotency_key(event_id: str) -> str:
    return f"stripe_{event_id}"


def token_matches(expected: Optional[str], received: Optional[str]) -> bool:
    """Constant-time comparison; an unconfigured token never matches."""
    if not expected or not received:
        return False
    return hmac.compare_digest(expected.encode(), received.encode())


async def _store(
    db: AsyncSession,
    *,
    provider: str,
    event_type: str,
    idempotency_key: str,
    external_id: Optional[str],
    payload: Dict[str, Any],
    signature: Optional[str],
) -> IntakeResult:
    existing = await webhook_event_dao.get_by_idempotency_key(db, idempotency_key)
    if existing is not None:
        logger.info(f"[WEBHOOK] Duplicate {provider} event {idempotency_key}, skipping")
        return IntakeResult(STATUS_ALREADY_PROCESSED)

    event = WebhookEvent(
        provider=provider,
        event_type=event_type,
        idempotency_key=idempotency_key,
        external_id=external_id,
        payload=payload,
        signature=signature,
        signature_valid=True,
    )
    db.add(event)
    await db.flush()
    logger.info(f"[WEBHOOK] Stored {provider} event {event_type} ({idempotency_key})")
    return IntakeResult(STATUS_RECEIVED, event)


async def receive_asaas(db: AsyncSession, payload: Dict[str, Any], access_token: Optional[str]) -> IntakeResult:
    """
    Authenticate and store an Asaas webhook.

    Args:
        db: Database session
        payload: Parsed JSON body
        access_token: Value of the asaas-access-token header

    Raises:
        WebhookError: Token missing or wrong (401), or malformed payload (400)
    """
    credentials = await get_gateway_credentials(db, PaymentProvider.asaas)
    if not token_matches(credentials.webhook_secret, access_token):
        logger.warning("[WEBHOOK] Rejected Asaas webhook with an invalid access token")
        raise WebhookError("Invalid webhook token", status_code=401)

    event_type = payload.get('event')
    payment = payload.get('payment') or {}
    if not event_type:
        raise WebhookError("Missing event type")

    return await _store(
        db,
        provider=PaymentProvider.asaas,
        event_type=event_type,
        idempotency_key=asaas_idempotency_key(payload),
        external_id=payment.get('id'),
        payload=payload,
        signature=None,
    )


async def receive_stripe(db: AsyncSession, body: bytes, signature: Optional[str]) -> IntakeResult:
    """
    Verify and store a Stripe webhook.

    The stored payload is event.data.object.

    Raises:
        WebhookError: Signature verification failed (401)
    """
    credentials = await get_gateway_credentials(db, PaymentProvider.stripe)
    event = construct_webhook_event(body, signature, credentials.webhook_secret)
    data_object = event.data.object

    return await _store(
        db,
        provider=PaymentProvider.stripe,
        event_type=event.type,
        idempotency_key=stripe_idempotency_key(event.id),
        external_id=data_object.get('id'),
        payload=data_object.to_dict() if hasattr(data_object, 'to_dict') else dict(data_object),
        signature=signature,
    )
