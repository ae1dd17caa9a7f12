"""
Webhook Processor

Runs stored webhook events through the provider handler, retrying failures.

Each attempt runs in its own transaction. A failed attempt rolls back the
handler's changes, then records the error and increments ``attempts`` in a
separate transaction. Events still unprocessed after WEBHOOK_MAX_ATTEMPTS are
left for the replay job, which tries every event below the limit once more.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backoffice.app.billing.crud.crud_event import webhook_event_dao
from backoffice.app.billing.model import WebhookEvent
from backoffice.common.enums import PaymentProvider
from backoffice.core.conf import settings
from backoffice.database.db import async_db_session
from backoffice.src.billing.webhooks.asaas_processor import AsaasWebhookHandler
from backoffice.src.billing.webhooks.stripe_processor import StripeWebhookHandler
from backoffice.utils.timezone import timezone

logger = logging.getLogger(__name__)

Handler = Callable[[AsyncSession, WebhookEvent], Awaitable[None]]

HANDLERS: Dict[str, Handler] = {
    PaymentProvider.asaas.value: AsaasWebhookHandler.handle,
    PaymentProvider.stripe.value: StripeWebhookHandler.handle,
}

ERROR_MAX_LENGTH = 2000


async def _attempt(session_factory: async_sessionmaker, event_id: str) -> bool:
    """
    Run one processing attempt.

    The event row is locked with SKIP LOCKED, so an event already held by
    another worker or replay run is left to that holder.

    Returns:
        True when the event is processed (now or earlier), False when another
        worker holds it
    """
    async with session_factory.begin() as db:
        event = await webhook_event_dao.get_for_processing(db, event_id)
        if event is None:
            if await webhook_event_dao.select_model(db, event_id) is not None:
                logger.info(f"[WEBHOOK] Event {event_id} is being processed elsewhere, skipping")
                return False
            logger.warning(f"[WEBHOOK] Event {event_id} no longer exists")
            return True
        if event.processed:
            return True

        handler = HANDLERS.get(event.provider)
        if handler is None:
            raise ValueError(f"No webhook handler for provider {event.provider}")

        await handler(db, event)
        event.processed = True
        event.processed_at = timezone.now()
        event.attempts += 1
        event.error = None
        logger.info(f"[WEBHOOK] Processed {event.provider} {event.event_type} ({event.idempotency_key})")
        return True


async def _record_failure(session_factory: async_sessionmaker, event_id: str, error: Exception) -> int:
    async with session_factory.begin() as db:
        event = await webhook_event_dao.select_model(db, event_id)
        if event is None:
            return 0
        event.attempts += 1
        event.error = f"{type(error).__name__}: {error}"[:ERROR_MAX_LENGTH]
        return event.attempts


async def process_webhook_event(
    event_id: str,
    *,
    max_attempts: Optional[int] = None,
    backoff_seconds: Optional[float] = None,
    session_factory: Optional[async_sessionmaker] = None,
) -> bool:
    """
    Process a stored webhook event, retrying with a fixed backoff.

    Args:
        event_id: webhook_events id
        max_attempts: Total attempts allowed for the event, defaults to WEBHOOK_MAX_ATTEMPTS
        backoff_seconds: Pause between attempts, defaults to WEBHOOK_RETRY_BACKOFF_SECONDS
        session_factory: Session maker, defaults to the application's

    Returns:
        True when the event ended up processed, False when it failed or another
        worker holds it
    """
    limit = max_attempts or settings.WEBHOOK_MAX_ATTEMPTS
    backoff = settings.WEBHOOK_RETRY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
    factory = session_factory or async_db_session

    while True:
        try:
            return await _attempt(factory, event_id)
        except Exception as e:
            attempts = await _record_failure(factory, event_id, e)
            logger.error(f"[WEBHOOK] Attempt {attempts}/{limit} failed for event {event_id}: {e}", exc_info=True)
            if attempts >= limit or attempts == 0:
                return False
        await asyncio.sleep(backoff)


async def replay_webhooks_job(session_factory: Optional[async_sessionmaker] = None) -> Dict[str, int]:
    """
    Retry unprocessed events that have attempts left, once each.

    Returns:
        Counts of replayed, succeeded, skipped and failed events
    """
    factory = session_factory or async_db_session
    async with factory() as db:
        events = await webhook_event_dao.get_replayable(db, settings.WEBHOOK_MAX_ATTEMPTS)
        event_ids = [event.id for event in events]

    stats = {'replayed': 0, 'succeeded': 0, 'skipped': 0, 'failed': 0}
    for event_id in event_ids:
        stats['replayed'] += 1
        try:
            if await _attempt(factory, event_id):
                stats['succeeded'] += 1
            else:
                stats['skipped'] += 1
        except Exception as e:
            stats['failed'] += 1
            attempts = await _record_failure(factory, event_id, e)
            logger.error(f"[WEBHOOK] Replay failed for event {event_id} (attempt {attempts}): {e}")

    if event_ids:
        logger.info(f"[WEBHOOK] Replay finished: {stats}")
    return stats
