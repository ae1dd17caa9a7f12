"""
Webhook Endpoints

Gateway webhook intake. Events are stored and committed before the response is
built, then processed in a background task. Processing always reads the
committed row, so a handler never races the insert.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.database.db import CurrentSession
from backoffice.src.billing.shared.exceptions import WebhookError
from backoffice.src.billing.webhooks import intake
from backoffice.src.billing.webhooks.intake import IntakeResult
from backoffice.src.billing.webhooks.processor import process_webhook_event

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing-webhooks"])


async def _acknowledge(db: AsyncSession, result: IntakeResult, background_tasks: BackgroundTasks) -> JSONResponse:
    await db.commit()
    if result.event is not None:
        background_tasks.add_task(process_webhook_event, result.event.id)
    return JSONResponse(result.to_response())


@router.post("/asaas")
async def asaas_webhook(request: Request, db: CurrentSession, background_tasks: BackgroundTasks):
    """
    Receive Asaas payment events.

    Authenticated by the asaas-access-token header.
    """
    try:
        payload = await request.json()
    except ValueError:
        raise WebhookError("Invalid JSON payload")
    if not isinstance(payload, dict):
        raise WebhookError("Invalid JSON payload")

    result = await intake.receive_asaas(db, payload, request.headers.get('asaas-access-token'))
    return await _acknowledge(db, result, background_tasks)


@router.post("/stripe")
async def stripe_webhook(request: Request, db: CurrentSession, background_tasks: BackgroundTasks):
    """
    Receive Stripe events.

    Handles:
    - invoice.paid
    - invoice.payment_failed
    - customer.subscription.updated
    - customer.subscription.deleted
    """
    body = await request.body()
    result = await intake.receive_stripe(db, body, request.headers.get('stripe-signature'))
    return await _acknowledge(db, result, background_tasks)
