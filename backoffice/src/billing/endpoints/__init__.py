"""
Billing Endpoints Module

Routers:
- webhooks: Asaas and Stripe webhook intake

Usage:
    from backoffice.src.billing.endpoints import billing_router

    app.include_router(billing_router, prefix="/api/v1")
"""

from fastapi import APIRouter

from .webhooks import router as webhooks_router

billing_router = APIRouter()

billing_router.include_router(webhooks_router, prefix="/webhooks")

__all__ = [
    'billing_router',
    'webhooks_router',
]
