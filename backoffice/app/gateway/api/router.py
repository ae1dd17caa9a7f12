from fastapi import APIRouter

from backoffice.app.gateway.api.v1.payment_gateway import router as payment_gateway_router
from backoffice.core.conf import settings

v1 = APIRouter(prefix=settings.FASTAPI_API_V1_PATH)

v1.include_router(payment_gateway_router, prefix='/admin/payment-gateways', tags=['Payment Gateways'])
