from fastapi import APIRouter

from backoffice.app.billing.api.v1.admin_billing import router as admin_billing_router
from backoffice.app.billing.api.v1.subscription import router as subscription_router
from backoffice.core.conf import settings

v1 = APIRouter(prefix=settings.FASTAPI_API_V1_PATH)

v1.include_router(subscription_router, prefix='/subscription', tags=['Subscription'])
v1.include_router(admin_billing_router, prefix='/admin/billing', tags=['Admin Billing'])
