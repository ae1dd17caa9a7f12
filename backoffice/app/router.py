from fastapi import APIRouter

from backoffice.app.billing.api.router import v1 as billing_v1
from backoffice.app.credit.api.router import v1 as credit_v1
from backoffice.app.gateway.api.router import v1 as gateway_v1
from backoffice.app.llm.api.router import v1 as llm_v1
from backoffice.app.log.api.router import v1 as log_v1
from backoffice.app.tenant.api.router import v1 as tenant_v1
from backoffice.core.conf import settings
from backoffice.src.billing.endpoints import billing_router

router = APIRouter()

router.include_router(tenant_v1)
router.include_router(billing_v1)
router.include_router(credit_v1)
router.include_router(llm_v1)
router.include_router(gateway_v1)
router.include_router(log_v1)
router.include_router(billing_router, prefix=settings.FASTAPI_API_V1_PATH, tags=['Webhooks'])
