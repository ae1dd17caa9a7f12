from fastapi import APIRouter

from backoffice.app.credit.api.v1.admin_credit import router as admin_credit_router
from backoffice.app.credit.api.v1.admin_credit import settings_router as credit_settings_router
from backoffice.app.credit.api.v1.admin_credit import tenant_router as admin_tenant_credit_router
from backoffice.app.credit.api.v1.credit import router as credit_router
from backoffice.app.credit.api.v1.internal import router as internal_router
from backoffice.core.conf import settings

v1 = APIRouter(prefix=settings.FASTAPI_API_V1_PATH)

v1.include_router(credit_router, prefix='/credits', tags=['Credits'])
v1.include_router(credit_settings_router, prefix='/admin/credit-settings', tags=['Admin Credits'])
v1.include_router(admin_credit_router, prefix='/admin/credits', tags=['Admin Credits'])
v1.include_router(admin_tenant_credit_router, prefix='/admin/tenants', tags=['Admin Credits'])
v1.include_router(internal_router, prefix='/internal/credits', tags=['Internal'])
