from fastapi import APIRouter

from backoffice.app.tenant.api.v1.admin_plan import router as admin_plan_router
from backoffice.app.tenant.api.v1.admin_tenant import router as admin_tenant_router
from backoffice.app.tenant.api.v1.internal import router as internal_router
from backoffice.app.tenant.api.v1.plan import router as plan_router
from backoffice.core.conf import settings

v1 = APIRouter(prefix=settings.FASTAPI_API_V1_PATH)

v1.include_router(plan_router, prefix='/plans', tags=['Plans'])
v1.include_router(admin_plan_router, prefix='/admin/plans', tags=['Admin Plans'])
v1.include_router(admin_tenant_router, prefix='/admin/tenants', tags=['Admin Tenants'])
v1.include_router(internal_router, prefix='/internal/tenants', tags=['Internal'])
