from fastapi import APIRouter

from backoffice.app.tenant.schema.tenant import LimitCheckParam, LimitCheckResult
from backoffice.app.tenant.service.limit_service import check_limit
from backoffice.app.tenant.service.tenant_service import tenant_service
from backoffice.common.security.permission import DependsInternalKey
from backoffice.database.db import CurrentSession

router = APIRouter(dependencies=[DependsInternalKey])


@router.post('/{pk}/limits/check', summary='Check a tenant plan limit', response_model=LimitCheckResult)
async def check_tenant_limit(db: CurrentSession, pk: str, obj: LimitCheckParam):
    await tenant_service.get(db, pk)
    return await check_limit(db, pk, obj.limit_key, obj.current_count)
