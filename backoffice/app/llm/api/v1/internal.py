from typing import Annotated

from fastapi import APIRouter, Query

from backoffice.app.llm.service.llm_provider_service import llm_provider_service
from backoffice.common.security.permission import DependsInternalKey
from backoffice.database.db import CurrentSession

router = APIRouter(dependencies=[DependsInternalKey])


@router.get('/default', summary='Default provider for a tenant')
async def get_default_provider(
    db: CurrentSession, tenant_id: Annotated[str | None, Query(description='Tenant ID')] = None
):
    provider = await llm_provider_service.get_default_for_tenant(db, tenant_id)
    return {'provider': provider}
