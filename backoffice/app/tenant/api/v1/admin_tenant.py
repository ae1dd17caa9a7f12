from fastapi import APIRouter, Request

from backoffice.app.tenant.schema.tenant import BlockTenantParam, GetTenantDetail
from backoffice.app.tenant.service.tenant_service import tenant_service
from backoffice.common.security.jwt import CurrentUser
from backoffice.common.security.permission import DependsAdmin
from backoffice.database.db import CurrentSessionTransaction

router = APIRouter(dependencies=[DependsAdmin])


@router.post('/{pk}/block', summary='Block a tenant', response_model=GetTenantDetail)
async def block_tenant(
    db: CurrentSessionTransaction,
    request: Request,
    user: CurrentUser,
    pk: str,
    obj: BlockTenantParam | None = None,
):
    return await tenant_service.block_tenant(db, pk, obj.reason if obj else None, user=user, request=request)


@router.post('/{pk}/unblock', summary='Unblock a tenant', response_model=GetTenantDetail)
async def unblock_tenant(db: CurrentSessionTransaction, request: Request, user: CurrentUser, pk: str):
    return await tenant_service.unblock_tenant(db, pk, user=user, request=request)
