from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from backoffice.app.credit.schema.credit import (
    GetCreditBalance,
    GetCreditPackageDetail,
    GetCreditTransactionDetail,
    GetPurchaseResult,
    PurchaseCreditsParam,
)
from backoffice.app.credit.service.credit_service import credit_service
from backoffice.app.tenant.service.tenant_service import tenant_service
from backoffice.common.enums import CreditTransactionType
from backoffice.common.pagination import PageData, PageParams, page_data, page_params
from backoffice.common.security.jwt import CurrentUser
from backoffice.common.security.permission import DependsTenantBilling
from backoffice.database.db import CurrentSession, CurrentSessionTransaction

router = APIRouter(dependencies=[DependsTenantBilling])


@router.get('/balance', summary='Credit balance', response_model=GetCreditBalance)
async def get_balance(db: CurrentSession, user: CurrentUser):
    tenant = await tenant_service.get_for_user(db, user)
    return await credit_service.get_balance(db, tenant)


@router.get('/transactions', summary='Paginated credit transactions', response_model=PageData[GetCreditTransactionDetail])
async def get_transactions(
    db: CurrentSession,
    user: CurrentUser,
    params: Annotated[PageParams, Depends(page_params)],
    type: Annotated[CreditTransactionType | None, Query(description='Transaction type')] = None,
):
    tenant = await tenant_service.get_for_user(db, user)
    items, total = await credit_service.get_transactions(db, tenant, params, type)
    return page_data([GetCreditTransactionDetail.model_validate(item) for item in items], total, params)


@router.get('/packages', summary='Credit packages on sale', response_model=list[GetCreditPackageDetail])
async def get_packages(db: CurrentSession):
    return await credit_service.get_packages(db)


@router.post('/purchase', summary='Buy a credit package', response_model=GetPurchaseResult, status_code=201)
async def purchase_credits(
    db: CurrentSessionTransaction, request: Request, user: CurrentUser, obj: PurchaseCreditsParam
):
    tenant = await tenant_service.get_for_user(db, user)
    return await credit_service.purchase(db, tenant, obj.package_id, obj.billing_type, user=user, request=request)
