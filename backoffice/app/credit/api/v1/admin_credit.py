from typing import Annotated

from fastapi import APIRouter, Depends, Request

from backoffice.app.credit.schema.credit import (
    CreateCreditPackageParam,
    CreditSettingParam,
    GetCreditPackageDetail,
    GetCreditSettingDetail,
    GetCreditTransactionDetail,
    GetTenantCreditDetail,
    ManualCreditParam,
    UpdateCreditPackageParam,
)
from backoffice.app.credit.service.credit_admin_service import credit_admin_service
from backoffice.common.pagination import PageData, PageParams, page_data, page_params
from backoffice.common.security.jwt import CurrentUser
from backoffice.common.security.permission import DependsAdmin
from backoffice.database.db import CurrentSession, CurrentSessionTransaction

settings_router = APIRouter(dependencies=[DependsAdmin])
router = APIRouter(dependencies=[DependsAdmin])
tenant_router = APIRouter(dependencies=[DependsAdmin])


@settings_router.get('', summary='Credit pricing settings', response_model=GetCreditSettingDetail)
async def get_credit_settings(db: CurrentSessionTransaction):
    return await credit_admin_service.get_settings(db)


@settings_router.put('', summary='Update credit pricing settings', response_model=GetCreditSettingDetail)
async def update_credit_settings(
    db: CurrentSessionTransaction, request: Request, user: CurrentUser, obj: CreditSettingParam
):
    return await credit_admin_service.update_settings(db, obj, user=user, request=request)


@router.get('/packages', summary='All credit packages', response_model=list[GetCreditPackageDetail])
async def get_all_packages(db: CurrentSession):
    return await credit_admin_service.get_packages(db)


@router.post('/packages', summary='Create a credit package', response_model=GetCreditPackageDetail, status_code=201)
async def create_package(
    db: CurrentSessionTransaction, request: Request, user: CurrentUser, obj: CreateCreditPackageParam
):
    return await credit_admin_service.create_package(db, obj, user=user, request=request)


@router.get('/packages/{pk}', summary='Credit package detail', response_model=GetCreditPackageDetail)
async def get_package(db: CurrentSession, pk: str):
    return await credit_admin_service.get_package(db, pk)


@router.put('/packages/{pk}', summary='Update a credit package', response_model=GetCreditPackageDetail)
async def update_package(
    db: CurrentSessionTransaction, request: Request, user: CurrentUser, pk: str, obj: UpdateCreditPackageParam
):
    return await credit_admin_service.update_package(db, pk, obj, user=user, request=request)


@router.delete('/packages/{pk}', summary='Delete a credit package')
async def delete_package(db: CurrentSessionTransaction, request: Request, user: CurrentUser, pk: str):
    await credit_admin_service.delete_package(db, pk, user=user, request=request)
    return {'message': 'Credit package deleted'}


@router.get('/balances', summary='Paginated tenant balances', response_model=PageData[GetTenantCreditDetail])
async def get_balances(db: CurrentSession, params: Annotated[PageParams, Depends(page_params)]):
    items, total = await credit_admin_service.get_balances(db, params)
    return page_data([GetTenantCreditDetail.model_validate(item) for item in items], total, params)


@tenant_router.post('/{pk}/credits', summary='Grant credits manually', response_model=GetCreditTransactionDetail)
async def add_manual_credit(
    db: CurrentSessionTransaction, request: Request, user: CurrentUser, pk: str, obj: ManualCreditParam
):
    return await credit_admin_service.add_manual_credit(
        db, pk, obj.amount, obj.description, user=user, request=request
    )
