from fastapi import APIRouter, Request

from backoffice.app.tenant.schema.plan import (
    CreatePlanLimitParam,
    CreatePlanParam,
    GetPlanDetail,
    GetPlanLimitDetail,
    UpdatePlanParam,
)
from backoffice.app.tenant.service.plan_service import plan_service
from backoffice.common.security.jwt import CurrentUser
from backoffice.common.security.permission import DependsAdmin
from backoffice.database.db import CurrentSession, CurrentSessionTransaction

router = APIRouter(dependencies=[DependsAdmin])


@router.get('', summary='All plans', response_model=list[GetPlanDetail])
async def get_all_plans(db: CurrentSession):
    return await plan_service.get_list(db)


@router.post('', summary='Create a plan', response_model=GetPlanDetail, status_code=201)
async def create_plan(db: CurrentSessionTransaction, request: Request, user: CurrentUser, obj: CreatePlanParam):
    return await plan_service.create(db, obj, user=user, request=request)


@router.get('/{pk}', summary='Plan detail', response_model=GetPlanDetail)
async def get_plan(db: CurrentSession, pk: str):
    return await plan_service.get(db, pk)


@router.put('/{pk}', summary='Update a plan', response_model=GetPlanDetail)
async def update_plan(
    db: CurrentSessionTransaction, request: Request, user: CurrentUser, pk: str, obj: UpdatePlanParam
):
    return await plan_service.update(db, pk, obj, user=user, request=request)


@router.delete('/{pk}', summary='Delete a plan')
async def delete_plan(db: CurrentSessionTransaction, request: Request, user: CurrentUser, pk: str):
    await plan_service.delete(db, pk, user=user, request=request)
    return {'message': 'Plan deleted'}


@router.post('/{pk}/limits', summary='Create or replace a plan limit', response_model=GetPlanLimitDetail)
async def save_plan_limit(
    db: CurrentSessionTransaction, request: Request, user: CurrentUser, pk: str, obj: CreatePlanLimitParam
):
    return await plan_service.set_limit(db, pk, obj, user=user, request=request)


@router.delete('/{pk}/limits/{limit_key}', summary='Delete a plan limit')
async def remove_plan_limit(
    db: CurrentSessionTransaction, request: Request, user: CurrentUser, pk: str, limit_key: str
):
    await plan_service.remove_limit(db, pk, limit_key, user=user, request=request)
    return {'message': 'Limit removed'}
