from fastapi import APIRouter

from backoffice.app.tenant.schema.plan import GetPlanDetail
from backoffice.app.tenant.service.plan_service import plan_service
from backoffice.database.db import CurrentSession

router = APIRouter()


@router.get('', summary='Plans on offer', response_model=list[GetPlanDetail])
async def get_public_plans(db: CurrentSession):
    return await plan_service.get_list(db, active_only=True)


@router.get('/{pk}', summary='Plan detail', response_model=GetPlanDetail)
async def get_public_plan(db: CurrentSession, pk: str):
    return await plan_service.get(db, pk, active_only=True)
