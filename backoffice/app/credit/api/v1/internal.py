from fastapi import APIRouter

from backoffice.app.credit.schema.credit import CreditCheckResult, DeductCreditsParam, DeductCreditsResult
from backoffice.app.credit.service.credit_service import credit_service
from backoffice.common.security.permission import DependsInternalKey
from backoffice.database.db import CurrentSession, CurrentSessionTransaction

router = APIRouter(dependencies=[DependsInternalKey])


@router.get('/check/{tenant_id}', summary='Check tenant credit', response_model=CreditCheckResult)
async def check_credits(db: CurrentSession, tenant_id: str):
    return await credit_service.check(db, tenant_id)


@router.post('/deduct', summary='Deduct credits', response_model=DeductCreditsResult)
async def deduct_credits(db: CurrentSessionTransaction, obj: DeductCreditsParam):
    return await credit_service.deduct(db, obj)
