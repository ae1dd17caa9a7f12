from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from backoffice.app.gateway.schema.payment_gateway import (
    GatewayConnectionResult,
    GetPaymentGatewayDetail,
    UpdatePaymentGatewayParam,
)
from backoffice.app.gateway.service.payment_gateway_service import payment_gateway_service
from backoffice.common.security.jwt import CurrentUser
from backoffice.common.security.permission import DependsAdmin
from backoffice.database.db import CurrentSessionTransaction

router = APIRouter(dependencies=[DependsAdmin])


@router.get('', summary='Payment gateway settings', response_model=list[GetPaymentGatewayDetail])
async def get_payment_gateways(db: CurrentSessionTransaction):
    return await payment_gateway_service.get_list(db)


@router.put('/{provider}', summary='Update a payment gateway', response_model=GetPaymentGatewayDetail)
async def update_payment_gateway(
    db: CurrentSessionTransaction, request: Request, user: CurrentUser, provider: str, obj: UpdatePaymentGatewayParam
):
    return await payment_gateway_service.update(db, provider, obj, user=user, request=request)


@router.post('/{provider}/test', summary='Test a payment gateway connection', response_model=GatewayConnectionResult)
async def check_payment_gateway(db: CurrentSessionTransaction, provider: str):
    result = await payment_gateway_service.check_connection(db, provider)
    if result.success:
        return result
    return JSONResponse(status_code=422, content=result.model_dump())
