from typing import Annotated

from fastapi import APIRouter, Depends, Request

from backoffice.app.billing.schema.subscription import (
    CancelSubscriptionParam,
    ChangePlanParam,
    CreateSubscriptionParam,
    GetInvoiceDetail,
    GetSubscriptionDetail,
    GetSubscriptionSummary,
)
from backoffice.app.billing.service.subscription_service import subscription_service
from backoffice.app.tenant.service.tenant_service import tenant_service
from backoffice.common.pagination import PageData, PageParams, page_data, page_params
from backoffice.common.security.jwt import CurrentUser
from backoffice.database.db import CurrentSession, CurrentSessionTransaction

router = APIRouter()


@router.get('', summary='Current subscription', response_model=GetSubscriptionSummary)
async def get_subscription(db: CurrentSession, user: CurrentUser):
    tenant = await tenant_service.get_for_user(db, user)
    return await subscription_service.get_summary(db, tenant)


@router.get('/invoices', summary='Paginated invoices of the current subscription', response_model=PageData[GetInvoiceDetail])
async def get_invoices(db: CurrentSession, user: CurrentUser, params: Annotated[PageParams, Depends(page_params)]):
    tenant = await tenant_service.get_for_user(db, user)
    items, total = await subscription_service.get_invoices(db, tenant, params)
    return page_data([GetInvoiceDetail.model_validate(item) for item in items], total, params)


@router.get('/invoices/{pk}/link', summary='Invoice payment link')
async def get_invoice_link(db: CurrentSession, user: CurrentUser, pk: str):
    tenant = await tenant_service.get_for_user(db, user)
    return await subscription_service.get_invoice_link(db, tenant, pk)


@router.post('', summary='Create a subscription', status_code=201)
async def create_subscription(
    db: CurrentSessionTransaction, request: Request, user: CurrentUser, obj: CreateSubscriptionParam
):
    tenant = await tenant_service.get_for_user(db, user)
    return await subscription_service.create_subscription(
        db, tenant, obj.plan_id, obj.billing_type, obj.cpf_cnpj, user=user, request=request
    )


@router.post('/change-plan', summary='Change plan', response_model=GetSubscriptionDetail)
async def change_plan(db: CurrentSessionTransaction, request: Request, user: CurrentUser, obj: ChangePlanParam):
    tenant = await tenant_service.get_for_user(db, user)
    return await subscription_service.change_plan(
        db, tenant, obj.plan_id, obj.billing_type, user=user, request=request
    )


@router.post('/cancel', summary='Cancel the subscription')
async def cancel_subscription(
    db: CurrentSessionTransaction,
    request: Request,
    user: CurrentUser,
    obj: CancelSubscriptionParam | None = None,
):
    tenant = await tenant_service.get_for_user(db, user)
    await subscription_service.cancel(db, tenant, obj.reason if obj else None, user=user, request=request)
    return {'message': 'Subscription cancelled'}
