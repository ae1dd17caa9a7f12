from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from backoffice.app.billing.schema.admin_billing import (
    GetBillingOverview,
    GetSubscriberDetail,
    GetSubscriberFinancialDetail,
    GetSubscriberItem,
    GrantCreditsParam,
    SendInvoiceLinkResult,
    SubscriberFilter,
)
from backoffice.app.billing.schema.subscription import GetBillingEventDetail, GetInvoiceDetail
from backoffice.app.billing.service.admin_billing_service import admin_billing_service
from backoffice.common.pagination import PageData, PageParams, page_data, page_params
from backoffice.common.security.jwt import CurrentUser
from backoffice.common.security.permission import DependsAdmin
from backoffice.database.db import CurrentSession, CurrentSessionTransaction

router = APIRouter(dependencies=[DependsAdmin])


@router.get('/overview', summary='Billing overview', response_model=GetBillingOverview)
async def get_overview(db: CurrentSession):
    return await admin_billing_service.get_overview(db)


@router.get('/subscribers', summary='Paginated subscribers', response_model=PageData[GetSubscriberItem])
async def get_subscribers(
    db: CurrentSession,
    params: Annotated[PageParams, Depends(page_params)],
    filter_by: Annotated[SubscriberFilter | None, Query(alias='filter')] = None,
    search: Annotated[str | None, Query(description='Name or slug contains')] = None,
):
    items, total = await admin_billing_service.get_subscribers(db, params, filter_by=filter_by, search=search)
    return page_data(items, total, params)


@router.get('/subscribers/{tenant_id}', summary='Subscriber detail', response_model=GetSubscriberDetail)
async def get_subscriber(db: CurrentSession, tenant_id: str):
    return await admin_billing_service.get_subscriber(db, tenant_id)


@router.get(
    '/subscribers/{tenant_id}/financial',
    summary='Subscriber financial detail',
    response_model=GetSubscriberFinancialDetail,
)
async def get_subscriber_financial(db: CurrentSession, tenant_id: str):
    return await admin_billing_service.get_subscriber_financial(db, tenant_id)


@router.post(
    '/subscribers/{tenant_id}/send-invoice',
    summary='Pending invoice link of a subscriber',
    response_model=SendInvoiceLinkResult,
)
async def send_invoice_link(db: CurrentSessionTransaction, request: Request, user: CurrentUser, tenant_id: str):
    return await admin_billing_service.send_invoice_link(db, tenant_id, user=user, request=request)


@router.post('/invoices/{pk}/approve', summary='Approve an invoice manually', response_model=GetInvoiceDetail)
async def approve_invoice(db: CurrentSessionTransaction, request: Request, user: CurrentUser, pk: str):
    return await admin_billing_service.approve_invoice(db, pk, user=user, request=request)


@router.post('/tenants/{tenant_id}/credits', summary='Grant credits')
async def grant_credits(
    db: CurrentSessionTransaction, request: Request, user: CurrentUser, tenant_id: str, obj: GrantCreditsParam
):
    return await admin_billing_service.grant_credits(
        db, tenant_id, obj.amount, obj.description, user=user, request=request
    )


@router.get('/invoices', summary='Paginated invoices', response_model=PageData[GetInvoiceDetail])
async def get_invoices(
    db: CurrentSession,
    params: Annotated[PageParams, Depends(page_params)],
    status: Annotated[str | None, Query(description='pending, paid, failed, refunded, cancelled')] = None,
    tenant_id: Annotated[str | None, Query(description='Tenant ID')] = None,
    date_from: Annotated[datetime | None, Query()] = None,
    date_to: Annotated[datetime | None, Query()] = None,
):
    items, total = await admin_billing_service.get_invoices(
        db, params, status=status, tenant_id=tenant_id, date_from=date_from, date_to=date_to
    )
    return page_data([GetInvoiceDetail.model_validate(item) for item in items], total, params)


@router.get('/events', summary='Paginated billing events', response_model=PageData[GetBillingEventDetail])
async def get_events(
    db: CurrentSession,
    params: Annotated[PageParams, Depends(page_params)],
    provider: Annotated[str | None, Query(description='asaas or stripe')] = None,
    event_type: Annotated[str | None, Query()] = None,
    tenant_id: Annotated[str | None, Query(description='Tenant ID')] = None,
):
    items, total = await admin_billing_service.get_events(
        db, params, provider=provider, event_type=event_type, tenant_id=tenant_id
    )
    return page_data([GetBillingEventDetail.model_validate(item) for item in items], total, params)
