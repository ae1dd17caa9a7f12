from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field

from backoffice.app.billing.schema.subscription import (
    GetBillingEventDetail,
    GetInvoiceDetail,
    GetSubscriptionDetail,
    SubscriptionPlanInfo,
)
from backoffice.app.tenant.schema.tenant import GetTenantDetail

SubscriberFilter = Literal['active', 'paid', 'past_due', 'overdue', 'blocked', 'trial']


class GetBillingOverview(BaseModel):
    """Platform billing overview"""

    total_subscribers: int
    active_subscribers: int
    trial_subscribers: int
    past_due_subscribers: int
    blocked_tenants: int
    mrr: Decimal
    revenue_this_month: Decimal


class GetSubscriberItem(BaseModel):
    """Subscriber list entry"""

    tenant: GetTenantDetail
    subscription: GetSubscriptionDetail | None = None
    plan: SubscriptionPlanInfo | None = None
    users_count: int


class GetSubscriberDetail(BaseModel):
    tenant: GetTenantDetail
    subscription: GetSubscriptionDetail | None = None
    plan: SubscriptionPlanInfo | None = None
    invoices: list[GetInvoiceDetail]
    events: list[GetBillingEventDetail]


class GetSubscriberFinancialDetail(BaseModel):
    """Financial detail of one subscriber"""

    tenant: GetTenantDetail
    subscription: GetSubscriptionDetail | None = None
    plan: SubscriptionPlanInfo | None = None
    credits: dict[str, Any]
    invoices: list[GetInvoiceDetail]
    credit_transactions: list[dict[str, Any]]
    total_revenue: Decimal
    total_credit_purchases: Decimal


class GrantCreditsParam(BaseModel):
    """Manual credit grant"""

    amount: Decimal = Field(ge=Decimal('0.01'), description='Amount in BRL')
    description: str = Field(min_length=1, max_length=500)


class SendInvoiceLinkResult(BaseModel):
    message: str
    invoice_url: str | None = None
    payment_id: str
