from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

BillingTypeLiteral = Literal['PIX', 'BOLETO', 'CREDIT_CARD', 'UNDEFINED']


class GetSubscriptionDetail(BaseModel):
    """Subscription detail"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    plan_id: str
    status: str
    payment_provider: str
    external_id: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancelled_at: datetime | None = None
    days_until_renewal: int | None = None


class SubscriptionPlanInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    slug: str
    price_monthly: Decimal
    price_yearly: Decimal
    features: dict[str, Any]


class GetSubscriptionSummary(BaseModel):
    """Current subscription with plan, usage and limits"""

    subscription: GetSubscriptionDetail | None = None
    plan: SubscriptionPlanInfo | None = None
    usage: dict[str, int]
    limits: dict[str, int]
    is_blocked: bool
    blocked_reason: str | None = None


class ChangePlanParam(BaseModel):
    """Change plan"""

    plan_id: str
    billing_type: BillingTypeLiteral = 'UNDEFINED'


class CreateSubscriptionParam(BaseModel):
    """First subscription (checkout)"""

    plan_id: str
    billing_type: BillingTypeLiteral = 'PIX'
    cpf_cnpj: str | None = Field(None, max_length=20, description='Tax id, required by Asaas')


class CancelSubscriptionParam(BaseModel):
    reason: str | None = Field(None, max_length=500)


class GetInvoiceDetail(BaseModel):
    """Invoice detail"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    subscription_id: str | None = None
    external_id: str | None = None
    amount: Decimal
    currency: str
    status: str
    due_date: datetime | None = None
    paid_at: datetime | None = None
    invoice_url: str | None = None
    reminder_sent_at: dict[str, Any]
    created_time: datetime | None = None


class GetBillingEventDetail(BaseModel):
    """Billing event detail"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    event_type: str
    provider: str
    external_id: str | None = None
    payload: dict[str, Any]
    processed_at: datetime | None = None
    idempotency_key: str | None = None
    created_time: datetime | None = None
