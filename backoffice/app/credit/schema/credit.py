from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from backoffice.common.enums import MarkupType

PurchaseBillingType = Literal['PIX', 'BOLETO', 'CREDIT_CARD', 'UNDEFINED']


class GetCreditTransactionDetail(BaseModel):
    """Credit transaction detail"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    type: str
    amount_brl: Decimal
    balance_after_brl: Decimal
    description: str | None = None
    reference_type: str | None = None
    reference_id: str | None = None
    extra: dict[str, Any] = Field(serialization_alias='metadata')
    credit_source: str | None = None
    created_time: datetime | None = None


class GetCreditBalance(BaseModel):
    """Tenant credit balance"""

    plan_balance: Decimal
    addon_balance: Decimal
    total_balance: Decimal
    plan_credits_granted: Decimal
    plan_included: Decimal
    plan_credits_exhausted: bool
    needs_addon_purchase: bool
    plan_resets_at: datetime | None = None
    total_purchased: Decimal
    total_consumed: Decimal
    low_balance: bool
    recent_transactions: list[GetCreditTransactionDetail]


class GetTenantCreditDetail(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    balance_brl: Decimal
    plan_balance_brl: Decimal
    addon_balance_brl: Decimal
    plan_credits_granted_brl: Decimal
    total_purchased_brl: Decimal
    total_consumed_brl: Decimal
    plan_credits_reset_at: datetime | None = None


class CreditPackageSchemaBase(BaseModel):
    """Fields shared by credit package models"""

    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(None, max_length=500)
    price_brl: Decimal = Field(ge=Decimal('0.01'))
    credit_amount_brl: Decimal = Field(ge=Decimal('0.01'))
    is_active: bool = True
    sort_order: int = 0


class CreateCreditPackageParam(CreditPackageSchemaBase):
    """Create a credit package"""


class UpdateCreditPackageParam(BaseModel):
    """Update a credit package"""

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=500)
    price_brl: Decimal | None = Field(None, ge=Decimal('0.01'))
    credit_amount_brl: Decimal | None = Field(None, ge=Decimal('0.01'))
    is_active: bool | None = None
    sort_order: int | None = None


class GetCreditPackageDetail(CreditPackageSchemaBase):
    model_config = ConfigDict(from_attributes=True)

    id: str
    created_time: datetime | None = None


class PurchaseCreditsParam(BaseModel):
    """Buy a credit package"""

    package_id: str
    billing_type: PurchaseBillingType = 'UNDEFINED'


class GetPurchaseResult(BaseModel):
    transaction_id: str
    package: GetCreditPackageDetail
    asaas_payment_id: str | None = None
    invoice_url: str | None = None
    pix_payload: str | None = None
    bank_slip_url: str | None = None


class CreditSettingParam(BaseModel):
    """Credit pricing settings update"""

    markup_type: MarkupType = MarkupType.percentage
    markup_value: Decimal = Field(ge=Decimal('0'))
    usd_to_brl_rate: Decimal = Field(gt=Decimal('0'))
    min_balance_warning_brl: Decimal = Field(ge=Decimal('0'))
    block_on_zero_balance: bool = True


class GetCreditSettingDetail(CreditSettingParam):
    model_config = ConfigDict(from_attributes=True)

    id: str
    updated_time: datetime | None = None


class ManualCreditParam(BaseModel):
    """Manual credit grant"""

    amount: Decimal = Field(ge=Decimal('0.01'), description='Amount in BRL')
    description: str = Field(min_length=1, max_length=500)


class CreditCheckResult(BaseModel):
    balance_brl: Decimal
    sufficient: bool
    block_on_zero: bool


class DeductCreditsParam(BaseModel):
    """Usage charge from the orchestrator"""

    tenant_id: str
    cost_usd: Decimal = Field(ge=Decimal('0'))
    total_tokens: int = Field(0, ge=0)
    input_tokens: int = Field(0, ge=0)
    output_tokens: int = Field(0, ge=0)
    model: str = Field(min_length=1, max_length=255)
    ai_decision_id: str | None = None
    llm_provider_id: str | None = None


class DeductCreditsResult(BaseModel):
    deducted: Decimal
    balance_brl: Decimal
    transaction_id: str | None = None

