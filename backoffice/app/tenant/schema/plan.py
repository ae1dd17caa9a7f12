from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PlanLimitSchemaBase(BaseModel):
    """Plan limit"""

    limit_key: str = Field(max_length=100, description='e.g. users, whatsapp_connections, messages_monthly')
    limit_value: int = Field(ge=-1, description='-1 unlimited, 0 no access')


class CreatePlanLimitParam(PlanLimitSchemaBase):
    """Create or replace a plan limit"""


class GetPlanLimitDetail(PlanLimitSchemaBase):
    model_config = ConfigDict(from_attributes=True)

    id: str
    plan_id: str


class PlanSchemaBase(BaseModel):
    """Fields shared by plan models"""

    name: str = Field(max_length=100)
    description: str | None = None
    price_monthly: Decimal = Field(ge=0, decimal_places=2)
    price_yearly: Decimal | None = Field(None, ge=0, decimal_places=2, description='Defaults to 10x monthly')
    currency: str = Field('BRL', min_length=3, max_length=3)
    is_active: bool = True
    features: dict[str, Any] = Field(default_factory=dict, description='Feature flags, stripe_price_id for Stripe')
    included_credits_brl: Decimal = Field(Decimal('0'), ge=0, description='Plan credits granted per period')


class CreatePlanParam(PlanSchemaBase):
    """Create a plan"""

    limits: list[CreatePlanLimitParam] = Field(default_factory=list)


class UpdatePlanParam(BaseModel):
    """Update a plan"""

    name: str | None = Field(None, max_length=100)
    description: str | None = None
    price_monthly: Decimal | None = Field(None, ge=0)
    price_yearly: Decimal | None = Field(None, ge=0)
    currency: str | None = Field(None, min_length=3, max_length=3)
    is_active: bool | None = None
    features: dict[str, Any] | None = None
    included_credits_brl: Decimal | None = Field(None, ge=0)


class GetPlanDetail(BaseModel):
    """Plan detail"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    slug: str
    description: str | None = None
    price_monthly: Decimal
    price_yearly: Decimal
    currency: str
    is_active: bool
    features: dict[str, Any]
    included_credits_brl: Decimal
    yearly_savings: Decimal
    yearly_savings_percent: int
    limits: list[GetPlanLimitDetail] = Field(default_factory=list)
    created_time: datetime | None = None
