from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from backoffice.core.conf import settings


class LlmProviderSchemaBase(BaseModel):
    """Fields shared by provider create and read models"""

    name: str = Field(min_length=1, max_length=255)
    provider_type: str = Field(description='anthropic, openai, groq, mistral, cohere, google, openrouter')
    model: str = Field(min_length=1, max_length=255)
    is_active: bool = True
    is_default: bool = False
    priority: int = Field(0, ge=0)
    monthly_budget_usd: Decimal | None = Field(None, ge=Decimal('0'))
    alert_threshold_pct: int = Field(settings.LLM_DEFAULT_ALERT_THRESHOLD_PCT, ge=1, le=100)


class CreateLlmProviderParam(LlmProviderSchemaBase):
    """Create a provider"""

    api_key: str = Field(min_length=1)


class UpdateLlmProviderParam(BaseModel):
    """Partial provider update, an empty api_key or one starting with **** keeps the stored key"""

    name: str | None = Field(None, min_length=1, max_length=255)
    provider_type: str | None = None
    model: str | None = Field(None, min_length=1, max_length=255)
    api_key: str | None = None
    is_active: bool | None = None
    is_default: bool | None = None
    priority: int | None = Field(None, ge=0)
    monthly_budget_usd: Decimal | None = Field(None, ge=Decimal('0'))
    alert_threshold_pct: int | None = Field(None, ge=1, le=100)


class GetLlmProviderDetail(BaseModel):
    """Provider with its spending for the current month"""

    id: str
    name: str
    provider_type: str
    model: str
    api_key_masked: str | None = None
    has_key: bool
    budget: Decimal | None = None
    spent_usd: float
    remaining_usd: float | None = None
    usage_pct: float | None = None
    alert_threshold_pct: int
    is_active: bool
    is_default: bool
    priority: int
    total_requests_this_month: int
    is_budget_exhausted: bool
    is_above_alert: bool
    last_validated_at: datetime | None = None
    created_time: datetime | None = None


class GetLlmProviderList(BaseModel):
    providers: list[GetLlmProviderDetail]
    available_providers: dict[str, Any]


class DailySpending(BaseModel):
    date: str
    cost: float
    requests: int


class LlmBudgetAlert(BaseModel):
    """Budget alert for a provider above its threshold or out of budget"""

    type: str
    severity: str
    provider_id: str
    provider_name: str
    message: str
    usage_pct: float | None = None


class GetLlmDashboard(BaseModel):
    """LLM spending dashboard"""

    total_budget_usd: float
    total_spent_usd: float
    total_remaining_usd: float
    total_requests: int
    total_providers: int
    active_providers: int
    alerts: list[LlmBudgetAlert]
    providers: list[GetLlmProviderDetail]
    daily_spending: list[DailySpending]


class GetLlmProviderUsage(BaseModel):
    provider: GetLlmProviderDetail
    daily_spending: list[DailySpending]


class LlmProviderTestResult(BaseModel):
    success: bool
    message: str


class GetInternalLlmProvider(BaseModel):
    """Provider handed to the orchestrator, with its plain API key"""

    id: str
    name: str
    provider_type: str
    model: str
    api_key: str
    budget: Decimal | None = None
    spent_usd: float


class OpenRouterPricing(BaseModel):
    """USD per 1M tokens"""

    input: float | None = None
    output: float | None = None


class OpenRouterModel(BaseModel):
    id: str
    name: str
    context_length: int | None = None
    pricing: OpenRouterPricing
    max_completion_tokens: int | None = None


class GetOpenRouterModels(BaseModel):
    models: list[OpenRouterModel]
    total: int
