from datetime import date

from pydantic import BaseModel


class AiUsagePeriod(BaseModel):
    start: date
    end: date


class AiUsageTotals(BaseModel):
    requests: int
    input_tokens: int
    output_tokens: int
    total_tokens: int
    cost_usd: float


class AiUsageByModel(AiUsageTotals):
    model: str


class AiUsageByTenant(AiUsageTotals):
    tenant_id: str
    tenant_name: str


class AiUsageDay(AiUsageTotals):
    date: date


class GetAiUsageReport(BaseModel):
    """LLM usage over a period, broken down by model, tenant and day"""

    period: AiUsagePeriod
    totals: AiUsageTotals
    by_model: list[AiUsageByModel]
    by_tenant: list[AiUsageByTenant]
    daily: list[AiUsageDay]
