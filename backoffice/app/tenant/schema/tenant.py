from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class BlockTenantParam(BaseModel):
    """Block a tenant"""

    reason: str | None = Field(None, max_length=500)


class GetTenantDetail(BaseModel):
    """Tenant detail"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    slug: str
    status: str
    settings: dict[str, Any]
    is_blocked: bool
    blocked_reason: str | None = None
    blocked_at: datetime | None = None
    billing_customer_id: str | None = None
    billing_provider: str
    created_time: datetime | None = None


class LimitCheckParam(BaseModel):
    """Limit check"""

    limit_key: str = Field(max_length=100)
    current_count: int = Field(ge=0)


class LimitCheckResult(BaseModel):
    exceeded: bool
    limit: int
    limit_key: str
