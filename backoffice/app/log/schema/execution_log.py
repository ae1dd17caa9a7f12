from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class GetExecutionLogDetail(BaseModel):
    """Execution log entry"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    log_type: str = Field(description='audit, webhook, credit, billing, system')
    source: str
    action: str
    details: dict[str, Any]
    severity: str
    tenant_id: str | None = None
    user_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    correlation_id: str | None = None
    created_time: datetime
