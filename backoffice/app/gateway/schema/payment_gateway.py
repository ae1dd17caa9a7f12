from datetime import datetime
from typing import Any

from pydantic import BaseModel


class GetPaymentGatewayDetail(BaseModel):
    """Payment gateway settings with masked secrets"""

    id: str
    provider: str
    is_active: bool
    sandbox: bool
    has_api_key: bool
    api_key_masked: str | None = None
    has_webhook_secret: bool
    webhook_secret_masked: str | None = None
    metadata: dict[str, Any]
    updated_time: datetime | None = None


class UpdatePaymentGatewayParam(BaseModel):
    """Gateway update; empty secrets keep the stored ones"""

    api_key: str | None = None
    webhook_secret: str | None = None
    is_active: bool | None = None
    sandbox: bool | None = None


class GatewayConnectionResult(BaseModel):
    success: bool
    message: str
    details: dict[str, Any] | None = None
