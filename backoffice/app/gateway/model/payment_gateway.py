from typing import Any

import sqlalchemy as sa

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.common.model import Base, uuid_pk
from backoffice.database.db import uuid4_str


class PaymentGatewaySetting(Base):
    """Payment gateway credentials"""

    __tablename__ = 'payment_gateway_settings'

    id: Mapped[uuid_pk] = mapped_column(init=False, default_factory=uuid4_str)
    provider: Mapped[str] = mapped_column(sa.String(20), unique=True, comment='asaas or stripe')
    api_key_encrypted: Mapped[str | None] = mapped_column(sa.Text, default=None)
    webhook_secret_encrypted: Mapped[str | None] = mapped_column(sa.Text, default=None)
    is_active: Mapped[bool] = mapped_column(default=False)
    sandbox: Mapped[bool] = mapped_column(default=True)
    extra: Mapped[dict[str, Any]] = mapped_column('metadata', JSONB, default_factory=dict)
