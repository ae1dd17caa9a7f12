from datetime import datetime
from typing import Any

import sqlalchemy as sa

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.common.model import Base, TimeZone, uuid_pk
from backoffice.database.db import uuid4_str


class WebhookEvent(Base):
    """Raw payment gateway webhook event"""

    __tablename__ = 'webhook_events'

    id: Mapped[uuid_pk] = mapped_column(init=False, default_factory=uuid4_str)
    provider: Mapped[str] = mapped_column(sa.String(20), index=True)
    event_type: Mapped[str] = mapped_column(sa.String(100), index=True)
    idempotency_key: Mapped[str] = mapped_column(sa.String(255), unique=True, comment='provider_event_reference')
    external_id: Mapped[str | None] = mapped_column(sa.String(255), default=None)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, default_factory=dict)
    signature: Mapped[str | None] = mapped_column(sa.String(1024), default=None)
    signature_valid: Mapped[bool] = mapped_column(default=False)
    processed: Mapped[bool] = mapped_column(default=False, index=True)
    processed_at: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    attempts: Mapped[int] = mapped_column(default=0)
    error: Mapped[str | None] = mapped_column(sa.Text, default=None)


class BillingEvent(Base):
    """Billing event applied to a tenant"""

    __tablename__ = 'billing_events'

    id: Mapped[uuid_pk] = mapped_column(init=False, default_factory=uuid4_str)
    tenant_id: Mapped[str] = mapped_column(sa.String(36), sa.ForeignKey('tenants.id', ondelete='CASCADE'), index=True)
    event_type: Mapped[str] = mapped_column(sa.String(100))
    provider: Mapped[str] = mapped_column(sa.String(20))
    external_id: Mapped[str | None] = mapped_column(sa.String(255), default=None)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, default_factory=dict)
    processed_at: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    idempotency_key: Mapped[str | None] = mapped_column(sa.String(255), default=None, index=True)
