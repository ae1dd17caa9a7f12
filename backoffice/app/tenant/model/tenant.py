"""Tenant and user models.

Tenants are the billing unit: subscriptions, credit ledgers and LLM providers
all hang off ``tenant_id``. Users are kept minimal, this service only needs
them to authorize requests and to find a tenant's owner for notifications.
"""

from datetime import datetime
from typing import Any

import sqlalchemy as sa

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.common.enums import PaymentProvider, TenantStatus, UserRole
from backoffice.common.model import Base, TimeZone, uuid_pk
from backoffice.database.db import uuid4_str


class Tenant(Base):
    """Tenant"""

    __tablename__ = 'tenants'

    id: Mapped[uuid_pk] = mapped_column(init=False, default_factory=uuid4_str)
    name: Mapped[str] = mapped_column(sa.String(255), comment='Display name')
    slug: Mapped[str] = mapped_column(sa.String(255), unique=True, index=True, comment='URL-safe identifier')
    status: Mapped[str] = mapped_column(
        sa.String(20), default=TenantStatus.trial, index=True, comment='active, suspended, cancelled, trial'
    )
    settings: Mapped[dict[str, Any]] = mapped_column(JSONB, default_factory=dict, comment='Free-form tenant settings')
    is_blocked: Mapped[bool] = mapped_column(default=False, index=True, comment='Blocked for non-payment')
    blocked_reason: Mapped[str | None] = mapped_column(sa.String(500), default=None)
    blocked_at: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    billing_customer_id: Mapped[str | None] = mapped_column(
        sa.String(255), default=None, comment='Customer id on the payment gateway'
    )
    billing_provider: Mapped[str] = mapped_column(
        sa.String(20), default=PaymentProvider.asaas, comment='asaas or stripe'
    )

    def get_setting(self, key: str, default: Any = None) -> Any:
        return (self.settings or {}).get(key, default)


class User(Base):
    """User"""

    __tablename__ = 'users'

    id: Mapped[uuid_pk] = mapped_column(init=False, default_factory=uuid4_str)
    name: Mapped[str] = mapped_column(sa.String(255))
    email: Mapped[str] = mapped_column(sa.String(255), unique=True, index=True)
    tenant_id: Mapped[str | None] = mapped_column(
        sa.String(36), sa.ForeignKey('tenants.id', ondelete='CASCADE'), default=None, index=True
    )
    role: Mapped[str] = mapped_column(sa.String(20), default=UserRole.agent, comment='admin, owner, agent')
    is_active: Mapped[bool] = mapped_column(default=True)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin
