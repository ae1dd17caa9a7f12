from decimal import Decimal
from typing import Any

import sqlalchemy as sa

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.common.model import Base, money, uuid_pk
from backoffice.database.db import uuid4_str


class Plan(Base):
    """Subscription plan"""

    __tablename__ = 'plans'

    id: Mapped[uuid_pk] = mapped_column(init=False, default_factory=uuid4_str)
    name: Mapped[str] = mapped_column(sa.String(255))
    slug: Mapped[str] = mapped_column(sa.String(255), unique=True, index=True)
    description: Mapped[str | None] = mapped_column(sa.Text, default=None)
    price_monthly: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2), default=Decimal('0'))
    price_yearly: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2), default=Decimal('0'))
    currency: Mapped[str] = mapped_column(sa.String(3), default='BRL')
    is_active: Mapped[bool] = mapped_column(default=True, index=True)
    features: Mapped[dict[str, Any]] = mapped_column(
        JSONB, default_factory=dict, comment='Feature flags, plus stripe_price_id for Stripe billing'
    )
    included_credits_brl: Mapped[money] = mapped_column(
        default=Decimal('0'), comment='Plan credits granted each billing period'
    )

    @property
    def yearly_savings(self) -> Decimal:
        if not self.price_monthly or not self.price_yearly:
            return Decimal('0')
        return Decimal(self.price_monthly) * 12 - Decimal(self.price_yearly)

    @property
    def yearly_savings_percent(self) -> int:
        if not self.price_monthly or not self.price_yearly:
            return 0
        return round(self.yearly_savings / (Decimal(self.price_monthly) * 12) * 100)


class PlanLimit(Base):
    """Subscription plan limit"""

    __tablename__ = 'plan_limits'
    __table_args__ = (
        sa.UniqueConstraint('plan_id', 'limit_key', name='uq_plan_limits_plan_key'),
        {'comment': 'Plan limits, -1 means unlimited'},
    )

    id: Mapped[uuid_pk] = mapped_column(init=False, default_factory=uuid4_str)
    plan_id: Mapped[str] = mapped_column(sa.String(36), sa.ForeignKey('plans.id', ondelete='CASCADE'), index=True)
    limit_key: Mapped[str] = mapped_column(sa.String(100), comment='e.g. users, whatsapp_connections')
    limit_value: Mapped[int] = mapped_column(comment='-1 unlimited, 0 no access')
