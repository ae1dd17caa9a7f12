"""Credit ledger models.

Each tenant has one ``TenantCredit`` row holding two pockets: plan credit,
granted each billing period and reset on renewal, and addon credit, bought or
granted by an admin and never expiring. ``balance_brl`` is always the sum of
the two. Every movement is appended to ``credit_transactions``.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

import sqlalchemy as sa

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.common.enums import MarkupType
from backoffice.common.model import Base, TimeZone, money, uuid_pk
from backoffice.database.db import uuid4_str


class TenantCredit(Base):
    """Tenant credit account"""

    __tablename__ = 'tenant_credits'

    id: Mapped[uuid_pk] = mapped_column(init=False, default_factory=uuid4_str)
    tenant_id: Mapped[str] = mapped_column(
        sa.String(36), sa.ForeignKey('tenants.id', ondelete='CASCADE'), unique=True, index=True
    )
    balance_brl: Mapped[money] = mapped_column(default=Decimal('0'), comment='plan_balance_brl + addon_balance_brl')
    total_purchased_brl: Mapped[money] = mapped_column(default=Decimal('0'))
    total_consumed_brl: Mapped[money] = mapped_column(default=Decimal('0'))
    plan_balance_brl: Mapped[money] = mapped_column(default=Decimal('0'), comment='Resets every billing period')
    addon_balance_brl: Mapped[money] = mapped_column(default=Decimal('0'), comment='Purchased, may go negative')
    plan_credits_granted_brl: Mapped[money] = mapped_column(default=Decimal('0'))
    plan_credits_reset_at: Mapped[datetime | None] = mapped_column(TimeZone, default=None)


class CreditTransaction(Base):
    """Credit ledger entry"""

    __tablename__ = 'credit_transactions'

    id: Mapped[uuid_pk] = mapped_column(init=False, default_factory=uuid4_str)
    tenant_id: Mapped[str] = mapped_column(sa.String(36), sa.ForeignKey('tenants.id', ondelete='CASCADE'), index=True)
    type: Mapped[str] = mapped_column(
        sa.String(30), index=True, comment='purchase, deduction, manual_credit, refund, plan_replenishment'
    )
    amount_brl: Mapped[money] = mapped_column(comment='Negative for deductions and refunds')
    balance_after_brl: Mapped[money] = mapped_column()
    description: Mapped[str | None] = mapped_column(sa.String(500), default=None)
    reference_type: Mapped[str | None] = mapped_column(sa.String(100), default=None)
    reference_id: Mapped[str | None] = mapped_column(sa.String(255), default=None, index=True)
    extra: Mapped[dict[str, Any]] = mapped_column('metadata', JSONB, default_factory=dict)
    credit_source: Mapped[str | None] = mapped_column(sa.String(20), default=None, comment='plan, addon, plan+addon')


class CreditSetting(Base):
    """Credit pricing settings (single row)"""

    __tablename__ = 'credit_settings'

    id: Mapped[uuid_pk] = mapped_column(init=False, default_factory=uuid4_str)
    markup_type: Mapped[str] = mapped_column(sa.String(20), default=MarkupType.percentage)
    markup_value: Mapped[Decimal] = mapped_column(sa.Numeric(10, 4), default=Decimal('50'))
    usd_to_brl_rate: Mapped[Decimal] = mapped_column(sa.Numeric(10, 4), default=Decimal('5.50'))
    min_balance_warning_brl: Mapped[money] = mapped_column(default=Decimal('1.00'))
    block_on_zero_balance: Mapped[bool] = mapped_column(default=True)


class CreditPackage(Base):
    """Credit package"""

    __tablename__ = 'credit_packages'

    id: Mapped[uuid_pk] = mapped_column(init=False, default_factory=uuid4_str)
    name: Mapped[str] = mapped_column(sa.String(255))
    price_brl: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2))
    credit_amount_brl: Mapped[money] = mapped_column()
    description: Mapped[str | None] = mapped_column(sa.String(500), default=None)
    is_active: Mapped[bool] = mapped_column(default=True, index=True)
    sort_order: Mapped[int] = mapped_column(default=0)
