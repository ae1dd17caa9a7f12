from datetime import datetime
from decimal import Decimal
from typing import Any

import sqlalchemy as sa

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.common.enums import InvoiceStatus, PaymentProvider, SubscriptionStatus
from backoffice.common.model import Base, TimeZone, uuid_pk
from backoffice.database.db import uuid4_str
from backoffice.utils.timezone import timezone


class Subscription(Base):
    """Tenant subscription"""

    __tablename__ = 'subscriptions'

    id: Mapped[uuid_pk] = mapped_column(init=False, default_factory=uuid4_str)
    tenant_id: Mapped[str] = mapped_column(sa.String(36), sa.ForeignKey('tenants.id', ondelete='CASCADE'), index=True)
    plan_id: Mapped[str] = mapped_column(sa.String(36), sa.ForeignKey('plans.id'), index=True)
    status: Mapped[str] = mapped_column(
        sa.String(20), default=SubscriptionStatus.trial, index=True, comment='active, past_due, cancelled, trial, paused'
    )
    payment_provider: Mapped[str] = mapped_column(sa.String(20), default=PaymentProvider.asaas)
    external_id: Mapped[str | None] = mapped_column(
        sa.String(255), default=None, index=True, comment='Subscription id on the payment gateway'
    )
    current_period_start: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    current_period_end: Mapped[datetime | None] = mapped_column(TimeZone, default=None, index=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(TimeZone, default=None)

    @property
    def is_cancelled(self) -> bool:
        return self.status == SubscriptionStatus.cancelled

    @property
    def days_until_renewal(self) -> int | None:
        if self.current_period_end is None:
            return None
        delta = timezone.from_datetime(self.current_period_end) - timezone.now()
        return max(0, delta.days)

    def cancel(self) -> None:
        self.status = SubscriptionStatus.cancelled
        self.cancelled_at = timezone.now()


class Invoice(Base):
    """Invoice"""

    __tablename__ = 'invoices'

    id: Mapped[uuid_pk] = mapped_column(init=False, default_factory=uuid4_str)
    tenant_id: Mapped[str] = mapped_column(sa.String(36), sa.ForeignKey('tenants.id', ondelete='CASCADE'), index=True)
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2))
    subscription_id: Mapped[str | None] = mapped_column(
        sa.String(36), sa.ForeignKey('subscriptions.id', ondelete='SET NULL'), default=None, index=True
    )
    external_id: Mapped[str | None] = mapped_column(
        sa.String(255), default=None, unique=True, comment='Payment/invoice id on the gateway'
    )
    currency: Mapped[str] = mapped_column(sa.String(3), default='BRL')
    status: Mapped[str] = mapped_column(
        sa.String(20), default=InvoiceStatus.pending, index=True, comment='pending, paid, failed, refunded, cancelled'
    )
    due_date: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    paid_at: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    invoice_url: Mapped[str | None] = mapped_column(sa.String(1024), default=None)
    reminder_sent_at: Mapped[dict[str, Any]] = mapped_column(
        JSONB, default_factory=dict, comment='Reminder key -> ISO timestamp'
    )

    @property
    def days_until_due(self) -> int | None:
        if self.due_date is None:
            return None
        return (timezone.start_of_day(self.due_date) - timezone.start_of_day()).days

    def mark_as_paid(self) -> None:
        self.status = InvoiceStatus.paid
        self.paid_at = timezone.now()
