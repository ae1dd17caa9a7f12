from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa

from sqlalchemy.orm import Mapped, mapped_column

from backoffice.common.model import Base, TimeZone, uuid_pk
from backoffice.database.db import uuid4_str


class LlmProvider(Base):
    """LLM provider credentials and budget, tenant_id NULL for global providers"""

    __tablename__ = 'llm_providers'
    __table_args__ = (
        sa.UniqueConstraint('tenant_id', 'name', name='uq_llm_providers_tenant_name'),
        {'comment': 'LLM provider credentials and budgets, tenant_id NULL for global providers'},
    )

    id: Mapped[uuid_pk] = mapped_column(init=False, default_factory=uuid4_str)
    name: Mapped[str] = mapped_column(sa.String(255))
    provider_type: Mapped[str] = mapped_column(sa.String(50), comment='anthropic, openai, groq, ...')
    model: Mapped[str] = mapped_column(sa.String(255))
    api_key_encrypted: Mapped[str] = mapped_column(sa.Text, comment='Fernet token')
    tenant_id: Mapped[str | None] = mapped_column(
        sa.String(36), sa.ForeignKey('tenants.id', ondelete='CASCADE'), default=None, index=True
    )
    is_default: Mapped[bool] = mapped_column(default=False)
    is_active: Mapped[bool] = mapped_column(default=True)
    priority: Mapped[int] = mapped_column(default=0, comment='Lower is preferred in failover')
    monthly_budget_usd: Mapped[Decimal | None] = mapped_column(sa.Numeric(12, 2), default=None)
    alert_threshold_pct: Mapped[int] = mapped_column(default=80)
    last_validated_at: Mapped[datetime | None] = mapped_column(TimeZone, default=None)

    @property
    def is_global(self) -> bool:
        return self.tenant_id is None


class AiUsageRecord(Base):
    """Usage of one LLM call"""

    __tablename__ = 'ai_usage_records'
    __table_args__ = (
        sa.Index('ix_ai_usage_records_provider_created', 'llm_provider_id', 'created_time'),
        {'comment': 'Per-call LLM usage, feeds provider budgets'},
    )

    id: Mapped[uuid_pk] = mapped_column(init=False, default_factory=uuid4_str)
    tenant_id: Mapped[str] = mapped_column(sa.String(36), sa.ForeignKey('tenants.id', ondelete='CASCADE'), index=True)
    model: Mapped[str] = mapped_column(sa.String(255))
    llm_provider_id: Mapped[str | None] = mapped_column(
        sa.String(36), sa.ForeignKey('llm_providers.id', ondelete='SET NULL'), default=None
    )
    input_tokens: Mapped[int] = mapped_column(default=0)
    output_tokens: Mapped[int] = mapped_column(default=0)
    cost_usd: Mapped[Decimal] = mapped_column(sa.Numeric(14, 6), default=Decimal('0'))
    reference_id: Mapped[str | None] = mapped_column(sa.String(255), default=None, comment='AI decision id')
