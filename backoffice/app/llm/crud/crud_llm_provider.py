from datetime import datetime
from decimal import Decimal
from typing import Sequence

from sqlalchemy import Date, Select, cast, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy_crud_plus import CRUDPlus

from backoffice.app.llm.model import AiUsageRecord, LlmProvider
from backoffice.app.tenant.model import Tenant


class CRUDLlmProvider(CRUDPlus[LlmProvider]):
    """LLM provider database operations, scoped by tenant (None for global)"""

    def _scope(self, stmt, tenant_id: str | None):
        if tenant_id is None:
            return stmt.where(self.model.tenant_id.is_(None))
        return stmt.where(self.model.tenant_id == tenant_id)

    async def get_list(self, db: AsyncSession, tenant_id: str | None) -> Sequence[LlmProvider]:
        stmt = self._scope(select(self.model), tenant_id).order_by(self.model.priority, self.model.name)
        return (await db.execute(stmt)).scalars().all()

    async def get_by_name(self, db: AsyncSession, tenant_id: str | None, name: str) -> LlmProvider | None:
        stmt = self._scope(select(self.model), tenant_id).where(self.model.name == name)
        return (await db.execute(stmt)).scalars().first()

    async def count(self, db: AsyncSession, tenant_id: str | None) -> int:
        stmt = self._scope(select(func.count()).select_from(self.model), tenant_id)
        return (await db.execute(stmt)).scalar_one()

    async def unset_default(self, db: AsyncSession, tenant_id: str | None, exclude_id: str | None = None) -> None:
        """Clear the default flag on every other provider of the scope"""
        stmt = self._scope(update(self.model), tenant_id).where(self.model.is_default.is_(True))
        if exclude_id:
            stmt = stmt.where(self.model.id != exclude_id)
        await db.execute(stmt.values(is_default=False).execution_options(synchronize_session='fetch'))

    async def get_default_active(self, db: AsyncSession, tenant_id: str | None) -> LlmProvider | None:
        stmt = self._scope(select(self.model), tenant_id).where(
            self.model.is_default.is_(True), self.model.is_active.is_(True)
        )
        return (await db.execute(stmt.limit(1))).scalars().first()

    async def get_first_active(self, db: AsyncSession, tenant_id: str | None) -> LlmProvider | None:
        stmt = (
            self._scope(select(self.model), tenant_id)
            .where(self.model.is_active.is_(True))
            .order_by(self.model.priority, self.model.created_time)
        )
        return (await db.execute(stmt.limit(1))).scalars().first()


class CRUDAiUsageRecord(CRUDPlus[AiUsageRecord]):
    """LLM usage database operations"""

    async def get_totals(
        self, db: AsyncSession, provider_ids: Sequence[str], since: datetime
    ) -> tuple[Decimal, int]:
        """Cost and request count of providers since a point in time.

        Args:
            db: Database session
            provider_ids: Providers to include
            since: Inclusive lower bound on created_time

        Returns:
            (cost in USD, request count)
        """
        if not provider_ids:
            return Decimal('0'), 0
        stmt = select(func.coalesce(func.sum(self.model.cost_usd), 0), func.count()).where(
            self.model.llm_provider_id.in_(list(provider_ids)), self.model.created_time >= since
        )
        cost, requests = (await db.execute(stmt)).one()
        return Decimal(str(cost)), requests

    async def get_daily(self, db: AsyncSession, provider_ids: Sequence[str], since: datetime) -> Sequence:
        if not provider_ids:
            return []
        day = cast(self.model.created_time, Date)
        stmt = (
            select(day.label('day'), func.sum(self.model.cost_usd).label('cost'), func.count().label('requests'))
            .where(self.model.llm_provider_id.in_(list(provider_ids)), self.model.created_time >= since)
            .group_by(day)
            .order_by(day)
        )
        return (await db.execute(stmt)).all()

    def _usage_columns(self) -> list:
        return [
            func.count().label('requests'),
            func.coalesce(func.sum(self.model.input_tokens), 0).label('input_tokens'),
            func.coalesce(func.sum(self.model.output_tokens), 0).label('output_tokens'),
            func.coalesce(func.sum(self.model.cost_usd), 0).label('cost'),
        ]

    def _in_period(self, stmt: Select, start: datetime, end: datetime, tenant_id: str | None) -> Select:
        stmt = stmt.where(self.model.created_time >= start, self.model.created_time < end)
        if tenant_id:
            stmt = stmt.where(self.model.tenant_id == tenant_id)
        return stmt

    async def get_report_totals(
        self, db: AsyncSession, start: datetime, end: datetime, tenant_id: str | None = None
    ):
        """Usage totals for the half-open period [start, end), optionally for one tenant."""
        stmt = self._in_period(select(*self._usage_columns()), start, end, tenant_id)
        return (await db.execute(stmt)).one()

    async def get_report_by_model(
        self, db: AsyncSession, start: datetime, end: datetime, tenant_id: str | None = None
    ) -> Sequence:
        stmt = self._in_period(select(self.model.model, *self._usage_columns()), start, end, tenant_id)
        stmt = stmt.group_by(self.model.model).order_by(func.sum(self.model.cost_usd).desc())
        return (await db.execute(stmt)).all()

    async def get_report_by_tenant(
        self, db: AsyncSession, start: datetime, end: datetime, tenant_id: str | None = None, limit: int = 20
    ) -> Sequence:
        stmt = self._in_period(
            select(self.model.tenant_id, Tenant.name.label('tenant_name'), *self._usage_columns()).join(
                Tenant, Tenant.id == self.model.tenant_id
            ),
            start,
            end,
            tenant_id,
        )
        stmt = stmt.group_by(self.model.tenant_id, Tenant.name).order_by(func.sum(self.model.cost_usd).desc())
        return (await db.execute(stmt.limit(limit))).all()

    async def get_report_daily(
        self, db: AsyncSession, start: datetime, end: datetime, tenant_id: str | None = None
    ) -> Sequence:
        day = cast(self.model.created_time, Date)
        stmt = self._in_period(select(day.label('day'), *self._usage_columns()), start, end, tenant_id)
        return (await db.execute(stmt.group_by(day).order_by(day))).all()


llm_provider_dao: CRUDLlmProvider = CRUDLlmProvider(LlmProvider)
ai_usage_dao: CRUDAiUsageRecord = CRUDAiUsageRecord(AiUsageRecord)
