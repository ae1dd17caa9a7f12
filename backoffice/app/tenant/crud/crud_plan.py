from typing import Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy_crud_plus import CRUDPlus

from backoffice.app.tenant.model import Plan, PlanLimit


class CRUDPlan(CRUDPlus[Plan]):
    """Plan database operations"""

    async def get_list(self, db: AsyncSession, *, active_only: bool = False) -> Sequence[Plan]:
        """Plans ordered by monthly price."""
        stmt = select(self.model).order_by(self.model.price_monthly, self.model.name)
        if active_only:
            stmt = stmt.where(self.model.is_active.is_(True))
        return (await db.execute(stmt)).scalars().all()

    async def get_by_slug(self, db: AsyncSession, slug: str) -> Plan | None:
        return await self.select_model_by_column(db, slug=slug)


class CRUDPlanLimit(CRUDPlus[PlanLimit]):
    """Plan limit database operations"""

    async def get_by_plans(self, db: AsyncSession, plan_ids: Sequence[str]) -> Sequence[PlanLimit]:
        if not plan_ids:
            return []
        stmt = select(self.model).where(self.model.plan_id.in_(list(plan_ids))).order_by(self.model.limit_key)
        return (await db.execute(stmt)).scalars().all()

    async def get_one(self, db: AsyncSession, plan_id: str, limit_key: str) -> PlanLimit | None:
        stmt = select(self.model).where(self.model.plan_id == plan_id, self.model.limit_key == limit_key)
        return (await db.execute(stmt)).scalars().first()

    async def delete_by_plan(self, db: AsyncSession, plan_id: str) -> None:
        await db.execute(delete(self.model).where(self.model.plan_id == plan_id))


plan_dao: CRUDPlan = CRUDPlan(Plan)
plan_limit_dao: CRUDPlanLimit = CRUDPlanLimit(PlanLimit)
