from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy_crud_plus import CRUDPlus

from backoffice.app.billing.model import Subscription


class CRUDSubscription(CRUDPlus[Subscription]):
    """Subscription database operations"""

    async def get_current(self, db: AsyncSession, tenant_id: str) -> Subscription | None:
        """The tenant's current subscription, the most recently created one."""
        stmt = (
            select(self.model)
            .where(self.model.tenant_id == tenant_id)
            .order_by(self.model.created_time.desc())
            .limit(1)
        )
        return (await db.execute(stmt)).scalars().first()

    async def get_by_external_id(self, db: AsyncSession, external_id: str) -> Subscription | None:
        stmt = select(self.model).where(self.model.external_id == external_id).limit(1)
        return (await db.execute(stmt)).scalars().first()

    async def count_by_plan(self, db: AsyncSession, plan_id: str) -> int:
        stmt = select(func.count()).select_from(self.model).where(self.model.plan_id == plan_id)
        return (await db.execute(stmt)).scalar_one()

    async def get_due_for_replenishment(self, db: AsyncSession, statuses: Sequence[str], now) -> Sequence[Subscription]:
        """Subscriptions in one of ``statuses`` whose billing period ended by ``now``.

        Args:
            db: Database session
            statuses: Subscription statuses to include
            now: Reference time

        Returns:
            The due subscriptions
        """
        stmt = select(self.model).where(
            self.model.status.in_(list(statuses)),
            self.model.current_period_end.is_not(None),
            self.model.current_period_end <= now,
        )
        return (await db.execute(stmt)).scalars().all()


subscription_dao: CRUDSubscription = CRUDSubscription(Subscription)
