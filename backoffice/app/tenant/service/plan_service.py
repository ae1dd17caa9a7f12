import re
import unicodedata

from typing import Any, Sequence

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.billing.crud.crud_subscription import subscription_dao
from backoffice.app.log.service.execution_log_service import execution_log_service
from backoffice.app.tenant.crud.crud_plan import plan_dao, plan_limit_dao
from backoffice.app.tenant.model import Plan, PlanLimit, User
from backoffice.app.tenant.schema.plan import (
    CreatePlanLimitParam,
    CreatePlanParam,
    GetPlanDetail,
    GetPlanLimitDetail,
    UpdatePlanParam,
)
from backoffice.common.exception import errors


def slugify(value: str) -> str:
    normalized = unicodedata.normalize('NFKD', value).encode('ascii', 'ignore').decode()
    return re.sub(r'[^a-z0-9]+', '-', normalized.lower()).strip('-')


class PlanService:
    """Subscription plan management"""

    @staticmethod
    def serialize(plan: Plan, limits: Sequence[PlanLimit]) -> GetPlanDetail:
        return GetPlanDetail(
            id=plan.id,
            name=plan.name,
            slug=plan.slug,
            description=plan.description,
            price_monthly=plan.price_monthly,
            price_yearly=plan.price_yearly,
            currency=plan.currency,
            is_active=plan.is_active,
            features=plan.features or {},
            included_credits_brl=plan.included_credits_brl,
            yearly_savings=plan.yearly_savings,
            yearly_savings_percent=plan.yearly_savings_percent,
            limits=[GetPlanLimitDetail.model_validate(limit) for limit in limits],
            created_time=plan.created_time,
        )

    async def _with_limits(self, db: AsyncSession, plans: Sequence[Plan]) -> list[GetPlanDetail]:
        limits = await plan_limit_dao.get_by_plans(db, [plan.id for plan in plans])
        by_plan: dict[str, list[PlanLimit]] = {}
        for limit in limits:
            by_plan.setdefault(limit.plan_id, []).append(limit)
        return [self.serialize(plan, by_plan.get(plan.id, [])) for plan in plans]

    async def get_list(self, db: AsyncSession, *, active_only: bool = False) -> list[GetPlanDetail]:
        """Plans with their limits attached."""
        plans = await plan_dao.get_list(db, active_only=active_only)
        return await self._with_limits(db, plans)

    @staticmethod
    async def get_model(db: AsyncSession, pk: str, *, active_only: bool = False) -> Plan:
        plan = await plan_dao.select_model(db, pk)
        if not plan or (active_only and not plan.is_active):
            raise errors.NotFoundError(msg='Plan not found')
        return plan

    async def get(self, db: AsyncSession, pk: str, *, active_only: bool = False) -> GetPlanDetail:
        plan = await self.get_model(db, pk, active_only=active_only)
        return (await self._with_limits(db, [plan]))[0]

    async def create(
        self, db: AsyncSession, obj: CreatePlanParam, *, user: User | None = None, request: Request | None = None
    ) -> GetPlanDetail:
        """Create a plan with a slug derived from its name.

        Raises:
            UnprocessableError: If the slug is taken.
        """
        slug = slugify(obj.name)
        if await plan_dao.get_by_slug(db, slug):
            raise errors.UnprocessableError(msg=f'A plan with slug "{slug}" already exists')

        plan = Plan(
            name=obj.name,
            slug=slug,
            description=obj.description,
            price_monthly=obj.price_monthly,
            price_yearly=obj.price_yearly if obj.price_yearly is not None else obj.price_monthly * 10,
            currency=obj.currency.upper(),
            is_active=obj.is_active,
            features=obj.features,
            included_credits_brl=obj.included_credits_brl,
        )
        db.add(plan)
        await db.flush()

        for limit in obj.limits:
            db.add(PlanLimit(plan_id=plan.id, limit_key=limit.limit_key, limit_value=limit.limit_value))
        await db.flush()

        await execution_log_service.audit(
            db,
            'plan.created',
            {'plan_id': plan.id, 'name': plan.name, 'price_monthly': str(plan.price_monthly)},
            user_id=user.id if user else None,
            request=request,
        )
        return await self.get(db, plan.id)

    async def update(
        self,
        db: AsyncSession,
        pk: str,
        obj: UpdatePlanParam,
        *,
        user: User | None = None,
        request: Request | None = None,
    ) -> GetPlanDetail:
        plan = await self.get_model(db, pk)
        changes: dict[str, Any] = obj.model_dump(exclude_unset=True)
        for key, value in changes.items():
            if value is None and key not in ('description',):
                continue
            setattr(plan, key, value)
        if 'name' in changes and changes['name']:
            plan.slug = slugify(changes['name'])
        if plan.currency:
            plan.currency = plan.currency.upper()
        await db.flush()

        await execution_log_service.audit(
            db,
            'plan.updated',
            {'plan_id': plan.id, 'changes': sorted(changes)},
            user_id=user.id if user else None,
            request=request,
        )
        return await self.get(db, plan.id)

    async def delete(
        self, db: AsyncSession, pk: str, *, user: User | None = None, request: Request | None = None
    ) -> None:
        """Delete a plan unless a subscription still uses it."""
        plan = await self.get_model(db, pk)
        subscriptions = await subscription_dao.count_by_plan(db, plan.id)
        if subscriptions > 0:
            raise errors.UnprocessableError(msg=f'Cannot delete: {subscriptions} subscriptions reference this plan')

        await plan_limit_dao.delete_by_plan(db, plan.id)
        await db.delete(plan)
        await db.flush()

        await execution_log_service.audit(
            db, 'plan.deleted', {'plan_id': pk, 'name': plan.name}, user_id=user.id if user else None, request=request
        )

    async def set_limit(
        self,
        db: AsyncSession,
        pk: str,
        obj: CreatePlanLimitParam,
        *,
        user: User | None = None,
        request: Request | None = None,
    ) -> GetPlanLimitDetail:
        """Create or replace a plan limit."""
        plan = await self.get_model(db, pk)
        limit = await plan_limit_dao.get_one(db, plan.id, obj.limit_key)
        if limit is None:
            limit = PlanLimit(plan_id=plan.id, limit_key=obj.limit_key, limit_value=obj.limit_value)
            db.add(limit)
        else:
            limit.limit_value = obj.limit_value
        await db.flush()

        await execution_log_service.audit(
            db,
            'plan.limit_saved',
            {'plan_id': plan.id, 'limit_key': obj.limit_key, 'limit_value': obj.limit_value},
            user_id=user.id if user else None,
            request=request,
        )
        return GetPlanLimitDetail.model_validate(limit)

    async def remove_limit(
        self,
        db: AsyncSession,
        pk: str,
        limit_key: str,
        *,
        user: User | None = None,
        request: Request | None = None,
    ) -> None:
        plan = await self.get_model(db, pk)
        limit = await plan_limit_dao.get_one(db, plan.id, limit_key)
        if limit is None:
            raise errors.NotFoundError(msg='Limit not found for this plan')
        await db.delete(limit)
        await db.flush()

        await execution_log_service.audit(
            db,
            'plan.limit_removed',
            {'plan_id': plan.id, 'limit_key': limit_key},
            user_id=user.id if user else None,
            request=request,
        )


plan_service: PlanService = PlanService()
