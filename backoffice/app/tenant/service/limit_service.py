"""Plan limit checks.

A limit value of -1 means unlimited, 0 means the plan grants no access, any
other value is the maximum count allowed.
"""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.billing.crud.crud_subscription import subscription_dao
from backoffice.app.tenant.crud.crud_plan import plan_dao, plan_limit_dao
from backoffice.app.tenant.model import Plan
from backoffice.src.billing.shared.config import UNLIMITED
from backoffice.src.billing.shared.exceptions import LimitExceededError


def exceeds_limit(limit: int, current_count: int) -> bool:
    """Whether ``current_count`` has reached ``limit``.

    -1 means unlimited and 0 blocks everything.
    """
    if limit == UNLIMITED:
        return False
    if limit == 0:
        return True
    return current_count >= limit


async def get_current_plan(db: AsyncSession, tenant_id: str) -> Plan | None:
    """Plan of the tenant's current subscription, if any."""
    subscription = await subscription_dao.get_current(db, tenant_id)
    if subscription is None:
        return None
    return await plan_dao.select_model(db, subscription.plan_id)


async def get_plan_limit(db: AsyncSession, plan: Plan | None, limit_key: str) -> int:
    if plan is None:
        return 0
    limit = await plan_limit_dao.get_one(db, plan.id, limit_key)
    return limit.limit_value if limit is not None else 0


async def get_limit(db: AsyncSession, tenant_id: str, limit_key: str) -> int:
    """Limit value on the tenant's current plan, 0 when there is no plan or no such limit."""
    plan = await get_current_plan(db, tenant_id)
    return await get_plan_limit(db, plan, limit_key)


async def check_limit(db: AsyncSession, tenant_id: str, limit_key: str, current_count: int) -> dict[str, Any]:
    """Check a limit without raising.

    Returns:
        ``exceeded``, ``limit`` and ``limit_key``.
    """
    limit = await get_limit(db, tenant_id, limit_key)
    return {'exceeded': exceeds_limit(limit, current_count), 'limit': limit, 'limit_key': limit_key}


async def ensure_within_limit(
    db: AsyncSession,
    tenant_id: str,
    limit_key: str,
    current_count: int,
    resource_name: str | None = None,
) -> None:
    """Raise when the tenant is at its plan limit.

    Args:
        db: Database session.
        tenant_id: Tenant to check.
        limit_key: Limit key such as ``max_agents``.
        current_count: Resources the tenant already has.
        resource_name: Human name used in the error message.

    Raises:
        LimitExceededError: If the limit is reached.
    """
    plan = await get_current_plan(db, tenant_id)
    limit = await get_plan_limit(db, plan, limit_key)
    if exceeds_limit(limit, current_count):
        raise LimitExceededError(limit_key, limit, resource_name, plan.name if plan else None)
