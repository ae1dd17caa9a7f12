"""
Plan Credit Replenishment

Daily job that resets the plan credit pocket of tenants whose billing period
has ended. Unused plan credit does not roll over.

A tenant replenished less than BILLING_REPLENISH_MIN_DAYS ago is skipped, so
running the job several times a day (or after a missed day) never grants the
same period twice.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from backoffice.app.billing.crud.crud_subscription import subscription_dao
from backoffice.app.credit.crud.crud_credit import tenant_credit_dao
from backoffice.app.tenant.crud.crud_plan import plan_dao
from backoffice.common.enums import SubscriptionStatus
from backoffice.core.conf import settings
from backoffice.database.db import async_db_session
from backoffice.src.billing.credits.manager import credit_manager
from backoffice.utils.timezone import timezone

logger = logging.getLogger(__name__)

REPLENISHABLE_STATUSES = (SubscriptionStatus.active, SubscriptionStatus.trial)


def recently_replenished(reset_at: Optional[datetime], now: datetime, min_days: int) -> bool:
    if reset_at is None:
        return False
    return now - timezone.from_datetime(reset_at) < timedelta(days=min_days)


async def replenish_plan_credits_job(
    now: Optional[datetime] = None,
    session_factory: Optional[async_sessionmaker] = None,
) -> Dict[str, int]:
    """
    Replenish plan credits for subscriptions whose period has ended.

    Each tenant is handled in its own transaction; a failure is logged and the
    batch continues.

    Args:
        now: Reference time, defaults to the current time
        session_factory: Session maker, defaults to the application's

    Returns:
        Counts of replenished, skipped and failed tenants
    """
    now = now or timezone.now()
    factory = session_factory or async_db_session
    stats = {'replenished': 0, 'skipped': 0, 'failed': 0}

    async with factory() as db:
        subscriptions = await subscription_dao.get_due_for_replenishment(db, REPLENISHABLE_STATUSES, now)
        due = [(s.tenant_id, s.plan_id) for s in subscriptions]

    logger.info(f"[REPLENISH] {len(due)} subscriptions past their period end")

    for tenant_id, plan_id in due:
        try:
            async with factory.begin() as db:
                plan = await plan_dao.select_model(db, plan_id)
                if plan is None or not plan.included_credits_brl or plan.included_credits_brl <= 0:
                    stats['skipped'] += 1
                    continue

                credit = await tenant_credit_dao.get_by_tenant(db, tenant_id)
                if credit is not None and recently_replenished(
                    credit.plan_credits_reset_at, now, settings.BILLING_REPLENISH_MIN_DAYS
                ):
                    stats['skipped'] += 1
                    continue

                await credit_manager.replenish_plan_credits(db, tenant_id, plan)
                stats['replenished'] += 1
                logger.info(f"[REPLENISH] Tenant {tenant_id} replenished with {plan.included_credits_brl} BRL")
        except Exception as e:
            stats['failed'] += 1
            logger.error(f"[REPLENISH] Failed for tenant {tenant_id}: {e}", exc_info=True)

    logger.info(f"[REPLENISH] Finished: {stats}")
    return stats
