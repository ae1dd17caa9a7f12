"""
Cache Utilities for Billing

Provides cache key management and invalidation functions for billing data.
Uses Redis for caching credit balances and the credit settings row.
Cache failures never break a billing operation: they are logged and reported
through the boolean / None return values.

Balance invalidations queued with invalidate_credit_caches_on_commit run only
after the session commits, so a concurrent reader cannot cache the balance
while the change is still uncommitted.
"""

import asyncio
import json
import logging
from typing import Any, Optional, Set

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from backoffice.core.conf import settings

logger = logging.getLogger(__name__)

PENDING_INVALIDATIONS_KEY = "credit_cache_invalidations"

_invalidation_tasks: Set[asyncio.Task] = set()


def credit_balance_key(tenant_id: str) -> str:
    return f"{settings.CREDIT_REDIS_PREFIX}:balance:{tenant_id}"


def credit_settings_key() -> str:
    return f"{settings.CREDIT_REDIS_PREFIX}:settings"


async def get_cached(cache_key: str) -> Optional[Any]:
    """
    Read a JSON value from the cache.

    Args:
        cache_key: Redis key

    Returns:
        The decoded value, or None on a miss or any cache error
    """
    try:
        from backoffice.database.redis import redis_client

        raw = await redis_client.get(cache_key)
        if raw is None:
            return None
        return json.loads(raw)

    except Exception as e:
        logger.warning(f"[CACHE] Failed to read {cache_key}: {e}")
        return None


async def set_cached(cache_key: str, value: Any, ttl: int) -> bool:
    """
    Store a JSON-serializable value with a TTL.

    Decimals and datetimes are serialized as strings.
    """
    try:
        from backoffice.database.redis import redis_client

        await redis_client.setex(cache_key, ttl, json.dumps(value, default=str))
        return True

    except Exception as e:
        logger.warning(f"[CACHE] Failed to write {cache_key}: {e}")
        return False


async def invalidate(cache_key: str) -> bool:
    try:
        from backoffice.database.redis import redis_client

        await redis_client.delete(cache_key)
        logger.debug(f"[CACHE] Invalidated {cache_key}")
        return True

    except Exception as e:
        logger.warning(f"[CACHE] Failed to invalidate {cache_key}: {e}")
        return False


async def invalidate_credit_caches(tenant_id: str) -> bool:
    """
    Invalidate the cached balance snapshot for a tenant.

    Should be called whenever credits are added, deducted or replenished.
    """
    return await invalidate(credit_balance_key(tenant_id))


async def invalidate_credit_settings_cache() -> bool:
    return await invalidate(credit_settings_key())


# =============================================================================
# POST-COMMIT INVALIDATION
# =============================================================================

def invalidate_credit_caches_on_commit(db: AsyncSession, tenant_id: str) -> None:
    """
    Queue a balance invalidation for when the session's transaction commits.

    A rollback drops the queue, leaving the cached snapshot as it was.
    """
    db.info.setdefault(PENDING_INVALIDATIONS_KEY, set()).add(tenant_id)


@event.listens_for(Session, "after_commit")
def _invalidate_after_commit(session: Session) -> None:
    tenant_ids = session.info.pop(PENDING_INVALIDATIONS_KEY, None)
    if not tenant_ids:
        return
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.warning(f"[CACHE] No event loop, balance caches for {sorted(tenant_ids)} expire by TTL")
        return
    for tenant_id in tenant_ids:
        task = loop.create_task(invalidate_credit_caches(tenant_id))
        _invalidation_tasks.add(task)
        task.add_done_callback(_invalidation_tasks.discard)


@event.listens_for(Session, "after_rollback")
def _discard_after_rollback(session: Session) -> None:
    session.info.pop(PENDING_INVALIDATIONS_KEY, None)
