"""
Credit Settings

Loads the credit_settings singleton row as a CreditPricing snapshot. The
snapshot is cached in Redis for CREDIT_SETTINGS_CACHE_SECONDS; admin updates
call clear_cache().
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.credit.model import CreditSetting
from backoffice.core.conf import settings
from backoffice.src.billing.credits.calculator import CreditPricing
from backoffice.src.billing.shared.cache_utils import (
    credit_settings_key,
    get_cached,
    invalidate_credit_settings_cache,
    set_cached,
)

logger = logging.getLogger(__name__)


async def get_or_create_setting_row(db: AsyncSession) -> CreditSetting:
    """Return the settings row, inserting the defaults on first use."""
    result = await db.execute(select(CreditSetting).limit(1))
    row = result.scalars().first()
    if row is None:
        row = CreditSetting()
        db.add(row)
        await db.flush()
        logger.info("[CREDITS] Created default credit settings")
    return row


async def get_credit_pricing(db: AsyncSession, use_cache: bool = True) -> CreditPricing:
    """
    Get the current credit pricing.

    Args:
        db: Database session
        use_cache: Read through the Redis cache

    Returns:
        CreditPricing snapshot
    """
    if use_cache:
        cached = await get_cached(credit_settings_key())
        if cached:
            return CreditPricing.from_dict(cached)

    row = await get_or_create_setting_row(db)
    pricing = CreditPricing.from_model(row)

    if use_cache:
        await set_cached(credit_settings_key(), pricing.to_dict(), settings.CREDIT_SETTINGS_CACHE_SECONDS)

    return pricing


async def clear_cache() -> None:
    await invalidate_credit_settings_cache()
