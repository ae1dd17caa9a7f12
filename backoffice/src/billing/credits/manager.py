"""
Credit Manager

Core credit ledger operations for tenants:
- add_credits: purchases, manual grants, refunds and plan replenishment
- deduct_credits: charge LLM usage, plan credit first, then addon credit
- get_balance / get_snapshot: cached balance reads
- has_sufficient_balance: the gate checked before a tenant runs

All mutations lock the tenant_credits row with SELECT ... FOR UPDATE and keep
balance_brl == plan_balance_brl + addon_balance_brl. Methods flush but never
commit; the caller owns the transaction.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.credit.model import CreditTransaction, TenantCredit
from backoffice.app.tenant.model import Plan
from backoffice.common.enums import CreditSource, CreditTransactionType
from backoffice.core.conf import settings
from backoffice.database.db import uuid4_str
from backoffice.src.billing.credits.calculator import CreditCalculator, CreditPricing
from backoffice.src.billing.credits.settings import get_credit_pricing
from backoffice.src.billing.shared.cache_utils import (
    credit_balance_key,
    get_cached,
    invalidate_credit_caches_on_commit,
    set_cached,
)
from backoffice.src.billing.shared.config import BRL_QUANTUM, MINIMUM_CREDIT_BALANCE
from backoffice.src.billing.shared.exceptions import BillingError, InsufficientCreditsError
from backoffice.utils.timezone import timezone

logger = logging.getLogger(__name__)

ZERO = Decimal('0')

# Types that count towards total_purchased_brl
PURCHASED_TYPES = (CreditTransactionType.purchase, CreditTransactionType.manual_credit)


def _q(value: Any) -> Decimal:
    return Decimal(str(value)).quantize(BRL_QUANTUM, rounding=ROUND_HALF_UP)


def split_charge(plan_balance: Decimal, charge: Decimal) -> Tuple[Decimal, Decimal, str]:
    """
    Split a charge between the plan and addon pockets.

    Plan credit is consumed first; whatever it cannot cover comes from addon.
    A negative plan balance contributes nothing.

    Args:
        plan_balance: Current plan pocket
        charge: Positive amount to deduct

    Returns:
        (from_plan, from_addon, credit_source)
    """
    available_plan = max(plan_balance, ZERO)
    from_plan = min(available_plan, charge)
    from_addon = charge - from_plan

    if from_addon <= ZERO:
        source = CreditSource.plan
    elif from_plan > ZERO:
        source = CreditSource.plan_addon
    else:
        source = CreditSource.addon

    return from_plan, from_addon, source.value


class CreditManager:
    """
    Manages the tenant credit ledger.

    Usage:
        from backoffice.src.billing.credits.manager import credit_manager

        await credit_manager.add_credits(db, tenant_id, Decimal('50'), CreditTransactionType.purchase, 'Pacote 50')
        await credit_manager.deduct_credits(db, tenant_id, cost_usd=Decimal('0.01'), total_tokens=1500, model='gpt-4o')
    """

    # =========================================================================
    # LOCKING
    # =========================================================================

    async def _lock_account(self, db: AsyncSession, tenant_id: str) -> TenantCredit:
        """Lock the tenant's ledger row, creating it first when missing."""
        stmt = select(TenantCredit).where(TenantCredit.tenant_id == tenant_id).with_for_update()
        credit = (await db.execute(stmt)).scalars().first()
        if credit is not None:
            return credit

        await db.execute(
            pg_insert(TenantCredit)
            .values(id=uuid4_str(), tenant_id=tenant_id, created_time=timezone.now())
            .on_conflict_do_nothing(index_elements=['tenant_id'])
        )
        credit = (await db.execute(stmt)).scalars().first()
        if credit is None:
            raise BillingError(f"Could not create credit account for {tenant_id}", code="CREDIT_ACCOUNT_FAILED")

        logger.info(f"[CREDITS] Created credit account for tenant {tenant_id}")
        return credit

    async def get_or_create(self, db: AsyncSession, tenant_id: str) -> TenantCredit:
        """Return the tenant's ledger row without locking, creating a zeroed one if needed."""
        result = await db.execute(select(TenantCredit).where(TenantCredit.tenant_id == tenant_id))
        credit = result.scalars().first()
        if credit is None:
            credit = await self._lock_account(db, tenant_id)
        return credit

    # =========================================================================
    # ADD
    # =========================================================================

    async def add_credits(
        self,
        db: AsyncSession,
        tenant_id: str,
        amount: Decimal,
        credit_type: str,
        description: str,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CreditTransaction:
        """
        Add credits to a tenant.

        plan_replenishment replaces the plan pocket (unused plan credit does
        not roll over). Every other type adds to the addon pocket; refunds
        carry a negative amount.

        Args:
            db: Database session
            tenant_id: Tenant to credit
            amount: Amount in BRL
            credit_type: One of CreditTransactionType
            description: Human-readable description
            reference_type: What the transaction refers to (e.g. asaas_payment)
            reference_id: Id of the referenced object
            metadata: Extra data stored on the transaction

        Returns:
            The created CreditTransaction
        """
        amount = _q(amount)
        if credit_type not in CreditTransactionType.get_member_values():
            raise ValueError(f"Unknown credit transaction type: {credit_type}")
        if amount <= ZERO and credit_type != CreditTransactionType.refund:
            raise ValueError("Amount must be positive")

        logger.info(f"[CREDITS] Adding R${amount} ({credit_type}) to tenant {tenant_id}")

        try:
            credit = await self._lock_account(db, tenant_id)

            if credit_type == CreditTransactionType.plan_replenishment:
                credit.plan_balance_brl = amount
                credit.plan_credits_granted_brl = amount
                credit.plan_credits_reset_at = timezone.now()
                source = CreditSource.plan.value
            else:
                credit.addon_balance_brl = _q(credit.addon_balance_brl) + amount
                source = CreditSource.addon.value

            if credit_type in PURCHASED_TYPES:
                credit.total_purchased_brl = _q(credit.total_purchased_brl) + amount

            credit.balance_brl = _q(credit.plan_balance_brl) + _q(credit.addon_balance_brl)

            transaction = CreditTransaction(
                tenant_id=tenant_id,
                type=credit_type,
                amount_brl=amount,
                balance_after_brl=credit.balance_brl,
                description=description,
                reference_type=reference_type,
                reference_id=reference_id,
                extra=metadata or {},
                credit_source=source,
            )
            db.add(transaction)
            await db.flush()

            invalidate_credit_caches_on_commit(db, tenant_id)

            logger.info(f"[CREDITS] ✅ Added R${amount} to tenant {tenant_id}. New balance: R${credit.balance_brl}")
            return transaction

        except BillingError:
            raise
        except Exception as e:
            logger.error(f"[CREDITS] Error adding credits to tenant {tenant_id}: {e}", exc_info=True)
            raise BillingError(
                message=f"Failed to add credits: {str(e)}",
                code="CREDIT_ADD_FAILED",
                details={'tenant_id': tenant_id, 'amount': float(amount)}
            )

    # =========================================================================
    # DEDUCT
    # =========================================================================

    async def deduct_credits(
        self,
        db: AsyncSession,
        tenant_id: str,
        cost_usd: Decimal,
        total_tokens: int = 0,
        model: Optional[str] = None,
        reference_id: Optional[str] = None,
        allow_negative: bool = True,
        pricing: Optional[CreditPricing] = None,
    ) -> Optional[CreditTransaction]:
        """
        Charge LLM usage to a tenant.

        The USD cost is converted and marked up, then taken from the plan
        pocket first and the addon pocket for the remainder. Usage is charged
        after the fact, so by default the addon pocket may go negative.

        Args:
            db: Database session
            tenant_id: Tenant to charge
            cost_usd: Raw provider cost in USD
            total_tokens: Input plus output tokens
            model: Model name, recorded in the metadata
            reference_id: AI decision id
            allow_negative: When False, refuse charges larger than the balance
            pricing: Pricing snapshot, loaded from credit settings when omitted

        Returns:
            The deduction CreditTransaction, or None when the charge is zero

        Raises:
            InsufficientCreditsError: allow_negative is False and the balance is short
        """
        if pricing is None:
            pricing = await get_credit_pricing(db)

        breakdown = CreditCalculator(pricing).calculate(Decimal(str(cost_usd)), total_tokens)
        charge = breakdown.charge_brl

        if charge <= ZERO:
            logger.debug(f"[CREDITS] Zero charge for tenant {tenant_id}, skipping")
            return None

        logger.debug(f"[CREDITS] Deducting R${charge} from tenant {tenant_id}")

        try:
            credit = await self._lock_account(db, tenant_id)

            plan_balance = _q(credit.plan_balance_brl)
            addon_balance = _q(credit.addon_balance_brl)

            if not allow_negative and plan_balance + addon_balance < charge:
                raise InsufficientCreditsError(
                    required=float(charge),
                    available=float(plan_balance + addon_balance)
                )

            from_plan, from_addon, source = split_charge(plan_balance, charge)

            credit.plan_balance_brl = plan_balance - from_plan
            credit.addon_balance_brl = addon_balance - from_addon
            credit.balance_brl = _q(credit.plan_balance_brl) + _q(credit.addon_balance_brl)
            credit.total_consumed_brl = _q(credit.total_consumed_brl) + charge

            metadata = breakdown.to_metadata()
            metadata.update({
                'model': model,
                'credit_source': source,
                'plan_deducted': float(from_plan),
                'addon_deducted': float(from_addon),
            })

            transaction = CreditTransaction(
                tenant_id=tenant_id,
                type=CreditTransactionType.deduction.value,
                amount_brl=-charge,
                balance_after_brl=credit.balance_brl,
                description=f"AI usage: {model or 'unknown'} ({total_tokens} tokens)",
                reference_type='ai_decision' if reference_id else None,
                reference_id=reference_id,
                extra=metadata,
                credit_source=source,
            )
            db.add(transaction)
            await db.flush()

            invalidate_credit_caches_on_commit(db, tenant_id)

            self._log_balance_level(tenant_id, credit.balance_brl, pricing)

            logger.debug(
                f"[CREDITS] ✅ Deducted R${charge} from tenant {tenant_id} "
                f"(plan={from_plan}, addon={from_addon}). Balance: R${credit.balance_brl}"
            )
            return transaction

        except BillingError:
            raise
        except Exception as e:
            logger.error(f"[CREDITS] Error deducting credits from tenant {tenant_id}: {e}", exc_info=True)
            raise BillingError(
                message=f"Failed to deduct credits: {str(e)}",
                code="CREDIT_DEDUCT_FAILED",
                details={'tenant_id': tenant_id, 'charge_brl': float(charge)}
            )

    def _log_balance_level(self, tenant_id: str, balance: Decimal, pricing: CreditPricing) -> None:
        if balance <= ZERO:
            logger.error(f"[CREDITS] Tenant {tenant_id} credit balance exhausted: R${balance}")
        elif balance <= pricing.min_balance_warning_brl:
            logger.warning(f"[CREDITS] Tenant {tenant_id} credit balance low: R${balance}")

    # =========================================================================
    # PLAN REPLENISHMENT
    # =========================================================================

    async def replenish_plan_credits(
        self,
        db: AsyncSession,
        tenant_id: str,
        plan: Plan,
    ) -> Optional[CreditTransaction]:
        """
        Reset the plan pocket to the plan's included credits.

        Returns None for plans without included credits.
        """
        included = _q(plan.included_credits_brl or 0)
        if included <= ZERO:
            return None

        return await self.add_credits(
            db,
            tenant_id,
            included,
            CreditTransactionType.plan_replenishment.value,
            f"Plan credits: {plan.name}",
            reference_type='plan',
            reference_id=plan.id,
        )

    # =========================================================================
    # READS
    # =========================================================================

    async def get_snapshot(self, db: AsyncSession, tenant_id: str, use_cache: bool = True) -> Dict[str, Any]:
        """
        Get a balance snapshot for a tenant.

        Returns:
            Dict of Decimal amounts plus plan_credits_reset_at (ISO string or None)
        """
        cache_key = credit_balance_key(tenant_id)
        if use_cache:
            cached = await get_cached(cache_key)
            if cached:
                return self._decode_snapshot(cached)

        credit = await self.get_or_create(db, tenant_id)
        snapshot = {
            'tenant_id': tenant_id,
            'balance_brl': _q(credit.balance_brl),
            'plan_balance_brl': _q(credit.plan_balance_brl),
            'addon_balance_brl': _q(credit.addon_balance_brl),
            'plan_credits_granted_brl': _q(credit.plan_credits_granted_brl),
            'total_purchased_brl': _q(credit.total_purchased_brl),
            'total_consumed_brl': _q(credit.total_consumed_brl),
            'plan_credits_reset_at': (
                credit.plan_credits_reset_at.isoformat() if credit.plan_credits_reset_at else None
            ),
        }

        if use_cache:
            await set_cached(cache_key, snapshot, settings.CREDIT_BALANCE_CACHE_SECONDS)

        return snapshot

    @staticmethod
    def _decode_snapshot(data: Dict[str, Any]) -> Dict[str, Any]:
        decoded = dict(data)
        for key, value in data.items():
            if key.endswith('_brl') and value is not None:
                decoded[key] = Decimal(str(value))
        return decoded

    async def get_balance(self, db: AsyncSession, tenant_id: str, use_cache: bool = True) -> Decimal:
        """Total balance (plan + addon)."""
        snapshot = await self.get_snapshot(db, tenant_id, use_cache=use_cache)
        return snapshot['plan_balance_brl'] + snapshot['addon_balance_brl']

    async def has_sufficient_balance(
        self,
        db: AsyncSession,
        tenant_id: str,
        minimum: Decimal = MINIMUM_CREDIT_BALANCE,
    ) -> bool:
        """
        Whether the tenant may keep consuming credits.

        Always True when block_on_zero_balance is disabled.
        """
        pricing = await get_credit_pricing(db)
        if not pricing.block_on_zero_balance:
            return True

        balance = await self.get_balance(db, tenant_id)
        return balance >= Decimal(str(minimum))


credit_manager = CreditManager()
