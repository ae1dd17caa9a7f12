"""
Credit Calculator

Converts the USD cost of an LLM call into the BRL amount charged to the
tenant's credit ledger. Two markup modes are supported:

- percentage:   charge = cost_usd * rate * (1 + markup_value / 100)
- fixed_per_1k: charge = cost_usd * rate + total_tokens / 1000 * markup_value

Charges are rounded to four decimal places, half up.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from backoffice.common.enums import MarkupType
from backoffice.src.billing.shared.config import (
    BRL_QUANTUM,
    DEFAULT_BLOCK_ON_ZERO_BALANCE,
    DEFAULT_MARKUP_TYPE,
    DEFAULT_MARKUP_VALUE,
    DEFAULT_MIN_BALANCE_WARNING_BRL,
    DEFAULT_USD_TO_BRL_RATE,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreditPricing:
    """
    Snapshot of the credit_settings row.

    Kept separate from the ORM model so it can be cached in Redis and passed
    around without a session.
    """
    markup_type: str = DEFAULT_MARKUP_TYPE
    markup_value: Decimal = DEFAULT_MARKUP_VALUE
    usd_to_brl_rate: Decimal = DEFAULT_USD_TO_BRL_RATE
    min_balance_warning_brl: Decimal = DEFAULT_MIN_BALANCE_WARNING_BRL
    block_on_zero_balance: bool = DEFAULT_BLOCK_ON_ZERO_BALANCE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CreditPricing':
        return cls(
            markup_type=data.get('markup_type', DEFAULT_MARKUP_TYPE),
            markup_value=Decimal(str(data.get('markup_value', DEFAULT_MARKUP_VALUE))),
            usd_to_brl_rate=Decimal(str(data.get('usd_to_brl_rate', DEFAULT_USD_TO_BRL_RATE))),
            min_balance_warning_brl=Decimal(
                str(data.get('min_balance_warning_brl', DEFAULT_MIN_BALANCE_WARNING_BRL))
            ),
            block_on_zero_balance=bool(data.get('block_on_zero_balance', DEFAULT_BLOCK_ON_ZERO_BALANCE)),
        )

    @classmethod
    def from_model(cls, row: Any) -> 'CreditPricing':
        return cls(
            markup_type=row.markup_type,
            markup_value=Decimal(str(row.markup_value)),
            usd_to_brl_rate=Decimal(str(row.usd_to_brl_rate)),
            min_balance_warning_brl=Decimal(str(row.min_balance_warning_brl)),
            block_on_zero_balance=bool(row.block_on_zero_balance),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'markup_type': self.markup_type,
            'markup_value': str(self.markup_value),
            'usd_to_brl_rate': str(self.usd_to_brl_rate),
            'min_balance_warning_brl': str(self.min_balance_warning_brl),
            'block_on_zero_balance': self.block_on_zero_balance,
        }


@dataclass(frozen=True)
class ChargeBreakdown:
    """Result of a markup calculation, stored in the deduction metadata."""
    cost_usd: Decimal
    cost_brl: Decimal
    charge_brl: Decimal
    markup_type: str
    markup_value: Decimal
    usd_to_brl_rate: Decimal
    total_tokens: int

    def to_metadata(self) -> Dict[str, Any]:
        return {
            'cost_usd': float(self.cost_usd),
            'cost_brl': float(self.cost_brl),
            'charge_brl': float(self.charge_brl),
            'markup_type': self.markup_type,
            'markup_value': float(self.markup_value),
            'usd_to_brl_rate': float(self.usd_to_brl_rate),
            'total_tokens': self.total_tokens,
        }


class CreditCalculator:
    """
    Calculate the BRL charge for LLM usage.

    Usage:
        calculator = CreditCalculator(pricing)
        breakdown = calculator.calculate(cost_usd=Decimal('0.01'), total_tokens=1500)
        breakdown.charge_brl  # Decimal('0.0825')
    """

    def __init__(self, pricing: Optional[CreditPricing] = None):
        self.pricing = pricing or CreditPricing()

    def calculate(self, cost_usd: Decimal, total_tokens: int = 0) -> ChargeBreakdown:
        """
        Apply the currency rate and markup to a USD cost.

        Args:
            cost_usd: Raw provider cost in USD
            total_tokens: Input plus output tokens, used by fixed_per_1k

        Returns:
            ChargeBreakdown with charge_brl rounded to 4 places
        """
        pricing = self.pricing
        cost_usd = Decimal(str(cost_usd))
        cost_brl = cost_usd * pricing.usd_to_brl_rate

        if pricing.markup_type == MarkupType.fixed_per_1k:
            charge = cost_brl + (Decimal(total_tokens) / Decimal(1000)) * pricing.markup_value
        else:
            if pricing.markup_type != MarkupType.percentage:
                logger.warning(f"[CREDITS] Unknown markup type {pricing.markup_type!r}, using percentage")
            charge = cost_brl * (Decimal(1) + pricing.markup_value / Decimal(100))

        return ChargeBreakdown(
            cost_usd=cost_usd,
            cost_brl=cost_brl.quantize(BRL_QUANTUM, rounding=ROUND_HALF_UP),
            charge_brl=charge.quantize(BRL_QUANTUM, rounding=ROUND_HALF_UP),
            markup_type=pricing.markup_type,
            markup_value=pricing.markup_value,
            usd_to_brl_rate=pricing.usd_to_brl_rate,
            total_tokens=total_tokens,
        )


def calculate_chargeable_cost(cost_usd: Decimal, total_tokens: int, pricing: Optional[CreditPricing] = None) -> Decimal:
    """Shortcut returning only the BRL charge."""
    return CreditCalculator(pricing).calculate(cost_usd, total_tokens).charge_brl
