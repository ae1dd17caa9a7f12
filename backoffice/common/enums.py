from enum import Enum
from typing import Any


class _EnumBase:
    """Enum helpers"""

    @classmethod
    def get_member_keys(cls) -> list[str]:
        """Member names"""
        return list(cls.__members__.keys())  # type: ignore[attr-defined]

    @classmethod
    def get_member_values(cls) -> list[Any]:
        """Member values"""
        return [item.value for item in cls.__members__.values()]  # type: ignore[attr-defined]


class StrEnum(_EnumBase, str, Enum):
    """String enum"""


class TenantStatus(StrEnum):
    active = 'active'
    suspended = 'suspended'
    cancelled = 'cancelled'
    trial = 'trial'


class UserRole(StrEnum):
    admin = 'admin'
    owner = 'owner'
    agent = 'agent'


class PaymentProvider(StrEnum):
    asaas = 'asaas'
    stripe = 'stripe'


class SubscriptionStatus(StrEnum):
    active = 'active'
    past_due = 'past_due'
    cancelled = 'cancelled'
    trial = 'trial'
    paused = 'paused'


class InvoiceStatus(StrEnum):
    pending = 'pending'
    paid = 'paid'
    failed = 'failed'
    refunded = 'refunded'
    cancelled = 'cancelled'


class CreditTransactionType(StrEnum):
    purchase = 'purchase'
    deduction = 'deduction'
    manual_credit = 'manual_credit'
    refund = 'refund'
    plan_replenishment = 'plan_replenishment'


class CreditSource(StrEnum):
    plan = 'plan'
    addon = 'addon'
    plan_addon = 'plan+addon'


class MarkupType(StrEnum):
    percentage = 'percentage'
    fixed_per_1k = 'fixed_per_1k'


class BillingType(StrEnum):
    """Asaas charge billing types"""

    pix = 'PIX'
    boleto = 'BOLETO'
    credit_card = 'CREDIT_CARD'
    undefined = 'UNDEFINED'


class PurchaseStatus(StrEnum):
    pending = 'pending'
    completed = 'completed'
    failed = 'failed'
    refunded = 'refunded'


class LogSeverity(StrEnum):
    debug = 'debug'
    info = 'info'
    warning = 'warning'
    error = 'error'
    critical = 'critical'


class LogType(StrEnum):
    audit = 'audit'
    webhook = 'webhook'
    credit = 'credit'
    billing = 'billing'
    system = 'system'
