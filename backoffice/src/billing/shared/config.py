"""
Billing Configuration

This module defines the credit constants, the LLM provider catalog with
per-million-token pricing, and the schedule constants used by the billing jobs.

Usage:
    from backoffice.src.billing.shared.config import PROVIDERS, estimate_cost_usd

    estimate_cost_usd('gpt-4o', input_tokens=1000, output_tokens=500)
    # Decimal('0.007500')
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Tuple


# =============================================================================
# CREDIT CONSTANTS
# =============================================================================
# BRL ledger precision (4 decimal places)
BRL_QUANTUM: Decimal = Decimal('0.0001')

# USD cost precision (6 decimal places)
USD_QUANTUM: Decimal = Decimal('0.000001')

# Minimum balance for a tenant to be allowed to run
MINIMUM_CREDIT_BALANCE: Decimal = Decimal('0.01')

# Minimum amount accepted for purchases and manual grants
MINIMUM_CREDIT_AMOUNT: Decimal = Decimal('0.01')

# Defaults for the credit_settings singleton row
DEFAULT_MARKUP_TYPE: str = 'percentage'
DEFAULT_MARKUP_VALUE: Decimal = Decimal('50')
DEFAULT_USD_TO_BRL_RATE: Decimal = Decimal('5.50')
DEFAULT_MIN_BALANCE_WARNING_BRL: Decimal = Decimal('1.00')
DEFAULT_BLOCK_ON_ZERO_BALANCE: bool = True

# Prefix that routes an Asaas payment to the credit purchase flow
CREDIT_PURCHASE_REFERENCE_PREFIX: str = 'credit_'

# Billing types accepted for credit purchases
CREDIT_PURCHASE_BILLING_TYPES: Tuple[str, ...] = ('PIX', 'BOLETO', 'CREDIT_CARD')

# Number of transactions embedded in the balance response
RECENT_TRANSACTIONS_LIMIT: int = 10


# =============================================================================
# INVOICE REMINDERS
# =============================================================================
# Ordered from furthest to closest; the first unsent threshold that matches wins
REMINDER_THRESHOLDS: Dict[str, int] = {
    '10_days': 10,
    '5_days': 5,
    '2_days': 2,
    'due_today': 0,
}


# =============================================================================
# PLAN LIMITS
# =============================================================================
UNLIMITED: int = -1

# Limits surfaced on the subscription page
SUBSCRIPTION_LIMIT_KEYS: Tuple[str, ...] = ('users', 'whatsapp_connections', 'messages_monthly')


# =============================================================================
# LLM PROVIDER CATALOG
# =============================================================================
@dataclass
class ProviderInfo:
    """
    A supported LLM provider type.

    Attributes:
        key: Identifier stored in llm_providers.provider_type
        name: Display name
        models: Models accepted for this provider
        dynamic_models: Models are fetched from the provider, any name is accepted
        test_url: Endpoint used for the connectivity check
        models_url: Catalog endpoint for providers with dynamic models
    """
    key: str
    name: str
    models: List[str] = field(default_factory=list)
    dynamic_models: bool = False
    test_url: str = ''
    models_url: str = ''

    def accepts_model(self, model: str) -> bool:
        return self.dynamic_models or model in self.models

    def to_dict(self) -> Dict:
        return {
            'name': self.name,
            'models': list(self.models),
            'dynamic_models': self.dynamic_models,
        }


PROVIDERS: Dict[str, ProviderInfo] = {
    'anthropic': ProviderInfo(
        key='anthropic',
        name='Claude (Anthropic)',
        models=['claude-sonnet-4-20250514', 'claude-opus-4-20250514', 'claude-haiku-3-20250314'],
        test_url='https://api.anthropic.com/v1/messages',
    ),
    'openai': ProviderInfo(
        key='openai',
        name='ChatGPT (OpenAI)',
        models=['gpt-4o', 'gpt-4o-mini', 'gpt-4-turbo'],
        test_url='https://api.openai.com/v1/chat/completions',
    ),
    'groq': ProviderInfo(
        key='groq',
        name='Groq',
        models=['llama-3.1-70b-versatile', 'mixtral-8x7b-32768'],
        test_url='https://api.groq.com/openai/v1/chat/completions',
    ),
    'mistral': ProviderInfo(
        key='mistral',
        name='Mistral',
        models=['mistral-large-latest', 'mistral-small-latest'],
        test_url='https://api.mistral.ai/v1/chat/completions',
    ),
    'cohere': ProviderInfo(
        key='cohere',
        name='Cohere',
        models=['command-r-plus', 'command-r'],
        test_url='https://api.cohere.com/v2/chat',
    ),
    'google': ProviderInfo(
        key='google',
        name='Gemini (Google)',
        models=['gemini-2.0-flash', 'gemini-1.5-pro'],
        test_url='https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent',
    ),
    'openrouter': ProviderInfo(
        key='openrouter',
        name='OpenRouter',
        dynamic_models=True,
        test_url='https://openrouter.ai/api/v1/chat/completions',
        models_url='https://openrouter.ai/api/v1/models',
    ),
}


# USD per 1M tokens: (input, output)
PRICING: Dict[str, Tuple[Decimal, Decimal]] = {
    'claude-sonnet-4-20250514': (Decimal('3'), Decimal('15')),
    'claude-opus-4-20250514': (Decimal('15'), Decimal('75')),
    'claude-haiku-3-20250314': (Decimal('0.25'), Decimal('1.25')),
    'gpt-4o': (Decimal('2.50'), Decimal('10')),
    'gpt-4o-mini': (Decimal('0.15'), Decimal('0.60')),
    'gpt-4-turbo': (Decimal('10'), Decimal('30')),
    'llama-3.1-70b-versatile': (Decimal('0.59'), Decimal('0.79')),
    'mixtral-8x7b-32768': (Decimal('0.24'), Decimal('0.24')),
    'mistral-large-latest': (Decimal('2'), Decimal('6')),
    'mistral-small-latest': (Decimal('0.20'), Decimal('0.60')),
    'command-r-plus': (Decimal('2.50'), Decimal('10')),
    'command-r': (Decimal('0.15'), Decimal('0.60')),
    'gemini-2.0-flash': (Decimal('0.10'), Decimal('0.40')),
    'gemini-1.5-pro': (Decimal('1.25'), Decimal('5')),
}

TOKENS_PER_MILLION: Decimal = Decimal('1000000')


def get_provider(provider_type: str) -> Optional[ProviderInfo]:
    """Get provider catalog entry by type."""
    return PROVIDERS.get(provider_type)


def get_available_providers() -> Dict[str, Dict]:
    """Catalog as returned by the provider listing endpoints."""
    return {key: info.to_dict() for key, info in PROVIDERS.items()}


def estimate_cost_usd(model: str, input_tokens: int, output_tokens: int) -> Decimal:
    """
    Estimate the USD cost of a call from the pricing table.

    Args:
        model: Model name
        input_tokens: Prompt tokens
        output_tokens: Completion tokens

    Returns:
        Cost in USD, Decimal('0') for models not in the pricing table
    """
    pricing = PRICING.get(model)
    if pricing is None:
        return Decimal('0')

    input_price, output_price = pricing
    cost = (Decimal(input_tokens) * input_price + Decimal(output_tokens) * output_price) / TOKENS_PER_MILLION
    return cost.quantize(USD_QUANTUM)
