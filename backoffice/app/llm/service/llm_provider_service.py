"""LLM provider management.

Tenants and admins register provider credentials with an optional monthly
budget. tenant_id None addresses the global providers. Keys are stored as
Fernet tokens and only leave the service in plain text through the internal
default-provider lookup used by the orchestrator.
"""

from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import httpx

from cryptography.fernet import InvalidToken
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.llm.crud.crud_llm_provider import ai_usage_dao, llm_provider_dao
from backoffice.app.llm.model import LlmProvider
from backoffice.app.llm.schema.llm_provider import (
    CreateLlmProviderParam,
    DailySpending,
    GetInternalLlmProvider,
    GetLlmDashboard,
    GetLlmProviderDetail,
    GetLlmProviderList,
    GetLlmProviderUsage,
    GetOpenRouterModels,
    LlmBudgetAlert,
    LlmProviderTestResult,
    OpenRouterModel,
    OpenRouterPricing,
    UpdateLlmProviderParam,
)
from backoffice.app.log.service.execution_log_service import execution_log_service
from backoffice.app.tenant.model import User
from backoffice.common.exception import errors
from backoffice.common.log import log
from backoffice.common.security.encryption import mask_encrypted, secret_vault
from backoffice.core.conf import settings
from backoffice.src.billing.shared.config import (
    TOKENS_PER_MILLION,
    ProviderInfo,
    get_available_providers,
    get_provider,
)
from backoffice.src.billing.shared.exceptions import BudgetExhaustedError
from backoffice.utils.timezone import timezone

ZERO = Decimal('0')
DAILY_SPENDING_DAYS = 30
MASKED_KEY_PREFIX = '****'
TEST_PROMPT = 'Hi'
TEST_MAX_TOKENS = 10


def _round(value: Decimal, places: str = '0.01') -> float:
    return float(value.quantize(Decimal(places), rounding=ROUND_HALF_UP))


class ProviderSpending:
    """A provider with its spending for the current month."""

    def __init__(self, provider: LlmProvider, spent: Decimal, requests: int) -> None:
        self.provider = provider
        self.spent = spent
        self.requests = requests
        self.budget = Decimal(str(provider.monthly_budget_usd)) if provider.monthly_budget_usd is not None else None

    @property
    def remaining(self) -> Decimal | None:
        if self.budget is None:
            return None
        return max(ZERO, self.budget - self.spent)

    @property
    def usage_pct(self) -> float | None:
        if not self.budget:
            return None
        return _round(self.spent / self.budget * 100, '0.1')

    @property
    def is_budget_exhausted(self) -> bool:
        return self.remaining is not None and self.remaining <= ZERO

    @property
    def is_above_alert(self) -> bool:
        return self.usage_pct is not None and self.usage_pct >= self.provider.alert_threshold_pct

    def to_detail(self) -> GetLlmProviderDetail:
        provider = self.provider
        return GetLlmProviderDetail(
            id=provider.id,
            name=provider.name,
            provider_type=provider.provider_type,
            model=provider.model,
            api_key_masked=mask_encrypted(provider.api_key_encrypted),
            has_key=bool(provider.api_key_encrypted),
            budget=self.budget,
            spent_usd=_round(self.spent),
            remaining_usd=_round(self.remaining) if self.remaining is not None else None,
            usage_pct=self.usage_pct,
            alert_threshold_pct=provider.alert_threshold_pct,
            is_active=provider.is_active,
            is_default=provider.is_default,
            priority=provider.priority,
            total_requests_this_month=self.requests,
            is_budget_exhausted=self.is_budget_exhausted,
            is_above_alert=self.is_above_alert,
            last_validated_at=provider.last_validated_at,
            created_time=provider.created_time,
        )

    def alert(self) -> LlmBudgetAlert | None:
        if self.is_budget_exhausted:
            return LlmBudgetAlert(
                type='budget_exhausted',
                severity='critical',
                provider_id=self.provider.id,
                provider_name=self.provider.name,
                message=f'{self.provider.name} has exhausted its monthly budget',
                usage_pct=self.usage_pct,
            )
        if self.is_above_alert:
            return LlmBudgetAlert(
                type='threshold_warning',
                severity='warning',
                provider_id=self.provider.id,
                provider_name=self.provider.name,
                message=f'{self.provider.name} has used {self.usage_pct}% of its monthly budget',
                usage_pct=self.usage_pct,
            )
        return None


def build_test_request(info: ProviderInfo, model: str, api_key: str) -> dict[str, Any]:
    """Build the smallest completion request a provider accepts.

    Args:
        info: Provider catalog entry
        model: Model name
        api_key: Plain API key

    Returns:
        Keyword arguments for httpx.AsyncClient.post
    """
    messages = [{'role': 'user', 'content': TEST_PROMPT}]
    if info.key == 'anthropic':
        return {
            'url': info.test_url,
            'headers': {'x-api-key': api_key, 'anthropic-version': '2023-06-01'},
            'json': {'model': model, 'max_tokens': TEST_MAX_TOKENS, 'messages': messages},
        }
    if info.key == 'google':
        return {
            'url': info.test_url.format(model=model),
            'params': {'key': api_key},
            'json': {
                'contents': [{'parts': [{'text': TEST_PROMPT}]}],
                'generationConfig': {'maxOutputTokens': TEST_MAX_TOKENS},
            },
        }
    return {
        'url': info.test_url,
        'headers': {'Authorization': f'Bearer {api_key}'},
        'json': {'model': model, 'max_tokens': TEST_MAX_TOKENS, 'messages': messages},
    }


def error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f'HTTP {response.status_code}'
    error = body.get('error') if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get('message'):
        return error['message']
    if isinstance(body, dict) and body.get('message'):
        return body['message']
    return f'HTTP {response.status_code}'


def per_million(price: Any) -> float | None:
    """OpenRouter prices are USD per token, the catalog shows USD per 1M tokens."""
    if price in (None, ''):
        return None
    return float(Decimal(str(price)) * TOKENS_PER_MILLION)


def to_openrouter_model(raw: dict[str, Any]) -> OpenRouterModel:
    pricing = raw.get('pricing') or {}
    return OpenRouterModel(
        id=raw['id'],
        name=raw.get('name') or raw['id'],
        context_length=raw.get('context_length'),
        pricing=OpenRouterPricing(input=per_million(pricing.get('prompt')), output=per_million(pricing.get('completion'))),
        max_completion_tokens=(raw.get('top_provider') or {}).get('max_completion_tokens'),
    )


class LlmProviderService:
    """LLM provider operations, tenant_id None targets the global providers."""

    @staticmethod
    async def get_model(db: AsyncSession, pk: str, tenant_id: str | None) -> LlmProvider:
        provider = await llm_provider_dao.select_model(db, pk)
        if not provider or provider.tenant_id != tenant_id:
            raise errors.NotFoundError(msg='LLM provider not found')
        return provider

    @staticmethod
    async def get_spending(db: AsyncSession, provider: LlmProvider) -> ProviderSpending:
        spent, requests = await ai_usage_dao.get_totals(db, [provider.id], timezone.start_of_month())
        return ProviderSpending(provider, spent, requests)

    @staticmethod
    async def get_daily_spending(
        db: AsyncSession, provider_ids: list[str], days: int = DAILY_SPENDING_DAYS
    ) -> list[DailySpending]:
        """Daily spending for the last ``days`` days, zero-filled.

        Args:
            db: Database session
            provider_ids: Providers to include
            days: Length of the series ending today

        Returns:
            One entry per day, oldest first
        """
        start = timezone.start_of_day() - timedelta(days=days - 1)
        rows = {row.day: row for row in await ai_usage_dao.get_daily(db, provider_ids, start)}
        series = []
        for offset in range(days):
            day = (start + timedelta(days=offset)).date()
            row = rows.get(day)
            series.append(
                DailySpending(
                    date=day.isoformat(),
                    cost=_round(Decimal(str(row.cost)), '0.000001') if row else 0.0,
                    requests=row.requests if row else 0,
                )
            )
        return series

    async def get_list(self, db: AsyncSession, tenant_id: str | None) -> GetLlmProviderList:
        providers = await llm_provider_dao.get_list(db, tenant_id)
        return GetLlmProviderList(
            providers=[(await self.get_spending(db, p)).to_detail() for p in providers],
            available_providers=get_available_providers(),
        )

    async def get_dashboard(self, db: AsyncSession, tenant_id: str | None) -> GetLlmDashboard:
        """Budget totals, alerts and the daily series for a scope."""
        providers = await llm_provider_dao.get_list(db, tenant_id)
        spendings = [await self.get_spending(db, p) for p in providers]
        total_budget = sum((s.budget for s in spendings if s.budget is not None), ZERO)
        total_spent = sum((s.spent for s in spendings), ZERO)
        alerts = [alert for alert in (s.alert() for s in spendings) if alert is not None]
        return GetLlmDashboard(
            total_budget_usd=_round(total_budget),
            total_spent_usd=_round(total_spent),
            total_remaining_usd=_round(max(ZERO, total_budget - total_spent)),
            total_requests=sum(s.requests for s in spendings),
            total_providers=len(providers),
            active_providers=len([p for p in providers if p.is_active]),
            alerts=alerts,
            providers=[s.to_detail() for s in spendings],
            daily_spending=await self.get_daily_spending(db, [p.id for p in providers]),
        )

    @staticmethod
    def _validate_model(provider_type: str, model: str) -> None:
        info = get_provider(provider_type)
        if info is None:
            raise errors.UnprocessableError(msg=f'Unknown provider type: {provider_type}')
        if not info.accepts_model(model):
            raise errors.UnprocessableError(msg=f'Model {model} is not available for {info.name}')

    @staticmethod
    async def _ensure_unique_name(
        db: AsyncSession, tenant_id: str | None, name: str, exclude_id: str | None = None
    ) -> None:
        existing = await llm_provider_dao.get_by_name(db, tenant_id, name)
        if existing and existing.id != exclude_id:
            raise errors.UnprocessableError(msg=f'A provider named {name} already exists')

    async def create(
        self,
        db: AsyncSession,
        tenant_id: str | None,
        obj: CreateLlmProviderParam,
        *,
        user: User | None = None,
        request: Request | None = None,
    ) -> GetLlmProviderDetail:
        """Create a provider. The first provider of a scope becomes its default.

        Args:
            db: Database session
            tenant_id: Owning tenant, None for a global provider
            obj: Creation parameters
            user: Acting user for the audit entry
            request: Current request for the audit entry

        Returns:
            The provider with its spending
        """
        self._validate_model(obj.provider_type, obj.model)
        await self._ensure_unique_name(db, tenant_id, obj.name)

        is_default = obj.is_default or await llm_provider_dao.count(db, tenant_id) == 0
        if is_default:
            await llm_provider_dao.unset_default(db, tenant_id)

        provider = LlmProvider(
            name=obj.name,
            provider_type=obj.provider_type,
            model=obj.model,
            api_key_encrypted=secret_vault.encrypt(obj.api_key),
            tenant_id=tenant_id,
            is_default=is_default,
            is_active=obj.is_active,
            priority=obj.priority,
            monthly_budget_usd=obj.monthly_budget_usd,
            alert_threshold_pct=obj.alert_threshold_pct,
        )
        db.add(provider)
        await db.flush()

        await execution_log_service.audit(
            db,
            'llm_provider.created',
            {'provider_id': provider.id, 'name': provider.name, 'provider_type': provider.provider_type},
            tenant_id=tenant_id,
            user_id=user.id if user else None,
            request=request,
        )
        return (await self.get_spending(db, provider)).to_detail()

    async def update(
        self,
        db: AsyncSession,
        tenant_id: str | None,
        pk: str,
        obj: UpdateLlmProviderParam,
        *,
        user: User | None = None,
        request: Request | None = None,
    ) -> GetLlmProviderDetail:
        provider = await self.get_model(db, pk, tenant_id)
        changes = obj.model_dump(exclude_unset=True)
        api_key = changes.pop('api_key', None)

        provider_type = changes.get('provider_type', provider.provider_type)
        model = changes.get('model', provider.model)
        if 'provider_type' in changes or 'model' in changes:
            self._validate_model(provider_type, model)
        if changes.get('name') and changes['name'] != provider.name:
            await self._ensure_unique_name(db, tenant_id, changes['name'], exclude_id=provider.id)
        if changes.get('is_default'):
            await llm_provider_dao.unset_default(db, tenant_id, exclude_id=provider.id)

        for key, value in changes.items():
            setattr(provider, key, value)
        if api_key and not api_key.startswith(MASKED_KEY_PREFIX):
            provider.api_key_encrypted = secret_vault.encrypt(api_key)
            provider.last_validated_at = None
        await db.flush()

        await execution_log_service.audit(
            db,
            'llm_provider.updated',
            {'provider_id': provider.id, 'fields': sorted(changes) + (['api_key'] if api_key else [])},
            tenant_id=tenant_id,
            user_id=user.id if user else None,
            request=request,
        )
        return (await self.get_spending(db, provider)).to_detail()

    async def delete(
        self,
        db: AsyncSession,
        tenant_id: str | None,
        pk: str,
        *,
        user: User | None = None,
        request: Request | None = None,
    ) -> None:
        provider = await self.get_model(db, pk, tenant_id)
        if provider.is_default:
            raise errors.UnprocessableError(msg='The default provider cannot be deleted')
        await db.delete(provider)
        await db.flush()
        await execution_log_service.audit(
            db,
            'llm_provider.deleted',
            {'provider_id': pk, 'name': provider.name},
            tenant_id=tenant_id,
            user_id=user.id if user else None,
            request=request,
        )

    async def check_connection(self, db: AsyncSession, tenant_id: str | None, pk: str) -> LlmProviderTestResult:
        """Send a minimal completion request and record last_validated_at on success."""
        provider = await self.get_model(db, pk, tenant_id)
        info = get_provider(provider.provider_type)
        if info is None:
            return LlmProviderTestResult(success=False, message=f'Unknown provider type: {provider.provider_type}')
        try:
            api_key = secret_vault.decrypt(provider.api_key_encrypted)
        except InvalidToken:
            return LlmProviderTestResult(success=False, message='Stored API key cannot be decrypted')

        try:
            async with httpx.AsyncClient(timeout=settings.LLM_TEST_TIMEOUT_SECONDS) as client:
                response = await client.post(**build_test_request(info, provider.model, api_key))
        except httpx.HTTPError as e:
            log.warning(f'LLM provider {provider.id} test failed: {e}')
            return LlmProviderTestResult(success=False, message=f'Connection failed: {e}')

        if response.status_code >= 400:
            message = error_message(response)
            log.warning(f'LLM provider {provider.id} test rejected: {message}')
            return LlmProviderTestResult(success=False, message=message)

        provider.last_validated_at = timezone.now()
        await db.flush()
        return LlmProviderTestResult(success=True, message=f'Connected to {info.name}')

    async def set_default(
        self,
        db: AsyncSession,
        tenant_id: str | None,
        pk: str,
        *,
        user: User | None = None,
        request: Request | None = None,
    ) -> GetLlmProviderDetail:
        provider = await self.get_model(db, pk, tenant_id)
        if not provider.is_active:
            raise errors.UnprocessableError(msg='Only active providers can be the default')
        await llm_provider_dao.unset_default(db, tenant_id, exclude_id=provider.id)
        provider.is_default = True
        await db.flush()
        await execution_log_service.audit(
            db,
            'llm_provider.set_default',
            {'provider_id': provider.id, 'name': provider.name},
            tenant_id=tenant_id,
            user_id=user.id if user else None,
            request=request,
        )
        return (await self.get_spending(db, provider)).to_detail()

    async def get_usage(self, db: AsyncSession, tenant_id: str | None, pk: str) -> GetLlmProviderUsage:
        provider = await self.get_model(db, pk, tenant_id)
        return GetLlmProviderUsage(
            provider=(await self.get_spending(db, provider)).to_detail(),
            daily_spending=await self.get_daily_spending(db, [provider.id]),
        )

    @staticmethod
    async def list_openrouter_models(api_key: str | None = None) -> GetOpenRouterModels:
        """List the models OpenRouter currently serves, sorted by name.

        Args:
            api_key: Optional OpenRouter key, some models are only listed for authenticated callers

        Returns:
            The catalog with prices per 1M tokens

        Raises:
            UnprocessableError: OpenRouter rejected the request
            ServerError: OpenRouter could not be reached
        """
        info = get_provider('openrouter')
        headers = {'HTTP-Referer': settings.OPENROUTER_REFERER, 'X-Title': settings.OPENROUTER_TITLE}
        if api_key:
            headers['Authorization'] = f'Bearer {api_key}'
        try:
            async with httpx.AsyncClient(timeout=settings.LLM_TEST_TIMEOUT_SECONDS) as client:
                response = await client.get(info.models_url, headers=headers)
        except httpx.HTTPError as e:
            log.error(f'OpenRouter model catalog unreachable: {e}')
            raise errors.ServerError(msg=f'Failed to fetch OpenRouter models: {e}')

        if response.status_code >= 400:
            message = error_message(response)
            log.warning(f'OpenRouter model catalog rejected: {message}')
            raise errors.UnprocessableError(msg='Failed to fetch OpenRouter models', data={'details': message})

        models = sorted(
            (to_openrouter_model(raw) for raw in response.json().get('data') or [] if raw.get('id')),
            key=lambda model: model.name,
        )
        return GetOpenRouterModels(models=models, total=len(models))

    async def get_default_for_tenant(self, db: AsyncSession, tenant_id: str | None) -> GetInternalLlmProvider:
        """Pick the provider the orchestrator should call for a tenant.

        Fallback order: tenant default, tenant by priority, global default,
        global by priority. Only active providers qualify.

        Args:
            db: Database session
            tenant_id: Tenant asking, None for global providers only

        Returns:
            The provider with its plain API key

        Raises:
            NotFoundError: No active provider in any scope
            BudgetExhaustedError: The chosen provider spent its monthly budget
        """
        provider = None
        scopes = [tenant_id, None] if tenant_id else [None]
        for scope in scopes:
            provider = await llm_provider_dao.get_default_active(db, scope) or await llm_provider_dao.get_first_active(
                db, scope
            )
            if provider:
                break
        if provider is None:
            raise errors.NotFoundError(msg='No active LLM provider configured')

        spending = await self.get_spending(db, provider)
        if spending.is_budget_exhausted:
            log.warning(f'LLM provider {provider.id} budget exhausted for tenant {tenant_id}')
            raise BudgetExhaustedError(provider.id, float(spending.budget), _round(spending.spent))

        try:
            api_key = secret_vault.decrypt(provider.api_key_encrypted)
        except InvalidToken:
            raise errors.ServerError(msg='Stored API key cannot be decrypted')

        return GetInternalLlmProvider(
            id=provider.id,
            name=provider.name,
            provider_type=provider.provider_type,
            model=provider.model,
            api_key=api_key,
            budget=spending.budget,
            spent_usd=_round(spending.spent),
        )


llm_provider_service: LlmProviderService = LlmProviderService()
