from typing import Annotated

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from backoffice.app.llm.schema.llm_provider import (
    CreateLlmProviderParam,
    GetLlmDashboard,
    GetLlmProviderDetail,
    GetLlmProviderList,
    GetLlmProviderUsage,
    GetOpenRouterModels,
    LlmProviderTestResult,
    UpdateLlmProviderParam,
)
from backoffice.app.llm.service.llm_provider_service import llm_provider_service
from backoffice.app.tenant.service.tenant_service import tenant_service
from backoffice.common.security.jwt import CurrentUser
from backoffice.common.security.permission import DependsTenantBilling
from backoffice.database.db import CurrentSession, CurrentSessionTransaction

router = APIRouter(dependencies=[DependsTenantBilling])

OpenRouterKey = Annotated[str | None, Header(alias='X-OpenRouter-Key', description='Optional OpenRouter API key')]


def connection_result_response(result: LlmProviderTestResult) -> LlmProviderTestResult | JSONResponse:
    if result.success:
        return result
    return JSONResponse(status_code=422, content=result.model_dump())


@router.get('', summary='List tenant LLM providers', response_model=GetLlmProviderList)
async def get_providers(db: CurrentSession, user: CurrentUser):
    tenant = await tenant_service.get_for_user(db, user)
    return await llm_provider_service.get_list(db, tenant.id)


@router.get('/dashboard', summary='LLM spending dashboard', response_model=GetLlmDashboard)
async def get_dashboard(db: CurrentSession, user: CurrentUser):
    tenant = await tenant_service.get_for_user(db, user)
    return await llm_provider_service.get_dashboard(db, tenant.id)


@router.get('/openrouter/models', summary='List OpenRouter models', response_model=GetOpenRouterModels)
async def get_openrouter_models(api_key: OpenRouterKey = None):
    return await llm_provider_service.list_openrouter_models(api_key)


@router.post('', summary='Create an LLM provider', response_model=GetLlmProviderDetail, status_code=201)
async def create_provider(
    db: CurrentSessionTransaction, request: Request, user: CurrentUser, obj: CreateLlmProviderParam
):
    tenant = await tenant_service.get_for_user(db, user)
    return await llm_provider_service.create(db, tenant.id, obj, user=user, request=request)


@router.put('/{pk}', summary='Update an LLM provider', response_model=GetLlmProviderDetail)
async def update_provider(
    db: CurrentSessionTransaction, request: Request, user: CurrentUser, pk: str, obj: UpdateLlmProviderParam
):
    tenant = await tenant_service.get_for_user(db, user)
    return await llm_provider_service.update(db, tenant.id, pk, obj, user=user, request=request)


@router.delete('/{pk}', summary='Delete an LLM provider')
async def delete_provider(db: CurrentSessionTransaction, request: Request, user: CurrentUser, pk: str):
    tenant = await tenant_service.get_for_user(db, user)
    await llm_provider_service.delete(db, tenant.id, pk, user=user, request=request)
    return {'message': 'Provider deleted'}


@router.post('/{pk}/test', summary='Test LLM provider connectivity', response_model=LlmProviderTestResult)
async def check_provider_connection(db: CurrentSessionTransaction, user: CurrentUser, pk: str):
    tenant = await tenant_service.get_for_user(db, user)
    return connection_result_response(await llm_provider_service.check_connection(db, tenant.id, pk))


@router.post('/{pk}/default', summary='Make the default provider', response_model=GetLlmProviderDetail)
async def set_default_provider(db: CurrentSessionTransaction, request: Request, user: CurrentUser, pk: str):
    tenant = await tenant_service.get_for_user(db, user)
    return await llm_provider_service.set_default(db, tenant.id, pk, user=user, request=request)


@router.get('/{pk}/usage', summary='Provider usage', response_model=GetLlmProviderUsage)
async def get_provider_usage(db: CurrentSession, user: CurrentUser, pk: str):
    tenant = await tenant_service.get_for_user(db, user)
    return await llm_provider_service.get_usage(db, tenant.id, pk)
