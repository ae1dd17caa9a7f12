from fastapi import APIRouter, Request

from backoffice.app.llm.api.v1.llm_provider import OpenRouterKey, connection_result_response
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
from backoffice.common.security.jwt import CurrentUser
from backoffice.common.security.permission import DependsAdmin
from backoffice.database.db import CurrentSession, CurrentSessionTransaction

router = APIRouter(dependencies=[DependsAdmin])


@router.get('', summary='List global LLM providers', response_model=GetLlmProviderList)
async def get_global_providers(db: CurrentSession):
    return await llm_provider_service.get_list(db, None)


@router.get('/dashboard', summary='Global LLM spending dashboard', response_model=GetLlmDashboard)
async def get_global_dashboard(db: CurrentSession):
    return await llm_provider_service.get_dashboard(db, None)


@router.get('/openrouter/models', summary='List OpenRouter models', response_model=GetOpenRouterModels)
async def get_openrouter_models(api_key: OpenRouterKey = None):
    return await llm_provider_service.list_openrouter_models(api_key)


@router.post('', summary='Create a global LLM provider', response_model=GetLlmProviderDetail, status_code=201)
async def create_global_provider(
    db: CurrentSessionTransaction, request: Request, user: CurrentUser, obj: CreateLlmProviderParam
):
    return await llm_provider_service.create(db, None, obj, user=user, request=request)


@router.put('/{pk}', summary='Update a global LLM provider', response_model=GetLlmProviderDetail)
async def update_global_provider(
    db: CurrentSessionTransaction, request: Request, user: CurrentUser, pk: str, obj: UpdateLlmProviderParam
):
    return await llm_provider_service.update(db, None, pk, obj, user=user, request=request)


@router.delete('/{pk}', summary='Delete a global LLM provider')
async def delete_global_provider(db: CurrentSessionTransaction, request: Request, user: CurrentUser, pk: str):
    await llm_provider_service.delete(db, None, pk, user=user, request=request)
    return {'message': 'Provider deleted'}


@router.post('/{pk}/test', summary='Test global LLM provider connectivity', response_model=LlmProviderTestResult)
async def check_global_provider_connection(db: CurrentSessionTransaction, pk: str):
    return connection_result_response(await llm_provider_service.check_connection(db, None, pk))


@router.post('/{pk}/default', summary='Make the global default provider', response_model=GetLlmProviderDetail)
async def set_global_default(db: CurrentSessionTransaction, request: Request, user: CurrentUser, pk: str):
    return await llm_provider_service.set_default(db, None, pk, user=user, request=request)


@router.get('/{pk}/usage', summary='Global provider usage', response_model=GetLlmProviderUsage)
async def get_global_usage(db: CurrentSession, pk: str):
    return await llm_provider_service.get_usage(db, None, pk)
