from fastapi import APIRouter

from backoffice.app.llm.api.v1.admin_llm_provider import router as admin_llm_router
from backoffice.app.llm.api.v1.admin_report import router as admin_report_router
from backoffice.app.llm.api.v1.internal import router as internal_router
from backoffice.app.llm.api.v1.llm_provider import router as llm_router
from backoffice.core.conf import settings

v1 = APIRouter(prefix=settings.FASTAPI_API_V1_PATH)

v1.include_router(llm_router, prefix='/llm-providers', tags=['LLM Providers'])
v1.include_router(admin_llm_router, prefix='/admin/llm-providers', tags=['Admin LLM Providers'])
v1.include_router(admin_report_router, prefix='/admin/reports', tags=['Admin Reports'])
v1.include_router(internal_router, prefix='/internal/llm-providers', tags=['Internal'])
