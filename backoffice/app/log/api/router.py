from fastapi import APIRouter

from backoffice.app.log.api.v1.execution_log import router as execution_log_router
from backoffice.core.conf import settings

v1 = APIRouter(prefix=f'{settings.FASTAPI_API_V1_PATH}/admin')

v1.include_router(execution_log_router, prefix='/execution-logs', tags=['Execution Logs'])
