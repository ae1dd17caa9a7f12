from typing import Annotated

from fastapi import APIRouter, Depends, Query

from backoffice.app.log.schema.execution_log import GetExecutionLogDetail
from backoffice.app.log.service.execution_log_service import execution_log_service
from backoffice.common.pagination import PageData, PageParams, page_data, page_params
from backoffice.common.security.permission import DependsAdmin
from backoffice.database.db import CurrentSession

router = APIRouter()


@router.get(
    '',
    summary='Paginated execution logs',
    response_model=PageData[GetExecutionLogDetail],
    dependencies=[DependsAdmin],
)
async def get_execution_logs(
    db: CurrentSession,
    params: Annotated[PageParams, Depends(page_params)],
    log_type: Annotated[str | None, Query(description='audit, webhook, credit, billing, system')] = None,
    severity: Annotated[str | None, Query(description='debug, info, warning, error, critical')] = None,
    tenant_id: Annotated[str | None, Query(description='Tenant ID')] = None,
    action: Annotated[str | None, Query(description='Action contains')] = None,
):
    items, total = await execution_log_service.get_list(
        db, params, log_type=log_type, severity=severity, tenant_id=tenant_id, action=action
    )
    return page_data([GetExecutionLogDetail.model_validate(item) for item in items], total, params)
