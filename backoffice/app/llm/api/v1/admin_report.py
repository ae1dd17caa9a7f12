from datetime import date
from typing import Annotated

from fastapi import APIRouter, Query

from backoffice.app.llm.schema.ai_usage import GetAiUsageReport
from backoffice.app.llm.service.ai_usage_service import ai_usage_service
from backoffice.common.security.permission import DependsAdmin
from backoffice.database.db import CurrentSession

router = APIRouter(dependencies=[DependsAdmin])


@router.get('/ai-usage', summary='AI usage report', response_model=GetAiUsageReport)
async def get_ai_usage_report(
    db: CurrentSession,
    start_date: Annotated[date | None, Query(description='First day, defaults to the start of the month')] = None,
    end_date: Annotated[date | None, Query(description='Last day, defaults to today')] = None,
    tenant_id: Annotated[str | None, Query(description='Restrict to one tenant')] = None,
):
    return await ai_usage_service.get_report(db, start_date, end_date, tenant_id)
