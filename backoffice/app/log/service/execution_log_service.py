from typing import Any

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.log.crud.crud_execution_log import execution_log_dao
from backoffice.app.log.model import ExecutionLog
from backoffice.common.enums import LogSeverity, LogType
from backoffice.common.log import log
from backoffice.common.pagination import PageParams, paginate


class ExecutionLogService:
    """Writes and lists business execution logs"""

    @staticmethod
    async def log(
        db: AsyncSession,
        *,
        log_type: str,
        source: str,
        action: str,
        details: dict[str, Any] | None = None,
        severity: str = LogSeverity.info,
        tenant_id: str | None = None,
        user_id: str | None = None,
        request: Request | None = None,
        correlation_id: str | None = None,
    ) -> ExecutionLog:
        """Write one execution log row.

        Args:
            db: Database session.
            log_type: Log category such as ``audit`` or ``billing``.
            source: Component that produced the entry.
            action: Dotted action name.
            details: Structured payload.
            severity: Log severity.
            tenant_id: Tenant the entry belongs to.
            user_id: Acting user.
            request: Current request, source of the IP, User-Agent and X-Request-ID.
            correlation_id: Explicit correlation id, wins over the request header.

        Returns:
            The flushed log row.
        """
        ip_address = user_agent = None
        if request is not None:
            ip_address = request.client.host if request.client else None
            user_agent = (request.headers.get('user-agent') or '')[:500] or None
            correlation_id = correlation_id or request.headers.get('X-Request-ID')

        entry = ExecutionLog(
            log_type=str(log_type),
            source=source,
            action=action,
            details=details or {},
            severity=str(severity),
            tenant_id=tenant_id,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            correlation_id=correlation_id,
        )
        db.add(entry)
        await db.flush()

        if severity in (LogSeverity.warning, LogSeverity.error, LogSeverity.critical):
            log.warning(f'[{log_type}] {source}.{action} ({severity}): {details}')
        return entry

    async def audit(
        self,
        db: AsyncSession,
        action: str,
        details: dict[str, Any] | None = None,
        *,
        tenant_id: str | None = None,
        user_id: str | None = None,
        request: Request | None = None,
    ) -> ExecutionLog:
        return await self.log(
            db,
            log_type=LogType.audit,
            source='api',
            action=action,
            details=details,
            tenant_id=tenant_id,
            user_id=user_id,
            request=request,
        )

    async def webhook(
        self,
        db: AsyncSession,
        provider: str,
        action: str,
        details: dict[str, Any] | None = None,
        *,
        severity: str = LogSeverity.info,
        tenant_id: str | None = None,
    ) -> ExecutionLog:
        return await self.log(
            db,
            log_type=LogType.webhook,
            source=provider,
            action=action,
            details=details,
            severity=severity,
            tenant_id=tenant_id,
        )

    async def credit(
        self,
        db: AsyncSession,
        action: str,
        details: dict[str, Any] | None = None,
        *,
        tenant_id: str | None = None,
        severity: str = LogSeverity.info,
    ) -> ExecutionLog:
        return await self.log(
            db,
            log_type=LogType.credit,
            source='credits',
            action=action,
            details=details,
            severity=severity,
            tenant_id=tenant_id,
        )

    async def info(self, db: AsyncSession, source: str, action: str, details: dict[str, Any] | None = None, **kwargs) -> ExecutionLog:
        return await self.log(db, log_type=LogType.system, source=source, action=action, details=details, **kwargs)

    async def warning(
        self, db: AsyncSession, source: str, action: str, details: dict[str, Any] | None = None, **kwargs
    ) -> ExecutionLog:
        return await self.log(
            db, log_type=LogType.system, source=source, action=action, details=details, severity=LogSeverity.warning, **kwargs
        )

    async def error(
        self, db: AsyncSession, source: str, action: str, details: dict[str, Any] | None = None, **kwargs
    ) -> ExecutionLog:
        return await self.log(
            db, log_type=LogType.system, source=source, action=action, details=details, severity=LogSeverity.error, **kwargs
        )

    @staticmethod
    async def get_list(
        db: AsyncSession,
        params: PageParams,
        *,
        log_type: str | None = None,
        severity: str | None = None,
        tenant_id: str | None = None,
        action: str | None = None,
    ) -> tuple[list[ExecutionLog], int]:
        """Paginated execution logs, filtered like the admin listing."""
        stmt = execution_log_dao.get_list_select(
            log_type=log_type, severity=severity, tenant_id=tenant_id, action=action
        )
        items, total = await paginate(db, stmt, params)
        return list(items), total


execution_log_service: ExecutionLogService = ExecutionLogService()
