from sqlalchemy import Select, select
from sqlalchemy_crud_plus import CRUDPlus

from backoffice.app.log.model import ExecutionLog


class CRUDExecutionLog(CRUDPlus[ExecutionLog]):
    """Execution log database operations"""

    def get_list_select(
        self,
        *,
        log_type: str | None = None,
        severity: str | None = None,
        tenant_id: str | None = None,
        action: str | None = None,
    ) -> Select:
        """Log listing query, newest first. ``action`` matches by substring."""
        stmt = select(self.model).order_by(self.model.created_time.desc())
        if log_type:
            stmt = stmt.where(self.model.log_type == log_type)
        if severity:
            stmt = stmt.where(self.model.severity == severity)
        if tenant_id:
            stmt = stmt.where(self.model.tenant_id == tenant_id)
        if action:
            stmt = stmt.where(self.model.action.ilike(f'%{action}%'))
        return stmt


execution_log_dao: CRUDExecutionLog = CRUDExecutionLog(ExecutionLog)
