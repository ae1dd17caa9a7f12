from typing import Any

import sqlalchemy as sa

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.common.enums import LogSeverity
from backoffice.common.model import Base, uuid_pk
from backoffice.database.db import uuid4_str


class ExecutionLog(Base):
    """Business execution log"""

    __tablename__ = 'execution_logs'

    id: Mapped[uuid_pk] = mapped_column(init=False, default_factory=uuid4_str)
    log_type: Mapped[str] = mapped_column(sa.String(30), index=True)
    source: Mapped[str] = mapped_column(sa.String(100))
    action: Mapped[str] = mapped_column(sa.String(255), index=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSONB, default_factory=dict)
    severity: Mapped[str] = mapped_column(sa.String(20), default=LogSeverity.info, index=True)
    tenant_id: Mapped[str | None] = mapped_column(sa.String(36), default=None, index=True)
    user_id: Mapped[str | None] = mapped_column(sa.String(36), default=None)
    ip_address: Mapped[str | None] = mapped_column(sa.String(45), default=None)
    user_agent: Mapped[str | None] = mapped_column(sa.String(500), default=None)
    correlation_id: Mapped[str | None] = mapped_column(sa.String(64), default=None, index=True)
