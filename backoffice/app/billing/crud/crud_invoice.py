from typing import Sequence

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy_crud_plus import CRUDPlus

from backoffice.app.billing.model import Invoice
from backoffice.common.enums import InvoiceStatus


class CRUDInvoice(CRUDPlus[Invoice]):
    """Invoice database operations"""

    async def get_by_external_id(self, db: AsyncSession, external_id: str) -> Invoice | None:
        stmt = select(self.model).where(self.model.external_id == external_id).limit(1)
        return (await db.execute(stmt)).scalars().first()

    async def get_pending_with_due_date(self, db: AsyncSession) -> Sequence[Invoice]:
        stmt = select(self.model).where(
            self.model.status == InvoiceStatus.pending,
            self.model.due_date.is_not(None),
        )
        return (await db.execute(stmt)).scalars().all()

    def get_list_select(
        self,
        *,
        tenant_id: str | None = None,
        subscription_id: str | None = None,
        status: str | None = None,
    ) -> Select:
        """Invoice list query, newest first, with optional filters."""
        stmt = select(self.model).order_by(self.model.created_time.desc())
        if tenant_id:
            stmt = stmt.where(self.model.tenant_id == tenant_id)
        if subscription_id:
            stmt = stmt.where(self.model.subscription_id == subscription_id)
        if status:
            stmt = stmt.where(self.model.status == status)
        return stmt


invoice_dao: CRUDInvoice = CRUDInvoice(Invoice)
