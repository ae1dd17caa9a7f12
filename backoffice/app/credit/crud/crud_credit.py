from decimal import Decimal
from typing import Sequence

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy_crud_plus import CRUDPlus

from backoffice.app.credit.model import CreditPackage, CreditTransaction, TenantCredit


class CRUDTenantCredit(CRUDPlus[TenantCredit]):
    """Tenant credit account database operations"""

    async def get_by_tenant(self, db: AsyncSession, tenant_id: str) -> TenantCredit | None:
        return await self.select_model_by_column(db, tenant_id=tenant_id)

    def get_list_select(self) -> Select:
        return select(self.model).order_by(self.model.balance_brl)


class CRUDCreditTransaction(CRUDPlus[CreditTransaction]):
    """Credit transaction database operations"""

    def get_list_select(self, *, tenant_id: str, type: str | None = None) -> Select:
        """Ledger query for a tenant, newest first, optionally of one type."""
        stmt = (
            select(self.model)
            .where(self.model.tenant_id == tenant_id)
            .order_by(self.model.created_time.desc())
        )
        if type:
            stmt = stmt.where(self.model.type == type)
        return stmt

    async def get_for_update(self, db: AsyncSession, pk: str) -> CreditTransaction | None:
        stmt = select(self.model).where(self.model.id == pk).with_for_update()
        return (await db.execute(stmt)).scalars().first()

    async def get_recent(self, db: AsyncSession, tenant_id: str, limit: int) -> Sequence[CreditTransaction]:
        stmt = self.get_list_select(tenant_id=tenant_id).limit(limit)
        return (await db.execute(stmt)).scalars().all()

    async def sum_amount(self, db: AsyncSession, tenant_id: str, type: str) -> Decimal:
        stmt = select(func.coalesce(func.sum(self.model.amount_brl), 0)).where(
            self.model.tenant_id == tenant_id, self.model.type == type
        )
        return Decimal(str((await db.execute(stmt)).scalar_one()))


class CRUDCreditPackage(CRUDPlus[CreditPackage]):
    """Credit package database operations"""

    async def get_list(self, db: AsyncSession, active_only: bool = False) -> Sequence[CreditPackage]:
        stmt = select(self.model).order_by(self.model.sort_order, self.model.price_brl)
        if active_only:
            stmt = stmt.where(self.model.is_active.is_(True))
        return (await db.execute(stmt)).scalars().all()


tenant_credit_dao: CRUDTenantCredit = CRUDTenantCredit(TenantCredit)
credit_transaction_dao: CRUDCreditTransaction = CRUDCreditTransaction(CreditTransaction)
credit_package_dao: CRUDCreditPackage = CRUDCreditPackage(CreditPackage)
