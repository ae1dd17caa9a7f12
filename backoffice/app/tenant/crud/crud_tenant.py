from sqlalchemy import Select, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy_crud_plus import CRUDPlus

from backoffice.app.tenant.model import Tenant, User
from backoffice.common.enums import UserRole


class CRUDTenant(CRUDPlus[Tenant]):
    """Tenant database operations"""

    def get_search_select(self, search: str | None = None) -> Select:
        """Tenants whose name or slug contains ``search``, case-insensitive."""
        stmt = select(self.model).order_by(self.model.name)
        if search:
            pattern = f'%{search}%'
            stmt = stmt.where(or_(self.model.name.ilike(pattern), self.model.slug.ilike(pattern)))
        return stmt

    async def count_blocked(self, db: AsyncSession) -> int:
        stmt = select(func.count()).select_from(self.model).where(self.model.is_blocked.is_(True))
        return (await db.execute(stmt)).scalar_one()


class CRUDUser(CRUDPlus[User]):
    """User database operations"""

    async def count_by_tenant(self, db: AsyncSession, tenant_id: str) -> int:
        stmt = select(func.count()).select_from(self.model).where(
            self.model.tenant_id == tenant_id, self.model.is_active.is_(True)
        )
        return (await db.execute(stmt)).scalar_one()

    async def get_tenant_owner(self, db: AsyncSession, tenant_id: str) -> User | None:
        """Contact user of a tenant: the first active owner, else the first active admin."""
        for role in (UserRole.owner, UserRole.admin):
            stmt = (
                select(self.model)
                .where(self.model.tenant_id == tenant_id, self.model.role == role, self.model.is_active.is_(True))
                .order_by(self.model.created_time)
                .limit(1)
            )
            user = (await db.execute(stmt)).scalars().first()
            if user is not None:
                return user
        return None


tenant_dao: CRUDTenant = CRUDTenant(Tenant)
user_dao: CRUDUser = CRUDUser(User)
