from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.log.service.execution_log_service import execution_log_service
from backoffice.app.tenant.crud.crud_tenant import tenant_dao
from backoffice.app.tenant.model import Tenant, User
from backoffice.common.exception import errors
from backoffice.common.log import log
from backoffice.utils.timezone import timezone

MANUAL_BLOCK_REASON = 'Blocked manually by an administrator'


class TenantService:
    """Tenant lookup and blocking"""

    @staticmethod
    async def get(db: AsyncSession, pk: str) -> Tenant:
        tenant = await tenant_dao.select_model(db, pk)
        if not tenant:
            raise errors.NotFoundError(msg='Tenant not found')
        return tenant

    async def get_for_user(self, db: AsyncSession, user: User) -> Tenant:
        """Tenant of the current user."""
        if not user.tenant_id:
            raise errors.NotFoundError(msg='User has no tenant')
        return await self.get(db, user.tenant_id)

    @staticmethod
    def block(tenant: Tenant, reason: str) -> None:
        tenant.is_blocked = True
        tenant.blocked_reason = reason
        tenant.blocked_at = timezone.now()

    @staticmethod
    def unblock(tenant: Tenant) -> bool:
        """Unblock the tenant and report whether it was blocked."""
        was_blocked = tenant.is_blocked
        tenant.is_blocked = False
        tenant.blocked_reason = None
        tenant.blocked_at = None
        return was_blocked

    async def block_tenant(
        self,
        db: AsyncSession,
        pk: str,
        reason: str | None = None,
        *,
        user: User | None = None,
        request: Request | None = None,
    ) -> Tenant:
        """Block a tenant on behalf of an admin.

        Args:
            db: Database session.
            pk: Tenant id.
            reason: Block reason shown to the tenant.
            user: Acting admin.
            request: Current request.

        Returns:
            The blocked tenant.
        """
        tenant = await self.get(db, pk)
        self.block(tenant, reason or MANUAL_BLOCK_REASON)
        await db.flush()

        log.info(f'Tenant {tenant.id} blocked by {user.id if user else "system"}')
        await execution_log_service.audit(
            db,
            'admin.billing.block_tenant',
            {'tenant_id': tenant.id, 'reason': reason},
            tenant_id=tenant.id,
            user_id=user.id if user else None,
            request=request,
        )
        return tenant

    async def unblock_tenant(
        self, db: AsyncSession, pk: str, *, user: User | None = None, request: Request | None = None
    ) -> Tenant:
        tenant = await self.get(db, pk)
        self.unblock(tenant)
        await db.flush()

        log.info(f'Tenant {tenant.id} unblocked by {user.id if user else "system"}')
        await execution_log_service.audit(
            db,
            'admin.billing.unblock_tenant',
            {'tenant_id': tenant.id},
            tenant_id=tenant.id,
            user_id=user.id if user else None,
            request=request,
        )
        return tenant


tenant_service: TenantService = TenantService()
