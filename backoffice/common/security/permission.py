import hmac

from fastapi import Depends, Request

from backoffice.app.tenant.model import Tenant
from backoffice.common.exception.errors import AuthorizationError, ForbiddenError
from backoffice.common.log import log
from backoffice.common.security.jwt import CurrentUser
from backoffice.core.conf import settings
from backoffice.database.db import CurrentSession
from backoffice.src.billing.shared.exceptions import TenantBlockedError


async def require_admin(user: CurrentUser) -> None:
    """Allow platform admins only."""
    if not user.is_admin:
        raise ForbiddenError(msg='Admin access required')


async def verify_internal_key(request: Request) -> None:
    """
    Check the X-Internal-Key header of service-to-service calls.

    Every request is refused while INTERNAL_API_KEY is unset.
    """
    expected = settings.INTERNAL_API_KEY
    if not expected:
        log.warning('Internal API called but INTERNAL_API_KEY is not configured')
        raise AuthorizationError(msg='Internal API is not configured')

    provided = request.headers.get('X-Internal-Key') or ''
    if not hmac.compare_digest(provided.encode(), expected.encode()):
        raise AuthorizationError(msg='Invalid internal key')


async def check_tenant_billing(user: CurrentUser, db: CurrentSession) -> None:
    """
    Keep blocked tenants out of billing routes. Admins pass.

    :param user: current user
    :param db: database session
    :return:
    """
    if user.is_admin or not user.tenant_id:
        return

    tenant = await db.get(Tenant, user.tenant_id)
    if tenant is not None and tenant.is_blocked:
        raise TenantBlockedError(
            blocked_at=tenant.blocked_at.isoformat() if tenant.blocked_at else None,
            reason=tenant.blocked_reason,
        )


# Admin only
DependsAdmin = Depends(require_admin)

# Service-to-service calls
DependsInternalKey = Depends(verify_internal_key)

# Billing routes for tenants that are not blocked
DependsTenantBilling = Depends(check_tenant_billing)
