from decimal import Decimal

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.credit.crud.crud_credit import credit_package_dao, tenant_credit_dao
from backoffice.app.credit.model import CreditPackage, CreditSetting, CreditTransaction, TenantCredit
from backoffice.app.credit.schema.credit import CreateCreditPackageParam, CreditSettingParam, UpdateCreditPackageParam
from backoffice.app.log.service.execution_log_service import execution_log_service
from backoffice.app.tenant.model import User
from backoffice.app.tenant.service.tenant_service import tenant_service
from backoffice.common.enums import CreditTransactionType
from backoffice.common.exception import errors
from backoffice.common.pagination import PageParams, paginate
from backoffice.src.billing.credits import settings as credit_settings
from backoffice.src.billing.credits.manager import credit_manager


class CreditAdminService:
    """Admin management of credit pricing, packages and tenant balances"""

    @staticmethod
    async def get_settings(db: AsyncSession) -> CreditSetting:
        return await credit_settings.get_or_create_setting_row(db)

    @staticmethod
    async def update_settings(
        db: AsyncSession, obj: CreditSettingParam, *, user: User | None = None, request: Request | None = None
    ) -> CreditSetting:
        """Update the pricing settings and drop the cached copy.

        Args:
            db: Database session.
            obj: New settings.
            user: Acting admin.
            request: Current request.

        Returns:
            The updated settings row.
        """
        row = await credit_settings.get_or_create_setting_row(db)
        before = {
            'markup_type': row.markup_type,
            'markup_value': str(row.markup_value),
            'usd_to_brl_rate': str(row.usd_to_brl_rate),
        }
        for key, value in obj.model_dump().items():
            setattr(row, key, value)
        await db.flush()
        await credit_settings.clear_cache()

        await execution_log_service.audit(
            db,
            'admin.credit_settings.update',
            {'before': before, 'after': obj.model_dump(mode='json')},
            user_id=user.id if user else None,
            request=request,
        )
        return row

    @staticmethod
    async def get_packages(db: AsyncSession) -> list[CreditPackage]:
        return list(await credit_package_dao.get_list(db))

    @staticmethod
    async def get_package(db: AsyncSession, pk: str) -> CreditPackage:
        package = await credit_package_dao.select_model(db, pk)
        if not package:
            raise errors.NotFoundError(msg='Credit package not found')
        return package

    @staticmethod
    async def create_package(
        db: AsyncSession, obj: CreateCreditPackageParam, *, user: User | None = None, request: Request | None = None
    ) -> CreditPackage:
        package = CreditPackage(**obj.model_dump())
        db.add(package)
        await db.flush()
        await execution_log_service.audit(
            db,
            'admin.credit_package.create',
            {'package_id': package.id, 'name': package.name},
            user_id=user.id if user else None,
            request=request,
        )
        return package

    async def update_package(
        self,
        db: AsyncSession,
        pk: str,
        obj: UpdateCreditPackageParam,
        *,
        user: User | None = None,
        request: Request | None = None,
    ) -> CreditPackage:
        package = await self.get_package(db, pk)
        changes = obj.model_dump(exclude_unset=True)
        for key, value in changes.items():
            setattr(package, key, value)
        await db.flush()
        await execution_log_service.audit(
            db,
            'admin.credit_package.update',
            {'package_id': package.id, 'changes': obj.model_dump(mode='json', exclude_unset=True)},
            user_id=user.id if user else None,
            request=request,
        )
        return package

    async def delete_package(
        self, db: AsyncSession, pk: str, *, user: User | None = None, request: Request | None = None
    ) -> None:
        package = await self.get_package(db, pk)
        await db.delete(package)
        await db.flush()
        await execution_log_service.audit(
            db,
            'admin.credit_package.delete',
            {'package_id': pk, 'name': package.name},
            user_id=user.id if user else None,
            request=request,
        )

    @staticmethod
    async def add_manual_credit(
        db: AsyncSession,
        tenant_id: str,
        amount: Decimal,
        description: str,
        *,
        user: User | None = None,
        request: Request | None = None,
    ) -> CreditTransaction:
        """Grant add-on credits to a tenant by hand.

        Raises:
            NotFoundError: If the tenant does not exist.
        """
        tenant = await tenant_service.get(db, tenant_id)
        transaction = await credit_manager.add_credits(
            db,
            tenant.id,
            amount,
            CreditTransactionType.manual_credit,
            description,
            reference_type='admin',
            reference_id=user.id if user else None,
        )
        await execution_log_service.audit(
            db,
            'admin.credits.manual_credit',
            {'amount': str(amount), 'description': description, 'transaction_id': transaction.id},
            tenant_id=tenant.id,
            user_id=user.id if user else None,
            request=request,
        )
        return transaction

    @staticmethod
    async def get_balances(db: AsyncSession, params: PageParams) -> tuple[list[TenantCredit], int]:
        items, total = await paginate(db, tenant_credit_dao.get_list_select(), params)
        return list(items), total


credit_admin_service: CreditAdminService = CreditAdminService()
