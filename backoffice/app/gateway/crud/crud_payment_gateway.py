from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy_crud_plus import CRUDPlus

from backoffice.app.gateway.model import PaymentGatewaySetting


class CRUDPaymentGateway(CRUDPlus[PaymentGatewaySetting]):
    """Payment gateway database operations"""

    async def get_by_provider(self, db: AsyncSession, provider: str) -> PaymentGatewaySetting | None:
        return await self.select_model_by_column(db, provider=provider)

    async def get_all(self, db: AsyncSession) -> Sequence[PaymentGatewaySetting]:
        return (await db.execute(select(self.model).order_by(self.model.provider))).scalars().all()


payment_gateway_dao: CRUDPaymentGateway = CRUDPaymentGateway(PaymentGatewaySetting)
