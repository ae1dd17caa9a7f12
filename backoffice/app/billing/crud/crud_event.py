from typing import Sequence

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy_crud_plus import CRUDPlus

from backoffice.app.billing.model import BillingEvent, WebhookEvent


class CRUDWebhookEvent(CRUDPlus[WebhookEvent]):
    """Webhook event database operations"""

    async def get_by_idempotency_key(self, db: AsyncSession, idempotency_key: str) -> WebhookEvent | None:
        stmt = select(self.model).where(self.model.idempotency_key == idempotency_key)
        return (await db.execute(stmt)).scalars().first()

    async def get_for_processing(self, db: AsyncSession, pk: str) -> WebhookEvent | None:
        """Lock an event for processing, None when it is missing or another worker holds it."""
        stmt = select(self.model).where(self.model.id == pk).with_for_update(skip_locked=True)
        return (await db.execute(stmt)).scalars().first()

    async def get_replayable(self, db: AsyncSession, max_attempts: int, limit: int = 100) -> Sequence[WebhookEvent]:
        """Unprocessed events with attempts left, oldest first.

        Args:
            db: Database session
            max_attempts: Attempt limit per event
            limit: Maximum events returned

        Returns:
            The replayable events
        """
        stmt = (
            select(self.model)
            .where(self.model.processed.is_(False), self.model.attempts < max_attempts)
            .order_by(self.model.created_time)
            .limit(limit)
        )
        return (await db.execute(stmt)).scalars().all()


class CRUDBillingEvent(CRUDPlus[BillingEvent]):
    """Billing event database operations"""

    def get_list_select(
        self,
        *,
        tenant_id: str | None = None,
        provider: str | None = None,
        event_type: str | None = None,
    ) -> Select:
        stmt = select(self.model).order_by(self.model.created_time.desc())
        if tenant_id:
            stmt = stmt.where(self.model.tenant_id == tenant_id)
        if provider:
            stmt = stmt.where(self.model.provider == provider)
        if event_type:
            stmt = stmt.where(self.model.event_type == event_type)
        return stmt


webhook_event_dao: CRUDWebhookEvent = CRUDWebhookEvent(WebhookEvent)
billing_event_dao: CRUDBillingEvent = CRUDBillingEvent(BillingEvent)
