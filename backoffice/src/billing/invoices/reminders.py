"""
Invoice Reminders

Daily job that reminds tenants of pending invoices before they fall due.

Thresholds are checked from the furthest to the closest (10, 5, 2 and 0 days).
Each run sends at most one reminder per invoice: the first threshold that has
not been sent yet and that the invoice has reached. Overdue invoices get none.
Sent reminders are recorded in invoices.reminder_sent_at.

Delivery goes through a notifier. The default notifier writes an execution
log entry; email or chat delivery can be plugged in by passing another one.
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backoffice.app.billing.crud.crud_invoice import invoice_dao
from backoffice.app.billing.model import Invoice
from backoffice.app.log.service.execution_log_service import execution_log_service
from backoffice.app.tenant.crud.crud_tenant import user_dao
from backoffice.app.tenant.model import User
from backoffice.database.db import async_db_session
from backoffice.src.billing.shared.config import REMINDER_THRESHOLDS
from backoffice.utils.timezone import timezone

logger = logging.getLogger(__name__)

Notifier = Callable[[AsyncSession, Invoice, Optional[User], str, int], Awaitable[None]]


def days_until(invoice: Invoice, now: datetime) -> int:
    return (timezone.start_of_day(invoice.due_date) - timezone.start_of_day(now)).days


def pick_reminder(invoice: Invoice, days_until_due: int) -> Optional[str]:
    """
    Choose the reminder to send, if any.

    Args:
        invoice: Pending invoice with a due date
        days_until_due: Days from today to the due date, negative when overdue

    Returns:
        The threshold key, or None
    """
    if days_until_due < 0:
        return None
    sent = invoice.reminder_sent_at or {}
    for key, threshold in REMINDER_THRESHOLDS.items():
        if key not in sent and days_until_due <= threshold:
            return key
    return None


async def log_notifier(
    db: AsyncSession, invoice: Invoice, owner: Optional[User], reminder: str, days_until_due: int
) -> None:
    """Default notifier: record the reminder in the execution log."""
    logger.info(
        f"[REMINDER] Invoice {invoice.id} due in {days_until_due} days, "
        f"reminding {owner.email if owner else 'tenant'} ({reminder})"
    )
    await execution_log_service.info(
        db,
        'billing',
        'invoice.reminder',
        {
            'invoice_id': invoice.id,
            'reminder': reminder,
            'days_until_due': days_until_due,
            'amount': str(invoice.amount),
            'owner_email': owner.email if owner else None,
            'invoice_url': invoice.invoice_url,
        },
        tenant_id=invoice.tenant_id,
    )


async def _remind(
    factory: async_sessionmaker, invoice_id: str, now: datetime, notify: Notifier
) -> bool:
    """Send one reminder in its own transaction. False when nothing was due anymore."""
    async with factory.begin() as db:
        invoice = await invoice_dao.select_model(db, invoice_id)
        if invoice is None:
            return False
        remaining = days_until(invoice, now)
        reminder = pick_reminder(invoice, remaining)
        if reminder is None:
            return False

        owner = await user_dao.get_tenant_owner(db, invoice.tenant_id)
        await notify(db, invoice, owner, reminder, remaining)
        invoice.reminder_sent_at = {**(invoice.reminder_sent_at or {}), reminder: now.isoformat()}
        return True


async def send_invoice_reminders_job(
    now: Optional[datetime] = None,
    notifier: Optional[Notifier] = None,
    session_factory: Optional[async_sessionmaker] = None,
) -> Dict[str, int]:
    """
    Send due reminders for pending invoices.

    Each invoice is reminded in its own transaction. A failed delivery is
    logged and counted, and the run carries on with the next invoice.

    Args:
        now: Reference time, defaults to the current time
        notifier: Delivery callable, defaults to log_notifier
        session_factory: Session maker, defaults to the application's

    Returns:
        Counts of sent, skipped and failed invoices
    """
    now = now or timezone.now()
    notify = notifier or log_notifier
    factory = session_factory or async_db_session
    stats = {'sent': 0, 'skipped': 0, 'failed': 0}

    async with factory() as db:
        due_ids = []
        for invoice in await invoice_dao.get_pending_with_due_date(db):
            if pick_reminder(invoice, days_until(invoice, now)) is None:
                stats['skipped'] += 1
            else:
                due_ids.append(invoice.id)

    for invoice_id in due_ids:
        try:
            sent = await _remind(factory, invoice_id, now, notify)
        except Exception as e:
            stats['failed'] += 1
            logger.error(f"[REMINDER] Reminder failed for invoice {invoice_id}: {e}", exc_info=True)
            continue
        stats['sent' if sent else 'skipped'] += 1

    logger.info(f"[REMINDER] Finished: {stats}")
    return stats
