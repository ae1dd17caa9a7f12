"""
Scheduled billing jobs.

Plan credits are replenished and invoice reminders sent once a day; webhook
events that failed processing are replayed every few minutes.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from backoffice.core.conf import settings
from backoffice.src.billing.credits.replenishment import replenish_plan_credits_job
from backoffice.src.billing.invoices.reminders import send_invoice_reminders_job
from backoffice.src.billing.webhooks.processor import replay_webhooks_job

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(timezone=settings.DATETIME_TIMEZONE)


async def replenish_credits_task():
    try:
        await replenish_plan_credits_job()
    except Exception as e:
        logger.error(f"[SCHEDULER] Plan credit replenishment failed: {e}", exc_info=True)


async def invoice_reminders_task():
    try:
        await send_invoice_reminders_job()
    except Exception as e:
        logger.error(f"[SCHEDULER] Invoice reminders failed: {e}", exc_info=True)


async def replay_webhooks_task():
    try:
        await replay_webhooks_job()
    except Exception as e:
        logger.error(f"[SCHEDULER] Webhook replay failed: {e}", exc_info=True)


def start_scheduler():
    """
    Register the billing jobs and start the scheduler.
    """
    try:
        scheduler.add_job(
            replenish_credits_task,
            trigger=CronTrigger(hour=settings.BILLING_REPLENISH_HOUR, minute=0),
            id="billing_replenish_plan_credits",
            name="Replenish plan credits",
            replace_existing=True,
            max_instances=1,
        )
        scheduler.add_job(
            invoice_reminders_task,
            trigger=CronTrigger(hour=settings.BILLING_REMINDER_HOUR, minute=0),
            id="billing_invoice_reminders",
            name="Send invoice reminders",
            replace_existing=True,
            max_instances=1,
        )
        scheduler.add_job(
            replay_webhooks_task,
            trigger=IntervalTrigger(minutes=settings.BILLING_WEBHOOK_REPLAY_MINUTES),
            id="billing_replay_webhooks",
            name="Replay unprocessed webhook events",
            replace_existing=True,
            max_instances=1,
        )

        scheduler.start()
        logger.info("[SCHEDULER] Billing scheduler started")

    except Exception as e:
        logger.error(f"[SCHEDULER] Error starting scheduler: {e}", exc_info=True)
        raise


def shutdown_scheduler():
    """
    Shutdown the scheduler gracefully.
    """
    try:
        if scheduler.running:
            scheduler.shutdown(wait=True)
            logger.info("[SCHEDULER] Billing scheduler stopped")
    except Exception as e:
        logger.error(f"[SCHEDULER] Error stopping scheduler: {e}", exc_info=True)
