"""Celery background tasks."""

import asyncio
import logging
from datetime import UTC, date, datetime

from celery import shared_task

from app.database import engine, get_db_context
from app.services.notification_service import notification_service
from app.services.rendezvous_service import business_tz, rendezvous_service

logger = logging.getLogger(__name__)


def run_async(coro):
    """Run async function in sync context."""
    return asyncio.run(coro)


@shared_task(bind=True, max_retries=3)
def send_rendezvous_reminders(self):
    """Mail a reminder for every appointment confirmed for today.

    Runs daily at ``settings.reminder_hour`` in the business timezone.
    """
    try:
        sent = run_async(_send_rendezvous_reminders())
    except Exception as exc:
        logger.error(f"Reminder run failed: {exc}")
        raise self.retry(exc=exc, countdown=300)
    return {"status": "success", "sent": sent}


async def _send_rendezvous_reminders(day: date | None = None) -> int:
    today = day or datetime.now(UTC).astimezone(business_tz()).date()
    try:
        async with get_db_context() as db:
            appointments = await rendezvous_service.list_confirmed_on(db, today)

        sent = 0
        for rendezvous in appointments:
            if await notification_service.send_rendezvous_reminder(rendezvous):
                sent += 1
        logger.info(f"Reminders for {today}: {sent}/{len(appointments)} sent")
        return sent
    finally:
        # Pooled connections are bound to this run's event loop
        await notification_service.close()
        await engine.dispose()
