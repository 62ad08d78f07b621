"""APScheduler setup for automatic accounting syncs."""

import logging
from datetime import datetime, timedelta
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from gym_accounting.core.config import get_settings
from gym_accounting.core.database import async_session_maker
from gym_accounting.core.errors import SyncValidationError
from gym_accounting.services import store
from gym_accounting.services.sync import AccountingSyncService

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: AsyncIOScheduler | None = None


def is_sync_due(last_sync_at: datetime | None, frequency_minutes: int, now: datetime | None = None) -> bool:
    """Whether an integration's own sync frequency has elapsed."""
    if last_sync_at is None:
        return True
    now = now or datetime.utcnow()
    return now - last_sync_at >= timedelta(minutes=frequency_minutes)


async def run_scheduled_sync(session_maker=async_session_maker):
    """Sync every active integration that has automatic sync enabled and is due."""
    settings = get_settings()
    logger.info("Starting scheduled accounting sync")

    async with session_maker() as session:
        integrations = await store.get_active_integrations(session)
        due = [
            i.provider
            for i in integrations
            if i.auto_sync_enabled and is_sync_due(i.last_sync_at, i.sync_frequency_minutes)
        ]

    for provider in due:
        async with session_maker() as session:
            service = AccountingSyncService(session, settings)
            try:
                summary = await service.run_sync(provider, sync_type="scheduled")
                logger.info(f"Scheduled {provider} sync finished: {summary.to_dict()}")
            except SyncValidationError as e:
                logger.warning(f"Scheduled {provider} sync skipped: {e}")
            except Exception as e:
                logger.error(f"Scheduled {provider} sync failed: {e}")
                await session.rollback()


def start_scheduler():
    """Start the APScheduler."""
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already started")
        return

    settings = get_settings()
    if not settings.auto_sync_enabled:
        logger.info("Automatic accounting sync disabled")
        return

    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        run_scheduled_sync,
        IntervalTrigger(minutes=settings.auto_sync_interval_minutes),
        id="accounting_sync",
        name="Automatic accounting sync",
        replace_existing=True
    )

    scheduler.start()
    logger.info(f"Scheduler started - accounting sync every {settings.auto_sync_interval_minutes} minutes")


def stop_scheduler():
    """Stop the APScheduler."""
    global scheduler

    if scheduler is not None:
        scheduler.shutdown()
        scheduler = None
        logger.info("Scheduler stopped")
