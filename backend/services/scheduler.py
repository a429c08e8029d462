"""Background scheduler for the two periodic jobs.

Uses APScheduler to run credential refresh (daily, 02:00 UTC by default)
and data sync (daily, 03:00 UTC by default). Each job is also single-flight
through its own guard, which manual triggers share.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from config import Settings
from services.runtime import SyncRuntime

logger = logging.getLogger(__name__)


async def refresh_expiring_credentials(runtime: SyncRuntime) -> None:
    """Background task refreshing soon-to-expire OAuth credentials."""
    logger.info("Starting scheduled credential refresh...")
    try:
        report = await runtime.credential_manager.refresh_expiring()
    except Exception:
        logger.exception("Scheduled credential refresh crashed")
        return
    if report.failures:
        logger.error(f"Credential refresh failures: {[f.account_id for f in report.failures]}")


async def sync_stale_accounts(runtime: SyncRuntime) -> None:
    """Background task re-syncing stale account data."""
    logger.info("Starting scheduled data sync...")
    try:
        report = await runtime.sync_scheduler.run_once()
    except Exception:
        logger.exception("Scheduled data sync crashed")
        return
    if report.failures:
        logger.error(f"Data sync failures: {[f.account_id for f in report.failures]}")


def create_job_scheduler(runtime: SyncRuntime, settings: Settings) -> AsyncIOScheduler:
    """Build (but do not start) the scheduler with both jobs registered."""
    scheduler = AsyncIOScheduler(timezone="UTC")

    scheduler.add_job(
        refresh_expiring_credentials,
        trigger=CronTrigger(hour=settings.token_refresh_hour, minute=0, timezone="UTC"),
        args=[runtime],
        id="credential_refresh",
        name="Refresh expiring OAuth credentials",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    scheduler.add_job(
        sync_stale_accounts,
        trigger=CronTrigger(hour=settings.data_sync_hour, minute=0, timezone="UTC"),
        args=[runtime],
        id="data_sync",
        name="Sync stale social accounts",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    return scheduler


def start_scheduler(scheduler: AsyncIOScheduler) -> None:
    if scheduler.running:
        logger.info("Scheduler already running")
        return
    scheduler.start()
    logger.info("Background scheduler started (credential refresh + data sync, daily)")


def stop_scheduler(scheduler: AsyncIOScheduler, runtime: SyncRuntime | None = None) -> None:
    """Stop the scheduler and ask in-flight runs to stop at their next checkpoint."""
    if runtime is not None:
        runtime.sync_scheduler.request_stop()
        runtime.credential_manager.request_stop()
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Background scheduler stopped")
