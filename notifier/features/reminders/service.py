"""
Reminder Service: background scheduler driving reconciliation and retention sweeps
"""
import logging
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from notifier.config import get_settings
from notifier.features.reminders.reconciler import Reconciler
from notifier.features.reminders.sweeper import run_retention_sweep
from notifier.features.reminders.timers import FireTimers

logger = logging.getLogger("reminder_service")

RECONCILER_JOB_ID = "reminder_reconciler"
SWEEPER_JOB_ID = "reminder_sweeper"

# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None
_reconciler: Optional[Reconciler] = None
_timers: Optional[FireTimers] = None


def _cancel_settled_timers(reminder_ids) -> None:
    if _timers is not None:
        _timers.cancel_many(reminder_ids)


def get_reconciler() -> Reconciler:
    global _reconciler
    if _reconciler is None:
        _reconciler = Reconciler(on_settled=_cancel_settled_timers)
    return _reconciler


def get_timers() -> Optional[FireTimers]:
    """Fire timers, or None when the scheduler is stopped or precise timers are off."""
    return _timers


async def run_reconciliation_job():
    """One scheduled reconciliation pass; failures are logged so the next tick still runs."""
    try:
        await get_reconciler().run_pass()
    except Exception as e:
        logger.error("Error in reconciliation cycle: %s", e)


async def run_sweep_job():
    """One scheduled retention sweep."""
    try:
        await run_retention_sweep()
    except Exception as e:
        logger.error("Error in retention sweep cycle: %s", e)


async def fire_account(user_id: str):
    """Timer callback: reconcile a single account now."""
    await get_reconciler().reconcile_user(user_id)


async def start_reminder_scheduler():
    """Start the background reminder scheduler."""
    global _scheduler, _timers

    if _scheduler is not None:
        logger.warning("Scheduler already running")
        return

    settings = get_settings()

    _scheduler = AsyncIOScheduler(timezone="UTC")

    _scheduler.add_job(
        run_reconciliation_job,
        trigger=IntervalTrigger(seconds=settings.reconcile_interval_seconds),
        id=RECONCILER_JOB_ID,
        name="Reconcile and deliver due reminders",
        replace_existing=True,
        max_instances=1,  # Prevent overlapping runs
        coalesce=True,
    )
    _scheduler.add_job(
        run_sweep_job,
        trigger=IntervalTrigger(minutes=settings.sweep_interval_minutes),
        id=SWEEPER_JOB_ID,
        name="Delete expired sent/superseded reminders",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    if settings.precise_timers_enabled:
        _timers = FireTimers(_scheduler, fire_account)

    _scheduler.start()
    logger.info(
        "Reminder scheduler started (reconcile every %ds, sweep every %d min, precise timers %s)",
        settings.reconcile_interval_seconds,
        settings.sweep_interval_minutes,
        "on" if _timers is not None else "off",
    )


async def stop_reminder_scheduler():
    """Stop the background reminder scheduler."""
    global _scheduler, _timers

    if _scheduler is None:
        logger.warning("Scheduler not running")
        return

    # In-flight passes are abandoned; unsettled reminders stay pending for the next start
    _scheduler.shutdown(wait=False)
    _scheduler = None
    _timers = None
    logger.info("Reminder scheduler stopped")


def is_scheduler_running() -> bool:
    """Check if scheduler is running."""
    return _scheduler is not None and _scheduler.running


def get_scheduler() -> Optional[AsyncIOScheduler]:
    return _scheduler
