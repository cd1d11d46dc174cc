"""
Retention sweeper: delete sent/superseded reminders older than the retention window.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from notifier import crud
from notifier.config import get_settings
from notifier.schemas import SweepReport
from notifier.services.common import ensure_utc, terminal_timestamp, utcnow

logger = logging.getLogger("sweeper")


def expired_reminder_ids(reminders, cutoff: datetime) -> List[str]:
    """Ids of terminal reminders whose terminal timestamp is strictly older than cutoff."""
    expired = []
    for reminder in reminders:
        if reminder.status == "pending":
            continue
        stamp = terminal_timestamp(reminder)
        if stamp is not None and stamp < cutoff:
            expired.append(reminder.id)
    return expired


async def run_retention_sweep(
    now: Optional[datetime] = None,
    retention: Optional[timedelta] = None,
) -> SweepReport:
    now = ensure_utc(now) or utcnow()
    if retention is None:
        retention = timedelta(hours=get_settings().retention_hours)
    cutoff = now - retention

    report = SweepReport()
    user_ids = await crud.list_account_ids_with_reminders()
    report.accounts_total = len(user_ids)

    for user_id in user_ids:
        try:
            terminal = await crud.list_terminal_reminders(user_id)
            ids = expired_reminder_ids(terminal, cutoff)
            if ids:
                deleted = await crud.delete_terminal_reminders(ids)
                report.deleted += deleted
                logger.debug("Deleted %d expired reminder(s) for account %s", deleted, user_id)
        except Exception as e:
            logger.error("Retention sweep failed for account %s: %s", user_id, e)
            report.accounts_failed += 1
            report.failed_accounts.append(user_id)

    if report.deleted or report.accounts_failed:
        logger.info(
            "Retention sweep: accounts=%d failed=%d deleted=%d (older than %s)",
            report.accounts_total,
            report.accounts_failed,
            report.deleted,
            cutoff.isoformat(),
        )
    return report
