"""
Fire timers: one-shot scheduler jobs keyed by reminder id.

Each armed timer runs a single-account reconciliation at the reminder's
scheduled_for. The periodic pass stays the source of truth, so a timer that
fires late, twice, or for an already-settled reminder does nothing harmful.
"""
import logging
from typing import Awaitable, Callable, Iterable, List, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.date import DateTrigger

from notifier.services.common import ensure_utc

logger = logging.getLogger("reminder_timers")

JOB_PREFIX = "reminder-fire:"


def job_id_for(reminder_id: str) -> str:
    return f"{JOB_PREFIX}{reminder_id}"


class FireTimers:
    def __init__(self, scheduler, fire: Callable[[str], Awaitable[object]]):
        self._scheduler = scheduler
        self._fire = fire

    def arm(self, reminder) -> Optional[str]:
        if reminder.status != "pending":
            return None
        job_id = job_id_for(reminder.id)
        self._scheduler.add_job(
            self._fire,
            trigger=DateTrigger(run_date=ensure_utc(reminder.scheduled_for)),
            args=[reminder.user_id],
            id=job_id,
            name=f"Fire reminder {reminder.id}",
            replace_existing=True,
            misfire_grace_time=None,
        )
        logger.debug("Armed fire timer for reminder %s at %s", reminder.id, reminder.scheduled_for)
        return job_id

    def cancel(self, reminder_id: str) -> bool:
        try:
            self._scheduler.remove_job(job_id_for(reminder_id))
        except JobLookupError:
            return False
        logger.debug("Cancelled fire timer for reminder %s", reminder_id)
        return True

    def cancel_many(self, reminder_ids: Iterable[str]) -> int:
        return sum(1 for rid in reminder_ids if self.cancel(rid))

    def armed_ids(self) -> List[str]:
        return [
            job.id[len(JOB_PREFIX):]
            for job in self._scheduler.get_jobs()
            if job.id.startswith(JOB_PREFIX)
        ]
