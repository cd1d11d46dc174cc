"""
Reminder feature module: reconciliation, delivery and retention of scheduled push reminders
"""
from .service import (
    start_reminder_scheduler,
    stop_reminder_scheduler,
    is_scheduler_running,
    get_reconciler,
    get_timers,
)

__all__ = [
    "start_reminder_scheduler",
    "stop_reminder_scheduler",
    "is_scheduler_running",
    "get_reconciler",
    "get_timers",
]
