import logging
from typing import List, Optional
from notifier import crud
from notifier.features.reminders import service as reminder_service
from notifier.schemas import ReminderCreate
from notifier.utils.push import PushResult, send_push

logger = logging.getLogger("services.notification")


async def register_target(user_id: str, push_token: str):
    return await crud.upsert_account(user_id, push_token)


async def disable_notifications(user_id: str) -> bool:
    return await crud.disable_notifications(user_id)


async def schedule_reminder(data: ReminderCreate):
    reminder = await crud.create_reminder(data)
    timers = reminder_service.get_timers()
    if timers is not None:
        timers.arm(reminder)
    return reminder


async def list_reminders(user_id: str, limit: int = 50) -> List:
    return await crud.list_reminders(user_id, limit)


async def cancel_reminder(user_id: str, reminder_id: str) -> bool:
    deleted = await crud.delete_reminder(user_id, reminder_id)
    timers = reminder_service.get_timers()
    if deleted and timers is not None:
        timers.cancel(reminder_id)
    return deleted


async def cancel_related_reminders(user_id: str, reminder_type: str, related_id: str) -> int:
    ids = await crud.delete_related_reminders(user_id, reminder_type, related_id)
    timers = reminder_service.get_timers()
    if timers is not None:
        timers.cancel_many(ids)
    return len(ids)


async def send_test_push(push_token: str, title: Optional[str] = None, body: Optional[str] = None) -> PushResult:
    return await send_push(
        push_token,
        title or "Test Notification",
        body or "This is a test notification from TimeFlow!",
        {"type": "test"},
    )
