import logging
from typing import List
from fastapi import APIRouter, HTTPException, Query
from notifier import schemas
from notifier.features.reminders import service as reminder_service
from notifier.features.reminders.sweeper import run_retention_sweep
from notifier.services import notification_service

logger = logging.getLogger("routes")
router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.post("/register")
async def register_target(payload: schemas.RegisterTarget):
    await notification_service.register_target(payload.user_id, payload.push_token)
    return {"success": True}


@router.post("/disable")
async def disable_notifications(payload: schemas.DisableNotifications):
    if not await notification_service.disable_notifications(payload.user_id):
        raise HTTPException(status_code=404, detail="Account not found")
    return {"success": True}


@router.post("/schedule", response_model=schemas.ScheduleResponse)
async def schedule_notification(payload: schemas.ReminderCreate):
    reminder = await notification_service.schedule_reminder(payload)
    return {"success": True, "notification_id": reminder.id}


@router.post("/test")
async def test_notification(payload: schemas.PushTestRequest):
    result = await notification_service.send_test_push(payload.push_token, payload.title, payload.body)
    return {"success": result.ok, "reason": result.reason, "invalid_target": result.invalid_target}


@router.post("/reconcile", response_model=schemas.ReconcileReport)
async def reconcile_now():
    return await reminder_service.get_reconciler().run_pass()


@router.post("/sweep", response_model=schemas.SweepReport)
async def sweep_now():
    return await run_retention_sweep()


@router.get("/{user_id}", response_model=List[schemas.ReminderOut])
async def list_notifications(user_id: str, limit: int = Query(50, ge=1, le=500)):
    return await notification_service.list_reminders(user_id, limit)


@router.delete("/{user_id}/related/{reminder_type}/{related_id}", response_model=schemas.DeleteResult)
async def delete_related_notifications(user_id: str, reminder_type: schemas.ReminderType, related_id: str):
    count = await notification_service.cancel_related_reminders(user_id, reminder_type.value, related_id)
    return {"success": True, "deleted": count}


@router.delete("/{user_id}/{notification_id}", response_model=schemas.DeleteResult)
async def delete_notification(user_id: str, notification_id: str):
    if not await notification_service.cancel_reminder(user_id, notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"success": True, "deleted": 1}
