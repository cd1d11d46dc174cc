from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List
from datetime import datetime, timezone
from enum import Enum


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ReminderType(str, Enum):
    task = "task"
    habit = "habit"
    general = "general"


class ReminderStatus(str, Enum):
    pending = "pending"
    sent = "sent"
    superseded = "superseded"


TERMINAL_STATUSES = (ReminderStatus.sent.value, ReminderStatus.superseded.value)

# Title and body are carried twice (notification + data) inside FCM's 4 KB message limit
TITLE_MAX_LENGTH = 200
BODY_MAX_LENGTH = 1000


# ---------------------------------------------------------------------------
# Reminder Schemas
# ---------------------------------------------------------------------------
class ReminderCreate(BaseModel):
    user_id: str = Field(..., min_length=1, description="Account that owns the reminder")
    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH, description="Display title of the push message")
    body: str = Field("", max_length=BODY_MAX_LENGTH, description="Display body of the push message")
    scheduled_for: datetime = Field(..., description="Moment the reminder becomes eligible to fire")
    type: ReminderType = Field(ReminderType.general, description="Kind of entity the reminder belongs to")
    related_id: Optional[str] = Field(None, description="Task or habit id; absent for general reminders")
    tag: Optional[str] = Field(None, description="Opaque client-side grouping tag")

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("title must not be blank")
        return v

    @field_validator("scheduled_for")
    @classmethod
    def _as_utc(cls, v: datetime) -> datetime:
        # Naive timestamps are taken as UTC
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _check_related_id(self):
        if self.related_id is not None and not self.related_id.strip():
            raise ValueError("related_id must not be blank")
        if self.type == ReminderType.general:
            self.related_id = None
        return self


class ReminderOut(BaseModel):
    id: str = Field(..., description="Reminder id, unique within the account")
    user_id: str
    title: str
    body: str
    scheduled_for: datetime
    type: ReminderType
    related_id: Optional[str] = None
    tag: Optional[str] = None
    status: ReminderStatus
    created_at: datetime
    sent_at: Optional[datetime] = None
    superseded_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ScheduleResponse(BaseModel):
    success: bool = True
    notification_id: str = Field(..., description="Id of the created reminder")


# ---------------------------------------------------------------------------
# Account Schemas
# ---------------------------------------------------------------------------
class RegisterTarget(BaseModel):
    user_id: str = Field(..., min_length=1)
    push_token: str = Field(..., min_length=1, description="Delivery target (FCM token or webhook URL)")


class DisableNotifications(BaseModel):
    user_id: str = Field(..., min_length=1)


class PushTestRequest(BaseModel):
    push_token: str = Field(..., min_length=1)
    title: Optional[str] = Field(None, max_length=TITLE_MAX_LENGTH)
    body: Optional[str] = Field(None, max_length=BODY_MAX_LENGTH)


class DeleteResult(BaseModel):
    success: bool = True
    deleted: int = 0


# ---------------------------------------------------------------------------
# Pass Reports
# ---------------------------------------------------------------------------
class ReconcileReport(BaseModel):
    accounts_total: int = 0
    accounts_processed: int = 0
    accounts_skipped: int = 0
    accounts_failed: int = 0
    sent: int = 0
    superseded: int = 0
    failed: int = 0
    skipped_pass: bool = Field(False, description="True when another pass was already running")
    failed_accounts: List[str] = Field(default_factory=list)


class SweepReport(BaseModel):
    accounts_total: int = 0
    accounts_failed: int = 0
    deleted: int = 0
    failed_accounts: List[str] = Field(default_factory=list)
