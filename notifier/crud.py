import logging
from datetime import datetime
from typing import Optional, List, Iterable
from sqlalchemy import select, update, delete, distinct
from notifier import database
from notifier.models import models as db
from notifier.schemas import ReminderCreate, ReminderStatus, TERMINAL_STATUSES
from notifier.services.common import utcnow

logger = logging.getLogger("crud")


# --- Generic DB helpers ------------------------------------------------------

async def _commit_refresh(session, obj):
    await session.commit()
    await session.refresh(obj)
    return obj


# --- Account Operations ------------------------------------------------------

async def upsert_account(user_id: str, push_token: str) -> db.Account:
    """Register (or replace) the delivery target for an account and re-enable it."""
    async with database.AsyncSessionLocal() as dbs:
        result = await dbs.execute(select(db.Account).where(db.Account.user_id == user_id))
        account = result.scalar_one_or_none()

        if account:
            account.push_token = push_token
            account.notification_enabled = True
            account.target_invalid_at = None
            account.updated_at = utcnow()
            await _commit_refresh(dbs, account)
            logger.info("Updated delivery target for account %s", user_id)
        else:
            account = db.Account(user_id=user_id, push_token=push_token, notification_enabled=True)
            dbs.add(account)
            await _commit_refresh(dbs, account)
            logger.info("Registered account %s", user_id)

        return account


async def get_account(user_id: str) -> Optional[db.Account]:
    async with database.AsyncSessionLocal() as dbs:
        result = await dbs.execute(select(db.Account).where(db.Account.user_id == user_id))
        return result.scalar_one_or_none()


async def disable_notifications(user_id: str) -> bool:
    async with database.AsyncSessionLocal() as dbs:
        result = await dbs.execute(
            update(db.Account)
            .where(db.Account.user_id == user_id)
            .values(notification_enabled=False, updated_at=utcnow())
        )
        await dbs.commit()
        if not result.rowcount:
            logger.warning("Account %s not found; nothing to disable", user_id)
            return False
        logger.info("Disabled notifications for account %s", user_id)
        return True


async def mark_target_invalid(user_id: str, failed_token: str, now: datetime) -> bool:
    """Flag the account's delivery target as rejected by the gateway.

    Only applies while `failed_token` is still the registered target, so a
    token replaced mid-pass is never flagged by the old token's failure.
    """
    async with database.AsyncSessionLocal() as dbs:
        result = await dbs.execute(
            update(db.Account)
            .where(db.Account.user_id == user_id)
            .where(db.Account.push_token == failed_token)
            .values(target_invalid_at=now, updated_at=now)
        )
        await dbs.commit()
        if not result.rowcount:
            logger.info("Delivery target for account %s changed since the failed send; not flagging", user_id)
            return False
        logger.warning("Marked delivery target invalid for account %s", user_id)
        return True


async def list_accounts_with_target() -> List[db.Account]:
    """All accounts with a registered delivery target (enabled or not)."""
    async with database.AsyncSessionLocal() as dbs:
        result = await dbs.execute(
            select(db.Account).where(db.Account.push_token.isnot(None)).order_by(db.Account.id)
        )
        return list(result.scalars())


async def list_account_ids_with_reminders() -> List[str]:
    async with database.AsyncSessionLocal() as dbs:
        result = await dbs.execute(select(distinct(db.Reminder.user_id)))
        return sorted(result.scalars())


# --- Reminder Operations -----------------------------------------------------

async def create_reminder(data: ReminderCreate) -> db.Reminder:
    async with database.AsyncSessionLocal() as dbs:
        reminder = db.Reminder(
            user_id=data.user_id,
            title=data.title,
            body=data.body,
            scheduled_for=data.scheduled_for,
            type=data.type.value,
            related_id=data.related_id,
            tag=data.tag,
            status=ReminderStatus.pending.value,
        )
        dbs.add(reminder)
        await _commit_refresh(dbs, reminder)
        logger.info(
            "Created %s reminder %s for account %s (scheduled_for=%s)",
            reminder.type,
            reminder.id,
            data.user_id,
            data.scheduled_for.isoformat(),
        )
        return reminder


async def get_reminder(user_id: str, reminder_id: str) -> Optional[db.Reminder]:
    async with database.AsyncSessionLocal() as dbs:
        result = await dbs.execute(
            select(db.Reminder)
            .where(db.Reminder.user_id == user_id)
            .where(db.Reminder.id == reminder_id)
        )
        return result.scalar_one_or_none()


async def list_reminders(user_id: str, limit: int = 50) -> List[db.Reminder]:
    async with database.AsyncSessionLocal() as dbs:
        result = await dbs.execute(
            select(db.Reminder)
            .where(db.Reminder.user_id == user_id)
            .order_by(db.Reminder.scheduled_for.asc())
            .limit(limit)
        )
        reminders = list(result.scalars())
        logger.info("Fetched %d reminders for account %s", len(reminders), user_id)
        return reminders


async def list_pending_reminders(user_id: str) -> List[db.Reminder]:
    async with database.AsyncSessionLocal() as dbs:
        result = await dbs.execute(
            select(db.Reminder)
            .where(db.Reminder.user_id == user_id)
            .where(db.Reminder.status == ReminderStatus.pending.value)
        )
        return list(result.scalars())


async def list_terminal_reminders(user_id: str) -> List[db.Reminder]:
    async with database.AsyncSessionLocal() as dbs:
        result = await dbs.execute(
            select(db.Reminder)
            .where(db.Reminder.user_id == user_id)
            .where(db.Reminder.status.in_(TERMINAL_STATUSES))
        )
        return list(result.scalars())


async def _transition(ids: Iterable[str], status: ReminderStatus, values: dict) -> int:
    """Move pending reminders to a terminal status; rows no longer pending are left alone."""
    ids = list(ids)
    if not ids:
        return 0
    async with database.AsyncSessionLocal() as dbs:
        result = await dbs.execute(
            update(db.Reminder)
            .where(db.Reminder.id.in_(ids))
            .where(db.Reminder.status == ReminderStatus.pending.value)
            .values(status=status.value, **values)
        )
        await dbs.commit()
        return result.rowcount or 0


async def mark_reminders_sent(ids: Iterable[str], now: datetime) -> int:
    return await _transition(ids, ReminderStatus.sent, {"sent_at": now})


async def mark_reminders_superseded(ids: Iterable[str], now: datetime) -> int:
    return await _transition(ids, ReminderStatus.superseded, {"superseded_at": now})


async def delete_reminder(user_id: str, reminder_id: str) -> bool:
    async with database.AsyncSessionLocal() as dbs:
        result = await dbs.execute(
            delete(db.Reminder)
            .where(db.Reminder.user_id == user_id)
            .where(db.Reminder.id == reminder_id)
        )
        await dbs.commit()
        if not result.rowcount:
            logger.warning("Reminder %s not found for account %s", reminder_id, user_id)
            return False
        logger.info("Deleted reminder %s for account %s", reminder_id, user_id)
        return True


async def delete_related_reminders(user_id: str, reminder_type: str, related_id: str) -> List[str]:
    """Delete every reminder tied to one task/habit. Returns the deleted ids."""
    async with database.AsyncSessionLocal() as dbs:
        result = await dbs.execute(
            select(db.Reminder.id)
            .where(db.Reminder.user_id == user_id)
            .where(db.Reminder.type == reminder_type)
            .where(db.Reminder.related_id == related_id)
        )
        ids = list(result.scalars())
        if ids:
            await dbs.execute(delete(db.Reminder).where(db.Reminder.id.in_(ids)))
            await dbs.commit()
        logger.info(
            "Bulk deleted %d reminder(s) for account %s (%s %s)", len(ids), user_id, reminder_type, related_id
        )
        return ids


async def delete_terminal_reminders(ids: Iterable[str]) -> int:
    """Delete the given reminders, skipping any that are still pending."""
    ids = list(ids)
    if not ids:
        return 0
    async with database.AsyncSessionLocal() as dbs:
        result = await dbs.execute(
            delete(db.Reminder)
            .where(db.Reminder.id.in_(ids))
            .where(db.Reminder.status.in_(TERMINAL_STATUSES))
        )
        await dbs.commit()
        return result.rowcount or 0
