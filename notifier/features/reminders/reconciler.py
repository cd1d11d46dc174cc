"""
Reconciler: turn overdue pending reminders into deliveries and status transitions.

One pass visits every account with a delivery target. Per account, due
reminders for the same task/habit collapse to a single survivor (the latest
scheduled_for, lowest id on ties); its siblings are superseded without a push.
General reminders are delivered one by one. A failed push leaves the reminder
pending for the next tick. A failing account never aborts the others.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from notifier import crud
from notifier.config import get_settings
from notifier.schemas import ReconcileReport, ReminderType
from notifier.services.common import ensure_utc, utcnow
from notifier.utils.push import PushResult, send_push

logger = logging.getLogger("reconciler")

GROUPED_TYPES = (ReminderType.task.value, ReminderType.habit.value)


@dataclass
class AccountPlan:
    deliver: List = field(default_factory=list)
    supersede: List = field(default_factory=list)
    future: List = field(default_factory=list)


@dataclass
class AccountOutcome:
    sent: int = 0
    superseded: int = 0
    failed: int = 0
    target_invalidated: bool = False


def group_key(reminder) -> Optional[Tuple[str, str]]:
    """(type, related_id) for task/habit reminders that name their entity; None means singleton."""
    if reminder.type in GROUPED_TYPES and reminder.related_id:
        return (reminder.type, reminder.related_id)
    return None


def plan_account_reminders(reminders: Iterable, now: datetime) -> AccountPlan:
    """Split one account's pending reminders into deliver / supersede / future."""
    plan = AccountPlan()
    groups: Dict[Tuple[str, str], List] = {}

    # id order first, so max() below keeps the lowest id among equal scheduled_for
    for reminder in sorted(reminders, key=lambda r: r.id):
        if ensure_utc(reminder.scheduled_for) > now:
            plan.future.append(reminder)
            continue
        key = group_key(reminder)
        if key is None:
            plan.deliver.append(reminder)
        else:
            groups.setdefault(key, []).append(reminder)

    for members in groups.values():
        survivor = max(members, key=lambda r: ensure_utc(r.scheduled_for))
        plan.deliver.append(survivor)
        plan.supersede.extend(m for m in members if m is not survivor)

    plan.deliver.sort(key=lambda r: (ensure_utc(r.scheduled_for), r.id))
    return plan


def push_metadata(reminder) -> Dict[str, Optional[str]]:
    return {
        "type": reminder.type,
        "id": reminder.related_id,
        "reminder_id": reminder.id,
        "tag": reminder.tag,
    }


class Reconciler:
    """Runs reconciliation passes; guards against overlapping passes and per-account interleaving."""

    def __init__(
        self,
        *,
        concurrency: Optional[int] = None,
        disable_invalid_targets: Optional[bool] = None,
        on_settled: Optional[Callable[[List[str]], object]] = None,
    ):
        settings = get_settings()
        self.concurrency = max(1, concurrency or settings.reconcile_concurrency)
        self.disable_invalid_targets = (
            settings.disable_invalid_targets if disable_invalid_targets is None else disable_invalid_targets
        )
        # Called with the ids of reminders that left `pending` (e.g. to cancel fire timers)
        self.on_settled = on_settled
        self._pass_lock = asyncio.Lock()
        self._account_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @property
    def pass_in_progress(self) -> bool:
        return self._pass_lock.locked()

    @asynccontextmanager
    async def _account_lock(self, user_id: str):
        """Hold the account's lock; the entry is dropped once no one holds or awaits it."""
        lock = self._account_locks.get(user_id)
        if lock is None:
            lock = self._account_locks[user_id] = asyncio.Lock()
        self._lock_users[user_id] = self._lock_users.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[user_id] -= 1
            if not self._lock_users[user_id]:
                del self._lock_users[user_id]
                del self._account_locks[user_id]

    # ------------------------------------------------------------------
    # Pass over all accounts
    # ------------------------------------------------------------------

    async def run_pass(self, now: Optional[datetime] = None) -> ReconcileReport:
        report = ReconcileReport()
        if self._pass_lock.locked():
            logger.warning("Reconciliation pass already in progress; skipping this tick")
            report.skipped_pass = True
            return report

        async with self._pass_lock:
            now = ensure_utc(now) or utcnow()
            accounts = await crud.list_accounts_with_target()
            report.accounts_total = len(accounts)
            if not accounts:
                return report

            semaphore = asyncio.Semaphore(self.concurrency)

            async def _bounded(account):
                async with semaphore:
                    await self._process_account(account, now, report)

            await asyncio.gather(*(_bounded(a) for a in accounts))

        if report.sent or report.superseded or report.failed or report.accounts_failed:
            logger.info(
                "Reconciliation pass: accounts=%d processed=%d skipped=%d failed=%d | sent=%d superseded=%d delivery_failures=%d",
                report.accounts_total,
                report.accounts_processed,
                report.accounts_skipped,
                report.accounts_failed,
                report.sent,
                report.superseded,
                report.failed,
            )
        return report

    async def _process_account(self, account, now: datetime, report: ReconcileReport) -> None:
        if not account.has_usable_target:
            report.accounts_skipped += 1
            return
        try:
            outcome = await self.reconcile_account(account, now)
        except Exception as e:
            logger.error("Reconciliation failed for account %s: %s", account.user_id, e)
            report.accounts_failed += 1
            report.failed_accounts.append(account.user_id)
            return
        report.accounts_processed += 1
        report.sent += outcome.sent
        report.superseded += outcome.superseded
        report.failed += outcome.failed

    # ------------------------------------------------------------------
    # Single account
    # ------------------------------------------------------------------

    async def reconcile_user(self, user_id: str, now: Optional[datetime] = None) -> Optional[AccountOutcome]:
        """Reconcile one account right away (used by fire timers). Errors are logged, not raised."""
        now = ensure_utc(now) or utcnow()
        try:
            account = await crud.get_account(user_id)
            if account is None or not account.has_usable_target:
                logger.debug("Account %s has no usable delivery target; nothing to fire", user_id)
                return None
            return await self.reconcile_account(account, now)
        except Exception as e:
            logger.error("Reconciliation failed for account %s: %s", user_id, e)
            return None

    async def reconcile_account(self, account, now: datetime) -> AccountOutcome:
        user_id = account.user_id
        outcome = AccountOutcome()

        async with self._account_lock(user_id):
            pending = await crud.list_pending_reminders(user_id)
            plan = plan_account_reminders(pending, now)
            settled: List[str] = []

            if plan.supersede:
                ids = [r.id for r in plan.supersede]
                outcome.superseded = await crud.mark_reminders_superseded(ids, now)
                settled.extend(ids)
                logger.info("Superseded %d stale reminder(s) for account %s", outcome.superseded, user_id)

            for reminder in plan.deliver:
                result = await self._deliver(account.push_token, reminder)
                if result.ok:
                    outcome.sent += await crud.mark_reminders_sent([reminder.id], now)
                    settled.append(reminder.id)
                    continue

                outcome.failed += 1
                if not result.invalid_target:
                    logger.warning(
                        "Delivery failed for reminder %s (account %s): %s; will retry next tick",
                        reminder.id,
                        user_id,
                        result.reason,
                    )
                    continue

                logger.warning("Delivery target for account %s is no longer valid: %s", user_id, result.reason)
                if self.disable_invalid_targets:
                    outcome.target_invalidated = await crud.mark_target_invalid(user_id, account.push_token, now)
                    break

        if settled and self.on_settled is not None:
            try:
                self.on_settled(settled)
            except Exception as e:
                logger.warning("Settled-reminder hook failed for account %s: %s", user_id, e)
        return outcome

    async def _deliver(self, target: str, reminder) -> PushResult:
        try:
            return await send_push(target, reminder.title, reminder.body, push_metadata(reminder))
        except Exception as e:
            # send_push is not supposed to raise; treat anything that escapes as a failed delivery
            logger.error("Push gateway raised for reminder %s: %r", reminder.id, e)
            return PushResult(ok=False, reason=repr(e))
