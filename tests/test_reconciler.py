"""
Reconciliation passes against the test database, with the push gateway faked
"""
import asyncio
from datetime import timedelta

import pytest

from notifier import crud
from notifier.features.reminders.reconciler import Reconciler

from conftest import NOW


def _minutes(m):
    return NOW - timedelta(minutes=m)


@pytest.mark.asyncio
async def test_dedup_sends_latest_and_supersedes_rest(seed_account, seed_reminder, statuses, fake_push):
    seed_account("u_dedup", "tok-dedup")
    r60 = seed_reminder("u_dedup", _minutes(45), type="task", related_id="T1", title="Due in 1 hour")
    r30 = seed_reminder("u_dedup", _minutes(15), type="task", related_id="T1", title="Due in 30 minutes")
    r15 = seed_reminder("u_dedup", _minutes(0), type="task", related_id="T1", title="Due in 15 minutes")

    report = await Reconciler().run_pass(now=NOW)

    assert statuses("u_dedup") == {r60: "superseded", r30: "superseded", r15: "sent"}
    assert fake_push.sent_ids() == [r15]
    assert fake_push.calls[0]["target"] == "tok-dedup"
    assert fake_push.calls[0]["metadata"]["id"] == "T1"
    assert report.sent == 1 and report.superseded == 2

    sent = await crud.get_reminder("u_dedup", r15)
    superseded = await crud.get_reminder("u_dedup", r60)
    assert sent.sent_at is not None and sent.superseded_at is None
    assert superseded.superseded_at is not None and superseded.sent_at is None


@pytest.mark.asyncio
async def test_general_reminders_are_never_superseded(seed_account, seed_reminder, statuses, fake_push):
    seed_account("u_gen", "tok-gen")
    g1 = seed_reminder("u_gen", _minutes(10), title="Drink water")
    g2 = seed_reminder("u_gen", _minutes(5), title="Stretch")

    await Reconciler().run_pass(now=NOW)

    assert statuses("u_gen") == {g1: "sent", g2: "sent"}
    assert sorted(fake_push.sent_ids()) == sorted([g1, g2])


@pytest.mark.asyncio
async def test_general_failures_are_independent(seed_account, seed_reminder, statuses, fake_push):
    seed_account("u_gen2", "tok-gen2")
    g1 = seed_reminder("u_gen2", _minutes(10))
    g2 = seed_reminder("u_gen2", _minutes(5))
    fake_push.fail_ids.add(g1)

    await Reconciler().run_pass(now=NOW)

    assert statuses("u_gen2") == {g1: "pending", g2: "sent"}


@pytest.mark.asyncio
async def test_future_reminder_stays_pending(seed_account, seed_reminder, statuses, fake_push):
    seed_account("u_future", "tok-future")
    future = seed_reminder("u_future", NOW + timedelta(minutes=10), type="task", related_id="T1")
    due = seed_reminder("u_future", _minutes(1), type="task", related_id="T1")

    await Reconciler().run_pass(now=NOW)

    assert statuses("u_future") == {future: "pending", due: "sent"}
    assert fake_push.sent_ids() == [due]


@pytest.mark.asyncio
async def test_failed_delivery_is_retried_once_then_sent(seed_account, seed_reminder, statuses, fake_push):
    seed_account("u_retry", "tok-retry")
    rid = seed_reminder("u_retry", _minutes(2), type="habit", related_id="H1")
    reconciler = Reconciler()

    fake_push.fail_ids.add(rid)
    first = await reconciler.run_pass(now=NOW)
    assert statuses("u_retry") == {rid: "pending"}
    assert first.failed == 1

    fake_push.fail_ids.clear()
    await reconciler.run_pass(now=NOW + timedelta(minutes=1))
    assert statuses("u_retry") == {rid: "sent"}

    await reconciler.run_pass(now=NOW + timedelta(minutes=2))
    assert fake_push.sent_ids() == [rid, rid]  # one failed attempt, one success, nothing after


@pytest.mark.asyncio
async def test_newer_due_sibling_supersedes_failed_one(seed_account, seed_reminder, statuses, fake_push):
    seed_account("u_newer", "tok-newer")
    old = seed_reminder("u_newer", _minutes(30), type="task", related_id="T2")
    reconciler = Reconciler()

    fake_push.fail_ids.add(old)
    await reconciler.run_pass(now=NOW - timedelta(minutes=20))
    assert statuses("u_newer") == {old: "pending"}

    newer = seed_reminder("u_newer", _minutes(15), type="task", related_id="T2")
    await reconciler.run_pass(now=NOW)

    assert statuses("u_newer") == {old: "superseded", newer: "sent"}


@pytest.mark.asyncio
async def test_store_failure_in_one_account_does_not_stop_others(
    seed_account, seed_reminder, statuses, fake_push, monkeypatch
):
    seed_account("u_broken", "tok-broken")
    seed_account("u_healthy", "tok-healthy")
    broken = seed_reminder("u_broken", _minutes(5))
    healthy_old = seed_reminder("u_healthy", _minutes(10), type="task", related_id="T1")
    healthy_new = seed_reminder("u_healthy", _minutes(5), type="task", related_id="T1")

    original = crud.list_pending_reminders

    async def flaky_list_pending(user_id):
        if user_id == "u_broken":
            raise RuntimeError("store unavailable")
        return await original(user_id)

    monkeypatch.setattr(crud, "list_pending_reminders", flaky_list_pending)

    report = await Reconciler().run_pass(now=NOW)

    assert statuses("u_broken") == {broken: "pending"}
    assert statuses("u_healthy") == {healthy_old: "superseded", healthy_new: "sent"}
    assert report.accounts_failed == 1
    assert report.failed_accounts == ["u_broken"]
    assert report.accounts_processed == 1


@pytest.mark.asyncio
async def test_gateway_exception_is_treated_as_failure(seed_account, seed_reminder, statuses, fake_push):
    seed_account("u_boom", "tok-boom")
    seed_account("u_ok", "tok-ok")
    boom = seed_reminder("u_boom", _minutes(1))
    ok = seed_reminder("u_ok", _minutes(1))
    fake_push.raise_for_tokens.add("tok-boom")

    report = await Reconciler().run_pass(now=NOW)

    assert statuses("u_boom") == {boom: "pending"}
    assert statuses("u_ok") == {ok: "sent"}
    assert report.accounts_failed == 0
    assert report.failed == 1


@pytest.mark.asyncio
async def test_accounts_without_usable_target_are_skipped(seed_account, seed_reminder, statuses, fake_push):
    seed_account("u_disabled", "tok-disabled", enabled=False)
    seed_account("u_invalid", "tok-invalid", invalid_at=NOW - timedelta(days=1))
    seed_account("u_no_token", None)
    a = seed_reminder("u_disabled", _minutes(1))
    b = seed_reminder("u_invalid", _minutes(1))
    c = seed_reminder("u_no_token", _minutes(1))

    report = await Reconciler().run_pass(now=NOW)

    assert statuses("u_disabled") == {a: "pending"}
    assert statuses("u_invalid") == {b: "pending"}
    assert statuses("u_no_token") == {c: "pending"}
    assert fake_push.calls == []
    # accounts without a token are not even enumerated
    assert report.accounts_total == 2
    assert report.accounts_skipped == 2


@pytest.mark.asyncio
async def test_no_accounts_is_a_noop(fake_push):
    report = await Reconciler().run_pass(now=NOW)
    assert report.accounts_total == 0
    assert fake_push.calls == []


@pytest.mark.asyncio
async def test_invalid_target_disables_account(seed_account, seed_reminder, statuses, fake_push):
    seed_account("u_gone", "tok-gone")
    first = seed_reminder("u_gone", _minutes(10))
    second = seed_reminder("u_gone", _minutes(5))
    fake_push.invalid_tokens.add("tok-gone")
    reconciler = Reconciler(disable_invalid_targets=True)

    await reconciler.run_pass(now=NOW)

    # the first attempt reveals the bad token; the second is not attempted
    assert len(fake_push.calls) == 1
    assert statuses("u_gone") == {first: "pending", second: "pending"}
    account = await crud.get_account("u_gone")
    assert account.target_invalid_at is not None

    await reconciler.run_pass(now=NOW + timedelta(minutes=1))
    assert len(fake_push.calls) == 1

    # re-registration clears the flag and delivery resumes
    await crud.upsert_account("u_gone", "tok-fresh")
    await reconciler.run_pass(now=NOW + timedelta(minutes=2))
    assert statuses("u_gone") == {first: "sent", second: "sent"}


@pytest.mark.asyncio
async def test_invalid_target_only_logged_when_disabling_is_off(seed_account, seed_reminder, statuses, fake_push):
    seed_account("u_keep", "tok-keep")
    seed_reminder("u_keep", _minutes(10))
    seed_reminder("u_keep", _minutes(5))
    fake_push.invalid_tokens.add("tok-keep")

    await Reconciler(disable_invalid_targets=False).run_pass(now=NOW)

    assert len(fake_push.calls) == 2
    account = await crud.get_account("u_keep")
    assert account.target_invalid_at is None


@pytest.mark.asyncio
async def test_overlapping_pass_is_skipped(seed_account, seed_reminder, monkeypatch):
    from notifier.features.reminders import reconciler as reconciler_module
    from notifier.utils.push import PushResult

    seed_account("u_slow", "tok-slow")
    seed_reminder("u_slow", _minutes(1))
    release = asyncio.Event()
    calls = []

    async def slow_push(target, title, body, metadata=None):
        calls.append(metadata["reminder_id"])
        await release.wait()
        return PushResult(ok=True)

    monkeypatch.setattr(reconciler_module, "send_push", slow_push)
    reconciler = Reconciler()

    first = asyncio.create_task(reconciler.run_pass(now=NOW))
    while not calls:
        await asyncio.sleep(0.01)
    assert reconciler.pass_in_progress

    second = await reconciler.run_pass(now=NOW)
    assert second.skipped_pass is True

    release.set()
    report = await first
    assert report.sent == 1
    assert len(calls) == 1
    assert not reconciler.pass_in_progress


@pytest.mark.asyncio
async def test_single_account_run_waits_for_account_lock(seed_account, seed_reminder, statuses, monkeypatch):
    from notifier.features.reminders import reconciler as reconciler_module
    from notifier.utils.push import PushResult

    seed_account("u_lock", "tok-lock")
    rid = seed_reminder("u_lock", _minutes(1))
    release = asyncio.Event()
    calls = []

    async def slow_push(target, title, body, metadata=None):
        calls.append(metadata["reminder_id"])
        await release.wait()
        return PushResult(ok=True)

    monkeypatch.setattr(reconciler_module, "send_push", slow_push)
    reconciler = Reconciler()

    full_pass = asyncio.create_task(reconciler.run_pass(now=NOW))
    while not calls:
        await asyncio.sleep(0.01)
    single = asyncio.create_task(reconciler.reconcile_user("u_lock", now=NOW))
    await asyncio.sleep(0.05)
    release.set()
    await full_pass
    outcome = await single

    assert calls == [rid]
    assert outcome.sent == 0
    assert statuses("u_lock") == {rid: "sent"}
    assert reconciler._account_locks == {}


@pytest.mark.asyncio
async def test_settled_hook_receives_sent_and_superseded_ids(seed_account, seed_reminder, fake_push):
    seed_account("u_hook", "tok-hook")
    old = seed_reminder("u_hook", _minutes(10), type="task", related_id="T1")
    new = seed_reminder("u_hook", _minutes(5), type="task", related_id="T1")
    settled = []

    await Reconciler(on_settled=settled.extend).run_pass(now=NOW)

    assert sorted(settled) == sorted([old, new])


@pytest.mark.asyncio
async def test_reconcile_user_ignores_unknown_account(fake_push):
    assert await Reconciler().reconcile_user("nobody", now=NOW) is None
    assert fake_push.calls == []


@pytest.mark.asyncio
async def test_rejected_message_does_not_disable_account(seed_account, seed_reminder, statuses, monkeypatch):
    from firebase_admin import exceptions as firebase_exceptions, messaging

    from notifier.utils import push

    seed_account("u_big", "tok-big")
    rid = seed_reminder("u_big", _minutes(1), body="x" * 5000)

    def too_big(message):
        raise firebase_exceptions.InvalidArgumentError("Message payload too big: data exceeds 4096 bytes")

    monkeypatch.setattr(push.get_settings(), "push_provider", "fcm")
    monkeypatch.setattr(push, "_ensure_firebase_initialized", lambda: True)
    monkeypatch.setattr(messaging, "send", too_big)

    report = await Reconciler(disable_invalid_targets=True).run_pass(now=NOW)

    assert report.failed == 1
    assert statuses("u_big") == {rid: "pending"}
    account = await crud.get_account("u_big")
    assert account.target_invalid_at is None
    assert account.has_usable_target


@pytest.mark.asyncio
async def test_reregistration_during_failing_send_keeps_new_target(seed_account, seed_reminder, statuses, monkeypatch):
    from notifier.features.reminders import reconciler as reconciler_module
    from notifier.utils.push import PushResult

    seed_account("u_race", "tok-old")
    rid = seed_reminder("u_race", _minutes(1))

    async def stale_token_push(target, title, body, metadata=None):
        # the user registers a fresh token while the send to the old one is in flight
        await crud.upsert_account("u_race", "tok-new")
        return PushResult(ok=False, reason="target no longer valid", invalid_target=True)

    monkeypatch.setattr(reconciler_module, "send_push", stale_token_push)

    await Reconciler(disable_invalid_targets=True).run_pass(now=NOW)

    account = await crud.get_account("u_race")
    assert account.push_token == "tok-new"
    assert account.target_invalid_at is None
    assert statuses("u_race") == {rid: "pending"}


@pytest.mark.asyncio
async def test_account_locks_are_released_after_pass(seed_account, seed_reminder, fake_push):
    for i in range(3):
        seed_account(f"u_locks_{i}", f"tok-locks-{i}")
        seed_reminder(f"u_locks_{i}", _minutes(1))
    reconciler = Reconciler()

    report = await reconciler.run_pass(now=NOW)

    assert report.sent == 3
    assert reconciler._account_locks == {}
    assert reconciler._lock_users == {}
