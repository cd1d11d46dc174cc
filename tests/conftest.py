import os
import asyncio
import uuid
from datetime import datetime, timezone
from typing import List, Optional

import pytest
from dotenv import load_dotenv
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, delete, select
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

# Ensure .env is loaded, then FORCE SQLite and test-friendly settings regardless of .env
load_dotenv()
os.environ["TEST_DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = os.environ["TEST_DATABASE_URL"]
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["PRECISE_TIMERS_ENABLED"] = "false"
os.environ["PUSH_PROVIDER"] = "webhook"
os.environ["PUSH_TIMEOUT_SECONDS"] = "2"
os.environ["DELIVERY_LOG_PATH"] = ""

SYNC_TEST_DB_URL = "sqlite:///./test.db"

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


# Initialize the database schema once per test session
@pytest.fixture(scope="session", autouse=True)
def _init_db_once():
    # Ensure a clean SQLite database file for each test session to avoid cross-test pollution
    db_path = os.path.abspath("test.db")
    if os.path.exists(db_path):
        os.remove(db_path)

    # Delay import until after the environment is configured
    from notifier import database
    asyncio.run(database.init_db_async())
    yield


@pytest.fixture(scope="session")
def sync_engine(_init_db_once):
    engine = create_engine(SYNC_TEST_DB_URL, poolclass=NullPool)
    yield engine
    engine.dispose()


# Every test starts from empty tables: the reconciler walks *all* accounts
@pytest.fixture(autouse=True)
def _clean_tables(sync_engine):
    from notifier.models import models

    with Session(sync_engine) as s:
        s.execute(delete(models.Reminder))
        s.execute(delete(models.Account))
        s.commit()
    yield


@pytest.fixture()
def seed_account(sync_engine):
    from notifier.models import models

    def _seed(
        user_id: str,
        push_token: Optional[str] = "tok-default",
        *,
        enabled: bool = True,
        invalid_at: Optional[datetime] = None,
    ) -> str:
        with Session(sync_engine) as s:
            s.add(
                models.Account(
                    user_id=user_id,
                    push_token=push_token,
                    notification_enabled=enabled,
                    target_invalid_at=invalid_at,
                )
            )
            s.commit()
        return user_id

    return _seed


@pytest.fixture()
def seed_reminder(sync_engine):
    from notifier.models import models

    def _seed(
        user_id: str,
        scheduled_for: datetime,
        *,
        type: str = "general",
        related_id: Optional[str] = None,
        status: str = "pending",
        title: str = "Reminder",
        body: str = "",
        tag: Optional[str] = None,
        reminder_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        sent_at: Optional[datetime] = None,
        superseded_at: Optional[datetime] = None,
    ) -> str:
        rid = reminder_id or uuid.uuid4().hex
        with Session(sync_engine) as s:
            s.add(
                models.Reminder(
                    id=rid,
                    user_id=user_id,
                    title=title,
                    body=body,
                    scheduled_for=scheduled_for,
                    type=type,
                    related_id=related_id,
                    tag=tag,
                    status=status,
                    created_at=created_at or NOW,
                    sent_at=sent_at,
                    superseded_at=superseded_at,
                )
            )
            s.commit()
        return rid

    return _seed


@pytest.fixture()
def statuses(sync_engine):
    """Map of reminder id -> status for one account (reads straight from the DB file)."""
    from notifier.models import models

    def _statuses(user_id: str) -> dict:
        with Session(sync_engine) as s:
            rows = s.execute(
                select(models.Reminder.id, models.Reminder.status).where(models.Reminder.user_id == user_id)
            ).all()
        return {rid: status for rid, status in rows}

    return _statuses


class FakeGateway:
    """Stand-in for send_push: records calls and answers with configurable results."""

    def __init__(self):
        self.calls: List[dict] = []
        self.fail_ids = set()
        self.invalid_tokens = set()
        self.raise_for_tokens = set()

    async def __call__(self, target, title, body, metadata=None):
        from notifier.utils.push import PushResult

        self.calls.append({"target": target, "title": title, "body": body, "metadata": metadata or {}})
        if target in self.raise_for_tokens:
            raise RuntimeError("gateway exploded")
        if target in self.invalid_tokens:
            return PushResult(ok=False, reason="target no longer valid", invalid_target=True)
        if (metadata or {}).get("reminder_id") in self.fail_ids:
            return PushResult(ok=False, reason="transport failure")
        return PushResult(ok=True)

    def sent_ids(self, target: Optional[str] = None) -> List[str]:
        return [
            c["metadata"].get("reminder_id")
            for c in self.calls
            if target is None or c["target"] == target
        ]


@pytest.fixture()
def fake_push(monkeypatch):
    from notifier.features.reminders import reconciler

    gateway = FakeGateway()
    monkeypatch.setattr(reconciler, "send_push", gateway)
    return gateway


# Shared TestClient for convenience
@pytest.fixture()
def client():
    from notifier.main import app
    with TestClient(app) as c:
        yield c
