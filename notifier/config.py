from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # App environment
    env: str = Field(default="development", alias="ENV")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database
    database_url: str = Field(default="sqlite+aiosqlite:///./notifier.db", alias="DATABASE_URL")

    # Scheduler driver
    scheduler_enabled: bool = Field(default=True, alias="SCHEDULER_ENABLED")
    reconcile_interval_seconds: int = Field(default=60, alias="RECONCILE_INTERVAL_SECONDS")
    sweep_interval_minutes: int = Field(default=60, alias="SWEEP_INTERVAL_MINUTES")
    # Fire a single-account pass exactly at scheduled_for (on top of the periodic pass)
    precise_timers_enabled: bool = Field(default=False, alias="PRECISE_TIMERS_ENABLED")

    # Reconciliation
    reconcile_concurrency: int = Field(default=8, alias="RECONCILE_CONCURRENCY")
    disable_invalid_targets: bool = Field(default=True, alias="DISABLE_INVALID_TARGETS")

    # Retention
    retention_hours: int = Field(default=24, alias="RETENTION_HOURS")

    # Push gateway: "fcm" or "webhook"
    push_provider: str = Field(default="fcm", alias="PUSH_PROVIDER")
    push_timeout_seconds: float = Field(default=10.0, alias="PUSH_TIMEOUT_SECONDS")
    fcm_project_id: Optional[str] = Field(default=None, alias="FCM_PROJECT_ID")
    fcm_credentials_json: Optional[str] = Field(default=None, alias="FCM_CREDENTIALS_JSON")  # path or inline JSON

    # Delivery audit log (JSON lines); empty string disables it
    delivery_log_path: str = Field(default="logs/deliveries.jsonl", alias="DELIVERY_LOG_PATH")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
