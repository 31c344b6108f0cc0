"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Scheduler configuration. All values come from environment variables."""

    # Storage
    database_path: Path = Field(default=Path("data/scheduler.db"))
    worker_database_path: Path = Field(default=Path("data/worker.db"))

    # Scheduler
    scheduler_timezone: str = Field(default="UTC")
    scheduler_poll_seconds: int = Field(default=60, gt=0)
    max_concurrent_tasks: int = Field(default=4, gt=0)
    task_timeout_seconds: int = Field(default=600, gt=0)
    history_retention_days: int = Field(default=30, ge=0)

    # Background runner
    background_worker_enabled: bool = Field(default=True)
    background_wake_seconds: int = Field(default=300, gt=0)

    # HTTP API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8080)

    # Notifications
    default_notification_channel: str = Field(default="log")
    notification_webhook_url: str = Field(default="")
    notification_recipient: str = Field(default="owner")

    # Task handlers
    data_extraction_url: str = Field(default="")

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)


settings = Settings()
