"""Centralized, typed configuration using pydantic-settings.

Provides a single ``Settings`` class backed by ``.env`` file and environment
variables, a cached ``get_settings()`` accessor, and a ``validate_credentials()``
startup gate that enforces credential presence in production mode.

This module has no imports from the ``ticketflow`` package so every other
module can depend on it.
"""

from __future__ import annotations

import sys
from functools import lru_cache
from pathlib import Path

import structlog
from pydantic import Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()


class Settings(BaseSettings):
    """Application settings loaded from environment variables and ``.env`` file.

    ``SecretStr`` fields prevent accidental leaks in logs or error output.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- General ---------------------------------------------------------------
    production: bool = False
    http_port: int = 8000

    # -- Slack (secrets) -------------------------------------------------------
    slack_bot_token: SecretStr = SecretStr("")
    slack_app_token: SecretStr = SecretStr("")
    slack_error_channel: str = ""

    # -- Observability ---------------------------------------------------------
    sentry_dsn: str = ""

    # -- Escalation ------------------------------------------------------------
    rules_config_path: Path = Path("config/escalation_rules.yaml")
    mention_history_days: int = Field(default=7, gt=0)
    mention_history_limit: int = Field(default=100, gt=0)
    notification_ttl_minutes: float = Field(default=30, gt=0)

    # -- Workflows -------------------------------------------------------------
    default_workflow_timeout_seconds: float = Field(default=3600, gt=0)
    stale_execution_hours: float = Field(default=24, gt=0)

    # -- Threads ---------------------------------------------------------------
    thread_inactive_hours: float = Field(default=24, gt=0)
    thread_activity_limit: int = Field(default=200, gt=0)
    thread_message_limit: int = Field(default=50, gt=0)

    # -- Background sweeps -----------------------------------------------------
    cleanup_interval_seconds: float = Field(default=3600, gt=0)


@lru_cache
def get_settings() -> Settings:
    """Return a cached ``Settings`` instance.

    Environment variables are parsed exactly once.  Call
    ``get_settings.cache_clear()`` in tests to reset.
    """
    try:
        return Settings()
    except ValidationError as exc:
        # Only the structured errors list; the exception text may hold secrets.
        logger.error("settings_validation_failed", errors=exc.errors())
        sys.exit(1)


def validate_credentials(settings: Settings) -> None:
    """Enforce credential presence at startup.

    In **production** mode the application exits with a clear error block if
    a Slack token is missing.  In **development** mode each missing
    credential is logged as a warning and startup continues.

    Args:
        settings: The loaded application settings.
    """
    errors: list[str] = []

    if not settings.slack_bot_token.get_secret_value():
        errors.append("SLACK_BOT_TOKEN is empty or not set")

    if not settings.slack_app_token.get_secret_value():
        errors.append("SLACK_APP_TOKEN is empty or not set")

    if not errors:
        logger.info("credential_validation_passed")
        return

    if settings.production:
        for err in errors:
            logger.error("credential_missing", detail=err)
        print("\n=== STARTUP FAILED ===", file=sys.stderr)
        print("Missing required credentials for production mode:", file=sys.stderr)
        for err in errors:
            print(f"  - {err}", file=sys.stderr)
        print("======================\n", file=sys.stderr)
        sys.exit(1)
    else:
        for err in errors:
            logger.warning("credential_missing_dev", detail=err)
