"""Shared fixtures for live integration tests.

Provides session-scoped fixtures that create real Slack clients using
credentials from environment variables (via Settings). Each fixture skips
the test if the required credentials are not available.
"""

from __future__ import annotations

import pytest

from ticketflow.config import Settings


@pytest.fixture(scope="session")
def _live_settings() -> Settings:
    """Load application settings from environment for live tests."""
    return Settings()


@pytest.fixture(scope="session")
def live_channel(_live_settings: Settings) -> str:
    """Channel the live tests post into (the error channel), skip if not set."""
    if not _live_settings.slack_error_channel:
        pytest.skip("SLACK_ERROR_CHANNEL not configured")
    return _live_settings.slack_error_channel


@pytest.fixture(scope="session")
def slack_messenger(_live_settings: Settings):
    """Create a real SlackMessenger using the bot token from environment.

    Skips if the Slack bot token is not configured.
    """
    token = _live_settings.slack_bot_token.get_secret_value()
    if not token:
        pytest.skip("SLACK_BOT_TOKEN not configured")

    from ticketflow.slack.client import SlackMessenger

    return SlackMessenger(bot_token=token, error_channel=_live_settings.slack_error_channel)
