"""Slack Bolt App initialization and Socket Mode startup.

``create_slack_app`` builds the Bolt ``App`` and wires the event listeners
and slash commands to the core services; ``start_slack_app`` runs it in
Socket Mode.
"""

from __future__ import annotations

import os
from typing import Any

import structlog
from slack_bolt import App
from slack_bolt.adapter.socket_mode import SocketModeHandler

from ticketflow.slack.commands import register_commands
from ticketflow.slack.listeners import register_listeners

logger = structlog.get_logger()


def create_slack_app(services: dict[str, Any], bot_token: str | None = None) -> App:
    """Create a Bolt App with listeners and commands registered.

    Args:
        services: The services dict the handlers dispatch to.
        bot_token: The Slack Bot User OAuth Token.  Falls back to the
            ``SLACK_BOT_TOKEN`` environment variable if not provided.
    """
    app = App(token=bot_token or os.environ["SLACK_BOT_TOKEN"])
    register_listeners(app, services)
    register_commands(app, services)
    logger.info("Registered Slack listeners and /ack, /workflow, /mentions commands")
    return app


def start_slack_app(app: App, app_token: str | None = None) -> None:
    """Start the Slack app in Socket Mode (blocks until stopped).

    Args:
        app: The Bolt ``App`` instance to start.
        app_token: The Slack App-Level Token with ``connections:write``
            scope.  Falls back to ``SLACK_APP_TOKEN`` if not provided.
    """
    handler = SocketModeHandler(app, app_token or os.environ["SLACK_APP_TOKEN"])
    handler.start()  # type: ignore[no-untyped-call]
