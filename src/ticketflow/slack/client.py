"""Slack Web API collaborators for messaging and identity lookup.

Wraps ``slack_sdk.WebClient``.  Web API calls are blocking, so the async
methods run them with ``asyncio.to_thread``; each call is retried through
:func:`~ticketflow.resilience.retry.resilient_api_call`.
"""

from __future__ import annotations

import asyncio
import os
from typing import Any

import structlog
from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from ticketflow.resilience.retry import resilient_api_call
from ticketflow.slack.models import UNKNOWN_NAME, DeliveryRef, MessageContent

logger = structlog.get_logger()


class SlackMessenger:
    """Sends messages and reactions through the Slack Web API.

    Delivery failures propagate as :class:`SlackApiError` once retries are
    exhausted.  Also acts as the error reporter for the retry policy when an
    error channel is configured.
    """

    def __init__(
        self,
        bot_token: str | None = None,
        error_channel: str = "",
        client: WebClient | None = None,
    ) -> None:
        """Initialize the SlackMessenger.

        Args:
            bot_token: Slack bot token. Falls back to SLACK_BOT_TOKEN env var.
            error_channel: Channel ID for API failure alerts.  Empty disables them.
            client: Pre-built WebClient, mainly for tests.

        Raises:
            KeyError: If no client or token is given and SLACK_BOT_TOKEN is not set.
        """
        self._client = client or WebClient(token=bot_token or os.environ["SLACK_BOT_TOKEN"])
        self._error_channel = error_channel

    @property
    def client(self) -> WebClient:
        return self._client

    async def send_message(
        self,
        channel: str,
        content: MessageContent,
        thread_ts: str | None = None,
    ) -> DeliveryRef:
        """Post *content* to a channel, DM or thread.

        Returns:
            Where the message landed.

        Raises:
            SlackApiError: If the Slack API call fails after all retries.
        """
        return await asyncio.to_thread(self._post_message, channel, content, thread_ts)

    async def add_reaction(self, channel: str, message_ts: str, emoji: str) -> None:
        """React to a message.  Re-adding a reaction already present is not an error."""
        try:
            await asyncio.to_thread(self._add_reaction, channel, message_ts, emoji)
        except SlackApiError as exc:
            if exc.response.get("error") != "already_reacted":
                raise
            logger.debug("Reaction already present", channel=channel, emoji=emoji)

    def report_error(self, text: str) -> None:
        """Post an alert to the error channel without retrying."""
        if not self._error_channel:
            return
        self._client.chat_postMessage(channel=self._error_channel, text=text)

    @resilient_api_call("slack")
    def _post_message(
        self, channel: str, content: MessageContent, thread_ts: str | None
    ) -> DeliveryRef:
        kwargs: dict[str, Any] = {"channel": channel, "text": content.text}
        if content.blocks:
            kwargs["blocks"] = content.blocks
        if thread_ts:
            kwargs["thread_ts"] = thread_ts
        response = self._client.chat_postMessage(**kwargs)
        return DeliveryRef(channel=str(response["channel"]), ts=str(response["ts"]))

    @resilient_api_call("slack")
    def _add_reaction(self, channel: str, message_ts: str, emoji: str) -> None:
        self._client.reactions_add(channel=channel, timestamp=message_ts, name=emoji.strip(":"))


class UnconfiguredMessenger:
    """Stand-in used when no bot token is configured.  Every delivery fails."""

    async def send_message(
        self,
        channel: str,
        content: MessageContent,
        thread_ts: str | None = None,
    ) -> DeliveryRef:
        raise RuntimeError("Slack messenger is not configured (SLACK_BOT_TOKEN not set)")

    async def add_reaction(self, channel: str, message_ts: str, emoji: str) -> None:
        raise RuntimeError("Slack messenger is not configured (SLACK_BOT_TOKEN not set)")


class SlackDirectory:
    """Caching user and channel lookup.

    Lookup failures are logged and degrade to ``"Unknown"`` (names) or
    ``None`` (timezones); they are never raised.
    """

    def __init__(self, client: WebClient) -> None:
        self._client = client
        self._users: dict[str, dict[str, Any]] = {}
        self._channels: dict[str, str] = {}

    async def user_name(self, user_id: str) -> str:
        user = await self._user(user_id)
        if not user:
            return UNKNOWN_NAME
        profile = user.get("profile") or {}
        return str(
            profile.get("display_name") or user.get("real_name") or user.get("name") or UNKNOWN_NAME
        )

    async def user_timezone(self, user_id: str) -> str | None:
        user = await self._user(user_id)
        tz = user.get("tz") if user else None
        return str(tz) if tz else None

    async def channel_name(self, channel_id: str) -> str:
        if channel_id in self._channels:
            return self._channels[channel_id]
        try:
            response = await asyncio.to_thread(self._client.conversations_info, channel=channel_id)
        except SlackApiError as exc:
            logger.warning("Channel lookup failed", channel=channel_id, error=str(exc))
            return UNKNOWN_NAME
        name = str((response.get("channel") or {}).get("name") or UNKNOWN_NAME)
        self._channels[channel_id] = name
        return name

    async def _user(self, user_id: str) -> dict[str, Any] | None:
        if user_id in self._users:
            return self._users[user_id]
        try:
            response = await asyncio.to_thread(self._client.users_info, user=user_id)
        except SlackApiError as exc:
            logger.warning("User lookup failed", user_id=user_id, error=str(exc))
            return None
        user = dict(response.get("user") or {})
        self._users[user_id] = user
        return user


__all__ = ["SlackApiError", "SlackDirectory", "SlackMessenger", "UnconfiguredMessenger"]
