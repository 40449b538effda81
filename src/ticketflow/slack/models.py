"""Message and collaborator contracts between the core services and Slack.

The workflow engine and escalation router only ever talk to Slack through
the ``Messenger`` and ``Directory`` protocols defined here, so tests can
substitute mocks and the Web API client stays an implementation detail.
"""

from __future__ import annotations

from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

UNKNOWN_NAME = "Unknown"


class MessageContent(BaseModel):
    """Renderable message body: plain-text fallback plus optional Block Kit blocks."""

    model_config = ConfigDict(frozen=True)

    text: str
    blocks: list[dict[str, Any]] | None = Field(default=None)


class DeliveryRef(BaseModel):
    """Reference to a delivered Slack message."""

    model_config = ConfigDict(frozen=True)

    channel: str
    ts: str


class Messenger(Protocol):
    """Messaging collaborator.  Delivery failures must propagate as exceptions."""

    async def send_message(
        self,
        channel: str,
        content: MessageContent,
        thread_ts: str | None = None,
    ) -> DeliveryRef: ...

    async def add_reaction(self, channel: str, message_ts: str, emoji: str) -> None: ...


class Directory(Protocol):
    """Identity/channel lookup collaborator.  Failures degrade to fallbacks."""

    async def user_name(self, user_id: str) -> str: ...

    async def user_timezone(self, user_id: str) -> str | None: ...

    async def channel_name(self, channel_id: str) -> str: ...
