"""Slack event listeners feeding the workflow engine, router and thread store.

Bolt runs listeners synchronously on its own worker threads while the core
services live on the application's asyncio loop.  Every handler therefore
builds a coroutine and hands it to the service loop with
:func:`asyncio.run_coroutine_threadsafe`; the services are only ever touched
from that loop.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Coroutine
from concurrent.futures import Future
from typing import TYPE_CHECKING, Any

import structlog

from ticketflow.domain.types import ActivityKind, MentionType, TriggerKind
from ticketflow.escalation.models import MentionEvent
from ticketflow.slack.blocks import ACK_REACTION

if TYPE_CHECKING:
    from slack_bolt import App

logger = structlog.get_logger()

USER_MENTION_RE = re.compile(r"<@([UW][A-Z0-9]+)(?:\|[^>]*)?>")
SUBTEAM_MENTION_RE = re.compile(r"<!subteam\^([A-Z0-9]+)(?:\|[^>]*)?>")

# Message subtypes that are edits, joins and the like rather than new messages.
_IGNORED_SUBTYPES = frozenset(
    {"bot_message", "message_changed", "message_deleted", "channel_join", "channel_leave"}
)


def submit(services: dict[str, Any], coro: Coroutine[Any, Any, Any]) -> Future[Any]:
    """Schedule *coro* on the service loop from a Bolt worker thread.

    Raises:
        RuntimeError: If the services have no running loop attached.
    """
    loop: asyncio.AbstractEventLoop | None = services.get("loop")
    if loop is None or loop.is_closed():
        coro.close()
        raise RuntimeError("Service event loop is not running")
    return asyncio.run_coroutine_threadsafe(coro, loop)


def _log_failure(label: str) -> Any:
    def _done(future: Future[Any]) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Slack event handling failed", handler=label, error=str(exc), exc_info=exc)

    return _done


def _dispatch(services: dict[str, Any], label: str, coro: Coroutine[Any, Any, Any]) -> None:
    submit(services, coro).add_done_callback(_log_failure(label))


def mentioned_users(text: str, bot_user_id: str | None = None) -> list[str]:
    """User ids mentioned in *text*, in order, without duplicates.

    The bot itself is only returned when nobody else is mentioned.
    """
    found = list(dict.fromkeys(USER_MENTION_RE.findall(text)))
    others = [user_id for user_id in found if user_id != bot_user_id]
    return others or found


async def handle_mention(
    services: dict[str, Any], event: dict[str, Any], bot_user_id: str | None = None
) -> None:
    """Track the thread, route every mention in the message and start triggered workflows."""
    store = services["thread_store"]
    router = services["escalation_router"]
    engine = services["workflow_engine"]

    user = str(event.get("user", ""))
    channel = str(event.get("channel", ""))
    text = str(event.get("text", ""))
    message_ts = str(event.get("ts", ""))
    thread_ts = event.get("thread_ts")
    thread_id = str(thread_ts or message_ts)

    store.create_or_update(thread_id, channel, user, parent_message_ts=thread_id)
    store.record_activity(thread_id, ActivityKind.MENTION, user, {"text": text})

    for mentioned_id in mentioned_users(text, bot_user_id):
        await router.process(
            MentionEvent(
                kind=MentionType.USER,
                mentioned_id=mentioned_id,
                mentioned_by=user,
                channel=channel,
                thread_ts=thread_ts,
                message_ts=message_ts,
                text=text,
            )
        )

    for team_id in dict.fromkeys(SUBTEAM_MENTION_RE.findall(text)):
        if router.get_team(team_id) is None:
            continue
        await router.handle_team_mention(
            team_id,
            MentionEvent(
                kind=MentionType.TEAM,
                mentioned_id=team_id,
                mentioned_by=user,
                channel=channel,
                thread_ts=thread_ts,
                message_ts=message_ts,
                text=text,
            ),
        )

    for definition in engine.definitions_for_trigger(TriggerKind.MENTION, text=text):
        await engine.start(
            definition.id,
            {"channel_id": channel, "user_id": user, "thread_ts": thread_id},
            trigger_data={"text": text, "message_ts": message_ts},
        )


async def handle_message(services: dict[str, Any], event: dict[str, Any]) -> None:
    """Record thread replies and start message-triggered workflows."""
    store = services["thread_store"]
    engine = services["workflow_engine"]

    user = str(event.get("user", ""))
    channel = str(event.get("channel", ""))
    text = str(event.get("text", ""))
    thread_ts = event.get("thread_ts")

    if thread_ts and store.has_thread(thread_ts):
        store.add_message(thread_ts, user, text)

    for definition in engine.definitions_for_trigger(TriggerKind.MESSAGE, text=text):
        await engine.start(
            definition.id,
            {"channel_id": channel, "user_id": user, "thread_ts": thread_ts},
            trigger_data={"text": text, "message_ts": event.get("ts")},
        )


async def handle_reaction(services: dict[str, Any], event: dict[str, Any]) -> None:
    """Acknowledge notifications, log thread reactions and start reaction workflows."""
    store = services["thread_store"]
    router = services["escalation_router"]
    engine = services["workflow_engine"]

    user = str(event.get("user", ""))
    reaction = str(event.get("reaction", ""))
    item = event.get("item") or {}
    channel = str(item.get("channel", ""))
    item_ts = str(item.get("ts", ""))

    if reaction == ACK_REACTION:
        notification = router.find_by_delivery(channel, item_ts)
        if notification is not None:
            await router.acknowledge(notification.id, user)

    if store.has_thread(item_ts):
        store.record_activity(item_ts, ActivityKind.REACTION, user, {"reaction": reaction})

    for definition in engine.definitions_for_trigger(TriggerKind.REACTION, emoji=reaction):
        await engine.start(
            definition.id,
            {"channel_id": channel, "user_id": user, "thread_ts": item_ts},
            trigger_data={"reaction": reaction},
        )


def register_listeners(app: App, services: dict[str, Any]) -> None:
    """Register ``app_mention``, ``message`` and ``reaction_added`` listeners.

    Args:
        app: The Slack Bolt ``App`` instance.
        services: The services dict; must hold ``loop``, ``thread_store``,
            ``escalation_router`` and ``workflow_engine``.
    """

    @app.event("app_mention")
    def on_app_mention(event: dict[str, Any], context: dict[str, Any]) -> None:
        bot_user_id = context.get("bot_user_id")
        _dispatch(services, "app_mention", handle_mention(services, event, bot_user_id))

    @app.event("message")
    def on_message(event: dict[str, Any]) -> None:
        if event.get("subtype") in _IGNORED_SUBTYPES or event.get("bot_id"):
            return
        _dispatch(services, "message", handle_message(services, event))

    @app.event("reaction_added")
    def on_reaction_added(event: dict[str, Any]) -> None:
        _dispatch(services, "reaction_added", handle_reaction(services, event))
