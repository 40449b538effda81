"""Slack slash command handlers for acknowledgments, workflows and mention stats.

Provides ``register_commands`` to register ``/ack``, ``/workflow`` and
``/mentions`` on a Bolt ``App`` instance.  Handlers run on Bolt worker
threads and wait (bounded) for the service loop to answer.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import structlog

from ticketflow.domain.errors import TicketflowError
from ticketflow.escalation.router import TIMEFRAMES
from ticketflow.slack.blocks import STATUS_EMOJI, build_mention_stats_blocks
from ticketflow.slack.listeners import submit

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

    from slack_bolt import App

logger = structlog.get_logger()

COMMAND_TIMEOUT_SECONDS = 10.0

WORKFLOW_USAGE = (
    "Usage: /workflow start <workflow_id> [json data] | cancel <execution_id> [reason]"
    " | status <execution_id> | list"
)


def _run(services: dict[str, Any], coro: Coroutine[Any, Any, Any]) -> Any:
    return submit(services, coro).result(timeout=COMMAND_TIMEOUT_SECONDS)


async def _acknowledge(services: dict[str, Any], notification_id: str, user_id: str) -> bool:
    router = services["escalation_router"]
    if router.get_notification(notification_id) is None:
        return False
    await router.acknowledge(notification_id, user_id)
    return True


async def _start_workflow(
    services: dict[str, Any], workflow_id: str, command: dict[str, Any], data: dict[str, Any]
) -> str:
    engine = services["workflow_engine"]
    context = {"channel_id": command.get("channel_id", ""), "user_id": command.get("user_id", "")}
    execution_id: str = await engine.start(workflow_id, context, trigger_data=data)
    return execution_id


async def _cancel_workflow(services: dict[str, Any], execution_id: str, reason: str) -> None:
    await services["workflow_engine"].cancel(execution_id, reason or None)


async def _workflow_status(services: dict[str, Any], execution_id: str) -> str:
    execution = services["workflow_engine"].get_status(execution_id)
    if execution is None:
        return f"No execution found with id `{execution_id}`."
    emoji = STATUS_EMOJI.get(execution.status.value)
    line = (
        (f"{emoji} " if emoji else "")
        + f"`{execution.id}` ({execution.workflow_id}) is *{execution.status.value}*"
        f" at step `{execution.context.current_step}`"
    )
    if execution.error:
        line += f"\nError: {execution.error}"
    return line


async def _list_workflows(services: dict[str, Any]) -> str:
    engine = services["workflow_engine"]
    definitions = engine.list_definitions()
    if not definitions:
        return "No workflows registered."
    active = engine.list_active()
    lines = [f"- `{d.id}`: {d.name}" for d in definitions]
    return f"*Workflows* ({len(active)} running)\n" + "\n".join(lines)


async def _mention_stats(services: dict[str, Any], timeframe: str) -> Any:
    return services["escalation_router"].get_stats(timeframe)


def handle_workflow_command(services: dict[str, Any], command: dict[str, Any]) -> str:
    """Run one ``/workflow`` sub-command and return the reply text."""
    parts = command.get("text", "").strip().split(maxsplit=2)
    if not parts:
        return WORKFLOW_USAGE
    action, args = parts[0].lower(), parts[1:]

    try:
        if action == "list":
            reply: str = _run(services, _list_workflows(services))
            return reply
        if not args:
            return WORKFLOW_USAGE
        if action == "start":
            data: dict[str, Any] = {}
            if len(args) > 1:
                try:
                    parsed = json.loads(args[1])
                except json.JSONDecodeError:
                    return "Workflow data must be a JSON object."
                if not isinstance(parsed, dict):
                    return "Workflow data must be a JSON object."
                data = parsed
            execution_id = _run(services, _start_workflow(services, args[0], command, data))
            return f"Workflow `{args[0]}` started: execution `{execution_id}`."
        if action == "cancel":
            reason = args[1] if len(args) > 1 else ""
            _run(services, _cancel_workflow(services, args[0], reason))
            return f"Execution `{args[0]}` cancelled."
        if action == "status":
            status: str = _run(services, _workflow_status(services, args[0]))
            return status
    except TicketflowError as exc:
        logger.info("Workflow command rejected", action=action, error=str(exc))
        return str(exc)
    return WORKFLOW_USAGE


def register_commands(app: App, services: dict[str, Any]) -> None:
    """Register ``/ack``, ``/workflow`` and ``/mentions`` slash commands on the Bolt app.

    Args:
        app: The Slack Bolt ``App`` instance.
        services: The services dict; must hold ``loop``, ``workflow_engine``
            and ``escalation_router``.
    """

    @app.command("/ack")
    def handle_ack(
        ack: Callable[[], None],
        command: dict[str, Any],
        respond: Callable[..., None],
    ) -> None:
        """Handle /ack command -- acknowledge a mention notification."""
        ack()
        notification_id = command.get("text", "").strip()
        if not notification_id:
            respond("Usage: /ack <notification_id>")
            return
        found = _run(services, _acknowledge(services, notification_id, command["user_id"]))
        if found:
            respond(f"Notification {notification_id} acknowledged.")
        else:
            respond(f"No notification found with id {notification_id}.")

    @app.command("/workflow")
    def handle_workflow(
        ack: Callable[[], None],
        command: dict[str, Any],
        respond: Callable[..., None],
    ) -> None:
        """Handle /workflow command -- start, cancel, inspect or list workflows."""
        ack()
        respond(handle_workflow_command(services, command))

    @app.command("/mentions")
    def handle_mentions(
        ack: Callable[[], None],
        command: dict[str, Any],
        respond: Callable[..., None],
    ) -> None:
        """Handle /mentions command -- mention statistics for a timeframe."""
        ack()
        timeframe = command.get("text", "").strip().lower() or "day"
        if timeframe not in TIMEFRAMES:
            respond(f"Usage: /mentions [{'|'.join(TIMEFRAMES)}]")
            return
        stats = _run(services, _mention_stats(services, timeframe))
        respond(
            text=f"Mention stats for the last {timeframe}: {stats.total_mentions} mentions",
            blocks=build_mention_stats_blocks(
                stats.timeframe,
                stats.total_mentions,
                stats.unique_users,
                stats.top_mentioned_users,
                stats.average_response_seconds,
                stats.escalation_rate,
            ),
        )
