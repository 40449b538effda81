"""Step and action handlers for the workflow engine.

Each :class:`~ticketflow.domain.types.StepKind` and
:class:`~ticketflow.domain.types.ActionKind` maps to exactly one handler.  The
mappings are checked for completeness when a :class:`StepRunner` is built, so a
new kind without a handler fails at startup rather than at the first step that
uses it.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import httpx
import structlog

from ticketflow.domain.errors import UnknownActionError
from ticketflow.domain.types import ActionKind, ParticipantRole, StepKind
from ticketflow.resilience.retry import resilient_api_call
from ticketflow.scheduling.timers import Scheduler
from ticketflow.slack.blocks import PRIORITY_EMOJI, substitute_variables
from ticketflow.slack.models import MessageContent, Messenger
from ticketflow.threads.store import ThreadContextStore
from ticketflow.workflow.conditions import evaluate_conditions
from ticketflow.workflow.models import WorkflowCondition, WorkflowExecution, WorkflowStep

logger = structlog.get_logger()

StepResult = dict[str, Any]
StepHandler = Callable[[WorkflowStep, WorkflowExecution], Awaitable[StepResult]]
ActionHandler = Callable[[Mapping[str, Any], WorkflowExecution], Awaitable[StepResult]]

LAST_STEP_RESULT_KEY = "last_step_result"


def delay_seconds(config: Mapping[str, Any]) -> float:
    """Length of a delay step: ``seconds``, or else ``duration`` in milliseconds."""
    if "seconds" in config:
        return float(config["seconds"])
    return float(config.get("duration", 0)) / 1000


@resilient_api_call("integration")
async def call_integration(
    url: str,
    http_method: str,
    payload: Mapping[str, Any],
    client: httpx.AsyncClient | None = None,
) -> int:
    """Send *payload* to an external integration endpoint.

    Returns:
        The HTTP status code of the response.

    Raises:
        httpx.HTTPError: On transport failure or a non-2xx status.
    """
    if client is not None:
        response = await client.request(http_method, url, json=dict(payload), timeout=30.0)
        response.raise_for_status()
        return response.status_code
    async with httpx.AsyncClient() as owned:
        response = await owned.request(http_method, url, json=dict(payload), timeout=30.0)
        response.raise_for_status()
        return response.status_code


class StepRunner:
    """Dispatches workflow steps to their handlers.

    Args:
        messenger: Messaging collaborator used by message and action steps.
        scheduler: Timer registry; delay steps sleep on it under the
            execution's id so cancelling the execution wakes them.
        thread_store: Optional thread store updated by thread-related actions.
        http_client: Optional shared client for integration calls.
    """

    def __init__(
        self,
        messenger: Messenger,
        scheduler: Scheduler,
        thread_store: ThreadContextStore | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._messenger = messenger
        self._scheduler = scheduler
        self._thread_store = thread_store
        self._http_client = http_client

        self._step_handlers: dict[StepKind, StepHandler] = {
            StepKind.MESSAGE: self._run_message,
            StepKind.ACTION: self._run_action,
            StepKind.CONDITION: self._run_condition,
            StepKind.DELAY: self._run_delay,
            StepKind.INTEGRATION: self._run_integration,
        }
        self._action_handlers: dict[ActionKind, ActionHandler] = {
            ActionKind.ASSIGN_USER: self._assign_user,
            ActionKind.CREATE_THREAD: self._create_thread,
            ActionKind.ADD_REACTION: self._add_reaction,
            ActionKind.UPDATE_DATA: self._update_data,
        }
        _require_complete("step kind", StepKind, self._step_handlers)
        _require_complete("action", ActionKind, self._action_handlers)

    async def run(self, step: WorkflowStep, execution: WorkflowExecution) -> StepResult:
        """Execute *step* for *execution* and return its result payload."""
        if step.kind is None:
            raise ValueError(f"Step {step.id} has no kind")
        return await self._step_handlers[step.kind](step, execution)

    # -- Step kinds ------------------------------------------------------------

    async def _run_message(self, step: WorkflowStep, execution: WorkflowExecution) -> StepResult:
        config = step.config or {}
        data = execution.context.data
        if config.get("blocks"):
            content = MessageContent(
                text=str(config.get("text") or step.name or "Workflow message"),
                blocks=list(config["blocks"]),
            )
        elif config.get("dynamic"):
            priority = str(config.get("priority", "medium"))
            emoji = PRIORITY_EMOJI.get(priority, PRIORITY_EMOJI["medium"])
            content = MessageContent(
                text=f"{emoji} Workflow notification: {data.get('message') or 'Step completed'}"
            )
        elif config.get("template"):
            content = MessageContent(text=substitute_variables(str(config["template"]), data))
        else:
            raise ValueError("Message step requires template, dynamic, or blocks configuration")

        channel = str(config.get("channel") or execution.context.channel_id)
        ref = await self._messenger.send_message(
            channel, content, thread_ts=execution.context.thread_ts
        )
        return {"message_ts": ref.ts, "channel": ref.channel}

    async def _run_action(self, step: WorkflowStep, execution: WorkflowExecution) -> StepResult:
        config = step.config or {}
        name = str(config.get("action", ""))
        try:
            action = ActionKind(name)
        except ValueError:
            raise UnknownActionError(name) from None
        params = config.get("params") or {}
        return await self._action_handlers[action](params, execution)

    async def _run_condition(self, step: WorkflowStep, execution: WorkflowExecution) -> StepResult:
        raw = (step.config or {}).get("conditions") or []
        conditions = [WorkflowCondition.model_validate(c) for c in raw]
        return {"condition_result": evaluate_conditions(conditions, execution.context.data)}

    async def _run_delay(self, step: WorkflowStep, execution: WorkflowExecution) -> StepResult:
        seconds = delay_seconds(step.config or {})
        await self._scheduler.sleep(execution.id, seconds)
        return {"delayed": seconds}

    async def _run_integration(
        self, step: WorkflowStep, execution: WorkflowExecution
    ) -> StepResult:
        config = step.config or {}
        integration = config.get("integration")
        method = config.get("method")
        params = config.get("params") or {}
        result = "success"

        url = config.get("url")
        if url:
            try:
                await call_integration(
                    str(url),
                    str(config.get("http_method", "POST")),
                    {"method": method, "params": params, "execution_id": execution.id},
                    client=self._http_client,
                )
            except httpx.HTTPError as exc:
                logger.warning(
                    "Integration call failed",
                    integration=integration,
                    method=method,
                    execution_id=execution.id,
                    error=str(exc),
                )
                result = "failure"

        logger.info(
            "Integration step executed",
            integration=integration,
            method=method,
            result=result,
            execution_id=execution.id,
        )
        return {"integration": integration, "method": method, "result": result}

    # -- Actions ---------------------------------------------------------------

    async def _assign_user(
        self, params: Mapping[str, Any], execution: WorkflowExecution
    ) -> StepResult:
        user_id = params.get("user_id")
        if not user_id:
            raise ValueError("assign_user requires a user_id")
        execution.context.data["assignee"] = user_id

        thread_ts = execution.context.thread_ts
        if self._thread_store is not None and thread_ts:
            context = self._thread_store.get_context(thread_ts)
            if context is not None:
                context.add_participant(user_id, ParticipantRole.ASSIGNEE)
                context.update_metadata({"assignee": user_id})
        return {"assigned": True, "user_id": user_id}

    async def _create_thread(
        self, params: Mapping[str, Any], execution: WorkflowExecution
    ) -> StepResult:
        channel = str(params.get("channel") or execution.context.channel_id)
        text = substitute_variables(
            str(params.get("text") or "Thread started"), execution.context.data
        )
        ref = await self._messenger.send_message(channel, MessageContent(text=text))
        execution.context.thread_ts = ref.ts

        if self._thread_store is not None:
            self._thread_store.create_or_update(
                ref.ts,
                ref.channel,
                execution.context.user_id,
                metadata={"workflow_id": execution.workflow_id},
                parent_message_ts=ref.ts,
            )
        return {"thread_created": True, "thread_ts": ref.ts, "channel": ref.channel}

    async def _add_reaction(
        self, params: Mapping[str, Any], execution: WorkflowExecution
    ) -> StepResult:
        emoji = params.get("emoji")
        if not emoji:
            raise ValueError("add_reaction requires an emoji")
        last = execution.context.data.get(LAST_STEP_RESULT_KEY)
        message_ts = params.get("message_ts")
        if not message_ts and isinstance(last, Mapping):
            message_ts = last.get("message_ts")
        message_ts = message_ts or execution.context.thread_ts
        if not message_ts:
            raise ValueError("add_reaction has no message to react to")
        channel = str(params.get("channel") or execution.context.channel_id)
        await self._messenger.add_reaction(channel, str(message_ts), str(emoji))
        return {"reaction_added": True, "emoji": emoji}

    async def _update_data(
        self, params: Mapping[str, Any], execution: WorkflowExecution
    ) -> StepResult:
        execution.context.data.update(params.get("data") or {})
        return {"data_updated": True}


def _require_complete(label: str, kinds: Any, handlers: Mapping[Any, Any]) -> None:
    missing = [kind.value for kind in kinds if kind not in handlers]
    if missing:
        raise TypeError(f"No handler registered for {label}: {', '.join(missing)}")
