"""Workflow engine: registry of definitions and driver of their executions.

Executions run as background asyncio tasks.  ``start`` returns as soon as the
execution is registered; steps then run strictly one after another until the
execution completes, fails, times out, waits for input, or is cancelled.

All timers for an execution (its timeout and any delay-step sleep) are armed
on the scheduler under the execution id, so tearing an execution down with
``cancel_owner`` never leaves a continuation behind.
"""

from __future__ import annotations

import asyncio
import re
import uuid
from collections import OrderedDict
from collections.abc import Callable, Mapping
from datetime import timedelta
from typing import Any

import structlog

from ticketflow.domain.errors import (
    InvalidStateError,
    NotFoundError,
    WorkflowTimeoutError,
)
from ticketflow.domain.types import ExecutionStatus, TriggerKind
from ticketflow.observability.metrics import (
    ACTIVE_WORKFLOW_EXECUTIONS,
    WORKFLOW_EXECUTIONS_FINISHED,
)
from ticketflow.scheduling.timers import Clock, Scheduler, utc_now
from ticketflow.slack.blocks import STATUS_EMOJI, build_workflow_status_blocks
from ticketflow.slack.models import MessageContent, Messenger
from ticketflow.workflow.conditions import evaluate_conditions
from ticketflow.workflow.models import (
    WorkflowContext,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowStep,
)
from ticketflow.workflow.steps import LAST_STEP_RESULT_KEY, StepRunner
from ticketflow.workflow.validation import ensure_valid

logger = structlog.get_logger()

NextStepSelector = Callable[[WorkflowStep, WorkflowExecution], str]

SWEEP_OWNER = "sweep:workflows"
DEFAULT_STALE_AFTER = timedelta(hours=24)
DEFAULT_CLEANUP_INTERVAL_SECONDS = 3600.0
DEFAULT_HISTORY_LIMIT = 500


def first_listed_selector(step: WorkflowStep, execution: WorkflowExecution) -> str:
    """Default branching policy: always follow the first listed link."""
    return step.next_steps[0]


def condition_branch_selector(step: WorkflowStep, execution: WorkflowExecution) -> str:
    """Branch on the preceding condition step.

    Follows ``next_steps[0]`` when the last result carries a true
    ``condition_result`` and ``next_steps[1]`` otherwise.
    """
    last = execution.context.data.get(LAST_STEP_RESULT_KEY)
    matched = isinstance(last, Mapping) and bool(last.get("condition_result"))
    if matched or len(step.next_steps) < 2:
        return step.next_steps[0]
    return step.next_steps[1]


def _safe_search(pattern: str, text: str) -> bool:
    try:
        return re.search(pattern, text, re.IGNORECASE) is not None
    except re.error:
        logger.warning("Invalid trigger pattern", pattern=pattern)
        return False


class WorkflowEngine:
    """Registers workflow definitions and drives executions of them.

    Args:
        messenger: Messaging collaborator for message steps and lifecycle
            notices.
        scheduler: Timer registry for timeouts, delays and the stale sweep.
        step_runner: Dispatcher for step kinds.  Built from *messenger* and
            *scheduler* when omitted.
        clock: Source of the current time.
        next_step_selector: Policy choosing among several ``next_steps``.
        default_timeout_seconds: Used when a definition sets no timeout.
        stale_after: Idle time after which the sweep drops an execution.
        cleanup_interval_seconds: Period of the stale sweep.
        history_limit: How many finished executions ``get_status`` remembers.
    """

    def __init__(
        self,
        messenger: Messenger,
        scheduler: Scheduler,
        *,
        step_runner: StepRunner | None = None,
        clock: Clock = utc_now,
        next_step_selector: NextStepSelector = first_listed_selector,
        default_timeout_seconds: float = 3600.0,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
        cleanup_interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self._messenger = messenger
        self._scheduler = scheduler
        self._runner = step_runner or StepRunner(messenger, scheduler)
        self._clock = clock
        self._select_next = next_step_selector
        self._default_timeout_seconds = default_timeout_seconds
        self._stale_after = stale_after
        self._cleanup_interval_seconds = cleanup_interval_seconds
        self._history_limit = history_limit

        self._definitions: dict[str, WorkflowDefinition] = {}
        self._active: dict[str, WorkflowExecution] = {}
        self._history: OrderedDict[str, WorkflowExecution] = OrderedDict()
        self._run_tasks: dict[str, asyncio.Task[None]] = {}

    # -- Definitions -----------------------------------------------------------

    def register(
        self, definition: WorkflowDefinition | Mapping[str, Any]
    ) -> WorkflowDefinition:
        """Validate and store a definition, replacing any with the same id.

        Raises:
            ValidationError: Listing every structural problem.  Nothing is
                stored in that case.
        """
        validated = ensure_valid(definition)
        replaced = validated.id in self._definitions
        self._definitions[validated.id] = validated
        logger.info(
            "Workflow registered",
            workflow_id=validated.id,
            name=validated.name,
            steps=len(validated.steps),
            replaced=replaced,
        )
        return validated

    def unregister(self, workflow_id: str) -> bool:
        """Remove a definition.  Running executions of it fail at their next step."""
        removed = self._definitions.pop(workflow_id, None) is not None
        if removed:
            logger.info("Workflow unregistered", workflow_id=workflow_id)
        return removed

    def get_definition(self, workflow_id: str) -> WorkflowDefinition | None:
        return self._definitions.get(workflow_id)

    def list_definitions(self) -> list[WorkflowDefinition]:
        return list(self._definitions.values())

    def definitions_for_trigger(
        self, kind: TriggerKind, text: str = "", emoji: str = ""
    ) -> list[WorkflowDefinition]:
        """Definitions an inbound event of *kind* should start.

        ``message`` and ``mention`` triggers may set a ``pattern`` (regex,
        case-insensitive) the text must match; ``reaction`` triggers may set
        the ``emoji`` they react to.  A trigger without config matches every
        event of its kind.
        """
        matched = []
        for definition in self._definitions.values():
            trigger = definition.trigger
            if trigger.kind != kind:
                continue
            pattern = trigger.config.get("pattern")
            if pattern and not _safe_search(str(pattern), text):
                continue
            wanted = trigger.config.get("emoji")
            if wanted and str(wanted).strip(":") != emoji.strip(":"):
                continue
            matched.append(definition)
        return matched

    # -- Executions ------------------------------------------------------------

    async def start(
        self,
        workflow_id: str,
        context: Mapping[str, Any] | None = None,
        trigger_data: Mapping[str, Any] | None = None,
    ) -> str:
        """Start an execution of *workflow_id* and return its id immediately.

        *context* may carry ``channel_id``, ``user_id``, ``thread_ts`` and a
        ``data`` mapping; *trigger_data* is merged over ``data``.

        Raises:
            NotFoundError: If no definition is registered under *workflow_id*.
        """
        definition = self._definitions.get(workflow_id)
        if definition is None:
            raise NotFoundError("workflow", workflow_id)
        first_step = definition.first_step
        if first_step is None:
            raise NotFoundError("step", f"{workflow_id}:<first>")

        partial = dict(context or {})
        now = self._clock()
        execution_id = f"exec_{uuid.uuid4().hex[:16]}"
        workflow_context = WorkflowContext(
            workflow_id=workflow_id,
            execution_id=execution_id,
            channel_id=partial.get("channel_id") or "",
            user_id=partial.get("user_id") or "",
            thread_ts=partial.get("thread_ts"),
            data={**(partial.get("data") or {}), **(trigger_data or {})},
            current_step=first_step.id,
            start_time=now,
            last_activity=now,
        )
        execution = WorkflowExecution(
            id=execution_id,
            workflow_id=workflow_id,
            status=ExecutionStatus.RUNNING,
            context=workflow_context,
            start_time=now,
        )
        self._active[execution_id] = execution
        ACTIVE_WORKFLOW_EXECUTIONS.set(len(self._active))

        timeout = definition.settings.timeout_seconds or self._default_timeout_seconds
        self._scheduler.call_later(
            execution_id, timeout, lambda: self._on_timeout(execution_id, timeout)
        )

        logger.info(
            "Workflow execution started",
            execution_id=execution_id,
            workflow_id=workflow_id,
            channel_id=workflow_context.channel_id,
        )

        if definition.settings.notify_on_completion:
            await self._notify(execution, "started")

        self._spawn(execution)
        return execution_id

    async def continue_execution(
        self,
        execution_id: str,
        step_result: Any = None,
        user_input: Mapping[str, Any] | None = None,
    ) -> None:
        """Resume an execution, typically one waiting for user input.

        *step_result* becomes ``last_step_result`` and *user_input* is merged
        into the data bag before the execution advances.

        Raises:
            NotFoundError: If the execution was never started.
            InvalidStateError: If it already finished or a step is in flight.
        """
        execution = self._active.get(execution_id)
        if execution is None:
            finished = self._history.get(execution_id)
            if finished is not None:
                raise InvalidStateError("execution", execution_id, finished.status.value)
            raise NotFoundError("execution", execution_id)
        if self._in_flight(execution_id):
            raise InvalidStateError("execution", execution_id, "step in progress")

        data = execution.context.data
        if step_result is not None:
            data[LAST_STEP_RESULT_KEY] = step_result
        if user_input:
            data.update(user_input)
        execution.context.last_activity = self._clock()

        if execution.context.awaiting_input:
            execution.context.awaiting_input = False
            definition = self._definitions.get(execution.workflow_id)
            step = definition.get_step(execution.context.current_step) if definition else None
            if step is None or step.is_terminal:
                await self._complete(execution)
                return
            try:
                execution.context.current_step = self._choose_next(step, execution)
            except Exception as exc:
                await self._fail(execution, exc)
                return

        logger.info("Workflow execution resumed", execution_id=execution_id)
        self._spawn(execution)

    async def cancel(self, execution_id: str, reason: str | None = None) -> None:
        """Cancel a running execution.

        A step already in flight finishes its current unit of work, but its
        result is discarded.

        Raises:
            NotFoundError: If the execution is unknown or already terminal.
        """
        execution = self._active.get(execution_id)
        if execution is None:
            raise NotFoundError("execution", execution_id)

        self._finish(execution, ExecutionStatus.CANCELLED, reason or "Cancelled by user")
        logger.info("Workflow execution cancelled", execution_id=execution_id, reason=reason)

        definition = self._definitions.get(execution.workflow_id)
        if definition and (
            definition.settings.notify_on_completion or definition.settings.notify_on_error
        ):
            await self._notify(execution, "cancelled", reason)

    def get_status(self, execution_id: str) -> WorkflowExecution | None:
        """Look up an active or recently finished execution."""
        return self._active.get(execution_id) or self._history.get(execution_id)

    def list_active(self) -> list[WorkflowExecution]:
        return list(self._active.values())

    # -- Maintenance -----------------------------------------------------------

    def cleanup_stale_executions(self) -> int:
        """Drop executions idle for longer than the staleness window.

        Returns:
            The number of executions removed.
        """
        cutoff = self._clock() - self._stale_after
        stale = [e for e in self._active.values() if e.context.last_activity < cutoff]
        for execution in stale:
            logger.warning(
                "Cleaning up stale workflow execution",
                execution_id=execution.id,
                workflow_id=execution.workflow_id,
                last_activity=execution.context.last_activity.isoformat(),
            )
            self._finish(execution, ExecutionStatus.FAILED, "Execution went stale")
        return len(stale)

    def start_background_tasks(self) -> None:
        """Arm the periodic stale-execution sweep."""
        self._scheduler.cancel_owner(SWEEP_OWNER)
        self._scheduler.every(
            SWEEP_OWNER, self._cleanup_interval_seconds, self.cleanup_stale_executions
        )

    async def shutdown(self) -> None:
        """Cancel the sweep, all execution timers and any running step tasks."""
        self._scheduler.cancel_owner(SWEEP_OWNER)
        for execution_id in list(self._active):
            self._scheduler.cancel_owner(execution_id)
        tasks = list(self._run_tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._run_tasks.clear()
        logger.info("Workflow engine stopped", active=len(self._active))

    # -- Internals -------------------------------------------------------------

    def _in_flight(self, execution_id: str) -> bool:
        task = self._run_tasks.get(execution_id)
        return task is not None and not task.done()

    def _spawn(self, execution: WorkflowExecution) -> None:
        task = asyncio.get_running_loop().create_task(self._run(execution))
        self._run_tasks[execution.id] = task

        def _done(finished: asyncio.Task[None]) -> None:
            if self._run_tasks.get(execution.id) is finished:
                del self._run_tasks[execution.id]

        task.add_done_callback(_done)

    def _is_current(self, execution: WorkflowExecution) -> bool:
        return (
            self._active.get(execution.id) is execution
            and execution.status == ExecutionStatus.RUNNING
        )

    async def _run(self, execution: WorkflowExecution) -> None:
        while self._is_current(execution):
            definition = self._definitions.get(execution.workflow_id)
            step_id = execution.context.current_step
            step = definition.get_step(step_id) if definition else None
            try:
                if definition is None:
                    raise NotFoundError("workflow", execution.workflow_id)
                if step is None:
                    raise NotFoundError("step", step_id)
                skipped = not evaluate_conditions(step.conditions, execution.context.data)
                if skipped:
                    logger.debug(
                        "Skipping workflow step", execution_id=execution.id, step_id=step.id
                    )
                    result = None
                else:
                    logger.debug(
                        "Executing workflow step",
                        execution_id=execution.id,
                        step_id=step.id,
                        kind=step.kind,
                    )
                    result = await self._runner.run(step, execution)
            except Exception as exc:
                if self._is_current(execution):
                    logger.error(
                        "Failed to execute workflow step",
                        execution_id=execution.id,
                        step_id=step_id,
                        error=str(exc),
                    )
                    await self._fail(execution, exc)
                return

            if not self._is_current(execution):
                logger.info(
                    "Discarding step result of finished execution",
                    execution_id=execution.id,
                    step_id=step.id,
                    status=execution.status.value,
                )
                return

            context = execution.context
            context.last_activity = self._clock()
            if skipped:
                context.skipped_steps.append(step.id)
            else:
                context.completed_steps.append(step.id)
                context.data[LAST_STEP_RESULT_KEY] = result
                if (step.config or {}).get("await_input"):
                    context.awaiting_input = True
                    logger.info(
                        "Workflow execution waiting for input",
                        execution_id=execution.id,
                        step_id=step.id,
                    )
                    return

            if step.is_terminal:
                await self._complete(execution)
                return
            try:
                context.current_step = self._choose_next(step, execution)
            except Exception as exc:
                await self._fail(execution, exc)
                return

    def _choose_next(self, step: WorkflowStep, execution: WorkflowExecution) -> str:
        if len(step.next_steps) == 1:
            return step.next_steps[0]
        chosen = self._select_next(step, execution)
        if chosen not in step.next_steps:
            raise ValueError(f"Step {step.id} cannot branch to '{chosen}'")
        return chosen

    def _finish(
        self, execution: WorkflowExecution, status: ExecutionStatus, error: str | None
    ) -> None:
        execution.status = status
        execution.end_time = self._clock()
        execution.error = error
        self._scheduler.cancel_owner(execution.id)
        self._active.pop(execution.id, None)
        self._history[execution.id] = execution
        while len(self._history) > self._history_limit:
            self._history.popitem(last=False)
        ACTIVE_WORKFLOW_EXECUTIONS.set(len(self._active))
        WORKFLOW_EXECUTIONS_FINISHED.labels(status=status.value).inc()

    async def _complete(self, execution: WorkflowExecution) -> None:
        self._finish(execution, ExecutionStatus.COMPLETED, None)
        logger.info(
            "Workflow execution completed",
            execution_id=execution.id,
            workflow_id=execution.workflow_id,
            duration_seconds=(
                (execution.end_time or execution.start_time) - execution.start_time
            ).total_seconds(),
        )
        definition = self._definitions.get(execution.workflow_id)
        if definition and definition.settings.notify_on_completion:
            await self._notify(execution, "completed")

    async def _fail(self, execution: WorkflowExecution, error: BaseException) -> None:
        if not self._is_current(execution):
            return
        self._finish(execution, ExecutionStatus.FAILED, str(error))
        logger.error(
            "Workflow execution failed",
            execution_id=execution.id,
            workflow_id=execution.workflow_id,
            step_id=execution.context.current_step,
            error=str(error),
        )
        definition = self._definitions.get(execution.workflow_id)
        if definition and definition.settings.notify_on_error:
            await self._notify(
                execution,
                "failed",
                f"Stopped at step '{execution.context.current_step}': {error}",
            )

    async def _on_timeout(self, execution_id: str, timeout_seconds: float) -> None:
        execution = self._active.get(execution_id)
        if execution is None:
            return
        await self._fail(execution, WorkflowTimeoutError(execution_id, timeout_seconds))

    async def _notify(
        self, execution: WorkflowExecution, status: str, details: str | None = None
    ) -> None:
        channel = execution.context.channel_id
        if not channel:
            logger.debug("No channel for workflow notification", execution_id=execution.id)
            return
        definition = self._definitions.get(execution.workflow_id)
        name = definition.name if definition else execution.workflow_id
        emoji = STATUS_EMOJI.get(status, "")
        content = MessageContent(
            text=f"{emoji} Workflow {name} {status}",
            blocks=build_workflow_status_blocks(name, status, execution.id, details),
        )
        try:
            await self._messenger.send_message(
                channel, content, thread_ts=execution.context.thread_ts
            )
        except Exception:
            logger.exception(
                "Failed to send workflow notification",
                execution_id=execution.id,
                status=status,
            )
