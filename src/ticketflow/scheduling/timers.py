"""Owner-keyed timer registry on top of the asyncio event loop.

Every timer belongs to an *owner* (an execution id, ``mention:<id>``,
``sweep:<service>``...).  Cancelling an owner cancels all of its pending
continuations at once, so a cancelled execution or an acknowledged mention
never has a callback fire against state that has already been torn down.

Callbacks may be plain functions or coroutine functions.  Coroutines run as
tracked background tasks; their failures are logged rather than lost.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

import structlog

logger = structlog.get_logger()

Clock = Callable[[], datetime]
TimerCallback = Callable[[], Awaitable[Any] | Any]


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(tz=UTC)


class Scheduler(Protocol):
    """Interface the core services use to arm and cancel continuations."""

    def call_later(self, owner: str, delay_seconds: float, callback: TimerCallback) -> str: ...

    def every(self, owner: str, interval_seconds: float, callback: TimerCallback) -> str: ...

    async def sleep(self, owner: str, seconds: float) -> None: ...

    def cancel(self, timer_id: str) -> bool: ...

    def cancel_owner(self, owner: str) -> int: ...

    def pending(self, owner: str | None = None) -> int: ...

    def shutdown(self) -> None: ...


async def _await(awaitable: Awaitable[Any]) -> Any:
    return await awaitable


@dataclass
class _Timer:
    timer_id: str
    owner: str
    callback: TimerCallback
    handle: asyncio.TimerHandle | None = None
    interval: float | None = None
    future: asyncio.Future[None] | None = None


class TimerRegistry:
    """Cancellable, owner-keyed timers backed by ``loop.call_later``.

    Usage::

        timers = TimerRegistry()
        timers.call_later("exec_123", 30.0, on_timeout)
        await timers.sleep("exec_123", 5.0)      # cancelled with its owner
        timers.cancel_owner("exec_123")
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._timers: dict[str, _Timer] = {}
        self._by_owner: dict[str, set[str]] = {}
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._ids = itertools.count(1)

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, owner: str, delay_seconds: float, callback: TimerCallback) -> str:
        """Run *callback* once after *delay_seconds*.

        Returns:
            The timer id, usable with :meth:`cancel`.
        """
        return self._arm(owner, delay_seconds, callback, interval=None)

    def every(self, owner: str, interval_seconds: float, callback: TimerCallback) -> str:
        """Run *callback* every *interval_seconds* until cancelled."""
        return self._arm(owner, interval_seconds, callback, interval=interval_seconds)

    async def sleep(self, owner: str, seconds: float) -> None:
        """Suspend the caller for *seconds* without blocking other work.

        The sleep is registered under *owner*; cancelling the owner raises
        ``asyncio.CancelledError`` into the sleeping coroutine.
        """
        future: asyncio.Future[None] = self._get_loop().create_future()

        def _wake() -> None:
            if not future.done():
                future.set_result(None)

        timer_id = self.call_later(owner, seconds, _wake)
        self._timers[timer_id].future = future
        try:
            await future
        finally:
            self.cancel(timer_id)

    def cancel(self, timer_id: str) -> bool:
        """Cancel a single timer.  Returns ``False`` if it already fired."""
        timer = self._forget(timer_id)
        if timer is None:
            return False
        if timer.handle is not None:
            timer.handle.cancel()
        if timer.future is not None and not timer.future.done():
            timer.future.cancel()
        return True

    def cancel_owner(self, owner: str) -> int:
        """Cancel every pending timer registered under *owner*.

        Returns:
            The number of timers cancelled.
        """
        timer_ids = list(self._by_owner.get(owner, ()))
        return sum(1 for timer_id in timer_ids if self.cancel(timer_id))

    def pending(self, owner: str | None = None) -> int:
        """Count pending timers, optionally only those of one owner."""
        if owner is None:
            return len(self._timers)
        return len(self._by_owner.get(owner, ()))

    def shutdown(self) -> None:
        """Cancel all timers and any callback tasks still running."""
        for timer_id in list(self._timers):
            self.cancel(timer_id)
        for task in list(self._background_tasks):
            task.cancel()
        self._background_tasks.clear()

    def _arm(
        self,
        owner: str,
        delay_seconds: float,
        callback: TimerCallback,
        interval: float | None,
    ) -> str:
        timer_id = f"timer_{next(self._ids)}"
        timer = _Timer(timer_id=timer_id, owner=owner, callback=callback, interval=interval)
        timer.handle = self._get_loop().call_later(max(delay_seconds, 0.0), self._fire, timer_id)
        self._timers[timer_id] = timer
        self._by_owner.setdefault(owner, set()).add(timer_id)
        return timer_id

    def _forget(self, timer_id: str) -> _Timer | None:
        timer = self._timers.pop(timer_id, None)
        if timer is None:
            return None
        owned = self._by_owner.get(timer.owner)
        if owned is not None:
            owned.discard(timer_id)
            if not owned:
                del self._by_owner[timer.owner]
        return timer

    def _fire(self, timer_id: str) -> None:
        timer = self._timers.get(timer_id)
        if timer is None:
            return
        if timer.interval is not None:
            timer.handle = self._get_loop().call_later(timer.interval, self._fire, timer_id)
        else:
            self._forget(timer_id)
        self._run_callback(timer)

    def _run_callback(self, timer: _Timer) -> None:
        try:
            result = timer.callback()
        except Exception:
            logger.exception("Timer callback failed", owner=timer.owner, timer_id=timer.timer_id)
            return
        if inspect.isawaitable(result):
            task = self._get_loop().create_task(_await(result))
            self._background_tasks.add(task)
            task.add_done_callback(self._task_done(timer))

    def _task_done(self, timer: _Timer) -> Callable[[asyncio.Task[Any]], None]:
        def _done(task: asyncio.Task[Any]) -> None:
            self._background_tasks.discard(task)
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                logger.error(
                    "Timer callback task failed",
                    owner=timer.owner,
                    timer_id=timer.timer_id,
                    error=str(exc),
                    exc_info=exc,
                )

        return _done
