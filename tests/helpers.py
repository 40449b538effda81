"""Test doubles and builders shared across the test suite.

Time is virtual: ``FakeClock`` is the clock every service reads and
``ManualTimers`` is a drop-in for the timer registry whose callbacks only
fire when a test calls ``await timers.advance(seconds)``.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock

from ticketflow.escalation.models import MentionEvent

# Monday 2026-03-02 10:00 UTC: inside default working hours.
START = datetime(2026, 3, 2, 10, 0, tzinfo=UTC)


class FakeClock:
    """Settable clock; call it to read the current time."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@dataclass
class _ManualTimer:
    timer_id: str
    owner: str
    due: datetime
    callback: Any
    interval: float | None = None
    future: asyncio.Future[None] | None = None


async def settle(rounds: int = 20) -> None:
    """Let spawned tasks run until they block again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class ManualTimers:
    """Virtual-time timer registry with the same surface as ``TimerRegistry``."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self._timers: dict[str, _ManualTimer] = {}
        self._ids = itertools.count(1)

    def call_later(self, owner: str, delay_seconds: float, callback: Any) -> str:
        timer_id = f"manual_{next(self._ids)}"
        due = self.clock() + timedelta(seconds=max(delay_seconds, 0.0))
        self._timers[timer_id] = _ManualTimer(timer_id, owner, due, callback)
        return timer_id

    def every(self, owner: str, interval_seconds: float, callback: Any) -> str:
        timer_id = self.call_later(owner, interval_seconds, callback)
        self._timers[timer_id].interval = interval_seconds
        return timer_id

    async def sleep(self, owner: str, seconds: float) -> None:
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()

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
        timer = self._timers.pop(timer_id, None)
        if timer is None:
            return False
        if timer.future is not None and not timer.future.done():
            timer.future.cancel()
        return True

    def cancel_owner(self, owner: str) -> int:
        ids = [t.timer_id for t in self._timers.values() if t.owner == owner]
        return sum(1 for timer_id in ids if self.cancel(timer_id))

    def pending(self, owner: str | None = None) -> int:
        if owner is None:
            return len(self._timers)
        return sum(1 for t in self._timers.values() if t.owner == owner)

    def shutdown(self) -> None:
        for timer_id in list(self._timers):
            self.cancel(timer_id)

    def owners(self) -> set[str]:
        return {t.owner for t in self._timers.values()}

    async def advance(self, seconds: float) -> None:
        """Move time forward, firing due timers in order."""
        target = self.clock() + timedelta(seconds=seconds)
        await settle()
        while True:
            due = [t for t in self._timers.values() if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.clock.now = max(self.clock.now, timer.due)
            if timer.interval is not None:
                timer.due = timer.due + timedelta(seconds=timer.interval)
            else:
                self._timers.pop(timer.timer_id, None)
            result = timer.callback()
            if inspect.isawaitable(result):
                await result
            await settle()
        self.clock.now = target
        await settle()


def make_mention(**overrides: Any) -> MentionEvent:
    """Build a valid mention event; override any field by keyword."""
    fields: dict[str, Any] = {
        "mentioned_id": "U_TARGET",
        "mentioned_by": "U_SENDER",
        "channel": "C_SUPPORT",
        "message_ts": "1700000000.000100",
        "text": "can you take a look at this?",
    }
    fields.update(overrides)
    return MentionEvent(**fields)


def sent_texts(messenger: AsyncMock) -> list[str]:
    """Plain-text bodies of every message sent so far."""
    return [c.args[1].text for c in messenger.send_message.call_args_list]


def sent_channels(messenger: AsyncMock) -> list[str]:
    """Target channel (or user id) of every message sent so far."""
    return [c.args[0] for c in messenger.send_message.call_args_list]
