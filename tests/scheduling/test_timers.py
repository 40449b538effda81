"""Tests for the owner-keyed asyncio timer registry."""

from __future__ import annotations

import asyncio

import pytest

from ticketflow.scheduling.timers import TimerRegistry, utc_now


class TestCallLater:
    @pytest.mark.anyio()
    async def test_sync_callback_fires_once(self) -> None:
        timers = TimerRegistry()
        fired: list[str] = []

        timers.call_later("owner", 0.01, lambda: fired.append("x"))
        await asyncio.sleep(0.05)

        assert fired == ["x"]
        assert timers.pending() == 0

    @pytest.mark.anyio()
    async def test_async_callback_runs_as_task(self) -> None:
        timers = TimerRegistry()
        done = asyncio.Event()

        async def _callback() -> None:
            done.set()

        timers.call_later("owner", 0.01, _callback)
        await asyncio.wait_for(done.wait(), timeout=1)

    @pytest.mark.anyio()
    async def test_failing_callback_does_not_break_registry(self) -> None:
        timers = TimerRegistry()
        fired: list[int] = []

        def _boom() -> None:
            raise RuntimeError("boom")

        timers.call_later("a", 0.01, _boom)
        timers.call_later("b", 0.02, lambda: fired.append(1))
        await asyncio.sleep(0.06)

        assert fired == [1]


class TestCancellation:
    @pytest.mark.anyio()
    async def test_cancel_owner_cancels_all_of_its_timers(self) -> None:
        timers = TimerRegistry()
        fired: list[str] = []

        timers.call_later("exec_1", 0.01, lambda: fired.append("a"))
        timers.call_later("exec_1", 0.02, lambda: fired.append("b"))
        timers.call_later("exec_2", 0.01, lambda: fired.append("c"))

        assert timers.cancel_owner("exec_1") == 2
        await asyncio.sleep(0.05)

        assert fired == ["c"]

    @pytest.mark.anyio()
    async def test_cancel_single_timer(self) -> None:
        timers = TimerRegistry()
        timer_id = timers.call_later("owner", 10, lambda: None)

        assert timers.cancel(timer_id) is True
        assert timers.cancel(timer_id) is False
        assert timers.pending("owner") == 0

    @pytest.mark.anyio()
    async def test_cancel_owner_interrupts_sleep(self) -> None:
        timers = TimerRegistry()
        sleeper = asyncio.get_running_loop().create_task(timers.sleep("exec_1", 10))
        await asyncio.sleep(0)

        timers.cancel_owner("exec_1")

        with pytest.raises(asyncio.CancelledError):
            await sleeper

    @pytest.mark.anyio()
    async def test_sleep_returns_after_delay(self) -> None:
        timers = TimerRegistry()
        await timers.sleep("exec_1", 0.01)
        assert timers.pending() == 0


class TestEvery:
    @pytest.mark.anyio()
    async def test_repeats_until_owner_cancelled(self) -> None:
        timers = TimerRegistry()
        ticks: list[int] = []

        timers.every("sweep:test", 0.01, lambda: ticks.append(1))
        await asyncio.sleep(0.055)
        timers.cancel_owner("sweep:test")
        count = len(ticks)
        await asyncio.sleep(0.03)

        assert count >= 3
        assert len(ticks) == count

    @pytest.mark.anyio()
    async def test_shutdown_clears_everything(self) -> None:
        timers = TimerRegistry()
        timers.every("a", 1, lambda: None)
        timers.call_later("b", 1, lambda: None)

        timers.shutdown()

        assert timers.pending() == 0


def test_utc_now_is_timezone_aware() -> None:
    assert utc_now().tzinfo is not None
