"""Shared pytest fixtures for the ticketflow test suite."""

from __future__ import annotations

import itertools
from typing import Any
from unittest.mock import AsyncMock

import pytest
from helpers import FakeClock, ManualTimers

from ticketflow.slack.models import DeliveryRef
from ticketflow.threads.store import ThreadContextStore


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timers(clock: FakeClock) -> ManualTimers:
    return ManualTimers(clock)


@pytest.fixture
def messenger() -> AsyncMock:
    """Messaging collaborator recording every delivery.

    Each message lands in the requested channel with a fresh, increasing ts.
    """
    counter = itertools.count(1)
    mock = AsyncMock()

    async def _send(channel: str, content: Any, thread_ts: str | None = None) -> DeliveryRef:
        return DeliveryRef(channel=channel, ts=f"1700000000.{next(counter):06d}")

    mock.send_message.side_effect = _send
    mock.add_reaction.return_value = None
    return mock


@pytest.fixture
def thread_store(timers: ManualTimers, clock: FakeClock) -> ThreadContextStore:
    return ThreadContextStore(timers, clock=clock)


@pytest.fixture
def anyio_backend() -> str:
    """The code under test is asyncio-based; run anyio tests on asyncio only."""
    return "asyncio"
