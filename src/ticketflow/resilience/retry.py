"""Resilient API call decorator with tenacity retry and Slack error reporting.

Slack Web API and integration calls are retried 3 times with exponential
backoff and jitter.  When the last attempt fails the error is logged, posted
to the configured error channel if a reporter is set, and the original
exception is re-raised so callers still see the delivery failure.  The
reporter blocks, so on a running event loop it is handed to the default
executor instead of being called inline.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

import structlog
from tenacity import (
    RetryCallState,
    retry,
    stop_after_attempt,
    wait_exponential_jitter,
)

logger = structlog.get_logger()

F = TypeVar("F", bound=Callable[..., Any])

MAX_ATTEMPTS = 3


class ErrorReporter(Protocol):
    """Anything that can post a plain-text alert synchronously."""

    def report_error(self, text: str) -> None: ...


# Set once at startup; module-level to avoid a circular import with the Slack client.
_reporter: ErrorReporter | None = None
# Alerts still being posted from the default executor.
_pending_reports: set[asyncio.Future[None]] = set()


def configure_error_reporter(reporter: ErrorReporter | None) -> None:
    """Set (or clear) the reporter used on final retry failure.

    Args:
        reporter: Typically the :class:`~ticketflow.slack.client.SlackMessenger`
            bound to the ``SLACK_ERROR_CHANNEL``.
    """
    global _reporter
    _reporter = reporter


def _api_name(retry_state: RetryCallState) -> str:
    return getattr(retry_state.fn, "_api_name", "unknown") if retry_state.fn else "unknown"


def report_final_failure(retry_state: RetryCallState) -> Any:
    """Log the exhausted call, alert the error channel, then re-raise.

    Args:
        retry_state: Tenacity retry state with attempt info and exception.

    Raises:
        Exception: The exception raised by the final attempt.
    """
    outcome = retry_state.outcome
    exception = outcome.exception() if outcome else None
    api_name = _api_name(retry_state)

    logger.error(
        "API call failed after all retries",
        api_name=api_name,
        attempts=retry_state.attempt_number,
        error=str(exception),
    )

    if _reporter is not None:
        _send_report(
            _reporter,
            f"*API Error: {api_name}*\n"
            f"Failed after {retry_state.attempt_number} attempts.\n"
            f"Error: `{exception}`",
        )

    if outcome is None:
        raise RuntimeError(f"{api_name} call finished without an outcome")
    return outcome.result()


def _send_report(reporter: ErrorReporter, text: str) -> None:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        _report_safely(reporter, text)
        return
    future = loop.run_in_executor(None, _report_safely, reporter, text)
    _pending_reports.add(future)
    future.add_done_callback(_pending_reports.discard)


def _report_safely(reporter: ErrorReporter, text: str) -> None:
    try:
        reporter.report_error(text)
    except Exception:
        logger.exception("Failed to send Slack error notification")


def _before_sleep_log(retry_state: RetryCallState) -> None:
    logger.warning(
        "Retrying API call",
        api_name=_api_name(retry_state),
        attempt=retry_state.attempt_number,
        wait=retry_state.next_action.sleep if retry_state.next_action else 0,
    )


def resilient_api_call(api_name: str) -> Callable[[F], F]:
    """Create a retry decorator for an API call.

    The decorator is configured with:
    - 3 attempts maximum
    - Exponential backoff with jitter (1s initial, 30s max, 5s jitter)
    - Warning log before each retry
    - Error log and error-channel alert on final failure
    - Original exception re-raised after exhaustion

    Works for both plain and ``async`` functions.

    Args:
        api_name: Human-readable name for the API (used in logs and alerts).

    Returns:
        A decorator that wraps the function with retry logic.
    """

    def decorator(func: F) -> F:
        func._api_name = api_name  # type: ignore[attr-defined]

        wrapped = retry(
            stop=stop_after_attempt(MAX_ATTEMPTS),
            wait=wait_exponential_jitter(initial=1, max=30, jitter=5),
            before_sleep=_before_sleep_log,
            retry_error_callback=report_final_failure,
            reraise=True,
        )(func)

        return wrapped  # type: ignore[no-any-return]

    return decorator
