"""Retry policy for calls that leave the process."""

from ticketflow.resilience.retry import (
    configure_error_reporter,
    resilient_api_call,
)

__all__ = [
    "configure_error_reporter",
    "resilient_api_call",
]
