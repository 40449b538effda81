"""Sentry SDK initialization with the structlog-sentry bridge.

``init_sentry(dsn, environment)`` is a no-op when *dsn* is empty, so it is safe
to call unconditionally at startup.  ``get_sentry_processor()`` returns the
structlog processor that forwards ERROR events (failed workflow executions,
exhausted Slack retries) to Sentry.
"""

from __future__ import annotations

import logging

import sentry_sdk
import structlog
from sentry_sdk.integrations.logging import LoggingIntegration
from structlog_sentry import SentryProcessor


def init_sentry(dsn: str, environment: str = "development") -> bool:
    """Initialize Sentry when a DSN is configured.

    Returns:
        True if the SDK was initialized.
    """
    if not dsn:
        return False

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.1,
        send_default_pii=False,
        # structlog-sentry does the capturing; the stdlib integration would
        # report every event twice.
        integrations=[LoggingIntegration(event_level=None, level=None)],
    )
    return True


def get_sentry_processor() -> structlog.types.Processor:
    """Return a processor forwarding ERROR-level events to Sentry.

    Must sit after ``add_log_level`` and before the renderer.
    """
    return SentryProcessor(event_level=logging.ERROR)
