"""Prometheus metrics instrumentation for the ticketflow orchestrator.

Provides:
- ``setup_metrics(app)``: Attach prometheus-fastapi-instrumentator to a FastAPI app,
  exposing ``/metrics`` with HTTP request duration/count plus custom business metrics.
- ``ACTIVE_WORKFLOW_EXECUTIONS``: Gauge tracking in-memory running executions.
- ``WORKFLOW_EXECUTIONS_FINISHED``: Counter of executions reaching a terminal status.
- ``MENTIONS_PROCESSED``: Counter of mention events accepted by the router.
- ``ESCALATIONS_SENT``: Counter of escalation notifications dispatched.
- ``ACTIVE_THREAD_CONTEXTS``: Gauge tracking tracked thread contexts.

Business metrics are updated where the owning service mutates its registry.
"""

from __future__ import annotations

from fastapi import FastAPI
from prometheus_client import Counter, Gauge
from prometheus_fastapi_instrumentator import Instrumentator

ACTIVE_WORKFLOW_EXECUTIONS: Gauge = Gauge(
    "ticketflow_workflow_executions_active",
    "Number of workflow executions currently in the active registry",
)

WORKFLOW_EXECUTIONS_FINISHED: Counter = Counter(
    "ticketflow_workflow_executions_finished_total",
    "Total number of workflow executions reaching a terminal status",
    ["status"],
)

MENTIONS_PROCESSED: Counter = Counter(
    "ticketflow_mentions_processed_total",
    "Total number of mention events accepted for rule evaluation",
)

ESCALATIONS_SENT: Counter = Counter(
    "ticketflow_escalations_sent_total",
    "Total number of escalation notifications dispatched",
)

ACTIVE_THREAD_CONTEXTS: Gauge = Gauge(
    "ticketflow_thread_contexts_active",
    "Number of thread contexts currently tracked in memory",
)


def setup_metrics(app: FastAPI) -> None:
    """Instrument *app* with Prometheus HTTP metrics and expose ``/metrics``.

    Excludes health/ready/metrics endpoints from instrumentation to avoid
    noise in dashboards.

    Args:
        app: The FastAPI application to instrument.
    """
    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=["/health", "/ready", "/metrics"],
    ).instrument(app).expose(app, include_in_schema=False, should_gzip=True)
