"""Application entry point combining the FastAPI health server and Slack Bolt Socket Mode.

Runs the HTTP server (health, readiness and metrics endpoints) and the Slack
Bolt handler (Socket Mode WebSocket) concurrently in a single long-running
process.

Configures:
- **structlog** with JSON rendering (production) or colored console (development)
- **Sentry** forwarding of ERROR events when ``SENTRY_DSN`` is set
- **Retry logic** for Slack Web API calls with error-channel notification
- **Core services**: workflow engine, escalation router and thread context store
  sharing one timer registry
- **Slack listeners and slash commands** (/ack, /workflow, /mentions)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI

from ticketflow.config import Settings, get_settings, validate_credentials
from ticketflow.escalation.router import EscalationRouter
from ticketflow.escalation.rules import load_routing_config
from ticketflow.health import register_health_routes
from ticketflow.observability.metrics import setup_metrics
from ticketflow.observability.middleware import RequestIdMiddleware
from ticketflow.observability.sentry import get_sentry_processor, init_sentry
from ticketflow.resilience.retry import configure_error_reporter
from ticketflow.scheduling.timers import TimerRegistry
from ticketflow.slack.app import create_slack_app, start_slack_app
from ticketflow.slack.client import SlackDirectory, SlackMessenger, UnconfiguredMessenger
from ticketflow.threads.store import ThreadContextStore
from ticketflow.workflow.engine import WorkflowEngine
from ticketflow.workflow.steps import StepRunner

logger = structlog.get_logger()


def configure_logging(production: bool = False, sentry_enabled: bool = False) -> None:
    """Configure structlog for production (JSON) or development (console).

    Production mode (*production=True*): JSON rendering at INFO level.
    Development mode: colored console rendering at DEBUG level.

    Args:
        production: Enable production mode if ``True``.
        sentry_enabled: Forward ERROR events to Sentry.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if sentry_enabled:
        shared_processors.append(get_sentry_processor())

    if production:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
        log_level = logging.INFO
    else:
        renderer = structlog.dev.ConsoleRenderer()
        log_level = logging.DEBUG

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(service="ticketflow")


def initialize_services(settings: Settings | None = None) -> dict[str, Any]:
    """Set up all shared services for the application.

    Creates the Slack messenger and directory (if a bot token is available),
    the error reporter, the shared timer registry, the thread context store,
    the workflow engine, the escalation router (with rules and teams from the
    routing config), and the Bolt app with listeners and commands.

    Args:
        settings: Application settings.  If ``None``, ``get_settings()`` is used.

    Returns:
        A dict of initialized service instances keyed by name.
    """
    if settings is None:
        settings = get_settings()

    services: dict[str, Any] = {"_settings": settings, "background_started": False}

    # a. Slack messenger and directory (if slack_bot_token available)
    messenger = None
    directory = None
    slack_bot_token = settings.slack_bot_token.get_secret_value() or None
    if slack_bot_token:
        messenger = SlackMessenger(
            bot_token=slack_bot_token, error_channel=settings.slack_error_channel
        )
        directory = SlackDirectory(messenger.client)
        logger.info("SlackMessenger initialized")
    else:
        logger.info("SLACK_BOT_TOKEN not set, SlackMessenger disabled")
    services["messenger"] = messenger
    services["directory"] = directory

    # b. Retry exhaustion alerts go to the error channel
    if messenger is not None and settings.slack_error_channel:
        configure_error_reporter(messenger)
        logger.info("Error reporter configured for retry exhaustion alerts")

    # c. Core services share one timer registry
    scheduler = TimerRegistry()
    services["scheduler"] = scheduler
    delivery = messenger or UnconfiguredMessenger()

    thread_store = ThreadContextStore(
        scheduler,
        activity_limit=settings.thread_activity_limit,
        message_limit=settings.thread_message_limit,
        inactive_after=timedelta(hours=settings.thread_inactive_hours),
        cleanup_interval_seconds=settings.cleanup_interval_seconds,
    )
    services["thread_store"] = thread_store

    services["workflow_engine"] = WorkflowEngine(
        delivery,
        scheduler,
        step_runner=StepRunner(delivery, scheduler, thread_store=thread_store),
        default_timeout_seconds=settings.default_workflow_timeout_seconds,
        stale_after=timedelta(hours=settings.stale_execution_hours),
        cleanup_interval_seconds=settings.cleanup_interval_seconds,
    )

    routing = load_routing_config(settings.rules_config_path)
    services["escalation_router"] = EscalationRouter(
        delivery,
        scheduler,
        directory=directory,
        rules=routing.rules,
        teams=routing.teams,
        notification_ttl=timedelta(minutes=settings.notification_ttl_minutes),
        history_limit=settings.mention_history_limit,
        history_retention=timedelta(days=settings.mention_history_days),
        cleanup_interval_seconds=settings.cleanup_interval_seconds,
    )

    # d. Slack Bolt app with listeners and commands
    bolt_app = None
    if slack_bot_token:
        try:
            bolt_app = create_slack_app(services, bot_token=slack_bot_token)
            logger.info("Slack Bolt app created")
        except Exception:
            logger.warning("Failed to create Slack Bolt app", exc_info=True)
    services["bolt_app"] = bolt_app
    services["slack_app_token"] = settings.slack_app_token.get_secret_value()

    return services


async def start_services(services: dict[str, Any]) -> None:
    """Attach the running loop and arm the background sweeps."""
    services["loop"] = asyncio.get_running_loop()
    services["thread_store"].start_background_tasks()
    services["workflow_engine"].start_background_tasks()
    services["escalation_router"].start_background_tasks()
    services["background_started"] = True
    logger.info("Core services started")


async def stop_services(services: dict[str, Any]) -> None:
    """Cancel sweeps, in-flight executions and every pending timer."""
    services["background_started"] = False
    await services["workflow_engine"].shutdown()
    services["escalation_router"].shutdown()
    services["thread_store"].shutdown()
    services["scheduler"].shutdown()
    logger.info("Core services stopped")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Lifespan context manager for FastAPI startup and shutdown.

    On startup: attaches the event loop and starts the background sweeps.
    On shutdown: cancels every timer and in-flight execution.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control to the application.
    """
    services = app.state.services
    await start_services(services)
    logger.info("FastAPI application starting")
    yield
    await stop_services(services)


def create_app(services: dict[str, Any]) -> FastAPI:
    """Create the FastAPI app with lifespan, health routes, metrics and request ids.

    Args:
        services: The initialized services dict from ``initialize_services``.

    Returns:
        The configured FastAPI application.
    """
    fastapi_app = FastAPI(title="Ticketflow", lifespan=lifespan)
    fastapi_app.state.services = services
    fastapi_app.state.settings = services.get("_settings", get_settings())
    fastapi_app.add_middleware(RequestIdMiddleware)
    register_health_routes(fastapi_app)
    setup_metrics(fastapi_app)
    return fastapi_app


async def run_slack_bot(services: dict[str, Any]) -> None:
    """Start Slack Bolt Socket Mode handler in a background thread.

    Uses ``asyncio.to_thread`` since Bolt Socket Mode is synchronous.

    Args:
        services: The initialized services dict.
    """
    bolt_app = services.get("bolt_app")
    if bolt_app is None:
        logger.warning("No Slack Bolt app available, skipping Socket Mode")
        return

    app_token = services.get("slack_app_token", "")
    if not app_token:
        logger.warning("SLACK_APP_TOKEN not set, skipping Socket Mode")
        return

    logger.info("Starting Slack Bolt Socket Mode handler")
    try:
        await asyncio.to_thread(start_slack_app, bolt_app, app_token)
    except Exception:
        logger.exception("Slack Bolt Socket Mode handler failed")


async def main() -> None:
    """Main entry point: run FastAPI and Slack Bolt concurrently.

    1. Configure logging (and Sentry)
    2. Initialize services
    3. Create FastAPI app
    4. Run uvicorn + Slack Bolt with asyncio.gather
    """
    settings = get_settings()
    sentry_enabled = init_sentry(
        settings.sentry_dsn, "production" if settings.production else "development"
    )
    configure_logging(production=settings.production, sentry_enabled=sentry_enabled)
    logger.info("Application starting")

    validate_credentials(settings)

    services = initialize_services(settings)

    fastapi_app = create_app(services)

    config = uvicorn.Config(
        fastapi_app,
        host="0.0.0.0",
        port=settings.http_port,
        log_level="info",
    )
    server = uvicorn.Server(config)

    await asyncio.gather(server.serve(), run_slack_bot(services))


if __name__ == "__main__":
    asyncio.run(main())
