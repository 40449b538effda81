"""Clock and owner-keyed timer registry used by the core services."""

from ticketflow.scheduling.timers import (
    Clock,
    Scheduler,
    TimerCallback,
    TimerRegistry,
    utc_now,
)

__all__ = [
    "Clock",
    "Scheduler",
    "TimerCallback",
    "TimerRegistry",
    "utc_now",
]
