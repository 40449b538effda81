"""Team availability: working days, working hours and holidays in the team's timezone."""

from __future__ import annotations

from datetime import datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from ticketflow.escalation.models import AvailabilityResult, TeamAvailability

logger = structlog.get_logger()

OUTSIDE_WORKING_DAYS = "outside_working_days"
OUTSIDE_WORKING_HOURS = "outside_working_hours"
HOLIDAY = "holiday"


def resolve_timezone(name: str) -> ZoneInfo:
    """Return the zone called *name*, or UTC if it is unknown."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown team timezone, falling back to UTC", timezone=name)
        return ZoneInfo("UTC")


def parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":", 1)
    return time(int(hours), int(minutes))


def within_window(current: time, start: time, end: time) -> bool:
    """Inclusive window check; ``start > end`` wraps past midnight."""
    if start <= end:
        return start <= current <= end
    return current >= start or current <= end


def check_team_availability(
    availability: TeamAvailability,
    now: datetime,
    timezone: str | None = None,
) -> AvailabilityResult:
    """Decide whether a team can be reached at *now*.

    Args:
        availability: The team's schedule.
        now: An aware datetime; converted into the team's timezone.
        timezone: Overrides ``availability.timezone`` (for example a
            timezone looked up from the team's first member).

    Returns:
        The result, naming the reason and on-call member when unavailable.
    """
    local = now.astimezone(resolve_timezone(timezone or availability.timezone or "UTC"))
    on_call = availability.on_call

    # isoweekday: Monday=1 .. Sunday=7; schedule days use Sunday=0.
    day_of_week = local.isoweekday() % 7
    if day_of_week not in availability.working_days:
        return AvailabilityResult(is_available=False, reason=OUTSIDE_WORKING_DAYS, on_call=on_call)

    hours = availability.working_hours
    current = local.time().replace(second=0, microsecond=0)
    if not within_window(current, parse_hhmm(hours.start), parse_hhmm(hours.end)):
        return AvailabilityResult(
            is_available=False, reason=OUTSIDE_WORKING_HOURS, on_call=on_call
        )

    if local.date().isoformat() in availability.holidays:
        return AvailabilityResult(is_available=False, reason=HOLIDAY, on_call=on_call)

    return AvailabilityResult(is_available=True)
