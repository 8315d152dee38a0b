"""Schedule specifications and next-run calculation.

Two schedule forms are supported:

Cron
    Standard five-field Unix cron (``minute hour day-of-month month
    day-of-week``) as implemented by croniter, plus the ``@yearly``,
    ``@annually``, ``@monthly``, ``@weekly``, ``@daily``, ``@midnight``
    and ``@hourly`` aliases. When both day fields are restricted a day
    matching either one fires. Expressions are evaluated in UTC unless
    prefixed with ``TZ=<zone>`` or ``CRON_TZ=<zone>``, e.g.
    ``TZ=Europe/Berlin 0 9 * * 1``.

Interval
    ``every <duration> [from <anchor>]`` where the duration is built
    from ``<n>d``, ``<n>h``, ``<n>m`` and ``<n>s`` parts and the anchor
    is an ISO-8601 timestamp (UTC if naive, Unix epoch if omitted), e.g.
    ``every 5m`` or ``every 1h30m from 2025-01-01T09:00:00Z``. Firing
    instants are ``anchor + k * duration`` for every integer k.

``next_run_time`` is pure: the same (schedule, from) always gives the
same answer, and that answer is always strictly later than ``from``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from vigil_cli.scheduler.exceptions import InvalidScheduleError
from vigil_cli.scheduler.job import ensure_utc

CRON_ALIASES = frozenset(
    ["@yearly", "@annually", "@monthly", "@weekly", "@daily", "@midnight", "@hourly"]
)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_TZ_PREFIX = re.compile(r"^(?:CRON_)?TZ=(?P<zone>\S+)\s+(?P<rest>.+)$")
_INTERVAL = re.compile(
    r"^every\s+(?P<duration>(?:\d+[dhms])+)(?:\s+from\s+(?P<anchor>\S+))?$",
    re.IGNORECASE,
)
_DURATION_PART = re.compile(r"(\d+)([dhms])", re.IGNORECASE)
_UNITS = {"d": "days", "h": "hours", "m": "minutes", "s": "seconds"}


@dataclass(frozen=True)
class CronSchedule:
    """A cron expression evaluated in a fixed time zone."""

    expression: str
    zone: str = "UTC"

    def next_after(self, from_: datetime) -> datetime:
        tz = timezone.utc if self.zone == "UTC" else ZoneInfo(self.zone)
        local = ensure_utc(from_).astimezone(tz)
        itr = croniter(self.expression, local)
        candidate = itr.get_next(datetime)
        # Guard against a start instant that is itself a match
        while candidate <= local:
            candidate = itr.get_next(datetime)
        return candidate.astimezone(timezone.utc)


@dataclass(frozen=True)
class IntervalSchedule:
    """A fixed interval aligned to an anchor instant."""

    interval: timedelta
    anchor: datetime = EPOCH

    def next_after(self, from_: datetime) -> datetime:
        elapsed = ensure_utc(from_) - self.anchor
        periods = elapsed // self.interval
        return self.anchor + (periods + 1) * self.interval


Schedule = Union[CronSchedule, IntervalSchedule]


def _parse_duration(text: str, spec: str) -> timedelta:
    total = timedelta()
    for amount, unit in _DURATION_PART.findall(text):
        total += timedelta(**{_UNITS[unit.lower()]: int(amount)})
    if total <= timedelta(0):
        raise InvalidScheduleError(spec, "interval must be positive")
    return total


def _parse_anchor(text: str, spec: str) -> datetime:
    try:
        anchor = datetime.fromisoformat(text)
    except ValueError:
        raise InvalidScheduleError(spec, f"invalid anchor timestamp '{text}'") from None
    return ensure_utc(anchor)


def _parse_cron(expression: str, zone: str, spec: str) -> CronSchedule:
    try:
        if zone != "UTC":
            ZoneInfo(zone)
    except (ZoneInfoNotFoundError, ValueError):
        raise InvalidScheduleError(spec, f"unknown time zone '{zone}'") from None

    if expression.lower() not in CRON_ALIASES:
        fields = expression.split()
        if len(fields) != 5:
            raise InvalidScheduleError(
                spec,
                f"expected 5 cron fields (minute hour day month weekday), got {len(fields)}",
            )
    if not croniter.is_valid(expression):
        raise InvalidScheduleError(spec, "malformed cron expression")
    return CronSchedule(expression=expression, zone=zone)


@lru_cache(maxsize=512)
def parse_schedule(spec: str) -> Schedule:
    """Parse a schedule specification string.

    Args:
        spec: Cron or interval specification

    Returns:
        The parsed schedule

    Raises:
        InvalidScheduleError: If the specification is malformed
    """
    if not isinstance(spec, str) or not spec.strip():
        raise InvalidScheduleError(str(spec), "schedule is empty")

    text = " ".join(spec.split())

    match = _INTERVAL.match(text)
    if match:
        interval = _parse_duration(match.group("duration"), spec)
        anchor = match.group("anchor")
        return IntervalSchedule(
            interval=interval,
            anchor=_parse_anchor(anchor, spec) if anchor else EPOCH,
        )
    if text.lower().startswith("every"):
        raise InvalidScheduleError(spec, "expected 'every <duration> [from <timestamp>]'")

    zone = "UTC"
    match = _TZ_PREFIX.match(text)
    if match:
        zone, text = match.group("zone"), match.group("rest")

    return _parse_cron(text, zone, spec)


def next_run_time(schedule: Union[str, Schedule], from_: datetime) -> datetime:
    """Compute the next firing instant strictly after ``from_``.

    Args:
        schedule: Specification string or parsed schedule
        from_: Reference time (naive values are UTC)

    Returns:
        Aware UTC datetime greater than ``from_``

    Raises:
        InvalidScheduleError: If the specification is malformed
    """
    parsed = parse_schedule(schedule) if isinstance(schedule, str) else schedule
    return parsed.next_after(from_)


def validate_schedule(spec: str) -> bool:
    """Check whether a specification parses."""
    try:
        parse_schedule(spec)
    except InvalidScheduleError:
        return False
    return True
