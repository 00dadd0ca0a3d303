"""Poll schedule validation.

Schedules use the same syntax the watcher's cron runner accepts:

- ``@every <duration>`` with a Go-style duration (``30s``, ``1h30m``).
  Intervals are truncated to whole seconds with a floor of one second.
- predefined descriptors such as ``@hourly`` or ``@daily``
- cron expressions whose first field is seconds: six fields
  (``sec min hour dom month dow``), or five with day-of-week omitted

Cron field syntax is checked with croniter; the descriptor and interval
forms are handled here because croniter does not know them.
"""

import re
from datetime import timedelta

from croniter import croniter

DEFAULT_POLL_SCHEDULE = "@every 1m"

DESCRIPTORS = frozenset(
    {"@yearly", "@annually", "@monthly", "@weekly", "@daily", "@midnight", "@hourly"}
)

_EVERY_PREFIX = "@every "

_MIN_INTERVAL = timedelta(seconds=1)

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


class ScheduleError(ValueError):
    """Raised when a poll schedule cannot be parsed."""

    def __init__(self, schedule: str, reason: str):
        self.schedule = schedule
        self.reason = reason
        super().__init__(f"invalid poll schedule {schedule!r}: {reason}")


def parse_duration(value: str) -> timedelta:
    """Parse a Go-style duration string such as ``1h30m`` or ``500ms``.

    A bare ``0`` is accepted as the zero duration.

    Raises:
        ValueError: If the string is not a sequence of number+unit pairs.
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")
    if text == "0":
        return timedelta(0)

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if match is None:
            raise ValueError(f"unrecognised duration {value!r}")
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()

    return timedelta(seconds=total)


def every_interval(schedule: str) -> timedelta | None:
    """Return the effective interval of an ``@every`` schedule.

    Sub-second parts are dropped and anything under a second runs every
    second. Returns None for other schedule forms.
    """
    if not schedule.startswith(_EVERY_PREFIX):
        return None
    interval = parse_duration(schedule[len(_EVERY_PREFIX):])
    return max(timedelta(seconds=int(interval.total_seconds())), _MIN_INTERVAL)


def to_croniter_fields(fields: list[str]) -> list[str]:
    """Reorder seconds-first cron fields into croniter's seconds-last layout."""
    if len(fields) == 5:
        fields = fields + ["*"]
    return fields[1:] + fields[:1]


def validate_schedule(schedule: str) -> None:
    """Check that a poll schedule is syntactically valid.

    Raises:
        ScheduleError: If the schedule is empty or cannot be parsed.
    """
    expression = schedule.strip()
    if not expression:
        raise ScheduleError(schedule, "schedule is empty")

    if expression.startswith("@"):
        if expression in DESCRIPTORS:
            return
        if expression.startswith(_EVERY_PREFIX):
            try:
                every_interval(expression)
            except ValueError as e:
                raise ScheduleError(schedule, str(e)) from e
            return
        raise ScheduleError(schedule, "unknown descriptor")

    fields = expression.split()
    if len(fields) not in (5, 6):
        raise ScheduleError(
            schedule, f"expected 5 or 6 fields, found {len(fields)}"
        )

    if not croniter.is_valid(" ".join(to_croniter_fields(fields))):
        raise ScheduleError(schedule, "invalid cron expression")


__all__ = [
    "DEFAULT_POLL_SCHEDULE",
    "DESCRIPTORS",
    "ScheduleError",
    "every_interval",
    "parse_duration",
    "to_croniter_fields",
    "validate_schedule",
]
