"""Time-bound schedule exceptions layered on top of the pure evaluator.

Three exception types are supported:

``extend``
    Additional hibernation windows, unioned with the base schedule.
``suspend``
    Carve-out windows during which hibernation is withheld; ``lead_time``
    also withholds hibernation for a while before each carve-out starts.
``replace``
    The exception's windows replace the base schedule entirely.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Sequence

from protocol.errors import ConfigurationError

from .evaluator import EvaluationResult, ScheduleEvaluator, ScheduleState, localize
from .windows import OffHourWindow, resolve_timezone

_DURATION_RE = re.compile(r"(\d+)([hms])")
_UNIT_SECONDS = {"h": 3600, "m": 60, "s": 1}


class ExceptionType(str, Enum):
    EXTEND = "extend"
    SUSPEND = "suspend"
    REPLACE = "replace"


def parse_duration(value: str) -> timedelta:
    """Parse durations such as ``"1h"``, ``"30m"`` or ``"1h30m15s"``."""
    text = (value or "").strip()
    if not text:
        return timedelta(0)
    pos = 0
    seconds = 0
    for match in _DURATION_RE.finditer(text):
        if match.start() != pos:
            break
        seconds += int(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ConfigurationError(f"invalid duration {value!r}")
    return timedelta(seconds=seconds)


@dataclass(frozen=True)
class ScheduleException:
    """A time-bound override of a plan's schedule."""

    type: ExceptionType
    valid_from: datetime
    valid_until: datetime
    windows: tuple[OffHourWindow, ...] = ()
    lead_time: timedelta = timedelta(0)
    name: str = ""

    def __post_init__(self) -> None:
        if self.valid_until < self.valid_from:
            raise ConfigurationError(
                f"exception {self.name!r}: validUntil is before validFrom"
            )

    def is_active(self, now: datetime) -> bool:
        return self.valid_from <= now <= self.valid_until

    def is_expired(self, now: datetime) -> bool:
        return now > self.valid_until


def evaluate_with_exception(
    evaluator: ScheduleEvaluator,
    windows: Sequence[OffHourWindow],
    timezone: str,
    exception: ScheduleException | None,
    now: datetime,
) -> EvaluationResult:
    """Evaluate the base schedule, then apply *exception* if it is active."""
    base = evaluator.evaluate(windows, timezone, now)
    if exception is None or not exception.is_active(now):
        return base

    if exception.type is ExceptionType.REPLACE:
        return evaluator.evaluate(exception.windows, timezone, now)

    if exception.type is ExceptionType.EXTEND:
        extra = evaluator.evaluate(exception.windows, timezone, now)
        hibernating = base.should_hibernate or extra.should_hibernate
        return EvaluationResult(
            current_state=(
                ScheduleState.HIBERNATING if hibernating else ScheduleState.ACTIVE
            ),
            next_hibernate_time=_earliest(
                base.next_hibernate_time, extra.next_hibernate_time
            ),
            next_wake_up_time=_earliest(
                base.next_wake_up_time, extra.next_wake_up_time
            ),
        )

    return _apply_suspension(base, exception, timezone, now)


def _apply_suspension(
    base: EvaluationResult,
    exception: ScheduleException,
    timezone: str,
    now: datetime,
) -> EvaluationResult:
    local_now = localize(now, resolve_timezone(timezone))

    suspension_end = find_suspension_end(exception.windows, local_now)
    if suspension_end is not None:
        next_hibernate = base.next_hibernate_time
        if next_hibernate is not None and next_hibernate < suspension_end:
            next_hibernate = suspension_end
        return EvaluationResult(
            current_state=ScheduleState.ACTIVE,
            next_hibernate_time=next_hibernate,
            next_wake_up_time=base.next_wake_up_time,
        )

    if in_lead_time(exception.windows, local_now, exception.lead_time):
        return EvaluationResult(
            current_state=ScheduleState.ACTIVE,
            next_hibernate_time=base.next_hibernate_time,
            next_wake_up_time=base.next_wake_up_time,
        )
    return base


def find_suspension_end(
    windows: Sequence[OffHourWindow], local_now: datetime
) -> datetime | None:
    """End of the latest-ending suspension window containing *local_now*."""
    ends = [
        interval[1]
        for interval in (w.containing_interval(local_now) for w in windows)
        if interval is not None
    ]
    return max(ends) if ends else None


def in_lead_time(
    windows: Sequence[OffHourWindow], local_now: datetime, lead_time: timedelta
) -> bool:
    """True when a suspension window starts within *lead_time* of *local_now*."""
    if lead_time <= timedelta(0):
        return False
    tz = local_now.tzinfo
    assert tz is not None
    for window in windows:
        if not window.is_effective:
            continue
        for offset in (0, 1):
            day = local_now.date() + timedelta(days=offset)
            if day.weekday() not in window.days_of_week:
                continue
            start, _ = window.interval_starting_on(day, tz)
            if start - lead_time <= local_now < start:
                return True
    return False


def _earliest(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)
