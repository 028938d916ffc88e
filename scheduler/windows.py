"""Off-hour window types and parsing."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any, Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from protocol.errors import ConfigurationError

WEEKDAYS: tuple[str, ...] = ("MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN")

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_time(value: str) -> time:
    """Parse an ``HH:MM`` wall-clock time.

    Raises ConfigurationError when the hour is outside 0-23 or the minute
    outside 0-59.
    """
    match = _TIME_RE.match(value.strip()) if isinstance(value, str) else None
    if match is None:
        raise ConfigurationError(f"invalid time format {value!r}, expected HH:MM")
    hour, minute = int(match.group(1)), int(match.group(2))
    if not 0 <= hour <= 23:
        raise ConfigurationError(f"invalid hour {hour} in {value!r}")
    if not 0 <= minute <= 59:
        raise ConfigurationError(f"invalid minute {minute} in {value!r}")
    return time(hour, minute)


def parse_days(days: Iterable[str]) -> frozenset[int]:
    """Map day names (``MON``..``SUN``, case-insensitive) to ``weekday()`` numbers."""
    result: set[int] = set()
    for day in days:
        key = day.strip().upper() if isinstance(day, str) else ""
        if key not in WEEKDAYS:
            raise ConfigurationError(f"invalid day of week {day!r}")
        result.add(WEEKDAYS.index(key))
    return frozenset(result)


def resolve_timezone(name: str) -> ZoneInfo:
    """Resolve an IANA zone name, raising ConfigurationError when unknown."""
    if not name:
        raise ConfigurationError("timezone must not be empty")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"invalid timezone {name!r}: {exc}") from exc


@dataclass(frozen=True)
class OffHourWindow:
    """A recurring local-time interval during which targets hibernate.

    ``end < start`` means the interval spans midnight into the next day.
    """

    start: time
    end: time
    days_of_week: frozenset[int]

    @classmethod
    def parse(cls, start: str, end: str, days: Iterable[str]) -> OffHourWindow:
        return cls(
            start=parse_time(start),
            end=parse_time(end),
            days_of_week=parse_days(days),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OffHourWindow:
        return cls.parse(
            data.get("start", ""),
            data.get("end", ""),
            data.get("daysOfWeek", data.get("days_of_week", [])),
        )

    @property
    def wraps_midnight(self) -> bool:
        return self.end < self.start

    @property
    def is_effective(self) -> bool:
        """False for windows that can never hibernate (no days or zero length)."""
        return bool(self.days_of_week) and self.start != self.end

    @property
    def wake_days(self) -> frozenset[int]:
        """Weekdays on which the wake trigger fires."""
        if self.wraps_midnight:
            return frozenset((d + 1) % 7 for d in self.days_of_week)
        return self.days_of_week

    def interval_starting_on(self, day: date, tz: tzinfo) -> tuple[datetime, datetime]:
        """Local ``[start, end)`` interval for an occurrence that begins on *day*."""
        start = datetime.combine(day, self.start, tzinfo=tz)
        end_day = day + timedelta(days=1) if self.wraps_midnight else day
        end = datetime.combine(end_day, self.end, tzinfo=tz)
        return start, end

    def containing_interval(self, local_now: datetime) -> tuple[datetime, datetime] | None:
        """Return the occurrence interval that contains *local_now*, if any."""
        if not self.is_effective:
            return None
        tz = local_now.tzinfo
        assert tz is not None
        # An occurrence containing now began today or, when it spans midnight, yesterday.
        for offset in (0, 1):
            day = local_now.date() - timedelta(days=offset)
            if day.weekday() not in self.days_of_week:
                continue
            start, end = self.interval_starting_on(day, tz)
            if start <= local_now < end:
                return start, end
        return None
