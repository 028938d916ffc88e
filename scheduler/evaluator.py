"""Schedule evaluator: off-hour windows to current state and next transitions.

The evaluator is a pure function of ``(windows, timezone, now)``.  Each window
contributes a weekly "hibernate" trigger at its start time and a weekly
"wake" trigger at its end time; triggers of the same kind are merged into a
single :class:`dateutil.rrule.rruleset` so that several disjoint off-hour
ranges behave as one schedule.  All times are wall-clock local in the plan's
timezone, so absolute instants move across DST boundaries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from enum import Enum
from typing import Iterator, Sequence
from zoneinfo import ZoneInfo

from dateutil.rrule import WEEKLY, rrule, rruleset

from .windows import OffHourWindow, resolve_timezone

logger = logging.getLogger(__name__)

_UTC = ZoneInfo("UTC")

# Requeue tuning for the caller's reconcile loop.
REQUEUE_BUFFER = timedelta(seconds=10)
REQUEUE_FALLBACK = timedelta(minutes=1)


class ScheduleState(str, Enum):
    """Schedule-implied state of a plan."""

    ACTIVE = "Active"
    HIBERNATING = "Hibernating"


class EventKind(str, Enum):
    HIBERNATE = "hibernate"
    WAKE_UP = "wake_up"


@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of one schedule evaluation.

    Both next-times are always computed independently of ``current_state``;
    either is ``None`` only when no window can ever fire.
    """

    current_state: ScheduleState
    next_hibernate_time: datetime | None
    next_wake_up_time: datetime | None

    @property
    def should_hibernate(self) -> bool:
        return self.current_state is ScheduleState.HIBERNATING


@dataclass(frozen=True)
class ScheduleEvent:
    kind: EventKind
    at: datetime


class ScheduleEvaluator:
    """Evaluate off-hour windows against a point in time."""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def evaluate(
        self,
        windows: Sequence[OffHourWindow],
        timezone: str,
        now: datetime,
    ) -> EvaluationResult:
        """Return the schedule-implied state at *now*.

        Parameters
        ----------
        windows:
            Off-hour windows; their hibernating intervals are unioned.
        timezone:
            IANA zone name the windows are expressed in.
        now:
            Evaluation instant.  Naive values are taken as UTC.

        Raises
        ------
        ConfigurationError
            If *timezone* cannot be resolved.
        """
        tz = resolve_timezone(timezone)
        local_now = localize(now, tz)
        hibernate_set, wake_set = self._trigger_sets(windows, local_now)

        state = (
            ScheduleState.HIBERNATING
            if self.is_hibernating(windows, local_now)
            else ScheduleState.ACTIVE
        )
        return EvaluationResult(
            current_state=state,
            next_hibernate_time=_after(hibernate_set, local_now),
            next_wake_up_time=_after(wake_set, local_now),
        )

    def preview(
        self,
        windows: Sequence[OffHourWindow],
        timezone: str,
        now: datetime,
        count: int = 10,
    ) -> list[ScheduleEvent]:
        """Return the next *count* hibernate/wake events in chronological order."""
        tz = resolve_timezone(timezone)
        local_now = localize(now, tz)
        hibernate_set, wake_set = self._trigger_sets(windows, local_now)

        hibernations = _successors(hibernate_set, local_now)
        wakes = _successors(wake_set, local_now)
        next_h = next(hibernations, None)
        next_w = next(wakes, None)

        events: list[ScheduleEvent] = []
        while len(events) < count and (next_h is not None or next_w is not None):
            if next_h is None or (next_w is not None and next_w <= next_h):
                assert next_w is not None
                events.append(ScheduleEvent(EventKind.WAKE_UP, next_w))
                next_w = next(wakes, None)
            else:
                events.append(ScheduleEvent(EventKind.HIBERNATE, next_h))
                next_h = next(hibernations, None)
        return events

    @staticmethod
    def is_hibernating(windows: Sequence[OffHourWindow], local_now: datetime) -> bool:
        """True when *local_now* falls inside any window's occurrence."""
        return any(w.containing_interval(local_now) is not None for w in windows)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _trigger_sets(
        windows: Sequence[OffHourWindow], local_now: datetime
    ) -> tuple[rruleset | None, rruleset | None]:
        tz = local_now.tzinfo
        # One week back covers any occurrence that could still be in progress.
        dtstart = datetime.combine(
            local_now.date() - timedelta(days=7), time(0, 0), tzinfo=tz
        )
        hibernate_set = rruleset()
        wake_set = rruleset()
        effective = 0
        for window in windows:
            if not window.is_effective:
                continue
            effective += 1
            hibernate_set.rrule(_weekly(window.start, window.days_of_week, dtstart))
            wake_set.rrule(_weekly(window.end, window.wake_days, dtstart))
        if not effective:
            return None, None
        return hibernate_set, wake_set


def localize(now: datetime, tz: ZoneInfo) -> datetime:
    """Express *now* in *tz*; naive datetimes are interpreted as UTC."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=_UTC)
    return now.astimezone(tz)


def next_requeue_delay(result: EvaluationResult, now: datetime) -> timedelta | None:
    """Delay until the next schedule event relevant to the current state.

    Adds a small buffer so the event has definitely passed when the caller
    re-evaluates; a negative delay collapses to one minute.
    """
    target = (
        result.next_wake_up_time
        if result.should_hibernate
        else result.next_hibernate_time
    )
    if target is None:
        return None
    delay = _as_utc(target) - _as_utc(now) + REQUEUE_BUFFER
    if delay < timedelta(0):
        return REQUEUE_FALLBACK
    return delay


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=_UTC)
    return value.astimezone(_UTC)


def _weekly(at: time, weekdays: frozenset[int], dtstart: datetime) -> rrule:
    return rrule(
        WEEKLY,
        dtstart=dtstart,
        byweekday=sorted(weekdays),
        byhour=at.hour,
        byminute=at.minute,
        bysecond=0,
    )


def _after(rules: rruleset | None, local_now: datetime) -> datetime | None:
    if rules is None:
        return None
    result: datetime | None = rules.after(local_now, inc=False)
    return result


def _successors(rules: rruleset | None, local_now: datetime) -> Iterator[datetime]:
    if rules is None:
        return iter(())
    return rules.xafter(local_now, inc=False)
