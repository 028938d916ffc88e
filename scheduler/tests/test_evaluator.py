"""Tests for scheduler.evaluator — state, next transitions and preview."""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone

import pytest

from protocol.errors import ConfigurationError
from scheduler import (
    EventKind,
    OffHourWindow,
    ScheduleEvaluator,
    ScheduleState,
    next_requeue_delay,
)

UTC = timezone.utc


def _utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=UTC)


# 2024-01-01 is a Monday.
MON = _utc(2024, 1, 1)


def _window(start: str, end: str, *days: str) -> OffHourWindow:
    return OffHourWindow.parse(start, end, list(days))


class TestCurrentState:
    def setup_method(self) -> None:
        self.evaluator = ScheduleEvaluator()

    def test_scenario_overnight_monday_window(self) -> None:
        windows = [_window("18:00", "08:00", "MON")]
        result = self.evaluator.evaluate(windows, "UTC", MON.replace(hour=20))
        assert result.current_state is ScheduleState.HIBERNATING
        assert result.next_wake_up_time == _utc(2024, 1, 2, 8)
        assert result.next_hibernate_time == _utc(2024, 1, 8, 18)

    def test_daytime_window_bounds(self) -> None:
        windows = [_window("09:00", "17:00", "MON", "TUE", "WED", "THU", "FRI")]
        wed = _utc(2024, 1, 3)
        assert self.evaluator.evaluate(windows, "UTC", wed.replace(hour=9)).should_hibernate
        assert self.evaluator.evaluate(windows, "UTC", wed.replace(hour=12)).should_hibernate
        assert not self.evaluator.evaluate(windows, "UTC", wed.replace(hour=17)).should_hibernate
        assert not self.evaluator.evaluate(
            windows, "UTC", wed.replace(hour=8, minute=59)
        ).should_hibernate

    def test_unlisted_day_is_active(self) -> None:
        windows = [_window("09:00", "17:00", "MON", "TUE", "WED", "THU", "FRI")]
        sat = _utc(2024, 1, 6, 12)
        result = self.evaluator.evaluate(windows, "UTC", sat)
        assert result.current_state is ScheduleState.ACTIVE
        assert result.next_hibernate_time == _utc(2024, 1, 8, 9)

    def test_midnight_span_extends_into_next_day(self) -> None:
        windows = [_window("22:00", "06:00", "MON")]
        assert self.evaluator.evaluate(windows, "UTC", _utc(2024, 1, 2, 3)).should_hibernate
        assert not self.evaluator.evaluate(windows, "UTC", _utc(2024, 1, 2, 6)).should_hibernate
        # Tuesday is not a listed start day
        assert not self.evaluator.evaluate(windows, "UTC", _utc(2024, 1, 2, 23)).should_hibernate

    def test_wake_trigger_fires_day_after_listed_day(self) -> None:
        windows = [_window("22:00", "06:00", "FRI")]
        result = self.evaluator.evaluate(windows, "UTC", _utc(2024, 1, 5, 23))
        assert result.should_hibernate
        assert result.next_wake_up_time == _utc(2024, 1, 6, 6)

    def test_windows_are_unioned(self) -> None:
        windows = [
            _window("00:00", "06:00", "MON"),
            _window("20:00", "23:00", "MON"),
        ]
        assert self.evaluator.evaluate(windows, "UTC", MON.replace(hour=2)).should_hibernate
        assert not self.evaluator.evaluate(windows, "UTC", MON.replace(hour=12)).should_hibernate
        result = self.evaluator.evaluate(windows, "UTC", MON.replace(hour=21))
        assert result.should_hibernate
        assert result.next_wake_up_time == MON.replace(hour=23)

    def test_empty_days_never_fire(self) -> None:
        windows = [OffHourWindow(time(18), time(8), frozenset())]
        result = self.evaluator.evaluate(windows, "UTC", MON.replace(hour=20))
        assert result.current_state is ScheduleState.ACTIVE
        assert result.next_hibernate_time is None
        assert result.next_wake_up_time is None

    def test_zero_length_window_never_hibernates(self) -> None:
        windows = [_window("08:00", "08:00", "MON")]
        result = self.evaluator.evaluate(windows, "UTC", MON.replace(hour=8))
        assert result.current_state is ScheduleState.ACTIVE
        assert result.next_hibernate_time is None

    def test_no_windows(self) -> None:
        result = self.evaluator.evaluate([], "UTC", MON)
        assert result.current_state is ScheduleState.ACTIVE
        assert result.next_hibernate_time is None

    def test_naive_now_is_utc(self) -> None:
        windows = [_window("18:00", "08:00", "MON")]
        result = self.evaluator.evaluate(windows, "UTC", datetime(2024, 1, 1, 20, 0))
        assert result.should_hibernate

    def test_invalid_timezone(self) -> None:
        with pytest.raises(ConfigurationError, match="invalid timezone"):
            self.evaluator.evaluate([], "Mars/Olympus_Mons", MON)


class TestNextTimes:
    def setup_method(self) -> None:
        self.evaluator = ScheduleEvaluator()

    def test_next_times_strictly_after_now(self) -> None:
        windows = [_window("18:00", "08:00", "MON")]
        at_start = MON.replace(hour=18)
        result = self.evaluator.evaluate(windows, "UTC", at_start)
        assert result.should_hibernate
        assert result.next_hibernate_time is not None
        assert result.next_hibernate_time > at_start
        assert result.next_hibernate_time == _utc(2024, 1, 8, 18)

    def test_both_next_times_reported_when_active(self) -> None:
        windows = [_window("18:00", "08:00", "MON")]
        result = self.evaluator.evaluate(windows, "UTC", MON.replace(hour=12))
        assert result.next_hibernate_time == MON.replace(hour=18)
        assert result.next_wake_up_time == _utc(2024, 1, 2, 8)

    def test_local_time_shifts_across_dst(self) -> None:
        windows = [_window("18:00", "08:00", "MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN")]
        # Amsterdam switches from CET (+1) to CEST (+2) on 2024-03-31.
        before = self.evaluator.evaluate(windows, "Europe/Amsterdam", _utc(2024, 3, 29, 12))
        after = self.evaluator.evaluate(windows, "Europe/Amsterdam", _utc(2024, 4, 1, 10))
        assert before.next_hibernate_time is not None
        assert after.next_hibernate_time is not None
        assert before.next_hibernate_time.astimezone(UTC) == _utc(2024, 3, 29, 17)
        assert after.next_hibernate_time.astimezone(UTC) == _utc(2024, 4, 1, 16)

    def test_requeue_delay_targets_wake_while_hibernating(self) -> None:
        windows = [_window("18:00", "08:00", "MON")]
        now = MON.replace(hour=20)
        result = self.evaluator.evaluate(windows, "UTC", now)
        assert next_requeue_delay(result, now) == timedelta(hours=12, seconds=10)

    def test_requeue_delay_none_without_events(self) -> None:
        result = self.evaluator.evaluate([], "UTC", MON)
        assert next_requeue_delay(result, MON) is None


class TestPreview:
    def test_events_interleave_chronologically(self) -> None:
        windows = [_window("18:00", "08:00", "MON", "TUE")]
        events = ScheduleEvaluator().preview(windows, "UTC", MON.replace(hour=12), count=5)
        assert [e.kind for e in events] == [
            EventKind.HIBERNATE,
            EventKind.WAKE_UP,
            EventKind.HIBERNATE,
            EventKind.WAKE_UP,
            EventKind.HIBERNATE,
        ]
        assert [e.at for e in events] == [
            _utc(2024, 1, 1, 18),
            _utc(2024, 1, 2, 8),
            _utc(2024, 1, 2, 18),
            _utc(2024, 1, 3, 8),
            _utc(2024, 1, 8, 18),
        ]

    def test_preview_without_windows_is_empty(self) -> None:
        assert ScheduleEvaluator().preview([], "UTC", MON, count=3) == []
