"""Tests for scheduler.exceptions — extend / suspend / replace overrides."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from protocol.errors import ConfigurationError
from scheduler import (
    ExceptionType,
    OffHourWindow,
    ScheduleEvaluator,
    ScheduleException,
    ScheduleState,
    evaluate_with_exception,
    parse_duration,
)

UTC = timezone.utc
WEEKDAYS = ["MON", "TUE", "WED", "THU", "FRI"]
BASE = [OffHourWindow.parse("20:00", "06:00", WEEKDAYS)]


def _utc(day: int, hour: int = 0, minute: int = 0) -> datetime:
    # January 2024: the 1st is a Monday.
    return datetime(2024, 1, day, hour, minute, tzinfo=UTC)


def _exception(
    kind: ExceptionType,
    windows: list[OffHourWindow],
    lead_time: timedelta = timedelta(0),
) -> ScheduleException:
    return ScheduleException(
        type=kind,
        valid_from=_utc(1),
        valid_until=_utc(31),
        windows=tuple(windows),
        lead_time=lead_time,
        name="test",
    )


class TestParseDuration:
    def test_compound(self) -> None:
        assert parse_duration("1h30m") == timedelta(minutes=90)
        assert parse_duration("45s") == timedelta(seconds=45)

    def test_empty_is_zero(self) -> None:
        assert parse_duration("") == timedelta(0)

    @pytest.mark.parametrize("value", ["abc", "1x", "h1", "1h 30m"])
    def test_invalid(self, value: str) -> None:
        with pytest.raises(ConfigurationError):
            parse_duration(value)


class TestEvaluateWithException:
    def setup_method(self) -> None:
        self.evaluator = ScheduleEvaluator()

    def test_no_exception_returns_base(self) -> None:
        now = _utc(3, 22)
        base = self.evaluator.evaluate(BASE, "UTC", now)
        assert evaluate_with_exception(self.evaluator, BASE, "UTC", None, now) == base

    def test_inactive_exception_ignored(self) -> None:
        exc = ScheduleException(
            type=ExceptionType.REPLACE,
            valid_from=_utc(10),
            valid_until=_utc(11),
            windows=(),
        )
        result = evaluate_with_exception(self.evaluator, BASE, "UTC", exc, _utc(3, 22))
        assert result.should_hibernate

    def test_extend_unions_windows(self) -> None:
        weekend = OffHourWindow.parse("00:00", "23:59", ["SAT", "SUN"])
        exc = _exception(ExceptionType.EXTEND, [weekend])
        saturday_noon = _utc(6, 12)
        assert not self.evaluator.evaluate(BASE, "UTC", saturday_noon).should_hibernate
        result = evaluate_with_exception(self.evaluator, BASE, "UTC", exc, saturday_noon)
        assert result.current_state is ScheduleState.HIBERNATING
        # base still hibernates on its own during weekday nights
        assert evaluate_with_exception(
            self.evaluator, BASE, "UTC", exc, _utc(3, 22)
        ).should_hibernate

    def test_replace_uses_only_exception_windows(self) -> None:
        daytime = OffHourWindow.parse("09:00", "17:00", WEEKDAYS)
        exc = _exception(ExceptionType.REPLACE, [daytime])
        assert not evaluate_with_exception(
            self.evaluator, BASE, "UTC", exc, _utc(3, 22)
        ).should_hibernate
        assert evaluate_with_exception(
            self.evaluator, BASE, "UTC", exc, _utc(3, 12)
        ).should_hibernate

    def test_suspend_carves_out_window(self) -> None:
        carve_out = OffHourWindow.parse("21:00", "23:00", ["WED"])
        exc = _exception(ExceptionType.SUSPEND, [carve_out])
        result = evaluate_with_exception(self.evaluator, BASE, "UTC", exc, _utc(3, 22))
        assert result.current_state is ScheduleState.ACTIVE
        assert result.next_hibernate_time == _utc(4, 20)
        # outside the carve-out the base schedule applies
        assert evaluate_with_exception(
            self.evaluator, BASE, "UTC", exc, _utc(3, 23, 30)
        ).should_hibernate

    def test_suspend_pushes_next_hibernate_past_window_end(self) -> None:
        carve_out = OffHourWindow.parse("19:00", "21:00", ["WED"])
        exc = _exception(ExceptionType.SUSPEND, [carve_out])
        result = evaluate_with_exception(self.evaluator, BASE, "UTC", exc, _utc(3, 19, 30))
        assert result.current_state is ScheduleState.ACTIVE
        assert result.next_hibernate_time == _utc(3, 21)

    def test_suspend_lead_time_blocks_hibernation(self) -> None:
        carve_out = OffHourWindow.parse("21:00", "23:00", ["WED"])
        exc = _exception(ExceptionType.SUSPEND, [carve_out], lead_time=timedelta(hours=2))
        result = evaluate_with_exception(self.evaluator, BASE, "UTC", exc, _utc(3, 20, 30))
        assert result.current_state is ScheduleState.ACTIVE
        # Tuesday night is far from the carve-out
        assert evaluate_with_exception(
            self.evaluator, BASE, "UTC", exc, _utc(2, 20, 30)
        ).should_hibernate


def test_exception_validity_order() -> None:
    with pytest.raises(ConfigurationError):
        ScheduleException(
            type=ExceptionType.EXTEND,
            valid_from=_utc(5),
            valid_until=_utc(4),
        )
