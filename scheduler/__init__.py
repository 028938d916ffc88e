"""Off-hour schedule evaluation."""

from .evaluator import (
    EvaluationResult,
    EventKind,
    ScheduleEvaluator,
    ScheduleEvent,
    ScheduleState,
    next_requeue_delay,
)
from .exceptions import (
    ExceptionType,
    ScheduleException,
    evaluate_with_exception,
    parse_duration,
)
from .windows import OffHourWindow, parse_days, parse_time, resolve_timezone

__all__ = [
    "EvaluationResult",
    "EventKind",
    "ExceptionType",
    "OffHourWindow",
    "ScheduleEvaluator",
    "ScheduleEvent",
    "ScheduleException",
    "ScheduleState",
    "evaluate_with_exception",
    "next_requeue_delay",
    "parse_days",
    "parse_time",
    "parse_duration",
    "resolve_timezone",
]
