"""Error classification and automatic recovery policy for plans in Error."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from .models import PlanStatus

DEFAULT_MAX_RETRIES = 3
BACKOFF_BASE = timedelta(seconds=60)
BACKOFF_MAX = timedelta(minutes=30)

_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "timeout",
    "connection refused",
    "temporary failure",
    "rate limit",
    "throttling",
    "service unavailable",
    "too many requests",
    "deadline exceeded",
)

_PERMANENT_PATTERNS: tuple[str, ...] = (
    "configuration error",
    "not found",
    "already exists",
    "invalid",
    "forbidden",
    "unauthorized",
    "permission denied",
)


class ErrorClassification(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RecoveryStrategy:
    should_retry: bool
    retry_after: timedelta
    classification: ErrorClassification
    reason: str


def classify_error(message: str) -> ErrorClassification:
    """Classify an error message by well-known substrings."""
    text = (message or "").lower()
    if any(p in text for p in _TRANSIENT_PATTERNS):
        return ErrorClassification.TRANSIENT
    if any(p in text for p in _PERMANENT_PATTERNS):
        return ErrorClassification.PERMANENT
    return ErrorClassification.UNKNOWN


def calculate_backoff(retry_count: int) -> timedelta:
    """``min(60s * 2^(retry_count - 1), 30m)``."""
    exponent = max(retry_count - 1, 0)
    if exponent >= 16:
        return BACKOFF_MAX
    return min(BACKOFF_BASE * (2 ** exponent), BACKOFF_MAX)


def determine_recovery_strategy(
    status: PlanStatus, max_retries: int, now: datetime
) -> RecoveryStrategy:
    """Decide whether and when a plan in Error should be retried.

    Permanent errors are never retried automatically, nor is a plan whose
    ``retry_count`` already exceeds *max_retries*.
    """
    classification = classify_error(status.error_message)
    if classification is ErrorClassification.PERMANENT:
        return RecoveryStrategy(
            False, timedelta(0), classification, "permanent error, manual intervention required"
        )
    if status.retry_count > max_retries:
        return RecoveryStrategy(
            False,
            timedelta(0),
            classification,
            f"retry budget exhausted ({status.retry_count - 1}/{max_retries})",
        )

    wait = timedelta(0)
    if status.last_retry_time is not None:
        wait = max(
            calculate_backoff(status.retry_count) - (now - status.last_retry_time),
            timedelta(0),
        )
    return RecoveryStrategy(True, wait, classification, f"{classification.value} error")


def record_retry_attempt(status: PlanStatus, message: str, now: datetime) -> None:
    status.retry_count += 1
    status.last_retry_time = now
    status.error_message = message


def reset_retry_state(status: PlanStatus) -> None:
    status.retry_count = 0
    status.last_retry_time = None
    status.error_message = ""
