"""Shared fixtures for Orchestrator tests."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

import pytest

from executor import CapturedState, ExecutorRegistry, ExecutorSpec
from infra.fs_adapter import FSDocumentStore
from Orchestrator.models import Plan
from protocol.errors import ExecutorError
from restore import RestoreManager

UTC = timezone.utc
WEEKDAYS = ["MON", "TUE", "WED", "THU", "FRI"]


class RecordingExecutor:
    """Executor that records every call and fails on demand.

    ``failures[(operation, target)]`` is the number of calls that raise
    before the operation starts succeeding; ``-1`` fails forever.
    ``delay`` holds each call open so ``peak`` can record how many calls
    overlapped.
    """

    type = "recording"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[tuple[str, str], int] = {}
        self.applied: dict[str, dict[str, Any]] = {}
        self.live = True
        self.delay = 0.0
        self.in_flight = 0
        self.peak = 0

    def validate(self, spec: ExecutorSpec) -> None:
        return None

    def shutdown(self, spec: ExecutorSpec) -> None:
        self._record("shutdown", spec.target)

    def wake_up(self, spec: ExecutorSpec) -> None:
        self._record("wakeup", spec.target)

    def capture_state(self, spec: ExecutorSpec) -> CapturedState:
        return CapturedState(
            state={"replicas": 3, "target": spec.target},
            is_live=self.live,
        )

    def apply_state(self, spec: ExecutorSpec, state: dict[str, Any]) -> None:
        with self._lock:
            self.applied[spec.target] = dict(state)

    def targets(self, operation: str) -> list[str]:
        with self._lock:
            return [t for op, t in self.calls if op == operation]

    def _record(self, operation: str, target: str) -> None:
        with self._lock:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
        finally:
            with self._lock:
                self.in_flight -= 1
        with self._lock:
            self.calls.append((operation, target))
            remaining = self.failures.get((operation, target), 0)
            if remaining == 0:
                return
            if remaining > 0:
                self.failures[(operation, target)] = remaining - 1
        raise ExecutorError(f"{operation} of {target} failed: backend exploded", target)


@pytest.fixture
def recorder() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def registry(recorder: RecordingExecutor) -> ExecutorRegistry:
    return ExecutorRegistry([recorder])


@pytest.fixture
def store(tmp_path: Path) -> FSDocumentStore:
    return FSDocumentStore(base_dir=tmp_path / "docs")


@pytest.fixture
def restore(store: FSDocumentStore) -> RestoreManager:
    return RestoreManager(store)


@pytest.fixture
def at() -> Callable[..., datetime]:
    """``at(day, hour)`` in January 2024 UTC; the 1st is a Monday."""

    def _at(day: int, hour: int = 0, minute: int = 0) -> datetime:
        return datetime(2024, 1, day, hour, minute, tzinfo=UTC)

    return _at


@pytest.fixture
def make_plan() -> Callable[..., Plan]:
    def _factory(
        targets: tuple[str, ...] = ("db", "app"),
        *,
        name: str = "nightly",
        strategy: dict[str, Any] | None = None,
        behavior: dict[str, Any] | None = None,
        timezone_name: str = "UTC",
        windows: list[dict[str, Any]] | None = None,
        annotations: dict[str, str] | None = None,
        suspend: bool = False,
    ) -> Plan:
        return Plan.model_validate(
            {
                "metadata": {
                    "name": name,
                    "namespace": "default",
                    "annotations": dict(annotations or {}),
                },
                "spec": {
                    "schedule": {
                        "timezone": timezone_name,
                        "offHours": windows
                        if windows is not None
                        else [{"start": "20:00", "end": "06:00", "daysOfWeek": WEEKDAYS}],
                    },
                    "behavior": behavior or {"mode": "Strict", "retries": 0},
                    "execution": {"strategy": strategy or {"type": "Sequential"}},
                    "targets": [{"name": t, "type": "recording"} for t in targets],
                    "suspend": suspend,
                },
            }
        )

    return _factory
