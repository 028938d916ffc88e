"""Shared fixtures for Controller tests."""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import pytest

from Controller.config import ControllerConfig
from Controller.controller import Controller
from executor import ExecutorRegistry
from executor.noop import NoopExecutor
from infra.fs_adapter import FSDocumentStore

WEEKDAYS = ["MON", "TUE", "WED", "THU", "FRI"]


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

SAMPLE_PLAN: dict[str, Any] = {
    "kind": "HibernatePlan",
    "metadata": {"name": "nightly", "namespace": "default"},
    "spec": {
        "schedule": {
            "timezone": "UTC",
            "offHours": [{"start": "20:00", "end": "06:00", "daysOfWeek": WEEKDAYS}],
        },
        "behavior": {"mode": "Strict", "retries": 0},
        "execution": {"strategy": {"type": "Sequential"}},
        "targets": [
            {"name": "db", "type": "noop", "parameters": {"resourceIds": ["db-0"]}},
            {"name": "app", "type": "noop"},
        ],
    },
}

SAMPLE_EXCEPTION: dict[str, Any] = {
    "kind": "ScheduleException",
    "metadata": {"name": "launch-week", "namespace": "default"},
    "spec": {
        "planRef": "nightly",
        "type": "suspend",
        "validFrom": "2024-01-01T00:00:00Z",
        "validUntil": "2024-01-08T00:00:00Z",
        "windows": [{"start": "20:00", "end": "23:00", "daysOfWeek": WEEKDAYS}],
    },
}


class FakeClock:
    """Settable clock; January 1st 2024 is a Monday."""

    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def set(self, day: int, hour: int = 0, minute: int = 0) -> None:
        self.now = datetime(2024, 1, day, hour, minute, tzinfo=timezone.utc)

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def plan_doc() -> Callable[..., dict[str, Any]]:
    """Return a factory producing fresh copies of the sample plan."""

    def _factory(**spec_overrides: Any) -> dict[str, Any]:
        doc = json.loads(json.dumps(SAMPLE_PLAN))
        doc["spec"].update(spec_overrides)
        return doc

    return _factory


@pytest.fixture
def exception_doc() -> dict[str, Any]:
    return json.loads(json.dumps(SAMPLE_EXCEPTION))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_config(tmp_path: Path) -> ControllerConfig:
    return ControllerConfig(
        controller_id="test-controller",
        state_dir=tmp_path / "state",
        lock_max_retries=1,
        lock_backoff_base=0.01,
    )


@pytest.fixture
def store(test_config: ControllerConfig) -> FSDocumentStore:
    return FSDocumentStore(base_dir=test_config.documents_dir)


@pytest.fixture
def noop() -> NoopExecutor:
    return NoopExecutor(sleep=lambda _s: None)


@pytest.fixture
def controller(
    test_config: ControllerConfig,
    store: FSDocumentStore,
    noop: NoopExecutor,
    clock: FakeClock,
) -> Controller:
    return Controller(
        test_config,
        store=store,
        registry=ExecutorRegistry([noop]),
        clock=clock,
        sleep=lambda _s: None,
    )
