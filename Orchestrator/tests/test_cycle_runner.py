"""Tests for Orchestrator.cycle_runner — per-target execution within a cycle."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from executor import ExecutorRegistry
from Orchestrator.cycle_runner import CycleRunner
from Orchestrator.models import ExecutionState, Operation, Plan, TargetExecution
from Orchestrator.planner import ExecutionPlan, ExecutionPlanner
from protocol.errors import StoreError
from restore import RestoreData

NOW = datetime(2024, 1, 1, 21, 0, tzinfo=timezone.utc)


def _clock() -> datetime:
    return NOW


def _prepare(plan: Plan, operation: Operation) -> ExecutionPlan:
    plan.status.current_cycle_id = "c0ffee00"
    plan.status.current_operation = operation
    plan.status.executions = [
        TargetExecution(target=t.name, executor=t.type) for t in plan.spec.targets
    ]
    return ExecutionPlanner().plan(plan.spec.execution.strategy, plan.spec.targets, operation)


def _states(plan: Plan) -> dict[str, ExecutionState]:
    return {e.target: e.state for e in plan.status.executions}


class TestShutdown:
    def test_all_targets_complete_and_restore_data_saved(self, registry, restore, recorder, make_plan) -> None:
        plan = make_plan(("db", "app"))
        writes: list[str] = []
        outcome = CycleRunner(registry, restore, _clock).run(
            plan, _prepare(plan, Operation.SHUTDOWN), lambda p: writes.append(p.status.current_cycle_id)
        )

        assert outcome.succeeded
        assert outcome.completed == ["db", "app"]
        assert recorder.targets("shutdown") == ["db", "app"]
        assert writes
        data = restore.load("default", "nightly", "db")
        assert data is not None
        assert data.is_live
        assert data.state == {"replicas": 3, "target": "db"}
        assert plan.execution_for("db").attempts == 1

    def test_failed_attempt_retried_in_place(self, registry, restore, recorder, make_plan) -> None:
        plan = make_plan(("db",), behavior={"mode": "Strict", "retries": 2})
        recorder.failures[("shutdown", "db")] = 1

        outcome = CycleRunner(registry, restore, _clock).run(plan, _prepare(plan, Operation.SHUTDOWN), lambda p: None)

        assert outcome.succeeded
        execution = plan.execution_for("db")
        assert execution.state is ExecutionState.COMPLETED
        assert execution.attempts == 2

    def test_strict_stops_after_failed_layer(self, registry, restore, recorder, make_plan) -> None:
        plan = make_plan(("db", "app"), behavior={"mode": "Strict", "retries": 1})
        recorder.failures[("shutdown", "db")] = -1

        outcome = CycleRunner(registry, restore, _clock).run(plan, _prepare(plan, Operation.SHUTDOWN), lambda p: None)

        assert not outcome.succeeded
        assert outcome.failed == ["db"]
        assert outcome.pending == ["app"]
        assert "db" in outcome.error_message
        assert "backend exploded" in outcome.error_message
        assert plan.execution_for("db").attempts == 2
        assert recorder.targets("shutdown") == ["db", "db"]

    def test_best_effort_keeps_going(self, registry, restore, recorder, make_plan) -> None:
        plan = make_plan(("db", "app"), behavior={"mode": "BestEffort", "retries": 0})
        recorder.failures[("shutdown", "db")] = -1

        outcome = CycleRunner(registry, restore, _clock).run(plan, _prepare(plan, Operation.SHUTDOWN), lambda p: None)

        assert _states(plan) == {"db": ExecutionState.FAILED, "app": ExecutionState.COMPLETED}
        assert outcome.failed == ["db"]

    def test_parallel_runs_whole_layer(self, registry, restore, recorder, make_plan) -> None:
        plan = make_plan(("a", "b", "c"), strategy={"type": "Parallel", "maxConcurrency": 2})
        outcome = CycleRunner(registry, restore, _clock).run(plan, _prepare(plan, Operation.SHUTDOWN), lambda p: None)
        assert outcome.succeeded
        assert sorted(recorder.targets("shutdown")) == ["a", "b", "c"]

    def test_parallel_never_exceeds_max_concurrency(self, registry, restore, recorder, make_plan) -> None:
        plan = make_plan(("a", "b", "c", "d", "e"), strategy={"type": "Parallel", "maxConcurrency": 2})
        recorder.delay = 0.05

        outcome = CycleRunner(registry, restore, _clock).run(plan, _prepare(plan, Operation.SHUTDOWN), lambda p: None)

        assert outcome.succeeded
        assert recorder.peak == 2

    def test_sequential_runs_one_at_a_time(self, registry, restore, recorder, make_plan) -> None:
        plan = make_plan(("a", "b", "c"), strategy={"type": "Sequential"})
        recorder.delay = 0.02

        outcome = CycleRunner(registry, restore, _clock).run(plan, _prepare(plan, Operation.SHUTDOWN), lambda p: None)

        assert outcome.succeeded
        assert recorder.peak == 1

    def test_configuration_error_not_retried(self, restore, make_plan) -> None:
        plan = make_plan(("db",), behavior={"mode": "Strict", "retries": 3})
        registry = ExecutorRegistry()

        outcome = CycleRunner(registry, restore, _clock).run(plan, _prepare(plan, Operation.SHUTDOWN), lambda p: None)

        assert outcome.failed == ["db"]
        execution = plan.execution_for("db")
        assert execution.attempts == 1
        assert "No executor registered" in execution.message

    def test_non_live_capture_preserves_live_data(self, registry, restore, recorder, make_plan) -> None:
        restore.save(
            "default",
            "nightly",
            "db",
            RestoreData(target="db", executor="recording", is_live=True, state={"replicas": 5}),
        )
        recorder.live = False
        plan = make_plan(("db",))

        CycleRunner(registry, restore, _clock).run(plan, _prepare(plan, Operation.SHUTDOWN), lambda p: None)

        data = restore.load("default", "nightly", "db")
        assert data.is_live
        assert data.state["replicas"] == 5
        assert data.state["target"] == "db"


class TestDependencyOrdering:
    def test_wakeup_waits_for_predecessors(self, registry, restore, recorder, make_plan) -> None:
        plan = make_plan(
            ("app", "db"),
            strategy={"type": "Dependency", "dependencies": [{"from": "db", "to": "app"}]},
            behavior={"mode": "BestEffort", "retries": 0},
        )
        recorder.failures[("wakeup", "db")] = -1

        outcome = CycleRunner(registry, restore, _clock).run(plan, _prepare(plan, Operation.WAKEUP), lambda p: None)

        assert outcome.failed == ["db"]
        assert outcome.pending == ["app"]
        assert recorder.targets("wakeup") == ["db"]

    def test_shutdown_runs_dependents_first(self, registry, restore, recorder, make_plan) -> None:
        plan = make_plan(
            ("db", "app"),
            strategy={"type": "Dependency", "dependencies": [{"from": "db", "to": "app"}]},
        )
        CycleRunner(registry, restore, _clock).run(plan, _prepare(plan, Operation.SHUTDOWN), lambda p: None)
        assert recorder.targets("shutdown") == ["app", "db"]


class TestWakeup:
    def test_applies_restore_data_and_marks_restored(self, registry, restore, recorder, make_plan) -> None:
        plan = make_plan(("db", "app"))
        runner = CycleRunner(registry, restore, _clock)
        runner.run(plan, _prepare(plan, Operation.SHUTDOWN), lambda p: None)

        outcome = runner.run(plan, _prepare(plan, Operation.WAKEUP), lambda p: None)

        assert outcome.succeeded
        assert recorder.targets("wakeup") == ["app", "db"]
        assert recorder.applied["db"] == {"replicas": 3, "target": "db"}
        assert restore.mark_all_targets_restored("default", "nightly", ["db", "app"])
        assert not restore.load("default", "nightly", "db").is_live

    def test_marking_failure_is_tolerated(self, registry, recorder, make_plan) -> None:
        restore = MagicMock()
        restore.load.return_value = None
        restore.mark_target_restored.side_effect = StoreError("redis unavailable")
        plan = make_plan(("db",))

        outcome = CycleRunner(registry, restore, _clock).run(plan, _prepare(plan, Operation.WAKEUP), lambda p: None)

        assert outcome.succeeded
        assert recorder.applied["db"] == {}


class TestStoreErrors:
    def test_store_error_aborts_without_consuming_attempt(self, registry, recorder, make_plan) -> None:
        restore = MagicMock()
        restore.save_or_preserve.side_effect = StoreError("redis unavailable")
        plan = make_plan(("db", "app"), behavior={"mode": "BestEffort", "retries": 3})

        with pytest.raises(StoreError):
            CycleRunner(registry, restore, _clock).run(plan, _prepare(plan, Operation.SHUTDOWN), lambda p: None)

        execution = plan.execution_for("db")
        assert execution.state is ExecutionState.PENDING
        assert execution.attempts == 0
        assert plan.execution_for("app").state is ExecutionState.PENDING

    def test_running_target_is_reattempted(self, registry, restore, recorder, make_plan) -> None:
        plan = make_plan(("db",))
        execution_plan = _prepare(plan, Operation.SHUTDOWN)
        execution = plan.execution_for("db")
        execution.state = ExecutionState.RUNNING
        execution.attempts = 1

        outcome = CycleRunner(registry, restore, _clock).run(plan, execution_plan, lambda p: None)

        assert outcome.succeeded
        assert execution.attempts == 2

    def test_completed_targets_are_skipped(self, registry, restore, recorder, make_plan) -> None:
        plan = make_plan(("db", "app"))
        execution_plan = _prepare(plan, Operation.SHUTDOWN)
        plan.execution_for("db").state = ExecutionState.COMPLETED

        CycleRunner(registry, restore, _clock).run(plan, execution_plan, lambda p: None)

        assert recorder.targets("shutdown") == ["app"]


class TestFailFast:
    def test_strict_fail_fast_stops_the_layer(self, registry, restore, recorder, make_plan) -> None:
        plan = make_plan(
            ("a", "b", "c"),
            strategy={"type": "Parallel", "maxConcurrency": 1},
            behavior={"mode": "Strict", "retries": 0, "failFast": True},
        )
        recorder.failures[("shutdown", "a")] = -1

        outcome = CycleRunner(registry, restore, _clock).run(plan, _prepare(plan, Operation.SHUTDOWN), lambda p: None)

        assert outcome.failed == ["a"]
        assert outcome.pending == ["b", "c"]
        assert recorder.targets("shutdown") == ["a"]

    def test_best_effort_ignores_fail_fast(self, registry, restore, recorder, make_plan) -> None:
        plan = make_plan(
            ("a", "b", "c"),
            strategy={"type": "Parallel", "maxConcurrency": 1},
            behavior={"mode": "BestEffort", "retries": 0, "failFast": True},
        )
        recorder.failures[("shutdown", "a")] = -1

        outcome = CycleRunner(registry, restore, _clock).run(plan, _prepare(plan, Operation.SHUTDOWN), lambda p: None)

        assert outcome.failed == ["a"]
        assert outcome.completed == ["b", "c"]
        assert recorder.targets("shutdown") == ["a", "b", "c"]

