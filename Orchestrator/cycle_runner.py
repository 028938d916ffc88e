"""Run one hibernate or wake-up cycle across a plan's targets.

Layers run in order.  Inside a layer, targets are dispatched to a thread
pool bounded by the layer's concurrency; each target is retried in place up
to ``behavior.retries`` times.  A target only starts once every predecessor
is ``Completed``; otherwise it stays ``Pending``.

Status mutations happen under one lock and are persisted through the
status writer after every transition, so a restarted controller can pick
up from the stored executions.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from executor import Executor, ExecutorRegistry, ExecutorSpec
from protocol.document import normalize_mapping
from protocol.errors import ConfigurationError, SizeExceededError, StoreError
from restore import RestoreData, RestoreManager

from .models import (
    BehaviorMode,
    ExecutionState,
    Operation,
    Plan,
    Target,
    TargetExecution,
)
from .planner import ExecutionLayer, ExecutionPlan

logger = logging.getLogger(__name__)

StatusWriter = Callable[[Plan], None]


def executor_spec(plan: Plan, target: Target) -> ExecutorSpec:
    return ExecutorSpec(
        namespace=plan.metadata.namespace,
        plan=plan.metadata.name,
        target=target.name,
        target_type=target.type,
        parameters=dict(target.parameters),
        connector_ref=dict(target.connector_ref),
        cycle_id=plan.status.current_cycle_id,
    )


@dataclass
class CycleOutcome:
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    error_message: str = ""

    @property
    def succeeded(self) -> bool:
        return not self.failed and not self.pending


class CycleRunner:
    """Drive the targets of one cycle to Completed or Failed.

    Parameters
    ----------
    registry:
        Executors keyed by target type.
    restore:
        Restore point store used around shutdown and wake-up.
    clock:
        Returns the current aware datetime.
    """

    def __init__(
        self,
        registry: ExecutorRegistry,
        restore: RestoreManager,
        clock: Callable[[], datetime],
    ) -> None:
        self._registry = registry
        self._restore = restore
        self._clock = clock
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(
        self,
        plan: Plan,
        execution_plan: ExecutionPlan,
        write: StatusWriter,
    ) -> CycleOutcome:
        """Execute every runnable target of *execution_plan*.

        Raises
        ------
        StoreError
            When persistence fails; the in-flight targets are left Pending
            and the cycle can be resumed on a later tick.
        """
        targets = {t.name: t for t in plan.spec.targets}
        executions = {e.target: e for e in plan.status.executions}
        strict = plan.spec.behavior.mode is BehaviorMode.STRICT

        for position, layer in enumerate(execution_plan.layers):
            runnable = self._runnable(layer, execution_plan, executions)
            self._run_layer(plan, layer, runnable, targets, executions, execution_plan.operation, write)

            failed = [n for n in layer.targets if executions[n].state is ExecutionState.FAILED]
            if failed and strict:
                logger.warning(
                    "Plan %s: layer %d has failed targets (%s), stopping (Strict mode)",
                    plan.key,
                    position,
                    ", ".join(failed),
                )
                break

        return self._outcome(plan, execution_plan)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _runnable(
        layer: ExecutionLayer,
        execution_plan: ExecutionPlan,
        executions: dict[str, TargetExecution],
    ) -> list[str]:
        runnable: list[str] = []
        for name in layer.targets:
            execution = executions[name]
            if execution.state in (ExecutionState.COMPLETED, ExecutionState.FAILED):
                continue
            blocked = [
                p
                for p in execution_plan.predecessors.get(name, frozenset())
                if executions[p].state is not ExecutionState.COMPLETED
            ]
            if blocked:
                logger.info("Target %s waits on %s", name, ", ".join(sorted(blocked)))
                continue
            runnable.append(name)
        return runnable

    def _run_layer(
        self,
        plan: Plan,
        layer: ExecutionLayer,
        runnable: list[str],
        targets: dict[str, Target],
        executions: dict[str, TargetExecution],
        operation: Operation,
        write: StatusWriter,
    ) -> None:
        if not runnable:
            return
        stop = threading.Event()
        store_errors: list[StoreError] = []
        workers = max(1, min(layer.max_concurrency, len(runnable)))

        with ThreadPoolExecutor(
            max_workers=workers,
            thread_name_prefix=f"cycle-{plan.status.current_cycle_id}",
        ) as pool:
            futures = {
                pool.submit(
                    self._run_target,
                    plan,
                    targets[name],
                    executions[name],
                    operation,
                    write,
                    stop,
                ): name
                for name in runnable
            }
            for future in as_completed(futures):
                try:
                    future.result()
                except StoreError as exc:
                    store_errors.append(exc)
                    stop.set()

        if store_errors:
            raise store_errors[0]

    def _run_target(
        self,
        plan: Plan,
        target: Target,
        execution: TargetExecution,
        operation: Operation,
        write: StatusWriter,
        stop: threading.Event,
    ) -> None:
        if stop.is_set():
            return
        behavior = plan.spec.behavior
        max_attempts = behavior.retries + 1
        spec = executor_spec(plan, target)

        last_error = ""
        for attempt in range(1, max_attempts + 1):
            try:
                with self._lock:
                    execution.state = ExecutionState.RUNNING
                    execution.attempts += 1
                    execution.started_at = execution.started_at or self._clock()
                    execution.finished_at = None
                    execution.message = f"{operation.value} attempt {attempt}/{max_attempts}"
                    write(plan)
                executor = self._registry.get(target.type)
                self._perform(operation, executor, spec, target)
            except StoreError as exc:
                with self._lock:
                    execution.state = ExecutionState.PENDING
                    execution.attempts -= 1
                    execution.message = f"store error, will retry: {exc}"
                raise
            except (ConfigurationError, SizeExceededError) as exc:
                last_error = str(exc)
                logger.error("Target %s: %s (not retried)", target.name, exc)
                break
            except Exception as exc:
                last_error = str(exc) or exc.__class__.__name__
                logger.warning(
                    "Target %s %s attempt %d/%d failed: %s",
                    target.name,
                    operation.value,
                    attempt,
                    max_attempts,
                    last_error,
                )
                continue
            else:
                with self._lock:
                    execution.state = ExecutionState.COMPLETED
                    execution.finished_at = self._clock()
                    execution.message = f"{operation.value} completed"
                    write(plan)
                logger.info("Target %s %s completed", target.name, operation.value)
                return

        with self._lock:
            execution.state = ExecutionState.FAILED
            execution.finished_at = self._clock()
            execution.message = last_error
            write(plan)
        if behavior.fail_fast and behavior.mode is BehaviorMode.STRICT:
            stop.set()

    def _perform(
        self,
        operation: Operation,
        executor: Executor,
        spec: ExecutorSpec,
        target: Target,
    ) -> None:
        if operation is Operation.SHUTDOWN:
            executor.shutdown(spec)
            captured = executor.capture_state(spec)
            data = RestoreData(
                target=target.name,
                executor=target.type,
                created_at=self._clock().isoformat(),
                is_live=captured.is_live,
                captured_at=captured.captured_at,
                state=normalize_mapping(captured.state),
            )
            self._restore.save_or_preserve(spec.namespace, spec.plan, target.name, data)
            return

        data = self._restore.load(spec.namespace, spec.plan, target.name)
        executor.wake_up(spec)
        executor.apply_state(spec, dict(data.state) if data is not None else {})
        try:
            self._restore.mark_target_restored(spec.namespace, spec.plan, target.name)
        except StoreError as exc:
            logger.error("Could not mark %s restored (continuing): %s", target.name, exc)

    @staticmethod
    def _outcome(plan: Plan, execution_plan: ExecutionPlan) -> CycleOutcome:
        outcome = CycleOutcome()
        order = execution_plan.targets
        by_name = {e.target: e for e in plan.status.executions}
        for name in order:
            execution = by_name[name]
            if execution.state is ExecutionState.COMPLETED:
                outcome.completed.append(name)
            elif execution.state is ExecutionState.FAILED:
                outcome.failed.append(name)
                if not outcome.error_message:
                    outcome.error_message = (
                        f"{execution_plan.operation.value} failed for target "
                        f"{name}: {execution.message}"
                    )
            else:
                outcome.pending.append(name)
        if outcome.failed and len(outcome.failed) > 1:
            outcome.error_message += f" (and {len(outcome.failed) - 1} more)"
        return outcome
