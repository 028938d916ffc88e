"""Orchestrator: drives one plan through its phase state machine.

Each call to :meth:`Orchestrator.reconcile` is one tick.  A tick moves the
plan at most one cycle forward:

1. first observation prepares the restore point and enters ``Active``;
2. suspension (timed or manual) short-circuits everything else;
3. schedule exceptions are tracked and the schedule is evaluated;
4. a ``hibernator/retry-now`` annotation re-runs the current cycle;
5. the phase and the desired state decide whether a shutdown or wake-up
   cycle starts, resumes, or recovers from ``Error``.

The plan object is mutated in place; persisting it is the caller's job.
Intermediate status is pushed through ``status_writer`` while a cycle runs.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Sequence

from executor import ExecutorRegistry
from protocol.errors import ConfigurationError, StoreError
from restore import RestoreManager
from scheduler import (
    EvaluationResult,
    ScheduleEvaluator,
    ScheduleException,
    evaluate_with_exception,
    next_requeue_delay,
)

from . import annotations
from .cycle_runner import CycleRunner, StatusWriter, executor_spec
from .models import (
    COMPLETED_PHASES,
    IN_PROGRESS_PHASES,
    CycleSummary,
    ExceptionReference,
    ExecutionState,
    Operation,
    Plan,
    PlanPhase,
    ScheduleExceptionResource,
    TargetExecution,
    TargetResult,
)
from .planner import ExecutionPlan, ExecutionPlanner
from .recovery import (
    DEFAULT_MAX_RETRIES,
    determine_recovery_strategy,
    record_retry_attempt,
    reset_retry_state,
)
from .suspension import apply_suspend_until, enter_suspension, resume_phase

logger = logging.getLogger(__name__)

STORE_RETRY_DELAY = timedelta(seconds=30)
DEFAULT_MAX_HISTORY = 5
DEFAULT_MAX_EXCEPTION_REFS = 10

_PHASE_OPERATIONS: dict[PlanPhase, Operation] = {
    phase: op for op, phase in IN_PROGRESS_PHASES.items()
}


@dataclass(frozen=True)
class ReconcileResult:
    """``requeue_after`` is ``None`` when nothing is scheduled to happen."""

    requeue_after: timedelta | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _discard(plan: Plan) -> None:
    return None


class Orchestrator:
    """Phase state machine for hibernation plans."""

    def __init__(
        self,
        registry: ExecutorRegistry,
        restore: RestoreManager,
        *,
        evaluator: ScheduleEvaluator | None = None,
        planner: ExecutionPlanner | None = None,
        clock: Callable[[], datetime] | None = None,
        reset_attempts_on_retry: bool = False,
        max_history: int = DEFAULT_MAX_HISTORY,
        max_exception_refs: int = DEFAULT_MAX_EXCEPTION_REFS,
    ) -> None:
        """Initialize Orchestrator.

        Args:
            registry: Executors available to targets, by type.
            restore: Restore point store shared by all plans.
            evaluator: Schedule evaluator (a default one when omitted).
            planner: Execution planner (a default one when omitted).
            clock: Source of aware "now" datetimes, for testing.
            reset_attempts_on_retry: Zero per-target attempts on manual retry.
            max_history: Cycle summaries kept in ``executionHistory``.
            max_exception_refs: Exception references kept in status.
        """
        self._registry = registry
        self._restore = restore
        self._evaluator = evaluator or ScheduleEvaluator()
        self._planner = planner or ExecutionPlanner()
        self._clock = clock or _utcnow
        self._reset_attempts = reset_attempts_on_retry
        self._max_history = max(1, max_history)
        self._max_exception_refs = max(1, max_exception_refs)
        self._runner = CycleRunner(registry, restore, self._clock)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def reconcile(
        self,
        plan: Plan,
        exceptions: Sequence[ScheduleExceptionResource] = (),
        now: datetime | None = None,
        status_writer: StatusWriter | None = None,
    ) -> ReconcileResult:
        """Advance *plan* by one tick and say when to look at it again."""
        now = now or self._clock()
        write = status_writer or _discard
        status = plan.status
        ns, name = plan.metadata.namespace, plan.metadata.name

        if status.phase is None:
            try:
                self._restore.prepare_restore_point(ns, name)
            except StoreError as exc:
                logger.warning("Plan %s: cannot prepare restore point: %s", plan.key, exc)
                return ReconcileResult(STORE_RETRY_DELAY)
            self._transition(plan, PlanPhase.ACTIVE, now)

        suspend_delay = apply_suspend_until(plan, now)
        if plan.spec.suspend:
            enter_suspension(plan, now)
            return ReconcileResult(suspend_delay)

        exception = self._track_exceptions(plan, exceptions, now)
        try:
            evaluation = evaluate_with_exception(
                self._evaluator,
                plan.spec.schedule.windows(),
                plan.spec.schedule.timezone,
                exception,
                now,
            )
        except ConfigurationError as exc:
            message = f"configuration error: {exc}"
            if status.phase is PlanPhase.ERROR and status.error_message == message:
                return ReconcileResult(None)
            return self._fail(plan, message, now)

        if status.phase is PlanPhase.SUSPENDED:
            try:
                has_data = self._restore.has_restore_data(ns, name)
            except StoreError as exc:
                logger.warning("Plan %s: cannot resume yet: %s", plan.key, exc)
                return ReconcileResult(STORE_RETRY_DELAY)
            phase = resume_phase(
                plan.metadata.annotations.get(annotations.SUSPENDED_AT_PHASE),
                evaluation.should_hibernate,
                has_data,
            )
            if phase is PlanPhase.ACTIVE:
                plan.metadata.annotations.pop(annotations.SUSPENDED_AT_PHASE, None)
            self._transition(plan, phase, now)

        self._manual_retry(plan, now)
        return self._dispatch(plan, evaluation, now, write)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _dispatch(
        self,
        plan: Plan,
        evaluation: EvaluationResult,
        now: datetime,
        write: StatusWriter,
    ) -> ReconcileResult:
        phase = plan.status.phase
        hibernate = evaluation.should_hibernate

        if phase is PlanPhase.ACTIVE and hibernate:
            return self._start_cycle(plan, Operation.SHUTDOWN, evaluation, now, write)
        if phase is PlanPhase.HIBERNATED and not hibernate:
            return self._start_wakeup(plan, evaluation, now, write)
        if phase in _PHASE_OPERATIONS:
            return self._continue_cycle(plan, _PHASE_OPERATIONS[phase], evaluation, now, write)
        if phase is PlanPhase.ERROR:
            return self._recover(plan, evaluation, now, write)
        return ReconcileResult(next_requeue_delay(evaluation, now))

    def _start_wakeup(
        self,
        plan: Plan,
        evaluation: EvaluationResult,
        now: datetime,
        write: StatusWriter,
    ) -> ReconcileResult:
        try:
            has_data = self._restore.has_restore_data(
                plan.metadata.namespace, plan.metadata.name
            )
        except StoreError as exc:
            logger.warning("Plan %s: cannot check restore data: %s", plan.key, exc)
            return ReconcileResult(STORE_RETRY_DELAY)
        if not has_data:
            return self._fail(plan, "cannot wake up: no restore point found", now)
        return self._start_cycle(plan, Operation.WAKEUP, evaluation, now, write)

    def _start_cycle(
        self,
        plan: Plan,
        operation: Operation,
        evaluation: EvaluationResult,
        now: datetime,
        write: StatusWriter,
    ) -> ReconcileResult:
        status = plan.status
        try:
            execution_plan = self._build_execution_plan(plan, operation)
            for target in plan.spec.targets:
                self._registry.get(target.type).validate(executor_spec(plan, target))
        except ConfigurationError as exc:
            return self._fail(plan, f"configuration error: {exc}", now)

        status.current_cycle_id = uuid.uuid4().hex[:8]
        status.current_operation = operation
        status.cycle_started_at = now
        status.executions = [
            TargetExecution(target=t.name, executor=t.type) for t in plan.spec.targets
        ]
        self._transition(plan, IN_PROGRESS_PHASES[operation], now)
        logger.info(
            "Plan %s: starting %s cycle %s (%d targets)",
            plan.key,
            operation.value,
            status.current_cycle_id,
            len(status.executions),
        )
        try:
            write(plan)
        except StoreError as exc:
            logger.warning("Plan %s: cannot persist cycle start: %s", plan.key, exc)
            return ReconcileResult(STORE_RETRY_DELAY)
        return self._execute(plan, execution_plan, evaluation, now, write)

    def _continue_cycle(
        self,
        plan: Plan,
        operation: Operation,
        evaluation: EvaluationResult,
        now: datetime,
        write: StatusWriter,
    ) -> ReconcileResult:
        status = plan.status
        if status.current_operation is not operation or not status.current_cycle_id:
            return self._start_cycle(plan, operation, evaluation, now, write)
        try:
            execution_plan = self._build_execution_plan(plan, operation)
        except ConfigurationError as exc:
            return self._fail(plan, f"configuration error: {exc}", now)

        known = {e.target: e for e in status.executions}
        status.executions = [
            known.get(t.name) or TargetExecution(target=t.name, executor=t.type)
            for t in plan.spec.targets
        ]
        logger.info(
            "Plan %s: resuming %s cycle %s",
            plan.key,
            operation.value,
            status.current_cycle_id,
        )
        return self._execute(plan, execution_plan, evaluation, now, write)

    def _execute(
        self,
        plan: Plan,
        execution_plan: ExecutionPlan,
        evaluation: EvaluationResult,
        now: datetime,
        write: StatusWriter,
    ) -> ReconcileResult:
        try:
            outcome = self._runner.run(plan, execution_plan, write)
            if outcome.succeeded:
                self._finalize(plan, execution_plan.operation, now)
                write(plan)
                return ReconcileResult(next_requeue_delay(evaluation, now))
        except StoreError as exc:
            logger.warning(
                "Plan %s: store error during cycle %s, will retry: %s",
                plan.key,
                plan.status.current_cycle_id,
                exc,
            )
            return ReconcileResult(STORE_RETRY_DELAY)

        if not outcome.failed:
            return ReconcileResult(STORE_RETRY_DELAY)
        self._record_history(plan, execution_plan.operation, False, now)
        return self._fail(plan, outcome.error_message, now)

    def _finalize(self, plan: Plan, operation: Operation, now: datetime) -> None:
        status = plan.status
        self._record_history(plan, operation, True, now)
        reset_retry_state(status)
        if operation is Operation.WAKEUP:
            ns, name = plan.metadata.namespace, plan.metadata.name
            targets = [t.name for t in plan.spec.targets]
            if self._restore.mark_all_targets_restored(ns, name, targets):
                self._restore.unlock_restore_data(ns, name)
                plan.metadata.annotations.pop(annotations.SUSPENDED_AT_PHASE, None)
        self._transition(plan, COMPLETED_PHASES[operation], now)
        logger.info(
            "Plan %s: %s cycle %s completed",
            plan.key,
            operation.value,
            status.current_cycle_id,
        )

    def _fail(self, plan: Plan, message: str, now: datetime) -> ReconcileResult:
        status = plan.status
        record_retry_attempt(status, message, now)
        self._transition(plan, PlanPhase.ERROR, now)
        strategy = determine_recovery_strategy(status, self._max_retries(plan), now)
        logger.error(
            "Plan %s: %s (retry %d, %s)",
            plan.key,
            message,
            status.retry_count,
            strategy.reason,
        )
        return ReconcileResult(strategy.retry_after if strategy.should_retry else None)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def _recover(
        self,
        plan: Plan,
        evaluation: EvaluationResult,
        now: datetime,
        write: StatusWriter,
    ) -> ReconcileResult:
        status = plan.status
        strategy = determine_recovery_strategy(status, self._max_retries(plan), now)
        if not strategy.should_retry:
            logger.info("Plan %s: staying in Error: %s", plan.key, strategy.reason)
            return ReconcileResult(None)
        if strategy.retry_after > timedelta(0):
            return ReconcileResult(strategy.retry_after)

        operation = status.current_operation
        desired = Operation.SHUTDOWN if evaluation.should_hibernate else Operation.WAKEUP
        logger.info(
            "Plan %s: recovering from %s error (attempt %d)",
            plan.key,
            strategy.classification.value,
            status.retry_count,
        )

        if operation is None:
            self._transition(plan, PlanPhase.ACTIVE, now)
            return self._dispatch(plan, evaluation, now, write)

        if operation is desired:
            for execution in status.executions:
                if execution.state is ExecutionState.FAILED:
                    execution.state = ExecutionState.PENDING
                    execution.message = "State reset for retry (on error recovery)"
            self._transition(plan, IN_PROGRESS_PHASES[operation], now)
            return self._continue_cycle(plan, operation, evaluation, now, write)

        completed = any(e.state is ExecutionState.COMPLETED for e in status.executions)
        if operation is Operation.SHUTDOWN and not completed:
            # Nothing was shut down, so there is nothing to wake.
            self._transition(plan, PlanPhase.ACTIVE, now)
            return ReconcileResult(next_requeue_delay(evaluation, now))
        return self._start_cycle(plan, desired, evaluation, now, write)

    def _manual_retry(self, plan: Plan, now: datetime) -> None:
        value = plan.metadata.annotations.pop(annotations.RETRY_NOW, None)
        if value is None:
            return
        mode = value.strip().lower()
        status = plan.status
        if mode not in ("true", "force"):
            logger.warning("Plan %s: ignoring %s=%r", plan.key, annotations.RETRY_NOW, value)
            return
        if mode == "true" and status.phase is not PlanPhase.ERROR:
            logger.info("Plan %s: retry requested but phase is %s, ignored", plan.key, status.phase)
            return

        operation = status.current_operation
        if operation is None:
            reset_retry_state(status)
            self._transition(plan, PlanPhase.ACTIVE, now)
            return
        if status.executions and all(
            e.state is ExecutionState.COMPLETED for e in status.executions
        ):
            logger.info("Plan %s: cycle %s already succeeded", plan.key, status.current_cycle_id)
            if status.phase is PlanPhase.ERROR:
                reset_retry_state(status)
                self._transition(plan, COMPLETED_PHASES[operation], now)
            return

        for execution in status.executions:
            if execution.state is not ExecutionState.COMPLETED:
                execution.state = ExecutionState.PENDING
                execution.message = "State reset for retry (manual)"
                if self._reset_attempts:
                    execution.attempts = 0
        reset_retry_state(status)
        self._transition(plan, IN_PROGRESS_PHASES[operation], now)
        logger.info("Plan %s: manual %s retry of %s", plan.key, mode, operation.value)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _build_execution_plan(self, plan: Plan, operation: Operation) -> ExecutionPlan:
        return self._planner.plan(
            plan.spec.execution.strategy, plan.spec.targets, operation
        )

    def _track_exceptions(
        self,
        plan: Plan,
        resources: Sequence[ScheduleExceptionResource],
        now: datetime,
    ) -> ScheduleException | None:
        live: list[ExceptionReference] = []
        expired: list[ExceptionReference] = []
        active: list[ScheduleException] = []
        for resource in resources:
            if resource.spec.plan_ref != plan.metadata.name:
                continue
            try:
                exc = resource.to_exception()
            except ConfigurationError as err:
                logger.warning("Plan %s: skipping exception %s: %s", plan.key, resource.metadata.name, err)
                continue
            if exc.is_expired(now):
                state, bucket = "Expired", expired
            elif exc.is_active(now):
                state, bucket = "Active", live
                active.append(exc)
            else:
                state, bucket = "Pending", live
            bucket.append(
                ExceptionReference(
                    name=exc.name,
                    type=exc.type,
                    valid_from=exc.valid_from,
                    valid_until=exc.valid_until,
                    state=state,
                )
            )

        live.sort(key=lambda ref: ref.valid_from, reverse=True)
        expired.sort(key=lambda ref: ref.valid_from, reverse=True)
        plan.status.active_exceptions = (live + expired)[: self._max_exception_refs]
        return max(active, key=lambda e: e.valid_from, default=None)

    def _record_history(
        self, plan: Plan, operation: Operation, success: bool, now: datetime
    ) -> None:
        status = plan.status
        summary = CycleSummary(
            cycle_id=status.current_cycle_id,
            operation=operation,
            success=success,
            started_at=status.cycle_started_at,
            finished_at=now,
            targets=[
                TargetResult(
                    target=e.target,
                    state=e.state,
                    attempts=e.attempts,
                    message=e.message,
                )
                for e in status.executions
            ],
        )
        history = [h for h in status.execution_history if h.cycle_id != summary.cycle_id]
        history.append(summary)
        status.execution_history = history[-self._max_history :]

    @staticmethod
    def _max_retries(plan: Plan) -> int:
        return plan.spec.behavior.retries or DEFAULT_MAX_RETRIES

    @staticmethod
    def _transition(plan: Plan, phase: PlanPhase, now: datetime) -> None:
        status = plan.status
        if status.phase is phase:
            return
        logger.info(
            "Plan %s: %s -> %s",
            plan.key,
            status.phase.value if status.phase else "-",
            phase.value,
        )
        status.phase = phase
        status.last_transition_time = now
