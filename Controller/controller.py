"""Controller — reconciliation driver for hibernation plans.

Each tick lists the plans of a namespace and, for every plan, takes the
plan's lock, loads it with its schedule exceptions, lets the orchestrator
advance it, and persists whatever changed.  The loop then sleeps until the
earliest requested requeue, bounded by the reconcile interval.

Usage:
    python -m Controller --run-once
    python -m Controller --loop --namespace team-a
"""
from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from Controller.config import ControllerConfig
from Controller.lock_manager import LockError, LockManager
from Controller.logger import get_logger
from Controller.plan_store import PlanStore
from executor import ExecutorRegistry
from executor.noop import NoopExecutor
from infra import DocumentStore
from infra.adapter_factory import get_document_store
from Orchestrator import Orchestrator, Plan, ReconcileResult
from Orchestrator.orchestrator import STORE_RETRY_DELAY
from protocol.errors import StoreError
from restore import RestoreManager


def default_registry() -> ExecutorRegistry:
    """Executors available out of the box."""
    return ExecutorRegistry([NoopExecutor()])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Controller:
    """Drive every plan of a namespace through the orchestrator."""

    def __init__(
        self,
        config: ControllerConfig | None = None,
        *,
        store: DocumentStore | None = None,
        registry: ExecutorRegistry | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or ControllerConfig.from_env()
        self.log = get_logger(self.config.controller_id)
        self._clock = clock or _utcnow
        self._sleep = sleep

        self._store = store or get_document_store(self.config.documents_dir)
        self._plans = PlanStore(self._store, max_conflict_retries=self.config.conflict_retries)
        self._restore = RestoreManager(
            self._store, max_conflict_retries=self.config.conflict_retries
        )
        self._orchestrator = Orchestrator(
            registry or default_registry(),
            self._restore,
            clock=self._clock,
            reset_attempts_on_retry=self.config.reset_attempts_on_retry,
            max_history=self.config.max_history,
        )
        self._lock_mgr = LockManager(
            locks_dir=self.config.locks_dir,
            owner=self.config.controller_id,
            timeout_seconds=self.config.lock_timeout_seconds,
            max_retries=self.config.lock_max_retries,
            backoff_base=self.config.lock_backoff_base,
            sleep=sleep,
        )
        # plan key -> when the orchestrator wants to see it again
        self._due: dict[str, datetime] = {}

    @property
    def plans(self) -> PlanStore:
        return self._plans

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def reconcile_plan(self, namespace: str, name: str) -> ReconcileResult | None:
        """Run one orchestrator tick for a single plan.

        Returns ``None`` when the plan was skipped (lock held elsewhere, or
        the plan does not exist).
        """
        key = f"{namespace}/{name}"
        log = get_logger(self.config.controller_id, plan=key)
        try:
            self._lock_mgr.acquire(key)
        except LockError as exc:
            log.warning("Cannot lock %s, skipping: %s", key, exc)
            return None

        try:
            plan = self._plans.get(namespace, name)
            if plan is None:
                log.warning("Plan %s not found", key)
                self._due.pop(key, None)
                return None
            exceptions = self._plans.list_exceptions(namespace, plan=name)
            baseline = [plan.model_copy(deep=True)]

            def _persist(current: Plan) -> None:
                saved = self._plans.save(current, baseline[0])
                current.metadata.annotations = dict(saved.metadata.annotations)
                current.metadata.resource_version = saved.metadata.resource_version
                current.spec.suspend = saved.spec.suspend
                baseline[0] = saved

            result = self._orchestrator.reconcile(
                plan, exceptions, now=self._clock(), status_writer=_persist
            )
            if plan != baseline[0]:
                try:
                    _persist(plan)
                except StoreError as exc:
                    log.error("Cannot persist %s: %s", key, exc)
                    result = ReconcileResult(STORE_RETRY_DELAY)

            log = get_logger(
                self.config.controller_id,
                plan=key,
                cycle_id=plan.status.current_cycle_id or None,
            )
            log.info(
                "Reconciled %s: phase=%s requeue_after=%s",
                key,
                plan.status.phase.value if plan.status.phase else "-",
                result.requeue_after,
            )
            self._schedule(key, result.requeue_after)
            return result
        except StoreError as exc:
            log.error("Store error while reconciling %s: %s", key, exc)
            self._schedule(key, STORE_RETRY_DELAY)
            return ReconcileResult(STORE_RETRY_DELAY)
        finally:
            self._lock_mgr.release(key)

    def run_once(self, namespace: str | None = None, plan: str | None = None) -> bool:
        """Reconcile every plan (or just *plan*) once.

        Returns True when every plan was reconciled without a controller-side
        failure.  A plan sitting in ``Error`` is not a controller failure.
        """
        ns = namespace or self.config.namespace
        try:
            names = [plan] if plan else [p.metadata.name for p in self._plans.list(ns)]
        except StoreError as exc:
            self.log.error("Cannot list plans in %s: %s", ns, exc)
            return False

        if not names:
            self.log.info("No plans found in namespace %s — nothing to do", ns)
            return True

        ok = True
        for name in names:
            try:
                if self.reconcile_plan(ns, name) is None:
                    ok = False
            except Exception as exc:
                ok = False
                self.log.error("Unexpected error reconciling %s/%s: %s", ns, name, exc, exc_info=True)
        return ok

    def run_forever(
        self,
        namespace: str | None = None,
        plan: str | None = None,
        max_ticks: int | None = None,
    ) -> None:
        """Tick until interrupted (or *max_ticks* ticks have run)."""
        ticks = 0
        while True:
            self.run_once(namespace, plan)
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                return
            delay = self.next_delay()
            self.log.info("Sleeping %.1fs", delay)
            self._sleep(delay)

    def next_delay(self) -> float:
        """Seconds until the earliest requeue, capped by the reconcile interval."""
        interval = self.config.reconcile_interval_seconds
        if not self._due:
            return interval
        remaining = (min(self._due.values()) - self._clock()).total_seconds()
        return max(0.0, min(interval, remaining))

    def apply(self, data: dict[str, Any]) -> str:
        """Apply a plan or schedule exception document.  Returns its key."""
        resource = self._plans.apply(data)
        key = f"{resource.metadata.namespace}/{resource.metadata.name}"
        self.log.info("Applied %s %s", type(resource).__name__, key)
        return key

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _schedule(self, key: str, requeue_after: timedelta | None) -> None:
        if requeue_after is None:
            self._due.pop(key, None)
        else:
            self._due[key] = self._clock() + requeue_after
