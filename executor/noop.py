"""No-op executor that simulates hibernation for testing and dry runs.

Parameters understood (all optional):

``resourceIds``
    Resource ids to report in captured state (default ``["noop"]``).
``randomDelaySeconds``
    Upper bound (0-30) of a random delay applied to each operation.
``failureMode``
    ``none`` (default), ``shutdown``, ``wakeup`` or ``both``.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from typing import Any, Callable

from protocol.errors import ConfigurationError, ExecutorError

from .base import CapturedState, ExecutorSpec, _utcnow_iso

logger = logging.getLogger(__name__)

EXECUTOR_TYPE = "noop"
MAX_RANDOM_DELAY = 30
FAILURE_MODES: frozenset[str] = frozenset({"none", "shutdown", "wakeup", "both"})

_Key = tuple[str, str, str]


class NoopExecutor:
    """Keep simulated resource state in memory.

    A capture is live only if the resources were running when the shutdown
    snapshot was taken, so repeated shutdowns produce low-fidelity data.
    """

    type = EXECUTOR_TYPE

    def __init__(
        self,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._running: dict[_Key, bool] = {}
        self._snapshots: dict[_Key, CapturedState] = {}
        self._applied: dict[_Key, dict[str, Any]] = {}

    # -- Executor interface ---------------------------------------------------

    def validate(self, spec: ExecutorSpec) -> None:
        params = spec.parameters
        mode = params.get("failureMode", "none")
        if mode not in FAILURE_MODES:
            raise ConfigurationError(
                f"target {spec.target!r}: failureMode must be one of "
                f"{sorted(FAILURE_MODES)}, got {mode!r}"
            )
        delay = params.get("randomDelaySeconds", 0)
        if isinstance(delay, bool) or not isinstance(delay, int) or not 0 <= delay <= MAX_RANDOM_DELAY:
            raise ConfigurationError(
                f"target {spec.target!r}: randomDelaySeconds must be an integer "
                f"between 0 and {MAX_RANDOM_DELAY}"
            )
        ids = params.get("resourceIds", ["noop"])
        if not isinstance(ids, list) or not all(isinstance(i, str) and i for i in ids):
            raise ConfigurationError(
                f"target {spec.target!r}: resourceIds must be a list of non-empty strings"
            )

    def shutdown(self, spec: ExecutorSpec) -> None:
        self.validate(spec)
        self._delay(spec)
        if spec.parameters.get("failureMode") in ("shutdown", "both"):
            raise ExecutorError(f"simulated shutdown failure for {spec.target}", spec.target)

        key = _key(spec)
        ids = spec.parameters.get("resourceIds", ["noop"])
        with self._lock:
            was_running = self._running.get(key, True)
            self._snapshots[key] = CapturedState(
                state={
                    rid: {"running": was_running, "cycleId": spec.cycle_id}
                    for rid in ids  # type: ignore[union-attr]
                },
                is_live=was_running,
                captured_at=_utcnow_iso(),
            )
            self._running[key] = False
        logger.info("noop: shut down %s/%s (cycle %s)", spec.plan, spec.target, spec.cycle_id)

    def wake_up(self, spec: ExecutorSpec) -> None:
        self.validate(spec)
        self._delay(spec)
        if spec.parameters.get("failureMode") in ("wakeup", "both"):
            raise ExecutorError(f"simulated wakeup failure for {spec.target}", spec.target)
        with self._lock:
            self._running[_key(spec)] = True
        logger.info("noop: woke up %s/%s (cycle %s)", spec.plan, spec.target, spec.cycle_id)

    def capture_state(self, spec: ExecutorSpec) -> CapturedState:
        with self._lock:
            snapshot = self._snapshots.get(_key(spec))
        if snapshot is None:
            return CapturedState(state={}, is_live=False)
        return snapshot

    def apply_state(self, spec: ExecutorSpec, state: dict[str, Any]) -> None:
        with self._lock:
            self._applied[_key(spec)] = dict(state)
        logger.info("noop: applied %d resource state(s) to %s", len(state), spec.target)

    # -- Inspection -----------------------------------------------------------

    def is_running(self, spec: ExecutorSpec) -> bool:
        with self._lock:
            return self._running.get(_key(spec), True)

    def applied_state(self, spec: ExecutorSpec) -> dict[str, Any] | None:
        with self._lock:
            return self._applied.get(_key(spec))

    # -- Internals ------------------------------------------------------------

    def _delay(self, spec: ExecutorSpec) -> None:
        upper = spec.parameters.get("randomDelaySeconds", 0)
        if upper:
            self._sleep(self._rng.uniform(0, float(upper)))  # type: ignore[arg-type]


def _key(spec: ExecutorSpec) -> _Key:
    return (spec.namespace, spec.plan, spec.target)
