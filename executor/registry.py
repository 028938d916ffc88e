"""Explicit registry mapping target types to executors."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from protocol.errors import ConfigurationError

if TYPE_CHECKING:
    from executor.base import Executor


class UnknownExecutorError(ConfigurationError):
    """Raised when no executor is registered for a target type."""

    def __init__(self, target_type: str) -> None:
        self.target_type = target_type
        super().__init__(f"No executor registered for target type: {target_type!r}")


class ExecutorRegistry:
    """Map target types to executor instances.

    Built once at startup and handed to the orchestrator; there is no
    module-level default registry.

    Parameters
    ----------
    executors:
        Optional executors to register immediately.
    """

    def __init__(self, executors: list[Executor] | None = None) -> None:
        self._lock = threading.Lock()
        self._executors: dict[str, Executor] = {}
        for executor in executors or []:
            self.register(executor)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def register(self, executor: Executor) -> None:
        """Add *executor*; a second executor for the same type is rejected."""
        with self._lock:
            if executor.type in self._executors:
                raise ConfigurationError(
                    f"executor for type {executor.type!r} already registered"
                )
            self._executors[executor.type] = executor

    def get(self, target_type: str) -> Executor:
        """Return the executor for *target_type*.

        Raises
        ------
        UnknownExecutorError
            If nothing is registered for *target_type*.
        """
        with self._lock:
            try:
                return self._executors[target_type]
            except KeyError:
                raise UnknownExecutorError(target_type) from None

    def types(self) -> list[str]:
        with self._lock:
            return sorted(self._executors)

    def __contains__(self, target_type: object) -> bool:
        with self._lock:
            return target_type in self._executors
