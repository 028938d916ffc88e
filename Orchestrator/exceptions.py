"""Custom exceptions for the Orchestrator module."""

from __future__ import annotations

from protocol.errors import ConfigurationError, HibernatorError


class OrchestratorError(HibernatorError):
    """Base exception for errors raised by the Orchestrator."""


class DependencyCycleError(OrchestratorError, ConfigurationError):
    """Raised when declared dependencies do not form a DAG."""

    def __init__(self, targets: list[str]) -> None:
        self.targets = targets
        super().__init__(
            f"dependency cycle detected among targets: {', '.join(targets)}"
        )


class UnknownTargetError(OrchestratorError, ConfigurationError):
    """Raised when a dependency edge names an undeclared target."""

    def __init__(self, target: str) -> None:
        self.target = target
        super().__init__(f"dependency references unknown target: {target!r}")


class DuplicateTargetError(OrchestratorError, ConfigurationError):
    """Raised when two targets share a name."""

    def __init__(self, target: str) -> None:
        self.target = target
        super().__init__(f"duplicate target name: {target!r}")
