"""Error taxonomy shared by every hibernator component."""

from __future__ import annotations


class HibernatorError(Exception):
    """Base exception for all hibernator errors."""


class ConfigurationError(HibernatorError, ValueError):
    """Raised when a plan or schedule is misconfigured.

    Retrying never fixes a configuration error, so the orchestrator surfaces
    it as a plan-level ``Error`` without scheduling an automatic retry.
    """


class ExecutorError(HibernatorError):
    """Raised when a target-level executor operation fails."""

    def __init__(self, message: str, target: str = "") -> None:
        self.target = target
        super().__init__(message)


class SizeExceededError(ExecutorError):
    """Raised when a serialized restore payload exceeds the size cap."""

    def __init__(self, size: int, limit: int, target: str = "") -> None:
        self.size = size
        self.limit = limit
        super().__init__(
            f"restore data for target {target!r} is {size} bytes, "
            f"exceeds limit of {limit} bytes",
            target=target,
        )


class StoreError(HibernatorError):
    """Raised on persistence transport or serialization failure."""


class ConflictError(StoreError):
    """Raised when an optimistic-concurrency check fails."""

    def __init__(self, namespace: str, name: str, detail: str = "") -> None:
        self.namespace = namespace
        self.name = name
        msg = f"conflict on {namespace}/{name}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class DocumentNotFoundError(StoreError):
    """Raised when an update or delete targets a document that does not exist."""

    def __init__(self, namespace: str, name: str) -> None:
        self.namespace = namespace
        self.name = name
        super().__init__(f"document {namespace}/{name} not found")
