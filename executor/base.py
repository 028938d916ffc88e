"""Executor capability types and protocol."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

from protocol.document import DocumentValue


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ExecutorSpec:
    """Everything an executor needs to act on one target."""

    namespace: str
    plan: str
    target: str
    target_type: str
    parameters: dict[str, DocumentValue] = field(default_factory=dict)
    connector_ref: dict[str, str] = field(default_factory=dict)
    cycle_id: str = ""


@dataclass(frozen=True)
class CapturedState:
    """State captured from a target, tagged with its fidelity.

    ``is_live`` is ``True`` when the resources were still running at the
    time the snapshot was taken.
    """

    state: dict[str, DocumentValue]
    is_live: bool = True
    captured_at: str = field(default_factory=_utcnow_iso)


@runtime_checkable
class Executor(Protocol):
    """Capability implemented once per target type."""

    @property
    def type(self) -> str:
        """Target type tag this executor handles."""
        ...

    def validate(self, spec: ExecutorSpec) -> None:
        """Raise ``ConfigurationError`` when *spec* cannot be handled."""
        ...

    def shutdown(self, spec: ExecutorSpec) -> None:
        """Hibernate the target.  Raise on failure."""
        ...

    def wake_up(self, spec: ExecutorSpec) -> None:
        """Bring the target back.  Raise on failure."""
        ...

    def capture_state(self, spec: ExecutorSpec) -> CapturedState:
        """Return the state needed to restore the target later."""
        ...

    def apply_state(self, spec: ExecutorSpec, state: dict[str, Any]) -> None:
        """Re-apply previously captured *state* to the target."""
        ...
