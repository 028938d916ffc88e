"""Pydantic models for hibernation plans and schedule exceptions."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from protocol.document import normalize_mapping
from scheduler import ExceptionType, OffHourWindow, ScheduleException, parse_duration


class _Model(BaseModel):
    """Base model: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class PlanPhase(str, Enum):
    """Phase of the plan state machine."""

    ACTIVE = "Active"
    HIBERNATING = "Hibernating"
    HIBERNATED = "Hibernated"
    WAKING_UP = "WakingUp"
    SUSPENDED = "Suspended"
    ERROR = "Error"


class ExecutionState(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"


class StrategyType(str, Enum):
    SEQUENTIAL = "Sequential"
    PARALLEL = "Parallel"
    DEPENDENCY = "Dependency"


class BehaviorMode(str, Enum):
    STRICT = "Strict"
    BEST_EFFORT = "BestEffort"


class Operation(str, Enum):
    SHUTDOWN = "shutdown"
    WAKEUP = "wakeup"


IN_PROGRESS_PHASES: dict[Operation, PlanPhase] = {
    Operation.SHUTDOWN: PlanPhase.HIBERNATING,
    Operation.WAKEUP: PlanPhase.WAKING_UP,
}

COMPLETED_PHASES: dict[Operation, PlanPhase] = {
    Operation.SHUTDOWN: PlanPhase.HIBERNATED,
    Operation.WAKEUP: PlanPhase.ACTIVE,
}


# ---------------------------------------------------------------------------
# Spec
# ---------------------------------------------------------------------------


class OffHourWindowSpec(_Model):
    start: str
    end: str
    days_of_week: list[str] = Field(default_factory=list)

    def to_window(self) -> OffHourWindow:
        return OffHourWindow.parse(self.start, self.end, self.days_of_week)


class ScheduleSpec(_Model):
    timezone: str = "UTC"
    off_hours: list[OffHourWindowSpec] = Field(default_factory=list)

    def windows(self) -> list[OffHourWindow]:
        """Parsed windows.  Raises ConfigurationError on invalid entries."""
        return [w.to_window() for w in self.off_hours]


class Behavior(_Model):
    mode: BehaviorMode = BehaviorMode.STRICT
    retries: int = Field(default=3, ge=0, le=10)
    fail_fast: bool = False


class Dependency(_Model):
    from_: str = Field(alias="from")
    to: str


class Strategy(_Model):
    type: StrategyType = StrategyType.SEQUENTIAL
    max_concurrency: int | None = Field(default=None, ge=1)
    dependencies: list[Dependency] = Field(default_factory=list)


class ExecutionSpec(_Model):
    strategy: Strategy = Field(default_factory=Strategy)


class Target(_Model):
    name: str = Field(min_length=1)
    type: str = Field(min_length=1)
    connector_ref: dict[str, str] = Field(default_factory=dict)
    parameters: dict[str, Any] = Field(default_factory=dict)

    @field_validator("parameters")
    @classmethod
    def _document_parameters(cls, value: dict[str, Any]) -> dict[str, Any]:
        return normalize_mapping(value)


class PlanSpec(_Model):
    schedule: ScheduleSpec = Field(default_factory=ScheduleSpec)
    behavior: Behavior = Field(default_factory=Behavior)
    execution: ExecutionSpec = Field(default_factory=ExecutionSpec)
    targets: list[Target] = Field(default_factory=list)
    suspend: bool = False


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


class TargetExecution(_Model):
    """Per-target progress within the current cycle."""

    target: str
    executor: str = ""
    state: ExecutionState = ExecutionState.PENDING
    attempts: int = 0
    message: str = ""
    started_at: datetime | None = None
    finished_at: datetime | None = None


class TargetResult(_Model):
    target: str
    state: ExecutionState
    attempts: int = 0
    message: str = ""


class CycleSummary(_Model):
    cycle_id: str
    operation: Operation
    success: bool
    started_at: datetime | None = None
    finished_at: datetime | None = None
    targets: list[TargetResult] = Field(default_factory=list)


class ExceptionReference(_Model):
    name: str
    type: ExceptionType
    valid_from: datetime
    valid_until: datetime
    state: str


class PlanStatus(_Model):
    phase: PlanPhase | None = None
    current_cycle_id: str = ""
    current_operation: Operation | None = None
    cycle_started_at: datetime | None = None
    retry_count: int = 0
    last_retry_time: datetime | None = None
    error_message: str = ""
    last_transition_time: datetime | None = None
    executions: list[TargetExecution] = Field(default_factory=list)
    execution_history: list[CycleSummary] = Field(default_factory=list)
    active_exceptions: list[ExceptionReference] = Field(default_factory=list)


class PlanMetadata(_Model):
    name: str = Field(min_length=1)
    namespace: str = "default"
    annotations: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)
    resource_version: int = 0


class Plan(_Model):
    """Aggregate root: spec is user-owned, status is orchestrator-owned."""

    metadata: PlanMetadata
    spec: PlanSpec = Field(default_factory=PlanSpec)
    status: PlanStatus = Field(default_factory=PlanStatus)

    @property
    def key(self) -> str:
        return f"{self.metadata.namespace}/{self.metadata.name}"

    def execution_for(self, target: str) -> TargetExecution | None:
        for execution in self.status.executions:
            if execution.target == target:
                return execution
        return None


# ---------------------------------------------------------------------------
# Schedule exceptions
# ---------------------------------------------------------------------------


class ScheduleExceptionSpec(_Model):
    plan_ref: str
    type: ExceptionType
    valid_from: datetime
    valid_until: datetime
    lead_time: str = ""
    windows: list[OffHourWindowSpec] = Field(default_factory=list)

    @field_validator("valid_from", "valid_until")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class ScheduleExceptionResource(_Model):
    metadata: PlanMetadata
    spec: ScheduleExceptionSpec

    def to_exception(self) -> ScheduleException:
        """Build the evaluator-level exception.  Raises ConfigurationError."""
        return ScheduleException(
            type=self.spec.type,
            valid_from=self.spec.valid_from,
            valid_until=self.spec.valid_until,
            windows=tuple(w.to_window() for w in self.spec.windows),
            lead_time=parse_duration(self.spec.lead_time),
            name=self.metadata.name,
        )
