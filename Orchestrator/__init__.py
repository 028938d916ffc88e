"""Orchestrator: hibernation plan phase machine and cycle execution."""

__version__ = "1.0.0"

from .cycle_runner import CycleOutcome, CycleRunner
from .exceptions import (
    DependencyCycleError,
    DuplicateTargetError,
    OrchestratorError,
    UnknownTargetError,
)
from .models import (
    Behavior,
    BehaviorMode,
    ExecutionState,
    Operation,
    Plan,
    PlanMetadata,
    PlanPhase,
    PlanSpec,
    PlanStatus,
    ScheduleExceptionResource,
    Strategy,
    StrategyType,
    Target,
)
from .orchestrator import Orchestrator, ReconcileResult
from .planner import ExecutionLayer, ExecutionPlan, ExecutionPlanner

__all__ = [
    "Behavior",
    "BehaviorMode",
    "CycleOutcome",
    "CycleRunner",
    "DependencyCycleError",
    "DuplicateTargetError",
    "ExecutionLayer",
    "ExecutionPlan",
    "ExecutionPlanner",
    "ExecutionState",
    "Operation",
    "Orchestrator",
    "OrchestratorError",
    "Plan",
    "PlanMetadata",
    "PlanPhase",
    "PlanSpec",
    "PlanStatus",
    "ReconcileResult",
    "ScheduleExceptionResource",
    "Strategy",
    "StrategyType",
    "Target",
    "UnknownTargetError",
]
