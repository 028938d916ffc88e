"""Execution planner: partition a plan's targets into dependency layers.

Targets are addressed by their declaration index; dependencies are an edge
list over those indices and layers come from Kahn's algorithm, computed once
per cycle.  Within a layer, targets keep declaration order.

Edge ``from -> to`` means ``from`` must complete before ``to`` starts when
waking up.  For shutdown the edges are inverted so dependents stop before
the things they depend on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from .exceptions import DependencyCycleError, DuplicateTargetError, UnknownTargetError
from .models import Operation, Strategy, StrategyType, Target

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionLayer:
    """Targets that may run concurrently, up to ``max_concurrency`` at a time."""

    targets: tuple[str, ...]
    max_concurrency: int


@dataclass(frozen=True)
class ExecutionPlan:
    operation: Operation
    layers: tuple[ExecutionLayer, ...]
    # target -> targets that must be Completed before it may start
    predecessors: dict[str, frozenset[str]] = field(default_factory=dict)

    @property
    def targets(self) -> list[str]:
        return [name for layer in self.layers for name in layer.targets]


class ExecutionPlanner:
    """Build :class:`ExecutionPlan` objects from a strategy and targets."""

    def validate(self, strategy: Strategy, targets: Sequence[Target]) -> None:
        """Raise ConfigurationError for duplicate names, unknown or cyclic edges."""
        names = _names(targets)
        edges = _edges(strategy, names)
        _layers(names, edges)

    def plan(
        self,
        strategy: Strategy,
        targets: Sequence[Target],
        operation: Operation,
    ) -> ExecutionPlan:
        """Return the layered execution plan for *operation*.

        Dependencies are validated for every strategy type, but only the
        ``Dependency`` strategy orders targets by them.
        """
        names = _names(targets)
        edges = _edges(strategy, names)
        dag_layers = _layers(names, edges)

        if strategy.type is StrategyType.SEQUENTIAL:
            order = list(range(len(names)))
            if operation is Operation.WAKEUP:
                order.reverse()
            layers = tuple(ExecutionLayer((names[i],), 1) for i in order)
            return ExecutionPlan(operation, layers, {n: frozenset() for n in names})

        if strategy.type is StrategyType.PARALLEL:
            if strategy.dependencies:
                logger.warning("Dependencies are ignored by the Parallel strategy")
            layer = ExecutionLayer(
                tuple(names), _concurrency(strategy, len(names))
            )
            return ExecutionPlan(
                operation, (layer,) if names else (), {n: frozenset() for n in names}
            )

        if operation is Operation.SHUTDOWN:
            edges = [(b, a) for a, b in edges]
            dag_layers = _layers(names, edges)

        predecessors: dict[str, set[str]] = {n: set() for n in names}
        for a, b in edges:
            predecessors[names[b]].add(names[a])
        layers = tuple(
            ExecutionLayer(
                tuple(names[i] for i in level),
                _concurrency(strategy, len(level)),
            )
            for level in dag_layers
        )
        return ExecutionPlan(
            operation,
            layers,
            {n: frozenset(p) for n, p in predecessors.items()},
        )


def _names(targets: Sequence[Target]) -> list[str]:
    names: list[str] = []
    seen: set[str] = set()
    for target in targets:
        if target.name in seen:
            raise DuplicateTargetError(target.name)
        seen.add(target.name)
        names.append(target.name)
    return names


def _edges(strategy: Strategy, names: list[str]) -> list[tuple[int, int]]:
    index = {name: i for i, name in enumerate(names)}
    edges: list[tuple[int, int]] = []
    for dep in strategy.dependencies:
        for endpoint in (dep.from_, dep.to):
            if endpoint not in index:
                raise UnknownTargetError(endpoint)
        edges.append((index[dep.from_], index[dep.to]))
    return edges


def _layers(names: list[str], edges: list[tuple[int, int]]) -> list[list[int]]:
    """Kahn's algorithm by levels.  Raises DependencyCycleError."""
    indegree = [0] * len(names)
    successors: list[list[int]] = [[] for _ in names]
    for a, b in edges:
        successors[a].append(b)
        indegree[b] += 1

    levels: list[list[int]] = []
    ready = [i for i, deg in enumerate(indegree) if deg == 0]
    placed = 0
    while ready:
        levels.append(ready)
        placed += len(ready)
        following: list[int] = []
        for i in ready:
            for j in successors[i]:
                indegree[j] -= 1
                if indegree[j] == 0:
                    following.append(j)
        ready = sorted(following)

    if placed != len(names):
        raise DependencyCycleError([names[i] for i, deg in enumerate(indegree) if deg > 0])
    return levels


def _concurrency(strategy: Strategy, layer_size: int) -> int:
    if strategy.max_concurrency is None:
        return max(layer_size, 1)
    return strategy.max_concurrency
