"""Executor capability: the per-target-type plugins that hibernate and wake resources."""
from __future__ import annotations

from .base import CapturedState, Executor, ExecutorSpec
from .registry import ExecutorRegistry, UnknownExecutorError

__all__ = [
    "CapturedState",
    "Executor",
    "ExecutorRegistry",
    "ExecutorSpec",
    "UnknownExecutorError",
]
