"""Configuration for the Controller.

Override via environment variables:
    CTRL_ID                      — controller identifier (default: controller-01)
    CTRL_STATE_DIR               — root of documents and locks (default: ./state)
    CTRL_NAMESPACE               — namespace to reconcile (default: default)
    CTRL_RECONCILE_INTERVAL      — max seconds between ticks (default: 60)
    CTRL_LOCK_TIMEOUT            — max seconds spent waiting for a plan lock (default: 120)
    CTRL_LOCK_MAX_RETRIES        — plan lock attempts per tick (default: 5)
    CTRL_CONFLICT_RETRIES        — restore document conflict retries (default: 5)
    CTRL_MAX_HISTORY             — cycle summaries kept per plan (default: 5)
    CTRL_RESET_ATTEMPTS_ON_RETRY — zero target attempts on manual retry (default: false)

The document backend itself (filesystem or Redis) is chosen by
``infra.adapter_factory`` from ``REDIS_ENABLED``.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

_TRUE = frozenset({"1", "true", "yes", "on"})


def _default_state_dir() -> Path:
    return Path.cwd() / "state"


@dataclass(frozen=True)
class ControllerConfig:
    """Immutable configuration for the controller."""

    # Identity
    controller_id: str = "controller-01"

    # Storage root
    state_dir: Path = field(default_factory=_default_state_dir)

    # Namespace reconciled by default
    namespace: str = "default"

    # Loop
    reconcile_interval_seconds: float = 60.0

    # Lock settings
    lock_timeout_seconds: int = 120
    lock_max_retries: int = 5
    lock_backoff_base: float = 0.5

    # Orchestration policy
    conflict_retries: int = 5
    max_history: int = 5
    reset_attempts_on_retry: bool = False

    # --- Derived paths (properties) ---

    @property
    def documents_dir(self) -> Path:
        """<state_dir>/documents — filesystem document store root."""
        return self.state_dir / "documents"

    @property
    def locks_dir(self) -> Path:
        """<state_dir>/locks — per-plan lock files."""
        return self.state_dir / "locks"

    @classmethod
    def from_env(cls) -> ControllerConfig:
        """Build config from environment variables with sensible defaults."""
        kwargs: dict[str, Any] = {}
        if v := os.environ.get("CTRL_ID"):
            kwargs["controller_id"] = v
        if v := os.environ.get("CTRL_STATE_DIR"):
            kwargs["state_dir"] = Path(v)
        if v := os.environ.get("CTRL_NAMESPACE"):
            kwargs["namespace"] = v
        if v := os.environ.get("CTRL_RECONCILE_INTERVAL"):
            kwargs["reconcile_interval_seconds"] = float(v)
        if v := os.environ.get("CTRL_LOCK_TIMEOUT"):
            kwargs["lock_timeout_seconds"] = int(v)
        if v := os.environ.get("CTRL_LOCK_MAX_RETRIES"):
            kwargs["lock_max_retries"] = int(v)
        if v := os.environ.get("CTRL_CONFLICT_RETRIES"):
            kwargs["conflict_retries"] = int(v)
        if v := os.environ.get("CTRL_MAX_HISTORY"):
            kwargs["max_history"] = int(v)
        if v := os.environ.get("CTRL_RESET_ATTEMPTS_ON_RETRY"):
            kwargs["reset_attempts_on_retry"] = v.strip().lower() in _TRUE
        return cls(**kwargs)
