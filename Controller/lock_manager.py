"""File-based lock manager: one reconciliation actor per plan.

Uses portalocker for cross-platform advisory file locking.
Lock scope: one lock file per plan under locks/.

- Lock file path: locks/<namespace>_<name>.lock
- Lock content is JSON: {owner, plan, ts}
- The OS releases the lock if the holder dies, so there are no stale locks
  to override.
- Exponential backoff on contention, bounded by the lock timeout.
"""
from __future__ import annotations

import json
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Callable, Iterator

import portalocker

from protocol.errors import HibernatorError


class LockError(HibernatorError):
    """Raised when a lock cannot be acquired."""


class LockManager:
    """Manage per-plan reconciliation locks."""

    def __init__(
        self,
        locks_dir: Path,
        owner: str,
        timeout_seconds: float = 120,
        max_retries: int = 5,
        backoff_base: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._locks_dir = locks_dir
        self._owner = owner
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._sleep = sleep
        self._held: dict[str, portalocker.Lock] = {}

    def acquire(self, plan_key: str) -> None:
        """Acquire the lock for *plan_key* (``namespace/name``).

        Raises LockError after exhausting retries or the timeout.
        """
        self._locks_dir.mkdir(parents=True, exist_ok=True)
        lock_path = self._lock_path(plan_key)
        waited = 0.0

        for attempt in range(self._max_retries + 1):
            lock = self._try_acquire(lock_path, plan_key)
            if lock is not None:
                self._held[plan_key] = lock
                return
            if attempt < self._max_retries:
                delay = min(self._backoff_base * (2 ** attempt), max(self._timeout - waited, 0))
                if delay <= 0:
                    break
                self._sleep(delay)
                waited += delay

        raise LockError(
            f"Cannot acquire lock for {plan_key} "
            f"after {self._max_retries} retries"
        )

    def release(self, plan_key: str) -> None:
        """Release a previously acquired lock.

        The file is left in place; unlinking it would race with a waiter that
        already opened it.
        """
        lock = self._held.pop(plan_key, None)
        if lock is not None:
            lock.release()

    def release_all(self) -> None:
        """Release all locks held by this manager."""
        for key in list(self._held):
            self.release(key)

    def is_held(self, plan_key: str) -> bool:
        """Check if we currently hold a lock for *plan_key*."""
        return plan_key in self._held

    def holder(self, plan_key: str) -> dict[str, Any] | None:
        """Return the last recorded holder of *plan_key*'s lock, if any."""
        lock_path = self._lock_path(plan_key)
        try:
            return json.loads(lock_path.read_text(encoding="utf-8"))  # type: ignore[no-any-return]
        except (OSError, json.JSONDecodeError):
            return None

    @contextmanager
    def hold(self, plan_key: str) -> Iterator[None]:
        """Context manager around :meth:`acquire` / :meth:`release`."""
        self.acquire(plan_key)
        try:
            yield
        finally:
            self.release(plan_key)

    def _lock_path(self, plan_key: str) -> Path:
        safe_id = plan_key.replace("/", "_").replace("\\", "_")
        return self._locks_dir / f"{safe_id}.lock"

    def _try_acquire(self, lock_path: Path, plan_key: str) -> portalocker.Lock | None:
        """Try once to take the exclusive lock without blocking."""
        lock = portalocker.Lock(
            str(lock_path),
            mode="a",
            fail_when_locked=True,
            flags=portalocker.LOCK_EX | portalocker.LOCK_NB,
        )
        try:
            fh = lock.acquire()
        except portalocker.LockException:
            return None
        self._stamp(fh, plan_key)
        return lock

    def _stamp(self, fh: IO[Any], plan_key: str) -> None:
        payload = {
            "owner": self._owner,
            "plan": plan_key,
            "ts": datetime.now(timezone.utc).isoformat(),
        }
        fh.seek(0)
        fh.truncate()
        fh.write(json.dumps(payload))
        fh.flush()
