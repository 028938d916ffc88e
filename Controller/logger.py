"""Structured JSON logging for the Controller."""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any


class _JsonFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "controller_id": getattr(record, "controller_id", "unknown"),
            "plan": getattr(record, "plan", None),
            "cycle_id": getattr(record, "cycle_id", None),
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            entry["error"] = str(record.exc_info[1])
        return json.dumps(entry, ensure_ascii=False)


class _ContextFilter(logging.Filter):
    """Stamp controller, plan and cycle identifiers onto every record."""

    def __init__(self, controller_id: str, plan: str | None, cycle_id: str | None) -> None:
        super().__init__()
        self.controller_id = controller_id
        self.plan = plan
        self.cycle_id = cycle_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.controller_id = self.controller_id
        record.plan = self.plan
        record.cycle_id = self.cycle_id
        return True


def get_logger(
    controller_id: str, plan: str | None = None, cycle_id: str | None = None
) -> logging.Logger:
    """Return a logger configured for structured JSON output.

    Args:
        controller_id: The controller identifier (injected into every record).
        plan: Optional ``namespace/name`` of the plan being reconciled.
        cycle_id: Optional current cycle id.
    """
    name = f"controller.{controller_id}"
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(_JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)

    for f in list(logger.filters):
        if isinstance(f, _ContextFilter):
            logger.removeFilter(f)
    logger.addFilter(_ContextFilter(controller_id, plan, cycle_id))

    return logger
