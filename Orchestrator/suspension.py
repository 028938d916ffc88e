"""Suspension handling: timed resume, entering and leaving ``Suspended``."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from . import annotations
from .models import Plan, PlanPhase

logger = logging.getLogger(__name__)


def parse_deadline(value: str) -> datetime | None:
    """Parse an RFC 3339 timestamp; naive values are taken as UTC."""
    text = (value or "").strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def apply_suspend_until(plan: Plan, now: datetime) -> timedelta | None:
    """Enforce or lift a ``suspend-until`` deadline.

    A future deadline suspends the plan; a passed one resumes it.  Removing
    the deadline from a plan it suspended resumes it too.  Returns the time
    left before the deadline, or ``None`` when there is no pending deadline.
    A plan suspended without a deadline stays suspended.
    """
    meta = plan.metadata.annotations
    raw = meta.get(annotations.SUSPEND_UNTIL)
    if raw is None:
        if meta.pop(annotations.DEADLINE_SUSPENSION, None) is not None and (
            plan.spec.suspend and plan.status.phase is PlanPhase.SUSPENDED
        ):
            logger.info("Plan %s: %s removed, resuming", plan.key, annotations.SUSPEND_UNTIL)
            plan.spec.suspend = False
        return None
    deadline = parse_deadline(raw)
    if deadline is None:
        logger.warning("Plan %s: ignoring unparseable %s=%r", plan.key, annotations.SUSPEND_UNTIL, raw)
        return None
    if now < deadline:
        if not plan.spec.suspend:
            logger.info("Plan %s: suspending until %s", plan.key, raw)
            plan.spec.suspend = True
        meta[annotations.DEADLINE_SUSPENSION] = "true"
        return deadline - now

    logger.info("Plan %s: suspension deadline %s passed, resuming", plan.key, raw)
    plan.spec.suspend = False
    for key in (annotations.SUSPEND_UNTIL, annotations.SUSPEND_REASON, annotations.DEADLINE_SUSPENSION):
        meta.pop(key, None)
    return None


def enter_suspension(plan: Plan, now: datetime) -> bool:
    """Move *plan* to ``Suspended``.  Returns False if it already was."""
    status = plan.status
    if status.phase is PlanPhase.SUSPENDED:
        return False
    if status.phase is not None:
        plan.metadata.annotations[annotations.SUSPENDED_AT_PHASE] = status.phase.value
    reason = plan.metadata.annotations.get(annotations.SUSPEND_REASON, "")
    logger.info(
        "Plan %s: suspended at phase %s%s",
        plan.key,
        status.phase.value if status.phase else "-",
        f" ({reason})" if reason else "",
    )
    status.phase = PlanPhase.SUSPENDED
    status.error_message = ""
    status.last_transition_time = now
    return True


def resume_phase(
    suspended_at: str | None, should_hibernate: bool, has_restore_data: bool
) -> PlanPhase:
    """Phase a plan returns to when its suspension is lifted.

    Hibernated or hibernating plans go back to hibernation when the schedule
    still asks for it.  When the schedule says wake and restore data exists,
    the plan is put in ``Hibernated`` so the next transition wakes it.  A plan
    suspended mid wake-up finishes waking.
    """
    if suspended_at == PlanPhase.WAKING_UP.value:
        return PlanPhase.WAKING_UP
    if suspended_at == PlanPhase.HIBERNATED.value:
        if should_hibernate or has_restore_data:
            return PlanPhase.HIBERNATED
        return PlanPhase.ACTIVE
    if suspended_at == PlanPhase.HIBERNATING.value:
        if should_hibernate:
            return PlanPhase.HIBERNATING
        if has_restore_data:
            return PlanPhase.HIBERNATED
        return PlanPhase.ACTIVE
    return PlanPhase.ACTIVE
