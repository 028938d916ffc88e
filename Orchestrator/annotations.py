"""Well-known plan annotations."""

from __future__ import annotations

PREFIX = "hibernator/"

# RFC 3339 deadline after which a suspended plan resumes on its own.
SUSPEND_UNTIL = PREFIX + "suspend-until"
SUSPEND_REASON = PREFIX + "suspend-reason"
# "true" retries a failed cycle; "force" retries regardless of phase.
RETRY_NOW = PREFIX + "retry-now"
# Phase the plan was in when it got suspended.
SUSPENDED_AT_PHASE = PREFIX + "suspended-at-phase"
# Set while a suspension is bound to a suspend-until deadline; removing the
# deadline then lifts the suspension.
DEADLINE_SUSPENSION = PREFIX + "deadline-suspension"
