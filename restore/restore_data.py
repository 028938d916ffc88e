"""RestoreData — the persisted per-target restore point and its merge rule."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from jsonschema import Draft7Validator

from protocol.document import DocumentValue, encode_document, normalize_mapping
from protocol.errors import StoreError

RESTORE_DATA_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "RestoreData",
    "type": "object",
    "required": ["target", "executor", "version", "createdAt", "isLive", "state"],
    "properties": {
        "target": {"type": "string", "minLength": 1},
        "executor": {"type": "string"},
        "version": {"type": "integer", "minimum": 0},
        "createdAt": {"type": "string", "minLength": 1},
        "isLive": {"type": "boolean"},
        "capturedAt": {"type": ["string", "null"]},
        "state": {"type": "object"},
    },
}

_validator = Draft7Validator(RESTORE_DATA_SCHEMA)


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class RestoreData:
    """Captured state of one target, keyed by resource id.

    Parameters
    ----------
    target:
        Name of the target the state belongs to.
    executor:
        Executor type tag that captured the state.
    version:
        Monotonic write counter, bumped on every save.
    created_at:
        ISO-8601 timestamp of the first capture.
    is_live:
        ``True`` when the snapshot was taken while the resource was still
        running (high fidelity).
    captured_at:
        ISO-8601 timestamp of the most recent capture, if known.
    state:
        Mapping of resource id to an opaque document value.
    """

    target: str
    executor: str
    version: int = 0
    created_at: str = field(default_factory=_utcnow_iso)
    is_live: bool = False
    captured_at: str | None = None
    state: dict[str, DocumentValue] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "executor": self.executor,
            "version": self.version,
            "createdAt": self.created_at,
            "isLive": self.is_live,
            "capturedAt": self.captured_at,
            "state": self.state,
        }

    def to_json(self) -> str:
        return encode_document(self.to_dict())  # type: ignore[arg-type]

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> RestoreData:
        """Validate and build a RestoreData.  Raises StoreError on malformed input."""
        errors = [
            f"{'.'.join(str(p) for p in err.absolute_path) or '(root)'}: {err.message}"
            for err in _validator.iter_errors(d)
        ]
        if errors:
            raise StoreError(f"invalid restore data: {'; '.join(errors)}")
        return cls(
            target=d["target"],
            executor=d["executor"],
            version=d["version"],
            created_at=d["createdAt"],
            is_live=d["isLive"],
            captured_at=d.get("capturedAt"),
            state=normalize_mapping(d["state"]),
        )

    @classmethod
    def from_json(cls, raw: str) -> RestoreData:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StoreError(f"cannot decode restore data: {exc}") from exc
        if not isinstance(parsed, dict):
            raise StoreError("restore data must be a JSON object")
        return cls.from_dict(parsed)

    def with_version(self, version: int) -> RestoreData:
        return replace(self, version=version)

    def consumed(self) -> RestoreData:
        """Copy marked low-fidelity after a successful wake-up."""
        return replace(self, is_live=False)


def merge_restore_data(existing: RestoreData | None, incoming: RestoreData) -> RestoreData:
    """Quality-aware per-key merge of *incoming* onto *existing*.

    New keys are always admitted, keys absent from *incoming* survive, and a
    key stored from a live capture is never replaced by a non-live one.  The
    merged ``is_live`` is the OR of both flags.  Metadata comes from
    *incoming* except ``created_at``, which keeps the first capture time.
    """
    if existing is None:
        return incoming

    protect = existing.is_live and not incoming.is_live
    state: dict[str, DocumentValue] = dict(existing.state)
    for key, value in incoming.state.items():
        if key in existing.state and protect:
            continue
        state[key] = value

    return replace(
        incoming,
        created_at=existing.created_at,
        is_live=existing.is_live or incoming.is_live,
        state=state,
    )
