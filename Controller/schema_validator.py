"""JSON Schema validation for documents applied to the controller.

Defines strict schemas for:
- HibernatePlan documents (metadata + spec; status is controller-owned)
- ScheduleException documents

Uses jsonschema Draft 7 for validation. Raises SchemaValidationError when
data does not conform to the schema.  Semantic checks that a schema cannot
express (time ranges, time zones, dependency cycles) happen later, in the
scheduler and the planner.
"""
from __future__ import annotations

from typing import Any

from jsonschema import Draft7Validator, ValidationError

from protocol.errors import ConfigurationError

_NAME: dict[str, Any] = {
    "type": "string",
    "minLength": 1,
    "maxLength": 63,
    "pattern": "^[a-z0-9]([-a-z0-9]*[a-z0-9])?$",
}

_TIME: dict[str, Any] = {"type": "string", "pattern": "^[0-9]{1,2}:[0-9]{2}$"}

_DAY: dict[str, Any] = {
    "type": "string",
    "enum": ["MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN"],
}

_WINDOW: dict[str, Any] = {
    "type": "object",
    "required": ["start", "end"],
    "additionalProperties": False,
    "properties": {
        "start": _TIME,
        "end": _TIME,
        "daysOfWeek": {"type": "array", "items": _DAY, "uniqueItems": True},
    },
}

_METADATA: dict[str, Any] = {
    "type": "object",
    "required": ["name"],
    "properties": {
        "name": _NAME,
        "namespace": _NAME,
        "annotations": {"type": "object", "additionalProperties": {"type": "string"}},
        "labels": {"type": "object", "additionalProperties": {"type": "string"}},
        "resourceVersion": {"type": "integer", "minimum": 0},
    },
}

# ---------------------------------------------------------------------------
# Plan schema
# ---------------------------------------------------------------------------

PLAN_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "HibernatePlan",
    "type": "object",
    "required": ["metadata", "spec"],
    "properties": {
        "metadata": _METADATA,
        "spec": {
            "type": "object",
            "required": ["schedule", "targets"],
            "additionalProperties": False,
            "properties": {
                "schedule": {
                    "type": "object",
                    "required": ["offHours"],
                    "additionalProperties": False,
                    "properties": {
                        "timezone": {"type": "string", "minLength": 1},
                        "offHours": {"type": "array", "items": _WINDOW},
                    },
                },
                "behavior": {
                    "type": "object",
                    "additionalProperties": False,
                    "properties": {
                        "mode": {"type": "string", "enum": ["Strict", "BestEffort"]},
                        "retries": {"type": "integer", "minimum": 0, "maximum": 10},
                        "failFast": {"type": "boolean"},
                    },
                },
                "execution": {
                    "type": "object",
                    "additionalProperties": False,
                    "properties": {
                        "strategy": {
                            "type": "object",
                            "additionalProperties": False,
                            "properties": {
                                "type": {
                                    "type": "string",
                                    "enum": ["Sequential", "Parallel", "Dependency"],
                                },
                                "maxConcurrency": {"type": ["integer", "null"], "minimum": 1},
                                "dependencies": {
                                    "type": "array",
                                    "items": {
                                        "type": "object",
                                        "required": ["from", "to"],
                                        "additionalProperties": False,
                                        "properties": {
                                            "from": {"type": "string", "minLength": 1},
                                            "to": {"type": "string", "minLength": 1},
                                        },
                                    },
                                },
                            },
                        },
                    },
                },
                "targets": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["name", "type"],
                        "additionalProperties": False,
                        "properties": {
                            "name": {"type": "string", "minLength": 1},
                            "type": {"type": "string", "minLength": 1},
                            "connectorRef": {
                                "type": "object",
                                "additionalProperties": {"type": "string"},
                            },
                            "parameters": {"type": "object"},
                        },
                    },
                },
                "suspend": {"type": "boolean"},
            },
        },
        "status": {"type": "object"},
    },
}

# ---------------------------------------------------------------------------
# Schedule exception schema
# ---------------------------------------------------------------------------

EXCEPTION_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "ScheduleException",
    "type": "object",
    "required": ["metadata", "spec"],
    "properties": {
        "metadata": _METADATA,
        "spec": {
            "type": "object",
            "required": ["planRef", "type", "validFrom", "validUntil"],
            "additionalProperties": False,
            "properties": {
                "planRef": _NAME,
                "type": {"type": "string", "enum": ["extend", "suspend", "replace"]},
                "validFrom": {"type": "string", "minLength": 1},
                "validUntil": {"type": "string", "minLength": 1},
                "leadTime": {"type": "string", "pattern": "^([0-9]+[hms])*$"},
                "windows": {"type": "array", "items": _WINDOW},
            },
        },
    },
}

# Pre-compiled validators
_plan_validator = Draft7Validator(PLAN_SCHEMA)
_exception_validator = Draft7Validator(EXCEPTION_SCHEMA)


# ---------------------------------------------------------------------------
# Custom exception
# ---------------------------------------------------------------------------


class SchemaValidationError(ConfigurationError):
    """Raised when data fails schema validation."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(f"Validation failed: {'; '.join(errors)}")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_plan(data: dict[str, Any]) -> None:
    """Validate a plan document against the plan schema.

    Raises SchemaValidationError if the data is invalid.
    """
    _validate(data, _plan_validator)


def validate_exception(data: dict[str, Any]) -> None:
    """Validate a schedule exception document.

    Raises SchemaValidationError if the data is invalid.
    """
    _validate(data, _exception_validator)


# ---------------------------------------------------------------------------
# Internal
# ---------------------------------------------------------------------------


def _validate(data: dict[str, Any], validator: Draft7Validator) -> None:
    """Run validation and collect all errors."""
    errors: list[str] = []
    err: ValidationError
    for err in sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.path]):
        path = ".".join(str(p) for p in err.absolute_path) or "(root)"
        errors.append(f"{path}: {err.message}")
    if errors:
        raise SchemaValidationError(errors)
