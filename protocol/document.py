"""Tagged document values for opaque executor parameters and captured state.

A document value is one of: ``None``, ``bool``, ``int``, ``float``, ``str``,
an ordered ``list`` of document values, or a ``dict`` with ``str`` keys whose
insertion order is preserved.  Anything else is rejected up front so that
merge and size checks never meet a value they cannot serialise.
"""

from __future__ import annotations

import json
import math
from typing import Any, Dict, List, Union

DocumentValue = Union[
    None, bool, int, float, str, List["DocumentValue"], Dict[str, "DocumentValue"]
]

_MAX_DEPTH = 64


class InvalidDocumentError(ValueError):
    """Raised when a value cannot be represented as a document value."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"{path or '(root)'}: {reason}")


def normalize_document(value: Any) -> DocumentValue:
    """Return a deep, normalised copy of *value*.

    Tuples become lists; mapping keys must already be strings.

    Raises
    ------
    InvalidDocumentError
        If *value* (or anything nested in it) is not a document value.
    """
    return _normalize(value, "", 0)


def normalize_mapping(value: Any) -> dict[str, DocumentValue]:
    """Like :func:`normalize_document` but require a top-level mapping."""
    if not isinstance(value, dict):
        raise InvalidDocumentError("", f"expected a mapping, got {type(value).__name__}")
    result = _normalize(value, "", 0)
    assert isinstance(result, dict)
    return result


def encode_document(value: DocumentValue) -> str:
    """Canonical JSON encoding used for persistence and size accounting."""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), allow_nan=False)


def encoded_size(value: DocumentValue) -> int:
    """Size in bytes of the canonical UTF-8 encoding of *value*."""
    return len(encode_document(value).encode("utf-8"))


def _normalize(value: Any, path: str, depth: int) -> DocumentValue:
    if depth > _MAX_DEPTH:
        raise InvalidDocumentError(path, "document nested too deeply")
    # bool is a subclass of int, check it first
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidDocumentError(path, "non-finite number")
        return value
    if isinstance(value, (list, tuple)):
        return [
            _normalize(item, f"{path}[{i}]", depth + 1)
            for i, item in enumerate(value)
        ]
    if isinstance(value, dict):
        out: dict[str, DocumentValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise InvalidDocumentError(path, f"non-string key {key!r}")
            child = f"{path}.{key}" if path else key
            out[key] = _normalize(item, child, depth + 1)
        return out
    raise InvalidDocumentError(path, f"unsupported type {type(value).__name__}")
