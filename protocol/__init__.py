"""Shared error taxonomy and document value helpers."""

from .document import (
    DocumentValue,
    InvalidDocumentError,
    encode_document,
    encoded_size,
    normalize_document,
    normalize_mapping,
)
from .errors import (
    ConfigurationError,
    ConflictError,
    DocumentNotFoundError,
    ExecutorError,
    HibernatorError,
    SizeExceededError,
    StoreError,
)

__all__ = [
    "ConfigurationError",
    "ConflictError",
    "DocumentNotFoundError",
    "DocumentValue",
    "ExecutorError",
    "HibernatorError",
    "InvalidDocumentError",
    "SizeExceededError",
    "StoreError",
    "encode_document",
    "encoded_size",
    "normalize_document",
    "normalize_mapping",
]
