"""Restore point store."""

from .manager import (
    MAX_RESTORE_DATA_SIZE,
    RestoreManager,
    restore_document_name,
    restored_annotation,
)
from .restore_data import RestoreData, merge_restore_data

__all__ = [
    "MAX_RESTORE_DATA_SIZE",
    "RestoreData",
    "RestoreManager",
    "merge_restore_data",
    "restore_document_name",
    "restored_annotation",
]
