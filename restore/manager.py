"""Restore point store: per-target restore data plus restoration bookkeeping.

All restore data of a plan lives in a single document named
``hibernator-restore-<plan>``; each target occupies the data key
``<target>.json``.  Bookkeeping is kept in annotations:

* ``hibernator/restored-<target>`` — ``"true"`` once a wake-up consumed the
  target's data;
* ``hibernator/restore-previous-state`` — snapshot of the data taken when a
  new restore point is prepared.

Every mutation is a read-modify-write guarded by the document's resource
version and retried from scratch on :class:`ConflictError`.
"""

from __future__ import annotations

import json
import logging
from typing import Callable, Iterable

from infra import Document, DocumentStore
from protocol.errors import ConflictError, SizeExceededError, StoreError

from .restore_data import RestoreData, merge_restore_data

logger = logging.getLogger(__name__)

MAX_RESTORE_DATA_SIZE = 900 * 1024  # bytes, below the ~1 MiB document ceiling

ANNOTATION_PREFIX = "hibernator/"
RESTORED_PREFIX = ANNOTATION_PREFIX + "restored-"
PREVIOUS_STATE_ANNOTATION = ANNOTATION_PREFIX + "restore-previous-state"

_DOCUMENT_PREFIX = "hibernator-restore-"
_DATA_SUFFIX = ".json"


def restore_document_name(plan: str) -> str:
    return f"{_DOCUMENT_PREFIX}{plan}"


def restored_annotation(target: str) -> str:
    return f"{RESTORED_PREFIX}{target}"


def _data_key(target: str) -> str:
    return f"{target}{_DATA_SUFFIX}"


class RestoreManager:
    """Quality-aware persistence of restore points.

    Parameters
    ----------
    store:
        Backing :class:`DocumentStore`.
    max_conflict_retries:
        Attempts for each read-modify-write before giving up with
        :class:`ConflictError` (a :class:`StoreError`, retried next tick).
    max_size:
        Cap on the serialized size of one target's restore data.
    """

    def __init__(
        self,
        store: DocumentStore,
        max_conflict_retries: int = 5,
        max_size: int = MAX_RESTORE_DATA_SIZE,
    ) -> None:
        self._store = store
        self._max_retries = max(1, max_conflict_retries)
        self._max_size = max_size

    # ------------------------------------------------------------------
    # Restore data
    # ------------------------------------------------------------------

    def prepare_restore_point(self, namespace: str, plan: str) -> None:
        """Create the restore document, or demote existing data to non-live.

        The previous data is snapshotted into an annotation so it can be
        inspected after a plan restart.
        """

        def _mutate(doc: Document) -> None:
            if not doc.data:
                return
            doc.annotations[PREVIOUS_STATE_ANNOTATION] = json.dumps(
                doc.data, sort_keys=True
            )
            for key, raw in list(doc.data.items()):
                entry = _parse_entry(key, raw)
                if entry is not None and entry.is_live:
                    doc.data[key] = entry.consumed().to_json()

        self._modify(namespace, plan, _mutate, create_if_missing=True)
        logger.info("Prepared restore point for %s/%s", namespace, plan)

    def load(self, namespace: str, plan: str, target: str) -> RestoreData | None:
        """Return the stored restore data for *target*, or ``None`` if absent."""
        doc = self._store.get(namespace, restore_document_name(plan))
        if doc is None:
            return None
        raw = doc.data.get(_data_key(target))
        if raw is None:
            return None
        return RestoreData.from_json(raw)

    def save(self, namespace: str, plan: str, target: str, data: RestoreData) -> RestoreData:
        """Overwrite *target*'s restore data unconditionally."""

        def _compute(existing: RestoreData | None) -> RestoreData:
            return data

        return self._write_entry(namespace, plan, target, _compute)

    def save_or_preserve(
        self, namespace: str, plan: str, target: str, data: RestoreData
    ) -> RestoreData:
        """Merge *data* onto the stored restore data, protecting live keys."""

        def _compute(existing: RestoreData | None) -> RestoreData:
            merged = merge_restore_data(existing, data)
            if existing is not None and existing.is_live and not data.is_live:
                logger.info(
                    "Preserving live restore data for %s/%s target %s",
                    namespace,
                    plan,
                    target,
                )
            return merged

        return self._write_entry(namespace, plan, target, _compute)

    # ------------------------------------------------------------------
    # Restoration bookkeeping
    # ------------------------------------------------------------------

    def mark_target_restored(self, namespace: str, plan: str, target: str) -> None:
        """Flag *target* as restored and demote its data to non-live.

        No-op when the plan has no restore document.
        """

        def _mutate(doc: Document) -> None:
            doc.annotations[restored_annotation(target)] = "true"
            key = _data_key(target)
            entry = _parse_entry(key, doc.data.get(key))
            if entry is not None and entry.is_live:
                doc.data[key] = entry.consumed().to_json()

        self._modify(namespace, plan, _mutate, create_if_missing=False)

    def mark_all_targets_restored(
        self, namespace: str, plan: str, targets: Iterable[str]
    ) -> bool:
        """True when every target in *targets* carries the restored marker."""
        doc = self._store.get(namespace, restore_document_name(plan))
        if doc is None:
            return True
        return all(
            doc.annotations.get(restored_annotation(t)) == "true" for t in targets
        )

    def unlock_restore_data(self, namespace: str, plan: str) -> None:
        """Remove every restored marker so the next cycle starts clean."""

        def _mutate(doc: Document) -> None:
            for key in [k for k in doc.annotations if k.startswith(RESTORED_PREFIX)]:
                del doc.annotations[key]

        self._modify(namespace, plan, _mutate, create_if_missing=False)
        logger.info("Unlocked restore data for %s/%s", namespace, plan)

    def has_restore_data(self, namespace: str, plan: str) -> bool:
        """True if any target holds live data, otherwise if any data exists.

        Entries that cannot be parsed are ignored.
        """
        doc = self._store.get(namespace, restore_document_name(plan))
        if doc is None:
            return False
        entries = [
            entry
            for key, raw in doc.data.items()
            if (entry := _parse_entry(key, raw)) is not None
        ]
        if any(entry.is_live for entry in entries):
            return True
        if entries:
            logger.info(
                "Restore data for %s/%s has no live entries, using non-live data",
                namespace,
                plan,
            )
            return True
        return False

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _write_entry(
        self,
        namespace: str,
        plan: str,
        target: str,
        compute: Callable[[RestoreData | None], RestoreData],
    ) -> RestoreData:
        key = _data_key(target)
        result: list[RestoreData] = []

        def _mutate(doc: Document) -> None:
            existing = _parse_entry(key, doc.data.get(key))
            version = (existing.version + 1) if existing is not None else 1
            entry = compute(existing).with_version(version)
            payload = entry.to_json()
            size = len(payload.encode("utf-8"))
            if size > self._max_size:
                raise SizeExceededError(size=size, limit=self._max_size, target=target)
            doc.data[key] = payload
            result[:] = [entry]

        self._modify(namespace, plan, _mutate, create_if_missing=True)
        return result[0]

    def _modify(
        self,
        namespace: str,
        plan: str,
        mutate: Callable[[Document], None],
        create_if_missing: bool,
    ) -> None:
        name = restore_document_name(plan)
        for attempt in range(1, self._max_retries + 1):
            doc = self._store.get(namespace, name)
            try:
                if doc is None:
                    if not create_if_missing:
                        return
                    doc = Document(
                        namespace=namespace,
                        name=name,
                        labels={"kind": "RestorePoint", "plan": plan},
                    )
                    mutate(doc)
                    self._store.create(doc)
                else:
                    mutate(doc)
                    self._store.update(doc)
                return
            except ConflictError as exc:
                logger.debug(
                    "Conflict on %s/%s (attempt %d/%d): %s",
                    namespace,
                    name,
                    attempt,
                    self._max_retries,
                    exc,
                )
        raise ConflictError(
            namespace, name, f"gave up after {self._max_retries} attempts"
        )


def _parse_entry(key: str, raw: str | None) -> RestoreData | None:
    if raw is None or not key.endswith(_DATA_SUFFIX):
        return None
    try:
        return RestoreData.from_json(raw)
    except StoreError as exc:
        logger.warning("Ignoring unreadable restore entry %s: %s", key, exc)
        return None
