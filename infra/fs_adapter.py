"""Filesystem-backed document store."""
from __future__ import annotations

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import portalocker

from infra import Document
from protocol.errors import ConflictError, DocumentNotFoundError, StoreError

logger = logging.getLogger(__name__)

_LOCK_TIMEOUT = 10.0  # seconds


class FSDocumentStore:
    """One JSON file per document: ``<base_dir>/<namespace>/<name>.json``.

    Every read-compare-write runs under an exclusive portalocker lock on a
    sibling ``.lock`` file, and writes go through a temp file + atomic replace.

    Parameters
    ----------
    base_dir:
        Root directory under which per-namespace subdirectories are created.
        Defaults to ``<cwd>/state``.
    """

    def __init__(self, base_dir: Path | None = None) -> None:
        self._base_dir = base_dir or (Path.cwd() / "state")

    # -- DocumentStore interface ----------------------------------------------

    def get(self, namespace: str, name: str) -> Document | None:
        path = self._path(namespace, name)
        if not path.exists():
            return None
        return self._read(path)

    def create(self, doc: Document) -> Document:
        path = self._path(doc.namespace, doc.name)
        with self._locked(path):
            if path.exists():
                raise ConflictError(doc.namespace, doc.name, "already exists")
            stored = doc.copy()
            stored.resource_version = 1
            self._write(path, stored)
        logger.debug("Created %s/%s", doc.namespace, doc.name)
        return stored

    def update(self, doc: Document) -> Document:
        path = self._path(doc.namespace, doc.name)
        with self._locked(path):
            if not path.exists():
                raise DocumentNotFoundError(doc.namespace, doc.name)
            current = self._read(path)
            if current.resource_version != doc.resource_version:
                raise ConflictError(
                    doc.namespace,
                    doc.name,
                    f"version {doc.resource_version} is stale "
                    f"(stored {current.resource_version})",
                )
            stored = doc.copy()
            stored.resource_version = current.resource_version + 1
            self._write(path, stored)
        return stored

    def delete(self, namespace: str, name: str) -> bool:
        path = self._path(namespace, name)
        with self._locked(path):
            if not path.exists():
                return False
            try:
                path.unlink()
            except OSError as exc:
                raise StoreError(f"cannot delete {path}: {exc}") from exc
        return True

    def list(self, namespace: str, labels: dict[str, str] | None = None) -> list[Document]:
        ns_dir = self._base_dir / _safe(namespace)
        if not ns_dir.is_dir():
            return []
        docs: list[Document] = []
        for path in sorted(ns_dir.glob("*.json")):
            try:
                doc = self._read(path)
            except StoreError as exc:
                logger.warning("Skipping unreadable document %s: %s", path, exc)
                continue
            if doc.matches(labels):
                docs.append(doc)
        return docs

    # -- Internals ------------------------------------------------------------

    def _path(self, namespace: str, name: str) -> Path:
        return self._base_dir / _safe(namespace) / f"{_safe(name)}.json"

    @contextmanager
    def _locked(self, path: Path) -> Iterator[None]:
        path.parent.mkdir(parents=True, exist_ok=True)
        lock_path = path.with_suffix(".lock")
        try:
            with portalocker.Lock(
                str(lock_path),
                mode="a",
                timeout=_LOCK_TIMEOUT,
                flags=portalocker.LOCK_EX,
            ):
                yield
        except portalocker.LockException as exc:
            raise StoreError(f"cannot lock {lock_path}: {exc}") from exc

    @staticmethod
    def _read(path: Path) -> Document:
        try:
            raw: dict[str, Any] = json.loads(path.read_text(encoding="utf-8"))
            return Document.from_dict(raw)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, OSError) as exc:
            raise StoreError(f"cannot read document {path}: {exc}") from exc

    @staticmethod
    def _write(path: Path, doc: Document) -> None:
        content = json.dumps(doc.to_dict(), indent=2, ensure_ascii=False)
        fd = -1
        tmp_path = ""
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=str(path.parent),
                prefix=f".{path.stem}_",
                suffix=".tmp",
            )
            os.write(fd, content.encode("utf-8"))
            os.fsync(fd)
            os.close(fd)
            fd = -1
            Path(tmp_path).replace(path)
        except OSError as exc:
            if fd >= 0:
                os.close(fd)
            if tmp_path:
                Path(tmp_path).unlink(missing_ok=True)
            raise StoreError(f"atomic write to {path} failed: {exc}") from exc


def _safe(part: str) -> str:
    return part.replace("/", "_").replace("\\", "_").replace(":", "_")
