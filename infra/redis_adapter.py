"""Redis-backed document store with reconnect and exponential backoff."""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable

import redis as redis_lib

from infra import Document
from protocol.errors import ConflictError, DocumentNotFoundError, StoreError

logger = logging.getLogger(__name__)

DEFAULT_REDIS_URL = "redis://localhost:6379/0"
_MAX_RECONNECT = 5
_BASE_DELAY = 1.0
_MAX_DELAY = 30.0


class RedisDocumentStore:
    """Documents stored as JSON strings at ``<prefix>:<namespace>:<name>``.

    ``create`` relies on ``SET NX``; ``update`` performs the version check
    inside a ``WATCH``/``MULTI`` transaction so a concurrent writer turns
    into a :class:`ConflictError` instead of a lost update.

    Parameters
    ----------
    redis_url:
        Redis connection URL.
    key_prefix:
        Namespace prefix for all document keys.
    """

    def __init__(
        self,
        redis_url: str = DEFAULT_REDIS_URL,
        key_prefix: str = "hibernator",
    ) -> None:
        self._url = redis_url
        self._prefix = key_prefix
        self._client: Any = self._connect()

    # -- DocumentStore interface ----------------------------------------------

    def get(self, namespace: str, name: str) -> Document | None:
        raw: Any = self._retry(lambda: self._client.get(self._key(namespace, name)))
        if raw is None:
            return None
        return _decode(raw)

    def create(self, doc: Document) -> Document:
        stored = doc.copy()
        stored.resource_version = 1
        payload = _encode(stored)
        created: Any = self._retry(
            lambda: self._client.set(self._key(doc.namespace, doc.name), payload, nx=True)
        )
        if not created:
            raise ConflictError(doc.namespace, doc.name, "already exists")
        return stored

    def update(self, doc: Document) -> Document:
        key = self._key(doc.namespace, doc.name)

        def _transaction() -> Document:
            with self._client.pipeline() as pipe:
                try:
                    pipe.watch(key)
                    raw = pipe.get(key)
                    if raw is None:
                        raise DocumentNotFoundError(doc.namespace, doc.name)
                    current = _decode(raw)
                    if current.resource_version != doc.resource_version:
                        raise ConflictError(
                            doc.namespace,
                            doc.name,
                            f"version {doc.resource_version} is stale "
                            f"(stored {current.resource_version})",
                        )
                    stored = doc.copy()
                    stored.resource_version = current.resource_version + 1
                    pipe.multi()
                    pipe.set(key, _encode(stored))
                    pipe.execute()
                    return stored
                except redis_lib.WatchError as exc:
                    raise ConflictError(doc.namespace, doc.name, "concurrent write") from exc

        result: Document = self._retry(_transaction)
        return result

    def delete(self, namespace: str, name: str) -> bool:
        removed: Any = self._retry(lambda: self._client.delete(self._key(namespace, name)))
        return bool(removed)

    def list(self, namespace: str, labels: dict[str, str] | None = None) -> list[Document]:
        pattern = self._key(namespace, "*")
        keys: list[Any] = self._retry(
            lambda: sorted(self._client.scan_iter(match=pattern))
        )
        docs: list[Document] = []
        for key in keys:
            raw: Any = self._retry(lambda k=key: self._client.get(k))
            if raw is None:
                continue
            doc = _decode(raw)
            if doc.matches(labels):
                docs.append(doc)
        return docs

    # -- Internals ------------------------------------------------------------

    def _key(self, namespace: str, name: str) -> str:
        return f"{self._prefix}:{namespace}:{name}"

    def _connect(self) -> Any:
        client: Any = redis_lib.Redis.from_url(self._url, decode_responses=True)
        return client

    def _retry(self, fn: Callable[[], Any]) -> Any:
        """Execute *fn* with up to ``_MAX_RECONNECT`` attempts on transport errors.

        Store-level errors (conflict, not found) are raised immediately;
        exhausting the attempts raises :class:`StoreError`.
        """
        last_exc: Exception | None = None
        for attempt in range(_MAX_RECONNECT):
            try:
                return fn()
            except StoreError:
                raise
            except redis_lib.RedisError as exc:
                last_exc = exc
                if attempt < _MAX_RECONNECT - 1:
                    delay = min(_BASE_DELAY * (2 ** attempt), _MAX_DELAY)
                    logger.warning(
                        "Redis error (attempt %d/%d), retry in %.1fs: %s",
                        attempt + 1,
                        _MAX_RECONNECT,
                        delay,
                        exc,
                    )
                    time.sleep(delay)
                    self._client = self._connect()
        assert last_exc is not None
        logger.error("Redis unavailable after %d attempts: %s", _MAX_RECONNECT, last_exc)
        raise StoreError(f"redis unavailable: {last_exc}") from last_exc


def _encode(doc: Document) -> str:
    return json.dumps(doc.to_dict(), ensure_ascii=False)


def _decode(raw: Any) -> Document:
    try:
        return Document.from_dict(json.loads(raw))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
        raise StoreError(f"cannot decode document: {exc}") from exc
