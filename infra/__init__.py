"""Infrastructure adapters for namespaced document storage."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Protocol, runtime_checkable


@dataclass
class Document:
    """A namespaced key/value document with an optimistic-concurrency token.

    ``resource_version`` is 0 for a document that has not been persisted yet;
    every successful write returns a copy carrying the new version.
    """

    namespace: str
    name: str
    data: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    resource_version: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "namespace": self.namespace,
            "name": self.name,
            "data": dict(self.data),
            "annotations": dict(self.annotations),
            "labels": dict(self.labels),
            "resourceVersion": self.resource_version,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Document:
        return cls(
            namespace=d["namespace"],
            name=d["name"],
            data=dict(d.get("data") or {}),
            annotations=dict(d.get("annotations") or {}),
            labels=dict(d.get("labels") or {}),
            resource_version=int(d.get("resourceVersion", 0)),
        )

    def copy(self) -> Document:
        return replace(
            self,
            data=dict(self.data),
            annotations=dict(self.annotations),
            labels=dict(self.labels),
        )

    def matches(self, labels: dict[str, str] | None) -> bool:
        if not labels:
            return True
        return all(self.labels.get(k) == v for k, v in labels.items())


@runtime_checkable
class DocumentStore(Protocol):
    """Common interface for document store backends (Redis / filesystem)."""

    def get(self, namespace: str, name: str) -> Document | None:
        """Return the stored document or ``None``; never raises for absence."""
        ...

    def create(self, doc: Document) -> Document:
        """Persist a new document.  Raises ``ConflictError`` if it exists."""
        ...

    def update(self, doc: Document) -> Document:
        """Replace a document whose ``resource_version`` matches the stored one.

        Raises ``ConflictError`` on a stale version and
        ``DocumentNotFoundError`` when the document does not exist.
        """
        ...

    def delete(self, namespace: str, name: str) -> bool:
        """Remove a document.  Returns ``False`` if it was absent."""
        ...

    def list(self, namespace: str, labels: dict[str, str] | None = None) -> list[Document]:
        """Return documents in *namespace* whose labels include *labels*."""
        ...
