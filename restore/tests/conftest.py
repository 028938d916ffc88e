"""Shared fixtures for restore tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import pytest

from infra import Document
from infra.fs_adapter import FSDocumentStore
from restore import RestoreData, RestoreManager


class FlakyStore(FSDocumentStore):
    """Filesystem store where a concurrent writer wins the first *conflicts* updates."""

    def __init__(self, base_dir: Path, conflicts: int) -> None:
        super().__init__(base_dir)
        self.remaining = conflicts
        self.update_calls = 0

    def update(self, doc: Document) -> Document:
        self.update_calls += 1
        if self.remaining > 0:
            self.remaining -= 1
            current = self.get(doc.namespace, doc.name)
            assert current is not None
            super().update(current)
        return super().update(doc)


@pytest.fixture
def store(tmp_path: Path) -> FSDocumentStore:
    return FSDocumentStore(base_dir=tmp_path / "docs")


@pytest.fixture
def manager(store: FSDocumentStore) -> RestoreManager:
    return RestoreManager(store)


@pytest.fixture
def flaky_store(tmp_path: Path) -> Callable[[int], FlakyStore]:
    def _factory(conflicts: int) -> FlakyStore:
        return FlakyStore(tmp_path / "flaky", conflicts)

    return _factory


@pytest.fixture
def make_data() -> Callable[..., RestoreData]:
    def _factory(target: str = "db", *, live: bool, **state: Any) -> RestoreData:
        return RestoreData(
            target=target,
            executor="noop",
            is_live=live,
            captured_at="2024-01-01T20:00:00+00:00",
            state=dict(state),
        )

    return _factory
