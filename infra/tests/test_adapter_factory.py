"""Unit tests for adapter_factory — env var selection logic."""
from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from infra.adapter_factory import get_document_store
from infra.fs_adapter import FSDocumentStore


class TestGetDocumentStore:
    """Verify factory returns correct store based on env vars."""

    def test_default_returns_fs(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("REDIS_ENABLED", raising=False)
        assert isinstance(get_document_store(), FSDocumentStore)

    def test_false_returns_fs(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REDIS_ENABLED", "false")
        assert isinstance(get_document_store(), FSDocumentStore)

    def test_state_dir_env_used(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        monkeypatch.delenv("REDIS_ENABLED", raising=False)
        monkeypatch.setenv("HIBERNATOR_STATE_DIR", str(tmp_path))
        from infra import Document

        store = get_document_store()
        store.create(Document("ns", "doc"))
        assert (tmp_path / "ns" / "doc.json").exists()

    def test_true_returns_redis(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REDIS_ENABLED", "true")
        monkeypatch.setenv("REDIS_URL", "redis://test:6379/0")

        with patch(
            "infra.redis_adapter.RedisDocumentStore._connect",
            return_value=MagicMock(),
        ):
            from infra.redis_adapter import RedisDocumentStore

            store = get_document_store()
            assert isinstance(store, RedisDocumentStore)
