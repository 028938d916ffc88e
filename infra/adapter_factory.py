"""Factory that selects the document store based on environment variables.

Decision logic:
  REDIS_ENABLED=true        → RedisDocumentStore at REDIS_URL
  REDIS_ENABLED unset/false → FSDocumentStore under HIBERNATOR_STATE_DIR (default ./state)
"""
from __future__ import annotations

import logging
import os
from pathlib import Path

from infra import DocumentStore
from infra.fs_adapter import FSDocumentStore

logger = logging.getLogger(__name__)


def get_document_store(base_dir: Path | None = None) -> DocumentStore:
    """Return the appropriate :class:`DocumentStore` implementation.

    *base_dir* overrides ``HIBERNATOR_STATE_DIR`` for the filesystem backend.
    """
    if os.environ.get("REDIS_ENABLED", "").lower() != "true":
        if base_dir is None and (v := os.environ.get("HIBERNATOR_STATE_DIR")):
            base_dir = Path(v)
        logger.info("Using filesystem document store at %s", base_dir or "./state")
        return FSDocumentStore(base_dir)

    from infra.redis_adapter import RedisDocumentStore

    redis_url = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
    prefix = os.environ.get("REDIS_KEY_PREFIX", "hibernator")
    logger.info("Using Redis document store at %s", redis_url)
    return RedisDocumentStore(redis_url=redis_url, key_prefix=prefix)
