"""Storage backends for Courier.

Example:
    ```python
    from courier.storage import create_store

    store = create_store(settings)
    await store.initialize()
    ```
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import ForwardingStore, StripedLocks
from .memory import MemoryStore
from .qdrant import COLLECTION_NAMES, QdrantStore

if TYPE_CHECKING:
    from courier.config import Settings


def create_store(settings: Settings) -> ForwardingStore:
    """Build the store selected by ``settings.storage_backend``.

    Raises:
        ValueError: If the configured backend is unknown.
    """
    backend = settings.storage_backend.lower()
    if backend == "memory":
        return MemoryStore()
    if backend == "qdrant":
        return QdrantStore(
            url=settings.qdrant_url,
            api_key=settings.qdrant_api_key,
            prefix=settings.collection_prefix,
        )
    raise ValueError(f"Unknown storage backend: {backend}. Use 'memory' or 'qdrant'.")


__all__ = [
    "COLLECTION_NAMES",
    "ForwardingStore",
    "MemoryStore",
    "QdrantStore",
    "StripedLocks",
    "create_store",
]
