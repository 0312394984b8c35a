"""
Abstract Document Store — Interface for all storage backends.

Implementations:
  - InMemoryDocumentStore (dict-based, single-process, no persistence)
  - FileDocumentStore     (JSON files on disk, single-process, durable)

Documents are plain dicts keyed by ``id`` inside named collections
(see ``models.schemas.Collections``). Every method is a coroutine so that
handlers interleave with request handlers the same way they would against
a networked database.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional


class BaseDocumentStore(ABC):
    """Interface that all document store backends must implement."""

    @abstractmethod
    async def insert(self, collection: str, document: dict[str, Any]) -> dict[str, Any]:
        """Insert a document. The document must carry an ``id``."""
        ...

    @abstractmethod
    async def find_by_id(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        ...

    @abstractmethod
    async def find(self, collection: str, condition: dict[str, Any] = None) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def find_by_id_and_update(
        self,
        collection: str,
        doc_id: str,
        update: dict[str, Any],
        condition: dict[str, Any] = None,
    ) -> Optional[dict[str, Any]]:
        """
        Atomically apply ``update`` to the document if it exists and matches
        ``condition``. Returns the updated document, or None when nothing matched.
        """
        ...

    @abstractmethod
    async def find_by_id_and_delete(
        self,
        collection: str,
        doc_id: str,
        condition: dict[str, Any] = None,
    ) -> Optional[dict[str, Any]]:
        """Delete and return the document if it exists and matches ``condition``, else None."""
        ...

    @abstractmethod
    async def update_many(
        self,
        collection: str,
        ids: list[str],
        update: dict[str, Any],
        condition: dict[str, Any] = None,
    ) -> int:
        """Apply ``update`` to every listed document matching ``condition``. Returns modified count."""
        ...
