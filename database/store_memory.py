"""
InMemoryDocumentStore — Dict-backed store for development and testing.

Features:
  - Zero dependencies (no database server)
  - Same interface as every other BaseDocumentStore backend
  - Atomic per call: no await between read and write of a document
  - All data lost on process restart

Best for: local development, unit tests, quick prototyping.
"""
from __future__ import annotations

import copy
import structlog
from collections import defaultdict
from typing import Any, Optional

from database.store_base import BaseDocumentStore
from database.updates import apply_update
from utils.conditions import matches

logger = structlog.get_logger()


class InMemoryDocumentStore(BaseDocumentStore):
    """
    Full-featured in-memory store.
    Returns deep copies so callers never mutate stored state by accident.
    """

    def __init__(self):
        self._collections: dict[str, dict[str, dict]] = defaultdict(dict)   # collection → id → doc
        logger.info("inmemory_store_initialized")

    async def insert(self, collection: str, document: dict[str, Any]) -> dict[str, Any]:
        if not document.get("id"):
            raise ValueError("Document must have an id")
        self._collections[collection][document["id"]] = copy.deepcopy(document)
        self._touched(collection)
        return copy.deepcopy(document)

    async def find_by_id(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        doc = self._collections[collection].get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def find(self, collection: str, condition: dict[str, Any] = None) -> list[dict[str, Any]]:
        return [
            copy.deepcopy(d) for d in self._collections[collection].values()
            if matches(d, condition)
        ]

    async def find_by_id_and_update(
        self,
        collection: str,
        doc_id: str,
        update: dict[str, Any],
        condition: dict[str, Any] = None,
    ) -> Optional[dict[str, Any]]:
        doc = self._collections[collection].get(doc_id)
        if doc is None or not matches(doc, condition):
            return None
        if apply_update(doc, update, condition):
            self._touched(collection)
        return copy.deepcopy(doc)

    async def find_by_id_and_delete(
        self,
        collection: str,
        doc_id: str,
        condition: dict[str, Any] = None,
    ) -> Optional[dict[str, Any]]:
        docs = self._collections[collection]
        doc = docs.get(doc_id)
        if doc is None or not matches(doc, condition):
            return None
        del docs[doc_id]
        self._touched(collection)
        return doc

    async def update_many(
        self,
        collection: str,
        ids: list[str],
        update: dict[str, Any],
        condition: dict[str, Any] = None,
    ) -> int:
        modified = 0
        docs = self._collections[collection]
        for doc_id in dict.fromkeys(ids):
            doc = docs.get(doc_id)
            if doc is None or not matches(doc, condition):
                continue
            if apply_update(doc, update, condition):
                modified += 1
        if modified:
            self._touched(collection)
        return modified

    def _touched(self, collection: str) -> None:
        """Hook for persistent subclasses; called after a collection changes."""

    # ── Stats (for debugging) ─────────────────────────────

    def stats(self) -> dict[str, int]:
        return {name: len(docs) for name, docs in self._collections.items()}
