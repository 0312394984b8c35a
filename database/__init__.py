"""
Database layer — document persistence.

Backends:
  - In-memory (dict-based, for development/testing)
  - File (JSON files on disk, for small deployments)

Quick start:
  from database import create_store
  store = create_store()
  group = await store.find_by_id("groups", "g1")
"""
from database.store_base import BaseDocumentStore
from database.store_memory import InMemoryDocumentStore
from database.store_file import FileDocumentStore
from database.store_factory import create_store
from database.updates import apply_update

__all__ = [
    "BaseDocumentStore",
    "InMemoryDocumentStore", "FileDocumentStore",
    "create_store",
    "apply_update",
]
