"""
Store Factory — Create the right document store backend from configuration.

Configuration in settings.yaml:
    database:
      # Document store backend
      #   "memory"   In-memory dicts (development, testing)
      #   "file"     JSON files on disk (small deployments, demos)
      store_backend: "memory"

      # For file backend: directory path
      store_file_dir: "./data"

Usage:
    from database.store_factory import create_store
    store = create_store(settings.database)

Each call builds a new store; the runtime owns the instance and passes it to
the services, producers and handlers that need it.
"""
from __future__ import annotations

import structlog

from config.settings import DatabaseConfig
from database.store_base import BaseDocumentStore

logger = structlog.get_logger()


def create_store(config: DatabaseConfig = None) -> BaseDocumentStore:
    """Factory: create the appropriate document store backend."""
    config = config or DatabaseConfig()
    backend = config.store_backend

    if backend == "file":
        from database.store_file import FileDocumentStore
        store = FileDocumentStore(
            data_dir=config.store_file_dir,
            flush_interval_s=config.flush_interval_s,
        )
        logger.info("store_created", backend="file", data_dir=config.store_file_dir)
        return store

    if backend != "memory":
        raise ValueError(f"Unknown store backend: {backend}")

    from database.store_memory import InMemoryDocumentStore
    logger.info("store_created", backend="memory")
    return InMemoryDocumentStore()
