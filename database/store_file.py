"""
FileDocumentStore — JSON-on-disk persistence for single-process deployments.

One file per collection under ``data_dir`` (users.json, groups.json, ...),
each holding ``{id: document}``. The whole dataset is kept in memory; files
are rewritten when a collection changes, either immediately or batched every
``flush_interval_s`` seconds.

Not safe for several processes writing the same directory.
"""
from __future__ import annotations

import asyncio
import json
import structlog
from pathlib import Path
from typing import Optional

from database.store_memory import InMemoryDocumentStore

logger = structlog.get_logger()


class FileDocumentStore(InMemoryDocumentStore):

    def __init__(self, data_dir: str = "./data", flush_interval_s: float = 0):
        super().__init__()
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.flush_interval_s = flush_interval_s
        self._pending: set[str] = set()
        self._flusher: Optional[asyncio.Task] = None
        self._restore()
        logger.info("file_store_initialized",
                    data_dir=str(self.data_dir),
                    collections=len(self._collections))

    def _restore(self):
        for path in sorted(self.data_dir.glob("*.json")):
            try:
                documents = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("file_store_load_error", collection=path.stem, error=str(e))
                continue
            if not isinstance(documents, dict):
                logger.warning("file_store_load_error", collection=path.stem, error="not an object")
                continue
            self._collections[path.stem] = documents

    def _write(self, collection: str):
        target = self.data_dir / f"{collection}.json"
        staging = target.with_name(target.name + ".tmp")
        staging.write_text(
            json.dumps(self._collections.get(collection, {}), indent=2, default=str, ensure_ascii=False),
            encoding="utf-8",
        )
        # rename is atomic on POSIX
        staging.replace(target)

    def _touched(self, collection: str) -> None:
        if self.flush_interval_s <= 0:
            self._write(collection)
            return
        self._pending.add(collection)
        if self._flusher is None or self._flusher.done():
            self._flusher = asyncio.get_running_loop().create_task(self._flush_later())

    async def _flush_later(self):
        await asyncio.sleep(self.flush_interval_s)
        pending, self._pending = self._pending, set()
        for collection in pending:
            self._write(collection)

    def flush_all(self):
        """Write every collection now. Called on shutdown."""
        for collection in list(self._collections):
            self._write(collection)
        self._pending.clear()
        logger.info("file_store_flushed", collections=len(self._collections))
