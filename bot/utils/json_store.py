"""
JSON Snapshot Persistence
File-backed key -> JSON storage with one serialized writer per file
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

import aiofiles
import aiofiles.os

from bot.utils.exceptions import PersistenceException

logger = logging.getLogger(__name__)


class JsonStore:
    """Reads and writes whole JSON documents under a data directory"""

    def __init__(self, data_path: Path):
        self.data_path = Path(data_path)

    def path_for(self, name: str) -> Path:
        return self.data_path / name

    async def read_json(self, name: str) -> Optional[Any]:
        """Return the parsed document, or None when missing or malformed"""
        path = self.path_for(name)
        try:
            async with aiofiles.open(path, 'r', encoding='utf-8') as f:
                content = await f.read()
        except FileNotFoundError:
            logger.info(f"No persisted {name} found, starting fresh")
            return None
        except OSError as e:
            logger.warning(f"Failed to read {path}: {e}")
            return None

        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring malformed {path}: {e}")
            return None

    async def write_json(self, name: str, value: Any):
        """Write atomically: temp file in the same directory, then replace"""
        path = self.path_for(name)
        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            os.makedirs(self.data_path, exist_ok=True)
            payload = json.dumps(value, indent=2)
            async with aiofiles.open(tmp_path, 'w', encoding='utf-8') as f:
                await f.write(payload)
            await aiofiles.os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceException(f"Failed to write {path}: {e}") from e


class SnapshotWriter:
    """
    Single background writer for one persisted file.

    schedule() never blocks: it records the newest snapshot and wakes the
    worker. The worker always writes the newest pending snapshot and never
    runs twice at once, so an older snapshot cannot land after a newer one.
    """

    def __init__(self, store: JsonStore, name: str):
        self.store = store
        self.name = name
        self._pending: Optional[Any] = None
        self._has_pending = False
        self._worker: Optional[asyncio.Task] = None
        self.version = 0
        self.written_version = 0

    def schedule(self, snapshot: Any):
        self.version += 1
        self._pending = snapshot
        self._has_pending = True
        try:
            self._ensure_worker()
        except RuntimeError:
            # No running loop (sync callers); flush() picks the snapshot up
            pass

    def _ensure_worker(self) -> Optional[asyncio.Task]:
        if self._has_pending and (self._worker is None or self._worker.done()):
            self._worker = asyncio.get_running_loop().create_task(self._drain())
        return self._worker

    async def _drain(self):
        while self._has_pending:
            snapshot = self._pending
            version = self.version
            self._pending = None
            self._has_pending = False
            try:
                await self.store.write_json(self.name, snapshot)
                self.written_version = version
                logger.debug(f"Persisted {self.name} (version {version})")
            except PersistenceException as e:
                logger.warning(f"{e} - keeping in-memory state, will retry on next change")

    async def flush(self):
        """Wait until every scheduled snapshot has been handed to disk"""
        while self._has_pending or (self._worker is not None and not self._worker.done()):
            worker = self._ensure_worker()
            await worker
