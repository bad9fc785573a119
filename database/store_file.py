"""
FileJobStore — JSON file-backed job mirror that survives restarts.

Data layout:
  {data_dir}/
    jobs.json        {"<job id>": {record}, ...}

Features:
  - No external dependencies (no database server)
  - Atomic writes (tmp file + rename)
  - Optional debounce: flush_interval_s > 0 batches writes
  - Single-process only (no concurrent write safety)

Best for: small deployments, crash forensics on a single worker host.
"""
from __future__ import annotations

import asyncio
import json
import structlog
from pathlib import Path
from typing import Optional

from database.store_memory import InMemoryJobStore

logger = structlog.get_logger()

_FILE_NAME = "jobs.json"


class FileJobStore(InMemoryJobStore):
    """
    Extends InMemoryJobStore with JSON file persistence.

    On init: loads jobs.json into memory.
    On every upsert: rewrites the file (or schedules a batched flush).
    """

    def __init__(self, data_dir: str = "./data", flush_interval_s: float = 0):
        super().__init__()
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._flush_interval = flush_interval_s
        self._dirty = False
        self._flush_task: Optional[asyncio.Task] = None
        self._load()
        logger.info("file_job_store_initialized", data_dir=str(self._data_dir), jobs=len(self._jobs))

    @property
    def path(self) -> Path:
        return self._data_dir / _FILE_NAME

    def _load(self):
        if not self.path.exists():
            return
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            self._jobs = data if isinstance(data, dict) else {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("file_job_store_load_error", path=str(self.path), error=str(e))

    def flush(self):
        """Write all records to disk."""
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w") as f:
            json.dump(self._jobs, f, indent=2, default=str)
        tmp_path.replace(self.path)
        self._dirty = False

    def _mark_dirty(self):
        if self._flush_interval <= 0:
            self.flush()
            return
        self._dirty = True
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = asyncio.get_running_loop().create_task(self._deferred_flush())

    async def _deferred_flush(self):
        await asyncio.sleep(self._flush_interval)
        if self._dirty:
            self.flush()

    async def upsert_job(self, job) -> None:
        await super().upsert_job(job)
        self._mark_dirty()

    async def close(self) -> None:
        if self._flush_task and not self._flush_task.done():
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
        if self._dirty:
            self.flush()
