"""
Store Factory — Create the job mirror backend from configuration.

Configuration in settings.yaml:
    database:
      url: "sqlite:///./broadcasts.db"
      # Job mirror backend
      #   "none"     — no mirror; persistence is skipped (default)
      #   "memory"   — in-memory dicts (development, testing)
      #   "file"     — jobs.json on disk (single host)
      #   "sql"      — the database above
      job_store_backend: "none"
      store_file_dir: "./data"
      store_flush_interval_s: 0    # file backend write batching

Usage:
    from database.store_factory import create_job_store
    store = create_job_store(settings.database)   # may return None
"""
from __future__ import annotations

import structlog
from typing import Optional

from config.settings import DatabaseConfig
from database.store_base import BaseJobStore

logger = structlog.get_logger()

BACKENDS = ("none", "memory", "file", "sql")


def create_job_store(config: DatabaseConfig = None) -> Optional[BaseJobStore]:
    """Factory: build the configured job store, or None when mirroring is off."""
    config = config or DatabaseConfig()
    backend = (config.job_store_backend or "none").lower()

    if backend not in BACKENDS:
        raise ValueError(f"Unknown job_store_backend {backend!r}; expected one of {BACKENDS}")

    if backend == "sql":
        from database.store import SqlJobStore
        logger.info("job_store_created", backend="sql")
        return SqlJobStore(config.url)

    if backend == "file":
        from database.store_file import FileJobStore
        logger.info("job_store_created", backend="file", data_dir=config.store_file_dir,
                    flush_interval_s=config.store_flush_interval_s)
        return FileJobStore(data_dir=config.store_file_dir,
                            flush_interval_s=config.store_flush_interval_s)

    if backend == "memory":
        from database.store_memory import InMemoryJobStore
        logger.info("job_store_created", backend="memory")
        return InMemoryJobStore()

    logger.info("job_store_disabled")
    return None
