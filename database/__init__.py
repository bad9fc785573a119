"""
Database layer — best-effort job persistence mirror.

Backends:
  - SQL (PostgreSQL / MySQL / SQLite via SQLAlchemy async)
  - In-memory (dict-based, for development/testing)
  - File (JSON on disk, for single-host deployments)

Quick start:
  from database import create_job_store
  store = create_job_store(settings.database)
  queue = JobQueue.from_settings(settings.queue, job_store=store)
"""
from database.store_base import BaseJobStore
from database.store_memory import InMemoryJobStore
from database.store_file import FileJobStore
from database.store_factory import create_job_store

__all__ = [
    "BaseJobStore",
    "InMemoryJobStore", "FileJobStore",
    "create_job_store",
]
